"""create stock ledger tables

Revision ID: 3f1c2a9d7e10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STOCK_STATUS = sa.Enum("in_stock", "low_stock", "out_of_stock", "on_order", name="stock_status")
TRANSACTION_TYPE = sa.Enum("receipt", "issue", "adjustment", "return", "write_off", name="transaction_type")
ALERT_TYPE = sa.Enum("low_stock", "out_of_stock", name="alert_type")
ALERT_SEVERITY = sa.Enum("warning", "critical", name="alert_severity")
PO_STATUS = sa.Enum(
    "draft",
    "pending_approval",
    "approved",
    "sent",
    "partially_received",
    "received",
    "cancelled",
    "closed",
    name="po_status",
)
HISTORY_ACTION = sa.Enum(
    "created", "updated", "price_changed", "reorder_level_changed", "deleted", name="item_history_action"
)


def _qty(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 4), **kw)


def _money(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), **kw)


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade() -> None:
    op.create_table(
        "suppliers",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_nonneg"),
    )

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(100), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("primary_supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="SET NULL")),
        _money("unit_cost", nullable=False, server_default="0"),
        _qty("quantity_on_hand", nullable=False, server_default="0"),
        _qty("quantity_allocated", nullable=False, server_default="0"),
        _qty("quantity_available", nullable=False, server_default="0"),
        _qty("quantity_on_order", nullable=False, server_default="0"),
        _qty("reorder_level", nullable=False, server_default="0"),
        _qty("reorder_quantity", nullable=False, server_default="0"),
        sa.Column("status", STOCK_STATUS, nullable=False, server_default="out_of_stock"),
        _ts("last_restocked_date"),
        sa.Column("notes", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
        _ts("updated_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_inventory_items_status", "inventory_items", ["status", "is_deleted"])

    op.create_table(
        "inventory_item_history",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "item_id",
            sa.BigInteger(),
            sa.ForeignKey("inventory_items.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("action", HISTORY_ACTION, nullable=False),
        sa.Column("field_changed", sa.String(64)),
        sa.Column("old_value", sa.Text()),
        sa.Column("new_value", sa.Text()),
        sa.Column("description", sa.Text()),
        sa.Column("performed_by", sa.String(64)),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "document_counters",
        sa.Column("scope", sa.String(64), primary_key=True),
        sa.Column("counter_name", sa.String(64), primary_key=True),
        sa.Column("current_value", sa.Integer(), nullable=False, server_default="0"),
        _ts("updated_at", nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", PO_STATUS, nullable=False, server_default="draft"),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("expected_delivery_date", sa.Date()),
        _ts("actual_delivery_date"),
        _money("subtotal", nullable=False, server_default="0"),
        _money("tax_amount", nullable=False, server_default="0"),
        _money("shipping_cost", nullable=False, server_default="0"),
        _money("total_amount", nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(64)),
        sa.Column("approved_by", sa.String(64)),
        _ts("approved_at"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "po_id",
            sa.BigInteger(),
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "item_id",
            sa.BigInteger(),
            sa.ForeignKey("inventory_items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        _qty("quantity_ordered", nullable=False),
        _qty("quantity_received", nullable=False, server_default="0"),
        _money("unit_cost", nullable=False),
        _money("line_total", nullable=False),
        sa.Column("expected_delivery_date", sa.Date()),
        _ts("actual_delivery_date"),
        sa.Column("notes", sa.Text()),
        sa.UniqueConstraint("po_id", "item_id", name="uq_po_line_item"),
        sa.CheckConstraint("CAST(quantity_ordered AS NUMERIC) > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("CAST(unit_cost AS NUMERIC) >= 0", name="ck_po_line_unit_cost_nonneg"),
        # quantity_received monotone et borné par quantity_ordered
        sa.CheckConstraint(
            "CAST(quantity_received AS NUMERIC) >= 0"
            " AND CAST(quantity_received AS NUMERIC) <= CAST(quantity_ordered AS NUMERIC)",
            name="ck_po_line_received_le_ordered",
        ),
    )

    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("transaction_number", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "item_id",
            sa.BigInteger(),
            sa.ForeignKey("inventory_items.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
        ),
        sa.Column("transaction_type", TRANSACTION_TYPE, nullable=False),
        _qty("quantity", nullable=False),
        _money("unit_cost"),
        _money("total_cost"),
        _qty("balance_after", nullable=False),
        sa.Column(
            "purchase_order_id",
            sa.BigInteger(),
            sa.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
        ),
        sa.Column("job_id", sa.String(64), index=True),
        sa.Column("bid_id", sa.String(64), index=True),
        sa.Column("reference_number", sa.String(100)),
        sa.Column("notes", sa.Text()),
        sa.Column("performed_by", sa.String(64)),
        _ts("transaction_date", nullable=False, server_default=sa.func.now()),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("CAST(quantity AS NUMERIC) >= 0", name="ck_inventory_transaction_qty_nonneg"),
    )
    op.create_index(
        "ix_inventory_transactions_item_time",
        "inventory_transactions",
        ["item_id", "transaction_date"],
    )

    op.create_table(
        "inventory_stock_alerts",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "item_id",
            sa.BigInteger(),
            sa.ForeignKey("inventory_items.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("alert_type", ALERT_TYPE, nullable=False),
        sa.Column("severity", ALERT_SEVERITY, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        _qty("current_quantity"),
        _qty("threshold_quantity"),
        sa.Column("is_acknowledged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("acknowledged_by", sa.String(64)),
        _ts("acknowledged_at"),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_by", sa.String(64)),
        _ts("resolved_at"),
        _ts("created_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_inventory_alerts_active", "inventory_stock_alerts", ["item_id", "is_resolved"])


def downgrade() -> None:
    op.drop_table("inventory_stock_alerts")
    op.drop_table("inventory_transactions")
    op.drop_table("purchase_order_lines")
    op.drop_table("purchase_orders")
    op.drop_table("document_counters")
    op.drop_table("inventory_item_history")
    op.drop_index("ix_inventory_items_status", table_name="inventory_items")
    op.drop_table("inventory_items")
    op.drop_table("suppliers")
    for enum in (HISTORY_ACTION, PO_STATUS, ALERT_SEVERITY, ALERT_TYPE, TRANSACTION_TYPE, STOCK_STATUS):
        enum.drop(op.get_bind(), checkfirst=True)
