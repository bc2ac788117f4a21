"""add inventory allocations

Revision ID: 8b2d4e6f1a3c
Revises: 3f1c2a9d7e10
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "8b2d4e6f1a3c"
down_revision: Union[str, Sequence[str], None] = "3f1c2a9d7e10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ALLOCATION_STATUS = sa.Enum("allocated", "issued", "returned", "cancelled", name="allocation_status")


def upgrade() -> None:
    op.create_table(
        "inventory_allocations",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "item_id",
            sa.BigInteger(),
            sa.ForeignKey("inventory_items.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
        ),
        sa.Column("job_id", sa.String(64), index=True),
        sa.Column("bid_id", sa.String(64), index=True),
        sa.Column("quantity_allocated", sa.Numeric(14, 4), nullable=False),
        sa.Column("quantity_returned", sa.Numeric(14, 4), nullable=False, server_default="0"),
        sa.Column("status", ALLOCATION_STATUS, nullable=False, server_default="allocated"),
        sa.Column("expected_use_date", sa.Date()),
        sa.Column("issued_at", sa.DateTime(timezone=True)),
        sa.Column("allocated_by", sa.String(64)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("CAST(quantity_allocated AS NUMERIC) > 0", name="ck_allocation_qty_positive"),
        sa.CheckConstraint(
            "CAST(quantity_returned AS NUMERIC) >= 0"
            " AND CAST(quantity_returned AS NUMERIC) <= CAST(quantity_allocated AS NUMERIC)",
            name="ck_allocation_returned_le_allocated",
        ),
    )
    op.create_index("ix_inventory_allocations_active", "inventory_allocations", ["item_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_inventory_allocations_active", table_name="inventory_allocations")
    op.drop_table("inventory_allocations")
    ALLOCATION_STATUS.drop(op.get_bind(), checkfirst=True)
