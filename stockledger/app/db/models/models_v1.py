from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.app.db.base import Base
from stockledger.app.db.types import BigIntPK, Money, Quantity
from stockledger.app.db.models.core_types import (
    TransactionType,
    StockStatus,
    AlertType,
    AlertSeverity,
    POStatus,
    ItemHistoryAction,
    AllocationStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    # on persiste la valeur ("return"), pas le nom python ("return_")
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# ---------- MASTER DATA ----------
class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    lead_time_days: Mapped[int] = mapped_column(Integer, default=14, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_nonneg"),)


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    primary_supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"))

    unit_cost: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)

    # quantités : écrites uniquement par le ledger (services.inventory)
    quantity_on_hand: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)
    quantity_allocated: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)
    quantity_available: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)
    quantity_on_order: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)

    reorder_level: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)
    reorder_quantity: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)

    status: Mapped[StockStatus] = mapped_column(
        _enum(StockStatus, "stock_status"),
        default=StockStatus.out_of_stock,
        nullable=False,
    )
    last_restocked_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    primary_supplier: Mapped[Supplier | None] = relationship()

    __table_args__ = (Index("ix_inventory_items_status", "status", "is_deleted"),)


class ItemHistory(Base):
    __tablename__ = "inventory_item_history"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[ItemHistoryAction] = mapped_column(_enum(ItemHistoryAction, "item_history_action"), nullable=False)
    field_changed: Mapped[str | None] = mapped_column(String(64))
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    performed_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- LEDGER ----------
class InventoryTransaction(Base):
    """Écriture du ledger : append-only, jamais modifiée après insertion."""

    __tablename__ = "inventory_transactions"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transaction_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        _enum(TransactionType, "transaction_type"),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(Quantity(), nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Money())
    total_cost: Mapped[Decimal | None] = mapped_column(Money())
    balance_after: Mapped[Decimal] = mapped_column(Quantity(), nullable=False)

    purchase_order_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_orders.id", ondelete="SET NULL"))
    job_id: Mapped[str | None] = mapped_column(String(64), index=True)
    bid_id: Mapped[str | None] = mapped_column(String(64), index=True)
    reference_number: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    performed_by: Mapped[str | None] = mapped_column(String(64))
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    item: Mapped[InventoryItem] = relationship()

    __table_args__ = (
        CheckConstraint("CAST(quantity AS NUMERIC) >= 0", name="ck_inventory_transaction_qty_nonneg"),
        Index("ix_inventory_transactions_item_time", "item_id", "transaction_date"),
    )


class StockAlert(Base):
    __tablename__ = "inventory_stock_alerts"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    alert_type: Mapped[AlertType] = mapped_column(_enum(AlertType, "alert_type"), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(_enum(AlertSeverity, "alert_severity"), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    current_quantity: Mapped[Decimal | None] = mapped_column(Quantity())
    threshold_quantity: Mapped[Decimal | None] = mapped_column(Quantity())

    # acquittement / résolution : workflow externe
    is_acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    acknowledged_by: Mapped[str | None] = mapped_column(String(64))
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String(64))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_inventory_alerts_active", "item_id", "is_resolved"),)


class InventoryAllocation(Base):
    """Réservation de stock pour un chantier (job) ou un devis (bid)."""

    __tablename__ = "inventory_allocations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    job_id: Mapped[str | None] = mapped_column(String(64), index=True)
    bid_id: Mapped[str | None] = mapped_column(String(64), index=True)

    quantity_allocated: Mapped[Decimal] = mapped_column(Quantity(), nullable=False)
    quantity_returned: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)
    status: Mapped[AllocationStatus] = mapped_column(
        _enum(AllocationStatus, "allocation_status"),
        default=AllocationStatus.allocated,
        nullable=False,
    )

    expected_use_date: Mapped[date | None] = mapped_column(Date)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    allocated_by: Mapped[str | None] = mapped_column(String(64))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    item: Mapped[InventoryItem] = relationship()

    __table_args__ = (
        CheckConstraint("CAST(quantity_allocated AS NUMERIC) > 0", name="ck_allocation_qty_positive"),
        CheckConstraint(
            "CAST(quantity_returned AS NUMERIC) >= 0"
            " AND CAST(quantity_returned AS NUMERIC) <= CAST(quantity_allocated AS NUMERIC)",
            name="ck_allocation_returned_le_allocated",
        ),
        Index("ix_inventory_allocations_active", "item_id", "status"),
    )


class DocumentCounter(Base):
    """Compteur durable pour la numérotation (TXN-2026-0001, PO-2026-0001...)."""

    __tablename__ = "document_counters"
    scope: Mapped[str] = mapped_column(String(64), primary_key=True)
    counter_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[POStatus] = mapped_column(_enum(POStatus, "po_status"), default=POStatus.draft, nullable=False)

    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    actual_delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    subtotal: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(64))
    approved_by: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    supplier: Mapped[Supplier] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[int] = mapped_column(ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False)
    quantity_ordered: Mapped[Decimal] = mapped_column(Quantity(), nullable=False)
    quantity_received: Mapped[Decimal] = mapped_column(Quantity(), default=Decimal("0"), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money(), nullable=False)

    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    actual_delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    item: Mapped[InventoryItem] = relationship()

    __table_args__ = (
        UniqueConstraint("po_id", "item_id", name="uq_po_line_item"),
        CheckConstraint("CAST(quantity_ordered AS NUMERIC) > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("CAST(unit_cost AS NUMERIC) >= 0", name="ck_po_line_unit_cost_nonneg"),
        CheckConstraint(
            "CAST(quantity_received AS NUMERIC) >= 0"
            " AND CAST(quantity_received AS NUMERIC) <= CAST(quantity_ordered AS NUMERIC)",
            name="ck_po_line_received_le_ordered",
        ),
    )
