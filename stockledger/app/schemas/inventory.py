from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from stockledger.app.db.models.core_types import (
    AlertSeverity,
    AlertType,
    ItemHistoryAction,
    StockStatus,
    TransactionType,
)


class SupplierCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    lead_time_days: int = Field(default=14, ge=0)


class SupplierRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    email: str | None
    lead_time_days: int
    is_active: bool


class ItemCreate(BaseModel):
    code: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    primary_supplier_id: int | None = None
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_level: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_quantity: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None


class ItemUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=1, max_length=100)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    primary_supplier_id: int | None = None
    unit_cost: Decimal | None = Field(default=None, ge=0)
    reorder_level: Decimal | None = Field(default=None, ge=0)
    reorder_quantity: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None
    is_active: bool | None = None


class ItemRead(BaseModel):
    """quantity_* et status : READ ONLY, maintenus par le ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: str | None
    primary_supplier_id: int | None
    unit_cost: Decimal
    quantity_on_hand: Decimal
    quantity_allocated: Decimal
    quantity_available: Decimal
    quantity_on_order: Decimal
    reorder_level: Decimal
    reorder_quantity: Decimal
    status: StockStatus
    last_restocked_date: datetime | None
    is_active: bool


class ItemHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: ItemHistoryAction
    field_changed: str | None
    old_value: str | None
    new_value: str | None
    description: str | None
    performed_by: str | None
    created_at: datetime


class TransactionCreate(BaseModel):
    item_id: int
    transaction_type: TransactionType
    # adjustment : quantité absolue (>= 0) ; sinon quantité > 0
    quantity: Decimal = Field(ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    job_id: str | None = Field(default=None, max_length=64)
    bid_id: str | None = Field(default=None, max_length=64)
    reference_number: str | None = Field(default=None, max_length=100)
    notes: str | None = None
    transaction_date: datetime | None = None


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_number: str
    item_id: int
    transaction_type: TransactionType
    quantity: Decimal
    unit_cost: Decimal | None
    total_cost: Decimal | None
    balance_after: Decimal
    purchase_order_id: int | None
    job_id: str | None
    bid_id: str | None
    reference_number: str | None
    notes: str | None
    performed_by: str | None
    transaction_date: datetime


class AlertRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    current_quantity: Decimal | None
    threshold_quantity: Decimal | None
    is_acknowledged: bool
    is_resolved: bool
    created_at: datetime
