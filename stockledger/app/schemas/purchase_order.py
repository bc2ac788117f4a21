from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from stockledger.app.db.models.core_types import POStatus


class POLineCreate(BaseModel):
    item_id: int
    quantity_ordered: Decimal = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)
    expected_delivery_date: date | None = None
    notes: str | None = None


class POLineUpdate(BaseModel):
    quantity_ordered: Decimal | None = Field(default=None, gt=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    expected_delivery_date: date | None = None
    notes: str | None = None


class POCreate(BaseModel):
    supplier_id: int
    order_date: date | None = None
    expected_delivery_date: date | None = None
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None
    lines: list[POLineCreate] = Field(default_factory=list)


class POUpdate(BaseModel):
    expected_delivery_date: date | None = None
    tax_amount: Decimal | None = Field(default=None, ge=0)
    shipping_cost: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class POReceiveLine(BaseModel):
    line_id: int
    quantity: Decimal = Field(gt=0)


class POReceive(BaseModel):
    # vide / absent sur /receive : tout le reliquat est reçu
    lines: list[POReceiveLine] | None = None


class POCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class POLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    quantity_ordered: Decimal
    quantity_received: Decimal
    unit_cost: Decimal
    line_total: Decimal
    expected_delivery_date: date | None
    actual_delivery_date: datetime | None
    notes: str | None


class PORead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    po_number: str
    supplier_id: int
    status: POStatus
    order_date: date
    expected_delivery_date: date | None
    actual_delivery_date: datetime | None
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    notes: str | None
    approved_by: str | None
    approved_at: datetime | None
    created_at: datetime


class PODetail(PORead):
    lines: list[POLineRead]
