from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from stockledger.app.db.models.core_types import AllocationStatus


class AllocationCreate(BaseModel):
    item_id: int
    quantity: Decimal = Field(gt=0)
    job_id: str | None = Field(default=None, max_length=64)
    bid_id: str | None = Field(default=None, max_length=64)
    expected_use_date: date | None = None
    notes: str | None = None


class AllocationReturn(BaseModel):
    quantity: Decimal = Field(gt=0)
    notes: str | None = None


class AllocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    job_id: str | None
    bid_id: str | None
    quantity_allocated: Decimal
    quantity_returned: Decimal
    status: AllocationStatus
    expected_use_date: date | None
    issued_at: datetime | None
    allocated_by: str | None
    notes: str | None
    created_at: datetime
