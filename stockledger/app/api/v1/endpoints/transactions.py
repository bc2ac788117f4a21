from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.app.db.models.core_types import TransactionType
from stockledger.app.schemas.inventory import ItemRead, TransactionCreate, TransactionRead
from stockledger.services import inventory

router = APIRouter(prefix="/transactions")


@router.post("", status_code=201)
def record_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    entry, item = inventory.record_transaction(db, **payload.model_dump(), performed_by=actor_id)
    return {
        "transaction": TransactionRead.model_validate(entry),
        "item": ItemRead.model_validate(item),
    }


@router.get("")
def list_transactions(
    item_id: int | None = None,
    transaction_type: TransactionType | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    job_id: str | None = None,
    bid_id: str | None = None,
    offset: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    rows, total = inventory.list_transactions(
        db,
        item_id=item_id,
        transaction_type=transaction_type,
        start=start,
        end=end,
        job_id=job_id,
        bid_id=bid_id,
        offset=offset,
        limit=limit,
    )
    return {
        "data": [TransactionRead.model_validate(t) for t in rows],
        "total": total,
        "offset": offset,
        "limit": limit,
    }
