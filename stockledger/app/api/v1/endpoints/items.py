from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.app.db.models.core_types import StockStatus
from stockledger.app.schemas.inventory import (
    AlertRead,
    ItemCreate,
    ItemHistoryRead,
    ItemRead,
    ItemUpdate,
    TransactionRead,
)
from stockledger.services import alerts, catalog, inventory

router = APIRouter(prefix="/items")


@router.get("")
def list_items(
    status: StockStatus | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    rows, total = catalog.list_items(db, status=status, search=search, offset=offset, limit=limit)
    return {
        "data": [ItemRead.model_validate(i) for i in rows],
        "total": total,
        "offset": offset,
        "limit": limit,
    }


@router.post("", response_model=ItemRead, status_code=201)
def create_item(
    payload: ItemCreate,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return catalog.create_item(db, **payload.model_dump(), performed_by=actor_id)


@router.get("/{item_id}", response_model=ItemRead)
def get_item(item_id: int, db: Session = Depends(get_db)):
    return catalog.get_item(db, item_id)


@router.patch("/{item_id}", response_model=ItemRead)
def update_item(
    item_id: int,
    payload: ItemUpdate,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return catalog.update_item(db, item_id, payload.model_dump(exclude_unset=True), performed_by=actor_id)


@router.delete("/{item_id}", status_code=204)
def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    catalog.delete_item(db, item_id, performed_by=actor_id)


@router.get("/{item_id}/history", response_model=list[ItemHistoryRead])
def get_item_history(item_id: int, db: Session = Depends(get_db)):
    return catalog.get_item_history(db, item_id)


@router.get("/{item_id}/transactions", response_model=list[TransactionRead])
def get_item_transactions(item_id: int, db: Session = Depends(get_db)):
    return inventory.get_item_transactions(db, item_id)


@router.get("/{item_id}/alerts", response_model=list[AlertRead])
def get_item_alerts(item_id: int, db: Session = Depends(get_db)):
    catalog.get_item(db, item_id)
    return alerts.list_open_alerts(db, item_id=item_id)
