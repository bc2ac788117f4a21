from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.app.db.models.core_types import POStatus
from stockledger.app.schemas.purchase_order import (
    POCancel,
    POCreate,
    PODetail,
    POLineCreate,
    POLineRead,
    POLineUpdate,
    PORead,
    POReceive,
    POUpdate,
)
from stockledger.services import procurement
from stockledger.services.procurement import LineInput, ReceiveLine

router = APIRouter(prefix="/purchase-orders")


def _line_input(ln: POLineCreate) -> LineInput:
    return LineInput(
        item_id=ln.item_id,
        quantity_ordered=ln.quantity_ordered,
        unit_cost=ln.unit_cost,
        expected_delivery_date=ln.expected_delivery_date,
        notes=ln.notes,
    )


@router.get("")
def list_pos(
    status: POStatus | None = None,
    supplier_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
    offset: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    rows, total = procurement.list_purchase_orders(
        db,
        status=status,
        supplier_id=supplier_id,
        start=start,
        end=end,
        offset=offset,
        limit=limit,
    )
    return {
        "data": [PORead.model_validate(po) for po in rows],
        "total": total,
        "offset": offset,
        "limit": limit,
    }


@router.get("/{po_id}", response_model=PODetail)
def get_po(po_id: int, db: Session = Depends(get_db)):
    return procurement.get_purchase_order(db, po_id)


@router.post("", response_model=PODetail, status_code=201)
def create_po(
    payload: POCreate,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return procurement.create_purchase_order(
        db,
        supplier_id=payload.supplier_id,
        lines=[_line_input(ln) for ln in payload.lines],
        order_date=payload.order_date,
        expected_delivery_date=payload.expected_delivery_date,
        tax_amount=payload.tax_amount,
        shipping_cost=payload.shipping_cost,
        notes=payload.notes,
        created_by=actor_id,
    )


@router.patch("/{po_id}", response_model=PORead)
def update_po(po_id: int, payload: POUpdate, db: Session = Depends(get_db)):
    return procurement.update_purchase_order(db, po_id, payload.model_dump(exclude_unset=True))


@router.post("/{po_id}/lines", response_model=POLineRead, status_code=201)
def add_line(po_id: int, payload: POLineCreate, db: Session = Depends(get_db)):
    return procurement.add_line(db, po_id, _line_input(payload))


@router.patch("/{po_id}/lines/{line_id}", response_model=POLineRead)
def update_line(po_id: int, line_id: int, payload: POLineUpdate, db: Session = Depends(get_db)):
    return procurement.update_line(db, po_id, line_id, **payload.model_dump(exclude_unset=True))


@router.delete("/{po_id}/lines/{line_id}", status_code=204)
def delete_line(po_id: int, line_id: int, db: Session = Depends(get_db)):
    procurement.delete_line(db, po_id, line_id)


@router.post("/{po_id}/submit", response_model=PORead)
def submit_po(po_id: int, db: Session = Depends(get_db)):
    return procurement.submit_for_approval(db, po_id)


@router.post("/{po_id}/approve", response_model=PORead)
def approve_po(
    po_id: int,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return procurement.approve_purchase_order(db, po_id, approved_by=actor_id)


@router.post("/{po_id}/send", response_model=PORead)
def send_po(po_id: int, db: Session = Depends(get_db)):
    return procurement.send_purchase_order(db, po_id)


@router.post("/{po_id}/receive", response_model=PODetail)
def receive_po(
    po_id: int,
    payload: POReceive | None = None,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    lines = None
    if payload is not None and payload.lines:
        lines = [ReceiveLine(line_id=ln.line_id, quantity=ln.quantity) for ln in payload.lines]
    return procurement.receive_purchase_order(db, po_id, lines=lines, received_by=actor_id)


@router.post("/{po_id}/receive-partial", response_model=PODetail)
def receive_partial_po(
    po_id: int,
    payload: POReceive,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    lines = [ReceiveLine(line_id=ln.line_id, quantity=ln.quantity) for ln in payload.lines or []]
    return procurement.receive_partial_purchase_order(db, po_id, lines=lines, received_by=actor_id)


@router.post("/{po_id}/cancel", response_model=PORead)
def cancel_po(
    po_id: int,
    payload: POCancel | None = None,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    reason = payload.reason if payload is not None else None
    return procurement.cancel_purchase_order(db, po_id, reason=reason, cancelled_by=actor_id)


@router.post("/{po_id}/close", response_model=PORead)
def close_po(po_id: int, db: Session = Depends(get_db)):
    return procurement.close_purchase_order(db, po_id)
