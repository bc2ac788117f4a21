from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.app.db.models.core_types import AllocationStatus
from stockledger.app.schemas.allocation import AllocationCreate, AllocationRead, AllocationReturn
from stockledger.services import allocations

router = APIRouter(prefix="/allocations")


@router.post("", response_model=AllocationRead, status_code=201)
def create_allocation(
    payload: AllocationCreate,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return allocations.create_allocation(db, **payload.model_dump(), allocated_by=actor_id)


@router.get("")
def list_allocations(
    item_id: int | None = None,
    job_id: str | None = None,
    bid_id: str | None = None,
    status: AllocationStatus | None = None,
    offset: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    rows, total = allocations.list_allocations(
        db,
        item_id=item_id,
        job_id=job_id,
        bid_id=bid_id,
        status=status,
        offset=offset,
        limit=limit,
    )
    return {
        "data": [AllocationRead.model_validate(a) for a in rows],
        "total": total,
        "offset": offset,
        "limit": limit,
    }


@router.get("/{allocation_id}", response_model=AllocationRead)
def get_allocation(allocation_id: int, db: Session = Depends(get_db)):
    return allocations.get_allocation(db, allocation_id)


@router.post("/{allocation_id}/issue", response_model=AllocationRead)
def issue_allocation(
    allocation_id: int,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return allocations.issue_allocation(db, allocation_id, performed_by=actor_id)


@router.post("/{allocation_id}/return", response_model=AllocationRead)
def return_allocation(
    allocation_id: int,
    payload: AllocationReturn,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return allocations.return_allocation(
        db, allocation_id, quantity=payload.quantity, notes=payload.notes, performed_by=actor_id
    )


@router.post("/{allocation_id}/cancel", response_model=AllocationRead)
def cancel_allocation(
    allocation_id: int,
    db: Session = Depends(get_db),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
):
    return allocations.cancel_allocation(db, allocation_id, cancelled_by=actor_id)
