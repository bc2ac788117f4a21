"""
Réservations de stock (allocations) pour un chantier (job) ou un devis (bid).

allocated --issue--> issued --return--> returned
allocated --cancel--> cancelled

Une réservation immobilise du quantity_available sans toucher au
quantity_on_hand. La sortie physique (issue) passe par le ledger et consomme
la réservation ; le retour (return) est une écriture ledger "return".
Toute modification de quantité se fait sous le verrou de l'article.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.app.core.exceptions import InputValidationError, InvalidStateError, NotFoundError
from stockledger.app.core.logging import get_logger
from stockledger.app.db.models.core_types import AllocationStatus, TransactionType
from stockledger.app.db.models.models_v1 import InventoryAllocation
from stockledger.app.db.session import retry_on_contention, unit_of_work
from stockledger.services import catalog, inventory
from stockledger.services.events import publish_after_commit
from stockledger.services.validators import parse_decimal, parse_paging

logger = get_logger(__name__)

ZERO = Decimal("0")


def _target(allocation: InventoryAllocation) -> str:
    return "job" if allocation.job_id else "bid"


def _payload(allocation: InventoryAllocation) -> dict[str, Any]:
    return {
        "allocation_id": allocation.id,
        "item_id": allocation.item_id,
        "job_id": allocation.job_id,
        "bid_id": allocation.bid_id,
        "status": allocation.status.value,
        "quantity_allocated": str(allocation.quantity_allocated),
    }


def _lock_allocation(db: Session, allocation_id: int) -> InventoryAllocation:
    allocation = (
        db.execute(
            select(InventoryAllocation)
            .where(InventoryAllocation.id == allocation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .one_or_none()
    )
    if not allocation:
        raise NotFoundError("InventoryAllocation", allocation_id)
    return allocation


def _ensure_status(allocation: InventoryAllocation, expected: AllocationStatus, operation: str, message: str) -> None:
    if allocation.status != expected:
        raise InvalidStateError(
            message,
            allocation_id=allocation.id,
            current_status=allocation.status.value,
            operation=operation,
        )


def _release(db: Session, item_id: int, quantity: Decimal, *, include_deleted: bool = False):
    item = catalog.get_for_update(db, item_id, include_deleted=include_deleted)
    return catalog.apply(db, item, quantity_allocated=max(ZERO, item.quantity_allocated - quantity))


# ---------- Lecture ----------
def get_allocation(db: Session, allocation_id: int) -> InventoryAllocation:
    allocation = db.get(InventoryAllocation, allocation_id)
    if not allocation:
        raise NotFoundError("InventoryAllocation", allocation_id)
    return allocation


def list_allocations(
    db: Session,
    *,
    item_id: int | None = None,
    job_id: str | None = None,
    bid_id: str | None = None,
    status: AllocationStatus | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[InventoryAllocation], int]:
    offset, limit = parse_paging(offset, limit)

    stmt = select(InventoryAllocation)
    if item_id is not None:
        stmt = stmt.where(InventoryAllocation.item_id == item_id)
    if job_id is not None:
        stmt = stmt.where(InventoryAllocation.job_id == job_id)
    if bid_id is not None:
        stmt = stmt.where(InventoryAllocation.bid_id == bid_id)
    if status is not None:
        stmt = stmt.where(InventoryAllocation.status == status)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(InventoryAllocation.created_at.desc(), InventoryAllocation.id.desc()).offset(offset).limit(limit)
    ).scalars()
    return list(rows), int(total)


# ---------- Écritures ----------
@retry_on_contention
def create_allocation(
    db: Session,
    *,
    item_id: int,
    quantity,
    job_id: str | None = None,
    bid_id: str | None = None,
    expected_use_date: date | None = None,
    allocated_by: str | None = None,
    notes: str | None = None,
) -> InventoryAllocation:
    """
    Réserve `quantity` sur l'article, dans la limite du quantity_available
    lu sous verrou : deux réservations concurrentes ne peuvent pas dépasser
    le disponible.
    """
    if not job_id and not bid_id:
        raise InputValidationError("An allocation needs a job or a bid", field="job_id")
    quantity = parse_decimal(quantity, "quantity", positive=True)

    with unit_of_work(db):
        # 🔒
        item = catalog.get_for_update(db, item_id)
        if item.quantity_available < quantity:
            raise InputValidationError(
                f"Insufficient quantity available ({item.quantity_available} < {quantity})",
                field="quantity",
                value=quantity,
            )

        allocation = InventoryAllocation(
            item_id=item.id,
            job_id=job_id,
            bid_id=bid_id,
            quantity_allocated=quantity,
            quantity_returned=ZERO,
            status=AllocationStatus.allocated,
            expected_use_date=expected_use_date,
            allocated_by=allocated_by,
            notes=notes,
        )
        db.add(allocation)
        catalog.apply(db, item, quantity_allocated=item.quantity_allocated + quantity)
        publish_after_commit(db, "inventory.allocation_created", _payload(allocation))

    logger.info(
        "inventory_allocation_created",
        allocation_id=allocation.id,
        item_id=item_id,
        quantity=str(quantity),
        available=str(item.quantity_available),
    )
    return allocation


@retry_on_contention
def issue_allocation(db: Session, allocation_id: int, *, performed_by: str | None = None) -> InventoryAllocation:
    """allocated -> issued : sortie ledger de la quantité réservée, la réservation est consommée."""
    with unit_of_work(db):
        allocation = _lock_allocation(db, allocation_id)
        _ensure_status(
            allocation,
            AllocationStatus.allocated,
            "issue",
            "Only allocated reservations can be issued",
        )

        now = datetime.now(timezone.utc)
        entry, item = inventory.post_transaction(
            db,
            item_id=allocation.item_id,
            transaction_type=TransactionType.issue,
            quantity=allocation.quantity_allocated,
            job_id=allocation.job_id,
            bid_id=allocation.bid_id,
            reference_number=f"ALLOC-{allocation.id}",
            notes=f"Issued for {_target(allocation)}",
            performed_by=performed_by,
            transaction_date=now,
            include_deleted_item=True,
        )
        catalog.apply(db, item, quantity_allocated=max(ZERO, item.quantity_allocated - allocation.quantity_allocated))

        allocation.status = AllocationStatus.issued
        allocation.issued_at = now
        db.flush()
        publish_after_commit(
            db,
            "inventory.allocation_issued",
            _payload(allocation) | {"transaction_number": entry.transaction_number},
        )

    logger.info(
        "inventory_allocation_issued",
        allocation_id=allocation_id,
        transaction_number=entry.transaction_number,
        balance_after=str(entry.balance_after),
    )
    return allocation


@retry_on_contention
def return_allocation(
    db: Session,
    allocation_id: int,
    *,
    quantity,
    performed_by: str | None = None,
    notes: str | None = None,
) -> InventoryAllocation:
    """issued -> returned : la part non utilisée revient en stock (écriture "return")."""
    quantity = parse_decimal(quantity, "quantity", positive=True)

    with unit_of_work(db):
        allocation = _lock_allocation(db, allocation_id)
        _ensure_status(
            allocation,
            AllocationStatus.issued,
            "return",
            "Only issued reservations can be returned",
        )
        if quantity > allocation.quantity_allocated:
            raise InputValidationError(
                "Return quantity exceeds allocated quantity",
                field="quantity",
                value=quantity,
            )

        entry, _ = inventory.post_transaction(
            db,
            item_id=allocation.item_id,
            transaction_type=TransactionType.return_,
            quantity=quantity,
            job_id=allocation.job_id,
            bid_id=allocation.bid_id,
            reference_number=f"ALLOC-{allocation.id}",
            notes=notes or f"Returned from {_target(allocation)}",
            performed_by=performed_by,
            include_deleted_item=True,
        )
        allocation.quantity_returned = quantity
        allocation.status = AllocationStatus.returned
        db.flush()
        publish_after_commit(
            db,
            "inventory.allocation_returned",
            _payload(allocation) | {"quantity_returned": str(quantity)},
        )

    logger.info(
        "inventory_allocation_returned",
        allocation_id=allocation_id,
        quantity=str(quantity),
        transaction_number=entry.transaction_number,
    )
    return allocation


@retry_on_contention
def cancel_allocation(db: Session, allocation_id: int, *, cancelled_by: str | None = None) -> InventoryAllocation:
    """allocated -> cancelled : la quantité réservée redevient disponible."""
    with unit_of_work(db):
        allocation = _lock_allocation(db, allocation_id)
        _ensure_status(
            allocation,
            AllocationStatus.allocated,
            "cancel",
            "Only allocated reservations can be cancelled",
        )
        _release(db, allocation.item_id, allocation.quantity_allocated, include_deleted=True)
        allocation.status = AllocationStatus.cancelled
        db.flush()
        publish_after_commit(db, "inventory.allocation_cancelled", _payload(allocation))

    logger.info("inventory_allocation_cancelled", allocation_id=allocation_id, cancelled_by=cancelled_by)
    return allocation
