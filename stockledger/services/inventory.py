from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.app.core.config import get_settings
from stockledger.app.core.exceptions import InputValidationError
from stockledger.app.core.logging import get_logger
from stockledger.app.db.models.core_types import StockStatus, TransactionType
from stockledger.app.db.models.models_v1 import InventoryItem, InventoryTransaction
from stockledger.app.db.session import retry_on_contention, unit_of_work
from stockledger.app.db.types import MONEY_SCALE, quantize
from stockledger.services import alerts, catalog
from stockledger.services.events import publish_after_commit
from stockledger.services.numbering import allocate_number
from stockledger.services.validators import parse_decimal, parse_money, parse_paging

logger = get_logger(__name__)


ADDITIVE_TYPES = {TransactionType.receipt, TransactionType.return_}
SUBTRACTIVE_TYPES = {TransactionType.issue, TransactionType.write_off}
ALERT_STATUSES = {StockStatus.low_stock, StockStatus.out_of_stock}


def parse_transaction_type(value) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError as exc:
        raise InputValidationError("Unknown transaction type", field="transaction_type", value=value) from exc


def apply_effect(on_hand: Decimal, transaction_type: TransactionType, quantity: Decimal) -> Decimal:
    """
    Effet d'une écriture sur quantity_on_hand.

    receipt / return : +qty ; issue / write_off : -qty ;
    adjustment : valeur ABSOLUE (pas un delta).
    Aucun garde-fou sur le négatif : un issue peut mettre le stock à découvert.
    """
    if transaction_type in ADDITIVE_TYPES:
        return on_hand + quantity
    if transaction_type in SUBTRACTIVE_TYPES:
        return on_hand - quantity
    if transaction_type == TransactionType.adjustment:
        return quantity
    raise InputValidationError("Unknown transaction type", field="transaction_type", value=transaction_type)


def replay_balance(entries: Iterable[InventoryTransaction], opening: Decimal = Decimal("0")) -> Decimal:
    """Rejoue les écritures (ordre de commit) et retourne le quantity_on_hand obtenu."""
    balance = opening
    for entry in entries:
        balance = apply_effect(balance, entry.transaction_type, entry.quantity)
    return balance


def post_transaction(
    db: Session,
    *,
    item_id: int,
    transaction_type: TransactionType | str,
    quantity,
    unit_cost=None,
    performed_by: str | None = None,
    purchase_order_id: int | None = None,
    job_id: str | None = None,
    bid_id: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    transaction_date: datetime | None = None,
    include_deleted_item: bool = False,
) -> tuple[InventoryTransaction, InventoryItem]:
    """
    Écrit une écriture de ledger dans la transaction EN COURS de `db`
    (pas de commit : l'appelant possède l'unité de travail).

    1. verrou exclusif sur l'article (SELECT ... FOR UPDATE)
    2. nouvelle quantité + recalcul available / status
    3. écriture append-only avec balance_after
    4. alerte si low_stock / out_of_stock

    `include_deleted_item` : réception contre une ligne de PO existante, même si
    l'article a été supprimé depuis.
    """
    transaction_type = parse_transaction_type(transaction_type)
    if transaction_type == TransactionType.adjustment:
        quantity = parse_decimal(quantity, "quantity")
    else:
        quantity = parse_decimal(quantity, "quantity", positive=True)
    if unit_cost is not None:
        unit_cost = parse_money(unit_cost, "unit_cost")

    now = datetime.now(timezone.utc)

    # 🔒 tenu jusqu'au commit / rollback
    item = catalog.get_for_update(db, item_id, include_deleted=include_deleted_item)
    previous = item.quantity_on_hand
    new_on_hand = apply_effect(previous, transaction_type, quantity)

    catalog.apply(
        db,
        item,
        quantity_on_hand=new_on_hand,
        restocked_at=now if transaction_type == TransactionType.receipt else None,
    )

    settings = get_settings()
    transaction_number = allocate_number(
        db,
        prefix=settings.transaction_prefix,
        scope=settings.numbering_scope,
        fallback_column=InventoryTransaction.transaction_number,
    )

    total_cost = None
    if unit_cost is not None:
        total_cost = quantize(quantity * unit_cost, MONEY_SCALE)

    entry = InventoryTransaction(
        transaction_number=transaction_number,
        item_id=item.id,
        transaction_type=transaction_type,
        quantity=quantity,
        unit_cost=unit_cost,
        total_cost=total_cost,
        balance_after=item.quantity_on_hand,
        purchase_order_id=purchase_order_id,
        job_id=job_id,
        bid_id=bid_id,
        reference_number=reference_number,
        notes=notes,
        performed_by=performed_by,
        transaction_date=transaction_date or now,
    )
    db.add(entry)
    db.flush()

    if item.status in ALERT_STATUSES:
        alerts.check_and_create_alert(db, item.id)

    logger.info(
        "stock_transaction_recorded",
        transaction_number=transaction_number,
        item_id=item.id,
        transaction_type=transaction_type.value,
        quantity=str(quantity),
        balance_before=str(previous),
        balance_after=str(item.quantity_on_hand),
        status=item.status.value,
    )
    publish_after_commit(
        db,
        "inventory.transaction_recorded",
        {
            "transaction_id": entry.id,
            "transaction_number": transaction_number,
            "item_id": item.id,
            "transaction_type": transaction_type.value,
            "quantity": str(quantity),
            "balance_after": str(item.quantity_on_hand),
        },
    )
    return entry, item


@retry_on_contention
def record_transaction(db: Session, **kwargs) -> tuple[InventoryTransaction, InventoryItem]:
    """
    Point d'entrée public : une écriture = une transaction DB.

    Mêmes arguments que post_transaction(). NotFound / validation : rien n'est
    écrit. Timeout de verrou : ContentionError, rejouée automatiquement.
    """
    with unit_of_work(db):
        entry, item = post_transaction(db, **kwargs)
    return entry, item


def get_item_transactions(db: Session, item_id: int, *, limit: int = 50) -> list[InventoryTransaction]:
    catalog.get_item(db, item_id, include_deleted=True)
    rows = db.execute(
        select(InventoryTransaction)
        .where(InventoryTransaction.item_id == item_id)
        .order_by(InventoryTransaction.transaction_date.desc(), InventoryTransaction.id.desc())
        .limit(limit)
    ).scalars()
    return list(rows)


def get_ledger(db: Session, item_id: int) -> list[InventoryTransaction]:
    """Toutes les écritures d'un article, dans l'ordre de commit."""
    rows = db.execute(
        select(InventoryTransaction)
        .where(InventoryTransaction.item_id == item_id)
        .order_by(InventoryTransaction.id.asc())
    ).scalars()
    return list(rows)


def list_transactions(
    db: Session,
    *,
    item_id: int | None = None,
    transaction_type: TransactionType | str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    job_id: str | None = None,
    bid_id: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[InventoryTransaction], int]:
    offset, limit = parse_paging(offset, limit)

    stmt = select(InventoryTransaction)
    if item_id is not None:
        stmt = stmt.where(InventoryTransaction.item_id == item_id)
    if transaction_type is not None:
        stmt = stmt.where(InventoryTransaction.transaction_type == parse_transaction_type(transaction_type))
    if start is not None:
        stmt = stmt.where(InventoryTransaction.transaction_date >= start)
    if end is not None:
        stmt = stmt.where(InventoryTransaction.transaction_date <= end)
    if job_id is not None:
        stmt = stmt.where(InventoryTransaction.job_id == job_id)
    if bid_id is not None:
        stmt = stmt.where(InventoryTransaction.bid_id == bid_id)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(InventoryTransaction.transaction_date.desc(), InventoryTransaction.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars()
    return list(rows), int(total)
