"""
Catalogue articles (master data).

Les quantités ne s'écrivent jamais ici : seul le ledger (services.inventory)
les modifie, via get_for_update() + apply() sous verrou de ligne.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockledger.app.core.exceptions import InputValidationError, NotFoundError
from stockledger.app.core.logging import get_logger
from stockledger.app.db.models.core_types import ItemHistoryAction, StockStatus
from stockledger.app.db.models.models_v1 import InventoryItem, ItemHistory, Supplier
from stockledger.app.db.session import retry_on_contention, unit_of_work
from stockledger.services.validators import parse_decimal, parse_money, parse_paging

logger = get_logger(__name__)

UPDATABLE_FIELDS = {
    "code",
    "name",
    "description",
    "primary_supplier_id",
    "unit_cost",
    "reorder_level",
    "reorder_quantity",
    "notes",
    "is_active",
}
QUANTITY_FIELDS = {
    "quantity_on_hand",
    "quantity_allocated",
    "quantity_available",
    "quantity_on_order",
    "status",
}
_QUANTITY_SETTINGS = {"reorder_level", "reorder_quantity"}


def calculate_stock_status(
    quantity_on_hand: Decimal,
    reorder_level: Decimal,
    quantity_on_order: Decimal,
) -> StockStatus:
    """
    Table de décision du statut stock (fonction pure, l'ordre compte) :
    on_hand == 0 -> out_of_stock ; on_hand <= reorder -> low_stock ;
    on_order > 0 -> on_order ; sinon in_stock.
    """
    if quantity_on_hand == 0:
        return StockStatus.out_of_stock
    if quantity_on_hand <= reorder_level:
        return StockStatus.low_stock
    if quantity_on_order > 0:
        return StockStatus.on_order
    return StockStatus.in_stock


# ---------- Suppliers ----------
def create_supplier(
    db: Session,
    *,
    code: str,
    name: str,
    email: str | None = None,
    lead_time_days: int = 14,
) -> Supplier:
    if not code or not code.strip():
        raise InputValidationError("code is required", field="code", value=code)
    with unit_of_work(db):
        exists = db.execute(select(Supplier).where(Supplier.code == code)).scalar_one_or_none()
        if exists:
            raise InputValidationError("Supplier code already exists", field="code", value=code)
        supplier = Supplier(code=code.strip(), name=name, email=email, lead_time_days=lead_time_days)
        db.add(supplier)
        db.flush()
    return supplier


def get_supplier(db: Session, supplier_id: int) -> Supplier:
    supplier = db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier", supplier_id)
    return supplier


# ---------- Items ----------
def _log_history(
    db: Session,
    item_id: int,
    action: ItemHistoryAction,
    *,
    performed_by: str | None,
    description: str,
    field_changed: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
) -> None:
    db.add(
        ItemHistory(
            item_id=item_id,
            action=action,
            field_changed=field_changed,
            old_value=None if old_value is None else str(old_value),
            new_value=None if new_value is None else str(new_value),
            description=description,
            performed_by=performed_by,
        )
    )


def _ensure_code_available(db: Session, code: str, *, exclude_id: int | None = None) -> None:
    # unicité sur les articles actifs uniquement (un code supprimé est réutilisable)
    stmt = (
        select(InventoryItem.id)
        .where(InventoryItem.code == code)
        .where(InventoryItem.is_deleted.is_(False))
    )
    if exclude_id is not None:
        stmt = stmt.where(InventoryItem.id != exclude_id)
    if db.execute(stmt).first():
        raise InputValidationError("Item code already exists", field="code", value=code)


def create_item(
    db: Session,
    *,
    code: str,
    name: str,
    unit_cost="0",
    reorder_level="0",
    reorder_quantity="0",
    description: str | None = None,
    primary_supplier_id: int | None = None,
    notes: str | None = None,
    performed_by: str | None = None,
) -> InventoryItem:
    """Crée un article à quantités nulles ; son statut initial vaut donc out_of_stock."""
    if not code or not code.strip():
        raise InputValidationError("code is required", field="code", value=code)
    if not name or not name.strip():
        raise InputValidationError("name is required", field="name", value=name)
    unit_cost = parse_money(unit_cost, "unit_cost")
    reorder_level = parse_decimal(reorder_level, "reorder_level")
    reorder_quantity = parse_decimal(reorder_quantity, "reorder_quantity")

    zero = Decimal("0")
    with unit_of_work(db):
        _ensure_code_available(db, code.strip())
        if primary_supplier_id is not None:
            get_supplier(db, primary_supplier_id)

        item = InventoryItem(
            code=code.strip(),
            name=name.strip(),
            description=description,
            primary_supplier_id=primary_supplier_id,
            unit_cost=unit_cost,
            quantity_on_hand=zero,
            quantity_allocated=zero,
            quantity_available=zero,
            quantity_on_order=zero,
            reorder_level=reorder_level,
            reorder_quantity=reorder_quantity,
            status=calculate_stock_status(zero, reorder_level, zero),
            notes=notes,
        )
        db.add(item)
        db.flush()
        _log_history(db, item.id, ItemHistoryAction.created, performed_by=performed_by, description="Item created")

    logger.info("inventory_item_created", item_id=item.id, code=item.code)
    return item


def get_item(db: Session, item_id: int, *, include_deleted: bool = False) -> InventoryItem:
    item = db.get(InventoryItem, item_id)
    if not item or (item.is_deleted and not include_deleted):
        raise NotFoundError("InventoryItem", item_id)
    return item


def list_items(
    db: Session,
    *,
    status: StockStatus | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[InventoryItem], int]:
    offset, limit = parse_paging(offset, limit)
    stmt = select(InventoryItem).where(InventoryItem.is_deleted.is_(False))
    if status is not None:
        stmt = stmt.where(InventoryItem.status == status)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                InventoryItem.name.ilike(pattern),
                InventoryItem.code.ilike(pattern),
                InventoryItem.description.ilike(pattern),
            )
        )

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(InventoryItem.name).offset(offset).limit(limit)).scalars().all()
    return list(rows), int(total)


@retry_on_contention
def update_item(
    db: Session,
    item_id: int,
    changes: dict[str, Any],
    *,
    performed_by: str | None = None,
) -> InventoryItem:
    """
    Met à jour le master data.

    - quantités / statut interdits (ledger uniquement)
    - statut recalculé si reorder_level change
    - changement de coût unitaire tracé dans l'historique (price_changed)
    """
    forbidden = set(changes) & QUANTITY_FIELDS
    if forbidden:
        raise InputValidationError(
            "Quantities are maintained by the stock ledger",
            field=sorted(forbidden)[0],
        )
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InputValidationError("Unknown item field", field=sorted(unknown)[0])

    cleaned = dict(changes)
    if "code" in cleaned:
        code = cleaned["code"]
        if not isinstance(code, str) or not code.strip():
            raise InputValidationError("code is required", field="code", value=code)
        cleaned["code"] = code.strip()
    if "unit_cost" in cleaned:
        cleaned["unit_cost"] = parse_money(cleaned["unit_cost"], "unit_cost")
    for field in _QUANTITY_SETTINGS & set(cleaned):
        cleaned[field] = parse_decimal(cleaned[field], field)

    with unit_of_work(db):
        # verrou : le statut dépend des quantités que le ledger peut modifier en parallèle
        item = get_for_update(db, item_id)
        old_cost = item.unit_cost
        old_reorder = item.reorder_level

        if "code" in cleaned and cleaned["code"] != item.code:
            _ensure_code_available(db, cleaned["code"], exclude_id=item.id)

        if "primary_supplier_id" in cleaned and cleaned["primary_supplier_id"] is not None:
            get_supplier(db, cleaned["primary_supplier_id"])

        for field, value in cleaned.items():
            setattr(item, field, value)

        if "reorder_level" in cleaned and cleaned["reorder_level"] != old_reorder:
            item.status = calculate_stock_status(
                item.quantity_on_hand,
                item.reorder_level,
                item.quantity_on_order,
            )
            _log_history(
                db,
                item.id,
                ItemHistoryAction.reorder_level_changed,
                performed_by=performed_by,
                field_changed="reorder_level",
                old_value=old_reorder,
                new_value=item.reorder_level,
                description=f"Reorder level changed from {old_reorder} to {item.reorder_level}",
            )

        if "unit_cost" in cleaned and cleaned["unit_cost"] != old_cost:
            _log_history(
                db,
                item.id,
                ItemHistoryAction.price_changed,
                performed_by=performed_by,
                field_changed="unit_cost",
                old_value=old_cost,
                new_value=item.unit_cost,
                description=f"Unit cost changed from {old_cost} to {item.unit_cost}",
            )

    logger.info("inventory_item_updated", item_id=item_id, fields=sorted(cleaned))
    return item


@retry_on_contention
def delete_item(db: Session, item_id: int, *, performed_by: str | None = None) -> InventoryItem:
    """Soft delete ; la purge physique est un job externe."""
    with unit_of_work(db):
        item = get_for_update(db, item_id)
        item.is_deleted = True
        _log_history(db, item.id, ItemHistoryAction.deleted, performed_by=performed_by, description="Item deleted")

    logger.info("inventory_item_deleted", item_id=item_id)
    return item


def get_item_history(db: Session, item_id: int, *, limit: int = 100) -> list[ItemHistory]:
    get_item(db, item_id, include_deleted=True)
    rows = db.execute(
        select(ItemHistory)
        .where(ItemHistory.item_id == item_id)
        .order_by(ItemHistory.created_at.desc(), ItemHistory.id.desc())
        .limit(limit)
    ).scalars()
    return list(rows)


# ---------- Contrat ledger ----------
def get_for_update(db: Session, item_id: int, *, include_deleted: bool = False) -> InventoryItem:
    """
    Lecture verrouillée (SELECT ... FOR UPDATE) de l'article.

    `include_deleted` : les engagements déjà pris sur un article supprimé
    (on_order d'un PO, réservations) doivent pouvoir être soldés.

    Le verrou est tenu jusqu'au commit / rollback de la transaction courante.
    populate_existing : on veut les valeurs committées, pas l'identity map.
    """
    stmt = select(InventoryItem).where(InventoryItem.id == item_id)
    if not include_deleted:
        stmt = stmt.where(InventoryItem.is_deleted.is_(False))
    item = (
        db.execute(stmt.with_for_update().execution_options(populate_existing=True))
        .scalars()
        .one_or_none()
    )
    if not item:
        raise NotFoundError("InventoryItem", item_id)
    return item


def apply(
    db: Session,
    item: InventoryItem,
    *,
    quantity_on_hand: Decimal | None = None,
    quantity_on_order: Decimal | None = None,
    quantity_allocated: Decimal | None = None,
    restocked_at: datetime | None = None,
) -> InventoryItem:
    """
    Applique de nouvelles quantités à un article verrouillé par get_for_update().

    quantity_available et status sont TOUJOURS recalculés ici, jamais passés
    par l'appelant.
    """
    if quantity_on_hand is not None:
        item.quantity_on_hand = quantity_on_hand
    if quantity_on_order is not None:
        item.quantity_on_order = quantity_on_order
    if quantity_allocated is not None:
        item.quantity_allocated = quantity_allocated
    if restocked_at is not None:
        item.last_restocked_date = restocked_at

    item.quantity_available = item.quantity_on_hand - item.quantity_allocated
    item.status = calculate_stock_status(
        item.quantity_on_hand,
        item.reorder_level,
        item.quantity_on_order,
    )
    db.flush()
    return item
