"""
Procurement service : cycle de vie des bons de commande (PO).

Ce module orchestre les flux d'achat (création, approbation, envoi,
réception, annulation, clôture) mais ne contient AUCUNE logique de calcul de
stock : toute écriture de quantité passe par services.inventory (ledger)
et services.catalog (get_for_update / apply).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from stockledger.app.core.config import get_settings
from stockledger.app.core.exceptions import (
    InputValidationError,
    InvalidStateError,
    NotFoundError,
    OverReceiptError,
)
from stockledger.app.core.logging import get_logger
from stockledger.app.db.models.core_types import POStatus, TransactionType
from stockledger.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderLine
from stockledger.app.db.session import retry_on_contention, unit_of_work
from stockledger.app.db.types import MONEY_SCALE, quantize
from stockledger.services import catalog, inventory
from stockledger.services.events import call_after_commit, publish_after_commit
from stockledger.services.numbering import allocate_number
from stockledger.services.validators import parse_decimal, parse_money, parse_paging

logger = get_logger(__name__)

ZERO = Decimal("0")

# Table de transitions : seule source de vérité du workflow
PO_TRANSITIONS: dict[POStatus, frozenset[POStatus]] = {
    POStatus.draft: frozenset({POStatus.pending_approval, POStatus.approved, POStatus.cancelled}),
    POStatus.pending_approval: frozenset({POStatus.approved, POStatus.cancelled}),
    POStatus.approved: frozenset({POStatus.sent, POStatus.cancelled}),
    POStatus.sent: frozenset({POStatus.partially_received, POStatus.received, POStatus.cancelled}),
    POStatus.partially_received: frozenset(
        {POStatus.partially_received, POStatus.received, POStatus.cancelled}
    ),
    POStatus.received: frozenset({POStatus.closed}),
    POStatus.cancelled: frozenset(),
    POStatus.closed: frozenset(),
}

# lignes modifiables tant que le PO peut encore être approuvé
EDITABLE_STATUSES = frozenset(s for s, targets in PO_TRANSITIONS.items() if POStatus.approved in targets)
RECEIVABLE_STATUSES = frozenset(s for s, targets in PO_TRANSITIONS.items() if POStatus.received in targets)

# PO réellement engagés dans le "on order"
ENGAGED_PO_STATUSES = frozenset({POStatus.approved, POStatus.sent, POStatus.partially_received})

ExpensePoster = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class LineInput:
    item_id: int
    quantity_ordered: Any
    unit_cost: Any
    expected_delivery_date: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ReceiveLine:
    line_id: int
    quantity: Any


# ---------- Helpers ----------
def can_transition(current: POStatus, target: POStatus) -> bool:
    return target in PO_TRANSITIONS[current]


def ensure_transition(po: PurchaseOrder, target: POStatus, *, operation: str, message: str) -> None:
    if not can_transition(po.status, target):
        raise InvalidStateError(
            message,
            po_id=po.id,
            current_status=po.status.value,
            operation=operation,
        )


def _ensure_editable(po: PurchaseOrder, operation: str) -> None:
    if po.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            "Purchase order can only be edited before approval",
            po_id=po.id,
            current_status=po.status.value,
            operation=operation,
        )


def _lock_po(db: Session, po_id: int) -> PurchaseOrder:
    po = (
        db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .where(PurchaseOrder.is_deleted.is_(False))
            .with_for_update()
            .options(selectinload(PurchaseOrder.lines))
            .execution_options(populate_existing=True)
        )
        .scalars()
        .one_or_none()
    )
    if not po:
        raise NotFoundError("PurchaseOrder", po_id)
    return po


def _line_total(quantity: Decimal, unit_cost: Decimal) -> Decimal:
    return quantize(quantity * unit_cost, MONEY_SCALE)


def _recompute_totals(po: PurchaseOrder) -> None:
    po.subtotal = quantize(sum((ln.line_total for ln in po.lines), ZERO), MONEY_SCALE)
    po.total_amount = quantize(po.subtotal + po.tax_amount + po.shipping_cost, MONEY_SCALE)


def _parse_line(line: LineInput) -> tuple[Decimal, Decimal]:
    quantity = parse_decimal(line.quantity_ordered, "quantity_ordered", positive=True)
    unit_cost = parse_money(line.unit_cost, "unit_cost")
    return quantity, unit_cost


def _new_line(db: Session, line: LineInput) -> PurchaseOrderLine:
    quantity, unit_cost = _parse_line(line)
    catalog.get_item(db, line.item_id)
    return PurchaseOrderLine(
        item_id=line.item_id,
        quantity_ordered=quantity,
        quantity_received=ZERO,
        unit_cost=unit_cost,
        line_total=_line_total(quantity, unit_cost),
        expected_delivery_date=line.expected_delivery_date,
        notes=line.notes,
    )


def _find_line(po: PurchaseOrder, line_id: int) -> PurchaseOrderLine:
    for line in po.lines:
        if line.id == line_id:
            return line
    raise NotFoundError("PurchaseOrderLine", line_id)


def _outstanding(line: PurchaseOrderLine) -> Decimal:
    return line.quantity_ordered - line.quantity_received


def _shift_on_order(db: Session, lines: Iterable[PurchaseOrderLine], sign: int) -> None:
    """
    Ajoute (sign=+1) ou retire (sign=-1) le reliquat de chaque ligne du
    quantity_on_order des articles, plancher à zéro.
    Verrous pris dans l'ordre des item_id : pas d'interblocage entre PO.
    Le retrait passe aussi sur les articles supprimés depuis l'approbation.
    """
    for line in sorted(lines, key=lambda ln: ln.item_id):
        outstanding = _outstanding(line)
        if outstanding <= 0:
            continue
        item = catalog.get_for_update(db, line.item_id, include_deleted=sign < 0)
        on_order = max(ZERO, item.quantity_on_order + sign * outstanding)
        catalog.apply(db, item, quantity_on_order=on_order)


def _po_payload(po: PurchaseOrder) -> dict[str, Any]:
    return {
        "po_id": po.id,
        "po_number": po.po_number,
        "supplier_id": po.supplier_id,
        "status": po.status.value,
        "total_amount": str(po.total_amount),
    }


# ---------- Lecture ----------
def get_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    po = (
        db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .where(PurchaseOrder.is_deleted.is_(False))
            .options(selectinload(PurchaseOrder.lines))
        )
        .scalars()
        .one_or_none()
    )
    if not po:
        raise NotFoundError("PurchaseOrder", po_id)
    return po


def list_purchase_orders(
    db: Session,
    *,
    status: POStatus | None = None,
    supplier_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[PurchaseOrder], int]:
    offset, limit = parse_paging(offset, limit)

    stmt = select(PurchaseOrder).where(PurchaseOrder.is_deleted.is_(False))
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    if start is not None:
        stmt = stmt.where(PurchaseOrder.order_date >= start)
    if end is not None:
        stmt = stmt.where(PurchaseOrder.order_date <= end)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc()).offset(offset).limit(limit)
    ).scalars()
    return list(rows), int(total)


# ---------- Création / édition (draft, pending_approval) ----------
@retry_on_contention
def create_purchase_order(
    db: Session,
    *,
    supplier_id: int,
    lines: list[LineInput],
    order_date: date | None = None,
    expected_delivery_date: date | None = None,
    tax_amount="0",
    shipping_cost="0",
    notes: str | None = None,
    created_by: str | None = None,
) -> PurchaseOrder:
    """Crée un PO en draft avec ses lignes (quantity_received = 0). Aucun effet stock."""
    tax_amount = parse_money(tax_amount, "tax_amount")
    shipping_cost = parse_money(shipping_cost, "shipping_cost")
    for line in lines:
        _parse_line(line)
    item_ids = [line.item_id for line in lines]
    if len(set(item_ids)) != len(item_ids):
        raise InputValidationError("An item can appear only once per purchase order", field="lines")

    with unit_of_work(db):
        catalog.get_supplier(db, supplier_id)
        po_lines = [_new_line(db, line) for line in lines]

        settings = get_settings()
        po_number = allocate_number(
            db,
            prefix=settings.purchase_order_prefix,
            scope=settings.numbering_scope,
            fallback_column=PurchaseOrder.po_number,
        )
        po = PurchaseOrder(
            po_number=po_number,
            supplier_id=supplier_id,
            status=POStatus.draft,
            order_date=order_date or datetime.now(timezone.utc).date(),
            expected_delivery_date=expected_delivery_date,
            tax_amount=tax_amount,
            shipping_cost=shipping_cost,
            notes=notes,
            created_by=created_by,
            lines=po_lines,
        )
        _recompute_totals(po)
        db.add(po)
        db.flush()

    logger.info("purchase_order_created", po_id=po.id, po_number=po.po_number, lines=len(po_lines))
    return po


@retry_on_contention
def update_purchase_order(db: Session, po_id: int, changes: dict[str, Any]) -> PurchaseOrder:
    allowed = {"expected_delivery_date", "tax_amount", "shipping_cost", "notes"}
    unknown = set(changes) - allowed
    if unknown:
        raise InputValidationError("Field cannot be updated", field=sorted(unknown)[0])
    cleaned = dict(changes)
    for field in ("tax_amount", "shipping_cost"):
        if field in cleaned:
            cleaned[field] = parse_money(cleaned[field], field)

    with unit_of_work(db):
        po = _lock_po(db, po_id)
        _ensure_editable(po, "update")
        for field, value in cleaned.items():
            setattr(po, field, value)
        _recompute_totals(po)
    return po


@retry_on_contention
def add_line(db: Session, po_id: int, line: LineInput) -> PurchaseOrderLine:
    _parse_line(line)
    with unit_of_work(db):
        po = _lock_po(db, po_id)
        _ensure_editable(po, "add_line")
        if any(existing.item_id == line.item_id for existing in po.lines):
            raise InputValidationError("Item already on purchase order", field="item_id", value=line.item_id)
        new_line = _new_line(db, line)
        po.lines.append(new_line)
        _recompute_totals(po)
        db.flush()
    return new_line


@retry_on_contention
def update_line(
    db: Session,
    po_id: int,
    line_id: int,
    *,
    quantity_ordered=None,
    unit_cost=None,
    expected_delivery_date: date | None = None,
    notes: str | None = None,
) -> PurchaseOrderLine:
    if quantity_ordered is not None:
        quantity_ordered = parse_decimal(quantity_ordered, "quantity_ordered", positive=True)
    if unit_cost is not None:
        unit_cost = parse_money(unit_cost, "unit_cost")

    with unit_of_work(db):
        po = _lock_po(db, po_id)
        _ensure_editable(po, "update_line")
        line = _find_line(po, line_id)
        if quantity_ordered is not None:
            line.quantity_ordered = quantity_ordered
        if unit_cost is not None:
            line.unit_cost = unit_cost
        if expected_delivery_date is not None:
            line.expected_delivery_date = expected_delivery_date
        if notes is not None:
            line.notes = notes
        line.line_total = _line_total(line.quantity_ordered, line.unit_cost)
        _recompute_totals(po)
    return line


@retry_on_contention
def delete_line(db: Session, po_id: int, line_id: int) -> None:
    with unit_of_work(db):
        po = _lock_po(db, po_id)
        _ensure_editable(po, "delete_line")
        line = _find_line(po, line_id)
        po.lines.remove(line)
        _recompute_totals(po)


# ---------- Transitions ----------
@retry_on_contention
def submit_for_approval(db: Session, po_id: int) -> PurchaseOrder:
    with unit_of_work(db):
        po = _lock_po(db, po_id)
        ensure_transition(
            po,
            POStatus.pending_approval,
            operation="submit",
            message="Only draft purchase orders can be submitted for approval",
        )
        po.status = POStatus.pending_approval
    logger.info("purchase_order_submitted", po_id=po.id)
    return po


@retry_on_contention
def approve_purchase_order(
    db: Session,
    po_id: int,
    *,
    approved_by: str | None,
    expense_poster: ExpensePoster | None = None,
) -> PurchaseOrder:
    """
    draft / pending_approval -> approved.

    Les quantités commandées passent dans quantity_on_order des articles.
    `expense_poster` (collaborateur externe optionnel) n'est appelé qu'après
    commit ; son échec est loggé, jamais propagé.
    """
    with unit_of_work(db):
        po = _lock_po(db, po_id)
        ensure_transition(
            po,
            POStatus.approved,
            operation="approve",
            message="Only draft or pending purchase orders can be approved",
        )
        if not po.lines:
            raise InputValidationError("Purchase order has no lines", field="lines")

        po.status = POStatus.approved
        po.approved_by = approved_by
        po.approved_at = datetime.now(timezone.utc)
        _shift_on_order(db, po.lines, +1)

        payload = _po_payload(po) | {"approved_by": approved_by}
        publish_after_commit(db, "purchase_order.approved", payload)
        if expense_poster is not None:
            call_after_commit(db, lambda: expense_poster(payload), name="purchase_order.expense")

    logger.info("purchase_order_approved", po_id=po.id, approved_by=approved_by)
    return po


@retry_on_contention
def send_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    with unit_of_work(db):
        po = _lock_po(db, po_id)
        ensure_transition(
            po,
            POStatus.sent,
            operation="send",
            message="Purchase order must be approved before sending",
        )
        po.status = POStatus.sent
        publish_after_commit(db, "purchase_order.sent", _po_payload(po))
    logger.info("purchase_order_sent", po_id=po.id)
    return po


def _receive(
    db: Session,
    po_id: int,
    lines: list[ReceiveLine] | None,
    *,
    received_by: str | None,
) -> PurchaseOrder:
    # validation d'entrée : avant tout accès stockage
    requested_qty: dict[int, Decimal] = {}
    if lines is not None:
        if not lines:
            raise InputValidationError("At least one line must be received", field="lines")
        for rl in lines:
            if rl.line_id in requested_qty:
                raise InputValidationError("Line submitted twice", field="line_id", value=rl.line_id)
            requested_qty[rl.line_id] = parse_decimal(rl.quantity, "quantity", positive=True)

    with unit_of_work(db):
        po = _lock_po(db, po_id)
        # received : on laisse la validation signaler le dépassement (OverReceipt)
        if po.status not in RECEIVABLE_STATUSES and po.status != POStatus.received:
            raise InvalidStateError(
                "Purchase order must be sent before receiving",
                po_id=po.id,
                current_status=po.status.value,
                operation="receive",
            )

        if lines is None:
            requested = [(ln, _outstanding(ln)) for ln in po.lines if _outstanding(ln) > 0]
        else:
            by_id = {ln.id: ln for ln in po.lines}
            requested = []
            for line_id, qty in requested_qty.items():
                if line_id not in by_id:
                    raise InputValidationError(
                        "Line is not part of this purchase order", field="line_id", value=line_id
                    )
                requested.append((by_id[line_id], qty))

        # 1) validation complète : tout ou rien
        for line, qty in requested:
            if line.quantity_received + qty > line.quantity_ordered:
                raise OverReceiptError(
                    po_id=po.id,
                    line_id=line.id,
                    item_id=line.item_id,
                    ordered=line.quantity_ordered,
                    previously_received=line.quantity_received,
                    attempted=qty,
                )

        if po.status not in RECEIVABLE_STATUSES or not requested:
            raise InvalidStateError(
                "Nothing left to receive on this purchase order",
                po_id=po.id,
                current_status=po.status.value,
                operation="receive",
            )

        # 2) mutations (verrous articles dans l'ordre des item_id)
        now = datetime.now(timezone.utc)
        for line, qty in sorted(requested, key=lambda pair: pair[0].item_id):
            line.quantity_received = line.quantity_received + qty
            line.actual_delivery_date = now

            _, item = inventory.post_transaction(
                db,
                item_id=line.item_id,
                transaction_type=TransactionType.receipt,
                quantity=qty,
                unit_cost=line.unit_cost,
                purchase_order_id=po.id,
                reference_number=po.po_number,
                notes=f"Received from PO {po.po_number}",
                performed_by=received_by,
                include_deleted_item=True,
            )
            catalog.apply(db, item, quantity_on_order=max(ZERO, item.quantity_on_order - qty))

        # 3) statut du PO
        if all(ln.quantity_received == ln.quantity_ordered for ln in po.lines):
            new_status = POStatus.received
            po.actual_delivery_date = now
        elif any(ln.quantity_received > 0 for ln in po.lines):
            new_status = POStatus.partially_received
        else:
            new_status = po.status
        if new_status != po.status:
            ensure_transition(po, new_status, operation="receive", message="Invalid receipt transition")
            po.status = new_status
        db.flush()

        publish_after_commit(
            db,
            "purchase_order.received",
            _po_payload(po) | {"lines": {ln.id: str(qty) for ln, qty in requested}},
        )

    logger.info(
        "purchase_order_received",
        po_id=po.id,
        status=po.status.value,
        lines=len(requested),
        received_by=received_by,
    )
    return po


@retry_on_contention
def receive_purchase_order(
    db: Session,
    po_id: int,
    *,
    lines: list[ReceiveLine] | None = None,
    received_by: str | None = None,
) -> PurchaseOrder:
    """
    Réception. Sans `lines` : tout le reliquat de chaque ligne est reçu.
    Une seule transaction ; un dépassement sur une ligne rejette l'appel entier.
    """
    return _receive(db, po_id, lines, received_by=received_by)


@retry_on_contention
def receive_partial_purchase_order(
    db: Session,
    po_id: int,
    *,
    lines: list[ReceiveLine],
    received_by: str | None = None,
) -> PurchaseOrder:
    if lines is None:
        raise InputValidationError("lines are required for a partial receipt", field="lines")
    return _receive(db, po_id, lines, received_by=received_by)


@retry_on_contention
def cancel_purchase_order(
    db: Session,
    po_id: int,
    *,
    reason: str | None = None,
    cancelled_by: str | None = None,
) -> PurchaseOrder:
    """Annulation possible tant que le PO n'est ni received ni closed ; le reliquat sort du on_order."""
    with unit_of_work(db):
        po = _lock_po(db, po_id)
        ensure_transition(
            po,
            POStatus.cancelled,
            operation="cancel",
            message="Received or closed purchase orders cannot be cancelled",
        )
        if po.status in ENGAGED_PO_STATUSES:
            _shift_on_order(db, po.lines, -1)

        po.status = POStatus.cancelled
        if reason:
            stamp = f"Cancelled: {reason}"
            po.notes = f"{po.notes}\n{stamp}" if po.notes else stamp
        publish_after_commit(db, "purchase_order.cancelled", _po_payload(po) | {"reason": reason})

    logger.info("purchase_order_cancelled", po_id=po.id, cancelled_by=cancelled_by, reason=reason)
    return po


@retry_on_contention
def close_purchase_order(db: Session, po_id: int) -> PurchaseOrder:
    with unit_of_work(db):
        po = _lock_po(db, po_id)
        ensure_transition(
            po,
            POStatus.closed,
            operation="close",
            message="Only received purchase orders can be closed",
        )
        po.status = POStatus.closed
        publish_after_commit(db, "purchase_order.closed", _po_payload(po))
    logger.info("purchase_order_closed", po_id=po.id)
    return po
