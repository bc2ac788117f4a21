"""
Alertes stock (low_stock / out_of_stock).

Purement consultatif : un échec de création est loggé mais ne fait jamais
échouer la transaction qui l'a déclenché (SAVEPOINT dédié). Au plus une alerte
non résolue par article ; l'acquittement et la résolution sont gérés ailleurs.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockledger.app.core.logging import get_logger
from stockledger.app.db.models.core_types import AlertSeverity, AlertType
from stockledger.app.db.models.models_v1 import InventoryItem, StockAlert
from stockledger.services.events import publish_after_commit

logger = get_logger(__name__)


def _fmt(value: Decimal) -> str:
    return format(value.normalize(), "f")


def get_open_alert(db: Session, item_id: int) -> StockAlert | None:
    return (
        db.execute(
            select(StockAlert)
            .where(StockAlert.item_id == item_id)
            .where(StockAlert.is_resolved.is_(False))
            .order_by(StockAlert.id)
            .limit(1)
        )
        .scalars()
        .first()
    )


def _create_if_needed(db: Session, item_id: int) -> StockAlert | None:
    item = db.get(InventoryItem, item_id)
    if item is None:
        return None

    on_hand = item.quantity_on_hand
    reorder = item.reorder_level
    if on_hand > reorder:
        return None
    if get_open_alert(db, item_id) is not None:
        return None

    if on_hand == 0:
        alert_type, severity = AlertType.out_of_stock, AlertSeverity.critical
        message = f"Item {item.name} is out of stock (reorder level {_fmt(reorder)})"
    else:
        alert_type, severity = AlertType.low_stock, AlertSeverity.warning
        message = f"Item {item.name} is below reorder level ({_fmt(on_hand)} <= {_fmt(reorder)})"

    alert = StockAlert(
        item_id=item_id,
        alert_type=alert_type,
        severity=severity,
        message=message,
        current_quantity=on_hand,
        threshold_quantity=reorder,
        is_acknowledged=False,
        is_resolved=False,
    )
    db.add(alert)
    db.flush()
    return alert


def check_and_create_alert(db: Session, item_id: int) -> StockAlert | None:
    """
    Crée une alerte si on_hand <= reorder_level et qu'aucune alerte non résolue
    n'existe déjà pour l'article.

    Appelé par le ledger sous le verrou de l'article : deux transactions
    concurrentes sur le même article ne peuvent pas dédoublonner en parallèle.
    """
    try:
        with db.begin_nested():
            alert = _create_if_needed(db, item_id)
    except SQLAlchemyError:
        logger.exception("stock_alert_failed", item_id=item_id)
        return None

    if alert is not None:
        logger.info(
            "stock_alert_created",
            item_id=item_id,
            alert_type=alert.alert_type.value,
            current_quantity=str(alert.current_quantity),
        )
        publish_after_commit(
            db,
            "inventory.alert_created",
            {"alert_id": alert.id, "item_id": item_id, "alert_type": alert.alert_type.value},
        )
    return alert


def list_open_alerts(db: Session, *, item_id: int | None = None) -> list[StockAlert]:
    stmt = select(StockAlert).where(StockAlert.is_resolved.is_(False))
    if item_id is not None:
        stmt = stmt.where(StockAlert.item_id == item_id)
    return list(db.execute(stmt.order_by(StockAlert.created_at.desc(), StockAlert.id.desc())).scalars())
