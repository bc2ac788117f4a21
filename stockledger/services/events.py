"""
Événements sortants publiés APRÈS commit.

Les effets de bord (notifications, écriture de dépenses...) ne doivent jamais
bloquer ni faire échouer la transaction cœur : on les met en file sur la
session, on les déclenche sur `after_commit`, on les jette sur rollback.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from stockledger.app.core.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], None]

_PENDING_KEY = "stockledger.pending_events"
_subscribers: dict[str, list[Handler]] = defaultdict(list)


def subscribe(name: str, handler: Handler) -> None:
    _subscribers[name].append(handler)


def unsubscribe_all() -> None:
    _subscribers.clear()


def publish_after_commit(db: Session, name: str, payload: dict[str, Any]) -> None:
    db.info.setdefault(_PENDING_KEY, []).append((name, payload, None))


def call_after_commit(db: Session, callback: Callable[[], None], *, name: str) -> None:
    db.info.setdefault(_PENDING_KEY, []).append((name, None, callback))


def _dispatch(name: str, payload: dict[str, Any] | None, callback: Callable[[], None] | None) -> None:
    handlers: list[Callable[[], None]] = []
    if callback is not None:
        handlers.append(callback)
    else:
        handlers.extend(lambda h=h: h(payload) for h in _subscribers.get(name, []))

    for handler in handlers:
        try:
            handler()
        except Exception:
            logger.exception("event_handler_failed", event_name=name)


@event.listens_for(Session, "after_commit")
def _run_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for name, payload, callback in pending:
        _dispatch(name, payload, callback)


@event.listens_for(Session, "after_soft_rollback")
def _drop_pending(session: Session, previous_transaction: SessionTransaction) -> None:
    # un rollback de SAVEPOINT ne concerne pas les événements déjà en file
    if previous_transaction.nested or previous_transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.debug("events_discarded", count=len(dropped))
