"""
Engine, sessions et unité de travail.

Postgres : verrous de ligne (SELECT ... FOR UPDATE) bornés par lock_timeout.

SQLite (dev / tests uniquement) : pas de verrou de ligne. Toute transaction,
lecture comprise, démarre en BEGIN IMMEDIATE et prend le verrou d'écriture de
la base entière jusqu'à la fin de la transaction. Une session qui a seulement
lu (get_purchase_order, list_items...) bloque donc les autres écrivains tant
qu'elle n'a pas fait commit(), rollback() ou close(). Les services qui écrivent
passent par unit_of_work() et terminent toujours leur transaction ; un appelant
qui lit hors unité de travail doit terminer la sienne lui-même (les sessions
par requête de l'API sont fermées en fin de requête).
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stockledger.app.core.config import get_settings
from stockledger.app.core.exceptions import ContentionError
from stockledger.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# lock_not_available, deadlock_detected
_PG_CONTENTION_SQLSTATES = {"55P03", "40P01"}


def build_engine(url: str, *, lock_timeout_ms: int | None = None) -> Engine:
    """
    Crée l'engine.

    - Postgres : lock_timeout positionné à la connexion, les SELECT ... FOR UPDATE
      échouent au-delà au lieu d'attendre indéfiniment.
    - SQLite (dev / tests) : FOR UPDATE n'existe pas, chaque transaction démarre
      en BEGIN IMMEDIATE (verrou d'écriture base entière jusqu'au commit).
    """
    if lock_timeout_ms is None:
        lock_timeout_ms = get_settings().lock_timeout_ms

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"timeout": lock_timeout_ms / 1000, "check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # on gère BEGIN nous-mêmes (sinon pysqlite le diffère et casse SAVEPOINT)
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c lock_timeout={int(lock_timeout_ms)}"
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def is_lock_contention(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _PG_CONTENTION_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(orig).lower()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Une opération métier = une transaction.

    Commit si le bloc se termine normalement, rollback sinon : aucune écriture
    partielle n'est jamais visible. Un timeout de verrou devient ContentionError.
    """
    try:
        yield db
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        if is_lock_contention(exc):
            raise ContentionError(details={"reason": str(exc.orig)}) from exc
        raise
    except BaseException:
        db.rollback()
        raise


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "contention_retry",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


def retry_on_contention(func: Callable[..., T]) -> Callable[..., T]:
    """Rejoue l'appel complet (nouvelle transaction) sur ContentionError uniquement."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> T:
        settings = get_settings()
        retryer = Retrying(
            stop=stop_after_attempt(settings.contention_retries + 1),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            retry=retry_if_exception_type(ContentionError),
            before_sleep=_log_retry,
            reraise=True,
        )
        return retryer(func, *args, **kwargs)

    return wrapper
