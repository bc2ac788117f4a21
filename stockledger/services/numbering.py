"""
Numérotation des documents : PREFIX-ANNEE-NNNN.

Chemin normal : incrément atomique d'un compteur durable (upsert ... RETURNING,
un seul aller-retour, sans course). Sous Postgres l'incrément tourne dans sa
propre transaction courte, committée avant de rendre la main : le verrou sur la
ligne compteur n'est jamais tenu pendant la transaction métier. Un rollback
métier laisse donc un trou dans la séquence (seule l'unicité est garantie).
Sous SQLite l'appelant tient déjà le verrou d'écriture de toute la base, une
seconde connexion attendrait sur lui-même : l'incrément reste dans la
transaction courante.

Chemin dégradé (table compteur indisponible) : on relit le plus grand numéro
existant et on incrémente. PAS sûr en concurrence, dernier recours.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import InstrumentedAttribute, Session

from stockledger.app.core.config import get_settings
from stockledger.app.core.logging import get_logger
from stockledger.app.db.models.models_v1 import DocumentCounter, utcnow
from stockledger.app.db.session import is_lock_contention

logger = get_logger(__name__)


def format_number(prefix: str, year: int, value: int, min_digits: int | None = None) -> str:
    """Zéro-padding minimal ; au-delà de 9999 le numéro s'élargit, jamais tronqué."""
    if min_digits is None:
        min_digits = get_settings().number_min_digits
    return f"{prefix}-{year}-{value:0{min_digits}d}"


def _next_counter_value(conn: Session | Connection, dialect: str, scope: str, counter_name: str) -> int:
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"no atomic counter for dialect {dialect}")

    table = DocumentCounter.__table__
    stmt = (
        insert(table)
        .values(scope=scope, counter_name=counter_name, current_value=1, updated_at=utcnow())
        .on_conflict_do_update(
            index_elements=[table.c.scope, table.c.counter_name],
            set_={
                "current_value": table.c.current_value + 1,
                "updated_at": utcnow(),
            },
        )
        .returning(table.c.current_value)
    )
    return int(conn.execute(stmt).scalar_one())


def counter_in_own_transaction(dialect: str) -> bool:
    # SQLite : un seul écrivain à la fois, le verrou est déjà à l'appelant
    return dialect != "sqlite"


def increment_counter_committed(engine: Engine, scope: str, counter_name: str) -> int:
    """Incrémente le compteur sur une connexion dédiée et committe aussitôt."""
    with engine.begin() as conn:
        return _next_counter_value(conn, conn.dialect.name, scope, counter_name)


def _scan_highest(db: Session, column: InstrumentedAttribute, prefix: str, year: int) -> int:
    pattern = re.compile(rf"^{re.escape(prefix)}-{year}-(\d+)$")
    # longueur d'abord : "PO-2026-10000" > "PO-2026-9999"
    rows = db.execute(
        select(column)
        .where(column.like(f"{prefix}-{year}-%"))
        .order_by(func.length(column).desc(), column.desc())
    ).scalars()
    for value in rows:
        match = pattern.match(value)
        if match:
            return int(match.group(1))
    return 0


def allocate_number(
    db: Session,
    *,
    prefix: str,
    scope: str,
    fallback_column: InstrumentedAttribute,
    year: int | None = None,
) -> str:
    """
    Alloue le prochain numéro pour (scope, PREFIX-ANNEE).

    `fallback_column` est la colonne où vivent les numéros déjà émis (utilisée
    uniquement par le chemin dégradé, dans la transaction courante de `db`).
    """
    if year is None:
        year = datetime.now(timezone.utc).year
    counter_name = f"{prefix}-{year}"
    bind = db.get_bind()
    dialect = bind.dialect.name

    try:
        if counter_in_own_transaction(dialect):
            value = increment_counter_committed(bind.engine, scope, counter_name)
        else:
            # SAVEPOINT : un échec ici ne doit pas empoisonner la transaction englobante
            with db.begin_nested():
                value = _next_counter_value(db, dialect, scope, counter_name)
    except (OperationalError, ProgrammingError, NotImplementedError) as exc:
        if is_lock_contention(exc):
            raise
        logger.warning(
            "number_allocator_fallback",
            scope=scope,
            counter=counter_name,
            error=str(exc),
        )
        value = _scan_highest(db, fallback_column, prefix, year) + 1

    return format_number(prefix, year, value)
