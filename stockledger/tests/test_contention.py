import sqlite3
import threading
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from stockledger.app.core.config import get_settings
from stockledger.app.core.exceptions import ContentionError, NotFoundError
from stockledger.app.db import session as session_module
from stockledger.app.db.base import Base
from stockledger.app.db.models.models_v1 import InventoryItem
from stockledger.app.db.session import build_engine
from stockledger.services import catalog, inventory


@pytest.fixture
def fast_db(tmp_path):
    """Base fichier avec un timeout de verrou court (200 ms)."""
    path = tmp_path / "contention.db"
    eng = build_engine(f"sqlite:///{path}", lock_timeout_ms=200)
    Base.metadata.create_all(bind=eng)
    try:
        yield path, sessionmaker(bind=eng, autoflush=False, autocommit=False, expire_on_commit=False)
    finally:
        eng.dispose()


@pytest.fixture
def retries(monkeypatch):
    def _set(count):
        monkeypatch.setattr(get_settings(), "contention_retries", count)

    return _set


@pytest.fixture
def retry_attempts(monkeypatch):
    attempts = []
    monkeypatch.setattr(session_module, "_log_retry", lambda state: attempts.append(state.attempt_number))
    return attempts


def _stocked_item(factory, on_hand="10"):
    with factory() as session:
        item = catalog.create_item(session, code="LOCK-1", name="Locked item", unit_cost="1")
        inventory.record_transaction(session, item_id=item.id, transaction_type="receipt", quantity=on_hand)
    return item


def _hold_write_lock(path):
    holder = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    holder.execute("BEGIN IMMEDIATE")
    return holder


def test_lock_wait_past_timeout_is_contention_and_writes_nothing(fast_db, retries, retry_attempts):
    path, factory = fast_db
    retries(0)
    item = _stocked_item(factory)

    holder = _hold_write_lock(path)
    try:
        with factory() as session:
            with pytest.raises(ContentionError) as exc:
                inventory.record_transaction(session, item_id=item.id, transaction_type="issue", quantity="3")
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    assert exc.value.to_dict()["error"] == "contention"
    assert retry_attempts == []
    with factory() as session:
        assert session.get(InventoryItem, item.id).quantity_on_hand == Decimal("10")
        assert len(inventory.get_item_transactions(session, item.id)) == 1


def test_contention_is_retried_until_lock_is_released(fast_db, retries, retry_attempts):
    path, factory = fast_db
    retries(10)
    item = _stocked_item(factory)

    holder = _hold_write_lock(path)
    release = threading.Timer(0.3, lambda: holder.execute("ROLLBACK"))
    release.start()
    try:
        with factory() as session:
            entry, updated = inventory.record_transaction(
                session, item_id=item.id, transaction_type="issue", quantity="3"
            )
    finally:
        release.join()
        holder.close()

    assert retry_attempts
    assert updated.quantity_on_hand == Decimal("7")
    assert entry.balance_after == Decimal("7")


def test_only_contention_is_retried(fast_db, retries, retry_attempts):
    _, factory = fast_db
    retries(3)

    with factory() as session:
        with pytest.raises(NotFoundError):
            inventory.record_transaction(session, item_id=999, transaction_type="receipt", quantity="1")

    assert retry_attempts == []


def test_open_read_blocks_writers_until_it_ends(fast_db, retries):
    """SQLite : une lecture hors unité de travail garde le verrou jusqu'à son commit."""
    _, factory = fast_db
    retries(0)
    item = _stocked_item(factory)

    reader = factory()
    try:
        catalog.get_item(reader, item.id)
        with factory() as writer:
            with pytest.raises(ContentionError):
                inventory.record_transaction(writer, item_id=item.id, transaction_type="issue", quantity="1")

            reader.commit()
            _, updated = inventory.record_transaction(writer, item_id=item.id, transaction_type="issue", quantity="1")
    finally:
        reader.close()

    assert updated.quantity_on_hand == Decimal("9")
