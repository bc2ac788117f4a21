from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from stockledger.app.api.deps import get_db
from stockledger.app.db.base import Base
from stockledger.app.db.models import models_v1  # noqa: F401  (tables sur Base.metadata)
from stockledger.app.db.session import build_engine
from stockledger.app.main import app
from stockledger.services import catalog, events, inventory, procurement
from stockledger.services.procurement import LineInput


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Base SQLite fichier, isolée par test.

    Un fichier (pas :memory:) : les tests de concurrence ouvrent une connexion
    par thread et doivent voir la même base.
    """
    eng = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}", lock_timeout_ms=10_000)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_subscribers():
    yield
    events.unsubscribe_all()


@pytest.fixture
def client(session_factory):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


# ---------- Factories ----------
@pytest.fixture
def supplier(db_session):
    return catalog.create_supplier(db_session, code="SUP-001", name="Pacific Supply", email="orders@pacific.test")


@pytest.fixture
def make_item(db_session):
    counter = {"n": 0}

    def _make(*, on_hand="0", reorder_level="0", unit_cost="2.50", name=None, **kwargs):
        counter["n"] += 1
        item = catalog.create_item(
            db_session,
            code=kwargs.pop("code", f"ITEM-{counter['n']:03d}"),
            name=name or f"Item {counter['n']}",
            unit_cost=unit_cost,
            reorder_level=reorder_level,
            **kwargs,
        )
        if Decimal(on_hand) != 0:
            inventory.record_transaction(
                db_session,
                item_id=item.id,
                transaction_type="adjustment",
                quantity=on_hand,
                performed_by="setup",
            )
        return item

    return _make


@pytest.fixture
def make_po(db_session, supplier):
    """PO prêt à recevoir : créé, approuvé puis envoyé."""

    def _make(lines: list[tuple[int, str, str]], *, status: str = "sent"):
        po = procurement.create_purchase_order(
            db_session,
            supplier_id=supplier.id,
            lines=[LineInput(item_id=i, quantity_ordered=q, unit_cost=c) for i, q, c in lines],
            created_by="buyer",
        )
        if status in ("approved", "sent"):
            procurement.approve_purchase_order(db_session, po.id, approved_by="manager")
        if status == "sent":
            procurement.send_purchase_order(db_session, po.id)
        po = procurement.get_purchase_order(db_session, po.id)
        # la lecture a ouvert une transaction (BEGIN IMMEDIATE sous SQLite) : on la termine
        db_session.commit()
        return po

    return _make
