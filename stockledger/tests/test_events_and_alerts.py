from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from stockledger.app.core.exceptions import NotFoundError
from stockledger.app.db.models.models_v1 import InventoryItem, StockAlert
from stockledger.app.db.session import unit_of_work
from stockledger.services import alerts, events, inventory, procurement


def test_transaction_event_fires_after_commit(db_session, make_item):
    item = make_item()
    received = []
    events.subscribe("inventory.transaction_recorded", received.append)

    entry, _ = inventory.record_transaction(db_session, item_id=item.id, transaction_type="receipt", quantity="3")

    assert len(received) == 1
    assert received[0]["transaction_number"] == entry.transaction_number
    assert received[0]["balance_after"] == "3.0000"


def test_events_are_discarded_on_rollback(db_session, make_item):
    item = make_item()
    received = []
    events.subscribe("inventory.transaction_recorded", received.append)

    with pytest.raises(RuntimeError):
        with unit_of_work(db_session):
            inventory.post_transaction(db_session, item_id=item.id, transaction_type="receipt", quantity="3")
            raise RuntimeError("caller failed after posting")

    # le commit suivant ne doit pas rejouer les événements abandonnés
    with unit_of_work(db_session):
        db_session.execute(select(InventoryItem.id))

    assert received == []
    db_session.expire_all()
    assert db_session.get(InventoryItem, item.id).quantity_on_hand == 0


def test_failing_subscriber_does_not_break_the_operation(db_session, make_item):
    item = make_item()

    def _boom(payload):
        raise ValueError("notification service down")

    events.subscribe("inventory.transaction_recorded", _boom)

    _, item = inventory.record_transaction(db_session, item_id=item.id, transaction_type="receipt", quantity="2")

    assert item.quantity_on_hand == Decimal("2")


def test_no_event_when_operation_fails(db_session):
    received = []
    events.subscribe("inventory.transaction_recorded", received.append)

    with pytest.raises(NotFoundError):
        inventory.record_transaction(db_session, item_id=404, transaction_type="receipt", quantity="1")

    assert received == []


def test_alert_failure_never_rolls_back_the_ledger(db_session, make_item, monkeypatch):
    item = make_item(on_hand="10", reorder_level="5")

    def _broken(db, item_id):
        raise OperationalError("INSERT INTO inventory_stock_alerts", {}, Exception("disk I/O error"))

    monkeypatch.setattr(alerts, "_create_if_needed", _broken)

    entry, item = inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity="7")

    db_session.expire_all()
    assert db_session.get(InventoryItem, item.id).quantity_on_hand == Decimal("3")
    assert entry.id is not None
    assert db_session.execute(select(StockAlert)).first() is None


def test_alert_event_is_published(db_session, make_item):
    item = make_item(on_hand="10", reorder_level="5")
    received = []
    events.subscribe("inventory.alert_created", received.append)

    inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity="10")

    assert len(received) == 1
    assert received[0]["alert_type"] == "out_of_stock"
    assert received[0]["item_id"] == item.id


def test_expense_poster_runs_after_approval_and_its_failure_is_contained(db_session, make_item, make_po):
    item = make_item()
    po = make_po([(item.id, "5", "10")], status="draft")
    posted = []

    def _poster(payload):
        posted.append(payload)
        raise ConnectionError("accounting unavailable")

    po = procurement.approve_purchase_order(db_session, po.id, approved_by="manager", expense_poster=_poster)

    assert po.status.value == "approved"
    assert len(posted) == 1
    assert posted[0]["po_number"] == po.po_number
    assert posted[0]["total_amount"] == "50.00"
