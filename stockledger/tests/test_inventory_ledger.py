from decimal import Decimal

import pytest
from sqlalchemy import select

from stockledger.app.core.exceptions import InputValidationError, NotFoundError
from stockledger.app.db.models.core_types import AlertType, StockStatus, TransactionType
from stockledger.app.db.models.models_v1 import InventoryItem, InventoryTransaction, StockAlert
from stockledger.services import alerts, catalog, inventory
from stockledger.services.catalog import calculate_stock_status


@pytest.mark.parametrize(
    "on_hand, reorder, on_order, expected",
    [
        ("0", "5", "0", StockStatus.out_of_stock),
        ("0", "0", "10", StockStatus.out_of_stock),
        ("5", "5", "0", StockStatus.low_stock),
        ("3", "5", "20", StockStatus.low_stock),
        ("-2", "0", "0", StockStatus.low_stock),
        ("6", "5", "1", StockStatus.on_order),
        ("6", "5", "0", StockStatus.in_stock),
    ],
)
def test_calculate_stock_status_decision_table(on_hand, reorder, on_order, expected):
    assert calculate_stock_status(Decimal(on_hand), Decimal(reorder), Decimal(on_order)) == expected


def test_issue_below_reorder_level_creates_one_low_stock_alert(db_session, make_item):
    """
    GIVEN un article on_hand=10, reorder_level=5
    WHEN issue 7
    THEN on_hand=3, low_stock, une seule alerte low_stock non résolue
    """
    item = make_item(on_hand="10", reorder_level="5")
    assert alerts.list_open_alerts(db_session, item_id=item.id) == []

    entry, item = inventory.record_transaction(
        db_session,
        item_id=item.id,
        transaction_type=TransactionType.issue,
        quantity="7",
        job_id="JOB-42",
        performed_by="u1",
    )

    assert item.quantity_on_hand == Decimal("3")
    assert item.quantity_available == Decimal("3")
    assert item.status == StockStatus.low_stock
    assert entry.balance_after == Decimal("3")
    assert entry.job_id == "JOB-42"

    open_alerts = alerts.list_open_alerts(db_session, item_id=item.id)
    assert len(open_alerts) == 1
    assert open_alerts[0].alert_type == AlertType.low_stock
    assert open_alerts[0].current_quantity == Decimal("3")
    assert open_alerts[0].threshold_quantity == Decimal("5")
    assert "below reorder level" in open_alerts[0].message


def test_adjustment_to_zero_does_not_duplicate_open_alert(db_session, make_item):
    """
    GIVEN un article déjà en alerte low_stock non résolue
    WHEN adjustment à 0
    THEN out_of_stock, pas de seconde alerte
    """
    item = make_item(on_hand="10", reorder_level="5")
    inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity="7")
    assert len(alerts.list_open_alerts(db_session, item_id=item.id)) == 1

    _, item = inventory.record_transaction(db_session, item_id=item.id, transaction_type="adjustment", quantity="0")

    assert item.quantity_on_hand == Decimal("0")
    assert item.status == StockStatus.out_of_stock
    rows = db_session.execute(select(StockAlert).where(StockAlert.item_id == item.id)).scalars().all()
    assert len(rows) == 1
    assert rows[0].alert_type == AlertType.low_stock


def test_new_alert_after_previous_one_resolved(db_session, make_item):
    item = make_item(on_hand="10", reorder_level="5")
    inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity="7")
    alert = alerts.list_open_alerts(db_session, item_id=item.id)[0]
    alert.is_resolved = True
    db_session.commit()

    inventory.record_transaction(db_session, item_id=item.id, transaction_type="write_off", quantity="3")

    open_alerts = alerts.list_open_alerts(db_session, item_id=item.id)
    assert len(open_alerts) == 1
    assert open_alerts[0].alert_type == AlertType.out_of_stock
    assert "out of stock" in open_alerts[0].message


def test_adjustment_is_absolute_not_a_delta(db_session, make_item):
    item = make_item(on_hand="10")

    entry, item = inventory.record_transaction(
        db_session, item_id=item.id, transaction_type="adjustment", quantity="4"
    )

    assert item.quantity_on_hand == Decimal("4")
    assert entry.quantity == Decimal("4")
    assert entry.balance_after == Decimal("4")


def test_receipt_and_return_add_issue_and_write_off_subtract(db_session, make_item):
    item = make_item()

    inventory.record_transaction(db_session, item_id=item.id, transaction_type="receipt", quantity="10.5", unit_cost="2")
    inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity="3.25")
    inventory.record_transaction(db_session, item_id=item.id, transaction_type="return", quantity="1")
    _, item = inventory.record_transaction(db_session, item_id=item.id, transaction_type="write_off", quantity="0.25")

    assert item.quantity_on_hand == Decimal("8")
    assert item.last_restocked_date is not None


def test_receipt_total_cost_is_exact_decimal(db_session, make_item):
    item = make_item()

    entry, _ = inventory.record_transaction(
        db_session, item_id=item.id, transaction_type="receipt", quantity="3", unit_cost="0.10"
    )

    assert entry.total_cost == Decimal("0.30")


def test_issue_may_overdraw_stock(db_session, make_item):
    """Découvert non bloqué : le stock peut passer en négatif."""
    item = make_item(on_hand="2", reorder_level="0")

    entry, item = inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity="5")

    assert item.quantity_on_hand == Decimal("-3")
    assert entry.balance_after == Decimal("-3")
    assert item.status == StockStatus.low_stock


@pytest.mark.parametrize("quantity", ["0", "-1", "abc"])
def test_non_positive_or_invalid_quantity_is_rejected(db_session, make_item, quantity):
    item = make_item(on_hand="5")

    with pytest.raises(InputValidationError):
        inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity=quantity)

    db_session.expire_all()
    assert db_session.get(InventoryItem, item.id).quantity_on_hand == Decimal("5")
    assert len(inventory.get_ledger(db_session, item.id)) == 1


def test_float_quantity_is_refused(db_session, make_item):
    item = make_item()

    with pytest.raises(InputValidationError):
        inventory.record_transaction(db_session, item_id=item.id, transaction_type="receipt", quantity=0.1)


def test_negative_adjustment_is_rejected(db_session, make_item):
    item = make_item(on_hand="5")

    with pytest.raises(InputValidationError):
        inventory.record_transaction(db_session, item_id=item.id, transaction_type="adjustment", quantity="-1")


def test_unknown_transaction_type_is_rejected(db_session, make_item):
    item = make_item()

    with pytest.raises(InputValidationError) as exc:
        inventory.record_transaction(db_session, item_id=item.id, transaction_type="transfer", quantity="1")
    assert exc.value.field == "transaction_type"


def test_unknown_item_writes_nothing(db_session):
    with pytest.raises(NotFoundError):
        inventory.record_transaction(db_session, item_id=999, transaction_type="receipt", quantity="1")

    assert db_session.execute(select(InventoryTransaction)).first() is None


def test_deleted_item_cannot_receive_transactions(db_session, make_item):
    item = make_item(on_hand="1")
    catalog.delete_item(db_session, item.id)

    with pytest.raises(NotFoundError):
        inventory.record_transaction(db_session, item_id=item.id, transaction_type="issue", quantity="1")


def test_ledger_replay_matches_on_hand(db_session, make_item):
    item = make_item(on_hand="20", reorder_level="3")
    for tx_type, qty in [
        ("issue", "4"),
        ("receipt", "10"),
        ("write_off", "1.5"),
        ("adjustment", "12"),
        ("return", "2"),
        ("issue", "20"),
    ]:
        inventory.record_transaction(db_session, item_id=item.id, transaction_type=tx_type, quantity=qty)

    db_session.expire_all()
    item = db_session.get(InventoryItem, item.id)
    ledger = inventory.get_ledger(db_session, item.id)

    assert inventory.replay_balance(ledger) == item.quantity_on_hand == Decimal("-6")
    assert ledger[-1].balance_after == item.quantity_on_hand
    # chaque balance_after = rejeu des écritures précédentes
    for i, entry in enumerate(ledger):
        assert inventory.replay_balance(ledger[: i + 1]) == entry.balance_after


def test_list_transactions_filters_and_pages(db_session, make_item):
    a = make_item()
    b = make_item()
    for _ in range(3):
        inventory.record_transaction(db_session, item_id=a.id, transaction_type="receipt", quantity="1")
    inventory.record_transaction(db_session, item_id=b.id, transaction_type="receipt", quantity="1", bid_id="BID-9")

    rows, total = inventory.list_transactions(db_session, item_id=a.id, limit=2)
    assert total == 3
    assert len(rows) == 2

    rows, total = inventory.list_transactions(db_session, bid_id="BID-9")
    assert total == 1
    assert rows[0].item_id == b.id

    rows, total = inventory.list_transactions(db_session, transaction_type="issue")
    assert (rows, total) == ([], 0)

    with pytest.raises(InputValidationError):
        inventory.list_transactions(db_session, limit=0)


def test_get_item_transactions_newest_first(db_session, make_item):
    item = make_item()
    first, _ = inventory.record_transaction(db_session, item_id=item.id, transaction_type="receipt", quantity="1")
    second, _ = inventory.record_transaction(db_session, item_id=item.id, transaction_type="receipt", quantity="2")

    rows = inventory.get_item_transactions(db_session, item.id)

    assert [r.id for r in rows] == [second.id, first.id]
