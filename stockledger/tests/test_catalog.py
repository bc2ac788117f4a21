from decimal import Decimal

import pytest

from stockledger.app.core.exceptions import InputValidationError, NotFoundError
from stockledger.app.db.models.core_types import ItemHistoryAction, StockStatus
from stockledger.services import catalog


def test_new_item_starts_empty_and_out_of_stock(db_session, supplier):
    item = catalog.create_item(
        db_session,
        code=" PIPE-20 ",
        name="PVC pipe 20mm",
        unit_cost="1.255",
        reorder_level="10",
        primary_supplier_id=supplier.id,
        performed_by="u1",
    )

    assert item.code == "PIPE-20"
    assert item.unit_cost == Decimal("1.26")
    assert item.quantity_on_hand == 0
    assert item.quantity_on_order == 0
    assert item.status == StockStatus.out_of_stock

    history = catalog.get_item_history(db_session, item.id)
    assert [h.action for h in history] == [ItemHistoryAction.created]
    assert history[0].performed_by == "u1"


def test_duplicate_active_code_is_rejected(db_session, make_item):
    make_item(code="DUP")

    with pytest.raises(InputValidationError) as exc:
        make_item(code="DUP")
    assert exc.value.field == "code"


def test_code_can_be_reused_after_soft_delete(db_session, make_item):
    old = make_item(code="REUSE")
    catalog.delete_item(db_session, old.id, performed_by="admin")

    new = make_item(code="REUSE")

    assert new.id != old.id
    with pytest.raises(NotFoundError):
        catalog.get_item(db_session, old.id)
    assert catalog.get_item(db_session, old.id, include_deleted=True).is_deleted


def test_update_code_checks_active_duplicates(db_session, make_item):
    make_item(code="DUP")
    other = make_item(code="OTHER")

    with pytest.raises(InputValidationError) as exc:
        catalog.update_item(db_session, other.id, {"code": " DUP "})
    assert exc.value.field == "code"
    assert catalog.get_item(db_session, other.id).code == "OTHER"

    with pytest.raises(InputValidationError):
        catalog.update_item(db_session, other.id, {"code": "  "})

    # son propre code, ou un code libre (normalisé)
    assert catalog.update_item(db_session, other.id, {"code": "OTHER"}).code == "OTHER"
    assert catalog.update_item(db_session, other.id, {"code": " NEW-1 "}).code == "NEW-1"
    _, total = catalog.list_items(db_session, search="DUP")
    assert total == 1


def test_update_cannot_touch_quantities(db_session, make_item):
    item = make_item(on_hand="5")

    for field in ("quantity_on_hand", "quantity_on_order", "status"):
        with pytest.raises(InputValidationError):
            catalog.update_item(db_session, item.id, {field: "99"})
    with pytest.raises(InputValidationError):
        catalog.update_item(db_session, item.id, {"colour": "blue"})

    assert catalog.get_item(db_session, item.id).quantity_on_hand == Decimal("5")


def test_reorder_level_change_recomputes_status_and_logs_history(db_session, make_item):
    item = make_item(on_hand="8", reorder_level="5")
    assert item.status == StockStatus.in_stock

    item = catalog.update_item(db_session, item.id, {"reorder_level": "10"}, performed_by="planner")

    assert item.status == StockStatus.low_stock
    latest = catalog.get_item_history(db_session, item.id)[0]
    assert latest.action == ItemHistoryAction.reorder_level_changed
    assert Decimal(latest.old_value) == Decimal("5")
    assert Decimal(latest.new_value) == Decimal("10")
    assert latest.performed_by == "planner"


def test_unit_cost_change_is_tracked(db_session, make_item):
    item = make_item(unit_cost="2.50")

    catalog.update_item(db_session, item.id, {"unit_cost": "3", "name": "Renamed"})
    catalog.update_item(db_session, item.id, {"unit_cost": "3"})

    actions = [h.action for h in catalog.get_item_history(db_session, item.id)]
    assert actions.count(ItemHistoryAction.price_changed) == 1
    assert catalog.get_item(db_session, item.id).name == "Renamed"


def test_update_rejects_unknown_supplier(db_session, make_item):
    item = make_item()

    with pytest.raises(NotFoundError):
        catalog.update_item(db_session, item.id, {"primary_supplier_id": 12345})


def test_list_items_search_and_status(db_session, make_item):
    make_item(name="Copper wire", on_hand="100")
    make_item(name="Copper pipe")
    make_item(name="Steel bolt", on_hand="100")

    rows, total = catalog.list_items(db_session, search="copper")
    assert total == 2
    assert [r.name for r in rows] == ["Copper pipe", "Copper wire"]

    rows, total = catalog.list_items(db_session, status=StockStatus.out_of_stock)
    assert [r.name for r in rows] == ["Copper pipe"]


def test_supplier_code_is_unique(db_session, supplier):
    with pytest.raises(InputValidationError):
        catalog.create_supplier(db_session, code=supplier.code, name="Other")
    with pytest.raises(NotFoundError):
        catalog.get_supplier(db_session, 404)
