from decimal import Decimal

import pytest

from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.models import AdjustmentType, StockAdjustmentRecord, StockLevel
from backoffice.services.stock_ledger import (
    ALERT_LOW_STOCK,
    ALERT_OUT_OF_STOCK,
    ALERT_OVERSTOCKED,
    StockLedger,
    alert_type_for,
    suggested_order_quantity,
)

ACTOR = 7


@pytest.fixture
def level(db, catalog):
    lvl = StockLevel(
        store_id=catalog.store.id,
        product_id=catalog.contact.id,
        current_quantity=3,
        safety_stock=5,
        max_stock=20,
    )
    db.add(lvl)
    db.commit()
    return lvl


def _adjust(db, catalog, delta, reason="cycle count", product=None, create_missing=False):
    return StockLedger(db).adjust_stock(
        product_id=(product or catalog.contact).id,
        store_id=catalog.store.id,
        delta=delta,
        reason=reason,
        actor_id=ACTOR,
        create_missing=create_missing,
    )


def test_negative_result_is_refused_and_nothing_is_written(db, catalog, level):
    with pytest.raises(ValidationError) as exc_info:
        _adjust(db, catalog, -5)

    assert str(exc_info.value) == "Insufficient stock: current stock 3, adjustment -5"
    assert exc_info.value.details == {"current_quantity": 3, "delta": -5}
    db.expire_all()
    assert db.get(StockLevel, level.id).current_quantity == 3
    assert db.query(StockAdjustmentRecord).count() == 0


def test_increase_and_decrease_append_records(db, catalog, level):
    _adjust(db, catalog, 4, reason="found in back room")
    after = _adjust(db, catalog, -7, reason="breakage")

    assert after.current_quantity == 0
    records = db.query(StockAdjustmentRecord).order_by(StockAdjustmentRecord.id).all()
    assert [(r.adjustment_type, r.quantity_before, r.quantity_after, r.adjustment_quantity) for r in records] == [
        (AdjustmentType.INCREASE, 3, 7, 4),
        (AdjustmentType.DECREASE, 7, 0, -7),
    ]
    assert {r.ref_type for r in records} == {"MANUAL"}
    assert {r.adjusted_by_id for r in records} == {ACTOR}
    assert records[1].reason == "breakage"


def test_zero_or_fractional_delta_is_rejected(db, catalog, level):
    with pytest.raises(ValidationError):
        _adjust(db, catalog, 0)
    with pytest.raises(ValidationError):
        _adjust(db, catalog, 1.5)


def test_reason_is_required(db, catalog, level):
    with pytest.raises(ValidationError):
        _adjust(db, catalog, 1, reason="   ")


def test_missing_level_is_not_found_unless_created(db, catalog):
    with pytest.raises(NotFoundError):
        _adjust(db, catalog, 2, product=catalog.accessory)

    created = _adjust(db, catalog, 2, product=catalog.accessory, create_missing=True)
    assert created.current_quantity == 2
    assert StockLedger(db).get_level(catalog.accessory.id, catalog.store.id).id == created.id


def test_alert_classification():
    assert alert_type_for(StockLevel(current_quantity=0, safety_stock=2, max_stock=10)) == ALERT_OUT_OF_STOCK
    assert alert_type_for(StockLevel(current_quantity=2, safety_stock=2, max_stock=10)) == ALERT_LOW_STOCK
    assert alert_type_for(StockLevel(current_quantity=11, safety_stock=2, max_stock=10)) == ALERT_OVERSTOCKED
    assert alert_type_for(StockLevel(current_quantity=5, safety_stock=2, max_stock=10)) is None
    assert alert_type_for(StockLevel(current_quantity=50, safety_stock=2, max_stock=0)) is None


def test_suggested_quantity_tops_up_to_max_and_is_at_least_one():
    assert suggested_order_quantity(StockLevel(current_quantity=3, max_stock=20)) == 17
    assert suggested_order_quantity(StockLevel(current_quantity=4, max_stock=4)) == 1
    assert suggested_order_quantity(StockLevel(current_quantity=0, max_stock=0)) == 1


def test_replenishment_suggestions(db, catalog, level):
    db.add_all([
        StockLevel(store_id=catalog.store.id, product_id=catalog.lens.id,
                   current_quantity=0, safety_stock=10, max_stock=30, auto_order_enabled=True),
        StockLevel(store_id=catalog.store.id, product_id=catalog.accessory.id,
                   current_quantity=50, safety_stock=5, max_stock=40),
        StockLevel(store_id=catalog.other_store.id, product_id=catalog.contact.id,
                   current_quantity=0, safety_stock=5, max_stock=20),
    ])
    db.commit()
    ledger = StockLedger(db)

    rows = ledger.suggest_replenishment(catalog.store.id)

    assert [r["product_code"] for r in rows] == ["LNS-001", "CL-001"]
    lens, contact = rows
    assert lens["shortage"] == 10
    assert lens["suggested_quantity"] == 30
    assert lens["suggested_cost"] == Decimal("30000.00")
    assert contact["suggested_quantity"] == 17
    assert contact["suggested_cost"] == Decimal("20400.00")

    auto_only = ledger.suggest_replenishment(catalog.store.id, auto_order_only=True)
    assert [r["product_code"] for r in auto_only] == ["LNS-001"]


def test_alerts_and_listing(db, catalog, level):
    db.add(StockLevel(store_id=catalog.store.id, product_id=catalog.accessory.id,
                      current_quantity=50, safety_stock=5, max_stock=40))
    db.commit()
    ledger = StockLedger(db)

    alerts = ledger.list_alerts(store_id=catalog.store.id)
    assert [(a["product_code"], a["alert_type"]) for a in alerts] == [
        ("CL-001", ALERT_LOW_STOCK),
        ("ACC-001", ALERT_OVERSTOCKED),
    ]
    assert alerts[1]["suggested_order_quantity"] == 0
    assert ledger.list_alerts(store_id=catalog.store.id, alert_type="overstocked")[0]["product_code"] == "ACC-001"

    rows, total = ledger.list_levels(store_id=catalog.store.id, low_stock_only=True)
    assert total == 1 and rows[0].product_id == catalog.contact.id
    rows, total = ledger.list_levels(store_id="abc", category="contact")
    assert total == 1


def test_adjustment_history_is_newest_first(db, catalog, level):
    _adjust(db, catalog, 1, reason="first")
    _adjust(db, catalog, 1, reason="second")

    history = StockLedger(db).adjustment_history(store_id=catalog.store.id)

    assert [r.reason for r in history] == ["second", "first"]
