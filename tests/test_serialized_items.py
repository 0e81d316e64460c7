import re
from decimal import Decimal

import pytest

from backoffice.core.errors import ConflictError, NotFoundError, ValidationError
from backoffice.models import SerializedItem, SerializedItemStatus, SerializedItemStatusHistory
from backoffice.services.receiving import ReceivingService
from backoffice.services.serialized_items import SerializedItemService, generate_serial_number

ACTOR = 7

SERIAL_RE = re.compile(r"^FRM-001-S1-\d{14}-[0-9A-F]{4}-\d{3}$")


@pytest.fixture
def frame_line(db, catalog, sent_po, line_for):
    """Frame line of the sent purchase order with all three units received."""
    line = line_for(sent_po, catalog.frame)
    ReceivingService(db).create_receiving(
        purchase_order_id=sent_po.id,
        actor_id=ACTOR,
        lines=[{"purchase_order_line_id": line.id, "received_quantity": 3}],
    )
    return line


def _mint(db, catalog, line, count, template=None, store=None):
    return SerializedItemService(db).mint_serialized_items(
        purchase_order_line_id=line.id,
        store_id=(store or catalog.store).id,
        count=count,
        template=template if template is not None else [{"color": "black"}],
        actor_id=ACTOR,
    )


def test_serial_number_format():
    assert generate_serial_number("FRM-001", "S1", "20250114093000", "A1B2", 7) == "FRM-001-S1-20250114093000-A1B2-007"


def test_mint_creates_one_unit_per_count_with_generated_serials(db, catalog, frame_line):
    items = _mint(db, catalog, frame_line, 3, [{"color": "black", "size": "52"}])

    assert len(items) == 3
    serials = [i.serial_number for i in items]
    assert all(SERIAL_RE.match(s) for s in serials), serials
    assert [s[-3:] for s in serials] == ["001", "002", "003"]
    assert len(set(serials)) == 3

    for item in items:
        assert item.status == SerializedItemStatus.IN_STOCK
        assert item.location == "main_warehouse"
        assert item.color == "black"
        assert item.size == "52"
        assert item.purchase_price == Decimal("5000.00")
        assert item.purchase_order_item_id == frame_line.id
        assert item.store_id == catalog.store.id


def test_mint_writes_initial_history_row(db, catalog, frame_line):
    [item] = _mint(db, catalog, frame_line, 1)

    [row] = db.query(SerializedItemStatusHistory).filter_by(serialized_item_id=item.id).all()
    assert row.old_status is None
    assert row.new_status == SerializedItemStatus.IN_STOCK
    assert row.change_reason == "received"
    assert row.changed_by_id == ACTOR


def test_per_unit_template_and_explicit_serials(db, catalog, frame_line):
    items = _mint(db, catalog, frame_line, 2, [
        {"color": "black", "serial_number": "SN-A"},
        {"color": "tortoise", "serial_number": "SN-B", "location": "display", "status": "reserved"},
    ])

    assert [(i.serial_number, i.color, i.location) for i in items] == [
        ("SN-A", "black", "main_warehouse"),
        ("SN-B", "tortoise", "display"),
    ]
    assert items[1].status == SerializedItemStatus.RESERVED


def test_cannot_mint_more_than_received(db, catalog, sent_po, line_for):
    line = line_for(sent_po, catalog.frame)
    ReceivingService(db).create_receiving(
        purchase_order_id=sent_po.id,
        actor_id=ACTOR,
        lines=[{"purchase_order_line_id": line.id, "received_quantity": 1}],
    )

    with pytest.raises(ConflictError) as exc_info:
        _mint(db, catalog, line, 2)

    assert exc_info.value.details == {"received_quantity": 1, "minted_quantity": 0, "requested": 2}
    assert db.query(SerializedItem).count() == 0


def test_second_mint_for_the_same_units_is_a_conflict(db, catalog, frame_line):
    _mint(db, catalog, frame_line, 3)

    with pytest.raises(ConflictError):
        _mint(db, catalog, frame_line, 1)
    assert db.query(SerializedItem).count() == 3


def test_minting_in_batches_up_to_received(db, catalog, frame_line):
    _mint(db, catalog, frame_line, 1)
    _mint(db, catalog, frame_line, 2)

    assert db.query(SerializedItem).filter_by(purchase_order_item_id=frame_line.id).count() == 3


def test_quantity_managed_product_cannot_be_minted(db, catalog, sent_po, line_for):
    lens_line = line_for(sent_po, catalog.lens)
    ReceivingService(db).create_receiving(
        purchase_order_id=sent_po.id,
        actor_id=ACTOR,
        lines=[{"purchase_order_line_id": lens_line.id, "received_quantity": 2}],
    )

    with pytest.raises(ValidationError):
        _mint(db, catalog, lens_line, 1)


def test_duplicate_serials_within_request(db, catalog, frame_line):
    with pytest.raises(ValidationError) as exc_info:
        _mint(db, catalog, frame_line, 2, [
            {"color": "black", "serial_number": "DUP-1"},
            {"color": "black", "serial_number": "DUP-1"},
        ])

    assert exc_info.value.details == {"duplicate_serial_numbers": ["DUP-1"]}


def test_serial_already_in_use(db, catalog, frame_line):
    _mint(db, catalog, frame_line, 1, [{"color": "black", "serial_number": "TAKEN"}])

    with pytest.raises(ConflictError) as exc_info:
        _mint(db, catalog, frame_line, 1, [{"color": "black", "serial_number": "TAKEN"}])

    assert exc_info.value.details == {"existing_serial_numbers": ["TAKEN"]}


def test_empty_color_or_serial_is_rejected(db, catalog, frame_line):
    with pytest.raises(ValidationError) as exc_info:
        _mint(db, catalog, frame_line, 2, [
            {"color": "  "},
            {"color": "black", "serial_number": ""},
        ])

    assert exc_info.value.details == {"fields": [
        {"index": 0, "field": "color"},
        {"index": 1, "field": "serial_number"},
    ]}
    assert db.query(SerializedItem).count() == 0


def test_template_size_must_be_one_or_count(db, catalog, frame_line):
    with pytest.raises(ValidationError):
        _mint(db, catalog, frame_line, 3, [{"color": "a"}, {"color": "b"}])
    with pytest.raises(ValidationError):
        _mint(db, catalog, frame_line, 0)


def test_unknown_line(db, catalog, frame_line):
    with pytest.raises(NotFoundError):
        SerializedItemService(db).mint_serialized_items(
            purchase_order_line_id=9999, store_id=catalog.store.id, count=1,
            template=[{"color": "black"}], actor_id=ACTOR,
        )


def test_units_go_to_the_purchase_order_store(db, catalog, frame_line):
    with pytest.raises(ValidationError) as exc_info:
        _mint(db, catalog, frame_line, 1, store=catalog.other_store)
    assert exc_info.value.details == {
        "store_id": catalog.other_store.id,
        "purchase_order_store_id": catalog.store.id,
    }
    with pytest.raises(ValidationError):
        SerializedItemService(db).mint_serialized_items(
            purchase_order_line_id=frame_line.id, store_id=9999, count=1,
            template=[{"color": "black"}], actor_id=ACTOR,
        )
    assert db.query(SerializedItem).count() == 0

    [item] = SerializedItemService(db).mint_serialized_items(
        purchase_order_line_id=frame_line.id, count=1, template=[{"color": "black"}], actor_id=ACTOR,
    )
    assert item.store_id == catalog.store.id


def test_minting_status_tracks_remaining(db, catalog, frame_line):
    svc = SerializedItemService(db)

    before = svc.minting_status(frame_line.id)
    assert (before["received_quantity"], before["minted_quantity"], before["remaining"]) == (3, 0, 3)
    assert before["can_mint"] is True
    assert before["has_serialized_items"] is False

    _mint(db, catalog, frame_line, 3)
    after = svc.minting_status(frame_line.id)
    assert after["remaining"] == 0
    assert after["can_mint"] is False
    assert after["has_serialized_items"] is True


def test_status_update_writes_history(db, catalog, frame_line):
    [item] = _mint(db, catalog, frame_line, 1)
    svc = SerializedItemService(db)

    svc.update_status(item.id, "sold", ACTOR, reason="handed over")

    history = svc.status_history(item.id)
    assert [(h.old_status, h.new_status) for h in history] == [
        (SerializedItemStatus.IN_STOCK, SerializedItemStatus.SOLD),
        (None, SerializedItemStatus.IN_STOCK),
    ]
    assert history[0].change_reason == "handed over"

    with pytest.raises(ValidationError):
        svc.update_status(item.id, SerializedItemStatus.SOLD, ACTOR)
    with pytest.raises(ValidationError):
        svc.update_status(item.id, "lost", ACTOR)


def test_lookup_by_serial(db, catalog, frame_line):
    [item] = _mint(db, catalog, frame_line, 1, [{"color": "gold", "serial_number": "GOLD-1"}])
    svc = SerializedItemService(db)

    assert svc.get_by_serial(" GOLD-1 ").id == item.id
    with pytest.raises(NotFoundError):
        svc.get_by_serial("NOPE")


def test_inventory_summary_counts_every_status(db, catalog, frame_line):
    items = _mint(db, catalog, frame_line, 3)
    svc = SerializedItemService(db)
    svc.update_status(items[0].id, "damaged", ACTOR)

    summary = svc.inventory_summary(catalog.store.id)

    assert summary["counts"] == {
        "in_stock": 2, "reserved": 0, "sold": 0, "damaged": 1, "transferred": 0,
    }
    assert summary["total"] == 3
    assert svc.inventory_summary(catalog.other_store.id)["total"] == 0


def test_list_items_filters(db, catalog, frame_line):
    items = _mint(db, catalog, frame_line, 3)
    svc = SerializedItemService(db)
    svc.update_status(items[0].id, "sold", ACTOR)

    rows, total = svc.list_items(store_id=catalog.store.id, status="in_stock")
    assert total == 2
    rows, total = svc.list_items(status="nonsense")
    assert total == 3
