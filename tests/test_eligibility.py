from datetime import date, timedelta

from backoffice.models import OrderStatus, PurchaseOrderStatus, SerializedItem
from backoffice.services.eligibility import EligibilityResolver
from backoffice.services.purchase_orders import PurchaseOrderService

ACTOR = 7


def _line_ids(db, **filters):
    return {li.id for li in EligibilityResolver(db).eligible_lines(**filters)}


def test_lens_line_needs_finished_prescription(db, catalog, make_order):
    waiting = make_order(OrderStatus.ORDERED, [(catalog.lens, 1)])
    ready = make_order(OrderStatus.PRESCRIPTION_DONE, [(catalog.lens, 1)])

    ids = _line_ids(db)

    assert ready.lines[0].id in ids
    assert waiting.lines[0].id not in ids


def test_direct_purchase_categories_accept_ordered_and_prescription_done(db, catalog, make_order):
    ordered = make_order(OrderStatus.ORDERED, [(catalog.frame, 1), (catalog.contact, 2), (catalog.accessory, 1)])
    rx_done = make_order(OrderStatus.PRESCRIPTION_DONE, [(catalog.contact, 1)])
    too_late = make_order(OrderStatus.READY, [(catalog.accessory, 1)])

    ids = _line_ids(db)

    assert {li.id for li in ordered.lines} <= ids
    assert rx_done.lines[0].id in ids
    assert too_late.lines[0].id not in ids


def test_other_categories_are_never_purchasable(db, catalog, make_order):
    order = make_order(OrderStatus.ORDERED, [(catalog.hearing_aid, 1)])

    assert order.lines[0].id not in _line_ids(db)


def test_frame_picked_from_stock_is_excluded(db, catalog, make_order):
    unit = SerializedItem(
        serial_number="FRM-001-S1-MANUAL-001",
        product_id=catalog.frame.id,
        store_id=catalog.store.id,
        color="black",
    )
    db.add(unit)
    db.commit()

    from_stock = make_order(OrderStatus.ORDERED, [(catalog.frame, 1)], serialized_item_id=unit.id)
    to_buy = make_order(OrderStatus.ORDERED, [(catalog.frame, 1)])

    ids = _line_ids(db)

    assert from_stock.lines[0].id not in ids
    assert to_buy.lines[0].id in ids


def test_cancelled_purchase_order_frees_lens_line_but_not_other_lines(db, catalog, make_order):
    lens_order = make_order(OrderStatus.PRESCRIPTION_DONE, [(catalog.lens, 1)])
    contact_order = make_order(OrderStatus.ORDERED, [(catalog.contact, 1)])
    svc = PurchaseOrderService(db)
    po = svc.create_purchase_order(
        supplier_id=catalog.supplier.id,
        store_id=catalog.store.id,
        order_ids=[lens_order.id, contact_order.id],
        actor_id=ACTOR,
    )
    svc.update_status(po.id, PurchaseOrderStatus.CANCELLED, ACTOR)

    # put both orders back where they would be eligible by status
    lens_order.status = OrderStatus.PRESCRIPTION_DONE
    contact_order.status = OrderStatus.ORDERED
    db.commit()

    ids = _line_ids(db)

    assert lens_order.lines[0].id in ids
    assert contact_order.lines[0].id not in ids


def test_store_customer_and_date_filters(db, catalog, make_order):
    mine = make_order(OrderStatus.ORDERED, [(catalog.frame, 1)])
    other_store = make_order(OrderStatus.ORDERED, [(catalog.frame, 1)], store=catalog.other_store)
    other_customer = make_order(OrderStatus.ORDERED, [(catalog.frame, 1)], customer=catalog.other_customer)
    old = make_order(OrderStatus.ORDERED, [(catalog.frame, 1)], order_date=date.today() - timedelta(days=30))

    by_store = _line_ids(db, store_id=catalog.store.id)
    assert other_store.lines[0].id not in by_store
    assert mine.lines[0].id in by_store

    by_customer = _line_ids(db, customer_id=catalog.other_customer.id)
    assert by_customer == {other_customer.lines[0].id}

    recent = _line_ids(db, from_date=date.today() - timedelta(days=7))
    assert old.lines[0].id not in recent
    assert mine.lines[0].id in recent


def test_customer_name_match_is_case_insensitive_substring(db, catalog, make_order):
    hanako = make_order(OrderStatus.ORDERED, [(catalog.frame, 1)])
    make_order(OrderStatus.ORDERED, [(catalog.frame, 1)], customer=catalog.other_customer)

    assert _line_ids(db, customer_name="yamada") == {hanako.lines[0].id}
    assert _line_ids(db, customer_name="hanako") == {hanako.lines[0].id}


def test_malformed_filters_are_ignored(db, catalog, make_order):
    make_order(OrderStatus.ORDERED, [(catalog.frame, 1)])
    make_order(OrderStatus.ORDERED, [(catalog.frame, 1)], store=catalog.other_store)
    everything = _line_ids(db)

    assert _line_ids(db, store_id="abc") == everything
    assert _line_ids(db, customer_id="1x") == everything
    assert _line_ids(db, from_date="not-a-date", to_date="2024-13-45") == everything
    assert _line_ids(db, store_id=str(catalog.store.id)) == _line_ids(db, store_id=catalog.store.id)


def test_results_are_grouped_by_order(db, catalog, make_order):
    order = make_order(OrderStatus.PRESCRIPTION_DONE, [(catalog.lens, 2), (catalog.frame, 1)])

    groups = EligibilityResolver(db).find_purchasable_orders(store_id=catalog.store.id)

    assert len(groups) == 1
    group = groups[0]
    assert group["order_id"] == order.id
    assert group["customer_name"] == "Hanako Yamada"
    assert [i["category"] for i in group["items"]] == ["lens", "frame"]
    assert group["total_quantity"] == 3
    assert group["estimated_cost"] == 7000
