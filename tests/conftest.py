import os

# must be set before backoffice.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_ALG", "HS256")

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice import models  # noqa: F401
from backoffice.db.base import Base
from backoffice.models import (
    Customer,
    ManagementType,
    Order,
    OrderLine,
    OrderStatus,
    Product,
    ProductCategory,
    PurchaseOrderStatus,
    Store,
    Supplier,
)
from backoffice.services.purchase_orders import PurchaseOrderService

ACTOR_ID = 7

_order_seq = count(1)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@dataclass
class Catalog:
    store: Store
    other_store: Store
    supplier: Supplier
    inactive_supplier: Supplier
    customer: Customer
    other_customer: Customer
    lens: Product
    frame: Product
    contact: Product
    accessory: Product
    hearing_aid: Product


def seed_catalog(session) -> Catalog:
    store = Store(store_code="S1", name="Shibuya")
    other_store = Store(store_code="S2", name="Shinjuku")
    supplier = Supplier(supplier_code="SUP1", name="Optic Supply")
    inactive = Supplier(supplier_code="SUP9", name="Closed Co", is_active=False)
    customer = Customer(customer_code="C001", full_name="Hanako Yamada", full_name_kana="YAMADA HANAKO")
    other_customer = Customer(customer_code="C002", full_name="Taro Suzuki", full_name_kana="SUZUKI TARO")

    lens = Product(
        product_code="LNS-001", name="Single vision 1.60", category=ProductCategory.LENS,
        management_type=ManagementType.QUANTITY, cost_price=Decimal("1000"), retail_price=Decimal("3000"),
    )
    frame = Product(
        product_code="FRM-001", name="Classic round", brand="Kanazawa", category=ProductCategory.FRAME,
        management_type=ManagementType.INDIVIDUAL, cost_price=Decimal("5000"), retail_price=Decimal("15000"),
    )
    contact = Product(
        product_code="CL-001", name="Daily 30p", category=ProductCategory.CONTACT,
        management_type=ManagementType.QUANTITY, cost_price=Decimal("1200"), retail_price=Decimal("2400"),
    )
    accessory = Product(
        product_code="ACC-001", name="Cleaning cloth", category=ProductCategory.ACCESSORY,
        management_type=ManagementType.QUANTITY, cost_price=Decimal("100"), retail_price=Decimal("500"),
    )
    hearing_aid = Product(
        product_code="HA-001", name="Behind the ear", category=ProductCategory.HEARING_AID,
        management_type=ManagementType.INDIVIDUAL, cost_price=Decimal("50000"), retail_price=Decimal("120000"),
    )

    session.add_all([store, other_store, supplier, inactive, customer, other_customer,
                     lens, frame, contact, accessory, hearing_aid])
    session.commit()
    return Catalog(store, other_store, supplier, inactive, customer, other_customer,
                   lens, frame, contact, accessory, hearing_aid)


def add_order(session, catalog, status, lines, *, store=None, customer=None, order_date=None,
              serialized_item_id=None) -> Order:
    order = Order(
        order_number=f"ORD{next(_order_seq):05d}",
        customer_id=(customer or catalog.customer).id,
        store_id=(store or catalog.store).id,
        order_date=order_date or date.today(),
        status=status,
    )
    for product, qty in lines:
        order.lines.append(OrderLine(
            product_id=product.id,
            quantity=qty,
            unit_price=product.retail_price,
            total_price=product.retail_price * qty,
            serialized_item_id=serialized_item_id,
        ))
    session.add(order)
    session.commit()
    return order


@pytest.fixture
def catalog(db) -> Catalog:
    return seed_catalog(db)


@pytest.fixture
def make_order(db, catalog):
    """make_order(status, [(product, qty), ...], store=None, customer=None, order_date=None, serialized_item_id=None)"""

    def _make(status, lines, **kwargs):
        return add_order(db, catalog, status, lines, **kwargs)

    return _make


@pytest.fixture
def sent_po(db, catalog, make_order):
    """A sent purchase order: lens x2 (quantity-managed) and frame x3 (individual)."""
    lens_order = make_order(OrderStatus.PRESCRIPTION_DONE, [(catalog.lens, 2)])
    frame_order = make_order(OrderStatus.ORDERED, [(catalog.frame, 3)])
    svc = PurchaseOrderService(db)
    po = svc.create_purchase_order(
        supplier_id=catalog.supplier.id,
        store_id=catalog.store.id,
        order_ids=[lens_order.id, frame_order.id],
        actor_id=ACTOR_ID,
    )
    svc.send(po.id, ACTOR_ID)
    assert po.status == PurchaseOrderStatus.SENT
    return po


@pytest.fixture
def line_for():
    def _line_for(po, product):
        return next(li for li in po.lines if li.product_id == product.id)

    return _line_for
