# FILE: backoffice/models/catalog.py
"""
Reference tables owned by other parts of the back office (store master,
supplier master, product catalog, customer orders).

The procurement core only reads them, except Order.status which it moves
forward (purchase_ordered / lens_received).
"""
from __future__ import annotations

import enum
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric,
    ForeignKey, Text, Enum, Index,
)
from sqlalchemy.orm import relationship

from backoffice.db.base import Base

Money = Numeric(14, 2)


def ValueEnum(enum_cls, name: str) -> Enum:
    """Enum column that stores .value, the lowercase codes the rest of the back office uses."""
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


# -------------------------
# Enums
# -------------------------
class ProductCategory(str, enum.Enum):
    FRAME = "frame"
    LENS = "lens"
    CONTACT = "contact"
    ACCESSORY = "accessory"
    HEARING_AID = "hearing_aid"


class ManagementType(str, enum.Enum):
    INDIVIDUAL = "individual"
    QUANTITY = "quantity"


class OrderStatus(str, enum.Enum):
    ORDERED = "ordered"
    PRESCRIPTION_DONE = "prescription_done"
    PURCHASE_ORDERED = "purchase_ordered"
    LENS_RECEIVED = "lens_received"
    IN_PRODUCTION = "in_production"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# -------------------------
# Masters
# -------------------------
class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    store_code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    supplier_code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    order_method = Column(String(30), nullable=False, default="email")
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    product_code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=False, default="")

    category = Column(ValueEnum(ProductCategory, name="product_category"), nullable=False, index=True)
    management_type = Column(
        ValueEnum(ManagementType, name="product_management_type"),
        nullable=False,
        default=ManagementType.QUANTITY,
    )

    cost_price = Column(Money, nullable=False, default=Decimal("0.00"))
    retail_price = Column(Money, nullable=False, default=Decimal("0.00"))
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    customer_code = Column(String(50), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    full_name_kana = Column(String(200), nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# -------------------------
# Customer orders
# -------------------------
class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_store_status", "store_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)

    order_date = Column(Date, nullable=False, default=date.today)
    status = Column(ValueEnum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.ORDERED)
    notes = Column(Text, nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    customer = relationship("Customer")
    store = relationship("Store")
    lines = relationship("OrderLine", back_populates="order", order_by="OrderLine.id")


class OrderLine(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    prescription_id = Column(Integer, nullable=True)
    # unit picked from stock at order time (frames)
    serialized_item_id = Column(
        Integer,
        ForeignKey("serialized_items.id", use_alter=True, name="fk_order_items_serialized_item"),
        nullable=True,
    )

    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Money, nullable=False, default=Decimal("0.00"))
    total_price = Column(Money, nullable=False, default=Decimal("0.00"))
    notes = Column(Text, nullable=False, default="")

    order = relationship("Order", back_populates="lines")
    product = relationship("Product")
