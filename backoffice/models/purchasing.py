# FILE: backoffice/models/purchasing.py
from __future__ import annotations

import enum
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Date, DateTime,
    ForeignKey, Text, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from backoffice.db.base import Base
from backoffice.models.catalog import Money, ValueEnum


class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    CONFIRMED = "confirmed"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({PurchaseOrderStatus.DELIVERED, PurchaseOrderStatus.CANCELLED})
RECEIVABLE_STATUSES = frozenset({
    PurchaseOrderStatus.SENT,
    PurchaseOrderStatus.CONFIRMED,
    PurchaseOrderStatus.PARTIALLY_DELIVERED,
})


# -------------------------
# Number series
# -------------------------
class PurchaseOrderNumberSeries(Base):
    """One row per (store, day); locked FOR UPDATE while a number is handed out."""
    __tablename__ = "purchase_order_number_series"
    __table_args__ = (
        UniqueConstraint("store_id", "date_key", name="uq_po_number_series_store_date"),
    )

    id = Column(Integer, primary_key=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    date_key = Column(Integer, nullable=False)      # YYYYMMDD
    next_seq = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class DocumentNumberSeries(Base):
    __tablename__ = "document_number_series"
    __table_args__ = (
        UniqueConstraint("key", "date_key", name="uq_document_number_series_key_date"),
    )

    id = Column(Integer, primary_key=True)
    key = Column(String(30), nullable=False)         # RCV etc.
    date_key = Column(Integer, nullable=False)      # YYYYMMDD
    next_seq = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# -------------------------
# Purchase Orders
# -------------------------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    __table_args__ = (
        UniqueConstraint("purchase_order_number", name="uq_purchase_orders_number"),
        Index("ix_po_supplier_date", "supplier_id", "order_date"),
        Index("ix_po_store_date", "store_id", "order_date"),
        Index("ix_po_status_date", "status", "order_date"),
    )

    id = Column(Integer, primary_key=True)
    purchase_order_number = Column(String(50), nullable=False, index=True)

    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)

    order_date = Column(Date, nullable=False, default=date.today)
    expected_delivery_date = Column(Date, nullable=True)
    actual_delivery_date = Column(Date, nullable=True)

    status = Column(
        ValueEnum(PurchaseOrderStatus, name="purchase_order_status"),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
    )

    subtotal_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    total_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    notes = Column(Text, nullable=False, default="")

    sent_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)

    created_by_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    supplier = relationship("Supplier")
    store = relationship("Store")
    lines = relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )
    receivings = relationship("Receiving", back_populates="purchase_order", order_by="Receiving.id")


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_item_quantity_positive"),
    )

    id = Column(Integer, primary_key=True)
    purchase_order_id = Column(
        Integer, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    prescription_id = Column(Integer, nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Money, nullable=False, default=Decimal("0.00"))
    total_cost = Column(Money, nullable=False, default=Decimal("0.00"))

    specifications = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")

    purchase_order = relationship("PurchaseOrder", back_populates="lines")
    product = relationship("Product")
    order_line = relationship("OrderLine")
    receiving_lines = relationship("ReceivingLine", back_populates="purchase_order_line")
