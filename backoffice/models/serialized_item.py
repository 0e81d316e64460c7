# FILE: backoffice/models/serialized_item.py
from __future__ import annotations

import enum
from datetime import datetime, date
from sqlalchemy import (
    Column, Integer, String, Date, DateTime,
    ForeignKey, Text, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from backoffice.db.base import Base
from backoffice.models.catalog import Money, ValueEnum


class SerializedItemStatus(str, enum.Enum):
    IN_STOCK = "in_stock"
    RESERVED = "reserved"
    SOLD = "sold"
    DAMAGED = "damaged"
    TRANSFERRED = "transferred"


class SerializedItem(Base):
    __tablename__ = "serialized_items"
    __table_args__ = (
        UniqueConstraint("serial_number", name="uq_serialized_items_serial"),
        Index("ix_serialized_items_store_status", "store_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    serial_number = Column(String(100), nullable=False)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    # line this unit was received against; NULL for units created outside purchasing
    purchase_order_item_id = Column(Integer, ForeignKey("purchase_order_items.id"), nullable=True, index=True)

    color = Column(String(50), nullable=False)
    size = Column(String(50), nullable=False, default="")
    status = Column(
        ValueEnum(SerializedItemStatus, name="serialized_item_status"),
        nullable=False,
        default=SerializedItemStatus.IN_STOCK,
    )
    location = Column(String(100), nullable=False, default="main_warehouse")

    purchase_date = Column(Date, nullable=False, default=date.today)
    purchase_price = Column(Money, nullable=True)
    notes = Column(Text, nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    product = relationship("Product")
    store = relationship("Store")
    history = relationship(
        "SerializedItemStatusHistory",
        back_populates="item",
        order_by="SerializedItemStatusHistory.id",
    )


class SerializedItemStatusHistory(Base):
    """Append-only; one row per status change including the initial mint."""
    __tablename__ = "serialized_item_status_history"

    id = Column(Integer, primary_key=True)
    serialized_item_id = Column(Integer, ForeignKey("serialized_items.id"), nullable=False, index=True)

    old_status = Column(ValueEnum(SerializedItemStatus, name="serialized_item_status"), nullable=True)
    new_status = Column(ValueEnum(SerializedItemStatus, name="serialized_item_status"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)

    changed_by_id = Column(Integer, nullable=True)
    change_reason = Column(String(255), nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    item = relationship("SerializedItem", back_populates="history")
