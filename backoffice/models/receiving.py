# FILE: backoffice/models/receiving.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime,
    ForeignKey, Text, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship

from backoffice.db.base import Base
from backoffice.models.catalog import Money, ValueEnum


class ReceivingStatus(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QualityStatus(str, enum.Enum):
    GOOD = "good"
    DAMAGED = "damaged"
    DEFECTIVE = "defective"
    INCORRECT_SPEC = "incorrect_spec"
    PENDING = "pending"


class Receiving(Base):
    __tablename__ = "receivings"
    __table_args__ = (
        UniqueConstraint("receiving_number", name="uq_receivings_number"),
    )

    id = Column(Integer, primary_key=True)
    receiving_number = Column(String(50), nullable=False, index=True)
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False, index=True)

    received_by_id = Column(Integer, nullable=False, index=True)
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(ValueEnum(ReceivingStatus, name="receiving_status"), nullable=False, default=ReceivingStatus.COMPLETED)
    notes = Column(Text, nullable=False, default="")

    cancelled_by_id = Column(Integer, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(String(255), nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="receivings")
    lines = relationship(
        "ReceivingLine",
        back_populates="receiving",
        cascade="all, delete-orphan",
        order_by="ReceivingLine.id",
    )


class ReceivingLine(Base):
    __tablename__ = "receiving_items"
    __table_args__ = (
        CheckConstraint("received_quantity >= 0", name="ck_receiving_item_qty_nonneg"),
    )

    id = Column(Integer, primary_key=True)
    receiving_id = Column(Integer, ForeignKey("receivings.id", ondelete="CASCADE"), nullable=False, index=True)
    purchase_order_item_id = Column(Integer, ForeignKey("purchase_order_items.id"), nullable=False, index=True)

    expected_quantity = Column(Integer, nullable=False)
    received_quantity = Column(Integer, nullable=False, default=0)
    quality_status = Column(ValueEnum(QualityStatus, name="receiving_quality_status"), nullable=False, default=QualityStatus.GOOD)
    actual_cost = Column(Money, nullable=True)
    notes = Column(Text, nullable=False, default="")

    receiving = relationship("Receiving", back_populates="lines")
    purchase_order_line = relationship("PurchaseOrderLine", back_populates="receiving_lines")
