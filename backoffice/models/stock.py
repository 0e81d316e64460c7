# FILE: backoffice/models/stock.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric,
    ForeignKey, Text, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship

from backoffice.db.base import Base
from backoffice.models.catalog import ValueEnum


class AdjustmentType(str, enum.Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class StockLevel(Base):
    __tablename__ = "stock_levels"
    __table_args__ = (
        UniqueConstraint("store_id", "product_id", name="uq_stock_levels_store_product"),
        CheckConstraint("current_quantity >= 0", name="ck_stock_levels_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    current_quantity = Column(Integer, nullable=False, default=0)
    safety_stock = Column(Integer, nullable=False, default=0)
    max_stock = Column(Integer, nullable=False, default=0)
    average_usage = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    auto_order_enabled = Column(Boolean, nullable=False, default=False)

    last_order_quantity = Column(Integer, nullable=True)
    last_order_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    product = relationship("Product")
    store = relationship("Store")
    adjustments = relationship(
        "StockAdjustmentRecord",
        back_populates="stock_level",
        order_by="StockAdjustmentRecord.id",
    )


class StockAdjustmentRecord(Base):
    """Immutable audit row; written once per StockLevel mutation, never updated."""
    __tablename__ = "stock_adjustment_history"

    id = Column(Integer, primary_key=True)
    stock_level_id = Column(Integer, ForeignKey("stock_levels.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)

    adjustment_type = Column(ValueEnum(AdjustmentType, name="stock_adjustment_type"), nullable=False)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    adjustment_quantity = Column(Integer, nullable=False)   # signed delta
    reason = Column(String(255), nullable=False)

    ref_type = Column(String(30), nullable=True)    # RECEIVING / RECEIVING_CANCEL / MANUAL
    ref_id = Column(Integer, nullable=True)

    adjusted_by_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    stock_level = relationship("StockLevel", back_populates="adjustments")
    product = relationship("Product")
