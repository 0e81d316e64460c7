# FILE: backoffice/schemas/stock.py
from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from backoffice.models.stock import AdjustmentType


class StockAdjustIn(BaseModel):
    product_id: int
    store_id: Optional[int] = None
    delta: int
    reason: str = Field(..., min_length=1, max_length=255)
    create_missing: bool = False


class StockLevelOut(BaseModel):
    id: int
    store_id: int
    product_id: int
    current_quantity: int
    safety_stock: int
    max_stock: int
    average_usage: Decimal
    auto_order_enabled: bool
    last_order_quantity: Optional[int]
    last_order_date: Optional[date]
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StockAdjustmentOut(BaseModel):
    id: int
    stock_level_id: int
    product_id: int
    store_id: int
    adjustment_type: AdjustmentType
    quantity_before: int
    quantity_after: int
    adjustment_quantity: int
    reason: str
    ref_type: Optional[str]
    ref_id: Optional[int]
    adjusted_by_id: Optional[int]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
