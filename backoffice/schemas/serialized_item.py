# FILE: backoffice/schemas/serialized_item.py
from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from backoffice.models.serialized_item import SerializedItemStatus


class MintTemplateIn(BaseModel):
    # None -> generated; "" is rejected by the service
    serial_number: Optional[str] = Field(None, max_length=100)
    color: str = Field(..., max_length=50)
    size: Optional[str] = Field(None, max_length=50)
    status: SerializedItemStatus = SerializedItemStatus.IN_STOCK
    location: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class MintIn(BaseModel):
    purchase_order_line_id: int
    store_id: Optional[int] = None
    count: int = Field(..., ge=1, le=500)
    template: List[MintTemplateIn] = Field(..., min_length=1)


class ItemStatusIn(BaseModel):
    status: SerializedItemStatus
    order_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class SerializedItemOut(BaseModel):
    id: int
    serial_number: str
    product_id: int
    store_id: int
    purchase_order_item_id: Optional[int]
    color: str
    size: str
    status: SerializedItemStatus
    location: str
    purchase_date: date
    purchase_price: Optional[Decimal]
    notes: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ItemStatusHistoryOut(BaseModel):
    id: int
    serialized_item_id: int
    old_status: Optional[SerializedItemStatus]
    new_status: SerializedItemStatus
    order_id: Optional[int]
    changed_by_id: Optional[int]
    change_reason: str
    notes: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
