# FILE: backoffice/schemas/purchase_order.py
from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from backoffice.models.purchasing import PurchaseOrderStatus


class SupplierOut(BaseModel):
    id: int
    supplier_code: str
    name: str
    order_method: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderCreateIn(BaseModel):
    supplier_id: int
    store_id: Optional[int] = None  # defaults to the caller's store
    order_ids: List[int] = Field(..., min_length=1)
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)


class PurchaseOrderStatusIn(BaseModel):
    status: PurchaseOrderStatus


class PurchaseOrderLineOut(BaseModel):
    id: int
    order_id: Optional[int]
    order_item_id: Optional[int]
    product_id: int
    prescription_id: Optional[int]
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    specifications: str
    notes: str

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderOut(BaseModel):
    id: int
    purchase_order_number: str
    supplier_id: int
    store_id: int
    order_date: date
    expected_delivery_date: Optional[date]
    actual_delivery_date: Optional[date]
    status: PurchaseOrderStatus
    subtotal_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    notes: str
    sent_at: Optional[datetime]
    confirmed_at: Optional[datetime]
    created_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    lines: List[PurchaseOrderLineOut] = []

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderListOut(BaseModel):
    id: int
    purchase_order_number: str
    supplier_id: int
    store_id: int
    order_date: date
    expected_delivery_date: Optional[date]
    status: PurchaseOrderStatus
    total_amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
