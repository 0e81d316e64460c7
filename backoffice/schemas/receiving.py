# FILE: backoffice/schemas/receiving.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from backoffice.models.receiving import QualityStatus, ReceivingStatus


class ReceivingLineIn(BaseModel):
    purchase_order_line_id: int
    received_quantity: int = Field(..., ge=0)
    quality_status: QualityStatus = QualityStatus.GOOD
    actual_cost: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)


class ReceivingCreateIn(BaseModel):
    purchase_order_id: int
    lines: List[ReceivingLineIn] = Field(..., min_length=1)
    received_at: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)


class QualityUpdateIn(BaseModel):
    quality_status: QualityStatus
    notes: Optional[str] = Field(None, max_length=1000)


class ReceivingCancelIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class ReceivingLineOut(BaseModel):
    id: int
    purchase_order_item_id: int
    expected_quantity: int
    received_quantity: int
    quality_status: QualityStatus
    actual_cost: Optional[Decimal]
    notes: str

    model_config = ConfigDict(from_attributes=True)


class ReceivingOut(BaseModel):
    id: int
    receiving_number: str
    purchase_order_id: int
    received_by_id: int
    received_at: datetime
    status: ReceivingStatus
    notes: str
    cancelled_by_id: Optional[int]
    cancelled_at: Optional[datetime]
    cancel_reason: str

    lines: List[ReceivingLineOut] = []

    model_config = ConfigDict(from_attributes=True)
