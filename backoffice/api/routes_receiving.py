# FILE: backoffice/api/routes_receiving.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backoffice.api.deps import Actor, current_actor, get_db
from backoffice.api.response import ok, page_meta
from backoffice.schemas.receiving import (
    QualityUpdateIn,
    ReceivingCancelIn,
    ReceivingCreateIn,
    ReceivingLineOut,
    ReceivingOut,
)
from backoffice.services.receiving import ReceivingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/receiving", tags=["receiving"])


@router.get("/pending-orders")
def pending_orders(
    store_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows = ReceivingService(db).pending_purchase_orders(
        store_id if store_id is not None else actor.store_id
    )
    return ok(rows)


@router.get("/purchase-orders/{po_id}")
def purchase_order_for_receiving(
    po_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    return ok(ReceivingService(db).purchase_order_detail(po_id))


@router.post("")
def create_receiving(
    payload: ReceivingCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    svc = ReceivingService(db)
    rcv = svc.create_receiving(
        purchase_order_id=payload.purchase_order_id,
        actor_id=actor.actor_id,
        lines=[x.model_dump() for x in payload.lines],
        notes=payload.notes,
        received_at=payload.received_at,
    )
    data = ReceivingOut.model_validate(rcv).model_dump()
    data["purchase_order_status"] = rcv.purchase_order.status.value
    data["awaiting_serialization"] = svc.awaiting_serialization(rcv.purchase_order)
    return ok(data, status_code=201)


@router.get("/history")
def receiving_history(
    store_id: Optional[str] = Query(None),
    supplier_id: Optional[str] = Query(None),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    res = ReceivingService(db).receiving_history(
        store_id=store_id,
        supplier_id=supplier_id,
        from_date=from_date,
        to_date=to_date,
        status=status,
        limit=limit,
        offset=offset,
    )
    return ok(res["rows"], meta=page_meta(res["total"], limit, offset))


@router.get("/received-orders")
def received_orders(
    store_id: Optional[str] = Query(None),
    supplier_id: Optional[str] = Query(None),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    return ok(ReceivingService(db).received_purchase_orders(
        store_id=store_id,
        supplier_id=supplier_id,
        from_date=from_date,
        to_date=to_date,
    ))


@router.get("/{receiving_id}")
def receiving_detail(
    receiving_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    return ok(ReceivingService(db).receiving_detail(receiving_id))


@router.put("/items/{line_id}/quality")
def update_quality(
    line_id: int,
    payload: QualityUpdateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    line = ReceivingService(db).update_quality_status(line_id, payload.quality_status, payload.notes)
    return ok(ReceivingLineOut.model_validate(line).model_dump())


@router.post("/{receiving_id}/cancel")
def cancel_receiving(
    receiving_id: int,
    payload: ReceivingCancelIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rcv = ReceivingService(db).cancel_receiving(receiving_id, actor.actor_id, payload.reason)
    return ok(ReceivingOut.model_validate(rcv).model_dump())
