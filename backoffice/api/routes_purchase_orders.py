# FILE: backoffice/api/routes_purchase_orders.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backoffice.api.deps import Actor, current_actor, get_db
from backoffice.api.response import ok, page_meta
from backoffice.schemas.purchase_order import (
    PurchaseOrderCreateIn,
    PurchaseOrderListOut,
    PurchaseOrderOut,
    PurchaseOrderStatusIn,
    SupplierOut,
)
from backoffice.services.eligibility import EligibilityResolver
from backoffice.services.purchase_orders import (
    PurchaseOrderFilters,
    PurchaseOrderService,
    PurchaseOrderSort,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/purchase-orders", tags=["purchase-orders"])


def _filters(
    supplier_id: Optional[str] = Query(None),
    store_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    order_date_from: Optional[str] = Query(None),
    order_date_to: Optional[str] = Query(None),
    expected_from: Optional[str] = Query(None),
    expected_to: Optional[str] = Query(None),
    number: Optional[str] = Query(None),
) -> PurchaseOrderFilters:
    # raw strings on purpose: a bad filter value is dropped, not a 422
    return PurchaseOrderFilters.from_raw(
        supplier_id=supplier_id,
        store_id=store_id,
        status=status,
        order_date_from=order_date_from,
        order_date_to=order_date_to,
        expected_from=expected_from,
        expected_to=expected_to,
        number=number,
    )


# =========================
# ELIGIBILITY
# =========================
@router.get("/available-orders")
def available_orders(
    store_id: Optional[str] = Query(None),
    customer_id: Optional[str] = Query(None),
    customer_name: Optional[str] = Query(None),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows = EligibilityResolver(db).find_purchasable_orders(
        store_id=store_id if store_id is not None else actor.store_id,
        customer_id=customer_id,
        customer_name=customer_name,
        from_date=from_date,
        to_date=to_date,
    )
    return ok(rows)


# =========================
# QUERIES
# =========================
@router.get("")
def list_purchase_orders(
    filters: PurchaseOrderFilters = Depends(_filters),
    sort: PurchaseOrderSort = Query(PurchaseOrderSort.CREATED_AT_DESC),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows, total = PurchaseOrderService(db).list_purchase_orders(filters, limit=limit, offset=offset, sort=sort)
    return ok(
        [PurchaseOrderListOut.model_validate(x).model_dump() for x in rows],
        meta=page_meta(total, limit, offset),
    )


@router.get("/history")
def purchase_order_history(
    filters: PurchaseOrderFilters = Depends(_filters),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows, total = PurchaseOrderService(db).history(filters, limit=limit, offset=offset)
    return ok(
        [PurchaseOrderListOut.model_validate(x).model_dump() for x in rows],
        meta=page_meta(total, limit, offset),
    )


@router.get("/statistics")
def purchase_order_statistics(
    filters: PurchaseOrderFilters = Depends(_filters),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    return ok(PurchaseOrderService(db).statistics(filters))


@router.get("/suppliers")
def active_suppliers(
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows = PurchaseOrderService(db).list_active_suppliers()
    return ok([SupplierOut.model_validate(x).model_dump() for x in rows])


@router.get("/{po_id}")
def get_purchase_order(
    po_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    po = PurchaseOrderService(db).get(po_id)
    return ok(PurchaseOrderOut.model_validate(po).model_dump())


# =========================
# WRITES
# =========================
@router.post("")
def create_purchase_order(
    payload: PurchaseOrderCreateIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    po = PurchaseOrderService(db).create_purchase_order(
        supplier_id=payload.supplier_id,
        store_id=payload.store_id or actor.store_id,
        order_ids=payload.order_ids,
        actor_id=actor.actor_id,
        expected_delivery_date=payload.expected_delivery_date,
        notes=payload.notes,
    )
    return ok(PurchaseOrderOut.model_validate(po).model_dump(), status_code=201)


@router.put("/{po_id}/status")
def update_purchase_order_status(
    po_id: int,
    payload: PurchaseOrderStatusIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    po = PurchaseOrderService(db).update_status(po_id, payload.status, actor.actor_id)
    return ok(PurchaseOrderOut.model_validate(po).model_dump())


@router.post("/{po_id}/send")
def send_purchase_order(
    po_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    po = PurchaseOrderService(db).send(po_id, actor.actor_id)
    return ok(PurchaseOrderOut.model_validate(po).model_dump())
