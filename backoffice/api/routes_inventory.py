# FILE: backoffice/api/routes_inventory.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backoffice.api.deps import Actor, current_actor, get_db
from backoffice.api.response import ok, page_meta
from backoffice.schemas.stock import StockAdjustIn, StockAdjustmentOut, StockLevelOut
from backoffice.services.stock_ledger import StockLedger
from backoffice.utils.parsing import parse_int

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/stock-levels")
def list_stock_levels(
    store_id: Optional[str] = Query(None),
    product_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    low_stock_only: bool = Query(False),
    auto_order_enabled: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows, total = StockLedger(db).list_levels(
        store_id=store_id if store_id is not None else actor.store_id,
        product_id=product_id,
        category=category,
        low_stock_only=low_stock_only,
        auto_order_enabled=auto_order_enabled,
        limit=limit,
        offset=offset,
    )
    return ok(
        [StockLevelOut.model_validate(x).model_dump() for x in rows],
        meta=page_meta(total, limit, offset),
    )


@router.post("/stock-levels/adjust")
def adjust_stock(
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    level = StockLedger(db).adjust_stock(
        product_id=payload.product_id,
        store_id=payload.store_id or actor.store_id,
        delta=payload.delta,
        reason=payload.reason,
        actor_id=actor.actor_id,
        create_missing=payload.create_missing,
    )
    return ok(StockLevelOut.model_validate(level).model_dump())


@router.get("/alerts")
def stock_alerts(
    store_id: Optional[str] = Query(None),
    alert_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    return ok(StockLedger(db).list_alerts(
        store_id=store_id if store_id is not None else actor.store_id,
        alert_type=alert_type,
    ))


@router.get("/suggested-orders")
def suggested_orders(
    store_id: Optional[str] = Query(None),
    auto_order_only: bool = Query(False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    sid = parse_int(store_id)
    rows = StockLedger(db).suggest_replenishment(
        sid if sid is not None else actor.store_id,
        auto_order_only=auto_order_only,
    )
    return ok(rows)


@router.get("/adjustments")
def adjustment_history(
    store_id: Optional[str] = Query(None),
    product_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows = StockLedger(db).adjustment_history(
        store_id=store_id if store_id is not None else actor.store_id,
        product_id=product_id,
        limit=limit,
    )
    return ok([StockAdjustmentOut.model_validate(x).model_dump() for x in rows])
