# FILE: backoffice/api/routes_serialized_items.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backoffice.api.deps import Actor, current_actor, get_db
from backoffice.api.response import ok, page_meta
from backoffice.schemas.serialized_item import (
    ItemStatusHistoryOut,
    ItemStatusIn,
    MintIn,
    SerializedItemOut,
)
from backoffice.services.serialized_items import SerializedItemService
from backoffice.utils.parsing import parse_int

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/serialized-items", tags=["serialized-items"])


@router.post("/mint")
def mint(
    payload: MintIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    items = SerializedItemService(db).mint_serialized_items(
        purchase_order_line_id=payload.purchase_order_line_id,
        store_id=payload.store_id,
        count=payload.count,
        # exclude_unset keeps "serial not given" apart from "serial given empty"
        template=[t.model_dump(exclude_unset=True) for t in payload.template],
        actor_id=actor.actor_id,
    )
    return ok([SerializedItemOut.model_validate(x).model_dump() for x in items], status_code=201)


@router.get("/purchase-order-items/{line_id}/status")
def minting_status(
    line_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    return ok(SerializedItemService(db).minting_status(line_id))


@router.get("/summary")
def inventory_summary(
    store_id: Optional[str] = Query(None),
    product_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    sid = parse_int(store_id)
    return ok(SerializedItemService(db).inventory_summary(sid if sid is not None else actor.store_id, product_id))


@router.get("")
def list_items(
    store_id: Optional[str] = Query(None),
    product_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    serial_number: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows, total = SerializedItemService(db).list_items(
        store_id=store_id if store_id is not None else actor.store_id,
        product_id=product_id,
        status=status,
        serial_number=serial_number,
        limit=limit,
        offset=offset,
    )
    return ok(
        [SerializedItemOut.model_validate(x).model_dump() for x in rows],
        meta=page_meta(total, limit, offset),
    )


@router.get("/serial/{serial_number}")
def get_by_serial(
    serial_number: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    item = SerializedItemService(db).get_by_serial(serial_number)
    return ok(SerializedItemOut.model_validate(item).model_dump())


@router.put("/{item_id}/status")
def update_item_status(
    item_id: int,
    payload: ItemStatusIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    item = SerializedItemService(db).update_status(
        item_id,
        payload.status,
        actor.actor_id,
        order_id=payload.order_id,
        reason=payload.reason,
        notes=payload.notes,
    )
    return ok(SerializedItemOut.model_validate(item).model_dump())


@router.get("/{item_id}/history")
def item_history(
    item_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    rows = SerializedItemService(db).status_history(item_id)
    return ok([ItemStatusHistoryOut.model_validate(x).model_dump() for x in rows])
