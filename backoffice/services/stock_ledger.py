# FILE: backoffice/services/stock_ledger.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, joinedload

from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.db.transaction import atomic
from backoffice.models.catalog import Product, ProductCategory, Store
from backoffice.models.stock import AdjustmentType, StockAdjustmentRecord, StockLevel
from backoffice.utils.parsing import D, clean_str, money2, parse_int

logger = logging.getLogger(__name__)

ALERT_OUT_OF_STOCK = "out_of_stock"
ALERT_LOW_STOCK = "low_stock"
ALERT_OVERSTOCKED = "overstocked"
ALERT_TYPES = (ALERT_OUT_OF_STOCK, ALERT_LOW_STOCK, ALERT_OVERSTOCKED)


def suggested_order_quantity(level: StockLevel) -> int:
    """Top up to max stock, never less than one unit."""
    return max(int(level.max_stock or 0) - int(level.current_quantity or 0), 1)


def alert_type_for(level: StockLevel) -> Optional[str]:
    current = int(level.current_quantity or 0)
    if current == 0:
        return ALERT_OUT_OF_STOCK
    if current <= int(level.safety_stock or 0):
        return ALERT_LOW_STOCK
    if int(level.max_stock or 0) > 0 and current > int(level.max_stock):
        return ALERT_OVERSTOCKED
    return None


class StockLedger:
    """Quantity-managed stock per (store, product) with an append-only adjustment trail."""

    def __init__(self, db: Session):
        self.db = db

    # ---- writes ----
    def _lock_level(self, product_id: int, store_id: int) -> Optional[StockLevel]:
        return (
            self.db.query(StockLevel)
            .filter(StockLevel.product_id == product_id, StockLevel.store_id == store_id)
            .with_for_update()
            .first()
        )

    def apply_adjustment(
        self,
        *,
        product_id: int,
        store_id: int,
        delta: int,
        reason: str,
        actor_id: Optional[int],
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        create_missing: bool = False,
    ) -> StockLevel:
        """
        Lock, check, write, audit. Runs inside the caller's transaction
        (receiving posts call this directly); adjust_stock() wraps it.
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("Adjustment quantity must be a whole number", details={"delta": delta})
        if delta == 0:
            raise ValidationError("Adjustment quantity must not be zero")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Adjustment reason is required")

        level = self._lock_level(product_id, store_id)
        if level is None:
            if not create_missing:
                raise NotFoundError(
                    "No stock record for this product in this store",
                    details={"product_id": product_id, "store_id": store_id},
                )
            if not self.db.get(Product, product_id):
                raise NotFoundError(f"Product {product_id} not found")
            if not self.db.get(Store, store_id):
                raise NotFoundError(f"Store {store_id} not found")
            level = StockLevel(product_id=product_id, store_id=store_id, current_quantity=0)
            self.db.add(level)
            self.db.flush()

        before = int(level.current_quantity or 0)
        after = before + delta
        if after < 0:
            logger.warning(
                "stock adjust rejected: product=%s store=%s current=%s delta=%s",
                product_id, store_id, before, delta,
            )
            raise ValidationError(
                f"Insufficient stock: current stock {before}, adjustment {delta}",
                details={"current_quantity": before, "delta": delta},
            )

        level.current_quantity = after
        self.db.add(StockAdjustmentRecord(
            stock_level_id=level.id,
            product_id=product_id,
            store_id=store_id,
            adjustment_type=AdjustmentType.INCREASE if delta > 0 else AdjustmentType.DECREASE,
            quantity_before=before,
            quantity_after=after,
            adjustment_quantity=delta,
            reason=reason,
            ref_type=ref_type,
            ref_id=ref_id,
            adjusted_by_id=actor_id,
        ))
        self.db.flush()
        return level

    def adjust_stock(
        self,
        *,
        product_id: int,
        store_id: int,
        delta: int,
        reason: str,
        actor_id: Optional[int],
        create_missing: bool = False,
    ) -> StockLevel:
        with atomic(self.db):
            level = self.apply_adjustment(
                product_id=product_id,
                store_id=store_id,
                delta=delta,
                reason=reason,
                actor_id=actor_id,
                ref_type="MANUAL",
                create_missing=create_missing,
            )

        logger.info(
            "stock adjusted: product=%s store=%s delta=%s now=%s by=%s",
            product_id, store_id, delta, level.current_quantity, actor_id,
        )
        return level

    # ---- reads ----
    def get_level(self, product_id: int, store_id: int) -> StockLevel:
        level = (
            self.db.query(StockLevel)
            .filter(StockLevel.product_id == product_id, StockLevel.store_id == store_id)
            .first()
        )
        if not level:
            raise NotFoundError(
                "No stock record for this product in this store",
                details={"product_id": product_id, "store_id": store_id},
            )
        return level

    def list_levels(
        self,
        *,
        store_id: Any = None,
        product_id: Any = None,
        category: Any = None,
        low_stock_only: bool = False,
        auto_order_enabled: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[StockLevel], int]:
        store_id = parse_int(store_id)
        product_id = parse_int(product_id)
        category = clean_str(category)

        q = self.db.query(StockLevel).join(Product, StockLevel.product_id == Product.id)
        if store_id is not None:
            q = q.filter(StockLevel.store_id == store_id)
        if product_id is not None:
            q = q.filter(StockLevel.product_id == product_id)
        if category:
            try:
                q = q.filter(Product.category == ProductCategory(category.lower()))
            except ValueError:
                logger.debug("ignoring unknown category filter: %r", category)
        if low_stock_only:
            q = q.filter(StockLevel.current_quantity <= StockLevel.safety_stock)
        if auto_order_enabled is not None:
            q = q.filter(StockLevel.auto_order_enabled.is_(bool(auto_order_enabled)))

        total = q.count()
        rows = (
            q.options(joinedload(StockLevel.product))
            .order_by(Product.product_code.asc(), StockLevel.store_id.asc())
            .offset(max(int(offset or 0), 0))
            .limit(max(min(int(limit or 100), 500), 1))
            .all()
        )
        return rows, total

    def list_alerts(self, *, store_id: Any = None, alert_type: Any = None) -> List[Dict[str, Any]]:
        store_id = parse_int(store_id)
        alert_type = clean_str(alert_type)
        if alert_type not in ALERT_TYPES:
            alert_type = None

        q = (
            self.db.query(StockLevel)
            .join(Product, StockLevel.product_id == Product.id)
            .options(joinedload(StockLevel.product))
            .filter(or_(
                StockLevel.current_quantity <= StockLevel.safety_stock,
                and_(StockLevel.max_stock > 0, StockLevel.current_quantity > StockLevel.max_stock),
            ))
        )
        if store_id is not None:
            q = q.filter(StockLevel.store_id == store_id)

        alerts: List[Dict[str, Any]] = []
        for level in q.order_by(StockLevel.current_quantity.asc(), StockLevel.id.asc()).all():
            kind = alert_type_for(level)
            if kind is None or (alert_type and kind != alert_type):
                continue
            threshold = level.max_stock if kind == ALERT_OVERSTOCKED else level.safety_stock
            alerts.append({
                "stock_level_id": level.id,
                "store_id": level.store_id,
                "product_id": level.product_id,
                "product_code": level.product.product_code,
                "product_name": level.product.name,
                "alert_type": kind,
                "current_quantity": int(level.current_quantity),
                "threshold_quantity": int(threshold or 0),
                "suggested_order_quantity": 0 if kind == ALERT_OVERSTOCKED else suggested_order_quantity(level),
            })
        return alerts

    def suggest_replenishment(self, store_id: int, *, auto_order_only: bool = False) -> List[Dict[str, Any]]:
        """
        Every level at or under safety stock, topped up to max stock.
        Advisory only; nothing is written.
        """
        q = (
            self.db.query(StockLevel)
            .join(Product, StockLevel.product_id == Product.id)
            .options(joinedload(StockLevel.product))
            .filter(
                StockLevel.store_id == store_id,
                StockLevel.current_quantity <= StockLevel.safety_stock,
            )
        )
        if auto_order_only:
            q = q.filter(StockLevel.auto_order_enabled.is_(True))

        out: List[Dict[str, Any]] = []
        for level in q.all():
            product = level.product
            qty = suggested_order_quantity(level)
            out.append({
                "stock_level_id": level.id,
                "store_id": level.store_id,
                "product_id": product.id,
                "product_code": product.product_code,
                "product_name": product.name,
                "brand": product.brand,
                "current_quantity": int(level.current_quantity),
                "safety_stock": int(level.safety_stock),
                "max_stock": int(level.max_stock),
                "shortage": int(level.safety_stock) - int(level.current_quantity),
                "suggested_quantity": qty,
                "unit_cost": money2(product.cost_price),
                "suggested_cost": money2(D(product.cost_price) * qty),
                "auto_order_enabled": bool(level.auto_order_enabled),
            })

        out.sort(key=lambda r: (-r["shortage"], r["product_code"]))
        return out

    def adjustment_history(
        self,
        *,
        store_id: Any = None,
        product_id: Any = None,
        limit: int = 100,
    ) -> List[StockAdjustmentRecord]:
        store_id = parse_int(store_id)
        product_id = parse_int(product_id)

        q = self.db.query(StockAdjustmentRecord)
        if store_id is not None:
            q = q.filter(StockAdjustmentRecord.store_id == store_id)
        if product_id is not None:
            q = q.filter(StockAdjustmentRecord.product_id == product_id)
        return (
            q.order_by(StockAdjustmentRecord.created_at.desc(), StockAdjustmentRecord.id.desc())
            .limit(max(min(int(limit or 100), 1000), 1))
            .all()
        )
