# FILE: backoffice/services/purchase_orders.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from backoffice.core.config import settings
from backoffice.core.errors import NotFoundError, ValidationError
from backoffice.db.transaction import atomic
from backoffice.models.catalog import Order, OrderStatus, Store, Supplier
from backoffice.models.purchasing import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    TERMINAL_STATUSES,
)
from backoffice.services.eligibility import EligibilityResolver
from backoffice.services.number_series import next_purchase_order_number
from backoffice.utils.parsing import D, clean_str, money2, parse_date, parse_int
from backoffice.utils.timezone import now_local, today_local

logger = logging.getLogger(__name__)

TAX_RATE = D(settings.TAX_RATE)

# order statuses from which any line can still be bought
PURCHASABLE_ORDER_STATUSES = frozenset({OrderStatus.ORDERED, OrderStatus.PRESCRIPTION_DONE})


# -------------------------
# Totals
# -------------------------
def compute_line_cost(unit_cost, quantity) -> Decimal:
    return money2(D(unit_cost) * int(quantity or 0))


def compute_totals(
    lines: Iterable[PurchaseOrderLine],
    tax_rate: Decimal = TAX_RATE,
) -> Tuple[Decimal, Decimal, Decimal]:
    """subtotal = sum(line.total_cost), tax = subtotal * rate (half-up, 0.01), total = subtotal + tax"""
    subtotal = money2(sum((D(li.total_cost) for li in lines), Decimal("0")))
    tax = money2(subtotal * D(tax_rate))
    total = money2(subtotal + tax)
    return subtotal, tax, total


def recalculate_totals(po: PurchaseOrder) -> None:
    for li in po.lines:
        li.total_cost = compute_line_cost(li.unit_cost, li.quantity)
    po.subtotal_amount, po.tax_amount, po.total_amount = compute_totals(po.lines)


# -------------------------
# Status machine
# -------------------------
def coerce_status(value: Any) -> PurchaseOrderStatus:
    if isinstance(value, PurchaseOrderStatus):
        return value
    try:
        return PurchaseOrderStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown purchase order status: {value}",
            details={"allowed": [s.value for s in PurchaseOrderStatus]},
        )


def validate_status_change(current: PurchaseOrderStatus, target: PurchaseOrderStatus) -> bool:
    """
    Single gate for every purchase order status write.

    Returns False for a same-state write (nothing to do), True when the
    change may be applied, raises ValidationError otherwise.
    """
    if current == target:
        return False
    if current in TERMINAL_STATUSES:
        raise ValidationError(
            f"Purchase order is {current.value}; its status can no longer change",
            details={"current": current.value, "requested": target.value},
        )
    if target == PurchaseOrderStatus.DRAFT:
        raise ValidationError(
            "A purchase order cannot go back to draft",
            details={"current": current.value, "requested": target.value},
        )
    return True


def apply_status(db: Session, po: PurchaseOrder, target: PurchaseOrderStatus) -> bool:
    """Validated write plus its stamps / cascades. Caller owns the transaction."""
    if not validate_status_change(po.status, target):
        return False

    now = now_local()
    po.status = target
    if target == PurchaseOrderStatus.SENT and po.sent_at is None:
        po.sent_at = now
    elif target == PurchaseOrderStatus.CONFIRMED and po.confirmed_at is None:
        po.confirmed_at = now
    elif target == PurchaseOrderStatus.DELIVERED:
        po.actual_delivery_date = now.date()
        mark_source_orders_received(db, po)
    return True


def mark_source_orders_received(db: Session, po: PurchaseOrder) -> List[int]:
    order_ids = sorted({li.order_id for li in po.lines if li.order_id})
    if not order_ids:
        return []
    orders = (
        db.query(Order)
        .filter(Order.id.in_(order_ids))
        .with_for_update()
        .all()
    )
    for o in orders:
        o.status = OrderStatus.LENS_RECEIVED
    db.flush()
    logger.info("PO %s delivered; orders %s -> lens_received", po.purchase_order_number, order_ids)
    return order_ids


# -------------------------
# Listing
# -------------------------
class PurchaseOrderSort(str, enum.Enum):
    CREATED_AT_DESC = "created_at_desc"
    ORDER_DATE_ASC = "order_date_asc"
    ORDER_DATE_DESC = "order_date_desc"
    EXPECTED_DELIVERY_DATE_ASC = "expected_delivery_date_asc"
    EXPECTED_DELIVERY_DATE_DESC = "expected_delivery_date_desc"
    TOTAL_AMOUNT_ASC = "total_amount_asc"
    TOTAL_AMOUNT_DESC = "total_amount_desc"
    STATUS_ASC = "status_asc"
    STATUS_DESC = "status_desc"


_SORT_COLUMNS = {
    PurchaseOrderSort.CREATED_AT_DESC: (PurchaseOrder.created_at.desc(),),
    PurchaseOrderSort.ORDER_DATE_ASC: (PurchaseOrder.order_date.asc(),),
    PurchaseOrderSort.ORDER_DATE_DESC: (PurchaseOrder.order_date.desc(),),
    PurchaseOrderSort.EXPECTED_DELIVERY_DATE_ASC: (PurchaseOrder.expected_delivery_date.asc(),),
    PurchaseOrderSort.EXPECTED_DELIVERY_DATE_DESC: (PurchaseOrder.expected_delivery_date.desc(),),
    PurchaseOrderSort.TOTAL_AMOUNT_ASC: (PurchaseOrder.total_amount.asc(),),
    PurchaseOrderSort.TOTAL_AMOUNT_DESC: (PurchaseOrder.total_amount.desc(),),
    PurchaseOrderSort.STATUS_ASC: (PurchaseOrder.status.asc(),),
    PurchaseOrderSort.STATUS_DESC: (PurchaseOrder.status.desc(),),
}


@dataclass
class PurchaseOrderFilters:
    supplier_id: Optional[int] = None
    store_id: Optional[int] = None
    status: Optional[PurchaseOrderStatus] = None
    order_date_from: Optional[date] = None
    order_date_to: Optional[date] = None
    expected_from: Optional[date] = None
    expected_to: Optional[date] = None
    number: Optional[str] = None

    @classmethod
    def from_raw(cls, **raw: Any) -> "PurchaseOrderFilters":
        """Same leniency as the eligibility filters: bad values are simply not applied."""
        status = None
        raw_status = clean_str(raw.get("status"))
        if raw_status:
            try:
                status = PurchaseOrderStatus(raw_status.lower())
            except ValueError:
                logger.debug("ignoring unknown status filter: %r", raw_status)
        return cls(
            supplier_id=parse_int(raw.get("supplier_id")),
            store_id=parse_int(raw.get("store_id")),
            status=status,
            order_date_from=parse_date(raw.get("order_date_from")),
            order_date_to=parse_date(raw.get("order_date_to")),
            expected_from=parse_date(raw.get("expected_from")),
            expected_to=parse_date(raw.get("expected_to")),
            number=clean_str(raw.get("number")),
        )

    def apply(self, q):
        if self.supplier_id is not None:
            q = q.filter(PurchaseOrder.supplier_id == self.supplier_id)
        if self.store_id is not None:
            q = q.filter(PurchaseOrder.store_id == self.store_id)
        if self.status is not None:
            q = q.filter(PurchaseOrder.status == self.status)
        if self.order_date_from is not None:
            q = q.filter(PurchaseOrder.order_date >= self.order_date_from)
        if self.order_date_to is not None:
            q = q.filter(PurchaseOrder.order_date <= self.order_date_to)
        if self.expected_from is not None:
            q = q.filter(PurchaseOrder.expected_delivery_date >= self.expected_from)
        if self.expected_to is not None:
            q = q.filter(PurchaseOrder.expected_delivery_date <= self.expected_to)
        if self.number:
            q = q.filter(PurchaseOrder.purchase_order_number.like(f"%{self.number}%"))
        return q


# -------------------------
# Service
# -------------------------
class PurchaseOrderService:
    def __init__(self, db: Session, resolver: Optional[EligibilityResolver] = None):
        self.db = db
        self.resolver = resolver or EligibilityResolver(db)

    # ---- lookups ----
    def get(self, po_id: int) -> PurchaseOrder:
        po = (
            self.db.query(PurchaseOrder)
            .options(selectinload(PurchaseOrder.lines).selectinload(PurchaseOrderLine.product))
            .filter(PurchaseOrder.id == po_id)
            .first()
        )
        if not po:
            raise NotFoundError(f"Purchase order {po_id} not found")
        return po

    def _get_for_update(self, po_id: int) -> PurchaseOrder:
        po = (
            self.db.query(PurchaseOrder)
            .filter(PurchaseOrder.id == po_id)
            .with_for_update()
            .first()
        )
        if not po:
            raise NotFoundError(f"Purchase order {po_id} not found")
        return po

    def list_active_suppliers(self) -> List[Supplier]:
        return (
            self.db.query(Supplier)
            .filter(Supplier.is_active.is_(True))
            .order_by(Supplier.name.asc())
            .all()
        )

    # ---- aggregation ----
    def create_purchase_order(
        self,
        *,
        supplier_id: int,
        store_id: int,
        order_ids: Iterable[Any],
        actor_id: int,
        expected_delivery_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> PurchaseOrder:
        ids: List[int] = []
        invalid: List[Any] = []
        for raw in order_ids or []:
            oid = parse_int(raw)
            if oid is None:
                invalid.append(raw)
            elif oid not in ids:
                ids.append(oid)
        if not ids and not invalid:
            raise ValidationError("Select at least one order to purchase")

        with atomic(self.db):
            # must stay the first statement: plain reads below take their
            # snapshot only after this lock is granted
            source_orders = (
                self.db.query(Order)
                .filter(Order.id.in_(ids))
                .order_by(Order.id.asc())
                .with_for_update()
                .populate_existing()
                .all()
            ) if ids else []
            locked_status = {o.id: o.status for o in source_orders}

            supplier = self.db.get(Supplier, supplier_id)
            if not supplier:
                raise NotFoundError(f"Supplier {supplier_id} not found")
            if not supplier.is_active:
                raise ValidationError(f"Supplier {supplier.name} is inactive")
            store = self.db.get(Store, store_id)
            if not store:
                raise NotFoundError(f"Store {store_id} not found")

            lines = self.resolver.eligible_lines(store_id=store.id, order_ids=ids) if ids else []
            # an order bought by a concurrent caller is purchase_ordered by now
            lines = [li for li in lines if locked_status.get(li.order_id) in PURCHASABLE_ORDER_STATUSES]

            eligible_order_ids = {li.order_id for li in lines}
            invalid.extend(i for i in ids if i not in eligible_order_ids)
            if invalid:
                logger.warning("PO create rejected, ineligible orders %s (store=%s)", invalid, store.id)
                raise ValidationError(
                    "Some orders have nothing left to purchase for this store",
                    details={"invalid_order_ids": invalid},
                )
            if not lines:
                raise ValidationError("No eligible order lines to purchase")

            order_date = today_local()
            po = PurchaseOrder(
                purchase_order_number=next_purchase_order_number(self.db, store, order_date),
                supplier_id=supplier.id,
                store_id=store.id,
                order_date=order_date,
                expected_delivery_date=expected_delivery_date,
                status=PurchaseOrderStatus.DRAFT,
                notes=(notes or "").strip(),
                created_by_id=actor_id,
            )
            self.db.add(po)

            for ol in lines:
                unit_cost = money2(ol.product.cost_price)
                po.lines.append(PurchaseOrderLine(
                    order_id=ol.order_id,
                    order_item_id=ol.id,
                    product_id=ol.product_id,
                    prescription_id=ol.prescription_id,
                    quantity=int(ol.quantity),
                    unit_cost=unit_cost,
                    total_cost=compute_line_cost(unit_cost, ol.quantity),
                    notes=ol.notes or "",
                ))
            self.db.flush()

            recalculate_totals(po)
            for o in source_orders:
                o.status = OrderStatus.PURCHASE_ORDERED
            self.db.flush()

        logger.info(
            "PO %s created: store=%s supplier=%s lines=%s total=%s by=%s",
            po.purchase_order_number, po.store_id, po.supplier_id,
            len(po.lines), po.total_amount, actor_id,
        )
        return po

    # ---- lifecycle ----
    def send(self, po_id: int, actor_id: int) -> PurchaseOrder:
        with atomic(self.db):
            po = self._get_for_update(po_id)
            if po.status != PurchaseOrderStatus.DRAFT:
                raise ValidationError(
                    "only draft orders may be sent",
                    details={"status": po.status.value},
                )
            apply_status(self.db, po, PurchaseOrderStatus.SENT)
            recalculate_totals(po)
            self.db.flush()

        logger.info("PO %s sent by=%s", po.purchase_order_number, actor_id)
        return po

    def update_status(self, po_id: int, status: Any, actor_id: int) -> PurchaseOrder:
        target = coerce_status(status)
        with atomic(self.db):
            po = self._get_for_update(po_id)
            previous = po.status
            changed = apply_status(self.db, po, target)
            recalculate_totals(po)
            self.db.flush()

        if changed:
            logger.info(
                "PO %s status %s -> %s by=%s",
                po.purchase_order_number, previous.value, target.value, actor_id,
            )
        return po

    # ---- queries ----
    def list_purchase_orders(
        self,
        filters: Optional[PurchaseOrderFilters] = None,
        *,
        limit: int = 50,
        offset: int = 0,
        sort: PurchaseOrderSort = PurchaseOrderSort.CREATED_AT_DESC,
    ) -> Tuple[List[PurchaseOrder], int]:
        q = (filters or PurchaseOrderFilters()).apply(self.db.query(PurchaseOrder))
        total = q.order_by(None).count()
        rows = (
            q.options(selectinload(PurchaseOrder.supplier), selectinload(PurchaseOrder.lines))
            .order_by(*_SORT_COLUMNS[sort], PurchaseOrder.id.desc())
            .offset(max(int(offset or 0), 0))
            .limit(max(min(int(limit or 50), 500), 1))
            .all()
        )
        return rows, total

    def history(
        self,
        filters: Optional[PurchaseOrderFilters] = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[PurchaseOrder], int]:
        return self.list_purchase_orders(
            filters, limit=limit, offset=offset, sort=PurchaseOrderSort.ORDER_DATE_DESC
        )

    def statistics(self, filters: Optional[PurchaseOrderFilters] = None) -> Dict[str, Any]:
        f = filters or PurchaseOrderFilters()

        by_status = (
            f.apply(self.db.query(
                PurchaseOrder.status,
                func.count(PurchaseOrder.id),
                func.coalesce(func.sum(PurchaseOrder.total_amount), 0),
            ))
            .group_by(PurchaseOrder.status)
            .all()
        )
        status_counts = {s.value: 0 for s in PurchaseOrderStatus}
        total_count = 0
        total_amount = Decimal("0")
        for status, cnt, amount in by_status:
            status_counts[status.value] = int(cnt)
            total_count += int(cnt)
            total_amount += D(amount)

        by_supplier = (
            f.apply(self.db.query(
                Supplier.id,
                Supplier.name,
                func.count(PurchaseOrder.id),
                func.coalesce(func.sum(PurchaseOrder.total_amount), 0),
            ).select_from(PurchaseOrder).join(Supplier, PurchaseOrder.supplier_id == Supplier.id))
            .group_by(Supplier.id, Supplier.name)
            .all()
        )
        suppliers = [
            {
                "supplier_id": sid,
                "supplier_name": name,
                "count": int(cnt),
                "total_amount": money2(amount),
            }
            for sid, name, cnt, amount in by_supplier
        ]
        suppliers.sort(key=lambda r: r["total_amount"], reverse=True)

        return {
            "total_count": total_count,
            "total_amount": money2(total_amount),
            "status_counts": status_counts,
            "supplier_counts": suppliers,
        }
