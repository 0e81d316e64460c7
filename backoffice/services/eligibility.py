# FILE: backoffice/services/eligibility.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, contains_eager

from backoffice.models.catalog import (
    Customer,
    Order,
    OrderLine,
    OrderStatus,
    Product,
    ProductCategory,
)
from backoffice.models.purchasing import PurchaseOrder, PurchaseOrderLine, PurchaseOrderStatus
from backoffice.utils.parsing import D, clean_str, money2, parse_date, parse_int

logger = logging.getLogger(__name__)

# non-lens categories bought straight off the customer order
DIRECT_PURCHASE_CATEGORIES = (
    ProductCategory.FRAME,
    ProductCategory.CONTACT,
    ProductCategory.ACCESSORY,
)


def _eligibility_clause():
    """
    An order line is purchasable when either:

    * lens, order is prescription_done, and no PO line on a non-cancelled
      purchase order points at it; or
    * frame/contact/accessory, order is ordered or prescription_done, no PO
      line at all points at it, and (frames only) no unit was pre-selected
      from stock.
    """
    on_live_po = (
        select(PurchaseOrderLine.id)
        .join(PurchaseOrder, PurchaseOrderLine.purchase_order_id == PurchaseOrder.id)
        .where(
            PurchaseOrderLine.order_item_id == OrderLine.id,
            PurchaseOrder.status != PurchaseOrderStatus.CANCELLED,
        )
        .exists()
    )
    on_any_po = (
        select(PurchaseOrderLine.id)
        .where(PurchaseOrderLine.order_item_id == OrderLine.id)
        .exists()
    )

    lens_rule = and_(
        Product.category == ProductCategory.LENS,
        Order.status == OrderStatus.PRESCRIPTION_DONE,
        ~on_live_po,
    )
    direct_rule = and_(
        Product.category.in_(DIRECT_PURCHASE_CATEGORIES),
        Order.status.in_([OrderStatus.ORDERED, OrderStatus.PRESCRIPTION_DONE]),
        ~on_any_po,
        or_(
            Product.category != ProductCategory.FRAME,
            OrderLine.serialized_item_id.is_(None),
        ),
    )
    return or_(lens_rule, direct_rule)


class EligibilityResolver:
    """Read-only view of which customer-order lines still need buying."""

    def __init__(self, db: Session):
        self.db = db

    def eligible_lines(
        self,
        *,
        store_id: Any = None,
        customer_id: Any = None,
        customer_name: Any = None,
        from_date: Any = None,
        to_date: Any = None,
        order_ids: Optional[Iterable[int]] = None,
    ) -> List[OrderLine]:
        # malformed filter values are dropped, never raised
        store_id = parse_int(store_id)
        customer_id = parse_int(customer_id)
        customer_name = clean_str(customer_name)
        from_date = parse_date(from_date)
        to_date = parse_date(to_date)

        stmt = (
            select(OrderLine)
            .join(Order, OrderLine.order_id == Order.id)
            .join(Product, OrderLine.product_id == Product.id)
            .join(Customer, Order.customer_id == Customer.id)
            .options(contains_eager(OrderLine.order), contains_eager(OrderLine.product))
            .where(_eligibility_clause())
        )

        if store_id is not None:
            stmt = stmt.where(Order.store_id == store_id)
        if customer_id is not None:
            stmt = stmt.where(Order.customer_id == customer_id)
        if customer_name:
            like = f"%{customer_name.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Customer.full_name).like(like),
                    func.lower(Customer.full_name_kana).like(like),
                )
            )
        if from_date is not None:
            stmt = stmt.where(Order.order_date >= from_date)
        if to_date is not None:
            stmt = stmt.where(Order.order_date <= to_date)
        if order_ids is not None:
            ids = [i for i in order_ids if i is not None]
            if not ids:
                return []
            stmt = stmt.where(Order.id.in_(ids))

        stmt = stmt.order_by(Order.order_date.asc(), Order.id.asc(), OrderLine.id.asc())

        return list(self.db.execute(stmt).unique().scalars().all())

    def find_purchasable_orders(self, **filters) -> List[Dict[str, Any]]:
        """
        Eligible lines grouped under their parent order, oldest order first.
        Accepts the same raw filters as eligible_lines().
        """
        grouped: Dict[int, Dict[str, Any]] = {}
        for line in self.eligible_lines(**filters):
            order = line.order
            entry = grouped.get(order.id)
            if entry is None:
                entry = {
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "order_date": order.order_date,
                    "status": order.status.value,
                    "store_id": order.store_id,
                    "customer_id": order.customer_id,
                    "customer_name": order.customer.full_name if order.customer else "",
                    "items": [],
                    "total_quantity": 0,
                    "estimated_cost": D(0),
                }
                grouped[order.id] = entry

            product = line.product
            cost = money2(D(product.cost_price) * int(line.quantity or 0))
            entry["items"].append({
                "order_item_id": line.id,
                "product_id": product.id,
                "product_code": product.product_code,
                "product_name": product.name,
                "brand": product.brand,
                "category": product.category.value,
                "management_type": product.management_type.value,
                "prescription_id": line.prescription_id,
                "quantity": int(line.quantity or 0),
                "unit_price": money2(line.unit_price),
                "total_price": money2(line.total_price),
                "cost_price": money2(product.cost_price),
            })
            entry["total_quantity"] += int(line.quantity or 0)
            entry["estimated_cost"] = money2(entry["estimated_cost"] + cost)

        logger.debug("purchasable orders resolved: %s", len(grouped))
        return list(grouped.values())
