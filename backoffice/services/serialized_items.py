# FILE: backoffice/services/serialized_items.py
from __future__ import annotations

import logging
import secrets
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.errors import ConflictError, NotFoundError, ValidationError
from backoffice.db.transaction import atomic
from backoffice.models.catalog import ManagementType, Store
from backoffice.models.purchasing import PurchaseOrderLine
from backoffice.models.serialized_item import (
    SerializedItem,
    SerializedItemStatus,
    SerializedItemStatusHistory,
)
from backoffice.services.receiving import minted_quantities, received_quantities
from backoffice.utils.parsing import clean_str, parse_int
from backoffice.utils.timezone import now_local

logger = logging.getLogger(__name__)


def generate_serial_number(product_code: str, store_code: str, stamp: str, disambiguator: str, index: int) -> str:
    """<productCode>-<storeCode>-<yyyymmddHHMMSS>-<RAND4>-<index:03>"""
    return f"{product_code}-{store_code}-{stamp}-{disambiguator}-{index:03d}"


def new_disambiguator() -> str:
    return secrets.token_hex(2).upper()


def _coerce_item_status(value: Any) -> SerializedItemStatus:
    if value is None or value == "":
        return SerializedItemStatus.IN_STOCK
    if isinstance(value, SerializedItemStatus):
        return value
    try:
        return SerializedItemStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown item status: {value}",
            details={"allowed": [s.value for s in SerializedItemStatus]},
        )


class SerializedItemService:
    def __init__(self, db: Session):
        self.db = db

    # ---- minting ----
    def minting_status(self, purchase_order_line_id: int) -> Dict[str, Any]:
        """What is left to serialise on a PO line; check this before opening the mint dialog."""
        li = self.db.get(PurchaseOrderLine, purchase_order_line_id)
        if not li:
            raise NotFoundError(f"Purchase order line {purchase_order_line_id} not found")
        received = received_quantities(self.db, [li.id])[li.id]
        minted = minted_quantities(self.db, [li.id])[li.id]
        individual = li.product.management_type == ManagementType.INDIVIDUAL
        return {
            "purchase_order_line_id": li.id,
            "product_id": li.product_id,
            "management_type": li.product.management_type.value,
            "ordered_quantity": int(li.quantity),
            "received_quantity": received,
            "minted_quantity": minted,
            "remaining": max(received - minted, 0),
            "has_serialized_items": minted > 0,
            "can_mint": individual and received > minted,
        }

    def mint_serialized_items(
        self,
        *,
        purchase_order_line_id: int,
        store_id: Optional[int] = None,
        count: int,
        template: Sequence[Mapping[str, Any]],
        actor_id: int,
    ) -> List[SerializedItem]:
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError("Count must be a positive whole number", details={"count": count})
        template = list(template or [])
        if len(template) not in (1, count):
            raise ValidationError(
                "Template must hold one entry for all units or one entry per unit",
                details={"count": count, "template_size": len(template)},
            )

        with atomic(self.db):
            li = (
                self.db.query(PurchaseOrderLine)
                .filter(PurchaseOrderLine.id == purchase_order_line_id)
                .with_for_update()
                .first()
            )
            if not li:
                raise NotFoundError(f"Purchase order line {purchase_order_line_id} not found")
            product = li.product
            if product.management_type != ManagementType.INDIVIDUAL:
                raise ValidationError(
                    f"Product {product.product_code} is not managed individually",
                    details={"management_type": product.management_type.value},
                )
            po_store_id = li.purchase_order.store_id
            if store_id is None:
                store_id = po_store_id
            elif store_id != po_store_id:
                raise ValidationError(
                    "Units must be registered to the store the purchase order was placed for",
                    details={"store_id": store_id, "purchase_order_store_id": po_store_id},
                )
            store = self.db.get(Store, store_id)
            if not store:
                raise NotFoundError(f"Store {store_id} not found")

            received = received_quantities(self.db, [li.id])[li.id]
            minted = minted_quantities(self.db, [li.id])[li.id]
            if minted + count > received:
                logger.warning(
                    "over-mint rejected: line=%s received=%s minted=%s requested=%s",
                    li.id, received, minted, count,
                )
                raise ConflictError(
                    f"Only {max(received - minted, 0)} received unit(s) are still without a serial number",
                    details={
                        "received_quantity": received,
                        "minted_quantity": minted,
                        "requested": count,
                    },
                )

            now = now_local()
            stamp = now.strftime("%Y%m%d%H%M%S")
            rand = new_disambiguator()

            units: List[Dict[str, Any]] = []
            problems: List[Dict[str, Any]] = []
            for idx in range(count):
                entry = template[idx] if len(template) == count else template[0]

                color = clean_str(entry.get("color"))
                if not color:
                    problems.append({"index": idx, "field": "color"})

                serial = entry.get("serial_number")
                if serial is None:
                    serial = generate_serial_number(product.product_code, store.store_code, stamp, rand, idx + 1)
                else:
                    serial = str(serial).strip()
                    if not serial:
                        problems.append({"index": idx, "field": "serial_number"})

                units.append({
                    "serial_number": serial,
                    "color": color or "",
                    "size": clean_str(entry.get("size")) or "",
                    "status": _coerce_item_status(entry.get("status")),
                    "location": clean_str(entry.get("location")) or settings.DEFAULT_ITEM_LOCATION,
                    "notes": clean_str(entry.get("notes")) or "",
                })

            if problems:
                raise ValidationError("Color and serial number may not be empty", details={"fields": problems})

            counts = Counter(u["serial_number"] for u in units)
            dupes = sorted(s for s, n in counts.items() if n > 1)
            if dupes:
                raise ValidationError(
                    f"Duplicate serial numbers in request: {', '.join(dupes)}",
                    details={"duplicate_serial_numbers": dupes},
                )

            existing = sorted(
                s for (s,) in self.db.query(SerializedItem.serial_number)
                .filter(SerializedItem.serial_number.in_(list(counts)))
                .all()
            )
            if existing:
                raise ConflictError(
                    f"Serial numbers already in use: {', '.join(existing)}",
                    details={"existing_serial_numbers": existing},
                )

            items: List[SerializedItem] = []
            for u in units:
                item = SerializedItem(
                    product_id=product.id,
                    store_id=store.id,
                    purchase_order_item_id=li.id,
                    purchase_date=now.date(),
                    purchase_price=li.unit_cost,
                    **u,
                )
                self.db.add(item)
                items.append(item)
            self.db.flush()

            for item in items:
                self.db.add(SerializedItemStatusHistory(
                    serialized_item_id=item.id,
                    old_status=None,
                    new_status=item.status,
                    changed_by_id=actor_id,
                    change_reason="received",
                ))
            self.db.flush()

        logger.info(
            "minted %s unit(s) for PO line %s (%s) store=%s by=%s",
            len(items), li.id, product.product_code, store.store_code, actor_id,
        )
        return items

    # ---- unit lifecycle ----
    def get(self, item_id: int) -> SerializedItem:
        item = self.db.get(SerializedItem, item_id)
        if not item:
            raise NotFoundError(f"Serialized item {item_id} not found")
        return item

    def get_by_serial(self, serial_number: str) -> SerializedItem:
        item = (
            self.db.query(SerializedItem)
            .filter(SerializedItem.serial_number == (serial_number or "").strip())
            .first()
        )
        if not item:
            raise NotFoundError(f"Serial number {serial_number} not found")
        return item

    def update_status(
        self,
        item_id: int,
        new_status: Any,
        actor_id: int,
        *,
        order_id: Optional[int] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SerializedItem:
        target = _coerce_item_status(new_status)
        with atomic(self.db):
            item = (
                self.db.query(SerializedItem)
                .filter(SerializedItem.id == item_id)
                .with_for_update()
                .first()
            )
            if not item:
                raise NotFoundError(f"Serialized item {item_id} not found")
            if item.status == target:
                raise ValidationError(f"Item {item.serial_number} is already {target.value}")

            previous = item.status
            item.status = target
            self.db.add(SerializedItemStatusHistory(
                serialized_item_id=item.id,
                old_status=previous,
                new_status=target,
                order_id=order_id,
                changed_by_id=actor_id,
                change_reason=(reason or "").strip()[:255],
                notes=(notes or "").strip(),
            ))
            self.db.flush()

        logger.info("item %s %s -> %s by=%s", item.serial_number, previous.value, target.value, actor_id)
        return item

    def status_history(self, item_id: int) -> List[SerializedItemStatusHistory]:
        self.get(item_id)
        return (
            self.db.query(SerializedItemStatusHistory)
            .filter(SerializedItemStatusHistory.serialized_item_id == item_id)
            .order_by(SerializedItemStatusHistory.id.desc())
            .all()
        )

    # ---- queries ----
    def list_items(
        self,
        *,
        store_id: Any = None,
        product_id: Any = None,
        status: Any = None,
        serial_number: Any = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[SerializedItem], int]:
        store_id = parse_int(store_id)
        product_id = parse_int(product_id)
        status = clean_str(status)
        serial_number = clean_str(serial_number)

        q = self.db.query(SerializedItem)
        if store_id is not None:
            q = q.filter(SerializedItem.store_id == store_id)
        if product_id is not None:
            q = q.filter(SerializedItem.product_id == product_id)
        if status:
            try:
                q = q.filter(SerializedItem.status == SerializedItemStatus(status.lower()))
            except ValueError:
                logger.debug("ignoring unknown item status filter: %r", status)
        if serial_number:
            q = q.filter(SerializedItem.serial_number.like(f"%{serial_number}%"))

        total = q.count()
        rows = (
            q.order_by(SerializedItem.created_at.desc(), SerializedItem.id.desc())
            .offset(max(int(offset or 0), 0))
            .limit(max(min(int(limit or 100), 500), 1))
            .all()
        )
        return rows, total

    def inventory_summary(self, store_id: int, product_id: Any = None) -> Dict[str, Any]:
        """Unit counts per status for one store, every status present."""
        product_id = parse_int(product_id)
        q = (
            self.db.query(SerializedItem.status, func.count(SerializedItem.id))
            .filter(SerializedItem.store_id == store_id)
        )
        if product_id is not None:
            q = q.filter(SerializedItem.product_id == product_id)

        counts = {s.value: 0 for s in SerializedItemStatus}
        for status, cnt in q.group_by(SerializedItem.status).all():
            counts[status.value] = int(cnt)
        return {
            "store_id": store_id,
            "product_id": product_id,
            "counts": counts,
            "total": sum(counts.values()),
        }
