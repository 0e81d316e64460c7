# FILE: backoffice/services/receiving.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from backoffice.core.errors import ConflictError, NotFoundError, ValidationError
from backoffice.db.transaction import atomic
from backoffice.models.catalog import ManagementType
from backoffice.models.purchasing import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    RECEIVABLE_STATUSES,
)
from backoffice.models.receiving import QualityStatus, Receiving, ReceivingLine, ReceivingStatus
from backoffice.models.serialized_item import SerializedItem
from backoffice.services.number_series import next_document_number
from backoffice.services.purchase_orders import apply_status
from backoffice.services.stock_ledger import StockLedger
from backoffice.utils.parsing import clean_str, money2, parse_date, parse_int
from backoffice.utils.timezone import now_local

logger = logging.getLogger(__name__)


def _coerce_quality(value: Any) -> QualityStatus:
    if value is None or value == "":
        return QualityStatus.GOOD
    if isinstance(value, QualityStatus):
        return value
    try:
        return QualityStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown quality status: {value}",
            details={"allowed": [q.value for q in QualityStatus]},
        )


def received_quantities(db: Session, po_line_ids: Iterable[int]) -> Dict[int, int]:
    """Cumulative received per PO line over receivings that are not cancelled."""
    ids = list(po_line_ids)
    if not ids:
        return {}
    rows = (
        db.query(ReceivingLine.purchase_order_item_id, func.coalesce(func.sum(ReceivingLine.received_quantity), 0))
        .join(Receiving, ReceivingLine.receiving_id == Receiving.id)
        .filter(
            ReceivingLine.purchase_order_item_id.in_(ids),
            Receiving.status != ReceivingStatus.CANCELLED,
        )
        .group_by(ReceivingLine.purchase_order_item_id)
        .all()
    )
    out = {i: 0 for i in ids}
    for line_id, qty in rows:
        out[line_id] = int(qty or 0)
    return out


def minted_quantities(db: Session, po_line_ids: Iterable[int]) -> Dict[int, int]:
    ids = list(po_line_ids)
    if not ids:
        return {}
    rows = (
        db.query(SerializedItem.purchase_order_item_id, func.count(SerializedItem.id))
        .filter(SerializedItem.purchase_order_item_id.in_(ids))
        .group_by(SerializedItem.purchase_order_item_id)
        .all()
    )
    out = {i: 0 for i in ids}
    for line_id, cnt in rows:
        out[line_id] = int(cnt or 0)
    return out


def derive_delivery_status(po: PurchaseOrder, received: Mapping[int, int]) -> Optional[PurchaseOrderStatus]:
    """delivered when every line is complete, partially_delivered when anything arrived."""
    if not po.lines:
        return None
    if all(received.get(li.id, 0) >= int(li.quantity) for li in po.lines):
        return PurchaseOrderStatus.DELIVERED
    if any(received.get(li.id, 0) > 0 for li in po.lines):
        return PurchaseOrderStatus.PARTIALLY_DELIVERED
    return None


class ReceivingService:
    def __init__(self, db: Session, ledger: Optional[StockLedger] = None):
        self.db = db
        self.ledger = ledger or StockLedger(db)

    # ---- lookups ----
    def _get_po(self, po_id: int, *, lock: bool = False) -> PurchaseOrder:
        q = self.db.query(PurchaseOrder).filter(PurchaseOrder.id == po_id)
        if lock:
            q = q.with_for_update()
        po = q.first()
        if not po:
            raise NotFoundError(f"Purchase order {po_id} not found")
        return po

    def _get_receiving(self, receiving_id: int, *, lock: bool = False) -> Receiving:
        q = self.db.query(Receiving).filter(Receiving.id == receiving_id)
        if lock:
            q = q.with_for_update()
        rcv = q.first()
        if not rcv:
            raise NotFoundError(f"Receiving {receiving_id} not found")
        return rcv

    def _line_rows(self, po: PurchaseOrder) -> List[Dict[str, Any]]:
        ids = [li.id for li in po.lines]
        received = received_quantities(self.db, ids)
        minted = minted_quantities(self.db, ids)
        rows = []
        for li in po.lines:
            got = received.get(li.id, 0)
            rows.append({
                "purchase_order_line_id": li.id,
                "order_id": li.order_id,
                "order_item_id": li.order_item_id,
                "product_id": li.product_id,
                "product_code": li.product.product_code,
                "product_name": li.product.name,
                "category": li.product.category.value,
                "management_type": li.product.management_type.value,
                "ordered_quantity": int(li.quantity),
                "received_quantity": got,
                "pending_quantity": max(int(li.quantity) - got, 0),
                "minted_quantity": minted.get(li.id, 0),
                "unit_cost": money2(li.unit_cost),
                "total_cost": money2(li.total_cost),
            })
        return rows

    # ---- queries ----
    def pending_purchase_orders(self, store_id: Any = None) -> List[Dict[str, Any]]:
        store_id = parse_int(store_id)
        q = (
            self.db.query(PurchaseOrder)
            .options(selectinload(PurchaseOrder.lines), selectinload(PurchaseOrder.supplier))
            .filter(PurchaseOrder.status.in_(RECEIVABLE_STATUSES))
        )
        if store_id is not None:
            q = q.filter(PurchaseOrder.store_id == store_id)
        pos = q.all()

        received = received_quantities(self.db, [li.id for po in pos for li in po.lines])
        out = []
        for po in pos:
            pending = sum(max(int(li.quantity) - received.get(li.id, 0), 0) for li in po.lines)
            if pending <= 0:
                continue
            out.append({
                "purchase_order_id": po.id,
                "purchase_order_number": po.purchase_order_number,
                "supplier_id": po.supplier_id,
                "supplier_name": po.supplier.name if po.supplier else "",
                "store_id": po.store_id,
                "status": po.status.value,
                "order_date": po.order_date,
                "expected_delivery_date": po.expected_delivery_date,
                "item_count": len(po.lines),
                "pending_quantity": pending,
                "total_amount": money2(po.total_amount),
            })
        # soonest expected delivery first, undated last
        out.sort(key=lambda r: (
            r["expected_delivery_date"] is None,
            r["expected_delivery_date"] or r["order_date"],
            r["purchase_order_id"],
        ))
        return out

    def purchase_order_detail(self, po_id: int) -> Dict[str, Any]:
        po = self._get_po(po_id)
        return {
            "purchase_order_id": po.id,
            "purchase_order_number": po.purchase_order_number,
            "supplier_id": po.supplier_id,
            "supplier_name": po.supplier.name if po.supplier else "",
            "store_id": po.store_id,
            "status": po.status.value,
            "order_date": po.order_date,
            "expected_delivery_date": po.expected_delivery_date,
            "actual_delivery_date": po.actual_delivery_date,
            "lines": self._line_rows(po),
        }

    def awaiting_serialization(self, po: PurchaseOrder) -> List[Dict[str, Any]]:
        """Individually-managed lines whose received units are not all minted yet."""
        return [
            {
                "purchase_order_line_id": r["purchase_order_line_id"],
                "product_id": r["product_id"],
                "received_quantity": r["received_quantity"],
                "minted_quantity": r["minted_quantity"],
                "remaining": r["received_quantity"] - r["minted_quantity"],
            }
            for r in self._line_rows(po)
            if r["management_type"] == ManagementType.INDIVIDUAL.value
            and r["received_quantity"] > r["minted_quantity"]
        ]

    # ---- posting ----
    def create_receiving(
        self,
        *,
        purchase_order_id: int,
        actor_id: int,
        lines: Sequence[Mapping[str, Any]],
        notes: Optional[str] = None,
        received_at: Optional[datetime] = None,
    ) -> Receiving:
        if not lines:
            raise ValidationError("At least one receiving line is required")

        with atomic(self.db):
            po = self._get_po(purchase_order_id, lock=True)
            if po.status not in RECEIVABLE_STATUSES:
                raise ValidationError(
                    f"Purchase order {po.purchase_order_number} is {po.status.value}; it cannot be received",
                    details={"status": po.status.value},
                )

            # PO lines are the contended rows here
            po_lines = {
                li.id: li
                for li in (
                    self.db.query(PurchaseOrderLine)
                    .filter(PurchaseOrderLine.purchase_order_id == po.id)
                    .with_for_update()
                    .all()
                )
            }

            parsed = []
            seen = set()
            for raw in lines:
                line_id = parse_int(raw.get("purchase_order_line_id"))
                li = po_lines.get(line_id) if line_id is not None else None
                if li is None:
                    raise NotFoundError(
                        f"Purchase order line {raw.get('purchase_order_line_id')} not found on {po.purchase_order_number}",
                        details={"purchase_order_line_id": raw.get("purchase_order_line_id")},
                    )
                if line_id in seen:
                    raise ValidationError(
                        "Each purchase order line may appear only once per receiving",
                        details={"purchase_order_line_id": line_id},
                    )
                seen.add(line_id)

                qty = raw.get("received_quantity")
                if isinstance(qty, bool) or not isinstance(qty, int) or qty < 0:
                    raise ValidationError(
                        "Received quantity must be a whole number of zero or more",
                        details={"purchase_order_line_id": line_id, "received_quantity": qty},
                    )
                parsed.append((li, qty, _coerce_quality(raw.get("quality_status")), raw))

            received = received_quantities(self.db, po_lines.keys())
            over = []
            for li, qty, _, _ in parsed:
                already = received.get(li.id, 0)
                if already + qty > int(li.quantity):
                    over.append({
                        "purchase_order_line_id": li.id,
                        "ordered_quantity": int(li.quantity),
                        "already_received": already,
                        "attempted": qty,
                    })
            if over:
                logger.warning("over-receipt rejected on PO %s: %s", po.purchase_order_number, over)
                raise ValidationError("Received quantity exceeds the ordered quantity", details={"lines": over})

            now = now_local()
            rcv = Receiving(
                receiving_number=next_document_number(self.db, "RCV", "RCV", now.date()),
                purchase_order_id=po.id,
                received_by_id=actor_id,
                received_at=received_at or now,
                status=ReceivingStatus.COMPLETED,
                notes=(notes or "").strip(),
            )
            for li, qty, quality, raw in parsed:
                actual_cost = raw.get("actual_cost")
                rcv.lines.append(ReceivingLine(
                    purchase_order_item_id=li.id,
                    expected_quantity=int(li.quantity),
                    received_quantity=qty,
                    quality_status=quality,
                    actual_cost=money2(actual_cost) if actual_cost is not None else None,
                    notes=(raw.get("notes") or "").strip(),
                ))
                received[li.id] = received.get(li.id, 0) + qty
            self.db.add(rcv)
            self.db.flush()

            for li, qty, _, _ in parsed:
                if qty > 0 and li.product.management_type == ManagementType.QUANTITY:
                    self.ledger.apply_adjustment(
                        product_id=li.product_id,
                        store_id=po.store_id,
                        delta=qty,
                        reason=f"Receiving {rcv.receiving_number}",
                        actor_id=actor_id,
                        ref_type="RECEIVING",
                        ref_id=rcv.id,
                        create_missing=True,
                    )

            target = derive_delivery_status(po, received)
            if target is not None:
                apply_status(self.db, po, target)
            self.db.flush()

        logger.info(
            "receiving %s posted for PO %s (%s lines) -> PO %s by=%s",
            rcv.receiving_number, po.purchase_order_number, len(parsed), po.status.value, actor_id,
        )
        return rcv

    def update_quality_status(
        self,
        receiving_line_id: int,
        quality_status: Any,
        notes: Optional[str] = None,
    ) -> ReceivingLine:
        quality = _coerce_quality(quality_status)
        with atomic(self.db):
            line = (
                self.db.query(ReceivingLine)
                .filter(ReceivingLine.id == receiving_line_id)
                .with_for_update()
                .first()
            )
            if not line:
                raise NotFoundError(f"Receiving line {receiving_line_id} not found")
            if line.receiving.status == ReceivingStatus.CANCELLED:
                raise ValidationError("Receiving is cancelled; quality can no longer be changed")
            line.quality_status = quality
            if notes is not None:
                line.notes = notes.strip()
            self.db.flush()

        logger.info("receiving line %s quality -> %s", receiving_line_id, quality.value)
        return line

    def cancel_receiving(self, receiving_id: int, actor_id: int, reason: str) -> Receiving:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Cancel reason is required")

        with atomic(self.db):
            rcv = self._get_receiving(receiving_id, lock=True)
            if rcv.status == ReceivingStatus.CANCELLED:
                raise ValidationError(f"Receiving {rcv.receiving_number} is already cancelled")
            po = self._get_po(rcv.purchase_order_id, lock=True)
            if po.status in (PurchaseOrderStatus.DELIVERED, PurchaseOrderStatus.CANCELLED):
                raise ConflictError(
                    f"Purchase order {po.purchase_order_number} is {po.status.value}; its receivings are final",
                    details={"status": po.status.value},
                )

            line_ids = [rl.purchase_order_item_id for rl in rcv.lines]
            received = received_quantities(self.db, line_ids)
            minted = minted_quantities(self.db, line_ids)

            for rl in rcv.lines:
                remaining = received.get(rl.purchase_order_item_id, 0) - int(rl.received_quantity)
                if minted.get(rl.purchase_order_item_id, 0) > remaining:
                    raise ConflictError(
                        "Serial numbers were already issued for goods on this receiving",
                        details={
                            "purchase_order_line_id": rl.purchase_order_item_id,
                            "minted_quantity": minted.get(rl.purchase_order_item_id, 0),
                            "remaining_received": remaining,
                        },
                    )

            for rl in rcv.lines:
                li = rl.purchase_order_line
                qty = int(rl.received_quantity)
                if qty > 0 and li.product.management_type == ManagementType.QUANTITY:
                    self.ledger.apply_adjustment(
                        product_id=li.product_id,
                        store_id=po.store_id,
                        delta=-qty,
                        reason=f"Receiving {rcv.receiving_number} cancelled: {reason}",
                        actor_id=actor_id,
                        ref_type="RECEIVING_CANCEL",
                        ref_id=rcv.id,
                    )

            rcv.status = ReceivingStatus.CANCELLED
            rcv.cancelled_by_id = actor_id
            rcv.cancelled_at = now_local()
            rcv.cancel_reason = reason[:255]
            self.db.flush()

            # nothing delivered is terminal here, so the PO can step back
            left = received_quantities(self.db, [li.id for li in po.lines])
            if any(q > 0 for q in left.values()):
                po.status = PurchaseOrderStatus.PARTIALLY_DELIVERED
            elif po.status == PurchaseOrderStatus.PARTIALLY_DELIVERED:
                po.status = PurchaseOrderStatus.CONFIRMED if po.confirmed_at else PurchaseOrderStatus.SENT
            self.db.flush()

        logger.info("receiving %s cancelled by=%s (%s)", rcv.receiving_number, actor_id, reason)
        return rcv

    # ---- history ----
    def _summary(self, rcv: Receiving) -> Dict[str, Any]:
        po = rcv.purchase_order
        return {
            "receiving_id": rcv.id,
            "receiving_number": rcv.receiving_number,
            "purchase_order_id": po.id,
            "purchase_order_number": po.purchase_order_number,
            "supplier_id": po.supplier_id,
            "supplier_name": po.supplier.name if po.supplier else "",
            "store_id": po.store_id,
            "status": rcv.status.value,
            "received_by_id": rcv.received_by_id,
            "received_at": rcv.received_at,
            "total_received_quantity": sum(int(rl.received_quantity) for rl in rcv.lines),
            "issue_count": sum(1 for rl in rcv.lines if rl.quality_status != QualityStatus.GOOD),
            "notes": rcv.notes,
        }

    def receiving_history(
        self,
        *,
        store_id: Any = None,
        supplier_id: Any = None,
        from_date: Any = None,
        to_date: Any = None,
        status: Any = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        store_id = parse_int(store_id)
        supplier_id = parse_int(supplier_id)
        from_date = parse_date(from_date)
        to_date = parse_date(to_date)
        status = clean_str(status)

        q = (
            self.db.query(Receiving)
            .join(PurchaseOrder, Receiving.purchase_order_id == PurchaseOrder.id)
            .options(selectinload(Receiving.lines))
        )
        if store_id is not None:
            q = q.filter(PurchaseOrder.store_id == store_id)
        if supplier_id is not None:
            q = q.filter(PurchaseOrder.supplier_id == supplier_id)
        if from_date is not None:
            q = q.filter(func.date(Receiving.received_at) >= from_date)
        if to_date is not None:
            q = q.filter(func.date(Receiving.received_at) <= to_date)
        if status:
            try:
                q = q.filter(Receiving.status == ReceivingStatus(status.lower()))
            except ValueError:
                logger.debug("ignoring unknown receiving status filter: %r", status)

        total = q.count()
        rows = (
            q.order_by(Receiving.received_at.desc(), Receiving.id.desc())
            .offset(max(int(offset or 0), 0))
            .limit(max(min(int(limit or 50), 500), 1))
            .all()
        )
        return {"rows": [self._summary(r) for r in rows], "total": total}

    def receiving_detail(self, receiving_id: int) -> Dict[str, Any]:
        rcv = self._get_receiving(receiving_id)
        out = self._summary(rcv)
        out["cancelled_at"] = rcv.cancelled_at
        out["cancel_reason"] = rcv.cancel_reason
        out["lines"] = [
            {
                "receiving_line_id": rl.id,
                "purchase_order_line_id": rl.purchase_order_item_id,
                "product_id": rl.purchase_order_line.product_id,
                "product_code": rl.purchase_order_line.product.product_code,
                "product_name": rl.purchase_order_line.product.name,
                "expected_quantity": int(rl.expected_quantity),
                "received_quantity": int(rl.received_quantity),
                "quality_status": rl.quality_status.value,
                "actual_cost": money2(rl.actual_cost) if rl.actual_cost is not None else None,
                "notes": rl.notes,
            }
            for rl in rcv.lines
        ]
        return out

    def received_purchase_orders(
        self,
        *,
        store_id: Any = None,
        supplier_id: Any = None,
        from_date: Any = None,
        to_date: Any = None,
    ) -> List[Dict[str, Any]]:
        """Delivered / partially delivered purchase orders with per-line receipt, for payables."""
        store_id = parse_int(store_id)
        supplier_id = parse_int(supplier_id)
        from_date = parse_date(from_date)
        to_date = parse_date(to_date)

        q = (
            self.db.query(PurchaseOrder)
            .options(selectinload(PurchaseOrder.lines), selectinload(PurchaseOrder.supplier))
            .filter(PurchaseOrder.status.in_([
                PurchaseOrderStatus.DELIVERED,
                PurchaseOrderStatus.PARTIALLY_DELIVERED,
            ]))
        )
        if store_id is not None:
            q = q.filter(PurchaseOrder.store_id == store_id)
        if supplier_id is not None:
            q = q.filter(PurchaseOrder.supplier_id == supplier_id)
        if from_date is not None:
            q = q.filter(PurchaseOrder.order_date >= from_date)
        if to_date is not None:
            q = q.filter(PurchaseOrder.order_date <= to_date)

        out = []
        for po in q.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc()).all():
            out.append({
                "purchase_order_id": po.id,
                "purchase_order_number": po.purchase_order_number,
                "supplier_id": po.supplier_id,
                "supplier_name": po.supplier.name if po.supplier else "",
                "store_id": po.store_id,
                "status": po.status.value,
                "order_date": po.order_date,
                "actual_delivery_date": po.actual_delivery_date,
                "total_amount": money2(po.total_amount),
                "lines": self._line_rows(po),
            })
        return out

