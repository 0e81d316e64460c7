# FILE: backoffice/services/number_series.py
from __future__ import annotations

from datetime import date
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from backoffice.core.errors import ConflictError
from backoffice.models.catalog import Store
from backoffice.models.purchasing import (
    DocumentNumberSeries,
    PurchaseOrder,
    PurchaseOrderNumberSeries,
)


def _date_key(d: date) -> int:
    return int(d.strftime("%Y%m%d"))


def _claim(db: Session, row) -> int:
    seq = int(row.next_seq or 1)
    row.next_seq = seq + 1
    db.flush()
    return seq


def _insert_series_row(db: Session, row) -> None:
    # Two first-of-the-day requests can both miss the row; the UNIQUE key
    # lets exactly one insert win. The loser's transaction is unusable,
    # so surface it as a conflict and let the caller retry.
    db.add(row)
    try:
        db.flush()
    except IntegrityError as e:
        raise ConflictError(
            "Number series is being initialised by another request, please retry"
        ) from e


def next_purchase_order_number(db: Session, store: Store, doc_date: date) -> str:
    """
    Pattern: PO<yy><mm><dd><storeCode><seq:03>

    seq is the 1-based count of the store's purchase orders for that day.
    The (store, day) series row is locked FOR UPDATE, so concurrent
    creators for the same store serialize on it and never share a number.
    """
    dk = _date_key(doc_date)

    row = (
        db.query(PurchaseOrderNumberSeries)
        .filter(
            PurchaseOrderNumberSeries.store_id == store.id,
            PurchaseOrderNumberSeries.date_key == dk,
        )
        .with_for_update()
        .first()
    )

    if not row:
        # seed from orders already on the books (rows created before the series existed)
        already = (
            db.query(func.count(PurchaseOrder.id))
            .filter(PurchaseOrder.store_id == store.id, PurchaseOrder.order_date == doc_date)
            .scalar()
        ) or 0
        row = PurchaseOrderNumberSeries(store_id=store.id, date_key=dk, next_seq=int(already) + 1)
        _insert_series_row(db, row)

    seq = _claim(db, row)
    return f"PO{doc_date.strftime('%y%m%d')}{store.store_code}{seq:03d}"


def next_document_number(
    db: Session,
    key: str,          # e.g. "RCV"
    prefix: str,       # e.g. "RCV"
    doc_date: date,
    pad: int = 3,      # 001, 002...
) -> str:
    """
    Lock-protected daily counter using DocumentNumberSeries UNIQUE(key, date_key).

    Example: RCV20250114001
    """
    dk = _date_key(doc_date)

    row = (
        db.query(DocumentNumberSeries)
        .filter(DocumentNumberSeries.key == key, DocumentNumberSeries.date_key == dk)
        .with_for_update()
        .first()
    )

    if not row:
        row = DocumentNumberSeries(key=key, date_key=dk, next_seq=1)
        _insert_series_row(db, row)

    seq = _claim(db, row)
    return f"{prefix}{doc_date.strftime('%Y%m%d')}{seq:0{pad}d}"
