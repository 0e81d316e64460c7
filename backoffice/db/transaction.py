# backoffice/db/transaction.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.core.errors import ConflictError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Unit of work over an injected session.

    Commits when the block finishes, rolls back on ANY exception.
    Nested use (service calling service) only joins the outer block:
    the outermost atomic() owns commit / rollback.
    """
    if db.info.get("_atomic_depth", 0):
        db.info["_atomic_depth"] += 1
        try:
            yield db
        finally:
            db.info["_atomic_depth"] -= 1
        return

    db.info["_atomic_depth"] = 1
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("Integrity violation, rolled back: %s", e.orig)
        raise ConflictError("Duplicate or conflicting record") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.info["_atomic_depth"] = 0
