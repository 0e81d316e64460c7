# FILE: backoffice/api/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Header, HTTPException
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@dataclass(frozen=True)
class Actor:
    """Who is calling and from which store; taken from the auth service's token."""
    actor_id: int
    store_id: int


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def current_actor(authorization: Optional[str] = Header(None)) -> Actor:
    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = _decode_token(token)
    try:
        return Actor(actor_id=int(payload["sub"]), store_id=int(payload["store_id"]))
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Token is missing actor or store")
