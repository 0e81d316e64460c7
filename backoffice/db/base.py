# backoffice/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All back-office tables (catalog refs, purchasing, receiving, stock) inherit from this."""
    pass
