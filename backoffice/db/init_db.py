# backoffice/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy.engine import Engine

from backoffice.db.base import Base
from backoffice.db.session import engine

# Import all models so metadata is complete
from backoffice import models  # noqa: F401

logger = logging.getLogger(__name__)


def create_tables(bind: Engine = engine) -> None:
    Base.metadata.create_all(bind=bind)
    logger.info("tables ready: %s", sorted(Base.metadata.tables))


def drop_tables(bind: Engine = engine) -> None:
    Base.metadata.drop_all(bind=bind)


def main() -> None:
    parser = argparse.ArgumentParser(description="Create back-office tables")
    parser.add_argument("--drop", action="store_true", help="drop all tables first")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    if args.drop:
        drop_tables()
    create_tables()


if __name__ == "__main__":
    main()
