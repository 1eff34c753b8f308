#!/usr/bin/env python3
# backend/init_db.py
"""
Database initialization script.

This script can be run from any directory:
    python backend/init_db.py
    cd backend && python init_db.py
"""
import logging
import sys
from pathlib import Path

# Add the backend directory to Python path so 'lithos' package is importable
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from sqlalchemy.engine import Engine

from lithos.database import engine
from lithos.models import Base
from lithos.utils import setup_logging

logger = logging.getLogger("lithos.init_db")


def init_db(bind: Engine | None = None) -> list[str]:
    """
    Create all tables defined in lithos.models.

    Returns:
        Names of the tables known to the metadata, sorted
    """
    bind = bind or engine
    logger.info(f"Creating database tables on {bind.dialect.name}")
    Base.metadata.create_all(bind=bind)
    tables = sorted(Base.metadata.tables)
    logger.info(f"Tables ready: {', '.join(tables)}")
    return tables


if __name__ == "__main__":
    setup_logging()
    init_db()
