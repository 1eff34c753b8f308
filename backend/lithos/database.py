# backend/lithos/database.py
"""
Database connection and session management.

This module configures SQLAlchemy with:
- Connection pooling for PostgreSQL
- A shared in-memory connection for SQLite (test mode)
- A session_scope() helper for jobs that run outside a caller-owned session

Pool Configuration (configurable via environment variables):
- DB_POOL_SIZE: Persistent connections (default: 5)
- DB_POOL_MAX_OVERFLOW: Burst capacity (default: 10)
- DB_POOL_RECYCLE: Connection lifetime (default: 3600s)
- DB_POOL_PRE_PING: Health checks (default: True)
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool

from .config import settings

logger = logging.getLogger(__name__)


def _create_engine():
    """
    Create SQLAlchemy engine with environment-appropriate configuration.

    - SQLite: StaticPool so an in-memory database survives across sessions
    - PostgreSQL: QueuePool sized from settings
    """
    if settings.is_sqlite:
        logger.info("Configuring SQLite database")
        return create_engine(
            settings.database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )

    logger.info(
        f"Configuring PostgreSQL database pool: "
        f"size={settings.db_pool_size}, "
        f"max_overflow={settings.db_pool_max_overflow}, "
        f"recycle={settings.db_pool_recycle}s, "
        f"pre_ping={settings.db_pool_pre_ping}"
    )

    return create_engine(
        settings.database_url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_timeout=30,
        echo=settings.debug,
    )


# Create engine and session factory
engine = _create_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Provide a session for a unit of work (backfill run, rate refresh).

    The session is rolled back if the block raises and always closed.

    Usage:
        with session_scope() as db:
            PriceBackfillService(provider).backfill(db, ["AAPL"])
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_database_health() -> dict:
    """
    Check database connectivity and pool status.

    Returns:
        dict: Health status with connection info
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            conn.commit()

        pool_status = {
            "pool_size": engine.pool.size() if hasattr(engine.pool, "size") else None,
            "checked_out": engine.pool.checkedout() if hasattr(engine.pool, "checkedout") else None,
        }

        return {
            "status": "healthy",
            "database": "sqlite" if settings.is_sqlite else "postgresql",
            "pool": pool_status,
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
        }
