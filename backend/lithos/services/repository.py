# backend/lithos/services/repository.py
"""
Persistence/query interface for the valuation and market data services.

Every read of user-owned data is scoped by user_id. Writes are idempotent
upserts using the dialect's INSERT ... ON CONFLICT DO UPDATE (PostgreSQL in
production, SQLite in tests). A rejected write rolls the session back, is
logged, and surfaces as PersistenceError.

Absence is never an error here: a missing close, rate or profile is
returned as None.
"""

import logging
from collections.abc import Iterator
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lithos.config import settings
from lithos.models import (
    Account,
    Bill,
    Debt,
    ExchangeRate,
    PriceHistoryCache,
    Transaction,
    TransactionType,
    UserPriceHistory,
    UserProfile,
)
from lithos.services.exceptions import PersistenceError
from lithos.utils.date_utils import as_date

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def _dialect_insert(db: Session, model):
    """Return the dialect-specific insert() supporting on_conflict_do_update."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise PersistenceError("upsert", f"unsupported database dialect '{dialect}'")


def _execute_upsert(db: Session, stmt, operation: str) -> None:
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{operation} failed, session rolled back: {e}")
        raise PersistenceError(operation, str(e)) from e


# =============================================================================
# LEDGER
# =============================================================================

def iter_transaction_pages(
        db: Session,
        user_id: str,
        page_size: int | None = None,
) -> Iterator[list[Transaction]]:
    """
    Yield the user's transactions one page at a time, ordered by (date, id).

    Iteration stops after the first page shorter than page_size.
    """
    page_size = page_size or settings.transaction_page_size
    offset = 0

    while True:
        page = list(db.scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.date, Transaction.id)
            .offset(offset)
            .limit(page_size)
        ).all())

        if page:
            yield page
        if len(page) < page_size:
            return
        offset += page_size


def fetch_all_transactions(
        db: Session,
        user_id: str,
        page_size: int | None = None,
) -> list[Transaction]:
    """Accumulate every page of the user's ledger."""
    transactions: list[Transaction] = []
    for page in iter_transaction_pages(db, user_id, page_size):
        transactions.extend(page)

    logger.debug(f"Loaded {len(transactions)} transactions for user {user_id}")
    return transactions


def get_earliest_investing_dates(
        db: Session,
        user_id: str,
        symbols: list[str] | None = None,
) -> dict[str, date]:
    """
    Earliest investing transaction date per symbol (upper-cased).

    Used by gap detection to decide where a symbol's history must start.
    """
    rows = db.execute(
        select(Transaction.symbol, func.min(Transaction.date))
        .where(
            Transaction.user_id == user_id,
            Transaction.type == TransactionType.INVESTING,
            Transaction.symbol.is_not(None),
        )
        .group_by(Transaction.symbol)
    ).all()

    wanted = {s.strip().upper() for s in symbols} if symbols is not None else None
    earliest: dict[str, date] = {}

    for symbol, first_date in rows:
        key = symbol.strip().upper()
        if not key or (wanted is not None and key not in wanted):
            continue
        d = as_date(first_date)
        if key not in earliest or d < earliest[key]:
            earliest[key] = d

    return earliest


# =============================================================================
# ACCOUNTS / DEBTS / BILLS / PROFILE
# =============================================================================

def fetch_accounts(db: Session, user_id: str) -> list[Account]:
    return list(db.scalars(
        select(Account).where(Account.user_id == user_id).order_by(Account.id)
    ).all())


def fetch_debts(db: Session, user_id: str) -> list[Debt]:
    return list(db.scalars(
        select(Debt).where(Debt.user_id == user_id).order_by(Debt.id)
    ).all())


def fetch_bills(db: Session, user_id: str) -> list[Bill]:
    return list(db.scalars(
        select(Bill).where(Bill.user_id == user_id).order_by(Bill.due_date, Bill.id)
    ).all())


def get_user_profile(db: Session, user_id: str) -> UserProfile | None:
    return db.get(UserProfile, user_id)


def get_user_currency(db: Session, user_id: str) -> str:
    """Display currency from the profile, else the configured default."""
    profile = get_user_profile(db, user_id)
    if profile is not None and profile.currency:
        return profile.currency.upper()
    return settings.default_user_currency.upper()


# =============================================================================
# SHARED PRICE CACHE
# =============================================================================

def get_cached_close(db: Session, symbol: str, on_date: date) -> Decimal | None:
    """Exact close for (symbol, date), or None if not cached."""
    return db.scalar(
        select(PriceHistoryCache.close).where(
            PriceHistoryCache.symbol == symbol,
            PriceHistoryCache.date == on_date,
        )
    )


def get_cached_closes(
        db: Session,
        symbol: str,
        from_date: date | None = None,
        to_date: date | None = None,
) -> list[PriceHistoryCache]:
    """Cached rows for a symbol in ascending date order."""
    stmt = select(PriceHistoryCache).where(PriceHistoryCache.symbol == symbol)
    if from_date is not None:
        stmt = stmt.where(PriceHistoryCache.date >= from_date)
    if to_date is not None:
        stmt = stmt.where(PriceHistoryCache.date <= to_date)

    return list(db.scalars(stmt.order_by(PriceHistoryCache.date)).all())


def get_earliest_cached_date(db: Session, symbol: str) -> date | None:
    return db.scalar(
        select(func.min(PriceHistoryCache.date)).where(PriceHistoryCache.symbol == symbol)
    )


def count_cached_rows(db: Session, symbol: str, from_date: date) -> int:
    return db.scalar(
        select(func.count(PriceHistoryCache.id)).where(
            PriceHistoryCache.symbol == symbol,
            PriceHistoryCache.date >= from_date,
        )
    ) or 0


def upsert_price_rows(
        db: Session,
        rows: list[dict[str, Any]],
        batch_size: int | None = None,
) -> int:
    """
    Upsert shared cache rows keyed (symbol, date), in batches.

    Each row is a dict with keys symbol, date, close and optionally open.
    Conflicting rows are overwritten. Each batch commits on its own, so a
    failure leaves earlier batches stored.

    Returns:
        Number of rows written

    Raises:
        PersistenceError: If a batch is rejected
    """
    if not rows:
        return 0

    batch_size = batch_size or settings.backfill_batch_size
    fetched_at = datetime.now(timezone.utc)
    written = 0

    for start in range(0, len(rows), batch_size):
        batch = [
            {
                "symbol": r["symbol"],
                "date": r["date"],
                "close": r["close"],
                "open": r.get("open"),
                "fetched_at": fetched_at,
            }
            for r in rows[start:start + batch_size]
        ]

        stmt = _dialect_insert(db, PriceHistoryCache).values(batch)
        stmt = stmt.on_conflict_do_update(
            index_elements=["symbol", "date"],
            set_={
                "close": stmt.excluded.close,
                "open": stmt.excluded.open,
                "fetched_at": stmt.excluded.fetched_at,
            },
        )
        _execute_upsert(db, stmt, "upsert_price_rows")
        written += len(batch)

    logger.debug(f"Upserted {written} price rows")
    return written


# =============================================================================
# USER PRICE HISTORY
# =============================================================================

def get_user_closes(
        db: Session,
        user_id: str,
        symbol: str,
        from_date: date | None = None,
) -> list[UserPriceHistory]:
    """A user's imported closes for a symbol, ascending by date."""
    stmt = select(UserPriceHistory).where(
        UserPriceHistory.user_id == user_id,
        UserPriceHistory.symbol == symbol,
    )
    if from_date is not None:
        stmt = stmt.where(UserPriceHistory.date >= from_date)

    return list(db.scalars(stmt.order_by(UserPriceHistory.date)).all())


def upsert_user_price_rows(
        db: Session,
        user_id: str,
        rows: list[dict[str, Any]],
        batch_size: int | None = None,
) -> int:
    """Upsert imported closes keyed (user_id, symbol, date)."""
    if not rows:
        return 0

    batch_size = batch_size or settings.backfill_batch_size
    fetched_at = datetime.now(timezone.utc)
    written = 0

    for start in range(0, len(rows), batch_size):
        batch = [
            {
                "user_id": user_id,
                "symbol": r["symbol"],
                "date": r["date"],
                "close": r["close"],
                "open": r.get("open"),
                "fetched_at": fetched_at,
            }
            for r in rows[start:start + batch_size]
        ]

        stmt = _dialect_insert(db, UserPriceHistory).values(batch)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "symbol", "date"],
            set_={
                "close": stmt.excluded.close,
                "open": stmt.excluded.open,
                "fetched_at": stmt.excluded.fetched_at,
            },
        )
        _execute_upsert(db, stmt, "upsert_user_price_rows")
        written += len(batch)

    return written


# =============================================================================
# EXCHANGE RATES
# =============================================================================

def get_exchange_rate(db: Session, from_currency: str, to_currency: str) -> ExchangeRate | None:
    return db.scalar(
        select(ExchangeRate).where(
            ExchangeRate.from_currency == from_currency,
            ExchangeRate.to_currency == to_currency,
        )
    )


def upsert_exchange_rate(
        db: Session,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
        updated_at: datetime | None = None,
) -> None:
    """Write the single row for a currency pair, replacing any previous rate."""
    values = {
        "from_currency": from_currency,
        "to_currency": to_currency,
        "rate": rate,
        "updated_at": updated_at or datetime.now(timezone.utc),
    }

    stmt = _dialect_insert(db, ExchangeRate).values(values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["from_currency", "to_currency"],
        set_={
            "rate": stmt.excluded.rate,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    _execute_upsert(db, stmt, "upsert_exchange_rate")
