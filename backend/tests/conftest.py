# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Mock provider fixtures
- Sample data factories
"""

import os

# Settings are read at import time; test mode allows in-memory SQLite
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lithos.models import (
    Base,
    Account,
    AccountType,
    Debt,
    DebtType,
    ExchangeRate,
    PriceHistoryCache,
    Transaction,
    TransactionType,
    UserPriceHistory,
    UserProfile,
)
from lithos.services.exceptions import TickerNotFoundError
from lithos.services.market_data.base import MarketDataProvider, Quote, HistoricalClose
from lithos.utils import date_utils

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# MOCK MARKET DATA PROVIDER
# =============================================================================

class MockMarketDataProvider(MarketDataProvider):
    """
    Mock implementation of MarketDataProvider for testing.

    Allows configuring quotes and closes per symbol, and injecting errors
    either permanently or for the next N historical calls.
    """

    def __init__(self):
        self._quotes: dict[str, Quote] = {}
        self._quote_errors: dict[str, Exception] = {}
        self._closes: dict[str, list[HistoricalClose]] = {}
        self._history_errors: dict[str, Exception] = {}
        self._queued_history_errors: dict[str, list[Exception]] = {}
        self.quote_calls: list[str] = []
        self.history_calls: list[tuple[str, date, date]] = []

    @property
    def name(self) -> str:
        return "mock"

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def set_quote(
            self,
            symbol: str,
            price: Decimal | str | None,
            currency: str | None = "USD",
            previous_close: Decimal | str | None = None,
    ) -> None:
        """Configure a successful quote for a symbol."""
        self._quotes[symbol.upper()] = Quote(
            symbol=symbol.upper(),
            price=Decimal(price) if price is not None else None,
            currency=currency,
            previous_close=Decimal(previous_close) if previous_close is not None else None,
        )

    def set_quote_error(self, symbol: str, error: Exception) -> None:
        self._quote_errors[symbol.upper()] = error

    def set_closes(self, symbol: str, closes: dict[date, Decimal | str | None]) -> None:
        """Configure the full history the source knows for a symbol."""
        self._closes[symbol.upper()] = [
            HistoricalClose(date=d, close=Decimal(c) if c is not None else None)
            for d, c in sorted(closes.items())
        ]

    def set_history_error(self, symbol: str, error: Exception) -> None:
        """Every historical call for the symbol raises error."""
        self._history_errors[symbol.upper()] = error

    def queue_history_errors(self, symbol: str, *errors: Exception) -> None:
        """The next len(errors) historical calls raise these, in order."""
        self._queued_history_errors.setdefault(symbol.upper(), []).extend(errors)

    # =========================================================================
    # CALL COUNTS
    # =========================================================================

    @property
    def quote_call_count(self) -> int:
        return len(self.quote_calls)

    @property
    def history_call_count(self) -> int:
        return len(self.history_calls)

    def history_calls_for(self, symbol: str) -> list[tuple[str, date, date]]:
        return [c for c in self.history_calls if c[0] == symbol.upper()]

    # =========================================================================
    # PROVIDER INTERFACE
    # =========================================================================

    def get_current_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        self.quote_calls.append(symbol)

        if symbol in self._quote_errors:
            raise self._quote_errors[symbol]
        if symbol in self._quotes:
            return self._quotes[symbol]
        raise TickerNotFoundError(ticker=symbol, provider=self.name)

    def get_historical_closes(self, symbol: str, from_unix: int, to_unix: int) -> list[HistoricalClose]:
        symbol = symbol.upper()
        start, end = date_utils.from_unix(from_unix), date_utils.from_unix(to_unix)
        self.history_calls.append((symbol, start, end))

        queued = self._queued_history_errors.get(symbol)
        if queued:
            raise queued.pop(0)
        if symbol in self._history_errors:
            raise self._history_errors[symbol]

        return [c for c in self._closes.get(symbol, []) if start <= c.date <= end]


@pytest.fixture
def mock_provider() -> MockMarketDataProvider:
    """Create a fresh mock provider for each test."""
    return MockMarketDataProvider()


def no_sleep(seconds: float) -> None:
    """Sleep replacement for services that pace their requests."""


class RecordingSleep:
    """Sleep replacement that records every requested delay."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def create_profile(
        db: Session,
        user_id: str = USER_ID,
        currency: str = "GBP",
        username: str = "tester",
) -> UserProfile:
    """Factory function for creating UserProfile entities in the database."""
    profile = UserProfile(id=user_id, username=username, currency=currency)
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def create_account(
        db: Session,
        user_id: str = USER_ID,
        name: str = "Current Account",
        type: AccountType = AccountType.CHECKING,
        starting_value: Decimal | str = "0",
        currency: str = "GBP",
) -> Account:
    """Factory function for creating Account entities in the database."""
    account = Account(
        user_id=user_id,
        name=name,
        type=type,
        starting_value=Decimal(starting_value),
        currency=currency,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def create_transaction(
        db: Session,
        on: date | datetime,
        amount: Decimal | str,
        account: Account | None = None,
        user_id: str = USER_ID,
        type: TransactionType = TransactionType.INVESTING,
        category: str = "Buy",
        symbol: str | None = None,
        quantity: Decimal | str | None = None,
        price: Decimal | str | None = None,
        currency: str | None = None,
        description: str = "",
) -> Transaction:
    """Factory function for creating Transaction entities in the database."""
    txn = Transaction(
        user_id=user_id,
        account_id=account.id if account is not None else None,
        type=type,
        date=_as_datetime(on),
        description=description,
        category=category,
        amount=Decimal(amount),
        symbol=symbol,
        quantity=Decimal(quantity) if quantity is not None else None,
        price=Decimal(price) if price is not None else None,
        currency=currency,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def create_debt(
        db: Session,
        starting_value: Decimal | str,
        user_id: str = USER_ID,
        name: str = "Credit Card",
        type: DebtType = DebtType.CREDIT_CARD,
) -> Debt:
    """Factory function for creating Debt entities in the database."""
    debt = Debt(
        user_id=user_id,
        name=name,
        type=type,
        starting_value=Decimal(starting_value),
    )
    db.add(debt)
    db.commit()
    db.refresh(debt)
    return debt


def create_cached_close(
        db: Session,
        symbol: str,
        on: date,
        close: Decimal | str,
) -> PriceHistoryCache:
    """Factory function for creating PriceHistoryCache rows in the database."""
    row = PriceHistoryCache(
        symbol=symbol,
        date=on,
        close=Decimal(close),
        fetched_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def create_user_close(
        db: Session,
        symbol: str,
        on: date,
        close: Decimal | str,
        user_id: str = USER_ID,
) -> UserPriceHistory:
    """Factory function for creating UserPriceHistory rows in the database."""
    row = UserPriceHistory(
        user_id=user_id,
        symbol=symbol,
        date=on,
        close=Decimal(close),
        fetched_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def create_exchange_rate(
        db: Session,
        rate: Decimal | str,
        updated_at: datetime | None = None,
        from_currency: str = "GBP",
        to_currency: str = "USD",
) -> ExchangeRate:
    """Factory function for creating ExchangeRate rows in the database."""
    row = ExchangeRate(
        from_currency=from_currency,
        to_currency=to_currency,
        rate=Decimal(rate),
        updated_at=updated_at or datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row
