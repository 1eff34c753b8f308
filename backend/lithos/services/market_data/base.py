# backend/lithos/services/market_data/base.py
"""
Abstract interface for market data providers.

This module defines the contract that all market data providers must follow:
- get_current_quote: latest price snapshot for one symbol
- get_historical_closes: daily closes for one symbol over a unix-second range

Providers raise RateLimitError distinctly from ProviderUnavailableError and
TickerNotFoundError so callers can decide what to retry. Historical fetches
are NOT retried here; the backfill owns that policy (fixed delay, rate limits
only). Quote fetches get a short fixed-delay retry on transient failures.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TypeVar, Callable, Any

from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)

from lithos.services.exceptions import ProviderUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Quote:
    """
    Current price snapshot as reported by the source.

    Prices are left as reported (possibly None); consumers decide on
    fallbacks. Currency is the source's code, e.g. "USD" or "GBX".
    """

    symbol: str
    price: Decimal | None
    currency: str | None
    previous_close: Decimal | None = None


@dataclass(frozen=True)
class HistoricalClose:
    """
    One trading day's close.

    close may be None when the source reports a gap for the day; the
    backfill drops such rows before persisting.
    """

    date: date
    close: Decimal | None
    open: Decimal | None = None


@dataclass
class QuoteBatchResult:
    """
    Result of fetching quotes for several symbols.

    Attributes:
        successful: symbol -> Quote
        failed: symbol -> exception raised for that symbol
    """

    successful: dict[str, Quote] = field(default_factory=dict)
    failed: dict[str, Exception] = field(default_factory=dict)

    @property
    def all_successful(self) -> bool:
        return not self.failed


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Retry Behavior:
        `_execute_with_retry` retries ProviderUnavailableError with a fixed
        delay. Subclasses may override:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_WAIT_SECONDS: Delay between attempts (default: 1)
    """

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_WAIT_SECONDS: float = 1

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used in logs and error messages (e.g. "yahoo")."""
        pass

    @abstractmethod
    def get_current_quote(self, symbol: str) -> Quote:
        """
        Fetch the latest quote for a symbol.

        Raises:
            TickerNotFoundError: Symbol unknown to the source
            ProviderUnavailableError: Network or API error
            RateLimitError: Rate limit exceeded
        """
        pass

    @abstractmethod
    def get_historical_closes(
            self,
            symbol: str,
            from_unix: int,
            to_unix: int,
    ) -> list[HistoricalClose]:
        """
        Fetch daily closes between two unix timestamps (both inclusive).

        Returns:
            Closes in ascending date order (empty if the source has none)

        Raises:
            TickerNotFoundError: Symbol unknown to the source
            ProviderUnavailableError: Network or API error
            RateLimitError: Rate limit exceeded
        """
        pass

    def get_current_quotes(self, symbols: list[str]) -> QuoteBatchResult:
        """
        Fetch quotes for several symbols, isolating per-symbol failures.

        Default implementation calls get_current_quote() for each symbol.
        """
        result = QuoteBatchResult()

        for symbol in symbols:
            try:
                result.successful[symbol] = self.get_current_quote(symbol)
            except Exception as e:
                logger.warning(f"Quote fetch failed for {symbol}: {e}")
                result.failed[symbol] = e

        return result

    # =========================================================================
    # RETRY HELPER METHOD
    # =========================================================================

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a function, retrying ProviderUnavailableError with a fixed delay.

        Raises:
            The last exception if all attempts fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_fixed(self.RETRY_WAIT_SECONDS),
            retry=retry_if_exception_type(ProviderUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()
