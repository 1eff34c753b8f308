# backend/lithos/services/market_data/backfill_service.py
"""
Price history backfill for the shared price cache.

This service:
1. Normalizes the requested symbols (strip, upper-case, dedupe)
2. Splits each symbol's date range into chunks of at most a year
3. Fetches each chunk, retrying rate limits with a fixed delay
4. Drops unusable closes and upserts the rest in batches
5. Reports per-symbol row counts and errors

Gap detection decides which ranges actually need fetching: a symbol whose
cache already reaches back to its first investing transaction is skipped,
a symbol with a partial cache fetches only the missing head, and a symbol
with no cache fetches everything from its first transaction to today.

Symbols and chunks are processed sequentially with short pauses between
them to stay under the provider's rate limit. One symbol's failure never
affects another's result.

Usage:
    from lithos.services.market_data import PriceBackfillService

    service = PriceBackfillService(YahooFinanceProvider())
    summary = service.backfill(db, ["AAPL", "VOD.L"])
    print(summary.to_dict())  # {"AAPL": {"rows": 502}, "VOD.L": {"rows": 505}}

    plan, summary = service.backfill_missing(db, user_id)
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session
from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)

from lithos.config import settings
from lithos.services import repository
from lithos.services.cancellation import CancellationToken, raise_if_cancelled
from lithos.services.constants import CLOSE_PRECISION, ZERO
from lithos.services.exceptions import (
    InvalidDateRangeError,
    OperationCancelled,
    RateLimitError,
    ServiceError,
)
from lithos.services.market_data.base import MarketDataProvider, HistoricalClose
from lithos.utils.context import correlation_scope
from lithos.utils.date_utils import chunk_date_range, to_unix, utc_today

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "cancelled"


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class SymbolBackfillResult:
    """Rows stored for one symbol and the error that stopped it, if any."""

    symbol: str
    rows: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"rows": self.rows}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BackfillSummary:
    """Per-symbol outcome of a backfill run, in processing order."""

    results: dict[str, SymbolBackfillResult] = field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return sum(r.rows for r in self.results.values())

    @property
    def failed_symbols(self) -> list[str]:
        return [s for s, r in self.results.items() if not r.success]

    @property
    def all_successful(self) -> bool:
        return not self.failed_symbols

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """JSON-compatible form: {symbol: {"rows": n, "error"?: str}}."""
        return {symbol: result.to_dict() for symbol, result in self.results.items()}


@dataclass(frozen=True)
class GapRequest:
    """A range of days missing from the cache for one symbol (inclusive)."""

    symbol: str
    from_date: date
    to_date: date


@dataclass
class GapPlan:
    """Fetches required to cover every symbol back to its first transaction."""

    requests: list[GapRequest] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.requests


# =============================================================================
# BACKFILL SERVICE
# =============================================================================

class PriceBackfillService:
    """
    Fills the shared price cache from a market data provider.

    All pacing and retry waits go through the injected sleep function,
    so tests can pass a no-op.

    Example:
        service = PriceBackfillService(provider, sleep=lambda s: None)
        summary = service.backfill(db, ["AAPL"], date(2023, 1, 1), date(2024, 12, 31))
    """

    def __init__(
            self,
            provider: MarketDataProvider,
            sleep: Callable[[float], None] = time.sleep,
            chunk_days: int | None = None,
            batch_size: int | None = None,
            max_attempts: int | None = None,
            retry_wait_seconds: float | None = None,
            chunk_delay_seconds: float | None = None,
            symbol_delay_seconds: float | None = None,
    ) -> None:
        self._provider = provider
        self._sleep = sleep
        self._chunk_days = chunk_days or settings.backfill_chunk_days
        self._batch_size = batch_size or settings.backfill_batch_size
        self._max_attempts = max_attempts or settings.backfill_max_attempts
        self._retry_wait = (
            settings.backfill_retry_wait_seconds if retry_wait_seconds is None else retry_wait_seconds
        )
        self._chunk_delay = (
            settings.backfill_chunk_delay_seconds if chunk_delay_seconds is None else chunk_delay_seconds
        )
        self._symbol_delay = (
            settings.backfill_symbol_delay_seconds if symbol_delay_seconds is None else symbol_delay_seconds
        )

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    def backfill(
            self,
            db: Session,
            symbols: list[str],
            from_date: date | None = None,
            to_date: date | None = None,
            cancel_token: CancellationToken | None = None,
    ) -> BackfillSummary:
        """
        Backfill the same date range for every symbol.

        Args:
            db: Database session
            symbols: Symbols to fetch (normalized and de-duplicated)
            from_date: First day (default: to_date minus the lookback window)
            to_date: Last day (default: today)
            cancel_token: Optional cooperative cancellation

        Returns:
            BackfillSummary with one entry per normalized symbol
        """
        to_date = to_date or utc_today()
        from_date = from_date or to_date - timedelta(days=settings.backfill_default_lookback_days)

        requests = [GapRequest(s, from_date, to_date) for s in normalize_symbols(symbols)]
        return self.backfill_ranges(db, requests, cancel_token)

    def backfill_ranges(
            self,
            db: Session,
            requests: list[GapRequest],
            cancel_token: CancellationToken | None = None,
    ) -> BackfillSummary:
        """Backfill a per-symbol range for each request, sequentially."""
        summary = BackfillSummary()

        with correlation_scope("backfill"):
            logger.info(f"Backfill started for {len(requests)} symbols")

            for index, request in enumerate(requests):
                result = SymbolBackfillResult(symbol=request.symbol)
                summary.results[request.symbol] = result

                if cancel_token is not None and cancel_token.is_cancelled:
                    result.error = CANCELLED_ERROR
                    continue

                if index > 0 and self._symbol_delay:
                    self._sleep(self._symbol_delay)

                try:
                    self._backfill_symbol(db, request, result, cancel_token)
                except OperationCancelled:
                    result.error = CANCELLED_ERROR
                    logger.info(f"Backfill cancelled during {request.symbol}")
                except ServiceError as e:
                    result.error = str(e)
                    logger.error(f"Backfill failed for {request.symbol}: {e}")
                except Exception as e:
                    result.error = str(e)
                    logger.exception(f"Unexpected backfill error for {request.symbol}")

            logger.info(
                f"Backfill complete: {len(summary.results)} symbols, "
                f"{summary.total_rows} rows, {len(summary.failed_symbols)} failed"
            )

        return summary

    def plan_gap_fetches(
            self,
            db: Session,
            user_id: str,
            symbols: list[str] | None = None,
            today: date | None = None,
    ) -> GapPlan:
        """
        Work out which ranges are missing from the cache.

        For each symbol the required start is its earliest investing
        transaction. If the cache starts on or before that day the symbol is
        skipped; if it starts later only the missing head is requested (up to
        the day before the cache starts); with no cache at all the whole
        range up to today is requested.
        """
        today = today or utc_today()
        wanted = normalize_symbols(symbols) if symbols is not None else None
        first_dates = repository.get_earliest_investing_dates(db, user_id, wanted)

        plan = GapPlan()
        for symbol in (wanted if wanted is not None else sorted(first_dates)):
            tx_from = first_dates.get(symbol)
            if tx_from is None:
                plan.skipped.append(symbol)
                continue

            cache_start = repository.get_earliest_cached_date(db, symbol)

            if cache_start is not None and cache_start <= tx_from:
                plan.skipped.append(symbol)
            elif cache_start is not None:
                plan.requests.append(GapRequest(symbol, tx_from, cache_start - timedelta(days=1)))
            else:
                plan.requests.append(GapRequest(symbol, tx_from, today))

        logger.debug(
            f"Gap plan for user {user_id}: {len(plan.requests)} fetches, "
            f"{len(plan.skipped)} skipped"
        )
        return plan

    def backfill_missing(
            self,
            db: Session,
            user_id: str,
            symbols: list[str] | None = None,
            cancel_token: CancellationToken | None = None,
    ) -> tuple[GapPlan, BackfillSummary]:
        """Plan gap fetches for the user's holdings and execute them."""
        plan = self.plan_gap_fetches(db, user_id, symbols)
        if plan.is_empty:
            return plan, BackfillSummary()
        return plan, self.backfill_ranges(db, plan.requests, cancel_token)

    # =========================================================================
    # PER-SYMBOL PROCESSING
    # =========================================================================

    def _backfill_symbol(
            self,
            db: Session,
            request: GapRequest,
            result: SymbolBackfillResult,
            cancel_token: CancellationToken | None,
    ) -> None:
        """Fetch and store every chunk of one symbol's range, updating result in place."""
        if request.from_date > request.to_date:
            raise InvalidDateRangeError(request.from_date, request.to_date)

        chunks = chunk_date_range(request.from_date, request.to_date, self._chunk_days)
        logger.debug(f"{request.symbol}: {len(chunks)} chunks {request.from_date} to {request.to_date}")

        for index, (chunk_start, chunk_end) in enumerate(chunks):
            if index > 0 and self._chunk_delay:
                self._sleep(self._chunk_delay)

            raise_if_cancelled(cancel_token)

            closes = self._fetch_chunk(request.symbol, chunk_start, chunk_end)
            rows = self._to_rows(request.symbol, closes)
            result.rows += repository.upsert_price_rows(db, rows, batch_size=self._batch_size)

        logger.info(f"Backfilled {result.rows} rows for {request.symbol}")

    def _fetch_chunk(self, symbol: str, chunk_start: date, chunk_end: date) -> list[HistoricalClose]:
        """
        Fetch one chunk, retrying only RateLimitError.

        Waits a fixed delay between attempts; the last RateLimitError is
        re-raised once attempts run out.
        """

        @retry(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_wait),
            retry=retry_if_exception_type(RateLimitError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        def _inner() -> list[HistoricalClose]:
            return self._provider.get_historical_closes(
                symbol, to_unix(chunk_start), to_unix(chunk_end)
            )

        return _inner()

    @staticmethod
    def _to_rows(symbol: str, closes: list[HistoricalClose]) -> list[dict[str, Any]]:
        """Cache rows for usable closes, rounded to 6 dp."""
        rows = []
        skipped = 0

        for c in closes:
            close = clean_close(c.close)
            if close is None:
                skipped += 1
                continue
            rows.append({
                "symbol": symbol,
                "date": c.date,
                "close": close,
                "open": clean_close(c.open),
            })

        if skipped:
            logger.debug(f"{symbol}: skipped {skipped} empty or non-positive closes")
        return rows


# =============================================================================
# HELPERS
# =============================================================================

def normalize_symbols(symbols: list[str]) -> list[str]:
    """Strip, upper-case and de-duplicate, keeping first-seen order."""
    seen: dict[str, None] = {}
    for s in symbols:
        if s is None:
            continue
        key = s.strip().upper()
        if key:
            seen.setdefault(key, None)
    return list(seen)


def clean_close(value: Any) -> Decimal | None:
    """
    Positive close rounded to 6 dp, or None for null, NaN and non-positive.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        d = value
    else:
        try:
            f = float(value)
        except (TypeError, ValueError):
            return None
        if math.isnan(f) or math.isinf(f):
            return None
        d = Decimal(str(value))
    if d <= ZERO:
        return None
    return d.quantize(CLOSE_PRECISION)
