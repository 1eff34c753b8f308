# backend/lithos/services/market_data/price_history_service.py
"""
Cached price-history reads.

get_price_history serves a symbol's closes from the shared cache and tops
the cache up through the backfill when it looks thin. Upstream failures are
logged and whatever the cache holds is returned.

build_price_series assembles {symbol: {date: close}} for the valuation and
history calculators from the cache alone. With a user_id, that user's
imported closes replace shared closes on the same date.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from lithos.services import repository
from lithos.services.constants import PRICE_HISTORY_MIN_CACHED_ROWS
from lithos.services.market_data.backfill_service import (
    PriceBackfillService,
    normalize_symbols,
)
from lithos.utils.date_utils import utc_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricePoint:
    date: date
    close: Decimal
    open: Decimal | None = None


class PriceHistoryService:
    """
    Example:
        service = PriceHistoryService(PriceBackfillService(provider))
        points = service.get_price_history(db, "AAPL", date(2024, 1, 1))
    """

    def __init__(self, backfill_service: PriceBackfillService) -> None:
        self._backfill = backfill_service

    def get_price_history(
            self,
            db: Session,
            symbol: str,
            from_date: date,
            user_id: str | None = None,
    ) -> list[PricePoint]:
        """
        Closes for a symbol from from_date onwards, ascending.

        More than PRICE_HISTORY_MIN_CACHED_ROWS cached rows are served as-is;
        otherwise [from_date, today] is fetched and stored first. Never
        raises for upstream failures.
        """
        symbol = symbol.strip().upper()
        cached = repository.count_cached_rows(db, symbol, from_date)

        if cached > PRICE_HISTORY_MIN_CACHED_ROWS:
            logger.debug(f"Price history cache hit for {symbol} ({cached} rows)")
        else:
            logger.debug(f"Price history cache thin for {symbol} ({cached} rows), fetching")
            summary = self._backfill.backfill(db, [symbol], from_date, utc_today())
            result = summary.results.get(symbol)
            if result is not None and result.error:
                logger.warning(f"Serving cached history for {symbol} after fetch failure: {result.error}")

        points = {
            row.date: PricePoint(date=row.date, close=row.close, open=row.open)
            for row in repository.get_cached_closes(db, symbol, from_date)
        }

        if user_id is not None:
            for row in repository.get_user_closes(db, user_id, symbol, from_date):
                points[row.date] = PricePoint(date=row.date, close=row.close, open=row.open)

        return [points[d] for d in sorted(points)]

    def build_price_series(
            self,
            db: Session,
            symbols: list[str],
            from_date: date | None = None,
            user_id: str | None = None,
    ) -> dict[str, dict[date, Decimal]]:
        return build_price_series(db, symbols, from_date, user_id)


def build_price_series(
        db: Session,
        symbols: list[str],
        from_date: date | None = None,
        user_id: str | None = None,
) -> dict[str, dict[date, Decimal]]:
    """
    Cache-only {symbol: {date: close}} map.

    Symbols are upper-cased. User-imported closes win over shared closes
    for the same date. Symbols with no data map to an empty dict.
    """
    series: dict[str, dict[date, Decimal]] = {}

    for symbol in normalize_symbols(symbols):
        closes = {
            row.date: row.close
            for row in repository.get_cached_closes(db, symbol, from_date)
        }
        if user_id is not None:
            for row in repository.get_user_closes(db, user_id, symbol, from_date):
                closes[row.date] = row.close
        series[symbol] = closes

    return series
