# backend/lithos/services/valuation/price_resolver.py
"""
Shared price resolution.

Resolution order for a symbol on a day:
    1. Cached close on that exact day
    2. Most recent cached close before that day (backward fill)
    3. Live quote
    4. Nothing (price None, source "unavailable")

Current valuation, historical reconstruction and sparklines all price
holdings through PriceResolver so that a given day is always priced the
same way.
"""

from bisect import bisect_right
from datetime import date
from decimal import Decimal

from lithos.services.constants import (
    PRICE_SOURCE_CACHE,
    PRICE_SOURCE_LIVE,
    PRICE_SOURCE_UNAVAILABLE,
    ZERO,
)
from lithos.services.valuation.types import ResolvedPrice


class PriceResolver:
    """
    Resolves native prices from a {date: close} series.

    Sorted date indexes are kept per symbol so repeated lookups over the
    same series (one per day of a history) cost O(log n).
    """

    def __init__(self) -> None:
        self._index: dict[str, tuple[dict[date, Decimal], list[date]]] = {}

    def resolve(
            self,
            symbol: str,
            as_of: date,
            price_series: dict[date, Decimal] | None,
            live_quote: Decimal | None = None,
    ) -> ResolvedPrice:
        """
        Pick the price of a symbol on a day.

        Args:
            symbol: Symbol the series belongs to (index cache key)
            as_of: Day to price
            price_series: Cached closes keyed by date (may be empty or None)
            live_quote: Current native price, used when no close is on or before as_of
        """
        if price_series:
            exact = price_series.get(as_of)
            if exact is not None:
                return ResolvedPrice(exact, as_of, PRICE_SOURCE_CACHE)

            dates = self._sorted_dates(symbol, price_series)
            pos = bisect_right(dates, as_of)
            if pos > 0:
                found = dates[pos - 1]
                return ResolvedPrice(price_series[found], found, PRICE_SOURCE_CACHE)

        if live_quote is not None and live_quote > ZERO:
            return ResolvedPrice(live_quote, None, PRICE_SOURCE_LIVE)

        return ResolvedPrice(None, None, PRICE_SOURCE_UNAVAILABLE)

    def _sorted_dates(self, symbol: str, price_series: dict[date, Decimal]) -> list[date]:
        cached = self._index.get(symbol)
        if cached is None or cached[0] is not price_series or len(cached[1]) != len(price_series):
            cached = (price_series, sorted(price_series))
            self._index[symbol] = cached
        return cached[1]
