# backend/lithos/services/market_data/quote_service.py
"""
Live quote snapshot for a set of symbols.

Turns raw provider quotes into display-ready figures:
    price          = regular market price, else previous close, else 0
    previous_close = as reported, else price
    change         = price - previous_close
    change_percent = change / previous_close * 100 (0 when previous close is 0)

Symbols whose quote fails are left out of the result and logged.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from lithos.services.constants import DEFAULT_QUOTE_CURRENCY, HUNDRED, ZERO
from lithos.services.market_data.backfill_service import normalize_symbols
from lithos.services.market_data.base import MarketDataProvider, Quote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveQuote:
    price: Decimal
    previous_close: Decimal
    change: Decimal
    change_percent: Decimal
    currency: str


class QuoteService:
    """
    Example:
        quotes = QuoteService(provider).get_quotes(["AAPL", "VOD.L"])
        quotes["VOD.L"].currency  # "GBX"
    """

    def __init__(self, provider: MarketDataProvider) -> None:
        self._provider = provider

    def get_quotes(self, symbols: list[str]) -> dict[str, LiveQuote]:
        symbols = normalize_symbols(symbols)
        if not symbols:
            return {}

        batch = self._provider.get_current_quotes(symbols)
        for symbol, error in batch.failed.items():
            logger.warning(f"Omitting {symbol} from quote snapshot: {error}")

        return {
            symbol: to_live_quote(quote)
            for symbol, quote in batch.successful.items()
        }


def to_live_quote(quote: Quote) -> LiveQuote:
    """Apply the price and previous-close fallbacks to a raw quote."""
    if quote.price is not None:
        price = quote.price
    elif quote.previous_close is not None:
        price = quote.previous_close
    else:
        price = ZERO

    previous_close = quote.previous_close if quote.previous_close is not None else price
    change = price - previous_close
    change_percent = change / previous_close * HUNDRED if previous_close != ZERO else ZERO

    return LiveQuote(
        price=price,
        previous_close=previous_close,
        change=change,
        change_percent=change_percent,
        currency=(quote.currency or DEFAULT_QUOTE_CURRENCY).upper(),
    )
