# backend/lithos/services/market_data/yahoo.py
"""
Yahoo Finance market data provider implementation.

This module implements the MarketDataProvider interface using the yfinance
library. Symbols are passed through in Yahoo's own format ("AAPL",
"VOD.L", "GBP=X").

Key features:
- Current quote snapshot (price, previous close, currency)
- Daily closes over a unix-second range
- Error mapping: rate limits, unknown tickers and everything else are
  raised as distinct exception types

Limitations:
- Rate limits (not officially documented, but exist)
- Yahoo caps the span of a single history request; the backfill
  service chunks requests to at most a year
"""

import logging
import math
from datetime import timedelta
from decimal import Decimal
from typing import Any

import yfinance as yf

from lithos.services.exceptions import (
    ProviderUnavailableError,
    TickerNotFoundError,
    RateLimitError,
)
from lithos.services.market_data.base import (
    MarketDataProvider,
    Quote,
    HistoricalClose,
)
from lithos.utils import date_utils

logger = logging.getLogger(__name__)


class YahooFinanceProvider(MarketDataProvider):
    """
    Yahoo Finance implementation of MarketDataProvider.

    Configuration:
        timeout: API request timeout in seconds (default: 10)

    Example:
        provider = YahooFinanceProvider(timeout=15)

        quote = provider.get_current_quote("VOD.L")
        print(quote.price, quote.currency)  # 72.5 GBX

        closes = provider.get_historical_closes("AAPL", 1704067200, 1735603200)
    """

    def __init__(self, timeout: int = 10) -> None:
        self._timeout = timeout
        logger.info(f"YahooFinanceProvider initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "yahoo"

    # =========================================================================
    # CURRENT QUOTE
    # =========================================================================

    def get_current_quote(self, symbol: str) -> Quote:
        """
        Fetch the latest quote from Yahoo Finance.

        Raises:
            TickerNotFoundError: If symbol not found
            RateLimitError: If Yahoo throttles the request
            ProviderUnavailableError: If Yahoo Finance unavailable
        """
        return self._execute_with_retry(self._fetch_quote, symbol)

    def _fetch_quote(self, symbol: str) -> Quote:
        """Internal method to fetch a quote (called by retry wrapper)."""
        symbol = symbol.strip().upper()
        logger.debug(f"Fetching quote for {symbol}")

        try:
            info = yf.Ticker(symbol).info

            if not self._is_valid_ticker_info(info):
                raise TickerNotFoundError(ticker=symbol, provider=self.name)

            previous_close = self._to_decimal(
                info.get("regularMarketPreviousClose", info.get("previousClose"))
            )

            return Quote(
                symbol=symbol,
                price=self._to_decimal(info.get("regularMarketPrice")),
                currency=(info.get("currency") or None),
                previous_close=previous_close,
            )

        except TickerNotFoundError:
            raise
        except Exception as e:
            raise self._map_error(symbol, e)

    # =========================================================================
    # HISTORICAL CLOSES
    # =========================================================================

    def get_historical_closes(
            self,
            symbol: str,
            from_unix: int,
            to_unix: int,
    ) -> list[HistoricalClose]:
        """
        Fetch daily closes from Yahoo Finance.

        Not retried here; callers own the retry policy for history.

        Raises:
            TickerNotFoundError: If symbol not found
            RateLimitError: If Yahoo throttles the request
            ProviderUnavailableError: If Yahoo Finance unavailable
        """
        symbol = symbol.strip().upper()
        start_date = date_utils.from_unix(from_unix)
        end_date = date_utils.from_unix(to_unix)

        logger.debug(f"Fetching closes for {symbol}: {start_date} to {end_date}")

        try:
            yf_ticker = yf.Ticker(symbol)

            # Yahoo Finance end date is exclusive, so add 1 day
            df = yf_ticker.history(
                start=start_date.isoformat(),
                end=(end_date + timedelta(days=1)).isoformat(),
                interval="1d",
                auto_adjust=False,  # Raw closes; adjusted closes rewrite past values after dividends
                timeout=self._timeout,
            )

            if df.empty:
                info = yf_ticker.info
                if not self._is_valid_ticker_info(info):
                    raise TickerNotFoundError(ticker=symbol, provider=self.name)

                logger.debug(f"No closes for {symbol} between {start_date} and {end_date}")
                return []

            closes = self._dataframe_to_closes(df)
            logger.debug(f"Fetched {len(closes)} days for {symbol}")
            return closes

        except TickerNotFoundError:
            raise
        except Exception as e:
            raise self._map_error(symbol, e)

    def _dataframe_to_closes(self, df) -> list[HistoricalClose]:
        """
        Convert a pandas DataFrame from yfinance to HistoricalClose rows.

        NaN closes become None; the backfill filters them out.
        """
        closes = []

        for idx, row in df.iterrows():
            price_date = idx.date() if hasattr(idx, 'date') else idx
            closes.append(HistoricalClose(
                date=price_date,
                close=self._to_decimal(row.get('Close')),
                open=self._to_decimal(row.get('Open')),
            ))

        closes.sort(key=lambda c: c.date)
        return closes

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _map_error(self, symbol: str, error: Exception) -> Exception:
        """Translate a yfinance/transport failure into a domain exception."""
        error_str = str(error).lower()

        if "rate limit" in error_str or "too many requests" in error_str:
            logger.warning(f"Yahoo Finance rate limited request for {symbol}")
            return RateLimitError(provider=self.name)

        if "not found" in error_str or "no data" in error_str:
            return TickerNotFoundError(ticker=symbol, provider=self.name)

        logger.error(f"Yahoo Finance error for {symbol}: {error}")
        return ProviderUnavailableError(provider=self.name, reason=str(error))

    @staticmethod
    def _is_valid_ticker_info(info: dict | None) -> bool:
        """
        Yahoo returns an info dict even for invalid tickers, but it lacks
        meaningful data. We check for price or name to validate.
        """
        if not info:
            return False
        return bool(
            info.get("regularMarketPrice")
            or info.get("previousClose")
            or info.get("shortName")
            or info.get("longName")
        )

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            f = float(value)
            if math.isnan(f) or math.isinf(f):
                return None
            return Decimal(str(value)).quantize(Decimal("0.00000001"))
        except (TypeError, ValueError):
            return None
