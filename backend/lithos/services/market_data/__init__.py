# backend/lithos/services/market_data/__init__.py
"""
Market data services package.

This package contains:
- Abstract interface for market data providers (base.py)
- Yahoo Finance implementation (yahoo.py)
- Chunked, gap-aware price backfill (backfill_service.py)
- Live quote snapshot (quote_service.py)
- Cached price-history reads (price_history_service.py)

Usage:
    from lithos.services.market_data import (
        MarketDataProvider,
        Quote,
        HistoricalClose,
        YahooFinanceProvider,
    )

    from lithos.services.market_data import (
        PriceBackfillService,
        BackfillSummary,
        GapPlan,
    )

Architecture:
    MarketDataProvider (ABC)
    └── YahooFinanceProvider (concrete)

    PriceBackfillService
    └── Chunks ranges, retries rate limits, upserts the price cache

    PriceHistoryService
    └── Reads the cache, tops it up through PriceBackfillService

    QuoteService
    └── Display-ready live quotes
"""

from lithos.services.market_data.base import (
    MarketDataProvider,
    Quote,
    HistoricalClose,
    QuoteBatchResult,
)
from lithos.services.market_data.backfill_service import (
    PriceBackfillService,
    BackfillSummary,
    SymbolBackfillResult,
    GapPlan,
    GapRequest,
    normalize_symbols,
)
from lithos.services.market_data.price_history_service import (
    PriceHistoryService,
    PricePoint,
    build_price_series,
)
from lithos.services.market_data.quote_service import QuoteService, LiveQuote
from lithos.services.market_data.yahoo import YahooFinanceProvider

__all__ = [
    # Abstract interface
    "MarketDataProvider",
    "Quote",
    "HistoricalClose",
    "QuoteBatchResult",
    # Concrete implementations
    "YahooFinanceProvider",
    # Backfill
    "PriceBackfillService",
    "BackfillSummary",
    "SymbolBackfillResult",
    "GapPlan",
    "GapRequest",
    "normalize_symbols",
    # Reads
    "PriceHistoryService",
    "PricePoint",
    "build_price_series",
    "QuoteService",
    "LiveQuote",
]
