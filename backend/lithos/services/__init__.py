# backend/lithos/services/__init__.py
"""
Service layer for valuation and price reconciliation.

Services:
- Have NO knowledge of HTTP or any other outer surface
- Raise domain-specific exceptions
- Receive database sessions as parameters
- Are easily testable via dependency injection

Usage:
    from lithos.services import FXRateService
    from lithos.services import PriceBackfillService
    from lithos.services import ValuationService
    from lithos.services import (
        MarketDataError,
        RateLimitError,
        FXProviderError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Business constants and limits
    ├── protocols.py                 # Service interfaces (Protocol classes)
    ├── cancellation.py              # Cooperative cancellation token
    ├── repository.py                # Persistence/query functions
    ├── fx_rate_service.py           # GBP/USD rate maintenance
    ├── market_data/                 # Market data package
    │   ├── base.py                  # Abstract provider interface
    │   ├── yahoo.py                 # Yahoo Finance implementation
    │   ├── backfill_service.py      # Chunked, gap-aware backfill
    │   ├── quote_service.py         # Live quote snapshot
    │   └── price_history_service.py # Cached price-history reads
    └── valuation/                   # Valuation service
        ├── service.py               # Main valuation orchestrator
        ├── types.py                 # Valuation data types
        ├── currency.py              # Currency normalizer
        ├── calculators.py           # Point-in-time calculations
        ├── price_resolver.py        # Shared price resolution
        └── history_calculator.py    # Time series calculations
"""

# Cancellation
from lithos.services.cancellation import CancellationToken
# Exceptions
from lithos.services.exceptions import (
    # Base exceptions
    ServiceError,
    ValidationError,
    InvalidDateRangeError,
    # Market data exceptions
    MarketDataError,
    ProviderUnavailableError,
    TickerNotFoundError,
    RateLimitError,
    # FX rate exceptions
    FXRateError,
    FXProviderError,
    # Persistence / control flow
    PersistenceError,
    OperationCancelled,
)
# FX Rate Service
from lithos.services.fx_rate_service import FXRateService, FXRefreshResult
# Market Data
from lithos.services.market_data import (
    # Provider interface
    MarketDataProvider,
    Quote,
    HistoricalClose,
    QuoteBatchResult,
    # Concrete providers
    YahooFinanceProvider,
    # Backfill
    PriceBackfillService,
    BackfillSummary,
    SymbolBackfillResult,
    GapPlan,
    GapRequest,
    # Reads
    PriceHistoryService,
    QuoteService,
    LiveQuote,
)
# Valuation Service
from lithos.services.valuation import ValuationService, HistoryCalculator

__all__ = [
    # ==========================================================================
    # Services
    # ==========================================================================
    # FX Rate Service
    "FXRateService",
    "FXRefreshResult",
    # Market Data Provider
    "MarketDataProvider",
    "YahooFinanceProvider",
    "Quote",
    "HistoricalClose",
    "QuoteBatchResult",
    # Backfill
    "PriceBackfillService",
    "BackfillSummary",
    "SymbolBackfillResult",
    "GapPlan",
    "GapRequest",
    # Reads
    "PriceHistoryService",
    "QuoteService",
    "LiveQuote",
    # Valuation Service
    "ValuationService",
    "HistoryCalculator",
    # Cancellation
    "CancellationToken",

    # ==========================================================================
    # Exceptions
    # ==========================================================================
    # Base
    "ServiceError",
    "ValidationError",
    "InvalidDateRangeError",
    # Market data
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    # FX rate
    "FXRateError",
    "FXProviderError",
    # Persistence / control flow
    "PersistenceError",
    "OperationCancelled",
]
