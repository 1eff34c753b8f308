# backend/lithos/schemas/__init__.py
"""
Pydantic schemas for serializing service results.

This package contains schemas organized by domain:
- market_data: Backfill requests/summaries, live quotes, exchange rates
- valuation: Holdings, net worth history, sparklines

Usage:
    from lithos.schemas import BackfillSummaryResponse
    from lithos.schemas import HoldingsValuationResponse
"""

from lithos.schemas.market_data import (
    BackfillRequest,
    SymbolBackfillResponse,
    BackfillSummaryResponse,
    LiveQuoteResponse,
    ExchangeRateResponse,
)
from lithos.schemas.valuation import (
    HoldingValuationResponse,
    HoldingsValuationResponse,
    NetWorthHistoryRequest,
    NetWorthPointResponse,
    SparklinePointResponse,
)

__all__ = [
    # Market data
    "BackfillRequest",
    "SymbolBackfillResponse",
    "BackfillSummaryResponse",
    "LiveQuoteResponse",
    "ExchangeRateResponse",
    # Valuation
    "HoldingValuationResponse",
    "HoldingsValuationResponse",
    "NetWorthHistoryRequest",
    "NetWorthPointResponse",
    "SparklinePointResponse",
]
