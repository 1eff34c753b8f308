# backend/lithos/services/valuation/__init__.py
"""
Valuation Service Package.

This package provides valuation capabilities:
- Current holdings in the display currency (get_holdings)
- Account balances, portfolio value and net worth
- Holding sparklines (get_holding_sparkline)
- Day-by-day net worth for charts (get_history)

Usage:
    from lithos.services.valuation import ValuationService

    service = ValuationService(YahooFinanceProvider())

    # Holdings valued with live quotes
    holdings = service.get_holdings(db, user_id="u1")

    # Net worth series for the last month
    history = service.get_history(db, user_id="u1", days="1M")

Architecture:
    valuation/
    ├── __init__.py              # This file - package exports
    ├── types.py                 # Internal data classes
    ├── currency.py              # Native → display currency conversion
    ├── calculators.py           # Point-in-time calculators
    ├── price_resolver.py        # Shared exact/backward-fill/live pricing
    ├── history_calculator.py    # Time series calculator
    └── service.py               # ValuationService (orchestrator)

Data Flow:
    Transactions → HoldingsCalculator → Holdings
    Holdings + Quotes/Closes → PriceResolver → native prices
    Native prices + GBP/USD → normalize_price → display prices
    All Above → HoldingValuation → HoldingsValuation
"""

# Calculators (for testing / direct usage)
from lithos.services.valuation.calculators import (
    HoldingsCalculator,
    CashCalculator,
    classify_investing,
    profit_value,
    profit_percent,
)
from lithos.services.valuation.currency import (
    CurrencyConversion,
    get_fx_multiplier,
    normalize_price,
    to_native_price,
)
from lithos.services.valuation.history_calculator import HistoryCalculator
from lithos.services.valuation.price_resolver import PriceResolver
# Main service
from lithos.services.valuation.service import ValuationService
# Types
from lithos.services.valuation.types import (
    InvestingKind,
    HistoryRange,
    Holding,
    HoldingsResult,
    ResolvedPrice,
    HoldingValuation,
    HoldingsValuation,
    NetWorthPoint,
    SparklinePoint,
)

__all__ = [
    # Main service
    "ValuationService",
    # Calculators
    "HoldingsCalculator",
    "CashCalculator",
    "HistoryCalculator",
    "PriceResolver",
    "classify_investing",
    "profit_value",
    "profit_percent",
    # Currency
    "CurrencyConversion",
    "get_fx_multiplier",
    "normalize_price",
    "to_native_price",
    # Types
    "InvestingKind",
    "HistoryRange",
    "Holding",
    "HoldingsResult",
    "ResolvedPrice",
    "HoldingValuation",
    "HoldingsValuation",
    "NetWorthPoint",
    "SparklinePoint",
]
