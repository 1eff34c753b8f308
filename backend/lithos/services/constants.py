# backend/lithos/services/constants.py
"""
Centralized constants for the Lithos services.

Tunable operational values (chunk sizes, delays, retry counts) live in
lithos.config.Settings. This module holds the fixed business constants.

Usage:
    from lithos.services.constants import (
        CLOSED_POSITION_EPSILON,
        CURRENCY_PRECISION,
        ZERO,
    )
"""

from decimal import Decimal


# =============================================================================
# CURRENCY CODES
# =============================================================================

# Pence sterling. Quotes on the London exchange often arrive in GBX
GBX: str = "GBX"
GBP: str = "GBP"
USD: str = "USD"

# Minor units per major unit for GBX quotes
MINOR_UNIT_DIVISOR: Decimal = Decimal("100")

# Currency assumed for a holding when neither the ledger nor the quote has one
DEFAULT_NATIVE_CURRENCY: str = GBP

# Currency assumed for a quote when the provider does not report one
DEFAULT_QUOTE_CURRENCY: str = USD

# Yahoo Finance symbol quoting USD per 1 GBP
GBP_USD_SYMBOL: str = "GBP=X"

# GBP has never traded at or below 1 USD; such a quote is a bad payload
MIN_VALID_GBP_USD_RATE: Decimal = Decimal("1")


# =============================================================================
# HOLDINGS
# =============================================================================

# Absolute quantity at or below which a position counts as closed
# Absorbs float residue from fractional sells (0.1 + 0.1 + 0.1 - 0.3)
CLOSED_POSITION_EPSILON: Decimal = Decimal("0.000001")

# Ledger categories that classify an investing transaction
CATEGORY_FEE: str = "fee"
CATEGORY_SELL: str = "sell"
REINVEST_CATEGORIES: frozenset[str] = frozenset({"dividend", "reinvest", "dividend reinvest", "drip"})


# =============================================================================
# HISTORY & SPARKLINE
# =============================================================================

# Lookback windows accepted by the history calculator
HISTORY_RANGE_DAYS: dict[str, int] = {
    "1W": 7,
    "1M": 30,
    "1Y": 365,
}

DEFAULT_SPARKLINE_DAYS: int = 7


# =============================================================================
# PRICE HISTORY READS
# =============================================================================

# A cached series with more rows than this is served without refetching
PRICE_HISTORY_MIN_CACHED_ROWS: int = 50


# =============================================================================
# PRICE SOURCES
# =============================================================================

PRICE_SOURCE_CACHE: str = "cache"
PRICE_SOURCE_LIVE: str = "live"
PRICE_SOURCE_UNAVAILABLE: str = "unavailable"


# =============================================================================
# DECIMAL PRECISION CONSTANTS
# =============================================================================

# Currency amounts: 2 decimal places
CURRENCY_PRECISION: Decimal = Decimal("0.01")

# Stored closes: 6 decimal places
CLOSE_PRECISION: Decimal = Decimal("0.000001")

# Share quantities and FX rates: 8 decimal places
SHARE_PRECISION: Decimal = Decimal("0.00000001")

# Percentages: 4 decimal places in intermediate results
PERCENTAGE_PRECISION: Decimal = Decimal("0.0001")


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

ZERO: Decimal = Decimal("0")
HUNDRED: Decimal = Decimal("100")
