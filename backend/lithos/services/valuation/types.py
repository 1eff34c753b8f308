# backend/lithos/services/valuation/types.py
"""
Internal data types for the valuation package.

These dataclasses are used internally by the calculators and the
ValuationService. They are NOT Pydantic schemas - those are defined in
lithos/schemas/valuation.py for serialization.

Design Principles:
- Use Decimal for ALL financial values (never float)
- Use date (not datetime) for valuation dates
- Optional fields use None, not sentinel values

Type Hierarchy:
    InvestingKind      - Classification of an investing transaction
    Holding            - Aggregated position for one symbol (mutable state)
    HoldingsResult     - Active/closed holdings plus skipped-row count
    ResolvedPrice      - Native price chosen for a symbol on a date
    HoldingValuation   - Holding valued in the display currency
    HoldingsValuation  - All valued holdings with totals
    NetWorthPoint      - One day of reconstructed history
    SparklinePoint     - One day of a holding's recent value
"""

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from lithos.services.constants import (
    CLOSED_POSITION_EPSILON,
    HISTORY_RANGE_DAYS,
    ZERO,
)


# =============================================================================
# CLASSIFICATION
# =============================================================================

class InvestingKind(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"
    FEE = "fee"
    DIVIDEND_REINVEST = "dividend_reinvest"


class HistoryRange(str, enum.Enum):
    """Lookback windows offered for net worth history."""

    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    ONE_YEAR = "1Y"

    @property
    def days(self) -> int:
        return HISTORY_RANGE_DAYS[self.value]


# =============================================================================
# POSITION & HOLDINGS
# =============================================================================

@dataclass
class Holding:
    """
    Aggregated position for one symbol (optionally one account).

    Two cost bases are tracked side by side:
    - total_cost: every buy and fee ever paid, never reduced by sells
    - avg_cost_basis: standard average cost, reduced proportionally on sells

    Attributes:
        symbol: Upper-cased instrument symbol
        quantity: Signed sum of all quantities
        total_cost: Σ |amount| of buys, reinvestments and fees
        buy_qty: Σ quantity of buys and reinvestments
        buy_total_cost: Σ |amount| of buys and reinvestments
        fee_cost: Σ |amount| of fees
        currency: Last non-empty currency seen on the ledger
        account_id: Set when aggregated per account
        avg_cost_basis: Average-cost basis of the quantity still held
    """

    symbol: str
    quantity: Decimal = ZERO
    total_cost: Decimal = ZERO
    buy_qty: Decimal = ZERO
    buy_total_cost: Decimal = ZERO
    fee_cost: Decimal = ZERO
    currency: str | None = None
    account_id: int | None = None
    avg_cost_basis: Decimal = ZERO

    @property
    def avg_price(self) -> Decimal:
        """Average buy price (0 if nothing was ever bought)."""
        if self.buy_qty == ZERO:
            return ZERO
        return self.buy_total_cost / self.buy_qty

    @property
    def is_closed(self) -> bool:
        return self.quantity <= CLOSED_POSITION_EPSILON


@dataclass
class HoldingsResult:
    """
    Result of HoldingsCalculator.calculate().

    Attributes:
        active: Holdings with a non-negligible quantity
        closed: Holdings whose quantity is at or below CLOSED_POSITION_EPSILON
        skipped: Investing rows ignored for missing symbol or quantity
    """

    active: list[Holding] = field(default_factory=list)
    closed: list[Holding] = field(default_factory=list)
    skipped: int = 0

    @property
    def all_holdings(self) -> list[Holding]:
        return self.active + self.closed


# =============================================================================
# PRICES
# =============================================================================

@dataclass(frozen=True)
class ResolvedPrice:
    """
    A native-currency price and where it came from.

    Attributes:
        price: Native price (None when nothing was found)
        price_date: Date of the cached close used (None for live/none)
        source: "cache", "live" or "unavailable"
    """

    price: Decimal | None
    price_date: date | None
    source: str

    @property
    def found(self) -> bool:
        return self.price is not None


# =============================================================================
# VALUATION RESULTS
# =============================================================================

@dataclass
class HoldingValuation:
    """
    One holding valued in the user's display currency.

    Figures:
        display_price = native_price (/100 if GBX) × fx_rate
        current_value = quantity × display_price
        profit_value = current_value - total_cost
        profit_percent = profit_value / total_cost × 100 (0 if no cost)
        unrealized_pnl_avg_cost = current_value - avg_cost_basis
    """

    symbol: str
    quantity: Decimal
    native_currency: str
    native_price: Decimal
    display_price: Decimal
    fx_rate: Decimal
    current_value: Decimal
    total_cost: Decimal
    avg_price: Decimal
    profit_value: Decimal
    profit_percent: Decimal
    avg_cost_basis: Decimal
    unrealized_pnl_avg_cost: Decimal
    daily_change_percent: Decimal
    price_source: str
    account_id: int | None = None


@dataclass
class HoldingsValuation:
    """Active and closed holdings, active sorted by current value descending."""

    active: list[HoldingValuation] = field(default_factory=list)
    closed: list[HoldingValuation] = field(default_factory=list)
    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    currency: str = "GBP"
    skipped: int = 0


@dataclass(frozen=True)
class NetWorthPoint:
    """
    Net worth on one calendar day.

    net_worth = checking + savings + investing - debts
    assets = checking + savings + investing
    """

    date: date
    net_worth: Decimal
    assets: Decimal
    debts: Decimal
    checking: Decimal
    savings: Decimal
    investing: Decimal


@dataclass(frozen=True)
class SparklinePoint:
    date: date
    value: Decimal
