# backend/lithos/schemas/valuation.py
"""
Pydantic schemas for valuation results.

All schemas read directly from the valuation dataclasses
(from_attributes=True), so a service result can be validated as-is:

    HoldingsValuationResponse.model_validate(service.get_holdings(db, "u1"))
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lithos.services.valuation.types import HistoryRange


# =============================================================================
# HOLDING VALUATION SCHEMAS
# =============================================================================

class HoldingValuationResponse(BaseModel):
    """One holding valued in the display currency."""

    model_config = ConfigDict(from_attributes=True)

    symbol: str
    quantity: Decimal = Field(..., description="Number of shares/units held")
    native_currency: str = Field(..., description="Currency the instrument is quoted in")
    native_price: Decimal
    display_price: Decimal
    fx_rate: Decimal = Field(..., description="Multiplier applied after GBX scaling")
    current_value: Decimal
    total_cost: Decimal
    avg_price: Decimal
    profit_value: Decimal
    profit_percent: Decimal
    avg_cost_basis: Decimal
    unrealized_pnl_avg_cost: Decimal
    daily_change_percent: Decimal
    price_source: str = Field(..., description="Price source: 'live', 'cache' or 'unavailable'")
    account_id: int | None = None


class HoldingsValuationResponse(BaseModel):
    """Active and closed holdings with totals."""

    model_config = ConfigDict(from_attributes=True)

    active: list[HoldingValuationResponse]
    closed: list[HoldingValuationResponse]
    total_value: Decimal
    total_cost: Decimal
    currency: str
    skipped: int = Field(default=0, description="Malformed investing rows ignored")


# =============================================================================
# HISTORY SCHEMAS
# =============================================================================

class NetWorthHistoryRequest(BaseModel):
    """Lookback window for net worth history."""

    range: HistoryRange = Field(default=HistoryRange.ONE_MONTH)

    @field_validator("range", mode="before")
    @classmethod
    def upper_case_range(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class NetWorthPointResponse(BaseModel):
    """Net worth on one calendar day."""

    model_config = ConfigDict(from_attributes=True)

    date: dt.date
    net_worth: Decimal
    assets: Decimal
    debts: Decimal
    checking: Decimal
    savings: Decimal
    investing: Decimal


class SparklinePointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: dt.date
    value: Decimal
