# backend/lithos/schemas/market_data.py
"""
Pydantic schemas for market data.

These schemas handle:
- Backfill requests and per-symbol summaries
- Live quote snapshots
- The stored GBP/USD rate
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator

from lithos.services.market_data.backfill_service import BackfillSummary


# =============================================================================
# BACKFILL SCHEMAS
# =============================================================================

class BackfillRequest(BaseModel):
    """Schema for triggering a price backfill."""

    symbols: list[str] = Field(..., min_length=1, description="Symbols to backfill")
    from_date: dt.date | None = Field(
        default=None,
        description="First day to fetch (default: to_date - 730 days)"
    )
    to_date: dt.date | None = Field(
        default=None,
        description="Last day to fetch (default: today)"
    )

    @field_validator("symbols")
    @classmethod
    def normalize_symbols(cls, v: list[str]) -> list[str]:
        """Strip, upper-case and dedupe, keeping order."""
        seen: list[str] = []
        for symbol in v:
            symbol = symbol.strip().upper()
            if symbol and symbol not in seen:
                seen.append(symbol)
        if not seen:
            raise ValueError("at least one non-empty symbol is required")
        return seen

    @model_validator(mode="after")
    def check_range(self) -> "BackfillRequest":
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("from_date must be on or before to_date")
        return self


class SymbolBackfillResponse(BaseModel):
    """Outcome for one symbol."""

    rows: int = Field(..., ge=0, description="Rows upserted into the price cache")
    error: str | None = Field(default=None, description="Why the symbol stopped early")


class BackfillSummaryResponse(RootModel[dict[str, SymbolBackfillResponse]]):
    """
    Per-symbol backfill summary.

    Serializes as {symbol: {"rows": int, "error"?: str}}; the error key is
    omitted for symbols that succeeded.
    """

    @classmethod
    def from_summary(cls, summary: BackfillSummary) -> "BackfillSummaryResponse":
        return cls.model_validate(summary.to_dict())

    def to_json_dict(self) -> dict[str, dict]:
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# QUOTE & FX SCHEMAS
# =============================================================================

class LiveQuoteResponse(BaseModel):
    """Display-ready live quote."""

    model_config = ConfigDict(from_attributes=True)

    price: Decimal
    previous_close: Decimal
    change: Decimal
    change_percent: Decimal
    currency: str = Field(..., description="Quote currency as reported (GBX for pence)")


class ExchangeRateResponse(BaseModel):
    """Stored rate for a currency pair."""

    model_config = ConfigDict(from_attributes=True)

    from_currency: str
    to_currency: str
    rate: Decimal = Field(..., description="Units of to_currency per from_currency")
    updated_at: dt.datetime
