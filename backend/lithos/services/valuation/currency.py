# backend/lithos/services/valuation/currency.py
"""
Currency normalization from an instrument's native quote to the user's
display currency.

Only one rate is available: GBP/USD ("1 GBP = X USD"). The rules are:

    native GBX           → divide by 100, then treat as a non-USD currency
    native USD, user ≠ USD → multiply by 1 / rate
    native ≠ USD, user USD → multiply by rate
    otherwise            → multiply by 1

A rate of 0 (unknown) always yields a multiplier of 1. Currency codes are
compared case-insensitively and a missing native currency means GBP.

These functions are pure. Current valuation, historical reconstruction and
sparklines all convert through normalize_price().
"""

from dataclasses import dataclass
from decimal import Decimal

from lithos.services.constants import (
    DEFAULT_NATIVE_CURRENCY,
    GBX,
    MINOR_UNIT_DIVISOR,
    USD,
    ZERO,
)

_ONE = Decimal("1")


@dataclass(frozen=True)
class CurrencyConversion:
    """
    How to turn a native price into a display price.

    Attributes:
        fx_rate: Multiplier applied after minor-unit scaling
        is_minor_unit: True for GBX quotes (divide by 100 first)
    """

    fx_rate: Decimal
    is_minor_unit: bool = False

    def apply(self, price: Decimal) -> Decimal:
        if self.is_minor_unit:
            price = price / MINOR_UNIT_DIVISOR
        return price * self.fx_rate

    def invert(self, display_price: Decimal) -> Decimal:
        if self.fx_rate == ZERO:
            raise ValueError("cannot invert a zero multiplier")
        price = display_price / self.fx_rate
        if self.is_minor_unit:
            price = price * MINOR_UNIT_DIVISOR
        return price


def _code(currency: str | None, default: str) -> str:
    if not currency or not currency.strip():
        return default
    return currency.strip().upper()


def get_fx_multiplier(
        native_currency: str | None,
        user_currency: str | None,
        gbp_usd_rate: Decimal | None,
) -> CurrencyConversion:
    """
    Conversion for one native/display currency pair.

    Args:
        native_currency: Instrument's quote currency (None means GBP)
        user_currency: Display currency (None means GBP)
        gbp_usd_rate: USD per GBP; 0 or None when unknown
    """
    native = _code(native_currency, DEFAULT_NATIVE_CURRENCY)
    user = _code(user_currency, DEFAULT_NATIVE_CURRENCY)
    rate = Decimal(gbp_usd_rate) if gbp_usd_rate is not None else ZERO

    is_minor_unit = native == GBX

    if native == USD and user != USD:
        fx_rate = _ONE / rate if rate > ZERO else _ONE
    elif native != USD and user == USD:
        fx_rate = rate if rate > ZERO else _ONE
    else:
        fx_rate = _ONE

    return CurrencyConversion(fx_rate=fx_rate, is_minor_unit=is_minor_unit)


def normalize_price(
        price: Decimal,
        native_currency: str | None,
        user_currency: str | None,
        gbp_usd_rate: Decimal | None,
) -> Decimal:
    """Display-currency price for a native price."""
    return get_fx_multiplier(native_currency, user_currency, gbp_usd_rate).apply(price)


def to_native_price(
        display_price: Decimal,
        native_currency: str | None,
        user_currency: str | None,
        gbp_usd_rate: Decimal | None,
) -> Decimal:
    """Inverse of normalize_price()."""
    return get_fx_multiplier(native_currency, user_currency, gbp_usd_rate).invert(display_price)
