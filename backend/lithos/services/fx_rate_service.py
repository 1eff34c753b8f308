# backend/lithos/services/fx_rate_service.py
"""
FX Rate Service for the GBP/USD rate used by every valuation.

This service handles:
- Fetching the latest GBP/USD quote from the market data provider
- Storing it as the single (GBP, USD) row of the exchange_rates table
- Reading the stored rate, refreshing it first when it is stale

=============================================================================
FX RATE CONVENTION
=============================================================================

    rate = "1 GBP = X USD"   (Yahoo symbol GBP=X)

Example:
    rate = 1.27  →  1 GBP = 1.27 USD

The currency normalizer derives both directions from this one number:
    USD → GBP:  multiply by 1 / rate
    GBP → USD:  multiply by rate

=============================================================================

An unknown rate is reported as 0, never raised. The normalizer turns 0
into a multiplier of 1 so valuations degrade to unconverted figures
instead of failing.

Usage:
    from lithos.services import FXRateService

    service = FXRateService(provider)
    service.refresh_gbp_usd(db)
    rate = service.get_gbp_usd_rate(db, refresh_if_stale=True)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from lithos.config import settings
from lithos.models import ExchangeRate
from lithos.services import repository
from lithos.services.constants import (
    GBP,
    USD,
    GBP_USD_SYMBOL,
    MIN_VALID_GBP_USD_RATE,
    SHARE_PRECISION,
    ZERO,
)
from lithos.services.exceptions import FXProviderError, MarketDataError, PersistenceError
from lithos.services.market_data.base import MarketDataProvider
from lithos.utils.context import correlation_scope

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class FXRefreshResult:
    """Outcome of a GBP/USD refresh."""

    rate: Decimal
    updated_at: datetime
    previous_rate: Decimal | None = None

    @property
    def changed(self) -> bool:
        return self.previous_rate != self.rate


# =============================================================================
# FX RATE SERVICE
# =============================================================================

class FXRateService:
    """
    Maintains the stored GBP/USD rate.

    Example:
        service = FXRateService(YahooFinanceProvider())

        result = service.refresh_gbp_usd(db)
        print(f"1 GBP = {result.rate} USD")
    """

    def __init__(
            self,
            provider: MarketDataProvider,
            refresh_interval_minutes: int | None = None,
    ) -> None:
        self._provider = provider
        self._refresh_interval = timedelta(
            minutes=refresh_interval_minutes or settings.fx_refresh_interval_minutes
        )
        logger.info(
            f"FXRateService initialized (provider={provider.name}, "
            f"refresh_interval={self._refresh_interval})"
        )

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    def refresh_gbp_usd(self, db: Session) -> FXRefreshResult:
        """
        Fetch GBP/USD and store it.

        A quote at or below 1 is rejected and the stored row is left
        untouched.

        Raises:
            FXProviderError: Quote unavailable or implausible
            PersistenceError: Store rejected the write
        """
        with correlation_scope("fx-refresh"):
            try:
                quote = self._provider.get_current_quote(GBP_USD_SYMBOL)
            except MarketDataError as e:
                logger.error(f"GBP/USD quote failed: {e}")
                raise FXProviderError(self._provider.name, str(e)) from e

            rate = quote.price
            if rate is None or rate <= MIN_VALID_GBP_USD_RATE:
                logger.error(f"Rejecting implausible GBP/USD rate: {rate}")
                raise FXProviderError(
                    self._provider.name,
                    f"invalid GBP/USD rate {rate}",
                )

            rate = Decimal(rate).quantize(SHARE_PRECISION)
            previous = repository.get_exchange_rate(db, GBP, USD)
            previous_rate = previous.rate if previous is not None else None

            updated_at = datetime.now(timezone.utc)
            self.upsert_rate(db, GBP, USD, rate, updated_at=updated_at)

            logger.info(f"GBP/USD rate updated: {previous_rate} -> {rate}")
            return FXRefreshResult(rate=rate, updated_at=updated_at, previous_rate=previous_rate)

    def get_gbp_usd_rate(self, db: Session, refresh_if_stale: bool = False) -> Decimal:
        """
        Stored GBP/USD rate, or 0 when missing or non-positive.

        Args:
            db: Database session
            refresh_if_stale: Refresh first when the row is missing or older
                than the refresh interval. A failed refresh keeps the
                previous value.
        """
        row = repository.get_exchange_rate(db, GBP, USD)

        if refresh_if_stale and (row is None or self.is_stale(row)):
            try:
                return self.refresh_gbp_usd(db).rate
            except (FXProviderError, PersistenceError) as e:
                logger.warning(f"GBP/USD refresh failed, keeping stored rate: {e}")
                row = repository.get_exchange_rate(db, GBP, USD)

        if row is None or row.rate is None or row.rate <= ZERO:
            return ZERO
        return Decimal(row.rate)

    def is_stale(self, rate_row: ExchangeRate, now: datetime | None = None) -> bool:
        """Whether the row is older than the refresh interval."""
        now = now or datetime.now(timezone.utc)
        updated_at = rate_row.updated_at
        if updated_at is None:
            return True
        # SQLite hands back naive datetimes; stored values are UTC
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return now - updated_at > self._refresh_interval

    @staticmethod
    def upsert_rate(
            db: Session,
            from_currency: str,
            to_currency: str,
            rate: Decimal,
            updated_at: datetime | None = None,
    ) -> None:
        """Single-row upsert for a currency pair."""
        repository.upsert_exchange_rate(
            db,
            from_currency.upper(),
            to_currency.upper(),
            rate,
            updated_at=updated_at,
        )
