# backend/lithos/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO transport
knowledge. Callers map them to whatever surface they expose.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── InvalidDateRangeError
    ├── MarketDataError
    │   ├── ProviderUnavailableError
    │   ├── TickerNotFoundError
    │   └── RateLimitError
    ├── FXRateError
    │   └── FXProviderError
    ├── PersistenceError
    └── OperationCancelled

Absence of data (no cached close, no stored rate) is reported as None or 0
by the services and never raised.
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidDateRangeError(ValidationError):
    """Raised when a requested range starts after it ends."""

    def __init__(self, from_date: date, to_date: date) -> None:
        self.from_date = from_date
        self.to_date = to_date
        super().__init__(
            f"Invalid date range: {from_date} is after {to_date}",
            field="from_date",
        )


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(MarketDataError):
    """
    Raised when a market data provider is unavailable.

    Examples:
    - Network timeout
    - Server errors (500, 502, 503)
    - Unexpected payloads
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class TickerNotFoundError(MarketDataError):
    """
    Raised when a ticker symbol is not found by the provider.

    This is NOT a retryable error.
    """

    def __init__(self, ticker: str, provider: str) -> None:
        message = f"Ticker '{ticker}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.ticker = ticker


class RateLimitError(MarketDataError):
    """
    Raised when the provider's rate limit has been exceeded.

    The only error the backfill retries.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


# =============================================================================
# FX RATE ERRORS
# =============================================================================


class FXRateError(ServiceError):
    """
    Base exception for FX rate errors.

    Attributes:
        base_currency: The base currency code
        quote_currency: The quote currency code
    """

    def __init__(
            self,
            message: str,
            base_currency: str | None = None,
            quote_currency: str | None = None,
    ) -> None:
        self.base_currency = base_currency
        self.quote_currency = quote_currency
        super().__init__(message)


class FXProviderError(FXRateError):
    """
    Raised when the FX data provider fails or returns an implausible rate.

    Attributes:
        provider: Name of the FX data provider
        reason: Specific reason for failure
    """

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"FX provider '{provider}' error: {reason}")


# =============================================================================
# PERSISTENCE AND CONTROL FLOW
# =============================================================================


class PersistenceError(ServiceError):
    """
    Raised when the store rejects a write.

    The session has already been rolled back when this is raised.

    Attributes:
        operation: Short name of the failed write (e.g. "upsert_price_rows")
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class OperationCancelled(ServiceError):
    """Raised when a cancellation token is set during a long-running job."""

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message)


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    "InvalidDateRangeError",
    # Market Data
    "MarketDataError",
    "ProviderUnavailableError",
    "TickerNotFoundError",
    "RateLimitError",
    # FX Rate
    "FXRateError",
    "FXProviderError",
    # Persistence / control
    "PersistenceError",
    "OperationCancelled",
]
