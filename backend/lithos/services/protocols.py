# backend/lithos/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- FXRateService satisfies the protocol without inheriting from it
- Test doubles only need the one method the valuation code calls
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class FXRateServiceProtocol(Protocol):
    """Interface required by ValuationService."""

    def get_gbp_usd_rate(self, db: Session, refresh_if_stale: bool = False) -> Decimal:
        ...
