# backend/lithos/services/valuation/service.py
"""
Valuation Service - Main orchestrator for holdings and net worth.

This is the single entry point for all valuation operations:
- get_holdings(): Holdings valued in the user's display currency
- get_account_balances(): Balance of every account
- get_portfolio_value(): Σ investment account balances
- get_total_net_worth(): Σ account balances - Σ debts
- get_holding_sparkline(): Recent daily values of one holding
- get_history(): Day-by-day net worth for charts

Design Principles:
- Dependency Injection: provider and FX service injected via constructor
- Single Entry Point: All valuation goes through this service
- No HTTP Knowledge: Raises domain exceptions, never HTTP errors
- Composable: Uses specialized calculators for each task

Pricing (current valuation):
    1. Live quote (price > 0)
    2. Backward-filled cached close (shared cache, user imports win)
    3. 0 with price_source "unavailable"

Usage:
    from lithos.services.valuation import ValuationService

    service = ValuationService(YahooFinanceProvider())

    holdings = service.get_holdings(db, user_id="u1")
    net_worth = service.get_total_net_worth(db, user_id="u1")
    history = service.get_history(db, user_id="u1", days="1M")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from lithos.models import AccountType
from lithos.services import repository
from lithos.services.cancellation import CancellationToken
from lithos.services.constants import (
    CLOSE_PRECISION,
    CURRENCY_PRECISION,
    DEFAULT_NATIVE_CURRENCY,
    DEFAULT_SPARKLINE_DAYS,
    HUNDRED,
    PERCENTAGE_PRECISION,
    PRICE_SOURCE_LIVE,
    ZERO,
)
from lithos.services.market_data.base import MarketDataProvider
from lithos.services.market_data.price_history_service import build_price_series
from lithos.services.market_data.quote_service import LiveQuote, QuoteService
from lithos.services.valuation.calculators import (
    CashCalculator,
    HoldingsCalculator,
    normalize_symbol,
    profit_percent,
    profit_value,
)
from lithos.services.valuation.currency import get_fx_multiplier
from lithos.services.valuation.history_calculator import HistoryCalculator
from lithos.services.valuation.price_resolver import PriceResolver
from lithos.services.valuation.types import (
    Holding,
    HistoryRange,
    HoldingsValuation,
    HoldingValuation,
    NetWorthPoint,
    SparklinePoint,
)
from lithos.utils.date_utils import date_range, utc_today

if TYPE_CHECKING:
    from lithos.services.protocols import FXRateServiceProtocol

logger = logging.getLogger(__name__)


@dataclass
class _PricingContext:
    """Everything needed to price holdings on one day, loaded once."""

    today: date
    user_currency: str
    gbp_usd_rate: Decimal
    live_quotes: dict[str, LiveQuote]
    price_series: dict[str, dict[date, Decimal]]


class ValuationService:
    """
    Main service for valuation operations.

    Orchestrates all valuation calculations by composing specialized
    calculators. Handles data fetching, calculation delegation, and
    result aggregation.

    Attributes:
        _provider: Market data provider for live quotes
        _fx_service: Injected GBP/USD rate source
        _quote_service: Live quote snapshot built on the provider
        _resolver: Shared price resolver (also used by history)
        _holdings_calc: Calculator for position aggregation
        _cash_calc: Calculator for checking/savings balances
        _history_calc: Calculator for time series
        _refresh_fx: Refresh a stale GBP/USD rate before valuing
    """

    def __init__(
            self,
            provider: MarketDataProvider,
            fx_service: FXRateServiceProtocol | None = None,
            resolver: PriceResolver | None = None,
            holdings_calc: HoldingsCalculator | None = None,
            cash_calc: CashCalculator | None = None,
            refresh_fx: bool = False,
    ) -> None:
        """
        Initialize the valuation service.

        Args:
            provider: Market data provider for live quotes
            fx_service: GBP/USD rate source. If None, an FXRateService
                        over the same provider is created.
            refresh_fx: Refresh a stale stored rate before each valuation
        """
        # Lazy import to avoid circular dependencies
        if fx_service is None:
            from lithos.services.fx_rate_service import FXRateService
            fx_service = FXRateService(provider)

        self._provider = provider
        self._fx_service: FXRateServiceProtocol = fx_service
        self._quote_service = QuoteService(provider)
        self._resolver = resolver or PriceResolver()
        self._holdings_calc = holdings_calc or HoldingsCalculator()
        self._cash_calc = cash_calc or CashCalculator()
        self._refresh_fx = refresh_fx

        # History reuses the point-in-time calculators and resolver
        self._history_calc = HistoryCalculator(
            provider=provider,
            holdings_calc=self._holdings_calc,
            cash_calc=self._cash_calc,
            resolver=self._resolver,
        )

        logger.info(f"ValuationService initialized (provider={provider.name})")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def get_holdings(
            self,
            db: Session,
            user_id: str,
            account_id: int | None = None,
    ) -> HoldingsValuation:
        """
        Value every holding of a user in the display currency.

        Args:
            db: Database session
            user_id: Owner of the ledger
            account_id: Only holdings bought through this account

        Returns:
            HoldingsValuation with active holdings sorted by current value
            (descending), closed holdings, and totals over active holdings
        """
        transactions = repository.fetch_all_transactions(db, user_id)
        holdings_result = self._holdings_calc.calculate(transactions, account_id=account_id)

        context = self._load_pricing_context(
            db, user_id, [h.symbol for h in holdings_result.all_holdings]
        )

        active = [self._value_holding(h, context) for h in holdings_result.active]
        closed = [self._value_holding(h, context) for h in holdings_result.closed]
        active.sort(key=lambda v: v.current_value, reverse=True)

        total_value = sum((v.current_value for v in active), ZERO)
        total_cost = sum((v.total_cost for v in active), ZERO)

        logger.info(
            f"Valued {len(active)} active and {len(closed)} closed holdings "
            f"for user {user_id} ({context.user_currency})"
        )

        return HoldingsValuation(
            active=active,
            closed=closed,
            total_value=total_value.quantize(CURRENCY_PRECISION),
            total_cost=total_cost.quantize(CURRENCY_PRECISION),
            currency=context.user_currency,
            skipped=holdings_result.skipped,
        )

    def get_account_balances(self, db: Session, user_id: str) -> dict[int, Decimal]:
        """
        Balance of every account in the display currency.

        Investment accounts hold the current value of the holdings bought
        through them; checking/savings hold starting value plus Σ
        non-investing amounts.
        """
        transactions = repository.fetch_all_transactions(db, user_id)
        accounts = repository.fetch_accounts(db, user_id)

        balances = self._investment_balances(db, user_id, accounts, transactions)
        balances.update(self._cash_calc.calculate(accounts, transactions))

        return {
            account_id: Decimal(balance).quantize(CURRENCY_PRECISION)
            for account_id, balance in balances.items()
        }

    def get_portfolio_value(self, db: Session, user_id: str) -> Decimal:
        """Σ investment account balances."""
        transactions = repository.fetch_all_transactions(db, user_id)
        accounts = repository.fetch_accounts(db, user_id)

        balances = self._investment_balances(db, user_id, accounts, transactions)
        return sum(balances.values(), ZERO).quantize(CURRENCY_PRECISION)

    def get_total_net_worth(self, db: Session, user_id: str) -> Decimal:
        """Σ account balances - Σ current debt starting values."""
        balances = self.get_account_balances(db, user_id)
        debts = sum(
            (Decimal(d.starting_value or 0) for d in repository.fetch_debts(db, user_id)),
            ZERO,
        )
        return (sum(balances.values(), ZERO) - debts).quantize(CURRENCY_PRECISION)

    def get_holding_sparkline(
            self,
            db: Session,
            user_id: str,
            symbol: str,
            days: int = DEFAULT_SPARKLINE_DAYS,
            today: date | None = None,
    ) -> list[SparklinePoint]:
        """
        Recent daily values of one holding, oldest first.

        The current quantity is priced at each day's backward-filled close.
        Days before the first cached close fall back to the live price, and
        are valued at 0 when there is none.

        Args:
            db: Database session
            user_id: Owner of the ledger
            symbol: Holding symbol (case-insensitive)
            days: Number of calendar days ending today
            today: Last day of the series (default: today, UTC)
        """
        symbol = normalize_symbol(symbol)
        if symbol is None or days < 1:
            return []

        today = today or utc_today()
        transactions = repository.fetch_all_transactions(db, user_id)
        holdings = self._holdings_calc.calculate(transactions, symbol=symbol).active
        quantity = holdings[0].quantity if holdings else ZERO
        quote = self._quote_service.get_quotes([symbol]).get(symbol)

        # Native currency: ledger currency → quote currency → GBP
        currency = (
            (holdings[0].currency if holdings else None)
            or (quote.currency if quote is not None else None)
            or DEFAULT_NATIVE_CURRENCY
        )
        live_price = quote.price if quote is not None else None

        user_currency = repository.get_user_currency(db, user_id)
        conversion = get_fx_multiplier(currency, user_currency, self._get_rate(db))
        series = build_price_series(db, [symbol], None, user_id).get(symbol, {})

        points: list[SparklinePoint] = []
        for day in date_range(today - timedelta(days=days - 1), today):
            resolved = self._resolver.resolve(symbol, day, series, live_price)
            value = ZERO
            if resolved.price is not None:
                value = quantity * conversion.apply(resolved.price)
            points.append(SparklinePoint(date=day, value=value.quantize(CURRENCY_PRECISION)))

        return points

    def get_history(
            self,
            db: Session,
            user_id: str,
            days: int | HistoryRange | str = HistoryRange.ONE_MONTH,
            today: date | None = None,
            cancel_token: CancellationToken | None = None,
    ) -> list[NetWorthPoint]:
        """
        Day-by-day net worth (time series), oldest first.

        Args:
            db: Database session
            user_id: Owner of the ledger
            days: Lookback in days, or "1W" / "1M" / "1Y"
            today: Last day of the series (default: today, UTC)
            cancel_token: Checked once per day

        Returns:
            days + 1 NetWorthPoint
        """
        logger.info(f"Calculating net worth history for user {user_id} ({days})")

        return self._history_calc.calculate(
            db=db,
            user_id=user_id,
            days=days,
            gbp_usd_rate=self._get_rate(db),
            today=today,
            cancel_token=cancel_token,
        )

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _get_rate(self, db: Session) -> Decimal:
        return self._fx_service.get_gbp_usd_rate(db, refresh_if_stale=self._refresh_fx)

    def _load_pricing_context(
            self,
            db: Session,
            user_id: str,
            symbols: list[str],
    ) -> _PricingContext:
        """Fetch quotes, cached closes, rate and display currency in one pass."""
        symbols = sorted(set(symbols))
        return _PricingContext(
            today=utc_today(),
            user_currency=repository.get_user_currency(db, user_id),
            gbp_usd_rate=self._get_rate(db),
            live_quotes=self._quote_service.get_quotes(symbols),
            price_series=build_price_series(db, symbols, None, user_id),
        )

    def _investment_balances(
            self,
            db: Session,
            user_id: str,
            accounts: list[Any],
            transactions: list[Any],
    ) -> dict[int, Decimal]:
        balances = {
            account.id: ZERO
            for account in accounts
            if account.type == AccountType.INVESTMENT
        }
        if not balances:
            return balances

        holdings = self._holdings_calc.calculate(transactions, by_account=True).active
        holdings = [h for h in holdings if h.account_id in balances]
        context = self._load_pricing_context(db, user_id, [h.symbol for h in holdings])

        for holding in holdings:
            balances[holding.account_id] += self._value_holding(holding, context).current_value

        return balances

    def _value_holding(self, holding: Holding, context: _PricingContext) -> HoldingValuation:
        """
        Value one holding from the pricing context.

        Native currency: ledger currency → quote currency → GBP.
        """
        symbol = holding.symbol
        quote = context.live_quotes.get(symbol)
        series = context.price_series.get(symbol, {})

        native_currency = (
            holding.currency
            or (quote.currency if quote is not None else None)
            or DEFAULT_NATIVE_CURRENCY
        )

        live_price = quote.price if quote is not None else None
        if live_price is not None and live_price > ZERO:
            native_price = live_price
            price_source = PRICE_SOURCE_LIVE
        else:
            resolved = self._resolver.resolve(symbol, context.today, series)
            if resolved.price is None:
                logger.warning(f"No price available for {symbol}, valuing at 0")
            native_price = resolved.price if resolved.price is not None else ZERO
            price_source = resolved.source

        conversion = get_fx_multiplier(native_currency, context.user_currency, context.gbp_usd_rate)
        display_price = conversion.apply(native_price)
        current_value = holding.quantity * display_price

        return HoldingValuation(
            symbol=symbol,
            quantity=holding.quantity,
            native_currency=native_currency,
            native_price=native_price,
            display_price=display_price.quantize(CLOSE_PRECISION),
            fx_rate=conversion.fx_rate,
            current_value=current_value.quantize(CURRENCY_PRECISION),
            total_cost=holding.total_cost.quantize(CURRENCY_PRECISION),
            avg_price=holding.avg_price.quantize(CLOSE_PRECISION),
            profit_value=profit_value(current_value, holding.total_cost).quantize(CURRENCY_PRECISION),
            profit_percent=profit_percent(current_value, holding.total_cost).quantize(PERCENTAGE_PRECISION),
            avg_cost_basis=holding.avg_cost_basis.quantize(CURRENCY_PRECISION),
            unrealized_pnl_avg_cost=(current_value - holding.avg_cost_basis).quantize(CURRENCY_PRECISION),
            daily_change_percent=self._daily_change_percent(series, context.today, live_price),
            price_source=price_source,
            account_id=holding.account_id,
        )

    @staticmethod
    def _daily_change_percent(
            series: dict[date, Decimal],
            today: date,
            live_price: Decimal | None,
    ) -> Decimal:
        """
        (today_close - yesterday_close) / yesterday_close × 100.

        today_close     = cached close today, else live price
        yesterday_close = cached close yesterday, else today's cached close,
                          else live price
        0 when either close is missing or yesterday's is not positive.
        """
        today_cached = series.get(today)
        yesterday_cached = series.get(today - timedelta(days=1))

        today_close = today_cached if today_cached is not None else live_price
        if yesterday_cached is not None:
            yesterday_close = yesterday_cached
        elif today_cached is not None:
            yesterday_close = today_cached
        else:
            yesterday_close = live_price

        if today_close is None or yesterday_close is None or yesterday_close <= ZERO:
            return ZERO

        change = (today_close - yesterday_close) / yesterday_close * HUNDRED
        return change.quantize(PERCENTAGE_PRECISION)
