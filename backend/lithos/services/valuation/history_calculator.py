# backend/lithos/services/valuation/history_calculator.py
"""
History Calculator for day-by-day net worth.

This calculator reconstructs a user's balances for every calendar day of a
lookback window by:
1. Loading the ledger, accounts, debts and cached closes upfront
2. Sorting transactions once and walking the days oldest to newest
3. Applying only the transactions dated up to each day (rolling state)
4. Valuing the replayed holdings at each day's backward-filled close

Performance:
    Instead of re-filtering the ledger for every day (O(D*T)), each
    transaction is applied exactly once as the walk passes its date
    (O(D+T)).

Point composition:
    checking/savings = starting_value + Σ non-investing amounts up to the day
    investing        = Σ quantity × normalized price for holdings replayed
                       per investment account
    debts            = Σ current debt starting values (not replayed)
    net_worth        = checking + savings + investing - debts
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from lithos.models import Account, AccountType
from lithos.services import repository
from lithos.services.cancellation import CancellationToken, raise_if_cancelled
from lithos.services.constants import CURRENCY_PRECISION, GBP, USD, ZERO
from lithos.services.market_data.base import MarketDataProvider
from lithos.services.market_data.price_history_service import build_price_series
from lithos.services.market_data.quote_service import to_live_quote
from lithos.services.valuation.calculators import CashCalculator, HoldingsCalculator
from lithos.services.valuation.currency import normalize_price
from lithos.services.valuation.price_resolver import PriceResolver
from lithos.services.valuation.types import Holding, HistoryRange, NetWorthPoint
from lithos.utils.date_utils import as_date, date_range, utc_today

logger = logging.getLogger(__name__)


class HistoryCalculator:
    """
    Calculates net worth history (time series).

    Key Insight:
        Holdings and cash balances CHANGE over time. Today's holdings priced
        at historical closes would be wrong, so the ledger is replayed and
        each day sees only the transactions dated on or before it.

    Attributes:
        _provider: Optional provider for live prices (fallback when a symbol
                   has no cached close on or before a day)
        _holdings_calc: Calculator for position aggregation
        _cash_calc: Calculator for checking/savings balances
        _resolver: Shared price resolver
    """

    def __init__(
            self,
            provider: MarketDataProvider | None = None,
            holdings_calc: HoldingsCalculator | None = None,
            cash_calc: CashCalculator | None = None,
            resolver: PriceResolver | None = None,
    ) -> None:
        self._provider = provider
        self._holdings_calc = holdings_calc or HoldingsCalculator()
        self._cash_calc = cash_calc or CashCalculator()
        self._resolver = resolver or PriceResolver()

    def calculate(
            self,
            db: Session,
            user_id: str,
            days: int | HistoryRange | str = HistoryRange.ONE_MONTH,
            gbp_usd_rate: Decimal | None = None,
            today: date | None = None,
            live_prices: dict[str, Decimal] | None = None,
            quote_currencies: dict[str, str] | None = None,
            cancel_token: CancellationToken | None = None,
    ) -> list[NetWorthPoint]:
        """
        Net worth for each day from today - days through today.

        Args:
            db: Database session
            user_id: Owner of the ledger
            days: Lookback in days, or a HistoryRange ("1W", "1M", "1Y")
            gbp_usd_rate: Rate for currency conversion (read from the store if None)
            today: Last day of the series (default: today, UTC)
            live_prices: Native live prices by symbol; fetched from the
                         provider when None and a provider is configured
            quote_currencies: Quote currency by symbol, used for holdings
                              whose ledger rows carry no currency
            cancel_token: Checked once per day

        Returns:
            days + 1 NetWorthPoint, oldest first
        """
        lookback = self._resolve_days(days)
        today = today or utc_today()
        start = today - timedelta(days=lookback)

        transactions = sorted(
            repository.fetch_all_transactions(db, user_id),
            key=lambda t: (as_date(t.date), t.id or 0),
        )
        accounts = repository.fetch_accounts(db, user_id)
        debts_total = sum(
            (Decimal(d.starting_value or 0) for d in repository.fetch_debts(db, user_id)),
            ZERO,
        )
        user_currency = repository.get_user_currency(db, user_id)

        if gbp_usd_rate is None:
            gbp_usd_rate = self._stored_rate(db)

        investment_ids = {a.id for a in accounts if a.type == AccountType.INVESTMENT}
        symbols = sorted({
            t.symbol.strip().upper()
            for t in transactions
            if t.account_id in investment_ids and self._holdings_calc.is_valid_investing(t)
        })
        price_series = build_price_series(db, symbols, None, user_id)

        if live_prices is None:
            live_prices, fetched_currencies = self._fetch_live_quotes(symbols)
            quote_currencies = {**fetched_currencies, **(quote_currencies or {})}

        logger.debug(
            f"History for user {user_id}: {lookback + 1} days, "
            f"{len(transactions)} transactions, {len(symbols)} symbols"
        )

        return self._calculate_history_rolling(
            transactions=transactions,
            accounts=accounts,
            debts_total=debts_total,
            start=start,
            end=today,
            user_currency=user_currency,
            gbp_usd_rate=gbp_usd_rate,
            price_series=price_series,
            live_prices=live_prices,
            quote_currencies=quote_currencies or {},
            cancel_token=cancel_token,
        )

    def _calculate_history_rolling(
            self,
            transactions: list[Any],
            accounts: list[Account],
            debts_total: Decimal,
            start: date,
            end: date,
            user_currency: str,
            gbp_usd_rate: Decimal,
            price_series: dict[str, dict[date, Decimal]],
            live_prices: dict[str, Decimal],
            quote_currencies: dict[str, str],
            cancel_token: CancellationToken | None,
    ) -> list[NetWorthPoint]:
        """
        Walk the days applying each transaction once.

        Args:
            transactions: ALL transactions, already sorted by date
        """
        points: list[NetWorthPoint] = []

        # Keyed by (account_id, symbol); only investment accounts are valued
        holdings_state: dict = {}
        cash_state = self._cash_calc.initial_state(accounts)
        account_types = {a.id: a.type for a in accounts}

        txn_index = 0
        num_txns = len(transactions)

        for target_date in date_range(start, end):
            raise_if_cancelled(cancel_token)

            # === PHASE 1: Apply all transactions up to and including target_date ===
            while txn_index < num_txns:
                txn = transactions[txn_index]
                if as_date(txn.date) > target_date:
                    break

                self._holdings_calc.apply_transaction(holdings_state, txn, by_account=True)
                self._cash_calc.apply_transaction(cash_state, txn)
                txn_index += 1

            # === PHASE 2: Snapshot ===
            points.append(self._snapshot_state(
                holdings_state=holdings_state,
                cash_state=cash_state,
                account_types=account_types,
                debts_total=debts_total,
                target_date=target_date,
                user_currency=user_currency,
                gbp_usd_rate=gbp_usd_rate,
                price_series=price_series,
                live_prices=live_prices,
                quote_currencies=quote_currencies,
            ))

        return points

    def _snapshot_state(
            self,
            holdings_state: dict[tuple[int | None, str], Holding],
            cash_state: dict[int, Decimal],
            account_types: dict[int, AccountType],
            debts_total: Decimal,
            target_date: date,
            user_currency: str,
            gbp_usd_rate: Decimal,
            price_series: dict[str, dict[date, Decimal]],
            live_prices: dict[str, Decimal],
            quote_currencies: dict[str, str],
    ) -> NetWorthPoint:
        """Value the rolling state on one day."""
        checking = ZERO
        savings = ZERO
        for account_id, balance in cash_state.items():
            if account_types.get(account_id) == AccountType.CHECKING:
                checking += balance
            else:
                savings += balance

        investing = ZERO
        for (account_id, symbol), holding in holdings_state.items():
            if holding.is_closed or account_types.get(account_id) != AccountType.INVESTMENT:
                continue

            resolved = self._resolver.resolve(
                symbol,
                target_date,
                price_series.get(symbol),
                live_prices.get(symbol),
            )
            if resolved.price is None:
                continue

            display_price = normalize_price(
                resolved.price,
                holding.currency or quote_currencies.get(symbol),
                user_currency,
                gbp_usd_rate,
            )
            investing += holding.quantity * display_price

        assets = checking + savings + investing

        return NetWorthPoint(
            date=target_date,
            net_worth=(assets - debts_total).quantize(CURRENCY_PRECISION),
            assets=assets.quantize(CURRENCY_PRECISION),
            debts=debts_total.quantize(CURRENCY_PRECISION),
            checking=checking.quantize(CURRENCY_PRECISION),
            savings=savings.quantize(CURRENCY_PRECISION),
            investing=investing.quantize(CURRENCY_PRECISION),
        )

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    @staticmethod
    def _resolve_days(days: int | HistoryRange | str) -> int:
        if isinstance(days, HistoryRange):
            return days.days
        if isinstance(days, str):
            return HistoryRange(days.upper()).days
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")
        return days

    @staticmethod
    def _stored_rate(db: Session) -> Decimal:
        row = repository.get_exchange_rate(db, GBP, USD)
        if row is None or row.rate is None or row.rate <= ZERO:
            return ZERO
        return Decimal(row.rate)

    def _fetch_live_quotes(self, symbols: list[str]) -> tuple[dict[str, Decimal], dict[str, str]]:
        """Native live prices and quote currencies; failed symbols are left out."""
        if self._provider is None or not symbols:
            return {}, {}

        batch = self._provider.get_current_quotes(symbols)
        live = {symbol: to_live_quote(quote) for symbol, quote in batch.successful.items()}
        return (
            {symbol: q.price for symbol, q in live.items()},
            {symbol: q.currency for symbol, q in live.items()},
        )
