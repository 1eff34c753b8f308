# backend/lithos/services/valuation/calculators.py
"""
Point-in-time calculators.

- HoldingsCalculator: Aggregates investing transactions into holdings
- CashCalculator: Balances of checking and savings accounts
- profit_value / profit_percent: Return on the total-cost basis

Design Principles:
- Stateless (no instance state, pure functions over their inputs)
- Malformed ledger rows are counted and skipped, never raised
- Uses Decimal for ALL financial calculations

Usage:
    calc = HoldingsCalculator()
    result = calc.calculate(transactions, account_id=3)
    for holding in result.active:
        print(holding.symbol, holding.quantity, holding.avg_price)
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from lithos.models import Account, AccountType, TransactionType
from lithos.services.constants import (
    CATEGORY_FEE,
    CATEGORY_SELL,
    HUNDRED,
    REINVEST_CATEGORIES,
    ZERO,
)
from lithos.services.valuation.types import Holding, HoldingsResult, InvestingKind
from lithos.utils.date_utils import as_date

logger = logging.getLogger(__name__)

# Holdings state key: symbol, or (account_id, symbol) when grouped per account
StateKey = str | tuple[int | None, str]


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _is_type(txn: Any, txn_type: TransactionType) -> bool:
    # str enum: also matches the raw value on plain objects
    return getattr(txn, "type", None) == txn_type


# =============================================================================
# CLASSIFICATION
# =============================================================================

def classify_investing(txn: Any) -> InvestingKind:
    """
    Classify an investing transaction.

    Fee category → FEE; Sell category or negative quantity → SELL;
    dividend/reinvest category with positive quantity → DIVIDEND_REINVEST;
    anything else → BUY.
    """
    category = (getattr(txn, "category", None) or "").strip().lower()
    quantity = _dec(getattr(txn, "quantity", None))

    if category == CATEGORY_FEE:
        return InvestingKind.FEE
    if category == CATEGORY_SELL or quantity < ZERO:
        return InvestingKind.SELL
    if category in REINVEST_CATEGORIES and quantity > ZERO:
        return InvestingKind.DIVIDEND_REINVEST
    return InvestingKind.BUY


def normalize_symbol(symbol: str | None) -> str | None:
    if symbol is None:
        return None
    symbol = symbol.strip().upper()
    return symbol or None


# =============================================================================
# HOLDINGS CALCULATOR
# =============================================================================

class HoldingsCalculator:
    """
    Aggregates investing transactions into per-symbol holdings.

    Rules per kind (amounts taken as absolute values):
        BUY / DIVIDEND_REINVEST: quantity += q; total_cost += a;
                                 buy_qty += q; buy_total_cost += a;
                                 avg_cost_basis += a
        SELL: quantity += q (negative); avg_cost_basis reduced in
              proportion to the quantity sold, 0 once nothing is held
        FEE:  fee_cost += a; total_cost += a; quantity += q (normally 0)

    Supports the rolling state pattern: apply_transaction() mutates a state
    dict one row at a time and state_to_holdings() snapshots it, which lets
    the history calculator replay the ledger once in O(N + D).
    """

    def calculate(
            self,
            transactions: Iterable[Any],
            account_id: int | None = None,
            symbol: str | None = None,
            as_of: date | None = None,
            by_account: bool = False,
    ) -> HoldingsResult:
        """
        Calculate holdings from transactions.

        Args:
            transactions: Ledger rows (any type; non-investing rows are ignored)
            account_id: Only rows of this account
            symbol: Only rows of this symbol (case-insensitive)
            as_of: Only rows dated on or before this day
            by_account: Group by (account_id, symbol) instead of symbol

        Returns:
            HoldingsResult with active and closed holdings and a skipped count
        """
        wanted_symbol = normalize_symbol(symbol)
        state: dict[StateKey, Holding] = {}
        skipped = 0

        for txn in sorted(transactions, key=lambda t: as_date(t.date)):
            if not _is_type(txn, TransactionType.INVESTING):
                continue
            if account_id is not None and txn.account_id != account_id:
                continue
            if as_of is not None and as_date(txn.date) > as_of:
                continue
            if wanted_symbol is not None and normalize_symbol(txn.symbol) != wanted_symbol:
                continue

            if not self.apply_transaction(state, txn, by_account=by_account):
                skipped += 1

        if skipped:
            logger.debug(f"Skipped {skipped} malformed investing transactions")

        result = self.state_to_holdings(state)
        result.skipped = skipped
        return result

    @staticmethod
    def is_valid_investing(txn: Any) -> bool:
        """
        True if an investing row can be aggregated.

        Requires a symbol and a non-zero quantity; fee rows may carry a zero
        or missing quantity.
        """
        if normalize_symbol(getattr(txn, "symbol", None)) is None:
            return False
        if classify_investing(txn) == InvestingKind.FEE:
            return True
        quantity = getattr(txn, "quantity", None)
        return quantity is not None and _dec(quantity) != ZERO

    def apply_transaction(
            self,
            holdings_state: dict[StateKey, Holding],
            transaction: Any,
            by_account: bool = False,
    ) -> bool:
        """
        Apply a single investing transaction to holdings state (mutates it).

        Returns:
            False if the row is not a valid investing row and was skipped
        """
        if not _is_type(transaction, TransactionType.INVESTING):
            return False
        if not self.is_valid_investing(transaction):
            return False

        symbol = normalize_symbol(transaction.symbol)
        key: StateKey = (transaction.account_id, symbol) if by_account else symbol

        holding = holdings_state.get(key)
        if holding is None:
            holding = Holding(
                symbol=symbol,
                account_id=transaction.account_id if by_account else None,
            )
            holdings_state[key] = holding

        kind = classify_investing(transaction)
        quantity = _dec(transaction.quantity)
        amount = abs(_dec(transaction.amount))

        if kind == InvestingKind.FEE:
            holding.fee_cost += amount
            holding.total_cost += amount
            holding.quantity += quantity

        elif kind == InvestingKind.SELL:
            quantity_before = holding.quantity
            # Sell rows are signed negative; tolerate positive quantities on "Sell" rows
            sold = abs(quantity)
            if quantity_before > ZERO:
                written_down = min(sold, quantity_before)
                holding.avg_cost_basis -= written_down * (holding.avg_cost_basis / quantity_before)
            holding.quantity -= sold
            if holding.quantity <= ZERO:
                holding.avg_cost_basis = ZERO

        else:
            holding.quantity += quantity
            holding.total_cost += amount
            holding.buy_qty += quantity
            holding.buy_total_cost += amount
            holding.avg_cost_basis += amount

        currency = getattr(transaction, "currency", None)
        if currency:
            holding.currency = currency.strip().upper()

        return True

    @staticmethod
    def state_to_holdings(holdings_state: dict[StateKey, Holding]) -> HoldingsResult:
        """Split a state snapshot into active and closed holdings."""
        result = HoldingsResult()
        for holding in holdings_state.values():
            if holding.is_closed:
                result.closed.append(holding)
            else:
                result.active.append(holding)
        return result


# =============================================================================
# CASH CALCULATOR
# =============================================================================

class CashCalculator:
    """
    Balances of checking and savings accounts.

    balance = starting_value + Σ amount of the account's non-investing
    transactions dated on or before as_of.
    """

    CASH_ACCOUNT_TYPES = (AccountType.CHECKING, AccountType.SAVINGS)

    def is_cash_account(self, account: Account) -> bool:
        return account.type in self.CASH_ACCOUNT_TYPES

    def initial_state(self, accounts: Iterable[Account]) -> dict[int, Decimal]:
        """Starting balances keyed by account id, cash accounts only."""
        return {
            account.id: _dec(account.starting_value)
            for account in accounts
            if self.is_cash_account(account)
        }

    @staticmethod
    def apply_transaction(cash_state: dict[int, Decimal], transaction: Any) -> None:
        """Add a non-investing transaction to its account's balance (mutates cash_state)."""
        if _is_type(transaction, TransactionType.INVESTING):
            return
        if transaction.account_id not in cash_state:
            return
        cash_state[transaction.account_id] += _dec(transaction.amount)

    def calculate(
            self,
            accounts: Iterable[Account],
            transactions: Iterable[Any],
            as_of: date | datetime | None = None,
    ) -> dict[int, Decimal]:
        cash_state = self.initial_state(accounts)
        cutoff = as_date(as_of) if as_of is not None else None

        for txn in transactions:
            if cutoff is not None and as_date(txn.date) > cutoff:
                continue
            self.apply_transaction(cash_state, txn)

        return cash_state


# =============================================================================
# PROFIT
# =============================================================================

def profit_value(current_value: Decimal, total_cost: Decimal) -> Decimal:
    return current_value - total_cost


def profit_percent(current_value: Decimal, total_cost: Decimal) -> Decimal:
    """Profit as a percentage of total cost (0 when there is no cost)."""
    if total_cost <= ZERO:
        return ZERO
    return (current_value - total_cost) / total_cost * HUNDRED
