# backend/tests/services/test_calculators.py
"""
Tests for the point-in-time calculators.

This module tests:
- Investing transaction classification
- Holdings aggregation (buys, sells, fees, reinvestments)
- Closed positions and malformed rows
- Rolling-state application
- Cash balances
- Profit figures

Calculators work on any object with the ledger attributes, so most tests
use lightweight SimpleNamespace rows instead of the database.
"""

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from lithos.models import AccountType, TransactionType
from lithos.services.valuation.calculators import (
    CashCalculator,
    HoldingsCalculator,
    classify_investing,
    profit_percent,
    profit_value,
)
from lithos.services.valuation.types import InvestingKind


def make_txn(
        quantity: str | None,
        amount: str,
        symbol: str | None = "AAPL",
        category: str = "Buy",
        on: date = date(2024, 1, 1),
        type: TransactionType = TransactionType.INVESTING,
        account_id: int | None = 1,
        currency: str | None = None,
):
    return SimpleNamespace(
        id=None,
        date=datetime(on.year, on.month, on.day),
        type=type,
        category=category,
        symbol=symbol,
        quantity=Decimal(quantity) if quantity is not None else None,
        amount=Decimal(amount),
        account_id=account_id,
        currency=currency,
    )


@pytest.fixture
def calc() -> HoldingsCalculator:
    return HoldingsCalculator()


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassifyInvesting:
    """Tests for classify_investing()."""

    @pytest.mark.parametrize("category,quantity,expected", [
        ("Buy", "10", InvestingKind.BUY),
        ("Fee", "0", InvestingKind.FEE),
        ("fee", None, InvestingKind.FEE),
        ("Sell", "-4", InvestingKind.SELL),
        ("Sell", "4", InvestingKind.SELL),
        ("Transfer In", "-2", InvestingKind.SELL),
        ("Dividend", "0.5", InvestingKind.DIVIDEND_REINVEST),
        ("Reinvest", "1", InvestingKind.DIVIDEND_REINVEST),
        ("Other", "3", InvestingKind.BUY),
    ])
    def test_classification(self, category, quantity, expected):
        assert classify_investing(make_txn(quantity, "10", category=category)) == expected


# =============================================================================
# HOLDINGS AGGREGATION
# =============================================================================

class TestHoldingsCalculator:
    """Tests for HoldingsCalculator.calculate()."""

    def test_buy_only_average_and_profit(self, calc):
        """avg = cost / quantity; profit = value - cost."""
        result = calc.calculate([
            make_txn("4", "-400"),
            make_txn("6", "-800", on=date(2024, 1, 2)),
        ])

        holding = result.active[0]
        assert holding.quantity == Decimal("10")
        assert holding.total_cost == Decimal("1200")
        assert holding.avg_price == Decimal("120")

        value = holding.quantity * Decimal("150")
        assert profit_value(value, holding.total_cost) == Decimal("300")

    def test_buy_then_partial_sell(self, calc):
        """Buy 10 for 1000, sell 4: buy figures unchanged, quantity 6."""
        result = calc.calculate([
            make_txn("10", "-1000"),
            make_txn("-4", "480", category="Sell", on=date(2024, 2, 1)),
        ])

        holding = result.active[0]
        assert holding.buy_qty == Decimal("10")
        assert holding.buy_total_cost == Decimal("1000")
        assert holding.avg_price == Decimal("100")
        assert holding.quantity == Decimal("6")
        assert holding.total_cost == Decimal("1000")
        assert holding.avg_cost_basis == Decimal("600")

    def test_fee_adds_to_cost_not_quantity(self, calc):
        result = calc.calculate([
            make_txn("10", "-1000"),
            make_txn("0", "-5", category="Fee"),
        ])

        holding = result.active[0]
        assert holding.quantity == Decimal("10")
        assert holding.fee_cost == Decimal("5")
        assert holding.total_cost == Decimal("1005")
        assert holding.buy_total_cost == Decimal("1000")

    def test_dividend_reinvest_counts_as_buy(self, calc):
        result = calc.calculate([
            make_txn("10", "-1000"),
            make_txn("0.5", "-50", category="Dividend"),
        ])

        holding = result.active[0]
        assert holding.quantity == Decimal("10.5")
        assert holding.buy_qty == Decimal("10.5")
        assert holding.buy_total_cost == Decimal("1050")

    def test_fractional_sells_close_position(self, calc):
        """0.1 + 0.1 + 0.1 - 0.3 is closed despite float residue."""
        result = calc.calculate([
            make_txn("0.1", "-10"),
            make_txn("0.1", "-10"),
            make_txn("0.1", "-10"),
            make_txn("-0.3000000001", "33", category="Sell"),
        ])

        assert result.active == []
        assert len(result.closed) == 1
        assert result.closed[0].is_closed

    def test_oversold_position_is_closed(self, calc):
        """Buy 5 then sell 7: quantity -2 is closed and the basis stops at 0."""
        result = calc.calculate([
            make_txn("5", "-500"),
            make_txn("-7", "700", category="Sell", on=date(2024, 2, 1)),
        ])

        assert result.active == []
        holding = result.closed[0]
        assert holding.quantity == Decimal("-2")
        assert holding.avg_cost_basis == Decimal("0")

    def test_malformed_rows_are_skipped_and_counted(self, calc):
        result = calc.calculate([
            make_txn("10", "-1000"),
            make_txn("5", "-500", symbol=None),
            make_txn(None, "-500"),
            make_txn("0", "-500"),
            make_txn("1", "-100", symbol="   "),
        ])

        assert result.skipped == 4
        assert len(result.active) == 1
        assert result.active[0].quantity == Decimal("10")

    def test_non_investing_rows_are_ignored(self, calc):
        result = calc.calculate([
            make_txn("10", "-1000"),
            make_txn(None, "2500", symbol=None, type=TransactionType.INCOME),
        ])

        assert result.skipped == 0
        assert len(result.active) == 1

    def test_symbol_is_case_insensitive(self, calc):
        result = calc.calculate([
            make_txn("1", "-100", symbol="aapl"),
            make_txn("2", "-200", symbol=" AAPL "),
        ])

        assert len(result.active) == 1
        assert result.active[0].symbol == "AAPL"
        assert result.active[0].quantity == Decimal("3")

    def test_currency_last_write_wins_and_blank_does_not_overwrite(self, calc):
        result = calc.calculate([
            make_txn("1", "-100", currency="USD"),
            make_txn("1", "-100", currency="gbx", on=date(2024, 1, 2)),
            make_txn("1", "-100", currency=None, on=date(2024, 1, 3)),
        ])

        assert result.active[0].currency == "GBX"

    def test_filters(self, calc):
        txns = [
            make_txn("10", "-1000", account_id=1),
            make_txn("5", "-500", account_id=2),
            make_txn("3", "-300", symbol="MSFT", account_id=1),
            make_txn("2", "-200", account_id=1, on=date(2024, 6, 1)),
        ]

        by_account = calc.calculate(txns, account_id=1)
        assert {h.symbol for h in by_account.active} == {"AAPL", "MSFT"}

        by_symbol = calc.calculate(txns, symbol="msft")
        assert [h.symbol for h in by_symbol.active] == ["MSFT"]

        as_of = calc.calculate(txns, symbol="AAPL", as_of=date(2024, 3, 1))
        assert as_of.active[0].quantity == Decimal("15")

    def test_by_account_groups_per_account(self, calc):
        result = calc.calculate(
            [make_txn("10", "-1000", account_id=1), make_txn("5", "-500", account_id=2)],
            by_account=True,
        )

        quantities = {h.account_id: h.quantity for h in result.active}
        assert quantities == {1: Decimal("10"), 2: Decimal("5")}

    def test_empty_ledger(self, calc):
        result = calc.calculate([])
        assert result.active == []
        assert result.closed == []
        assert result.skipped == 0


# =============================================================================
# ROLLING STATE
# =============================================================================

class TestRollingState:
    """Tests for apply_transaction() / state_to_holdings()."""

    def test_incremental_matches_batch(self, calc):
        txns = [
            make_txn("10", "-1000"),
            make_txn("-4", "480", category="Sell"),
            make_txn("0", "-5", category="Fee"),
        ]

        state = {}
        for txn in txns:
            calc.apply_transaction(state, txn)

        incremental = calc.state_to_holdings(state).active[0]
        batch = calc.calculate(txns).active[0]
        assert incremental == batch

    def test_invalid_row_returns_false(self, calc):
        state = {}
        assert calc.apply_transaction(state, make_txn(None, "-100")) is False
        assert state == {}

    def test_sell_of_unheld_symbol_leaves_basis_alone(self, calc):
        state = {}
        calc.apply_transaction(state, make_txn("-2", "200", category="Sell"))

        holding = state["AAPL"]
        assert holding.quantity == Decimal("-2")
        assert holding.avg_cost_basis == Decimal("0")
        assert calc.state_to_holdings(state).active == []

    def test_buy_after_oversell_starts_fresh_basis(self, calc):
        state = {}
        calc.apply_transaction(state, make_txn("5", "-500"))
        calc.apply_transaction(state, make_txn("-7", "700", category="Sell"))
        calc.apply_transaction(state, make_txn("4", "-440"))

        holding = state["AAPL"]
        assert holding.quantity == Decimal("2")
        assert holding.avg_cost_basis == Decimal("440")
        assert not holding.is_closed


# =============================================================================
# CASH
# =============================================================================

class TestCashCalculator:
    """Tests for CashCalculator."""

    def _accounts(self):
        return [
            SimpleNamespace(id=1, type=AccountType.CHECKING, starting_value=Decimal("1000")),
            SimpleNamespace(id=2, type=AccountType.SAVINGS, starting_value=Decimal("500")),
            SimpleNamespace(id=3, type=AccountType.INVESTMENT, starting_value=Decimal("0")),
        ]

    def test_balances_add_non_investing_amounts(self):
        txns = [
            make_txn(None, "-200", symbol=None, type=TransactionType.EXPENSE, account_id=1),
            make_txn(None, "50", symbol=None, type=TransactionType.INCOME, account_id=2),
            make_txn("1", "-100", account_id=1),
        ]

        balances = CashCalculator().calculate(self._accounts(), txns)

        assert balances == {1: Decimal("800"), 2: Decimal("550")}

    def test_as_of_excludes_later_rows(self):
        txns = [
            make_txn(None, "-200", symbol=None, type=TransactionType.EXPENSE,
                     account_id=1, on=date(2024, 5, 1)),
        ]

        balances = CashCalculator().calculate(self._accounts(), txns, as_of=date(2024, 4, 30))

        assert balances[1] == Decimal("1000")

    def test_rows_without_cash_account_are_ignored(self):
        txns = [
            make_txn(None, "-75", symbol=None, type=TransactionType.DEBT_PAYMENT, account_id=None),
        ]

        balances = CashCalculator().calculate(self._accounts(), txns)

        assert balances == {1: Decimal("1000"), 2: Decimal("500")}


# =============================================================================
# PROFIT
# =============================================================================

class TestProfit:
    """Tests for profit_value() / profit_percent()."""

    def test_profit_percent(self):
        assert profit_percent(Decimal("1500"), Decimal("1000")) == Decimal("50")

    def test_profit_percent_without_cost_is_zero(self):
        assert profit_percent(Decimal("1500"), Decimal("0")) == Decimal("0")

    def test_profit_value_can_be_negative(self):
        assert profit_value(Decimal("800"), Decimal("1000")) == Decimal("-200")
