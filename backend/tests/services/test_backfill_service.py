# backend/tests/services/test_backfill_service.py
"""
Tests for the PriceBackfillService.

This module tests:
- Chunking of long ranges
- Rate-limit retries with fixed waits
- Per-symbol failure isolation
- Row cleaning and idempotent upserts
- Gap detection against the ledger
- Cancellation
- Summary serialization
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from lithos.models import PriceHistoryCache
from lithos.schemas import BackfillSummaryResponse
from lithos.services import repository
from lithos.services.cancellation import CancellationToken
from lithos.services.exceptions import (
    PersistenceError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from lithos.services.market_data.backfill_service import (
    GapRequest,
    PriceBackfillService,
    clean_close,
    normalize_symbols,
)
from lithos.utils.date_utils import date_range
from tests.conftest import (
    USER_ID,
    RecordingSleep,
    create_cached_close,
    create_transaction,
    no_sleep,
)

START = date(2024, 1, 1)
END = date(2024, 1, 10)


def daily_closes(start: date, end: date, price: str = "100") -> dict[date, str]:
    return {d: price for d in date_range(start, end)}


def cached_row_count(db, symbol: str) -> int:
    return db.scalar(
        select(func.count(PriceHistoryCache.id)).where(PriceHistoryCache.symbol == symbol)
    )


@pytest.fixture
def service(mock_provider) -> PriceBackfillService:
    return PriceBackfillService(mock_provider, sleep=no_sleep)


# =============================================================================
# BASIC BACKFILL
# =============================================================================

class TestBackfill:
    """Tests for backfill()."""

    def test_stores_rows(self, db, service, mock_provider):
        mock_provider.set_closes("AAPL", daily_closes(START, END))

        summary = service.backfill(db, ["AAPL"], START, END)

        assert summary.to_dict() == {"AAPL": {"rows": 10}}
        assert cached_row_count(db, "AAPL") == 10

    def test_symbols_are_normalized(self, db, service, mock_provider):
        mock_provider.set_closes("AAPL", daily_closes(START, END))

        summary = service.backfill(db, [" aapl", "AAPL", ""], START, END)

        assert list(summary.results) == ["AAPL"]
        assert mock_provider.history_call_count == 1

    def test_default_range_is_two_years_to_today(self, db, service, mock_provider):
        service.backfill(db, ["AAPL"])

        calls = mock_provider.history_calls_for("AAPL")
        first_start = calls[0][1]
        last_end = calls[-1][2]
        assert last_end - first_start == timedelta(days=730)

    def test_invalid_range_reports_error_without_fetch(self, db, service, mock_provider):
        summary = service.backfill(db, ["AAPL"], END, START)

        assert summary.results["AAPL"].rows == 0
        assert "AAPL" in summary.failed_symbols
        assert mock_provider.history_call_count == 0

    def test_bad_closes_are_skipped_and_rounded(self, db, service, mock_provider):
        mock_provider.set_closes("AAPL", {
            date(2024, 1, 1): "100.1234567",
            date(2024, 1, 2): None,
            date(2024, 1, 3): "0",
            date(2024, 1, 4): "-5",
        })

        summary = service.backfill(db, ["AAPL"], START, END)

        assert summary.results["AAPL"].rows == 1
        assert repository.get_cached_close(db, "AAPL", date(2024, 1, 1)) == Decimal("100.123457")

    def test_rerun_overwrites_instead_of_duplicating(self, db, service, mock_provider):
        mock_provider.set_closes("AAPL", daily_closes(START, END, "100"))
        service.backfill(db, ["AAPL"], START, END)

        mock_provider.set_closes("AAPL", daily_closes(START, END, "101"))
        service.backfill(db, ["AAPL"], START, END)

        assert cached_row_count(db, "AAPL") == 10
        assert repository.get_cached_close(db, "AAPL", START) == Decimal("101")

    def test_small_batches(self, db, mock_provider):
        mock_provider.set_closes("AAPL", daily_closes(START, END))
        service = PriceBackfillService(mock_provider, sleep=no_sleep, batch_size=3)

        summary = service.backfill(db, ["AAPL"], START, END)

        assert summary.total_rows == 10
        assert cached_row_count(db, "AAPL") == 10


# =============================================================================
# CHUNKING & PACING
# =============================================================================

class TestChunking:
    """Tests for chunked requests."""

    def test_two_year_range_uses_chunks_of_at_most_a_year(self, db, service, mock_provider):
        start, end = date(2022, 1, 1), date(2023, 12, 31)

        service.backfill(db, ["AAPL"], start, end)

        calls = mock_provider.history_calls_for("AAPL")
        assert len(calls) == 2
        assert calls[0][1] == start
        assert calls[-1][2] == end
        for _, chunk_start, chunk_end in calls:
            assert (chunk_end - chunk_start).days < 365
        # Chronological, no gaps
        assert calls[1][1] == calls[0][2] + timedelta(days=1)

    def test_pacing_between_chunks_and_symbols(self, db, mock_provider):
        sleep = RecordingSleep()
        service = PriceBackfillService(
            mock_provider, sleep=sleep, chunk_days=5,
            chunk_delay_seconds=0.2, symbol_delay_seconds=0.5,
        )

        service.backfill(db, ["A", "B"], START, END)

        # A: 2 chunks, B: 2 chunks → one chunk pause each, one symbol pause
        assert sleep.calls == [0.2, 0.5, 0.2]


# =============================================================================
# RETRIES
# =============================================================================

class TestRateLimitRetry:
    """Rate-limited chunks are retried with a fixed wait."""

    def test_retried_exactly_three_times_with_fixed_waits(self, db, mock_provider):
        sleep = RecordingSleep()
        mock_provider.set_history_error("AAPL", RateLimitError(provider="mock"))
        service = PriceBackfillService(mock_provider, sleep=sleep, symbol_delay_seconds=0)

        summary = service.backfill(db, ["AAPL"], START, END)

        assert mock_provider.history_call_count == 3
        assert sleep.calls == [2.0, 2.0]
        assert "rate limit" in summary.results["AAPL"].error.lower()

    def test_recovers_after_transient_rate_limit(self, db, mock_provider):
        mock_provider.set_closes("AAPL", daily_closes(START, END))
        mock_provider.queue_history_errors("AAPL", RateLimitError(provider="mock"))
        service = PriceBackfillService(mock_provider, sleep=no_sleep)

        summary = service.backfill(db, ["AAPL"], START, END)

        assert summary.results["AAPL"].rows == 10
        assert summary.all_successful
        assert mock_provider.history_call_count == 2

    def test_other_errors_are_not_retried(self, db, service, mock_provider):
        mock_provider.set_history_error("AAPL", ProviderUnavailableError("mock", "boom"))

        summary = service.backfill(db, ["AAPL"], START, END)

        assert mock_provider.history_call_count == 1
        assert "boom" in summary.results["AAPL"].error


# =============================================================================
# FAILURE ISOLATION
# =============================================================================

class TestFailureIsolation:
    """One symbol failing never stops the others."""

    def test_failing_symbol_does_not_affect_next(self, db, service, mock_provider):
        mock_provider.set_history_error("A", TickerNotFoundError(ticker="A", provider="mock"))
        mock_provider.set_closes("B", daily_closes(START, END))

        summary = service.backfill(db, ["A", "B"], START, END)

        assert summary.results["A"].error is not None
        assert summary.results["B"].rows == 10
        assert summary.failed_symbols == ["A"]

    def test_persistence_error_is_recorded_per_symbol(self, db, service, mock_provider, monkeypatch):
        mock_provider.set_closes("A", daily_closes(START, END))
        mock_provider.set_closes("B", daily_closes(START, END))

        real_upsert = repository.upsert_price_rows

        def flaky_upsert(session, rows, batch_size=None):
            if rows and rows[0]["symbol"] == "A":
                raise PersistenceError("upsert_price_rows", "disk full")
            return real_upsert(session, rows, batch_size)

        monkeypatch.setattr(repository, "upsert_price_rows", flaky_upsert)

        summary = service.backfill(db, ["A", "B"], START, END)

        assert "disk full" in summary.results["A"].error
        assert summary.results["B"].rows == 10

    def test_unexpected_error_is_recorded(self, db, service, mock_provider):
        mock_provider.set_history_error("A", KeyError("surprise"))
        mock_provider.set_closes("B", daily_closes(START, END))

        summary = service.backfill(db, ["A", "B"], START, END)

        assert "surprise" in summary.results["A"].error
        assert summary.results["B"].rows == 10


# =============================================================================
# CANCELLATION
# =============================================================================

class TestCancellation:

    def test_cancelled_before_start(self, db, service, mock_provider):
        token = CancellationToken()
        token.cancel()

        summary = service.backfill(db, ["A", "B"], START, END, cancel_token=token)

        assert summary.to_dict() == {
            "A": {"rows": 0, "error": "cancelled"},
            "B": {"rows": 0, "error": "cancelled"},
        }
        assert mock_provider.history_call_count == 0

    def test_cancelled_between_chunks(self, db, mock_provider):
        token = CancellationToken()
        mock_provider.set_closes("A", daily_closes(START, END))

        def cancel_on_sleep(seconds):
            token.cancel()

        service = PriceBackfillService(mock_provider, sleep=cancel_on_sleep, chunk_days=5)
        summary = service.backfill(db, ["A", "B"], START, END, cancel_token=token)

        assert summary.results["A"].rows == 5
        assert summary.results["A"].error == "cancelled"
        assert summary.results["B"].error == "cancelled"
        assert mock_provider.history_call_count == 1


# =============================================================================
# GAP DETECTION
# =============================================================================

class TestGapDetection:
    """Tests for plan_gap_fetches() / backfill_missing()."""

    def test_no_cache_fetches_from_first_transaction_to_today(self, db, service):
        create_transaction(db, date(2024, 3, 1), "-100", symbol="AAPL", quantity="1")

        plan = service.plan_gap_fetches(db, USER_ID, today=date(2024, 6, 1))

        assert plan.requests == [GapRequest("AAPL", date(2024, 3, 1), date(2024, 6, 1))]

    def test_cache_starting_later_fetches_head_only(self, db, service):
        create_transaction(db, date(2024, 3, 1), "-100", symbol="AAPL", quantity="1")
        create_cached_close(db, "AAPL", date(2024, 4, 1), "100")

        plan = service.plan_gap_fetches(db, USER_ID, today=date(2024, 6, 1))

        assert plan.requests == [GapRequest("AAPL", date(2024, 3, 1), date(2024, 3, 31))]

    def test_covered_symbol_is_skipped(self, db, service):
        create_transaction(db, date(2024, 3, 1), "-100", symbol="AAPL", quantity="1")
        create_cached_close(db, "AAPL", date(2024, 2, 28), "100")

        plan = service.plan_gap_fetches(db, USER_ID)

        assert plan.is_empty
        assert plan.skipped == ["AAPL"]

    def test_earliest_transaction_per_symbol(self, db, service):
        create_transaction(db, date(2024, 3, 1), "-100", symbol="aapl", quantity="1")
        create_transaction(db, date(2024, 1, 15), "-100", symbol="AAPL", quantity="1")

        plan = service.plan_gap_fetches(db, USER_ID, today=date(2024, 6, 1))

        assert plan.requests[0].from_date == date(2024, 1, 15)

    def test_symbols_without_transactions_are_skipped(self, db, service):
        plan = service.plan_gap_fetches(db, USER_ID, symbols=["MSFT"])

        assert plan.skipped == ["MSFT"]

    def test_second_run_performs_no_fetches(self, db, service, mock_provider):
        today = date.today()
        first = today - timedelta(days=20)
        create_transaction(db, first, "-100", symbol="AAPL", quantity="1")
        mock_provider.set_closes("AAPL", daily_closes(first, today))

        plan, summary = service.backfill_missing(db, USER_ID)
        assert len(plan.requests) == 1
        assert summary.results["AAPL"].rows > 0
        calls_after_first = mock_provider.history_call_count

        plan, summary = service.backfill_missing(db, USER_ID)

        assert plan.is_empty
        assert summary.results == {}
        assert mock_provider.history_call_count == calls_after_first


# =============================================================================
# HELPERS & SERIALIZATION
# =============================================================================

class TestHelpers:

    def test_normalize_symbols(self):
        assert normalize_symbols([" aapl", "MSFT", "AAPL", "", None]) == ["AAPL", "MSFT"]

    @pytest.mark.parametrize("value,expected", [
        (None, None),
        (float("nan"), None),
        (Decimal("NaN"), None),
        (float("inf"), None),
        (0, None),
        (-1, None),
        ("abc", None),
        (Decimal("12.3456789"), Decimal("12.345679")),
        (12.5, Decimal("12.500000")),
    ])
    def test_clean_close(self, value, expected):
        assert clean_close(value) == expected

    def test_summary_schema(self, db, service, mock_provider):
        mock_provider.set_closes("B", daily_closes(START, END))
        mock_provider.set_history_error("A", ProviderUnavailableError("mock", "down"))

        summary = service.backfill(db, ["A", "B"], START, END)
        response = BackfillSummaryResponse.from_summary(summary).to_json_dict()

        assert response["B"] == {"rows": 10}
        assert response["A"]["rows"] == 0
        assert "down" in response["A"]["error"]
