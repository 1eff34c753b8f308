# backend/lithos/utils/date_utils.py
"""
Date helpers shared by the valuation and market data services.

Usage:
    from lithos.utils.date_utils import date_range, chunk_date_range

    for chunk_start, chunk_end in chunk_date_range(start, end, 365):
        ...
"""

from datetime import date, datetime, time, timedelta, timezone


def as_date(value: date | datetime) -> date:
    """
    Reduce a datetime to its calendar date; dates pass through unchanged.

    Ledger rows are stored as DateTime while price rows are daily, so every
    comparison between the two goes through this.
    """
    if isinstance(value, datetime):
        return value.date()
    return value


def date_range(start_date: date, end_date: date) -> list[date]:
    """
    Every calendar day from start_date to end_date inclusive.

    Returns an empty list when start_date > end_date.
    """
    days = []
    current = start_date
    while current <= end_date:
        days.append(current)
        current += timedelta(days=1)
    return days


def chunk_date_range(start_date: date, end_date: date, max_days: int) -> list[tuple[date, date]]:
    """
    Split an inclusive date range into consecutive chunks.

    Each chunk spans at most max_days calendar days and chunks are returned
    in chronological order with no gaps or overlaps.

    Example:
        >>> chunk_date_range(date(2024, 1, 1), date(2024, 1, 10), 4)
        [(date(2024, 1, 1), date(2024, 1, 4)),
         (date(2024, 1, 5), date(2024, 1, 8)),
         (date(2024, 1, 9), date(2024, 1, 10))]
    """
    if max_days < 1:
        raise ValueError(f"max_days must be positive, got {max_days}")

    chunks = []
    current = start_date
    while current <= end_date:
        chunk_end = min(current + timedelta(days=max_days - 1), end_date)
        chunks.append((current, chunk_end))
        current = chunk_end + timedelta(days=1)
    return chunks


def to_unix(d: date) -> int:
    """Seconds since the epoch at UTC midnight of the given day."""
    return int(datetime.combine(d, time.min, tzinfo=timezone.utc).timestamp())


def from_unix(ts: int) -> date:
    """UTC calendar date of a unix timestamp."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


def utc_today() -> date:
    return datetime.now(timezone.utc).date()
