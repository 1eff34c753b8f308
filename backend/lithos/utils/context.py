# backend/lithos/utils/context.py
"""
Run context for log correlation.

Backfill runs and rate refreshes are batch jobs rather than requests, so
each job tags itself with a correlation id (a "run id") that every log
line emitted during the job carries.

Uses contextvars so the id is isolated per thread and per async task.

Usage:
    from lithos.utils.context import correlation_scope

    with correlation_scope("backfill"):
        ...  # every log line here shows the generated run id
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """Return the active correlation id, or None outside a run."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def new_run_id(prefix: str) -> str:
    """
    Build a short run id such as ``backfill-3f2a9c1d``.

    Args:
        prefix: Job name

    Returns:
        Prefix plus the first 8 hex digits of a uuid4
    """
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def correlation_scope(prefix: str) -> Iterator[str]:
    """
    Tag a block of work with a run id.

    An id already set by the caller is kept, so nested jobs (a price-history
    read that triggers a backfill) log under the outer id.
    """
    existing = get_correlation_id()
    if existing is not None:
        yield existing
        return

    token = _correlation_id_var.set(new_run_id(prefix))
    try:
        yield _correlation_id_var.get()
    finally:
        _correlation_id_var.reset(token)
