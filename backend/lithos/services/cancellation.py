# backend/lithos/services/cancellation.py
"""
Cooperative cancellation for long-running jobs.

A caller hands a CancellationToken to a backfill or history run and may
cancel it from another thread. The job checks the token at safe points
(between chunks, between symbols, once per reconstructed day) and stops
there; nothing is interrupted mid-write.
"""

import threading

from lithos.services.exceptions import OperationCancelled


class CancellationToken:
    """threading.Event-backed cancel flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()


def raise_if_cancelled(token: CancellationToken | None) -> None:
    """No-op for a missing token."""
    if token is not None:
        token.raise_if_cancelled()
