# backend/lithos/utils/__init__.py
"""
Utility modules for Lithos.

This package contains cross-cutting utilities used throughout the library:
- logging: Logging configuration with correlation ID support
- context: Run context (correlation ids for backfill and refresh jobs)
- date_utils: Calendar helpers (day ranges, chunking, unix conversion)

Usage:
    from lithos.utils import setup_logging
    from lithos.utils import correlation_scope, get_correlation_id
    from lithos.utils.date_utils import chunk_date_range
"""

from lithos.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_scope,
    new_run_id,
)
from lithos.utils.logging import setup_logging

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
    "new_run_id",
]
