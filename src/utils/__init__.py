"""Utility modules."""

from .context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    generate_correlation_id,
    correlation_scope,
    correlation_id_var,
)
from .clock import utc_now, ensure_utc
from .locks import KeyedLocks

__all__ = [
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "generate_correlation_id",
    "correlation_scope",
    "correlation_id_var",
    "utc_now",
    "ensure_utc",
    "KeyedLocks",
]
