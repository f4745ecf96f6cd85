"""
Correlation of work items across threads and Celery tasks.

A dispatch started by an API call, continued by a worker and observed
through relayed events shares one correlation id. Business identifiers
(tenant, delivery, courier) are never stored here; they travel as
explicit arguments.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)

correlation_id_var: ContextVar[Optional[str]] = ContextVar("dispatch_correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Bind ``correlation_id`` to the current context. Empty ids are ignored."""
    if not correlation_id:
        logger.warning("Ignoring empty correlation id")
        return
    correlation_id_var.set(correlation_id)


def generate_correlation_id() -> str:
    """Bind and return a fresh correlation id."""
    correlation_id = uuid4().hex
    correlation_id_var.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """
    Run a block under ``correlation_id`` and restore the previous one on exit.

    A new id is generated when none is given, so every task execution is
    traceable even if its producer did not send one.

    Example:
        >>> with correlation_scope("abc") as cid:
        ...     dispatcher.dispatch(delivery_id, tenant_id)
    """
    scoped = correlation_id or uuid4().hex
    token = correlation_id_var.set(scoped)
    try:
        yield scoped
    finally:
        correlation_id_var.reset(token)
