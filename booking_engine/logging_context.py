"""Correlation ID logging context for tracing one booking attempt across modules.

Provides an attempt_id-aware logger that attaches a correlation ID to every
log message, making it easy to follow a single checkout from hold to
payment to confirmation (and into a reconciliation record when it fails).

The ID is scoped: each orchestrator step enters ``attempt_scope`` and the
previous value comes back when the step returns or raises, so a worker
thread that serves many checkouts never tags one attempt's lines with
another's ID. ``call_with_timeout`` copies the context into its worker.

Usage:
    from booking_engine.logging_context import attempt_scope, get_attempt_logger

    logger = get_attempt_logger(__name__)
    with attempt_scope("ATT-3f9c2a"):
        logger.info("Holding slot")  # record.attempt_id == "ATT-3f9c2a"
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

NO_ATTEMPT = "NO_ATTEMPT_ID"

_attempt_id: ContextVar[str] = ContextVar("attempt_id", default=NO_ATTEMPT)


@contextmanager
def attempt_scope(attempt_id: str) -> Iterator[str]:
    """Tag log records with ``attempt_id`` until the block exits."""
    token = _attempt_id.set(attempt_id)
    try:
        yield attempt_id
    finally:
        _attempt_id.reset(token)


def get_attempt_id() -> str:
    """Retrieve the current correlation ID."""
    return _attempt_id.get()


class AttemptIdFilter(logging.Filter):
    """Injects attempt_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.attempt_id = _attempt_id.get()  # type: ignore[attr-defined]
        return True


def get_attempt_logger(name: str) -> logging.Logger:
    """Return a logger with the AttemptIdFilter attached.

    The filter adds ``attempt_id`` to each record so formatters can
    include ``%(attempt_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, AttemptIdFilter) for f in logger.filters):
        logger.addFilter(AttemptIdFilter())
    return logger
