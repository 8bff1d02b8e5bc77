"""Bounded retries and time limits for calls to external collaborators."""

import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, TypeVar

from booking_engine.config import PaymentConfig, settings
from booking_engine.errors import ServiceUnavailable, Timeout

logger = logging.getLogger(__name__)

R = TypeVar("R")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (Timeout, ServiceUnavailable)

_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="collaborator")


def backoff_delays(
    attempts: int, base_delay: float, max_delay: float, multiplier: float
) -> list[float]:
    """Delays slept between attempts: base, base*m, base*m^2 ... capped.

    Examples:
        >>> backoff_delays(4, 0.5, 1.5, 2.0)
        [0.5, 1.0, 1.5]
    """
    return [min(base_delay * multiplier ** i, max_delay) for i in range(attempts - 1)]


def with_retry(
    operation: Callable[[], R],
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    multiplier: Optional[float] = None,
    retry_on: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
    config: Optional[PaymentConfig] = None,
) -> R:
    """
    Run ``operation`` until it succeeds or the attempt budget is spent.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    at once. The operation must be idempotent (same idempotency key, same
    booking id) since an attempt that timed out may still have landed.
    """
    config = config or settings.payment
    delays = backoff_delays(
        attempts or config.retry_attempts,
        config.retry_base_delay_sec if base_delay is None else base_delay,
        config.retry_max_delay_sec if max_delay is None else max_delay,
        config.retry_multiplier if multiplier is None else multiplier,
    )
    for attempt, delay in enumerate(delays, start=1):
        try:
            return operation()
        except retry_on as e:
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                description, attempt, len(delays) + 1, delay, e,
            )
            sleep(delay)
    return operation()


def call_with_timeout(
    fn: Callable[..., R], timeout: Optional[float], what: str, *args: Any, **kwargs: Any
) -> R:
    """
    Run a collaborator call with an upper time bound.

    Raises:
        Timeout: The call did not finish within ``timeout`` seconds. The
            worker is not interrupted; callers rely on idempotency keys.
    """
    limit = settings.payment.timeout_sec if timeout is None else timeout
    ctx = contextvars.copy_context()
    future = _executor.submit(ctx.run, fn, *args, **kwargs)
    try:
        return future.result(timeout=limit)
    except FutureTimeout:
        logger.error("%s exceeded %.1fs", what, limit)
        raise Timeout(f"{what} timed out after {limit:.0f}s", operation=what) from None
