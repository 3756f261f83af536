"""
Retry with exponential backoff for flaky upstream calls.

Each attempt may be bounded by its own timeout. Between attempts the
wrapper sleeps ``base_delay_ms * 2 ** (attempt - 1)`` on the injected clock,
so tests can record the schedule without waiting for it.
"""
from __future__ import annotations

import functools
import logging
from typing import Awaitable, Callable, TypeVar

from .errors import ConfigurationError
from .timing import SYSTEM_CLOCK, Clock, with_deadline

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_ATTEMPTS = 1
MAX_ATTEMPTS = 5


def backoff_delay_ms(attempt: int, base_delay_ms: float) -> float:
    """Delay to wait after failed attempt number ``attempt`` (1-based)."""
    return base_delay_ms * 2 ** (attempt - 1)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: float = 100.0,
    *,
    attempt_timeout_ms: float | None = None,
    clock: Clock = SYSTEM_CLOCK,
    label: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is exhausted.

    The last failure is re-raised unchanged once every attempt has failed.
    """
    if not MIN_ATTEMPTS <= max_attempts <= MAX_ATTEMPTS:
        raise ConfigurationError(
            f"max_attempts must be within [{MIN_ATTEMPTS}, {MAX_ATTEMPTS}], got {max_attempts}"
        )
    if base_delay_ms < 0:
        raise ConfigurationError("base_delay_ms must not be negative")

    attempt = 1
    while True:
        try:
            if attempt_timeout_ms is None:
                return await operation()
            return await with_deadline(operation(), attempt_timeout_ms, clock, label)
        except Exception as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "%s failed after %d attempt(s): %s", label, attempt, exc,
                    extra={"label": label, "attempts": attempt},
                )
                raise
            delay = backoff_delay_ms(attempt, base_delay_ms)
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.0f ms: %s",
                label, attempt, max_attempts, delay, exc,
                extra={"label": label, "attempt": attempt, "delay_ms": delay},
            )
            await clock.sleep(delay / 1000.0)
            attempt += 1


def retrying(
    max_attempts: int = 3,
    base_delay_ms: float = 100.0,
    *,
    attempt_timeout_ms: float | None = None,
    clock: Clock = SYSTEM_CLOCK,
):
    """Decorator form of :func:`with_retry` for async functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await with_retry(
                lambda: func(*args, **kwargs),
                max_attempts,
                base_delay_ms,
                attempt_timeout_ms=attempt_timeout_ms,
                clock=clock,
                label=func.__name__,
            )

        return wrapper

    return decorator
