from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Protocol, TypeVar

from .errors import UpstreamTimeout

T = TypeVar("T")


class Clock(Protocol):
    """Time source used for deadlines, TTLs and backoff sleeps."""

    def now(self) -> float:
        """Monotonic seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


SYSTEM_CLOCK = SystemClock()


def elapsed_ms(clock: Clock, started: float) -> int:
    return max(0, int(round((clock.now() - started) * 1000)))


def _consume_outcome(task: asyncio.Task) -> None:
    # Detached tasks still need their exception retrieved to keep asyncio quiet.
    if not task.cancelled():
        task.exception()


async def race_deadline(
    task: asyncio.Task[T],
    timeout_ms: float,
    clock: Clock,
) -> bool:
    """Wait for ``task`` or for the deadline, whichever settles first.

    Returns ``True`` when the task finished in time. The task is never
    cancelled here: on a timeout the caller decides whether to detach it.
    """
    timer = asyncio.ensure_future(clock.sleep(timeout_ms / 1000.0))
    try:
        done, _ = await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not timer.done():
            timer.cancel()
    return task in done


async def with_deadline(
    awaitable: Awaitable[T],
    timeout_ms: float,
    clock: Clock = SYSTEM_CLOCK,
    label: str = "operation",
) -> T:
    """Await ``awaitable`` but give up after ``timeout_ms``.

    On timeout the pending work is cancelled (best effort) and
    :class:`UpstreamTimeout` is raised.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        finished = await race_deadline(task, timeout_ms, clock)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if not finished:
        task.cancel()
        task.add_done_callback(_consume_outcome)
        raise UpstreamTimeout(label, timeout_ms)
    return task.result()
