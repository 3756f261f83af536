from __future__ import annotations

import asyncio
import time

import pytest

from bowl_recs.recommendations.config import EngineConfig
from bowl_recs.recommendations.errors import UpstreamFailure


class FakeClock:
    """Manual clock: ``sleep`` records the duration and advances time at once."""

    def __init__(self) -> None:
        self.current = 0.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds
        await asyncio.sleep(0)


class ScaledClock:
    """Real clock running ``1 / factor`` times faster, so a 3 s deadline takes 30 ms."""

    def __init__(self, factor: float = 0.01) -> None:
        self.factor = factor
        self._origin = time.monotonic()

    def now(self) -> float:
        return (time.monotonic() - self._origin) / self.factor

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds * self.factor)


class StubPersonalization:
    def __init__(self, candidates=None, *, clock=None, delay_s=0.0, error=None, hang=False):
        self.candidates = list(candidates or [])
        self.clock = clock
        self.delay_s = delay_s
        self.error = error
        self.hang = hang
        self.calls = 0
        self.completed = 0
        self.closed = False

    async def recommend(self, request):
        self.calls += 1
        if self.hang:
            await asyncio.Event().wait()
        if self.delay_s:
            await self.clock.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        self.completed += 1
        return list(self.candidates)

    async def aclose(self):
        self.closed = True


class StubCatalog:
    def __init__(self, cached=(), popular=(), signature=(), *, failing=(), hanging=()):
        self.data = {"cached": list(cached), "popular": list(popular), "signature": list(signature)}
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.calls = {"cached": 0, "popular": 0, "signature": 0}

    async def _serve(self, tier):
        self.calls[tier] += 1
        if tier in self.hanging:
            await asyncio.Event().wait()
        if tier in self.failing:
            raise UpstreamFailure(f"{tier} service unavailable")
        return list(self.data[tier])

    async def cached_bowls(self, request):
        return await self._serve("cached")

    async def popular_bowls(self, request):
        return await self._serve("popular")

    async def signature_bowls(self, request):
        return await self._serve("signature")


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_clock() -> ScaledClock:
    return ScaledClock(factor=0.01)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        primary_timeout_ms=3000,
        retry_attempts=2,
        retry_base_delay_ms=100,
        tier_timeout_ms=1000,
        attempt_timeout_ms=400,
        result_ttl_ms=30 * 60 * 1000,
        history_ttl_ms=24 * 60 * 60 * 1000,
        catalog_ttl_ms=15 * 60 * 1000,
        warm_cache_from_late_primary=True,
    )


@pytest.fixture
def make_personalization():
    return StubPersonalization


@pytest.fixture
def make_catalog():
    return StubCatalog
