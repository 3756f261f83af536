"""
Request coordinator: the public entry point of the recommendation engine.

``resolve`` checks the result cache, joins an in-flight resolution for the
same key if there is one, and otherwise races the personalization provider
against a deadline. Whatever happens upstream, a populated
``RecommendationResult`` comes back; only a malformed request raises.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from ..analytics.store import EventStore
from .cache import CacheKey, InFlightRegistry, RecommendationHistory, ResultCache
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .errors import EmptyResult, InvalidRequestError, UpstreamFailure, UpstreamTimeout
from .fallback import FallbackChain
from .filtering import aggregate_confidence, filter_for_request
from .models import (
    HealthStatus,
    PersonalizationHealth,
    RecommendationCandidate,
    RecommendationRequest,
    RecommendationResult,
    RecommendationSource,
)
from .providers import (
    CatalogProvider,
    PersonalizationProvider,
    SupportsClose,
    SupportsHealthCheck,
)
from .timing import SYSTEM_CLOCK, Clock, elapsed_ms, race_deadline, with_deadline

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT_MS = 1000
_OUTCOME_WINDOW = 20


class ResolutionState(str, Enum):
    idle = "IDLE"
    racing = "RACING"
    primary_won = "PRIMARY_WON"
    fallback = "FALLBACK"
    resolved = "RESOLVED"


class RecommendationCoordinator:
    def __init__(
        self,
        personalization: PersonalizationProvider,
        catalog: CatalogProvider,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
        events: EventStore | None = None,
    ) -> None:
        self._personalization = personalization
        self._config = config
        self._clock = clock
        self.cache = ResultCache(clock)
        self.history = RecommendationHistory(config.history_ttl_ms, clock)
        self.in_flight: InFlightRegistry[CacheKey, RecommendationResult] = InFlightRegistry()
        self.fallback = FallbackChain(catalog, self.history, config, clock)
        self.events = events if events is not None else EventStore()
        self._background: set[asyncio.Task] = set()
        self._primary_outcomes: deque[bool] = deque(maxlen=_OUTCOME_WINDOW)

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ── Public API ──────────────────────────────────────────────────────

    async def resolve(
        self, request: RecommendationRequest | Mapping[str, Any]
    ) -> RecommendationResult:
        request = self._validate(request)
        started = self._clock.now()
        key = CacheKey.from_request(request)

        cached = self.cache.get(key)
        if cached is not None:
            self._record(request, cached, started, cache_hit=True)
            return cached

        coalesced = key in self.in_flight
        task = self.in_flight.get_or_create(key, lambda: self._resolve_uncached(request, key))
        # Shielded so a cancelled waiter never cancels the shared resolution.
        result = await asyncio.shield(task)
        if coalesced:
            logger.debug("Joined in-flight resolution for %s", key.short())
            self._record(request, result, started, cache_hit=False, coalesced=True)
        return result

    def stats(self) -> dict:
        return {
            **self.cache.stats(),
            "in_flight": len(self.in_flight),
            "coalesced": self.in_flight.coalesced,
            "history_size": len(self.history),
            "detached_primary_calls": len(self._background),
        }

    async def personalization_health(self) -> PersonalizationHealth:
        provider = self._personalization
        if isinstance(provider, SupportsHealthCheck):
            try:
                return await with_deadline(
                    provider.health_check(), HEALTH_CHECK_TIMEOUT_MS, self._clock, "health_check",
                )
            except Exception as exc:
                return PersonalizationHealth(
                    status=HealthStatus.down,
                    details=f"Personalization unavailable: {exc}. Fallback active.",
                )

        outcomes = list(self._primary_outcomes)
        failures = outcomes.count(False)
        if not outcomes or failures == 0:
            return PersonalizationHealth(status=HealthStatus.healthy, details="No recent failures")
        if failures == len(outcomes):
            return PersonalizationHealth(
                status=HealthStatus.down,
                details=f"Last {failures} personalization call(s) failed. Fallback active.",
            )
        return PersonalizationHealth(
            status=HealthStatus.degraded,
            details=f"{failures} of the last {len(outcomes)} personalization calls failed",
        )

    async def aclose(self) -> None:
        """Cancel detached primary calls still running, then close the provider."""
        pending = list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()
        if isinstance(self._personalization, SupportsClose):
            await self._personalization.aclose()

    # ── Internals ───────────────────────────────────────────────────────

    @staticmethod
    def _validate(request: RecommendationRequest | Mapping[str, Any]) -> RecommendationRequest:
        if isinstance(request, RecommendationRequest):
            return request
        if isinstance(request, Mapping):
            try:
                return RecommendationRequest.model_validate(dict(request))
            except ValidationError as exc:
                raise InvalidRequestError(str(exc)) from exc
        raise InvalidRequestError(f"Unsupported request type: {type(request).__name__}")

    def _transition(self, key: CacheKey, old: ResolutionState, new: ResolutionState) -> None:
        logger.debug("Resolution %s: %s -> %s", key.short(), old.value, new.value)

    async def _resolve_uncached(
        self, request: RecommendationRequest, key: CacheKey
    ) -> RecommendationResult:
        started = self._clock.now()
        self._transition(key, ResolutionState.idle, ResolutionState.racing)

        candidates, reason = await self._race_primary(request, key, started)
        if candidates:
            self._transition(key, ResolutionState.racing, ResolutionState.primary_won)
            self.history.remember(request, [c.bowl for c in candidates])
            result = self._build_result(
                candidates, RecommendationSource.ml, fallback_used=False, started=started,
            )
        else:
            self._transition(key, ResolutionState.racing, ResolutionState.fallback)
            logger.warning(
                "Personalization unavailable for %s (%s), using fallback chain",
                key.short(), reason,
                extra={"tier": RecommendationSource.ml.value, "reason": type(reason).__name__},
            )
            source, fallback_candidates = await self.fallback.run(request)
            result = self._build_result(
                fallback_candidates, source, fallback_used=True, started=started,
            )

        self.cache.set(key, result, self._config.result_ttl_ms)
        outcome = ResolutionState.fallback if result.fallback_used else ResolutionState.primary_won
        self._transition(key, outcome, ResolutionState.resolved)
        self._record(request, result, started, cache_hit=False)
        return result

    async def _race_primary(
        self, request: RecommendationRequest, key: CacheKey, started: float
    ) -> tuple[list[RecommendationCandidate], Exception | None]:
        primary = asyncio.ensure_future(self._personalization.recommend(request))
        try:
            finished = await race_deadline(primary, self._config.primary_timeout_ms, self._clock)
        except asyncio.CancelledError:
            primary.cancel()
            raise

        if not finished:
            self._primary_outcomes.append(False)
            self._detach(primary, request, key, started)
            return [], UpstreamTimeout("personalization", self._config.primary_timeout_ms)

        exc = primary.exception() if not primary.cancelled() else asyncio.CancelledError()
        if exc is not None:
            self._primary_outcomes.append(False)
            if isinstance(exc, UpstreamFailure):
                return [], exc
            return [], UpstreamFailure(f"personalization raised {type(exc).__name__}: {exc}")

        self._primary_outcomes.append(True)
        raw = primary.result()
        if not raw:
            return [], EmptyResult("personalization returned no candidates")
        kept = filter_for_request(raw, request)
        if not kept:
            return [], EmptyResult(f"personalization returned {len(raw)} candidate(s), none passed the filters")
        return kept, None

    def _detach(
        self, primary: asyncio.Task, request: RecommendationRequest, key: CacheKey, started: float
    ) -> None:
        self._background.add(primary)

        def _settled(task: asyncio.Task) -> None:
            self._background.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.info("Detached personalization call for %s failed late: %s", key.short(), exc)
                return
            if not self._config.warm_cache_from_late_primary:
                return
            kept = filter_for_request(task.result() or [], request)
            if not kept:
                return
            self.history.remember(request, [c.bowl for c in kept])
            self.cache.set(
                key,
                self._build_result(kept, RecommendationSource.ml, fallback_used=False, started=started),
                self._config.result_ttl_ms,
            )
            logger.info("Late personalization result warmed the cache for %s", key.short())

        primary.add_done_callback(_settled)

    def _build_result(
        self,
        candidates: list[RecommendationCandidate],
        source: RecommendationSource,
        *,
        fallback_used: bool,
        started: float,
    ) -> RecommendationResult:
        return RecommendationResult(
            recommendations=candidates,
            source=source,
            confidence=aggregate_confidence(candidates),
            fallback_used=fallback_used,
            processing_time_ms=elapsed_ms(self._clock, started),
        )

    def _record(
        self,
        request: RecommendationRequest,
        result: RecommendationResult,
        started: float,
        *,
        cache_hit: bool,
        coalesced: bool = False,
    ) -> None:
        self.events.record("resolution", {
            "location_id": request.location_id,
            "dietary_restrictions": sorted(r.value for r in request.dietary_restrictions),
            "allergens": sorted(a.value for a in request.allergens),
            "source": result.source.value,
            "fallback_used": result.fallback_used,
            "confidence": result.confidence,
            "results_returned": len(result.recommendations),
            "response_time_ms": elapsed_ms(self._clock, started),
            "cache_hit": cache_hit,
            "coalesced": coalesced,
        })
