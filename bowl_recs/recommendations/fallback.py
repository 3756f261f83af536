"""
Fallback chain used when personalization fails or misses its deadline.

Tiers are tried in order (cached, popular, signature, emergency). Each
non-terminal tier is wrapped by the retry helper and bounded by its own
sub-timeout; a tier that raises, times out or yields nothing after
filtering hands over to the next one. The emergency tier never does I/O
and always returns at least one bowl.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..catalog.menu import EMERGENCY_BOWLS
from .cache import RecommendationHistory
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .errors import EmptyResult
from .filtering import filter_and_rank, filter_for_request
from .models import (
    BowlComposition,
    RecommendationCandidate,
    RecommendationRequest,
    RecommendationSource,
)
from .providers import CatalogProvider
from .retry import with_retry
from .timing import SYSTEM_CLOCK, Clock, with_deadline

logger = logging.getLogger(__name__)

CACHED_CONFIDENCE = 0.70
POPULAR_CONFIDENCE = (0.65, 0.60)
SIGNATURE_CONFIDENCE = (0.60, 0.50)
EMERGENCY_CONFIDENCE = 0.30

TierFetch = Callable[[RecommendationRequest], Awaitable[list[RecommendationCandidate]]]


@dataclass(frozen=True)
class FallbackTier:
    source: RecommendationSource
    fetch: TierFetch


def _with_confidence(
    bowls: list[BowlComposition], high: float, low: float, reasoning: str
) -> list[RecommendationCandidate]:
    """Assign confidences decreasing linearly from ``high`` to ``low`` by position."""
    if not bowls:
        return []
    step = (high - low) / (len(bowls) - 1) if len(bowls) > 1 else 0.0
    return [
        RecommendationCandidate(bowl=bowl, confidence=round(high - i * step, 4), reasoning=reasoning)
        for i, bowl in enumerate(bowls)
    ]


def emergency_candidates(request: RecommendationRequest) -> list[RecommendationCandidate]:
    """Terminal tier: pure and local, never empty.

    Emergency bowls carry no allergens, so when the dietary rules reject all
    of them the allergen-only filter still leaves a safe bowl to build on.
    """
    candidates = _with_confidence(
        list(EMERGENCY_BOWLS),
        EMERGENCY_CONFIDENCE,
        EMERGENCY_CONFIDENCE,
        "A simple base to customise while we load more suggestions",
    )
    kept = filter_and_rank(
        candidates, request.dietary_restrictions, request.allergens, request.limit
    )
    if kept:
        return kept
    return filter_and_rank(candidates, (), request.allergens, request.limit) or candidates[:1]


class FallbackChain:
    def __init__(
        self,
        catalog: CatalogProvider,
        history: RecommendationHistory | None = None,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._catalog = catalog
        self._history = history
        self._config = config
        self._clock = clock
        self.tiers: list[FallbackTier] = [
            FallbackTier(RecommendationSource.cached, self._cached),
            FallbackTier(RecommendationSource.popular, self._popular),
            FallbackTier(RecommendationSource.signature, self._signature),
        ]

    async def _cached(self, request: RecommendationRequest) -> list[RecommendationCandidate]:
        reasoning = "Recently recommended to guests with similar preferences"
        remembered = self._history.recall(request) if self._history is not None else []
        if remembered:
            candidates = _with_confidence(remembered, CACHED_CONFIDENCE, CACHED_CONFIDENCE, reasoning)
            # History is keyed more coarsely than the request; unusable bowls defer to the store.
            if filter_for_request(candidates, request):
                return candidates
            logger.debug(
                "Remembered bowls for %s all filtered out, trying cached store", request.location_id,
            )
        bowls = await self._catalog.cached_bowls(request)
        return _with_confidence(bowls, CACHED_CONFIDENCE, CACHED_CONFIDENCE, reasoning)

    async def _popular(self, request: RecommendationRequest) -> list[RecommendationCandidate]:
        bowls = await self._catalog.popular_bowls(request)
        return _with_confidence(bowls, *POPULAR_CONFIDENCE, "One of our best sellers right now")

    async def _signature(self, request: RecommendationRequest) -> list[RecommendationCandidate]:
        bowls = await self._catalog.signature_bowls(request)
        bowls = sorted(bowls, key=lambda b: b.rating or 0.0, reverse=True)
        return _with_confidence(bowls, *SIGNATURE_CONFIDENCE, "A chef-curated signature bowl")

    async def _attempt_tier(
        self, tier: FallbackTier, request: RecommendationRequest
    ) -> list[RecommendationCandidate]:
        label = f"tier:{tier.source.value}"
        candidates = await with_deadline(
            with_retry(
                lambda: tier.fetch(request),
                self._config.retry_attempts,
                self._config.retry_base_delay_ms,
                attempt_timeout_ms=self._config.attempt_timeout_ms,
                clock=self._clock,
                label=label,
            ),
            self._config.tier_timeout_ms,
            self._clock,
            label,
        )
        if not candidates:
            raise EmptyResult(f"{label} returned no bowls")
        kept = filter_for_request(candidates, request)
        if not kept:
            raise EmptyResult(f"{label} had {len(candidates)} bowl(s), none passed the filters")
        return kept

    async def run(
        self, request: RecommendationRequest
    ) -> tuple[RecommendationSource, list[RecommendationCandidate]]:
        for tier in self.tiers:
            try:
                kept = await self._attempt_tier(tier, request)
            except Exception as exc:
                logger.warning(
                    "Fallback tier %s failed, advancing: %s", tier.source.value, exc,
                    extra={"tier": tier.source.value, "location_id": request.location_id},
                )
                continue
            logger.info(
                "Fallback resolved at tier %s with %d bowl(s)", tier.source.value, len(kept),
                extra={"tier": tier.source.value, "location_id": request.location_id},
            )
            return tier.source, kept

        logger.warning(
            "All fallback tiers failed, serving emergency bowl",
            extra={"tier": RecommendationSource.emergency.value, "location_id": request.location_id},
        )
        return RecommendationSource.emergency, emergency_candidates(request)
