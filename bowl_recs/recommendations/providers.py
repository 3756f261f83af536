from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import (
    BowlComposition,
    PersonalizationHealth,
    RecommendationCandidate,
    RecommendationRequest,
)


class PersonalizationProvider(Protocol):
    """Opaque personalization model. May raise or take arbitrarily long."""

    async def recommend(self, request: RecommendationRequest) -> list[RecommendationCandidate]:
        ...


@runtime_checkable
class SupportsHealthCheck(Protocol):
    async def health_check(self) -> PersonalizationHealth:
        ...


@runtime_checkable
class SupportsClose(Protocol):
    async def aclose(self) -> None:
        ...


class CatalogProvider(Protocol):
    """Source of the non-personalized tiers. Every call may raise."""

    async def cached_bowls(self, request: RecommendationRequest) -> list[BowlComposition]:
        ...

    async def popular_bowls(self, request: RecommendationRequest) -> list[BowlComposition]:
        ...

    async def signature_bowls(self, request: RecommendationRequest) -> list[BowlComposition]:
        ...
