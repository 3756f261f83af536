"""
Result cache, in-flight request registry and ML history store.

All three live on a single asyncio event loop, so plain dicts are enough:
every mutation happens between suspension points.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

from .models import (
    Allergen,
    BowlComposition,
    DietaryRestriction,
    ProteinPreference,
    RecommendationRequest,
    RecommendationResult,
)
from .timing import SYSTEM_CLOCK, Clock

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class PreferenceSignature:
    user_id: str | None
    dietary_restrictions: frozenset[DietaryRestriction]
    allergens: frozenset[Allergen]
    protein_preference: ProteinPreference
    preferred_ingredient_ids: frozenset[str]
    available_ingredient_ids: frozenset[str]
    limit: int


@dataclass(frozen=True)
class CacheKey:
    preferences: PreferenceSignature
    location_id: str

    @classmethod
    def from_request(cls, request: RecommendationRequest) -> CacheKey:
        signature = PreferenceSignature(
            user_id=request.user_id,
            dietary_restrictions=frozenset(request.dietary_restrictions),
            allergens=frozenset(request.allergens),
            protein_preference=request.protein_preference,
            preferred_ingredient_ids=frozenset(request.preferred_ingredient_ids),
            available_ingredient_ids=frozenset(request.available_ingredient_ids),
            limit=request.limit,
        )
        return cls(preferences=signature, location_id=request.location_id.strip().lower())

    def short(self) -> str:
        """Compact label for log lines."""
        prefs = self.preferences
        diet = ",".join(sorted(r.value for r in prefs.dietary_restrictions)) or "-"
        allergens = ",".join(sorted(a.value for a in prefs.allergens)) or "-"
        return f"{self.location_id}|{prefs.user_id or 'anon'}|{diet}|{allergens}"


@dataclass(frozen=True)
class FilterSignature:
    """Coarser key used to share ML bowls between users with similar filters."""

    dietary_restrictions: frozenset[DietaryRestriction]
    allergens: frozenset[Allergen]
    location_id: str

    @classmethod
    def from_request(cls, request: RecommendationRequest) -> FilterSignature:
        return cls(
            dietary_restrictions=frozenset(request.dietary_restrictions),
            allergens=frozenset(request.allergens),
            location_id=request.location_id.strip().lower(),
        )


@dataclass(frozen=True)
class CacheEntry(Generic[K, V]):
    key: K
    value: V
    expires_at: float


class TTLStore(Generic[K, V]):
    """Key/value store whose entries expire; evicted lazily on read."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK) -> None:
        self._clock = clock
        self._entries: dict[K, CacheEntry[K, V]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is not None and self._clock.now() < entry.expires_at:
            self._hits += 1
            return entry.value
        if entry is not None:
            del self._entries[key]
            self._evictions += 1
        self._misses += 1
        return None

    def set(self, key: K, value: V, ttl_ms: float) -> None:
        expires_at = self._clock.now() + ttl_ms / 1000.0
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=expires_at)

    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)


class ResultCache(TTLStore[CacheKey, RecommendationResult]):
    pass


class RecommendationHistory(TTLStore[FilterSignature, tuple[BowlComposition, ...]]):
    """Previously good ML bowls, kept longer than the result cache."""

    def __init__(self, ttl_ms: float, clock: Clock = SYSTEM_CLOCK) -> None:
        super().__init__(clock)
        self.ttl_ms = ttl_ms

    def remember(self, request: RecommendationRequest, bowls: list[BowlComposition]) -> None:
        if bowls:
            self.set(FilterSignature.from_request(request), tuple(bowls), self.ttl_ms)

    def recall(self, request: RecommendationRequest) -> list[BowlComposition]:
        return list(self.get(FilterSignature.from_request(request)) or ())


class InFlightRegistry(Generic[K, V]):
    """Coalesces concurrent resolutions of the same key into one task."""

    def __init__(self) -> None:
        self._entries: dict[K, asyncio.Task[V]] = {}
        self._coalesced = 0

    def get_or_create(self, key: K, producer: Callable[[], Awaitable[V]]) -> asyncio.Task[V]:
        existing = self._entries.get(key)
        if existing is not None:
            self._coalesced += 1
            return existing

        async def _run() -> V:
            try:
                return await producer()
            finally:
                # Drop the slot before the task settles so waiters never see a stale entry.
                if self._entries.get(key) is task:
                    del self._entries[key]

        task = asyncio.ensure_future(_run())
        self._entries[key] = task
        return task

    @property
    def coalesced(self) -> int:
        return self._coalesced

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
