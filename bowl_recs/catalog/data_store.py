from __future__ import annotations

import logging
from typing import Iterable

import pandas as pd

from ..recommendations.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..recommendations.models import BowlComposition, RecommendationRequest
from ..recommendations.timing import SYSTEM_CLOCK, Clock
from .menu import ORDER_HISTORY, SIGNATURE_BOWLS

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = ["bowl_id", "location_id", "quantity"]


class InMemoryCatalog:
    """
    Local catalog backing the non-personalized fallback tiers.

    Best sellers are ranked from an order-history DataFrame; the ranking is
    recomputed at most once per ``catalog_ttl_ms`` or after new orders.
    """

    def __init__(
        self,
        bowls: Iterable[BowlComposition] = SIGNATURE_BOWLS,
        orders: Iterable[tuple[str, str, int]] = ORDER_HISTORY,
        cached: Iterable[BowlComposition] = (),
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._bowls: dict[str, BowlComposition] = {b.id: b for b in bowls}
        self._cached = list(cached)
        self._orders = pd.DataFrame(list(orders), columns=_ORDER_COLUMNS)
        self._config = config
        self._clock = clock
        self._ranking: dict[str, list[str]] | None = None
        self._ranked_at = 0.0

    def get_bowl(self, bowl_id: str) -> BowlComposition | None:
        return self._bowls.get(bowl_id)

    @property
    def bowls(self) -> list[BowlComposition]:
        return list(self._bowls.values())

    def record_order(self, bowl_id: str, location_id: str, quantity: int = 1) -> None:
        row = pd.DataFrame([(bowl_id, location_id, quantity)], columns=_ORDER_COLUMNS)
        self._orders = pd.concat([self._orders, row], ignore_index=True)
        self._ranking = None

    def _rank(self) -> dict[str, list[str]]:
        """Bowl ids by descending quantity, per location plus an ``"*"`` overall entry."""
        now = self._clock.now()
        ttl_s = self._config.catalog_ttl_ms / 1000.0
        if self._ranking is not None and now - self._ranked_at < ttl_s:
            return self._ranking

        df = self._orders
        ranking: dict[str, list[str]] = {}
        if not df.empty:
            overall = df.groupby("bowl_id")["quantity"].sum().sort_values(ascending=False, kind="stable")
            ranking["*"] = overall.index.tolist()
            per_location = (
                df.groupby(["location_id", "bowl_id"])["quantity"].sum().reset_index()
                .sort_values(["location_id", "quantity"], ascending=[True, False], kind="stable")
            )
            for location_id, group in per_location.groupby("location_id"):
                ranking[str(location_id).lower()] = group["bowl_id"].tolist()

        self._ranking = ranking
        self._ranked_at = now
        logger.debug("Recomputed best-seller ranking for %d location(s)", max(0, len(ranking) - 1))
        return ranking

    async def cached_bowls(self, request: RecommendationRequest) -> list[BowlComposition]:
        return list(self._cached)

    async def popular_bowls(self, request: RecommendationRequest) -> list[BowlComposition]:
        ranking = self._rank()
        ids = ranking.get(request.location_id.strip().lower()) or ranking.get("*", [])
        return [self._bowls[i] for i in ids if i in self._bowls]

    async def signature_bowls(self, request: RecommendationRequest) -> list[BowlComposition]:
        return [b for b in self._bowls.values() if b.is_signature]
