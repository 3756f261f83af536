from __future__ import annotations

import json
import logging
from typing import Iterable

from groq import AsyncGroq

from ..recommendations.errors import UpstreamFailure
from ..recommendations.models import (
    BowlComposition,
    HealthStatus,
    PersonalizationHealth,
    RecommendationCandidate,
    RecommendationRequest,
)
from .config import DEFAULT_LLM_CONFIG, LLMConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a food bowl recommendation engine for a healthy fast-casual restaurant. "
    "Given a guest's dietary profile and the bowls on the menu, pick the bowls "
    "that best match, give each a confidence between 0 and 1, and a short, "
    "friendly one-sentence reason.\n\n"
    "Return ONLY valid JSON in this exact format:\n"
    '{"recommendations": [{"id": "<bowl_id>", "confidence": 0.8, "reason": "<one sentence>"}]}\n'
    "Include only bowls from the provided list. "
    "Never include a bowl containing one of the guest's allergens. "
    "Order from best match to worst."
)


def _build_user_message(request: RecommendationRequest, bowls: list[BowlComposition]) -> str:
    lines = ["## Guest Profile"]
    if request.dietary_restrictions:
        lines.append(
            f"- Dietary restrictions: {', '.join(sorted(r.value for r in request.dietary_restrictions))}"
        )
    if request.allergens:
        lines.append(f"- Allergens: {', '.join(sorted(a.value for a in request.allergens))}")
    lines.append(f"- Protein preference: {request.protein_preference.value}")
    if request.preferred_ingredient_ids:
        lines.append(f"- Favourite ingredients: {', '.join(sorted(request.preferred_ingredient_ids))}")

    lines.append("\n## Menu")
    lines.append("| ID | Name | Ingredients | Allergens | Carbs (g) | Price |")
    lines.append("|---|---|---|---|---|---|")
    for b in bowls:
        ingredients = ", ".join(i.name for i in b.ingredients)
        allergens = ", ".join(sorted(a.value for a in b.allergens)) or "none"
        lines.append(
            f"| {b.id} | {b.name} | {ingredients} | {allergens} "
            f"| {b.nutrition.carbs:.0f} | ${b.total_price / 100:.2f} |"
        )

    return "\n".join(lines)


def _parse_candidates(
    content: str, menu: dict[str, BowlComposition]
) -> list[RecommendationCandidate]:
    parsed = json.loads(content)
    candidates: list[RecommendationCandidate] = []
    for item in parsed.get("recommendations", []):
        bowl = menu.get(str(item.get("id", "")))
        if bowl is None:
            continue
        try:
            confidence = float(item.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        candidates.append(RecommendationCandidate(
            bowl=bowl,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=str(item.get("reason", "")),
        ))
    return candidates


class GroqPersonalizationProvider:
    """
    Personalization backed by a Groq-hosted LLM.

    Unlike a best-effort re-ranker this provider raises
    :class:`UpstreamFailure` on any problem so the coordinator can fall back.
    """

    def __init__(
        self,
        menu: Iterable[BowlComposition],
        config: LLMConfig = DEFAULT_LLM_CONFIG,
    ) -> None:
        self._menu = {b.id: b for b in menu}
        self._config = config
        self._groq: AsyncGroq | None = None

    def _client(self) -> AsyncGroq:
        if self._groq is None:
            self._groq = AsyncGroq(api_key=self._config.api_key, timeout=self._config.timeout)
        return self._groq

    async def aclose(self) -> None:
        """Release the shared HTTP connection pool."""
        if self._groq is not None:
            client, self._groq = self._groq, None
            await client.close()

    async def recommend(self, request: RecommendationRequest) -> list[RecommendationCandidate]:
        if not self._config.enabled or not self._config.api_key:
            raise UpstreamFailure("LLM personalization is disabled")
        if not self._menu:
            return []

        try:
            response = await self._client().chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": _build_user_message(request, list(self._menu.values())),
                    },
                ],
                max_tokens=self._config.max_tokens,
                temperature=0.3,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content or ""
            candidates = _parse_candidates(content, self._menu)
        except Exception as exc:
            logger.warning("Groq personalization call failed", exc_info=True)
            raise UpstreamFailure(f"Groq personalization call failed: {exc}") from exc

        return candidates[: self._config.max_recommendations]

    async def health_check(self) -> PersonalizationHealth:
        if not self._config.enabled or not self._config.api_key:
            return PersonalizationHealth(
                status=HealthStatus.down, details="LLM personalization disabled. Fallback active.",
            )
        try:
            await self._client().models.list()
        except Exception as exc:
            return PersonalizationHealth(
                status=HealthStatus.down,
                details=f"ML service unavailable: {exc}. Fallback active.",
            )
        return PersonalizationHealth(status=HealthStatus.healthy, details="ML service operational")
