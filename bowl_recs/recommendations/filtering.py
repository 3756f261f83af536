from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from .models import (
    Allergen,
    BowlComposition,
    DietaryRestriction,
    Ingredient,
    IngredientCategory,
    ProteinPreference,
    RecommendationCandidate,
    RecommendationRequest,
)

DEFAULT_LIMIT = 5
PREFERENCE_BOOST = 0.05
LOW_CARB_MAX_CARBS = 50.0  # grams per bowl
KETO_MAX_CARBS = 20.0

_NUT_ALLERGENS = frozenset({Allergen.nuts, Allergen.peanuts})
_PALEO_EXCLUDED_SUBCATEGORIES = frozenset({"grains", "legumes", "noodles"})
_PROTEIN_SUBCATEGORIES: dict[ProteinPreference, frozenset[str]] = {
    ProteinPreference.plant_based: frozenset({"plant-based", "legumes", "tofu"}),
    ProteinPreference.meat: frozenset({"poultry", "beef", "pork", "lamb"}),
    ProteinPreference.seafood: frozenset({"seafood", "fish", "shellfish"}),
}


@dataclass(frozen=True)
class PreferenceSignals:
    """Known user preferences that lift a candidate's confidence."""

    preferred_ingredient_ids: frozenset[str] = frozenset()
    protein_preference: ProteinPreference = ProteinPreference.any

    @classmethod
    def from_request(cls, request: RecommendationRequest) -> PreferenceSignals:
        return cls(
            preferred_ingredient_ids=frozenset(request.preferred_ingredient_ids),
            protein_preference=request.protein_preference,
        )


def _all(bowl: BowlComposition, predicate: Callable[[Ingredient], bool]) -> bool:
    return all(predicate(i) for i in bowl.ingredients)


def _is_paleo(bowl: BowlComposition) -> bool:
    return _all(
        bowl,
        lambda i: i.subcategory not in _PALEO_EXCLUDED_SUBCATEGORIES
        and Allergen.dairy not in i.allergens,
    )


_RESTRICTION_RULES: dict[DietaryRestriction, Callable[[BowlComposition], bool]] = {
    DietaryRestriction.vegan: lambda b: _all(b, lambda i: i.is_vegan),
    DietaryRestriction.vegetarian: lambda b: _all(b, lambda i: i.is_vegetarian),
    DietaryRestriction.gluten_free: lambda b: _all(
        b, lambda i: i.is_gluten_free and Allergen.gluten not in i.allergens
    ),
    DietaryRestriction.dairy_free: lambda b: Allergen.dairy not in b.allergens,
    DietaryRestriction.nut_free: lambda b: not (_NUT_ALLERGENS & b.allergens),
    DietaryRestriction.low_carb: lambda b: b.nutrition.carbs <= LOW_CARB_MAX_CARBS,
    DietaryRestriction.keto: lambda b: b.nutrition.carbs <= KETO_MAX_CARBS,
    DietaryRestriction.paleo: _is_paleo,
}


def violates_allergens(bowl: BowlComposition, allergens: Iterable[Allergen]) -> bool:
    return bool(bowl.allergens & frozenset(allergens))


def satisfies_restrictions(
    bowl: BowlComposition, dietary_restrictions: Iterable[DietaryRestriction]
) -> bool:
    return all(_RESTRICTION_RULES[r](bowl) for r in dietary_restrictions)


def is_available(bowl: BowlComposition, available_ingredient_ids: frozenset[str] | None) -> bool:
    for ingredient in bowl.ingredients:
        if not ingredient.is_available:
            return False
        if available_ingredient_ids and ingredient.id not in available_ingredient_ids:
            return False
    return True


def _boost(bowl: BowlComposition, signals: PreferenceSignals) -> float:
    boost = 0.0
    ids = {i.id for i in bowl.ingredients}
    boost += PREFERENCE_BOOST * len(ids & signals.preferred_ingredient_ids)

    wanted = _PROTEIN_SUBCATEGORIES.get(signals.protein_preference)
    if wanted:
        proteins = [i for i in bowl.ingredients if i.category is IngredientCategory.protein]
        if any(p.subcategory in wanted for p in proteins):
            boost += PREFERENCE_BOOST
    return boost


def filter_and_rank(
    candidates: list[RecommendationCandidate],
    dietary_restrictions: Iterable[DietaryRestriction],
    allergens: Iterable[Allergen],
    limit: int = DEFAULT_LIMIT,
    *,
    available_ingredient_ids: frozenset[str] | None = None,
    preference_signals: PreferenceSignals | None = None,
) -> list[RecommendationCandidate]:
    """
    Drop unsafe or non-compliant candidates, re-weight, sort and truncate.

    Never mutates ``candidates``; boosted entries are copies. A non-empty
    input that is entirely excluded yields ``[]``.
    """
    if limit < 1:
        raise ValueError("limit must be positive")

    restrictions = frozenset(dietary_restrictions)
    blocked = frozenset(allergens)
    signals = preference_signals or PreferenceSignals()

    kept: list[RecommendationCandidate] = []
    for candidate in candidates:
        bowl = candidate.bowl
        if violates_allergens(bowl, blocked):
            continue
        if not satisfies_restrictions(bowl, restrictions):
            continue
        if not is_available(bowl, available_ingredient_ids):
            continue
        boost = _boost(bowl, signals)
        if boost > 0:
            confidence = min(1.0, candidate.confidence + boost)
            candidate = candidate.model_copy(update={"confidence": confidence})
        kept.append(candidate)

    kept.sort(key=lambda c: c.confidence, reverse=True)
    return kept[:limit]


def filter_for_request(
    candidates: list[RecommendationCandidate], request: RecommendationRequest
) -> list[RecommendationCandidate]:
    return filter_and_rank(
        candidates,
        request.dietary_restrictions,
        request.allergens,
        request.limit,
        available_ingredient_ids=request.available_ingredient_ids,
        preference_signals=PreferenceSignals.from_request(request),
    )


def aggregate_confidence(candidates: list[RecommendationCandidate]) -> float:
    if not candidates:
        return 0.0
    mean = sum(c.confidence for c in candidates) / len(candidates)
    return round(max(0.0, min(1.0, mean)), 4)
