from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class DietaryRestriction(str, Enum):
    vegan = "vegan"
    vegetarian = "vegetarian"
    gluten_free = "gluten-free"
    dairy_free = "dairy-free"
    nut_free = "nut-free"
    low_carb = "low-carb"
    keto = "keto"
    paleo = "paleo"


class Allergen(str, Enum):
    nuts = "nuts"
    peanuts = "peanuts"
    dairy = "dairy"
    gluten = "gluten"
    soy = "soy"
    eggs = "eggs"
    shellfish = "shellfish"
    fish = "fish"
    sesame = "sesame"


class RecommendationSource(str, Enum):
    ml = "ml"
    cached = "cached"
    popular = "popular"
    signature = "signature"
    emergency = "emergency"


class ProteinPreference(str, Enum):
    any = "any"
    plant_based = "plant-based"
    meat = "meat"
    seafood = "seafood"


class IngredientCategory(str, Enum):
    base = "base"
    protein = "protein"
    sides = "sides"
    sauce = "sauce"
    garnish = "garnish"


class NutritionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    calories: float = 0.0
    protein: float = 0.0  # grams
    carbs: float = 0.0  # grams
    fat: float = 0.0  # grams
    fiber: float = 0.0  # grams
    sodium: float = 0.0  # mg

    def __add__(self, other: NutritionInfo) -> NutritionInfo:
        return NutritionInfo(
            calories=self.calories + other.calories,
            protein=self.protein + other.protein,
            carbs=self.carbs + other.carbs,
            fat=self.fat + other.fat,
            fiber=self.fiber + other.fiber,
            sodium=self.sodium + other.sodium,
        )


class Ingredient(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    category: IngredientCategory
    subcategory: str = ""
    is_available: bool = True
    is_vegan: bool = False
    is_vegetarian: bool = False
    is_gluten_free: bool = False
    allergens: frozenset[Allergen] = frozenset()
    nutrition: NutritionInfo = Field(default_factory=NutritionInfo)
    weight: float = Field(default=0.0, ge=0.0)  # grams
    price: int = Field(default=0, ge=0)  # cents

    @model_validator(mode="before")
    @classmethod
    def _vegan_implies_vegetarian(cls, data):
        if isinstance(data, dict) and data.get("is_vegan") and "is_vegetarian" not in data:
            data = {**data, "is_vegetarian": True}
        return data


class BowlComposition(BaseModel):
    """A complete bowl as produced by one of the data sources.

    The engine only reads bowls; ``ingredients``, ``nutrition`` and
    ``allergens`` are derived from the component slots, and the last two are
    serialized with the bowl.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    base: Ingredient
    protein: Ingredient | None = None
    extra_protein: tuple[Ingredient, ...] = ()
    sides: tuple[Ingredient, ...] = ()
    extra_sides: tuple[Ingredient, ...] = ()
    sauce: Ingredient | None = None
    garnish: Ingredient | None = None
    total_weight: float = Field(default=0.0, ge=0.0)  # grams
    total_price: int = Field(default=0, ge=0)  # cents
    tags: tuple[str, ...] = ()
    rating: float | None = Field(default=None, ge=0.0, le=5.0)
    is_signature: bool = False

    @property
    def ingredients(self) -> list[Ingredient]:
        items = [self.base]
        if self.protein is not None:
            items.append(self.protein)
        items.extend(self.extra_protein)
        items.extend(self.sides)
        items.extend(self.extra_sides)
        if self.sauce is not None:
            items.append(self.sauce)
        if self.garnish is not None:
            items.append(self.garnish)
        return items

    @computed_field
    @property
    def nutrition(self) -> NutritionInfo:
        total = NutritionInfo()
        for ingredient in self.ingredients:
            total = total + ingredient.nutrition
        return total

    @computed_field
    @property
    def allergens(self) -> frozenset[Allergen]:
        found: set[Allergen] = set()
        for ingredient in self.ingredients:
            found.update(ingredient.allergens)
        return frozenset(found)


class RecommendationRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    user_id: str | None = None
    dietary_restrictions: frozenset[DietaryRestriction] = frozenset()
    allergens: frozenset[Allergen] = frozenset()
    location_id: str = Field(..., min_length=1, description="Store or station id")
    available_ingredient_ids: frozenset[str] = frozenset()
    protein_preference: ProteinPreference = ProteinPreference.any
    preferred_ingredient_ids: frozenset[str] = frozenset()
    limit: int = Field(default=5, ge=1, le=20)


class RecommendationCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    bowl: BowlComposition
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""


class RecommendationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    recommendations: list[RecommendationCandidate]
    source: RecommendationSource
    confidence: float = Field(..., ge=0.0, le=1.0)
    fallback_used: bool
    processing_time_ms: int = Field(default=0, ge=0)


class HealthStatus(str, Enum):
    healthy = "healthy"
    degraded = "degraded"
    down = "down"


class PersonalizationHealth(BaseModel):
    status: HealthStatus
    details: str
