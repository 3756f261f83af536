from __future__ import annotations

from ..recommendations.models import (
    Allergen,
    BowlComposition,
    Ingredient,
    IngredientCategory,
    NutritionInfo,
)


def _ingredient(
    id: str,
    name: str,
    category: IngredientCategory,
    subcategory: str,
    nutrition: tuple[float, float, float, float, float, float],
    weight: float,
    price: int = 0,
    *,
    vegan: bool = True,
    vegetarian: bool | None = None,
    gluten_free: bool = True,
    allergens: tuple[Allergen, ...] = (),
) -> Ingredient:
    calories, protein, carbs, fat, fiber, sodium = nutrition
    return Ingredient(
        id=id,
        name=name,
        category=category,
        subcategory=subcategory,
        is_vegan=vegan,
        is_vegetarian=vegan if vegetarian is None else vegetarian,
        is_gluten_free=gluten_free,
        allergens=frozenset(allergens),
        nutrition=NutritionInfo(
            calories=calories, protein=protein, carbs=carbs, fat=fat, fiber=fiber, sodium=sodium,
        ),
        weight=weight,
        price=price,
    )


BASE = IngredientCategory.base
PROTEIN = IngredientCategory.protein
SIDES = IngredientCategory.sides
SAUCE = IngredientCategory.sauce
GARNISH = IngredientCategory.garnish

BROWN_RICE = _ingredient("base-1", "Brown Rice", BASE, "grains", (150, 3, 31, 1, 2, 5), 120)
QUINOA = _ingredient("base-2", "Tri-Colour Quinoa", BASE, "grains", (180, 6, 32, 3, 3, 8), 100, 200)
CAULI_LENTIL_RICE = _ingredient(
    "base-3", "Cauliflower Lentil Rice", BASE, "legumes", (120, 5, 20, 2, 4, 10), 110, 150,
)
MIXED_GREENS = _ingredient("base-4", "Mixed Greens", BASE, "vegetables", (20, 2, 4, 0, 2, 30), 80)

LEMONGRASS_CHICKEN = _ingredient(
    "protein-1", "Roasted Lemongrass Chicken", PROTEIN, "poultry", (180, 25, 2, 8, 0, 320), 80,
    vegan=False,
)
STEAK = _ingredient(
    "protein-2", "Char-Grilled Steak", PROTEIN, "beef", (220, 28, 0, 12, 0, 280), 85, 300,
    vegan=False,
)
SALMON = _ingredient(
    "protein-3", "Baked Salmon", PROTEIN, "seafood", (200, 22, 0, 12, 0, 250), 75, 350,
    vegan=False, allergens=(Allergen.fish,),
)
FALAFELS = _ingredient(
    "protein-4", "Falafels", PROTEIN, "plant-based", (160, 8, 15, 9, 4, 180), 70,
    gluten_free=False, allergens=(Allergen.gluten,),
)
BASIL_TOFU = _ingredient(
    "protein-5", "Basil Tofu", PROTEIN, "tofu", (140, 14, 4, 8, 2, 210), 80,
    allergens=(Allergen.soy,),
)

PUMPKIN = _ingredient("side-1", "Roasted Pumpkin Wedge", SIDES, "vegetables", (45, 1, 11, 0, 3, 5), 60)
CORN = _ingredient("side-2", "Charred Corn", SIDES, "vegetables", (80, 3, 18, 1, 2, 10), 50)
CABBAGE = _ingredient("side-3", "Oriental Cabbage Salad", SIDES, "vegetables", (25, 1, 5, 0, 2, 15), 40)
MUSHROOMS = _ingredient("side-4", "Grilled Mushrooms", SIDES, "vegetables", (35, 3, 5, 1, 2, 8), 45)
ONSEN_EGG = _ingredient(
    "side-5", "Onsen Egg", SIDES, "protein", (70, 6, 1, 5, 0, 70), 50, 150,
    vegan=False, vegetarian=True, allergens=(Allergen.eggs,),
)
FETA = _ingredient(
    "side-6", "Crumbled Feta", SIDES, "cheese", (75, 4, 1, 6, 0, 260), 30, 150,
    vegan=False, vegetarian=True, allergens=(Allergen.dairy,),
)

SWEET_POTATO_DIP = _ingredient(
    "sauce-1", "Purple Sweet Potato Dip", SAUCE, "dips", (45, 1, 8, 2, 1, 120), 30,
)
GREEN_GODDESS = _ingredient("sauce-2", "Green Goddess", SAUCE, "dressings", (60, 1, 2, 6, 0, 180), 25)
BEETROOT_MISO = _ingredient(
    "sauce-3", "Beetroot Miso", SAUCE, "dressings", (40, 2, 6, 1, 1, 220), 25,
    allergens=(Allergen.soy,),
)

MIXED_SEEDS = _ingredient(
    "garnish-1", "Mixed Seeds", GARNISH, "seeds", (50, 2, 2, 4, 2, 5), 10,
    allergens=(Allergen.sesame,),
)
LIME_WEDGE = _ingredient("garnish-2", "Lime Wedge", GARNISH, "citrus", (5, 0, 2, 0, 0, 0), 15)

INGREDIENTS: tuple[Ingredient, ...] = (
    BROWN_RICE, QUINOA, CAULI_LENTIL_RICE, MIXED_GREENS,
    LEMONGRASS_CHICKEN, STEAK, SALMON, FALAFELS, BASIL_TOFU,
    PUMPKIN, CORN, CABBAGE, MUSHROOMS, ONSEN_EGG, FETA,
    SWEET_POTATO_DIP, GREEN_GODDESS, BEETROOT_MISO,
    MIXED_SEEDS, LIME_WEDGE,
)


def _bowl(id: str, name: str, description: str, **slots) -> BowlComposition:
    parts = [slots.get("base"), slots.get("protein"), slots.get("sauce"), slots.get("garnish")]
    parts.extend(slots.get("sides", ()))
    weight = sum(p.weight for p in parts if p is not None)
    return BowlComposition(id=id, name=name, description=description, total_weight=weight, **slots)


SIGNATURE_BOWLS: tuple[BowlComposition, ...] = (
    _bowl(
        "signature-1", "Kampong Table",
        "Roasted lemongrass chicken, brown rice, onsen egg, cabbage salad and lime",
        base=BROWN_RICE, protein=LEMONGRASS_CHICKEN, sides=(CABBAGE, ONSEN_EGG),
        sauce=SWEET_POTATO_DIP, garnish=LIME_WEDGE,
        total_price=1690, tags=("High Protein", "Asian Fusion"), rating=4.8, is_signature=True,
    ),
    _bowl(
        "signature-2", "Muscle Beach",
        "Chicken, tri-colour quinoa, roasted pumpkin, charred corn and mixed seeds",
        base=QUINOA, protein=LEMONGRASS_CHICKEN, sides=(PUMPKIN, CORN),
        sauce=SWEET_POTATO_DIP, garnish=MIXED_SEEDS,
        total_price=1850, tags=("High Protein", "Fitness"), rating=4.9, is_signature=True,
    ),
    _bowl(
        "signature-3", "Shibuya Nights",
        "Baked salmon, cauliflower lentil rice, mushrooms, onsen egg and beetroot miso",
        base=CAULI_LENTIL_RICE, protein=SALMON, sides=(MUSHROOMS, ONSEN_EGG, CABBAGE),
        sauce=BEETROOT_MISO, garnish=MIXED_SEEDS,
        total_price=1650, tags=("Omega-3", "Japanese"), rating=4.8, is_signature=True,
    ),
    _bowl(
        "signature-4", "Garden Tofu",
        "Basil tofu on brown rice with pumpkin, mushrooms and green goddess",
        base=BROWN_RICE, protein=BASIL_TOFU, sides=(PUMPKIN, MUSHROOMS),
        sauce=GREEN_GODDESS, garnish=LIME_WEDGE,
        total_price=1490, tags=("Vegan", "Plant Protein"), rating=4.6, is_signature=True,
    ),
    _bowl(
        "signature-5", "Steakhouse Greens",
        "Char-grilled steak over mixed greens with mushrooms and feta",
        base=MIXED_GREENS, protein=STEAK, sides=(MUSHROOMS, FETA),
        sauce=GREEN_GODDESS, garnish=LIME_WEDGE,
        total_price=1990, tags=("Low Carb",), rating=4.7, is_signature=True,
    ),
)

# Allergen-free by construction so the terminal tier can always serve one.
EMERGENCY_BOWLS: tuple[BowlComposition, ...] = (
    _bowl(
        "emergency-fallback-bowl", "Build Your Own Bowl",
        "Start with our popular grain base and customise to your taste",
        base=BROWN_RICE, total_price=800,
    ),
    _bowl(
        "emergency-greens-bowl", "Build Your Own Greens",
        "A light mixed greens base to customise to your taste",
        base=MIXED_GREENS, garnish=LIME_WEDGE, total_price=800,
    ),
)

# (bowl_id, location_id, quantity): recent order lines used to rank best sellers.
ORDER_HISTORY: tuple[tuple[str, str, int], ...] = (
    ("signature-2", "heybo-raffles", 42),
    ("signature-1", "heybo-raffles", 35),
    ("signature-4", "heybo-raffles", 18),
    ("signature-3", "heybo-raffles", 12),
    ("signature-1", "heybo-orchard", 27),
    ("signature-5", "heybo-orchard", 25),
    ("signature-2", "heybo-orchard", 14),
    ("signature-4", "heybo-orchard", 9),
)
