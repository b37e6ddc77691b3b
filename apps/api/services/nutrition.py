"""
Nutrition math for products measured in preferred units.

Nutrient values are stored per 100 g; an amount is expressed in the
product's preferred unit, whose weight in grams is unit_weight_grams.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

DEFAULT_UNIT_WEIGHTS = {
    "100g": 1.0,
    "tablespoon": 15.0,
    "teaspoon": 5.0,
    "piece": 100.0,
}


def default_unit_weight(unit_type: Optional[str]) -> float:
    """Gram weight assumed for one unit when a product does not set one."""
    return DEFAULT_UNIT_WEIGHTS.get(unit_type or "100g", DEFAULT_UNIT_WEIGHTS["piece"])


def calculate_nutrition(
    amount: float,
    unit_weight_grams: Optional[float],
    value_per_100g: float,
    fallback_weight: float = 1.0,
) -> float:
    """
    Absolute nutrient amount for a quantity of a product.

    Args:
        amount: Quantity in the product's unit
        unit_weight_grams: Grams per unit, None when unknown
        value_per_100g: Nutrient value per 100 g
        fallback_weight: Grams per unit to use when unit_weight_grams is missing

    Returns:
        amount * unit weight / 100 * value_per_100g
    """
    weight = unit_weight_grams if unit_weight_grams else fallback_weight
    return (amount * weight) / 100 * value_per_100g


def item_weight_grams(amount: float, product) -> float:
    """Gram weight of an amount of a product, for display next to the unit amount."""
    if product is None:
        return amount
    weight = product.unit_weight_grams or default_unit_weight(product.unit_type)
    return amount * weight


@dataclass
class NutritionTotals:
    kcal: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    carbs: float = 0.0

    def rounded(self, digits: int = 1) -> "NutritionTotals":
        return NutritionTotals(
            kcal=round(self.kcal, digits),
            protein=round(self.protein, digits),
            fat=round(self.fat, digits),
            carbs=round(self.carbs, digits),
        )


def meal_nutrition(ingredients: Iterable, servings: float = 1.0) -> NutritionTotals:
    """
    Total nutrition of a resolved ingredient list.

    Each ingredient needs `amount` and `product`; ingredients without a
    product are ignored. Missing macro values count as zero.
    """
    totals = NutritionTotals()
    for ingredient in ingredients:
        product = ingredient.product
        if product is None:
            continue
        amount = ingredient.amount * servings
        fallback = default_unit_weight(product.unit_type)
        weight = product.unit_weight_grams

        totals.kcal += calculate_nutrition(amount, weight, product.kcal_per_unit, fallback)
        totals.protein += calculate_nutrition(amount, weight, product.protein or 0, fallback)
        totals.fat += calculate_nutrition(amount, weight, product.fat or 0, fallback)
        totals.carbs += calculate_nutrition(amount, weight, product.carbs or 0, fallback)
    return totals
