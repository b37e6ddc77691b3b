"""
Ingredient resolution for a meal eaten by a specific household member.
"""
import logging
from dataclasses import dataclass
from typing import List, Literal, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from db.models import Product
from repositories.meals import MealRepository

logger = logging.getLogger(__name__)


@dataclass
class ResolvedIngredient:
    """One effective ingredient of a meal for a member."""

    product_id: UUID
    product: Optional[Product]
    amount: float
    unit_type: str
    source: Literal["override", "base"]


class IngredientResolver:
    """Picks a member's override list or the meal's base items."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.meal_repo = MealRepository(db)

    def resolve(self, meal_id: UUID, user_id: UUID) -> List[ResolvedIngredient]:
        """
        Effective ingredient list of a meal for a member.

        Any override row for (meal_id, user_id) makes the override list the
        whole answer. Base items are then ignored entirely, even ones the
        override does not mention.

        Args:
            meal_id: Meal UUID
            user_id: Member UUID

        Returns:
            List of ResolvedIngredient in stored order
        """
        overrides = self.meal_repo.get_overrides(meal_id, user_id)
        if overrides:
            logger.debug(f"Using {len(overrides)} override rows for meal {meal_id}, user {user_id}")
            return [
                ResolvedIngredient(
                    product_id=row.product_id,
                    product=row.product,
                    amount=row.amount,
                    unit_type=row.unit_type,
                    source="override",
                )
                for row in overrides
            ]

        return [
            ResolvedIngredient(
                product_id=row.product_id,
                product=row.product,
                amount=row.amount,
                unit_type=row.unit_type,
                source="base",
            )
            for row in self.meal_repo.get_base_items(meal_id)
        ]
