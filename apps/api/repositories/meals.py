"""
Meal repository: meals, their base items and per-member overrides.
"""
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from db.models import Meal, MealItem, MealItemOverride


class MealRepository:
    """Repository for Meal CRUD and ingredient lists."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def create(
        self,
        household_id: UUID,
        name: str,
        user_id: Optional[UUID] = None,
        description: Optional[str] = None,
        primary_category: Optional[str] = None,
        alternative_categories: Optional[list] = None,
        items: Optional[Iterable[dict]] = None,
    ) -> Meal:
        """
        Create a meal with its base items.

        Args:
            household_id: Household UUID
            name: Meal name
            user_id: Author user UUID
            description: Optional description
            primary_category: Main meal category
            alternative_categories: Other categories the meal fits
            items: Base items as dicts with product_id, amount, unit_type

        Returns:
            Created Meal object
        """
        meal = Meal(
            household_id=household_id,
            user_id=user_id,
            name=name,
            description=description,
            primary_category=primary_category,
            alternative_categories=list(alternative_categories or []),
        )
        meal.items = [self._build_item(item) for item in items or []]
        self.db.add(meal)
        self.db.commit()
        self.db.refresh(meal)
        return meal

    @staticmethod
    def _build_item(item: dict) -> MealItem:
        return MealItem(
            product_id=item["product_id"],
            amount=item["amount"],
            unit_type=item.get("unit_type") or "100g",
        )

    def get_by_id(self, household_id: UUID, meal_id: UUID) -> Optional[Meal]:
        """Get meal by ID with household isolation."""
        return (
            self.db.query(Meal)
            .options(selectinload(Meal.items).selectinload(MealItem.product))
            .filter_by(id=meal_id, household_id=household_id)
            .first()
        )

    def get_all(
        self,
        household_id: UUID,
        category: Optional[str] = None,
        query: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[List[Meal], int]:
        """
        Get all meals for a household.

        Category filtering matches the primary category or any alternative
        category; alternatives live in a JSON column so that part runs in Python.
        """
        q = self.db.query(Meal).filter_by(household_id=household_id)

        if query:
            q = q.filter(Meal.name.ilike(f"%{query}%"))

        q = q.order_by(Meal.name)

        if category:
            meals = [
                m
                for m in q.all()
                if m.primary_category == category or category in (m.alternative_categories or [])
            ]
            return meals[skip : skip + limit], len(meals)

        total = q.count()
        return q.offset(skip).limit(limit).all(), total

    def update(self, household_id: UUID, meal_id: UUID, **kwargs) -> Optional[Meal]:
        """Update meal fields. Returns None if not found."""
        meal = self.get_by_id(household_id, meal_id)
        if not meal:
            return None

        allowed_fields = {"name", "description", "primary_category", "alternative_categories"}
        for key, value in kwargs.items():
            if key in allowed_fields:
                setattr(meal, key, value)

        self.db.commit()
        self.db.refresh(meal)
        return meal

    def replace_items(
        self, household_id: UUID, meal_id: UUID, items: Iterable[dict]
    ) -> Optional[Meal]:
        """Replace the base item list of a meal."""
        meal = self.get_by_id(household_id, meal_id)
        if not meal:
            return None

        meal.items = [self._build_item(item) for item in items]
        self.db.commit()
        self.db.refresh(meal)
        return meal

    def delete(self, household_id: UUID, meal_id: UUID) -> bool:
        """Delete a meal with its items and overrides."""
        meal = self.get_by_id(household_id, meal_id)
        if not meal:
            return False

        self.db.delete(meal)
        self.db.commit()
        return True

    def get_base_items(self, meal_id: UUID) -> List[MealItem]:
        """Base items of a meal with products loaded."""
        return (
            self.db.query(MealItem)
            .options(selectinload(MealItem.product))
            .filter_by(meal_id=meal_id)
            .order_by(MealItem.created_at)
            .all()
        )

    def get_overrides(self, meal_id: UUID, user_id: UUID) -> List[MealItemOverride]:
        """Override rows of one member for a meal, products loaded."""
        return (
            self.db.query(MealItemOverride)
            .options(selectinload(MealItemOverride.product))
            .filter_by(meal_id=meal_id, user_id=user_id)
            .order_by(MealItemOverride.created_at)
            .all()
        )

    def users_with_overrides(self, meal_id: UUID) -> List[UUID]:
        """Members that have an override list for the meal."""
        rows = (
            self.db.query(MealItemOverride.user_id)
            .filter_by(meal_id=meal_id)
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def replace_overrides(
        self,
        household_id: UUID,
        meal_id: UUID,
        user_id: UUID,
        items: Iterable[dict],
    ) -> Optional[List[MealItemOverride]]:
        """
        Replace a member's override list for a meal.

        An empty list removes the override, so the member falls back to the
        base items.

        Returns:
            New override rows, or None if the meal does not exist
        """
        meal = self.get_by_id(household_id, meal_id)
        if not meal:
            return None

        self.db.query(MealItemOverride).filter_by(meal_id=meal_id, user_id=user_id).delete(
            synchronize_session="fetch"
        )
        overrides = [
            MealItemOverride(
                meal_id=meal_id,
                user_id=user_id,
                product_id=item["product_id"],
                amount=item["amount"],
                unit_type=item.get("unit_type") or "100g",
            )
            for item in items
        ]
        self.db.add_all(overrides)
        self.db.commit()
        return self.get_overrides(meal_id, user_id)

    def clear_overrides(self, household_id: UUID, meal_id: UUID, user_id: UUID) -> Optional[int]:
        """Remove a member's override list. Returns rows deleted or None if no meal."""
        meal = self.get_by_id(household_id, meal_id)
        if not meal:
            return None

        deleted = self.db.query(MealItemOverride).filter_by(meal_id=meal_id, user_id=user_id).delete(
            synchronize_session="fetch"
        )
        self.db.commit()
        return deleted
