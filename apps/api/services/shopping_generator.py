"""
Shopping list generation from planned meals.

Pipeline, strictly in order:
1. Load meal plan entries of the selected members in the date range
2. Resolve every entry's ingredients (override list or base items)
3. Sum amounts per (meal, member, product) bucket
4. Replace the household's list after the caller confirmed
5. Store the generated range and baseline serving multipliers
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import Product, ShoppingListItem
from repositories.meal_plans import MealPlanRepository
from repositories.shopping_list import ShoppingListRepository
from services.change_feed import ChangeFeed, ShoppingListChange, change_feed
from services.context import HouseholdContext
from services.dish_groups import DishGroupKey, ServingsMap
from services.errors import InvalidRequestError, PersistenceError
from services.ingredients import IngredientResolver

logger = logging.getLogger(__name__)

# Intermediate sums keep 4 places, stored amounts 2
SUM_PRECISION = 4
AMOUNT_PRECISION = 2

BucketKey = Tuple[UUID, UUID, UUID]  # (meal_id, source_user_id, product_id)


@dataclass
class AggregatedIngredient:
    """Summed quantity of one product within one dish group."""

    meal_id: UUID
    source_user_id: UUID
    product: Product
    amount: float
    unit_type: str

    @property
    def group_key(self) -> DishGroupKey:
        return DishGroupKey(self.meal_id, self.source_user_id)


@dataclass
class GenerationResult:
    """
    Outcome of a generation request.

    status is one of:
        generated              list replaced with new items
        no_meal_plans          nothing planned for the selection
        no_ingredients         planned meals resolved to no ingredients
        confirmation_required  list not empty, caller must decide
        declined               caller chose to keep the existing list
    """

    status: str
    message: str
    items: List[ShoppingListItem] = field(default_factory=list)
    servings: ServingsMap = field(default_factory=ServingsMap)
    existing_item_count: int = 0
    removed_item_count: int = 0
    state_version: Optional[int] = None

    @property
    def generated(self) -> bool:
        return self.status == "generated"


def aggregate_ingredients(
    resolved: Iterable[Tuple[UUID, UUID, Iterable]],
) -> Tuple[List[AggregatedIngredient], Dict[DishGroupKey, int]]:
    """
    Sum resolved ingredients per (meal, member, product).

    Args:
        resolved: (meal_id, user_id, ingredients) per meal plan entry, in order

    Returns:
        Aggregated buckets in first-seen order, and per dish group the number
        of entries that contributed at least one ingredient
    """
    buckets: Dict[BucketKey, AggregatedIngredient] = {}
    occurrences: Counter = Counter()

    for meal_id, user_id, ingredients in resolved:
        contributed = False
        for ingredient in ingredients:
            if ingredient.product is None:
                logger.warning(
                    f"Skipping ingredient of meal {meal_id} with missing product {ingredient.product_id}"
                )
                continue
            contributed = True
            key = (meal_id, user_id, ingredient.product_id)
            bucket = buckets.get(key)
            if bucket is None:
                buckets[key] = AggregatedIngredient(
                    meal_id=meal_id,
                    source_user_id=user_id,
                    product=ingredient.product,
                    amount=round(ingredient.amount, SUM_PRECISION),
                    unit_type=ingredient.unit_type,
                )
            else:
                bucket.amount = round(bucket.amount + ingredient.amount, SUM_PRECISION)

        if contributed:
            occurrences[DishGroupKey(meal_id, user_id)] += 1

    return list(buckets.values()), dict(occurrences)


class ShoppingListGenerator:
    """Builds a household shopping list from the meal plan."""

    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        """Initialize with database session and the change feed to notify."""
        self.db = db
        self.plan_repo = MealPlanRepository(db)
        self.list_repo = ShoppingListRepository(db)
        self.resolver = IngredientResolver(db)
        self.feed = feed or change_feed

    def generate(
        self,
        context: HouseholdContext,
        member_ids: Iterable[UUID],
        start_date: date,
        end_date: date,
        replace_existing: Optional[bool] = None,
    ) -> GenerationResult:
        """
        Generate the shopping list for selected members over a date range.

        Args:
            context: Household and calling member
            member_ids: Members whose planned meals are included (non-empty)
            start_date: First day (inclusive)
            end_date: Last day (inclusive)
            replace_existing: Answer to "clear the current list?". None means
                not asked yet; False keeps the current list and generates nothing.

        Returns:
            GenerationResult describing what happened

        Raises:
            InvalidRequestError: empty member selection or reversed range
            PersistenceError: a read or write against the store failed
        """
        operation = "generate shopping list"
        members = list(dict.fromkeys(member_ids))
        if not members:
            raise InvalidRequestError(operation, "Select at least one household member")
        if start_date > end_date:
            raise InvalidRequestError(operation, "start_date must not be after end_date")

        logger.info(
            f"Generating shopping list for household {context.household_id}: "
            f"{len(members)} members, {start_date}..{end_date}"
        )

        try:
            entries = self.plan_repo.get_for_members(
                context.household_id, members, start_date, end_date
            )
        except SQLAlchemyError as e:
            raise PersistenceError("load meal plan", str(e), e) from e

        if not entries:
            logger.info(f"No planned meals for household {context.household_id} in range")
            return GenerationResult(
                status="no_meal_plans",
                message="No meals planned for the selected members and dates",
            )

        try:
            resolved = [
                (entry.meal_id, entry.user_id, self.resolver.resolve(entry.meal_id, entry.user_id))
                for entry in entries
            ]
        except SQLAlchemyError as e:
            raise PersistenceError("resolve meal ingredients", str(e), e) from e

        aggregated, occurrences = aggregate_ingredients(resolved)
        if not aggregated:
            logger.info(f"Planned meals of household {context.household_id} have no ingredients")
            return GenerationResult(
                status="no_ingredients",
                message="The planned meals have no ingredients",
            )

        try:
            existing = self.list_repo.count_items(context.household_id)
        except SQLAlchemyError as e:
            raise PersistenceError("count shopping list items", str(e), e) from e

        if existing and replace_existing is None:
            return GenerationResult(
                status="confirmation_required",
                message=f"The shopping list already has {existing} items. Clear it before generating?",
                existing_item_count=existing,
            )
        if existing and replace_existing is False:
            logger.info(f"Generation declined for household {context.household_id}; list kept")
            return GenerationResult(
                status="declined",
                message="Existing shopping list kept; nothing generated",
                existing_item_count=existing,
            )

        items, removed = self._replace_items(context, aggregated)

        servings = ServingsMap(
            {key: float(count) for key, count in occurrences.items()}
        )
        state = self._store_state(context, start_date, end_date, servings)

        self.feed.publish(
            ShoppingListChange(
                context.household_id, "items", "replace", {"inserted": len(items), "deleted": removed}
            )
        )
        self.feed.publish(
            ShoppingListChange(context.household_id, "state", "update", {"version": state.version})
        )

        logger.info(
            f"Generated {len(items)} shopping list items for household {context.household_id} "
            f"({removed} removed)"
        )
        return GenerationResult(
            status="generated",
            message=f"Shopping list generated with {len(items)} items",
            items=items,
            servings=servings,
            existing_item_count=existing,
            removed_item_count=removed,
            state_version=state.version,
        )

    def _replace_items(
        self, context: HouseholdContext, aggregated: List[AggregatedIngredient]
    ) -> Tuple[List[ShoppingListItem], int]:
        """Delete the current list and insert the aggregated buckets in one transaction."""
        rows = [
            {
                "meal_id": bucket.meal_id,
                "source_user_id": bucket.source_user_id,
                "product_id": bucket.product.id,
                "name": bucket.product.name,
                "amount": round(bucket.amount, AMOUNT_PRECISION),
                "unit_type": bucket.unit_type,
                "custom_amount_text": None,
                "is_checked": False,
                "added_by": context.user_id,
            }
            for bucket in aggregated
        ]
        try:
            removed = self.list_repo.delete_all(context.household_id)
            items = self.list_repo.add_items(context.household_id, rows)
            self.list_repo.commit()
        except SQLAlchemyError as e:
            self.list_repo.rollback()
            logger.error(f"Failed to write shopping list items: {e}", exc_info=True)
            raise PersistenceError("insert shopping list items", str(e), e) from e
        return items, removed

    def _store_state(
        self,
        context: HouseholdContext,
        start_date: date,
        end_date: date,
        servings: ServingsMap,
    ):
        """Record the generated range and replace the servings map."""
        try:
            state = self.list_repo.replace_state(
                context.household_id, start_date, end_date, servings.to_json(), context.user_id
            )
            self.list_repo.commit()
        except SQLAlchemyError as e:
            self.list_repo.rollback()
            logger.error(f"Failed to store shopping list state: {e}", exc_info=True)
            raise PersistenceError("store shopping list state", str(e), e) from e
        return state
