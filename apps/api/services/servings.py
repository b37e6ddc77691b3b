"""
Serving rescaler for generated dish groups.

Changing a dish group's servings multiplies every numeric amount of the
group by target / current and records the new multiplier. Item amounts
and the multiplier are written in one transaction guarded by the state
version, so either everything is stored or nothing is.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import ShoppingListItem
from repositories.shopping_list import ShoppingListRepository
from services.change_feed import ChangeFeed, ShoppingListChange, change_feed
from services.context import HouseholdContext
from services.dish_groups import DishGroupKey, ServingsMap
from services.errors import InvalidServingsError, PersistenceError, StaleStateError

logger = logging.getLogger(__name__)

SERVINGS_TOLERANCE = 1e-4
MIN_AMOUNT = 0.01
AMOUNT_PRECISION = 2


def validate_servings(value: Union[int, float, str]) -> float:
    """Parse a serving multiplier, rejecting anything but a finite number > 0."""
    operation = "validate servings"
    if isinstance(value, bool):
        raise InvalidServingsError(operation, f"Invalid servings value: {value!r}")
    try:
        servings = float(value)
    except (TypeError, ValueError):
        raise InvalidServingsError(operation, f"Invalid servings value: {value!r}")
    if not math.isfinite(servings) or servings <= 0:
        raise InvalidServingsError(operation, f"Servings must be a positive number, got {value!r}")
    return servings


def scale_amount(amount: float, scale: float) -> float:
    return max(MIN_AMOUNT, round(amount * scale, AMOUNT_PRECISION))


@dataclass
class RescaleResult:
    group: DishGroupKey
    previous_servings: float
    servings: float
    changed: bool
    items: List[ShoppingListItem] = field(default_factory=list)
    state_version: Optional[int] = None


class ServingRescaler:
    """Rescales the ingredient amounts of one dish group."""

    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        """Initialize with database session and the change feed to notify."""
        self.list_repo = ShoppingListRepository(db)
        self.feed = feed or change_feed

    def current_servings(self, context: HouseholdContext, group: DishGroupKey) -> float:
        state = self.list_repo.get_state(context.household_id)
        return ServingsMap.from_json(state.meal_servings if state else None).get(group)

    def rescale(
        self,
        context: HouseholdContext,
        group: DishGroupKey,
        target: Union[int, float, str],
        expected_version: Optional[int] = None,
    ) -> RescaleResult:
        """
        Set a dish group's servings and scale its amounts proportionally.

        Args:
            context: Household and calling member
            group: Dish group to rescale
            target: New serving multiplier (> 0)
            expected_version: State version the caller last saw; a mismatch
                is reported as stale instead of overwriting newer data

        Returns:
            RescaleResult; changed is False when target equals the current
            multiplier within tolerance

        Raises:
            InvalidServingsError: target is not a positive finite number
            StaleStateError: state changed since it was read
            PersistenceError: the store rejected a write; nothing was applied
        """
        operation = "rescale dish servings"
        servings = validate_servings(target)

        try:
            state = self.list_repo.get_state(context.household_id)
        except SQLAlchemyError as e:
            raise PersistenceError("load shopping list state", str(e), e) from e

        read_version = state.version if state else None
        if expected_version is not None and expected_version != (read_version or 0):
            raise StaleStateError(
                operation,
                f"Shopping list state is at version {read_version or 0}, not {expected_version}",
            )

        servings_map = ServingsMap.from_json(state.meal_servings if state else None)
        current = servings_map.get(group)

        if abs(servings - current) < SERVINGS_TOLERANCE:
            return RescaleResult(
                group=group,
                previous_servings=current,
                servings=current,
                changed=False,
                state_version=read_version,
            )

        scale = servings / current
        logger.info(
            f"Rescaling dish {group.meal_id} for user {group.source_user_id} "
            f"from {current} to {servings} servings (x{scale:.4f})"
        )

        try:
            items = self.list_repo.get_dish_items(
                context.household_id, group.meal_id, group.source_user_id
            )
            scaled = [item for item in items if not item.custom_amount_text]
            for item in scaled:
                item.amount = scale_amount(item.amount, scale)

            stored = self.list_repo.patch_servings(
                context.household_id,
                servings_map.with_servings(group, servings).to_json(),
                read_version,
                context.user_id,
            )
            if not stored:
                self.list_repo.rollback()
                raise StaleStateError(
                    operation, "Shopping list state was changed by another member; reload and retry"
                )
            self.list_repo.commit()
        except IntegrityError as e:
            self.list_repo.rollback()
            raise StaleStateError(
                operation, "Shopping list state was created concurrently; reload and retry", e
            ) from e
        except SQLAlchemyError as e:
            self.list_repo.rollback()
            logger.error(f"Failed to rescale dish {group.meal_id}: {e}", exc_info=True)
            raise PersistenceError(operation, str(e), e) from e

        new_version = (read_version or 0) + 1
        if scaled:
            self.feed.publish(
                ShoppingListChange(
                    context.household_id, "items", "update", {"updated": len(scaled)}
                )
            )
        self.feed.publish(
            ShoppingListChange(context.household_id, "state", "update", {"version": new_version})
        )

        return RescaleResult(
            group=group,
            previous_servings=current,
            servings=servings,
            changed=True,
            items=scaled,
            state_version=new_version,
        )
