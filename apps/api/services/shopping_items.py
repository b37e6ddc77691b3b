"""
Item-level shopping list operations: custom items, check toggling and
deletions. Each operation is one transaction; on failure it is rolled
back so no in-memory row runs ahead of the store.
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import ShoppingListItem, ShoppingListState
from repositories.shopping_list import ShoppingListRepository
from services.change_feed import ChangeFeed, ShoppingListChange, change_feed
from services.context import HouseholdContext
from services.dish_groups import DishGroupKey, ServingsMap
from services.errors import InvalidRequestError, PersistenceError, StaleStateError

logger = logging.getLogger(__name__)

CUSTOM_AMOUNT_PLACEHOLDER = 1.0


def parse_amount_text(text: Optional[str]) -> Tuple[float, Optional[str]]:
    """
    Split user input into a numeric amount or free-form amount text.

    "2" and "1,5" become amounts; "a handful" is kept as text with a
    placeholder amount. Empty input means one unit.
    """
    value = (text or "").strip()
    if not value:
        return CUSTOM_AMOUNT_PLACEHOLDER, None
    try:
        amount = float(value.replace(",", "."))
    except ValueError:
        return CUSTOM_AMOUNT_PLACEHOLDER, value
    if not math.isfinite(amount) or amount <= 0:
        return CUSTOM_AMOUNT_PLACEHOLDER, value
    return amount, None


@dataclass
class ShoppingListSnapshot:
    items: List[ShoppingListItem]
    state: Optional[ShoppingListState]
    servings: ServingsMap

    @property
    def version(self) -> int:
        return self.state.version if self.state else 0


class ShoppingListService:
    """Reads and item mutations for a household shopping list."""

    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        """Initialize with database session and the change feed to notify."""
        self.list_repo = ShoppingListRepository(db)
        self.feed = feed or change_feed

    def snapshot(self, context: HouseholdContext) -> ShoppingListSnapshot:
        """Current items, state row and parsed servings map."""
        try:
            items = self.list_repo.list_items(context.household_id)
            state = self.list_repo.get_state(context.household_id)
        except SQLAlchemyError as e:
            raise PersistenceError("load shopping list", str(e), e) from e
        return ShoppingListSnapshot(
            items=items,
            state=state,
            servings=ServingsMap.from_json(state.meal_servings if state else None),
        )

    def _commit(self, operation: str) -> None:
        try:
            self.list_repo.commit()
        except SQLAlchemyError as e:
            self.list_repo.rollback()
            logger.error(f"Failed to {operation}: {e}", exc_info=True)
            raise PersistenceError(operation, str(e), e) from e

    def _run(self, operation: str, action):
        try:
            result = action()
        except SQLAlchemyError as e:
            self.list_repo.rollback()
            logger.error(f"Failed to {operation}: {e}", exc_info=True)
            raise PersistenceError(operation, str(e), e) from e
        self._commit(operation)
        return result

    def add_custom_item(
        self, context: HouseholdContext, name: str, amount_text: Optional[str] = None
    ) -> ShoppingListItem:
        """Add a hand-written item without product or dish."""
        operation = "add shopping list item"
        clean_name = (name or "").strip()
        if not clean_name:
            raise InvalidRequestError(operation, "Item name is required")

        amount, custom_text = parse_amount_text(amount_text)
        item = self._run(
            operation,
            lambda: self.list_repo.add_item(
                context.household_id,
                name=clean_name,
                amount=amount,
                custom_amount_text=custom_text,
                is_checked=False,
                added_by=context.user_id,
            ),
        )
        self.feed.publish(
            ShoppingListChange(context.household_id, "items", "insert", {"id": str(item.id)})
        )
        return item

    def set_checked(
        self, context: HouseholdContext, item_ids: Iterable[UUID], checked: bool
    ) -> int:
        """Apply one check state to every row of a group in a single update."""
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return 0
        updated = self._run(
            "update checked state",
            lambda: self.list_repo.set_checked(context.household_id, ids, checked, context.user_id),
        )
        self.feed.publish(
            ShoppingListChange(
                context.household_id, "items", "update", {"checked": checked, "count": updated}
            )
        )
        return updated

    def toggle(self, context: HouseholdContext, item_ids: Iterable[UUID]) -> Tuple[bool, int]:
        """
        Flip a group's check state.

        The group counts as checked only when every row is checked, so a
        mixed group becomes fully checked.

        Returns:
            Tuple of (new check state, rows updated)
        """
        ids = list(dict.fromkeys(item_ids))
        try:
            items = self.list_repo.get_items_by_ids(context.household_id, ids)
        except SQLAlchemyError as e:
            raise PersistenceError("load shopping list items", str(e), e) from e
        if not items:
            raise InvalidRequestError("toggle items", "No matching shopping list items")

        new_state = not all(item.is_checked for item in items)
        updated = self.set_checked(context, [item.id for item in items], new_state)
        return new_state, updated

    def delete_items(self, context: HouseholdContext, item_ids: Iterable[UUID]) -> int:
        """Delete every row of a product group."""
        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return 0
        deleted = self._run(
            "delete shopping list items",
            lambda: self.list_repo.delete_ids(context.household_id, ids),
        )
        self.feed.publish(
            ShoppingListChange(context.household_id, "items", "delete", {"count": deleted})
        )
        return deleted

    def clear_checked(self, context: HouseholdContext) -> int:
        """Delete all checked rows."""
        deleted = self._run(
            "clear checked items",
            lambda: self.list_repo.delete_ids(
                context.household_id, self.list_repo.checked_item_ids(context.household_id)
            ),
        )
        if deleted:
            self.feed.publish(
                ShoppingListChange(context.household_id, "items", "delete", {"count": deleted})
            )
        return deleted

    def delete_dish_group(self, context: HouseholdContext, group: DishGroupKey) -> int:
        """
        Delete a dish group's rows and forget its serving multiplier.

        Rows and multiplier go in one transaction guarded by the state version.
        """
        operation = "delete dish group"

        def action() -> int:
            items = self.list_repo.get_dish_items(
                context.household_id, group.meal_id, group.source_user_id
            )
            deleted = self.list_repo.delete_ids(context.household_id, [item.id for item in items])
            state = self.list_repo.get_state(context.household_id)
            if state is not None:
                servings = ServingsMap.from_json(state.meal_servings).without(group)
                if not self.list_repo.patch_servings(
                    context.household_id, servings.to_json(), state.version, context.user_id
                ):
                    raise StaleStateError(
                        operation, "Shopping list state was changed by another member; reload and retry"
                    )
            return deleted

        try:
            deleted = self._run(operation, action)
        except StaleStateError:
            self.list_repo.rollback()
            raise

        self.feed.publish(
            ShoppingListChange(context.household_id, "items", "delete", {"count": deleted})
        )
        self.feed.publish(ShoppingListChange(context.household_id, "state", "update", {}))
        return deleted
