"""
Shopping list repository for items and the per-household list state.

Unlike the catalog repositories, write methods here only stage changes
in the session. The shopping-list services decide where a transaction
ends and call commit() or rollback().
"""
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from db.models import ShoppingListItem, ShoppingListState


class ShoppingListRepository:
    """Repository for ShoppingListItem rows and ShoppingListState."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def list_items(self, household_id: UUID) -> List[ShoppingListItem]:
        """All items of a household with product and meal loaded, newest first."""
        return (
            self.db.query(ShoppingListItem)
            .options(
                selectinload(ShoppingListItem.product),
                selectinload(ShoppingListItem.meal),
            )
            .filter_by(household_id=household_id)
            .order_by(ShoppingListItem.created_at.desc(), ShoppingListItem.id)
            .all()
        )

    def count_items(self, household_id: UUID) -> int:
        """Number of items currently on the list."""
        return self.db.query(ShoppingListItem).filter_by(household_id=household_id).count()

    def get_items_by_ids(self, household_id: UUID, item_ids: Iterable[UUID]) -> List[ShoppingListItem]:
        """Items of a household restricted to an id set."""
        ids = list(item_ids)
        if not ids:
            return []
        return (
            self.db.query(ShoppingListItem)
            .filter(ShoppingListItem.household_id == household_id, ShoppingListItem.id.in_(ids))
            .all()
        )

    def get_dish_items(
        self, household_id: UUID, meal_id: UUID, source_user_id: Optional[UUID]
    ) -> List[ShoppingListItem]:
        """Items generated for one (meal, member) dish group."""
        return (
            self.db.query(ShoppingListItem)
            .filter_by(household_id=household_id, meal_id=meal_id, source_user_id=source_user_id)
            .order_by(ShoppingListItem.id)
            .all()
        )

    def add_item(self, household_id: UUID, **fields) -> ShoppingListItem:
        """Stage a new item."""
        item = ShoppingListItem(household_id=household_id, **fields)
        self.db.add(item)
        return item

    def add_items(self, household_id: UUID, rows: Iterable[dict]) -> List[ShoppingListItem]:
        """Stage several new items."""
        items = [ShoppingListItem(household_id=household_id, **row) for row in rows]
        self.db.add_all(items)
        return items

    def delete_all(self, household_id: UUID) -> int:
        """Stage deletion of every item of a household."""
        return (
            self.db.query(ShoppingListItem)
            .filter_by(household_id=household_id)
            .delete(synchronize_session="fetch")
        )

    def delete_ids(self, household_id: UUID, item_ids: Iterable[UUID]) -> int:
        """Stage deletion of an id set."""
        ids = list(item_ids)
        if not ids:
            return 0
        return (
            self.db.query(ShoppingListItem)
            .filter(ShoppingListItem.household_id == household_id, ShoppingListItem.id.in_(ids))
            .delete(synchronize_session="fetch")
        )

    def checked_item_ids(self, household_id: UUID) -> List[UUID]:
        """Ids of all checked items."""
        rows = (
            self.db.query(ShoppingListItem.id)
            .filter_by(household_id=household_id, is_checked=True)
            .all()
        )
        return [row[0] for row in rows]

    def set_checked(
        self,
        household_id: UUID,
        item_ids: Iterable[UUID],
        checked: bool,
        user_id: Optional[UUID] = None,
    ) -> int:
        """
        Stage one batched check-state update for an id set.

        Returns:
            Number of rows matched
        """
        ids = list(item_ids)
        if not ids:
            return 0
        return (
            self.db.query(ShoppingListItem)
            .filter(ShoppingListItem.household_id == household_id, ShoppingListItem.id.in_(ids))
            .update(
                {
                    ShoppingListItem.is_checked: checked,
                    ShoppingListItem.checked_at: datetime.now(timezone.utc) if checked else None,
                    ShoppingListItem.checked_by: user_id if checked else None,
                },
                synchronize_session="fetch",
            )
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_state(self, household_id: UUID) -> Optional[ShoppingListState]:
        """The state row of a household, if any."""
        return self.db.query(ShoppingListState).filter_by(household_id=household_id).first()

    def replace_state(
        self,
        household_id: UUID,
        start_date: date,
        end_date: date,
        meal_servings: list,
        user_id: Optional[UUID] = None,
    ) -> ShoppingListState:
        """
        Stage an upsert of the state after a generation.

        The servings map is replaced wholesale and the version bumped.
        """
        state = self.get_state(household_id)
        if state is None:
            state = ShoppingListState(household_id=household_id, version=0)
            self.db.add(state)

        state.generated_start_date = start_date
        state.generated_end_date = end_date
        state.meal_servings = meal_servings
        state.version = (state.version or 0) + 1
        state.updated_by = user_id
        return state

    def patch_servings(
        self,
        household_id: UUID,
        meal_servings: list | dict,
        read_version: Optional[int],
        user_id: Optional[UUID] = None,
    ) -> bool:
        """
        Stage a version-guarded write of the servings map.

        Args:
            household_id: Household UUID
            meal_servings: Full serialized servings map to store
            read_version: Version seen when the map was read, None if no row existed
            user_id: Member making the change

        Returns:
            False when another writer changed the state since it was read
        """
        if read_version is None:
            if self.get_state(household_id) is not None:
                return False
            self.db.add(
                ShoppingListState(
                    household_id=household_id,
                    meal_servings=meal_servings,
                    version=1,
                    updated_by=user_id,
                )
            )
            return True

        updated = (
            self.db.query(ShoppingListState)
            .filter_by(household_id=household_id, version=read_version)
            .update(
                {
                    ShoppingListState.meal_servings: meal_servings,
                    ShoppingListState.version: read_version + 1,
                    ShoppingListState.updated_by: user_id,
                    ShoppingListState.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session="fetch",
            )
        )
        return updated == 1

    # ------------------------------------------------------------------
    # Transaction control
    # ------------------------------------------------------------------

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
