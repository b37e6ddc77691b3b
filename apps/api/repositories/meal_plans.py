"""
Meal plan repository: one entry per (member, date, meal category).
"""
from datetime import date
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from db.models import MealPlan


class MealPlanRepository:
    """Repository for MealPlan entries."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def get_by_id(self, household_id: UUID, plan_id: UUID) -> Optional[MealPlan]:
        """Get a plan entry by ID with household isolation."""
        return self.db.query(MealPlan).filter_by(id=plan_id, household_id=household_id).first()

    def get_slot(self, user_id: UUID, plan_date: date, meal_type: str) -> Optional[MealPlan]:
        """Get the entry occupying a member's date/category slot."""
        return (
            self.db.query(MealPlan)
            .filter_by(user_id=user_id, date=plan_date, meal_type=meal_type)
            .first()
        )

    def plan_meal(
        self,
        household_id: UUID,
        user_id: UUID,
        plan_date: date,
        meal_type: str,
        meal_id: UUID,
    ) -> MealPlan:
        """
        Plan a meal in a slot.

        Selecting a meal for an already planned category replaces the meal
        of the existing entry instead of adding a second one.

        Returns:
            The created or updated MealPlan entry
        """
        entry = self.get_slot(user_id, plan_date, meal_type)
        if entry:
            entry.meal_id = meal_id
        else:
            entry = MealPlan(
                household_id=household_id,
                user_id=user_id,
                date=plan_date,
                meal_type=meal_type,
                meal_id=meal_id,
                is_consumed=False,
                is_skipped=False,
            )
            self.db.add(entry)

        self.db.commit()
        self.db.refresh(entry)
        return entry

    def get_for_user(
        self, household_id: UUID, user_id: UUID, start_date: date, end_date: date
    ) -> List[MealPlan]:
        """Entries of one member within an inclusive date range."""
        return self.get_for_members(household_id, [user_id], start_date, end_date)

    def get_for_members(
        self,
        household_id: UUID,
        member_ids: Iterable[UUID],
        start_date: date,
        end_date: date,
    ) -> List[MealPlan]:
        """
        Entries of the given members within an inclusive date range.

        Args:
            household_id: Household UUID
            member_ids: Member UUIDs to include
            start_date: First day (inclusive)
            end_date: Last day (inclusive)

        Returns:
            Entries ordered by date, member and category, meals loaded
        """
        members = list(member_ids)
        if not members:
            return []

        return (
            self.db.query(MealPlan)
            .options(selectinload(MealPlan.meal))
            .filter(
                MealPlan.household_id == household_id,
                MealPlan.user_id.in_(members),
                MealPlan.date >= start_date,
                MealPlan.date <= end_date,
            )
            .order_by(MealPlan.date, MealPlan.user_id, MealPlan.meal_type)
            .all()
        )

    def toggle_consumed(self, household_id: UUID, plan_id: UUID) -> Optional[MealPlan]:
        """Flip consumed; marking consumed clears skipped."""
        entry = self.get_by_id(household_id, plan_id)
        if not entry:
            return None

        entry.is_consumed = not entry.is_consumed
        if entry.is_consumed:
            entry.is_skipped = False

        self.db.commit()
        self.db.refresh(entry)
        return entry

    def toggle_skipped(self, household_id: UUID, plan_id: UUID) -> Optional[MealPlan]:
        """Flip skipped; marking skipped clears consumed."""
        entry = self.get_by_id(household_id, plan_id)
        if not entry:
            return None

        entry.is_skipped = not entry.is_skipped
        if entry.is_skipped:
            entry.is_consumed = False

        self.db.commit()
        self.db.refresh(entry)
        return entry

    def delete(self, household_id: UUID, plan_id: UUID) -> bool:
        """Remove a plan entry."""
        entry = self.get_by_id(household_id, plan_id)
        if not entry:
            return False

        self.db.delete(entry)
        self.db.commit()
        return True

    def copy_day(
        self,
        household_id: UUID,
        user_id: UUID,
        source_date: date,
        target_date: date,
    ) -> List[MealPlan]:
        """
        Copy a member's plan for one day onto another day.

        Entries already planned on the target day are replaced. Consumed
        and skipped flags are not copied.

        Returns:
            The entries planned on the target day
        """
        source_entries = self.get_for_user(household_id, user_id, source_date, source_date)

        self.db.query(MealPlan).filter_by(
            household_id=household_id, user_id=user_id, date=target_date
        ).delete(synchronize_session="fetch")
        self.db.flush()

        for entry in source_entries:
            self.db.add(
                MealPlan(
                    household_id=household_id,
                    user_id=user_id,
                    date=target_date,
                    meal_type=entry.meal_type,
                    meal_id=entry.meal_id,
                    is_consumed=False,
                    is_skipped=False,
                )
            )

        self.db.commit()
        return self.get_for_user(household_id, user_id, target_date, target_date)
