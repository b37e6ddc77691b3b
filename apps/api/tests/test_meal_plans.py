"""
Integration tests for the meal plan repository.
"""
from datetime import date
from uuid import uuid4

import pytest

from repositories.meal_plans import MealPlanRepository
from repositories.meals import MealRepository


@pytest.fixture
def meals(test_db, ids):
    repo = MealRepository(test_db)
    return {
        "porridge": repo.create(ids.household, "Porridge", primary_category="breakfast"),
        "omelette": repo.create(ids.household, "Omelette", primary_category="breakfast"),
        "soup": repo.create(ids.household, "Soup", primary_category="lunch", alternative_categories=["dinner"]),
    }


class TestMealPlanRepository:
    def test_plan_same_slot_replaces_meal(self, test_db, ids, meals):
        repo = MealPlanRepository(test_db)
        day = date(2024, 5, 1)

        first = repo.plan_meal(ids.household, ids.member_a, day, "breakfast", meals["porridge"].id)
        second = repo.plan_meal(ids.household, ids.member_a, day, "breakfast", meals["omelette"].id)

        entries = repo.get_for_user(ids.household, ids.member_a, day, day)
        assert first.id == second.id
        assert [e.meal_id for e in entries] == [meals["omelette"].id]

    def test_members_have_separate_slots(self, test_db, ids, meals):
        repo = MealPlanRepository(test_db)
        day = date(2024, 5, 1)

        repo.plan_meal(ids.household, ids.member_a, day, "breakfast", meals["porridge"].id)
        repo.plan_meal(ids.household, ids.member_b, day, "breakfast", meals["omelette"].id)

        entries = repo.get_for_members(ids.household, [ids.member_a, ids.member_b], day, day)
        assert len(entries) == 2
        assert repo.get_for_members(ids.household, [], day, day) == []

    def test_consumed_and_skipped_exclude_each_other(self, test_db, ids, meals):
        repo = MealPlanRepository(test_db)
        entry = repo.plan_meal(ids.household, ids.member_a, date(2024, 5, 1), "lunch", meals["soup"].id)

        entry = repo.toggle_consumed(ids.household, entry.id)
        assert (entry.is_consumed, entry.is_skipped) == (True, False)

        entry = repo.toggle_skipped(ids.household, entry.id)
        assert (entry.is_consumed, entry.is_skipped) == (False, True)

        entry = repo.toggle_consumed(ids.household, entry.id)
        assert (entry.is_consumed, entry.is_skipped) == (True, False)

        entry = repo.toggle_consumed(ids.household, entry.id)
        assert (entry.is_consumed, entry.is_skipped) == (False, False)

    def test_household_isolation(self, test_db, ids, meals):
        repo = MealPlanRepository(test_db)
        entry = repo.plan_meal(ids.household, ids.member_a, date(2024, 5, 1), "lunch", meals["soup"].id)

        assert repo.toggle_consumed(uuid4(), entry.id) is None
        assert repo.delete(uuid4(), entry.id) is False
        assert repo.delete(ids.household, entry.id) is True

    def test_copy_day(self, test_db, ids, meals):
        repo = MealPlanRepository(test_db)
        monday, tuesday = date(2024, 5, 6), date(2024, 5, 7)
        breakfast = repo.plan_meal(ids.household, ids.member_a, monday, "breakfast", meals["porridge"].id)
        repo.plan_meal(ids.household, ids.member_a, monday, "lunch", meals["soup"].id)
        repo.plan_meal(ids.household, ids.member_a, tuesday, "dinner", meals["omelette"].id)
        repo.toggle_consumed(ids.household, breakfast.id)

        copied = repo.copy_day(ids.household, ids.member_a, monday, tuesday)

        assert sorted((e.meal_type, e.meal_id) for e in copied) == [
            ("breakfast", meals["porridge"].id),
            ("lunch", meals["soup"].id),
        ]
        assert not any(e.is_consumed for e in copied)
        assert len(repo.get_for_user(ids.household, ids.member_a, monday, monday)) == 2

    def test_meal_category_filter_includes_alternatives(self, test_db, ids, meals):
        repo = MealRepository(test_db)

        dinner, total = repo.get_all(ids.household, category="dinner")
        breakfast, _ = repo.get_all(ids.household, category="breakfast")

        assert [m.name for m in dinner] == ["Soup"]
        assert total == 1
        assert [m.name for m in breakfast] == ["Omelette", "Porridge"]
