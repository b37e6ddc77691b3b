"""
Integration tests for shopping list generation: aggregation per dish
group, baseline servings, the confirmation policy and failure handling.
"""
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from db.models import ShoppingListItem
from repositories.meal_plans import MealPlanRepository
from repositories.meals import MealRepository
from repositories.shopping_list import ShoppingListRepository
from services.dish_groups import DishGroupKey, ServingsMap
from services.errors import InvalidRequestError, PersistenceError
from services.ingredients import ResolvedIngredient
from services.shopping_generator import ShoppingListGenerator, aggregate_ingredients
from services.shopping_grouping import group_by_product


def _rows(db, household_id):
    return {
        (item.meal_id, item.source_user_id, item.product_id, item.amount)
        for item in db.query(ShoppingListItem).filter_by(household_id=household_id)
    }


class TestAggregateIngredients:
    def test_sums_per_meal_member_product(self):
        meal_id, user_id, product_id = uuid4(), uuid4(), uuid4()
        product = object()
        ingredient = ResolvedIngredient(product_id, product, 0.1, "100g", "base")

        buckets, occurrences = aggregate_ingredients(
            [(meal_id, user_id, [ingredient]), (meal_id, user_id, [ingredient, ingredient])]
        )

        assert len(buckets) == 1
        assert buckets[0].amount == pytest.approx(0.3)
        assert occurrences == {DishGroupKey(meal_id, user_id): 2}

    def test_entries_without_products_do_not_count(self):
        meal_id, user_id = uuid4(), uuid4()
        missing = ResolvedIngredient(uuid4(), None, 5, "100g", "base")

        buckets, occurrences = aggregate_ingredients([(meal_id, user_id, [missing])])

        assert buckets == []
        assert occurrences == {}


class TestShoppingListGenerator:
    def test_example_scenario(self, test_db, ids, context, feed, example_plan):
        """A's override and B's base items stay separate rows of the same meal."""
        result = ShoppingListGenerator(test_db, feed).generate(
            context, [ids.member_a, ids.member_b], example_plan.day, example_plan.day
        )

        meal_id = example_plan.porridge.id
        assert result.status == "generated"
        assert _rows(test_db, ids.household) == {
            (meal_id, ids.member_a, example_plan.oats.id, 80),
            (meal_id, ids.member_b, example_plan.oats.id, 50),
            (meal_id, ids.member_b, example_plan.milk.id, 200),
        }
        assert result.servings == ServingsMap(
            {DishGroupKey(meal_id, ids.member_a): 1.0, DishGroupKey(meal_id, ids.member_b): 1.0}
        )
        assert result.state_version == 1

        item = next(i for i in result.items if i.product_id == example_plan.milk.id)
        assert item.name == "Milk"
        assert item.custom_amount_text is None
        assert item.is_checked is False
        assert item.added_by == ids.member_a

    def test_sum_conservation(self, test_db, ids, context, feed, example_plan):
        """Product totals equal the resolved ingredient amounts summed over entries."""
        ShoppingListGenerator(test_db, feed).generate(
            context, [ids.member_a, ids.member_b], example_plan.day, example_plan.day
        )

        items = ShoppingListRepository(test_db).list_items(ids.household)
        totals = {group.name: group.total_amount for group in group_by_product(items)}

        assert totals["Oats"] == pytest.approx(80 + 50, abs=0.01)
        assert totals["Milk"] == pytest.approx(200, abs=0.01)

    def test_baseline_servings_counts_planned_entries(self, test_db, ids, context, feed, example_plan):
        next_day = example_plan.day + timedelta(days=1)
        MealPlanRepository(test_db).plan_meal(
            ids.household, ids.member_b, next_day, "dinner", example_plan.porridge.id
        )

        result = ShoppingListGenerator(test_db, feed).generate(
            context, [ids.member_b], example_plan.day, next_day
        )

        key = DishGroupKey(example_plan.porridge.id, ids.member_b)
        assert result.servings.get(key) == 2.0
        amounts = {item.product_id: item.amount for item in result.items}
        assert amounts == {example_plan.oats.id: 100, example_plan.milk.id: 400}

    def test_only_selected_members_and_dates(self, test_db, ids, context, feed, example_plan):
        result = ShoppingListGenerator(test_db, feed).generate(
            context, [ids.member_a], example_plan.day, example_plan.day
        )

        assert {(i.source_user_id, i.amount) for i in result.items} == {(ids.member_a, 80)}

    def test_confirmation_policy(self, test_db, ids, context, feed, example_plan):
        generator = ShoppingListGenerator(test_db, feed)
        members = [ids.member_a, ids.member_b]
        generator.generate(context, members, example_plan.day, example_plan.day)
        before = _rows(test_db, ids.household)

        asked = generator.generate(context, members, example_plan.day, example_plan.day)
        assert asked.status == "confirmation_required"
        assert asked.existing_item_count == 3
        assert _rows(test_db, ids.household) == before

        declined = generator.generate(
            context, members, example_plan.day, example_plan.day, replace_existing=False
        )
        assert declined.status == "declined"
        assert _rows(test_db, ids.household) == before

        replaced = generator.generate(
            context, [ids.member_b], example_plan.day, example_plan.day, replace_existing=True
        )
        assert replaced.status == "generated"
        assert replaced.removed_item_count == 3
        assert replaced.state_version == 2
        assert len(_rows(test_db, ids.household)) == 2

    def test_no_meal_plans(self, test_db, ids, context, feed, example_plan):
        later = example_plan.day + timedelta(days=30)
        result = ShoppingListGenerator(test_db, feed).generate(context, [ids.member_a], later, later)

        assert result.status == "no_meal_plans"
        assert ShoppingListRepository(test_db).get_state(ids.household) is None


    def test_no_ingredients(self, test_db, ids, context, feed, example_plan):
        water = MealRepository(test_db).create(ids.household, "Water")
        later = example_plan.day + timedelta(days=7)
        MealPlanRepository(test_db).plan_meal(ids.household, ids.member_a, later, "snack", water.id)

        result = ShoppingListGenerator(test_db, feed).generate(context, [ids.member_a], later, later)

        assert result.status == "no_ingredients"
        assert ShoppingListRepository(test_db).count_items(ids.household) == 0

    def test_invalid_selection(self, test_db, ids, context, feed, example_plan):
        generator = ShoppingListGenerator(test_db, feed)

        with pytest.raises(InvalidRequestError):
            generator.generate(context, [], example_plan.day, example_plan.day)
        with pytest.raises(InvalidRequestError):
            generator.generate(
                context, [ids.member_a], example_plan.day, example_plan.day - timedelta(days=1)
            )

    def test_failed_insert_keeps_existing_list(self, test_db, ids, context, feed, example_plan, monkeypatch):
        """Delete and insert share a transaction, so a failed insert restores the old rows."""
        generator = ShoppingListGenerator(test_db, feed)
        members = [ids.member_a, ids.member_b]
        generator.generate(context, members, example_plan.day, example_plan.day)
        before = _rows(test_db, ids.household)

        def broken_add_items(household_id, rows):
            raise SQLAlchemyError("connection lost")

        monkeypatch.setattr(generator.list_repo, "add_items", broken_add_items)

        with pytest.raises(PersistenceError) as exc_info:
            generator.generate(
                context, members, example_plan.day, example_plan.day, replace_existing=True
            )

        assert exc_info.value.operation == "insert shopping list items"
        assert _rows(test_db, ids.household) == before
        assert ShoppingListRepository(test_db).get_state(ids.household).version == 1

    def test_failed_state_write_leaves_servings_untouched(
        self, test_db, ids, context, feed, example_plan, monkeypatch
    ):
        generator = ShoppingListGenerator(test_db, feed)

        def broken_replace_state(*args, **kwargs):
            raise SQLAlchemyError("timeout")

        monkeypatch.setattr(generator.list_repo, "replace_state", broken_replace_state)

        with pytest.raises(PersistenceError) as exc_info:
            generator.generate(context, [ids.member_a], example_plan.day, example_plan.day)

        assert exc_info.value.operation == "store shopping list state"
        assert ShoppingListRepository(test_db).get_state(ids.household) is None

    def test_publishes_item_and_state_changes(self, test_db, ids, context, feed, example_plan):
        received = []
        feed.subscribe(ids.household, received.append)

        ShoppingListGenerator(test_db, feed).generate(
            context, [ids.member_a, ids.member_b], example_plan.day, example_plan.day
        )

        assert [(c.table, c.event) for c in received] == [("items", "replace"), ("state", "update")]
        assert received[0].payload["inserted"] == 3
