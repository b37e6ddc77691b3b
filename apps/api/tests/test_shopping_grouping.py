"""
Unit tests for the product, category and dish groupings.
"""
from types import SimpleNamespace
from uuid import uuid4

import pytest

from services.dish_groups import DishGroupKey, ServingsMap
from services.shopping_grouping import (
    collation_key,
    group_by_category,
    group_by_dish,
    group_by_product,
)


def make_product(name, category=""):
    return SimpleNamespace(id=uuid4(), name=name, category=category, unit_type="100g")


def make_item(product=None, amount=1.0, checked=False, meal=None, source_user_id=None, name=None, custom=None):
    return SimpleNamespace(
        id=uuid4(),
        product_id=product.id if product else None,
        product=product,
        name=name or (product.name if product else None),
        amount=amount,
        unit_type="100g",
        custom_amount_text=custom,
        is_checked=checked,
        meal_id=meal.id if meal else None,
        meal=meal,
        source_user_id=source_user_id,
    )


@pytest.fixture
def pantry():
    return SimpleNamespace(
        oats=make_product("Oats", "Grains"),
        milk=make_product("Milk", "Dairy"),
        salt=make_product("Salt"),
        porridge=SimpleNamespace(id=uuid4(), name="Porridge"),
        bread=SimpleNamespace(id=uuid4(), name="Bread"),
        member_a=uuid4(),
        member_b=uuid4(),
    )


class TestCollationKey:
    def test_accents_sort_with_base_letter(self):
        names = ["Mleko", "łosoś", "Lody", "Ananas", "Ćwikła", "Cukier"]
        assert sorted(names, key=collation_key) == ["Ananas", "Cukier", "Ćwikła", "Lody", "łosoś", "Mleko"]


class TestGroupByProduct:
    def test_sums_same_product_across_dishes(self, pantry):
        items = [
            make_item(pantry.oats, 80, meal=pantry.porridge, source_user_id=pantry.member_a),
            make_item(pantry.oats, 50, meal=pantry.porridge, source_user_id=pantry.member_b),
            make_item(pantry.milk, 200, meal=pantry.porridge, source_user_id=pantry.member_b),
        ]

        groups = group_by_product(items)

        assert [(g.name, g.total_amount, len(g.item_ids)) for g in groups] == [
            ("Milk", 200, 1),
            ("Oats", 130, 2),
        ]

    def test_checked_state_splits_groups(self, pantry):
        """A product with checked and unchecked rows shows twice; unchecked first."""
        items = [
            make_item(pantry.oats, 80, checked=True),
            make_item(pantry.oats, 50),
            make_item(pantry.oats, 20),
        ]

        groups = group_by_product(items)

        assert [(g.all_checked, g.total_amount) for g in groups] == [(False, 70), (True, 80)]
        assert all(g.all_checked == g.any_checked for g in groups)

    def test_custom_text_is_not_summed(self, pantry):
        items = [
            make_item(pantry.salt, 3),
            make_item(pantry.salt, 1, custom="a pinch"),
            make_item(pantry.salt, 1, custom="to taste"),
        ]

        [group] = group_by_product(items)

        assert group.total_amount == 3
        assert group.custom_amount_text == "a pinch, to taste"

    def test_free_text_items_group_by_name(self):
        items = [
            make_item(name="Napkins", amount=1),
            make_item(name="napkins ", amount=2),
            make_item(name="Candles", amount=1),
        ]

        groups = group_by_product(items)

        assert [(g.name, g.total_amount) for g in groups] == [("Candles", 1), ("Napkins", 3)]
        assert all(g.product_id is None for g in groups)

    def test_regrouping_is_idempotent(self, pantry):
        items = [
            make_item(pantry.oats, 80),
            make_item(pantry.milk, 200, checked=True),
            make_item(name="Candles"),
        ]

        first = group_by_product(items)
        second = group_by_product(items)

        assert [(g.key, g.total_amount, g.item_ids) for g in first] == [
            (g.key, g.total_amount, g.item_ids) for g in second
        ]

    def test_sum_rounding(self, pantry):
        items = [make_item(pantry.oats, 0.1) for _ in range(3)]
        [group] = group_by_product(items)
        assert group.total_amount == 0.3


class TestGroupByCategory:
    def test_uncategorized_bucket_is_last(self, pantry):
        items = [
            make_item(pantry.salt, 1),
            make_item(pantry.oats, 80),
            make_item(pantry.milk, 200),
            make_item(name="Candles"),
        ]

        categories = group_by_category(items, uncategorized_label="Other")

        assert [(c.category, c.label) for c in categories] == [
            ("Dairy", "Dairy"),
            ("Grains", "Grains"),
            (None, "Other"),
        ]
        assert [g.name for g in categories[-1].groups] == ["Candles", "Salt"]

    def test_default_label_and_empty_buckets(self, pantry):
        categories = group_by_category([make_item(pantry.salt, 1)])

        assert len(categories) == 1
        assert categories[0].label == "Other"

    def test_empty_list(self):
        assert group_by_category([]) == []


class TestGroupByDish:
    def test_groups_per_meal_and_member(self, pantry):
        items = [
            make_item(pantry.oats, 80, meal=pantry.porridge, source_user_id=pantry.member_a),
            make_item(pantry.oats, 50, meal=pantry.porridge, source_user_id=pantry.member_b),
            make_item(pantry.milk, 200, meal=pantry.porridge, source_user_id=pantry.member_b, checked=True),
            make_item(pantry.salt, 1, meal=pantry.bread, source_user_id=pantry.member_a),
            make_item(name="Candles"),
        ]
        servings = ServingsMap({DishGroupKey(pantry.porridge.id, pantry.member_b): 2.0})
        names = {pantry.member_a: "Anna", pantry.member_b: "Bartek"}

        view = group_by_dish(items, servings, member_names=names)

        assert [(d.meal.name, d.source_user_id) for d in view.dishes] == [
            ("Bread", pantry.member_a),
            ("Porridge", pantry.member_a),
            ("Porridge", pantry.member_b),
        ]
        porridge_b = view.dishes[2]
        assert porridge_b.servings == 2.0
        assert view.dishes[1].servings == 1.0
        assert [i.name for i in porridge_b.items] == ["Milk", "Oats"]
        assert porridge_b.all_checked is False
        assert [g.name for g in view.custom] == ["Candles"]

    def test_amounts_are_not_summed_within_dish(self, pantry):
        items = [
            make_item(pantry.oats, 10, meal=pantry.porridge, source_user_id=pantry.member_a),
            make_item(pantry.oats, 20, meal=pantry.porridge, source_user_id=pantry.member_a),
        ]

        [dish] = group_by_dish(items).dishes

        assert sorted(i.amount for i in dish.items) == [10, 20]
        assert len(dish.item_ids) == 2

    def test_legacy_meal_servings_fallback(self, pantry):
        items = [make_item(pantry.oats, 50, meal=pantry.porridge, source_user_id=pantry.member_b)]
        servings = ServingsMap.from_json({str(pantry.porridge.id): 3})

        [dish] = group_by_dish(items, servings).dishes

        assert dish.servings == 3.0

    def test_zero_legacy_servings_fall_back_to_one(self, pantry):
        items = [make_item(pantry.oats, 50, meal=pantry.porridge, source_user_id=pantry.member_b)]
        servings = ServingsMap.from_json({str(pantry.porridge.id): 0})

        [dish] = group_by_dish(items, servings).dishes

        assert dish.servings == 1.0
        assert list(servings.legacy_items()) == []

    def test_item_with_deleted_meal_is_custom(self, pantry):
        item = make_item(pantry.oats, 50, source_user_id=pantry.member_a)
        item.meal_id = uuid4()

        view = group_by_dish([item])

        assert view.dishes == []
        assert [g.name for g in view.custom] == ["Oats"]
