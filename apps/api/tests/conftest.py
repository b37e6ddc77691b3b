"""
Shared fixtures: in-memory SQLite database, household ids and a small
breakfast plan used across the shopping list tests.
"""
from datetime import date
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from db.models import Base
from repositories.meal_plans import MealPlanRepository
from repositories.meals import MealRepository
from repositories.products import ProductRepository
from services.change_feed import ChangeFeed
from services.context import HouseholdContext

PLAN_DAY = date(2024, 3, 4)


@pytest.fixture
def test_db():
    """In-memory SQLite database for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def ids():
    """Household and two member IDs."""
    return SimpleNamespace(household=uuid4(), member_a=uuid4(), member_b=uuid4())


@pytest.fixture
def context(ids):
    return HouseholdContext(household_id=ids.household, user_id=ids.member_a)


@pytest.fixture
def feed():
    """Fresh change feed so tests do not share subscribers."""
    return ChangeFeed()


@pytest.fixture
def example_plan(test_db, ids):
    """
    Porridge planned for both members on PLAN_DAY.

    Base items are Oats 50 and Milk 200; member A overrides the meal with
    Oats 80 only.
    """
    products = ProductRepository(test_db)
    oats = products.create(ids.household, "Oats", 370, category="Grains", protein=13, fat=7, carbs=60)
    milk = products.create(ids.household, "Milk", 64, category="Dairy", protein=3.3, fat=3.6, carbs=4.8)

    meals = MealRepository(test_db)
    porridge = meals.create(
        ids.household,
        "Porridge",
        user_id=ids.member_a,
        primary_category="breakfast",
        items=[
            {"product_id": oats.id, "amount": 50},
            {"product_id": milk.id, "amount": 200},
        ],
    )
    meals.replace_overrides(
        ids.household, porridge.id, ids.member_a, [{"product_id": oats.id, "amount": 80}]
    )

    plans = MealPlanRepository(test_db)
    plans.plan_meal(ids.household, ids.member_a, PLAN_DAY, "breakfast", porridge.id)
    plans.plan_meal(ids.household, ids.member_b, PLAN_DAY, "breakfast", porridge.id)

    return SimpleNamespace(oats=oats, milk=milk, porridge=porridge, day=PLAN_DAY)
