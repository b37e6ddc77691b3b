"""
API tests for the product, meal, meal plan and shopping list endpoints.
"""
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.models import Base, ShoppingListState
from db.session import get_session, get_session_factory
from main import app
from routers.shopping_list import _state_response
from services.dish_groups import ServingsMap
from services.shopping_items import ShoppingListSnapshot

PLAN_DAY = "2024-03-04"


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

    def override_get_session():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def household():
    ids = {"household_id": str(uuid4()), "user_id": str(uuid4())}
    ids["partner_id"] = str(uuid4())
    return ids


@pytest.fixture
def params(household):
    return {"household_id": household["household_id"], "user_id": household["user_id"]}


@pytest.fixture
def planned(client, household, params):
    """Porridge for both members; the caller eats oats only."""
    oats = client.post(
        "/products", params=params, json={"name": "Oats", "category": "Grains", "kcal_per_unit": 370}
    ).json()
    milk = client.post(
        "/products", params=params, json={"name": "Milk", "category": "Dairy", "kcal_per_unit": 64}
    ).json()
    meal = client.post(
        "/meals",
        params=params,
        json={
            "name": "Porridge",
            "primary_category": "breakfast",
            "items": [
                {"product_id": oats["id"], "amount": 50},
                {"product_id": milk["id"], "amount": 200},
            ],
        },
    ).json()
    response = client.put(
        f"/meals/{meal['id']}/overrides/{household['user_id']}",
        params=params,
        json={"items": [{"product_id": oats["id"], "amount": 80}]},
    )
    assert response.status_code == 200

    for member in (household["user_id"], household["partner_id"]):
        response = client.post(
            "/meal-plan",
            params=params,
            json={"date": PLAN_DAY, "meal_type": "breakfast", "meal_id": meal["id"], "member_id": member},
        )
        assert response.status_code == 200

    return {"oats": oats, "milk": milk, "meal": meal}


def _generate(client, household, params, replace_existing=None):
    body = {
        "member_ids": [household["user_id"], household["partner_id"]],
        "start_date": PLAN_DAY,
        "end_date": PLAN_DAY,
    }
    if replace_existing is not None:
        body["replace_existing"] = replace_existing
    return client.post("/shopping-list/generate", params=params, json=body)


def test_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_invalid_household_id(client):
    response = client.get("/shopping-list", params={"household_id": "nope", "user_id": str(uuid4())})
    assert response.status_code == 400


def test_unknown_meal_is_404(client, params):
    response = client.get(f"/meals/{uuid4()}", params=params)
    assert response.status_code == 404


def test_product_default_weight(client, params):
    response = client.post(
        "/products",
        params=params,
        json={"name": "Olive oil", "unit_type": "tablespoon", "kcal_per_unit": 884},
    )
    assert response.status_code == 200
    assert response.json()["unit_weight_grams"] == 15


def test_resolved_ingredients(client, household, params, planned):
    meal_id = planned["meal"]["id"]

    mine = client.get(f"/meals/{meal_id}/ingredients", params=params).json()
    partner = client.get(
        f"/meals/{meal_id}/ingredients", params={**params, "member_id": household["partner_id"]}
    ).json()

    assert mine["has_override"] is True
    assert [(i["product_name"], i["amount"]) for i in mine["ingredients"]] == [("Oats", 80)]
    assert partner["has_override"] is False
    assert sorted(i["product_name"] for i in partner["ingredients"]) == ["Milk", "Oats"]


def test_meal_nutrition(client, params, planned):
    response = client.get(f"/meals/{planned['meal']['id']}/nutrition", params=params)

    assert response.status_code == 200
    # 50 g oats at 370 kcal/100 g and 200 g milk at 64 kcal/100 g
    assert response.json()["kcal"] == pytest.approx(313)


def test_meal_plan_reversed_range(client, params):
    response = client.get(
        "/meal-plan", params={**params, "start_date": "2024-03-05", "end_date": "2024-03-04"}
    )
    assert response.status_code == 400


def test_generate_and_confirm(client, household, params, planned):
    first = _generate(client, household, params)
    assert first.status_code == 200
    assert first.json()["status"] == "generated"
    assert first.json()["item_count"] == 3

    second = _generate(client, household, params)
    assert second.json()["status"] == "confirmation_required"
    assert second.json()["existing_item_count"] == 3

    third = _generate(client, household, params, replace_existing=True)
    assert third.json()["status"] == "generated"
    assert third.json()["removed_item_count"] == 3


def test_generate_with_nothing_planned(client, household, params):
    response = _generate(client, household, params)
    assert response.status_code == 200
    assert response.json()["status"] == "no_meal_plans"


def test_grouped_views(client, household, params, planned):
    _generate(client, household, params)

    products = client.get("/shopping-list/grouped", params={**params, "by": "product"}).json()
    assert [(g["name"], g["total_amount"]) for g in products["products"]] == [("Milk", 200), ("Oats", 130)]
    assert products["categories"] is None

    categories = client.get("/shopping-list/grouped", params={**params, "by": "category"}).json()
    assert [c["label"] for c in categories["categories"]] == ["Dairy", "Grains"]

    dishes = client.get("/shopping-list/grouped", params={**params, "by": "dish"}).json()
    assert len(dishes["dishes"]) == 2
    assert all(d["meal_name"] == "Porridge" and d["servings"] == 1 for d in dishes["dishes"])
    assert dishes["custom"] == []


def test_rescale_dish_servings(client, household, params, planned):
    version = _generate(client, household, params).json()["state_version"]
    url = f"/shopping-list/dishes/{planned['meal']['id']}/{household['partner_id']}/servings"

    response = client.put(url, params=params, json={"servings": 2, "expected_version": version})
    assert response.status_code == 200
    body = response.json()
    assert body["previous_servings"] == 1
    assert body["servings"] == 2
    assert sorted(i["amount"] for i in body["items"]) == [100, 400]

    stale = client.put(url, params=params, json={"servings": 3, "expected_version": version})
    assert stale.status_code == 409

    invalid = client.put(url, params=params, json={"servings": "abc"})
    assert invalid.status_code == 400

    state = client.get("/shopping-list", params=params).json()["state"]
    assert state["version"] == version + 1
    assert {(s["source_user_id"], s["servings"]) for s in state["servings"]} == {
        (household["user_id"], 1),
        (household["partner_id"], 2),
    }


def test_custom_items_toggle_and_clear(client, household, params, planned):
    _generate(client, household, params)

    custom = client.post("/shopping-list/items", params=params, json={"name": "Basil", "amount": "a bunch"})
    assert custom.status_code == 200
    assert custom.json()["custom_amount_text"] == "a bunch"

    empty = client.post("/shopping-list/items", params=params, json={"name": "  "})
    assert empty.status_code == 400

    products = client.get("/shopping-list/grouped", params={**params, "by": "product"}).json()["products"]
    oats = next(g for g in products if g["name"] == "Oats")
    toggled = client.post("/shopping-list/toggle", params=params, json={"item_ids": oats["item_ids"]})
    assert toggled.json() == {"checked": True, "updated": 2}

    cleared = client.delete("/shopping-list/checked", params=params)
    assert cleared.json() == {"count": 2}

    names = sorted(i["name"] for i in client.get("/shopping-list", params=params).json()["items"])
    assert names == ["Basil", "Milk"]


def test_delete_dish_group(client, household, params, planned):
    _generate(client, household, params)

    response = client.delete(
        f"/shopping-list/dishes/{planned['meal']['id']}/{household['partner_id']}", params=params
    )

    assert response.json() == {"count": 2}
    listing = client.get("/shopping-list", params=params).json()
    assert [i["amount"] for i in listing["items"]] == [80]
    assert [s["source_user_id"] for s in listing["state"]["servings"]] == [household["user_id"]]


def test_event_stream_starts_with_snapshot(client, household, params, planned):
    _generate(client, household, params)

    response = client.get("/shopping-list/events", params={**params, "limit": 1})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text.startswith("event: initial\ndata: ")
    assert '"name":"Oats"' in response.text


def test_state_lists_legacy_meal_servings():
    meal_id, member = uuid4(), uuid4()
    servings = ServingsMap.from_json(
        [
            {"meal_id": str(meal_id), "source_user_id": str(member), "servings": 2},
            {"meal_id": str(meal_id), "servings": 3, "legacy": True},
        ]
    )
    state = ShoppingListState(household_id=uuid4(), version=4, meal_servings=servings.to_json())

    response = _state_response(ShoppingListSnapshot(items=[], state=state, servings=servings))

    assert [(e.source_user_id, e.servings, e.legacy) for e in response.servings] == [
        (str(member), 2.0, False),
        (None, 3.0, True),
    ]
