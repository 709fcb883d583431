"""HTTP tests for the recipe and ingredient routers."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from bakery_api.config import settings
from bakery_api.main import app, configure_services

BAKERY_ID = "bakery-1"


def make_token(role="bakery_staff", bakery_id=BAKERY_ID, expires_in=timedelta(hours=1), secret=None):
    claims = {
        "sub": "user-1",
        "email": "baker@example.com",
        "role": role,
        "bakeryId": bakery_id,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(claims, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def auth(**kwargs):
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


@pytest.fixture
def client(store):
    configure_services(app, store)
    return TestClient(app)


@pytest.fixture
def seeded(seed_ingredient):
    seed_ingredient("flour", 0.002)
    seed_ingredient("sugar", 0.004)


def create_bread(client):
    response = client.post(
        f"/bakeries/{BAKERY_ID}/recipes",
        json={"name": "Bread", "ingredients": [{"ingredientId": "flour", "quantity": 1000}]},
        headers=auth(),
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestAuthentication:
    def test_root_is_public(self, client):
        assert client.get("/").status_code == 200

    def test_missing_token(self, client):
        response = client.get(f"/bakeries/{BAKERY_ID}/recipes")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Authorization token required"}

    def test_invalid_token(self, client):
        response = client.get(f"/bakeries/{BAKERY_ID}/recipes", headers=auth(secret="not-the-secret-at-all-really"))
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid token"

    def test_expired_token(self, client):
        response = client.get(f"/bakeries/{BAKERY_ID}/recipes", headers=auth(expires_in=timedelta(hours=-1)))
        assert response.status_code == 401
        assert response.json()["error"] == "Token expired"

    def test_other_bakery_is_forbidden(self, client):
        response = client.get("/bakeries/bakery-2/recipes", headers=auth())
        assert response.status_code == 403

    def test_unknown_role_is_forbidden(self, client):
        response = client.get(f"/bakeries/{BAKERY_ID}/recipes", headers=auth(role="customer"))
        assert response.status_code == 403

    def test_system_admin_reaches_any_bakery(self, client):
        response = client.get("/bakeries/bakery-2/recipes", headers=auth(role="system_admin", bakery_id=None))
        assert response.status_code == 200
        assert response.json() == {"success": True, "total": 0, "data": [], "page": 1, "limit": 50}


class TestRecipeRoutes:
    def test_create_returns_camel_case_recipe(self, client, seeded):
        recipe = create_bread(client)

        assert recipe["version"] == 1
        assert recipe["bakeryId"] == BAKERY_ID
        assert recipe["ingredients"][0]["costPerUnit"] == 0.002
        assert recipe["totalCost"] == pytest.approx(2.0)

    def test_create_with_unknown_ingredient(self, client, seeded):
        response = client.post(
            f"/bakeries/{BAKERY_ID}/recipes",
            json={"name": "Ghost", "ingredients": [{"ingredientId": "ghost", "quantity": 1}]},
            headers=auth(),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Ingredient ghost not found"

    def test_malformed_body_is_a_bad_request(self, client):
        response = client.post(f"/bakeries/{BAKERY_ID}/recipes", json={"ingredients": []}, headers=auth())
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_missing_recipe(self, client):
        response = client.get(f"/bakeries/{BAKERY_ID}/recipes/nope", headers=auth())
        assert response.status_code == 404

    def test_update_scale_and_history(self, client, seeded):
        recipe = create_bread(client)
        base = f"/bakeries/{BAKERY_ID}/recipes/{recipe['id']}"

        updated = client.patch(base, json={"description": "Crusty"}, headers=auth())
        assert updated.status_code == 200
        assert updated.json()["data"]["version"] == 1

        scaled = client.patch(f"{base}/scale", json={"factor": 2}, headers=auth())
        assert scaled.status_code == 200
        assert scaled.json()["data"]["version"] == 2
        assert scaled.json()["data"]["ingredients"][0]["quantity"] == 2000

        history = client.get(f"{base}/history", headers=auth()).json()["data"]
        assert [entry["version"] for entry in history] == [1]

        long_ago = client.get(f"{base}/history", params={"at": "2000-01-01T00:00:00Z"}, headers=auth())
        assert long_ago.json()["data"] == []

    def test_scale_factor_must_be_positive(self, client, seeded):
        recipe = create_bread(client)
        response = client.patch(
            f"/bakeries/{BAKERY_ID}/recipes/{recipe['id']}/scale", json={"factor": 0}, headers=auth()
        )
        assert response.status_code == 400

    def test_delete_guarded_by_active_product(self, client, seeded, seed_product):
        recipe = create_bread(client)
        seed_product("baguette", recipe["id"])

        response = client.delete(f"/bakeries/{BAKERY_ID}/recipes/{recipe['id']}", headers=auth())
        assert response.status_code == 400
        assert client.get(f"/bakeries/{BAKERY_ID}/recipes/{recipe['id']}", headers=auth()).status_code == 200


class TestIngredientRoutes:
    def test_cost_change_reports_recipe_updates(self, client, seeded):
        recipe = create_bread(client)

        response = client.patch(f"/bakeries/{BAKERY_ID}/ingredients/flour", json={"costPerUnit": 0.003}, headers=auth())

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["costPerUnit"] == 0.003
        assert body["recipeUpdates"][0]["recipeId"] == recipe["id"]
        assert body["recipeUpdates"][0]["versionBumped"] is True

    def test_create_list_and_stock(self, client):
        created = client.post(
            f"/bakeries/{BAKERY_ID}/ingredients",
            json={"name": "Milk", "unit": "ml", "costPerUnit": 0.001, "currentStock": 1000},
            headers=auth(),
        )
        assert created.status_code == 201
        ingredient_id = created.json()["data"]["id"]

        listing = client.get(f"/bakeries/{BAKERY_ID}/ingredients", headers=auth()).json()
        assert listing["total"] == 1

        stock = client.patch(
            f"/bakeries/{BAKERY_ID}/ingredients/{ingredient_id}/stock", json={"adjustment": -250}, headers=auth()
        )
        assert stock.json()["data"]["currentStock"] == 750

    def test_used_ingredient_cannot_be_deleted(self, client, seeded):
        create_bread(client)
        response = client.delete(f"/bakeries/{BAKERY_ID}/ingredients/flour", headers=auth())
        assert response.status_code == 400
