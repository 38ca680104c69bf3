import pytest
from fastapi.testclient import TestClient
from jose import jwt

from shared.security_config import limiter
from shared.utils import settings
from storefront.dependencies import configure_services
from storefront.main import app

DEVICE = {"X-Device-ID": "device-1"}


def auth(user_id, email=None):
    token = jwt.encode(
        {"sub": user_id, "email": email or f"{user_id}@example.com"},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db, tmp_path, notifier):
    configure_services(app, db, str(tmp_path / "carts"), notifier)
    limiter.enabled = False
    yield TestClient(app)
    limiter.enabled = True


@pytest.fixture
async def catalog_items(seed_store, seed_product):
    store_a = await seed_store("seller-a", "A")
    store_b = await seed_store("seller-b", "B")
    return {
        "store_a": store_a,
        "store_b": store_b,
        "apples": await seed_product(store_a, "Apples", price=100.0, delivery=20.0),
        "bread": await seed_product(store_b, "Bread", price=30.0, delivery=10.0),
        "retired": await seed_product(store_a, "Retired", price=5.0, is_active=False),
    }


def test_guest_cart_lifecycle(client, catalog_items):
    apples = catalog_items["apples"].id

    resp = client.post("/cart/items", json={"product_id": apples, "quantity": 2}, headers=DEVICE)
    assert resp.status_code == 200
    resp = client.post("/cart/items", json={"product_id": apples}, headers=DEVICE)
    data = resp.json()["data"]
    assert data["owner_kind"] == "guest"
    assert data["line_count"] == 1
    assert data["items"][0]["quantity"] == 3
    assert float(data["total"]) == 300

    resp = client.put(f"/cart/items/{apples}", json={"quantity": 0}, headers=DEVICE)
    assert resp.json()["data"]["items"] == []


def test_cart_requires_an_owner(client):
    resp = client.get("/cart")
    assert resp.status_code == 400


def test_unknown_and_inactive_products_are_rejected(client, catalog_items):
    resp = client.post("/cart/items", json={"product_id": "65f000000000000000000000"}, headers=DEVICE)
    assert resp.status_code == 404
    resp = client.post("/cart/items", json={"product_id": catalog_items["retired"].id}, headers=DEVICE)
    assert resp.status_code == 400


def test_invalid_token_is_rejected(client):
    resp = client.get("/cart", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_login_switches_to_the_user_cart(client, catalog_items):
    client.post("/cart/items", json={"product_id": catalog_items["apples"].id}, headers=DEVICE)

    resp = client.post("/cart/session", headers={**DEVICE, **auth("buyer-1")})
    assert resp.status_code == 200
    assert resp.json()["data"]["cart"]["items"] == []

    resp = client.get("/cart", headers=DEVICE)
    assert resp.json()["data"]["items"] == []


def test_checkout_and_order_history(client, catalog_items):
    buyer = auth("buyer-1")
    client.post("/cart/items", json={"product_id": catalog_items["apples"].id, "quantity": 2}, headers=buyer)
    client.post("/cart/items", json={"product_id": catalog_items["bread"].id}, headers=buyer)

    resp = client.post("/checkout", json={
        "delivery_type": "Delivery",
        "shipping_address": "12 Market Road",
        "contact_number": "9876543210",
    }, headers=buyer)
    assert resp.status_code == 200
    order_ids = resp.json()["data"]["order_ids"]
    assert len(order_ids) == 2
    assert resp.json()["data"]["cart_updated"] is True

    resp = client.get("/orders", headers=buyer)
    orders = {o["id"]: o for o in resp.json()["data"]}
    assert set(orders) == set(order_ids)
    assert float(orders[order_ids[0]]["total_amount"]) == 220
    assert orders[order_ids[0]]["status"] == "pending"

    assert client.get("/cart", headers=buyer).json()["data"]["items"] == []
    assert client.get(f"/orders/{order_ids[0]}", headers=auth("buyer-2")).status_code == 404


def test_checkout_validation_and_empty_cart(client, catalog_items):
    buyer = auth("buyer-1")
    resp = client.post("/checkout", json={"delivery_type": "Self-pick", "contact_number": "9876543210"}, headers=buyer)
    assert resp.status_code == 200
    assert resp.json()["data"]["order_ids"] == []

    client.post("/cart/items", json={"product_id": catalog_items["apples"].id}, headers=buyer)
    resp = client.post("/checkout", json={"delivery_type": "Delivery", "contact_number": "9876543210"}, headers=buyer)
    assert resp.status_code == 400

    resp = client.post("/checkout", json={"delivery_type": "Self-pick"}, headers=DEVICE)
    assert resp.status_code == 422


def test_partial_checkout_is_reported(client, flaky_ledger, catalog_items):
    app.state.checkout.ledger = flaky_ledger(1)
    buyer = auth("buyer-1")
    client.post("/cart/items", json={"product_id": catalog_items["apples"].id}, headers=buyer)
    client.post("/cart/items", json={"product_id": catalog_items["bread"].id}, headers=buyer)

    resp = client.post("/checkout", json={"delivery_type": "Self-pick", "contact_number": "9876543210"}, headers=buyer)

    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["succeeded_store_ids"] == [catalog_items["store_a"]]
    assert detail["failed_store_id"] == catalog_items["store_b"]
    assert len(detail["order_ids"]) == 1
    items = client.get("/cart", headers=buyer).json()["data"]["items"]
    assert [i["product_id"] for i in items] == [catalog_items["bread"].id]


def test_seller_moves_order_through_the_flow(client, catalog_items):
    buyer = auth("buyer-1")
    client.post("/cart/items", json={"product_id": catalog_items["apples"].id}, headers=buyer)
    order_id = client.post(
        "/checkout", json={"delivery_type": "Self-pick", "contact_number": "9876543210"}, headers=buyer
    ).json()["data"]["order_ids"][0]

    resp = client.put(f"/orders/{order_id}/status", json={"status": "accepted"}, headers=auth("seller-b"))
    assert resp.status_code == 403
    resp = client.put(f"/orders/{order_id}/status", json={"status": "delivered"}, headers=auth("seller-a"))
    assert resp.status_code == 409
    resp = client.put(f"/orders/{order_id}/status", json={"status": "accepted"}, headers=auth("seller-a"))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "accepted"

    resp = client.get(f"/stores/{catalog_items['store_a']}/orders", headers=auth("seller-a"))
    assert [o["id"] for o in resp.json()["data"]] == [order_id]


def test_wishlist_toggle(client, catalog_items):
    buyer = auth("buyer-1")
    product_id = catalog_items["apples"].id

    assert client.get(f"/wishlist/{product_id}", headers=buyer).json()["data"]["in_wishlist"] is False
    assert client.post(f"/wishlist/{product_id}", headers=buyer).json()["data"]["in_wishlist"] is True
    assert client.get(f"/wishlist/{product_id}", headers=buyer).json()["data"]["in_wishlist"] is True
    assert client.post(f"/wishlist/{product_id}", headers=buyer).json()["data"]["in_wishlist"] is False


def test_wishlist_page_lists_products(client, catalog_items):
    buyer = auth("buyer-1")
    client.post(f"/wishlist/{catalog_items['apples'].id}", headers=buyer)
    client.post(f"/wishlist/{catalog_items['bread'].id}", headers=buyer)

    resp = client.get("/wishlist", headers=buyer)

    assert resp.status_code == 200
    assert [p["name"] for p in resp.json()["data"]] == ["Bread", "Apples"]


def test_follow_a_store(client, catalog_items):
    buyer = auth("buyer-1")
    store_a = catalog_items["store_a"]

    assert client.post("/stores/65f000000000000000000000/follow", headers=buyer).status_code == 404
    assert client.post(f"/stores/{store_a}/follow", headers=buyer).json()["data"]["following"] is True
    assert client.get(f"/stores/{store_a}/follow", headers=buyer).json()["data"]["following"] is True

    stores = client.get("/follows", headers=buyer).json()["data"]
    assert [(s["id"], s["name"]) for s in stores] == [(store_a, "A")]


def test_reviews_roundtrip(client, catalog_items):
    apples = catalog_items["apples"].id

    resp = client.post(
        f"/products/{apples}/reviews", json={"rating": 5, "comment": "<b>Great</b>"}, headers=auth("buyer-1")
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["comment"] == "&lt;b&gt;Great&lt;/b&gt;"
    client.post(f"/products/{apples}/reviews", json={"rating": 2}, headers=auth("buyer-2"))

    data = client.get(f"/products/{apples}/reviews").json()["data"]
    assert data["review_count"] == 2
    assert float(data["average_rating"]) == 3.5

    assert client.post(f"/products/{apples}/reviews", json={"rating": 6}, headers=auth("buyer-1")).status_code == 422
    resp = client.post("/products/65f000000000000000000000/reviews", json={"rating": 3}, headers=auth("buyer-1"))
    assert resp.status_code == 404
