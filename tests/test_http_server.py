import pytest
from fastapi.testclient import TestClient

from bazaar_server.exceptions import (
    ApiError,
    AuthenticationError,
    CartError,
    NetworkError,
    NotFoundError,
)
from bazaar_server.http_server import create_app, status_for_error


@pytest.fixture
def http(session):
    with TestClient(create_app(session)) as test_client:
        yield test_client


@pytest.mark.parametrize(
    "error, status_code",
    [
        (AuthenticationError("expired", status_code=401), 401),
        (NotFoundError("gone", status_code=404), 404),
        (CartError("out of stock"), 400),
        (NetworkError("offline"), 503),
        (ApiError("boom", status_code=500), 502),
    ],
)
def test_status_for_error(error, status_code):
    assert status_for_error(error) == status_code


def test_health(http):
    response = http.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "authenticated": False}


def test_catalog(http):
    categories = http.get("/categories").json()
    assert categories["count"] == 2

    products = http.get("/products", params={"category_id": "c2"}).json()
    assert [p["id"] for p in products["products"]] == ["p2", "p3"]

    product = http.get("/products/p1").json()
    assert product["nameAr"] == "جلابية"
    assert product["price"] == "10.00"


def test_unknown_product_is_404(http):
    response = http.get("/products/nope")
    assert response.status_code == 404
    assert response.json() == {"detail": "Product not found"}


def test_cart_flow(http):
    response = http.post("/cart/add", json={"product_id": "p1", "quantity": 2, "size": "M", "color": "White"})
    assert response.status_code == 200
    assert response.json()["itemCount"] == 2
    assert response.json()["total"] == "20.00"

    response = http.post("/cart/update", json={"product_id": "p1", "quantity": 1})
    assert response.json()["total"] == "10.00"

    response = http.post("/cart/remove", json={"product_id": "p1"})
    assert response.json()["items"] == []

    assert http.post("/cart/remove", json={"product_id": "p1"}).status_code == 404


def test_out_of_stock_is_400(http):
    response = http.post("/cart/add", json={"product_id": "p3"})
    assert response.status_code == 400
    assert "out of stock" in response.json()["detail"]


def test_guest_order(http):
    http.post("/cart/add", json={"product_id": "p2", "quantity": 5})
    http.post(
        "/addresses",
        json={
            "label": "Home",
            "full_name": "Amna Osman",
            "phone": "+249 91 000 0000",
            "area": "Khartoum 2",
            "block": "4",
            "street": "15",
            "building": "7",
            "is_default": True,
        },
    )

    order = http.post("/orders/place", json={}).json()

    assert order["total"] == "27.00"
    assert order["status"] == "pending"
    assert order["addressSnapshot"]["fullName"] == "Amna Osman"
    assert http.get(f"/orders/{order['id']}").json()["id"] == order["id"]
    assert http.get("/orders").json()["count"] == 1
    assert http.get("/cart").json()["items"] == []


def test_empty_cart_order_is_400(http):
    assert http.post("/orders/place", json={}).status_code == 400


def test_addresses(http):
    created = http.post(
        "/addresses",
        json={
            "label": "Work",
            "full_name": "Amna Osman",
            "phone": "+249 91 000 0000",
            "area": "Bahri",
            "block": "2",
            "street": "3",
            "building": "1",
        },
    ).json()

    assert http.post(f"/addresses/{created['id']}/default").status_code == 200
    assert http.get("/addresses").json()[0]["isDefault"] is True
    assert http.post("/addresses/nope/default").status_code == 404
    assert http.delete(f"/addresses/{created['id']}").status_code == 200
    assert http.delete(f"/addresses/{created['id']}").status_code == 404


def test_wishlist(http):
    assert http.post("/wishlist/toggle", json={"product_id": "p2"}).json() == {"added": True, "productIds": ["p2"]}
    assert http.get("/wishlist").json() == {"productIds": ["p2"]}


def test_login_sync_logout(http, api):
    api.add_cart_row("p2", 3)

    response = http.post("/auth/login", json={"email": "amna@example.com", "password": "secret123"})
    assert response.status_code == 200
    assert response.json()["user"]["name"] == "Amna"
    assert http.get("/auth/status").json()["authenticated"] is True
    assert http.get("/cart").json()["itemCount"] == 3

    assert http.post("/sync").json() == {"cart": True, "wishlist": True, "addresses": True, "orders": True}

    assert http.post("/auth/logout").status_code == 200
    assert http.get("/auth/status").json() == {"authenticated": False, "user": None}


def test_bad_login_is_401(http):
    response = http.post("/auth/login", json={"email": "amna@example.com", "password": "wrong"})
    assert response.status_code == 401


def test_guest_sync_is_401(http):
    assert http.post("/sync").status_code == 401


def test_language(http):
    assert http.post("/settings/language", json={"language": "en"}).status_code == 200
    assert http.get("/settings/language").json() == {"language": "en"}
    assert http.post("/settings/language", json={"language": "fr"}).status_code == 400
