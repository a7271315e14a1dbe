import json
from decimal import Decimal

import httpx
import pytest

from bazaar_server.bazaar_client import BazaarClient, resolve_base_url
from bazaar_server.exceptions import (
    ApiError,
    AuthenticationError,
    InvalidRequestError,
    NetworkError,
    NotFoundError,
)
from bazaar_server.models import AddressSnapshot, AuthCredentials, OrderItem, RegistrationData

from .fakes import BASE_URL, make_address


class TestBaseUrl:
    def test_local_default(self, monkeypatch):
        monkeypatch.delenv("BAZAAR_API_DOMAIN", raising=False)
        assert resolve_base_url() == "http://localhost:5000"

    def test_domain_from_environment_strips_dev_port(self, monkeypatch):
        monkeypatch.setenv("BAZAAR_API_DOMAIN", "bazaar.example.sd:5000")
        assert resolve_base_url() == "https://bazaar.example.sd"

    def test_explicit_domain(self):
        assert resolve_base_url("shop.example.sd") == "https://shop.example.sd"

    async def test_requests_go_under_api_prefix(self, client, api):
        await client.get_categories()
        assert str(api.requests[-1].url) == f"{BASE_URL}/api/categories"


class TestAuthHeader:
    async def test_no_header_without_token(self, client, api):
        await client.get_products()
        assert "Authorization" not in api.requests[-1].headers

    async def test_bearer_header_with_token(self, client, api):
        token = api.issue_token()
        client.set_token(token)

        await client.get_cart()
        assert api.requests[-1].headers["Authorization"] == f"Bearer {token}"

    async def test_cleared_token_is_not_sent(self, client, api):
        client.set_token("stale")
        client.set_token(None)

        await client.get_categories()
        assert "Authorization" not in api.requests[-1].headers


class TestErrors:
    async def test_not_found(self, client):
        with pytest.raises(NotFoundError) as exc_info:
            await client.get_product("missing")
        assert exc_info.value.message == "Product not found"
        assert exc_info.value.status_code == 404

    async def test_unauthorized(self, client):
        with pytest.raises(AuthenticationError) as exc_info:
            await client.get_cart()
        assert exc_info.value.message == "غير مصرح"

    async def test_validation_issues_are_joined(self, client):
        registration = RegistrationData(name="Sara", email="sara@example.com", password="123")
        with pytest.raises(InvalidRequestError) as exc_info:
            await client.register(registration)
        assert exc_info.value.message == "password: String must contain at least 6 character(s)"

    async def test_body_without_error_field_uses_status(self, client, api):
        api.fail("GET", "/categories", 500, "<html>Internal Server Error</html>")
        with pytest.raises(ApiError) as exc_info:
            await client.get_categories()
        assert exc_info.value.message == "HTTP error! status: 500"
        assert type(exc_info.value) is ApiError

    async def test_transport_failure_is_network_error(self, client, api):
        api.offline = True
        with pytest.raises(NetworkError):
            await client.get_categories()

    async def test_timeout_is_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with BazaarClient(base_url=BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(NetworkError):
                await client.get_product("p1")


class TestEndpoints:
    async def test_product_filters_become_query_params(self, client, api):
        products = await client.get_products(category_id="c2", search="kark", limit=5)

        params = api.requests[-1].url.params
        assert params["categoryId"] == "c2"
        assert params["search"] == "kark"
        assert params["limit"] == "5"
        assert [p.id for p in products] == ["p2"]

    async def test_login_returns_user_and_token(self, client, api):
        response = await client.login(AuthCredentials(email="amna@example.com", password="secret123"))
        assert response.user.name == "Amna"
        assert response.token in api.tokens

    async def test_add_to_cart_payload(self, client, api):
        client.set_token(api.issue_token())

        assert await client.add_to_cart("p1", 2, selected_size="M") is True
        body = json.loads(api.requests[-1].content)
        assert body == {"productId": "p1", "quantity": 2, "selectedSize": "M"}

    async def test_toggle_wishlist_reports_membership(self, client, api):
        client.set_token(api.issue_token())

        assert await client.toggle_wishlist("p2") is True
        assert await client.toggle_wishlist("p2") is False

    async def test_add_address_lets_server_assign_id(self, client, api):
        client.set_token(api.issue_token())

        stored = await client.add_address(make_address("local-abc"))
        assert "id" not in json.loads(api.requests[-1].content)
        assert stored.id.startswith("a-")

    async def test_create_order_payload(self, client, api):
        client.set_token(api.issue_token())
        items = [
            OrderItem(product_id="p1", product_name="Jalabiya", price=Decimal("10.00"), quantity=2),
            OrderItem(product_id="p2", product_name="Karkade", price=Decimal("5.00"), quantity=1),
        ]
        snapshot = AddressSnapshot.from_address(make_address("a1"))

        order = await client.create_order(
            items=items,
            total=Decimal("27"),
            delivery_fee=Decimal("2"),
            address_id="a1",
            address_snapshot=snapshot,
        )

        body = json.loads(api.requests[-1].content)
        assert body["total"] == "27.00"
        assert body["deliveryFee"] == "2.00"
        assert body["addressId"] == "a1"
        assert body["items"][0] == {
            "productId": "p1",
            "productName": "Jalabiya",
            "productNameAr": "",
            "price": 10.0,
            "quantity": 2,
        }
        assert body["addressSnapshot"]["fullName"] == "Amna Osman"
        assert order.id == "srv-1"
        assert order.total == Decimal("27.00")
        assert order.estimated_delivery is not None

    async def test_logout_invalidates_token(self, client, api):
        token = api.issue_token()
        client.set_token(token)

        assert await client.logout() is True
        assert token not in api.tokens


class TestMalformedResponses:
    async def test_non_json_success_body(self, client, api):
        client.set_token(api.issue_token())
        api.fail("GET", "/orders", 200, "OK")

        with pytest.raises(ApiError) as exc_info:
            await client.get_orders()
        assert exc_info.value.status_code == 200

    async def test_invalid_row(self, client, api):
        client.set_token(api.issue_token())
        api.fail("GET", "/orders", 200, [{"id": "o1", "items": [{"product": {"id": "p1"}, "quantity": 1}]}])

        with pytest.raises(ApiError, match="Invalid Order data"):
            await client.get_orders()

    async def test_object_where_list_expected(self, client, api):
        api.fail("GET", "/categories", 200, {"categories": []})

        with pytest.raises(ApiError):
            await client.get_categories()

    async def test_non_object_acknowledgement(self, client, api):
        client.set_token(api.issue_token())
        api.fail("DELETE", "/cart", 200, [])

        with pytest.raises(ApiError):
            await client.clear_cart()
