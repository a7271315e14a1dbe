import asyncio
import json
from datetime import timedelta
from decimal import Decimal

import pytest

from bazaar_server.checkout import (
    DEFAULT_DELIVERY_AREA,
    calculate_totals,
    place_order,
    resolve_delivery_address,
)
from bazaar_server.exceptions import ApiError, CheckoutError, NetworkError
from bazaar_server.models import Order, OrderStatus, User
from bazaar_server.store import is_local_id, new_local_id

from .fakes import make_address, make_item


def fill_cart(store):
    store.add_to_cart(make_item("p1", price="10.00", quantity=2))
    store.add_to_cart(make_item("p2", price="5.00", quantity=1))


class TestTotals:
    def test_flat_delivery_fee(self, store):
        fill_cart(store)
        assert calculate_totals(store) == (Decimal("25.00"), Decimal("2.00"), Decimal("27.00"))


class TestAddressResolution:
    def test_explicit_address(self, store):
        store.add_address(make_address("a1", is_default=True))
        store.add_address(make_address("a2"))
        assert resolve_delivery_address(store, "a2").id == "a2"

    def test_unknown_address(self, store):
        with pytest.raises(CheckoutError):
            resolve_delivery_address(store, "missing")

    def test_default_then_first(self, store):
        store.add_address(make_address("a1"))
        store.add_address(make_address("a2"))
        assert resolve_delivery_address(store).id == "a1"

        store.set_default_address("a2")
        assert resolve_delivery_address(store).id == "a2"

    def test_placeholder_is_not_saved(self, store):
        address = resolve_delivery_address(store)

        assert is_local_id(address.id)
        assert address.area == DEFAULT_DELIVERY_AREA
        assert store.addresses == []


class TestGuestOrder:
    async def test_order_from_cart(self, store):
        fill_cart(store)
        store.add_address(make_address("a1", is_default=True))

        order = await place_order(store)

        assert order.id.startswith("order-")
        assert order.status is OrderStatus.PENDING
        assert order.total == Decimal("27.00")
        assert order.delivery_fee == Decimal("2.00")
        assert order.subtotal == Decimal("25.00")
        assert order.estimated_delivery - order.created_at == timedelta(days=3)
        assert order.address_id == "a1"
        assert [(i.product_id, i.quantity, i.price) for i in order.items] == [
            ("p1", 2, Decimal("10.00")),
            ("p2", 1, Decimal("5.00")),
        ]

        assert store.orders[0] is order
        assert store.cart == []

    async def test_orders_are_newest_first(self, store):
        store.add_to_cart(make_item("p1"))
        first = await place_order(store)
        store.add_to_cart(make_item("p2"))
        second = await place_order(store)

        assert [o.id for o in store.orders] == [second.id, first.id]

    async def test_snapshots_do_not_follow_later_edits(self, store):
        store.add_to_cart(make_item("p1", price="10.00"))
        store.add_address(make_address("a1", is_default=True))

        order = await place_order(store)
        store.get_address("a1").street = "99"
        store.add_to_cart(make_item("p1", price="10.00", quantity=5))

        assert order.address.street == "15"
        assert order.items[0].quantity == 1

    async def test_empty_cart(self, store):
        with pytest.raises(CheckoutError):
            await place_order(store)
        assert store.orders == []

    async def test_unknown_address_leaves_cart(self, store):
        fill_cart(store)
        with pytest.raises(CheckoutError):
            await place_order(store, "missing")
        assert len(store.cart) == 2


class TestAuthenticatedOrder:
    async def test_server_order_replaces_local_build(self, store, api, logged_in):
        fill_cart(store)
        await store.wait_for_pending()
        store.add_address(make_address("a1", is_default=True))
        await store.wait_for_pending()

        order = await place_order(store)
        await store.wait_for_pending()

        body = json.loads(api.requests[-1].content)
        assert body["total"] == "27.00"
        assert body["deliveryFee"] == "2.00"
        assert body["addressId"] == store.addresses[0].id
        assert order.id == "srv-1"
        assert store.orders[0].id == "srv-1"
        assert store.cart == []
        assert api.cart == []

    async def test_cart_is_not_cleared_separately(self, store, api, logged_in):
        fill_cart(store)
        await store.wait_for_pending()

        await place_order(store)
        await store.wait_for_pending()

        assert not any(r.method == "DELETE" and r.url.path == "/api/cart" for r in api.requests)

    async def test_local_address_id_is_not_sent(self, store, api, logged_in):
        store.replace_addresses([make_address(new_local_id(), is_default=True)])
        fill_cart(store)
        await store.wait_for_pending()

        await place_order(store)

        body = json.loads(api.requests[-1].content)
        assert body["addressId"] is None
        assert body["addressSnapshot"]["fullName"] == "Amna Osman"

    async def test_rejected_order_changes_nothing(self, store, api, logged_in):
        fill_cart(store)
        await store.wait_for_pending()
        api.fail("POST", "/orders", 400, {"error": "Invalid order data"})

        with pytest.raises(ApiError) as exc_info:
            await place_order(store)

        assert exc_info.value.message == "Invalid order data"
        assert len(store.cart) == 2
        assert store.orders == []

    async def test_offline_order_changes_nothing(self, store, api, logged_in):
        fill_cart(store)
        await store.wait_for_pending()
        api.offline = True

        with pytest.raises(NetworkError):
            await place_order(store)

        assert store.get_cart_total() == Decimal("25.00")
        assert store.orders == []

    async def test_order_is_not_recorded_in_a_new_session(self, store, api, logged_in, monkeypatch):
        fill_cart(store)
        await store.wait_for_pending()
        release = asyncio.Event()

        async def slow_create_order(**kwargs):
            await release.wait()
            return Order(id="srv-9", total=Decimal("27.00"))

        monkeypatch.setattr(store.client, "create_order", slow_create_order)
        placing = asyncio.create_task(place_order(store))
        await asyncio.sleep(0)

        store.reset_session()
        store.set_session(User.model_validate(api.users["u1"]), api.issue_token())
        store.add_to_cart(make_item("p2"))
        release.set()

        order = await placing
        await store.wait_for_pending()

        assert order.id == "srv-9"
        assert store.orders == []
        assert [line.product.id for line in store.cart] == ["p2"]
