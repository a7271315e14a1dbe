"""Order placement from the current cart."""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from .exceptions import CheckoutError
from .models import (
    DELIVERY_FEE,
    Address,
    AddressSnapshot,
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    utcnow,
)
from .store import AppStore, is_local_id, new_local_id

logger = logging.getLogger(__name__)

ESTIMATED_DELIVERY_DAYS = 3
DEFAULT_DELIVERY_AREA = "العاصمة"


def placeholder_address() -> Address:
    """Last-resort delivery address for a shopper with an empty address book."""
    return Address(
        id=new_local_id(),
        label="Home",
        full_name="Guest User",
        phone="+965 5000 0000",
        area=DEFAULT_DELIVERY_AREA,
        block="1",
        street="1",
        building="1",
        is_default=True,
    )


def resolve_delivery_address(store: AppStore, address_id: Optional[str] = None) -> Address:
    """
    Pick the address an order ships to.

    Args:
        store: Store holding the address book
        address_id: Explicitly selected address

    Returns:
        The selected address, else the default, else the first saved address,
        else a placeholder (which is not added to the address book)

    Raises:
        CheckoutError: If address_id does not exist
    """
    if address_id:
        address = store.get_address(address_id)
        if address is None:
            raise CheckoutError(f"Address {address_id} not found")
        return address

    address = store.get_default_address()
    if address is None and store.addresses:
        address = store.addresses[0]
    if address is None:
        logger.info("No saved address, using placeholder delivery address")
        address = placeholder_address()
    return address


def build_order_items(cart: list[CartItem]) -> list[OrderItem]:
    """Snapshot every cart line as an order item."""
    return [OrderItem.from_cart_item(item) for item in cart]


def build_address_snapshot(address: Address) -> AddressSnapshot:
    """Freeze the delivery address as it is now."""
    return AddressSnapshot.from_address(address)


def calculate_totals(store: AppStore) -> tuple[Decimal, Decimal, Decimal]:
    """Return (subtotal, delivery fee, total). The fee is flat for every order."""
    subtotal = store.get_cart_total()
    return subtotal, DELIVERY_FEE, subtotal + DELIVERY_FEE


async def place_order(store: AppStore, address_id: Optional[str] = None) -> Order:
    """
    Turn the cart into an order.

    Authenticated shoppers get the order stored server-side, which assigns the
    id, status and delivery estimate. Guests get a locally built order. Either
    way the order is put first in the order list and the cart is emptied.
    If the server rejects the order nothing changes locally. If the session
    changes while the order is being submitted, the order is returned but
    not recorded in the new session's state.

    Args:
        store: Store to place the order from
        address_id: Delivery address (see resolve_delivery_address)

    Returns:
        The placed order

    Raises:
        CheckoutError: If the cart is empty or the address is unknown
        ApiError, NetworkError: If the server submission fails
    """
    if not store.cart:
        raise CheckoutError("Cart is empty")

    address = resolve_delivery_address(store, address_id)
    subtotal, delivery_fee, total = calculate_totals(store)
    items = build_order_items(store.cart)
    snapshot = build_address_snapshot(address)

    logger.info(f"=== PLACE ORDER: {len(items)} line(s), subtotal={subtotal}, total={total} ===")

    if store.is_authenticated:
        token = store.token
        order = await store.client.create_order(
            items=items,
            total=total,
            delivery_fee=delivery_fee,
            address_id=None if is_local_id(address.id) else address.id,
            address_snapshot=snapshot,
        )
        if store.token != token:
            logger.warning(f"Session changed while placing order {order.id}, not recording it locally")
            return order
    else:
        created_at = utcnow()
        order = Order(
            id=f"order-{int(created_at.timestamp() * 1000)}",
            items=items,
            total=total,
            delivery_fee=delivery_fee,
            status=OrderStatus.PENDING,
            address=snapshot,
            address_id=address.id,
            created_at=created_at,
            estimated_delivery=created_at + timedelta(days=ESTIMATED_DELIVERY_DAYS),
        )

    store.add_order(order)
    store.clear_cart(remote=False)
    logger.info(f"Order {order.id} placed")
    return order
