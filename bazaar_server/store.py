"""Local state store: session, cart, wishlist, addresses and orders."""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Any, Coroutine, Optional

from .bazaar_client import BazaarClient
from .exceptions import BazaarError
from .models import (
    Address,
    CartItem,
    Language,
    Order,
    PersistedState,
    User,
)
from .persistence import StateStorage

logger = logging.getLogger(__name__)

LANGUAGES = ("ar", "en")
LOCAL_ID_PREFIX = "local-"


def new_local_id() -> str:
    """ID for an entity that has not been stored server-side."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_local_id(entity_id: str) -> bool:
    return entity_id.startswith(LOCAL_ID_PREFIX)


class AppStore:
    """
    In-process state container for one shopper.

    All mutations are synchronous and apply in place; they are meant to be
    called from a single event loop thread. When a session token is present,
    write operations are mirrored to the API as fire-and-forget tasks: the
    result is ignored, failures are logged, and local state is never rolled
    back. The persisted subset (everything except orders) is saved after each
    change when a storage backend is configured.
    """

    def __init__(self, client: BazaarClient, storage: Optional[StateStorage] = None) -> None:
        """
        Initialize an empty guest store.

        Args:
            client: API client used for remote mirroring
            storage: Where to persist state; None keeps state in memory only
        """
        self.client = client
        self.storage = storage
        self.user: Optional[User] = None
        self.token: Optional[str] = None
        self.cart: list[CartItem] = []
        self.wishlist: list[str] = []
        self.addresses: list[Address] = []
        self.orders: list[Order] = []
        self.language: Language = "ar"
        self._pending: set[asyncio.Task] = set()

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    # Persistence

    def load(self) -> None:
        """Replace in-memory state with the persisted state. Orders start empty."""
        if self.storage is None:
            return

        state = self.storage.load()
        self.user = state.user
        self.token = state.token
        self.cart = state.cart
        self.wishlist = state.wishlist
        self.addresses = state.addresses
        self.language = state.language
        self.orders = []
        self.client.set_token(self.token)

    def snapshot(self) -> PersistedState:
        """The persisted subset of the current state."""
        return PersistedState(
            user=self.user,
            token=self.token,
            cart=[item.model_copy(deep=True) for item in self.cart],
            wishlist=list(self.wishlist),
            addresses=[address.model_copy() for address in self.addresses],
            language=self.language,
        )

    def _persist(self) -> None:
        if self.storage is None:
            return
        try:
            self.storage.save(self.snapshot())
        except OSError as e:
            logger.error(f"Could not save state: {e}")

    # Fire-and-forget remote calls

    def _spawn(self, action: str, call: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            call.close()
            logger.warning(f"No running event loop, skipped remote {action}")
            return

        task = loop.create_task(self._run_remote(action, call))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_remote(self, action: str, call: Coroutine[Any, Any, Any]) -> None:
        try:
            await call
            logger.debug(f"Remote {action} done")
        except BazaarError as e:
            logger.warning(f"Remote {action} failed, keeping local state: {e}")
        except Exception as e:
            logger.error(f"Unexpected error during remote {action}: {e}", exc_info=True)

    async def wait_for_pending(self) -> None:
        """Wait for outstanding fire-and-forget calls to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Session

    def set_session(self, user: User, token: str) -> None:
        """Enter the authenticated state."""
        self.user = user
        self.token = token
        self.client.set_token(token)
        self._persist()

    def set_user(self, user: Optional[User]) -> None:
        """Update the profile of the logged-in user."""
        self.user = user
        self._persist()

    def reset_session(self) -> None:
        """Back to a blank guest session. Language is kept."""
        self.user = None
        self.token = None
        self.client.set_token(None)
        self.cart = []
        self.wishlist = []
        self.addresses = []
        self.orders = []
        self._persist()

    def set_language(self, language: Language) -> None:
        """Switch the display language. Raises ValueError if unsupported."""
        if language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {language}")
        self.language = language
        self._persist()

    # Cart

    def add_to_cart(self, item: CartItem) -> CartItem:
        """
        Add a line to the cart, merging with a line for the same product and variant.

        Args:
            item: Line to add; its quantity is added to a matching line

        Returns:
            The cart line holding the item
        """
        for line in self.cart:
            if line.line_key == item.line_key:
                line.quantity += item.quantity
                break
        else:
            line = item.model_copy(deep=True)
            self.cart.append(line)
        self._persist()

        if self.is_authenticated:
            self._spawn(
                "add to cart",
                self.client.add_to_cart(
                    item.product.id,
                    item.quantity,
                    selected_size=item.selected_size,
                    selected_color=item.selected_color,
                ),
            )
        return line

    def remove_from_cart(self, product_id: str) -> int:
        """Remove every line of a product, whatever its variant. Returns lines removed."""
        removed = [line for line in self.cart if line.product.id == product_id]
        if not removed:
            return 0

        self.cart = [line for line in self.cart if line.product.id != product_id]
        self._persist()

        if self.is_authenticated:
            for line in removed:
                if line.id:
                    self._spawn("remove from cart", self.client.remove_from_cart(line.id))
                else:
                    logger.debug(f"Line for {product_id} not synced yet, removed locally only")
        return len(removed)

    def update_cart_quantity(self, product_id: str, quantity: int) -> int:
        """Set the quantity of every line of a product; <= 0 removes them. Returns lines touched."""
        if quantity <= 0:
            return self.remove_from_cart(product_id)

        updated = 0
        for line in self.cart:
            if line.product.id != product_id:
                continue
            line.quantity = quantity
            updated += 1
            if self.is_authenticated and line.id:
                self._spawn("update cart quantity", self.client.update_cart_item(line.id, quantity))

        if updated:
            self._persist()
        return updated

    def clear_cart(self, remote: bool = True) -> None:
        """
        Empty the cart.

        Args:
            remote: Also empty the server cart when authenticated. Order placement
                passes False because the server clears it together with the order.
        """
        self.cart = []
        self._persist()
        if remote and self.is_authenticated:
            self._spawn("clear cart", self.client.clear_cart())

    def replace_cart(self, items: list[CartItem]) -> None:
        """Replace the whole cart with server lines."""
        self.cart = list(items)
        self._persist()

    def get_cart_total(self) -> Decimal:
        """Sum of price times quantity over all lines."""
        return sum((line.line_total for line in self.cart), Decimal("0"))

    def get_cart_item_count(self) -> int:
        """Total quantity across all lines."""
        return sum(line.quantity for line in self.cart)

    # Wishlist

    def toggle_wishlist(self, product_id: str) -> bool:
        """Flip wishlist membership. Returns True if the product is now in the wishlist."""
        if product_id in self.wishlist:
            self.wishlist = [pid for pid in self.wishlist if pid != product_id]
            added = False
        else:
            self.wishlist = [*self.wishlist, product_id]
            added = True
        self._persist()

        if self.is_authenticated:
            self._spawn("toggle wishlist", self.client.toggle_wishlist(product_id))
        return added

    def is_in_wishlist(self, product_id: str) -> bool:
        """Whether the product is in the wishlist."""
        return product_id in self.wishlist

    def replace_wishlist(self, product_ids: list[str]) -> None:
        """Replace the wishlist with server product ids."""
        # Keep first occurrence order, drop duplicates
        self.wishlist = list(dict.fromkeys(product_ids))
        self._persist()

    # Addresses

    def add_address(self, address: Address) -> Address:
        """Append an address. A new default clears the flag on every other address."""
        new_address = address.model_copy()
        if new_address.is_default:
            for existing in self.addresses:
                existing.is_default = False
        self.addresses.append(new_address)
        self._persist()

        if self.is_authenticated:
            self._spawn("add address", self._push_address(new_address))
        return new_address

    async def _push_address(self, address: Address) -> None:
        local_id = address.id
        stored = await self.client.add_address(address)
        # Adopt the server id so later deletes and orders can reference it
        for existing in self.addresses:
            if existing.id == local_id:
                existing.id = stored.id
                self._persist()
                break

    def remove_address(self, address_id: str) -> bool:
        """Delete an address. Returns False if it does not exist."""
        if not any(address.id == address_id for address in self.addresses):
            return False

        self.addresses = [address for address in self.addresses if address.id != address_id]
        self._persist()

        if self.is_authenticated and not is_local_id(address_id):
            self._spawn("delete address", self.client.delete_address(address_id))
        return True

    def set_default_address(self, address_id: str) -> bool:
        """Make exactly one address the default. Unknown ids leave the book unchanged."""
        if not any(address.id == address_id for address in self.addresses):
            return False

        for address in self.addresses:
            address.is_default = address.id == address_id
        self._persist()
        return True

    def get_default_address(self) -> Optional[Address]:
        """The default address, if any."""
        return next((address for address in self.addresses if address.is_default), None)

    def get_address(self, address_id: str) -> Optional[Address]:
        """Look up an address by id."""
        return next((address for address in self.addresses if address.id == address_id), None)

    def replace_addresses(self, addresses: list[Address]) -> None:
        """Replace the address book with server addresses, keeping one default."""
        replaced = list(addresses)
        seen_default = False
        for address in replaced:
            if address.is_default:
                if seen_default:
                    logger.warning(f"Address {address.id} also marked default, clearing flag")
                    address.is_default = False
                seen_default = True
        self.addresses = replaced
        self._persist()

    # Orders

    def add_order(self, order: Order) -> None:
        """Record a new order ahead of older ones."""
        self.orders.insert(0, order)

    def get_order(self, order_id: str) -> Optional[Order]:
        """Look up an order by id."""
        return next((order for order in self.orders if order.id == order_id), None)

    def replace_orders(self, orders: list[Order]) -> None:
        """Replace the order list with the server's, most recent first."""
        self.orders = list(orders)
