"""Wiring of client, store and sync manager for one shopper."""

import logging
import os
from typing import Optional

import httpx

from .bazaar_client import BazaarClient
from .checkout import place_order
from .exceptions import BazaarError, CartError
from .models import AuthCredentials, CartItem, Order
from .persistence import StateStorage
from .store import AppStore
from .sync import SyncManager

logger = logging.getLogger(__name__)


class BazaarSession:
    """Owns the API client, the local store and the sync manager.

    Servers create one session at startup and hand it to their handlers.
    """

    def __init__(
        self,
        client: BazaarClient,
        store: AppStore,
        credentials: Optional[AuthCredentials] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.sync = SyncManager(store)
        self.credentials = credentials

    @classmethod
    def create(
        cls,
        base_url: Optional[str] = None,
        state_file: Optional[str] = None,
        persist: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "BazaarSession":
        """
        Build a session from explicit arguments and the environment.

        Args:
            base_url: API origin; defaults to BAZAAR_API_DOMAIN or localhost
            state_file: State file path; defaults to BAZAAR_STATE_FILE
            persist: Whether to keep state on disk between runs
            transport: Custom httpx transport (used by tests)
        """
        client = BazaarClient(base_url=base_url, transport=transport)
        storage = StateStorage(state_file) if persist else None
        store = AppStore(client, storage)

        credentials = None
        email = os.environ.get("BAZAAR_EMAIL")
        password = os.environ.get("BAZAAR_PASSWORD")
        if email and password:
            credentials = AuthCredentials(email=email, password=password)
            logger.info(f"Credentials loaded from environment for: {email}")

        return cls(client, store, credentials)

    async def start(self) -> None:
        """Restore saved state and apply BAZAAR_LANGUAGE if set."""
        await self.sync.restore()

        language = os.environ.get("BAZAAR_LANGUAGE")
        if language:
            try:
                self.store.set_language(language)
            except ValueError as e:
                logger.warning(f"Ignoring BAZAAR_LANGUAGE: {e}; keeping {self.store.language}")

    async def ensure_authenticated(self) -> bool:
        """Log in with configured credentials when the store is a guest."""
        if self.store.is_authenticated:
            return True
        if not self.credentials:
            return False

        logger.info("Auto-logging in with configured credentials...")
        try:
            await self.sync.login(self.credentials)
        except BazaarError as e:
            logger.error(f"Auto-login failed: {e}")
            return False
        return True

    async def add_product_to_cart(
        self,
        product_id: str,
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CartItem:
        """
        Look up a product and add it to the cart.

        Args:
            product_id: Product ID
            quantity: Quantity to add
            size: Selected size; required when the product comes in sizes
            color: Selected color name; required when the product comes in colors

        Returns:
            The cart line holding the product

        Raises:
            CartError: If the product is out of stock or the variant is invalid
        """
        if quantity <= 0:
            raise CartError("Quantity must be at least 1")

        product = await self.client.get_product(product_id)
        if not product.in_stock:
            raise CartError(f"{product.name} is out of stock")

        variants = product.variants
        if variants and variants.sizes and size not in variants.sizes:
            raise CartError(f"Choose a size for {product.name}: {', '.join(variants.sizes)}")
        color_names = [c.name for c in variants.colors] if variants else []
        if color_names and color not in color_names:
            raise CartError(f"Choose a color for {product.name}: {', '.join(color_names)}")

        return self.store.add_to_cart(
            CartItem(product=product, quantity=quantity, selected_size=size, selected_color=color)
        )

    async def place_order(self, address_id: Optional[str] = None) -> Order:
        return await place_order(self.store, address_id)

    async def close(self) -> None:
        await self.store.wait_for_pending()
        await self.client.close()
