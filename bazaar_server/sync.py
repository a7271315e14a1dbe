"""Reconciliation between the local store and the server."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .exceptions import AuthenticationError, BazaarError
from .models import AuthCredentials, AuthResponse, RegistrationData, User
from .store import AppStore

logger = logging.getLogger(__name__)

SYNCED_COLLECTIONS = ("cart", "wishlist", "addresses", "orders")


class SyncManager:
    """
    Drives authentication transitions and pull-syncs for an AppStore.

    Pull-syncs never merge: a successful fetch replaces the local collection
    with the server's version. Without a session token every sync is a no-op.
    """

    def __init__(self, store: AppStore) -> None:
        self.store = store
        self.client = store.client

    # Authentication transitions

    async def login(self, credentials: AuthCredentials) -> User:
        """
        Log in and hydrate the store from the server.

        Guest cart, wishlist and addresses are discarded in favour of the
        server's copies. A failed login raises and leaves the store untouched.

        Args:
            credentials: User credentials

        Returns:
            The logged-in user
        """
        response = await self.client.login(credentials)
        await self._enter_session(response)
        return response.user

    async def register(self, registration: RegistrationData) -> User:
        """Create an account, then behave exactly like a login."""
        response = await self.client.register(registration)
        await self._enter_session(response)
        return response.user

    async def _enter_session(self, response: AuthResponse) -> None:
        self.store.set_session(response.user, response.token)
        logger.info(f"Logged in as {response.user.email}")

        results = await self.sync_all()
        failed = [name for name, ok in results.items() if not ok]
        if failed:
            logger.warning(f"Post-login sync incomplete for: {', '.join(failed)}")

    async def logout(self) -> None:
        """Best-effort server logout, then reset to a blank guest session."""
        if self.store.is_authenticated:
            try:
                await self.client.logout()
            except BazaarError as e:
                logger.warning(f"Server logout failed, clearing local session anyway: {e}")

        self.store.reset_session()
        logger.info("Logged out")

    def _force_logout(self, token: str) -> None:
        if self.store.token != token:
            return
        logger.warning("Session token rejected by server, reverting to guest session")
        self.store.reset_session()

    async def restore(self) -> None:
        """
        Startup hydration: load persisted state and re-fetch orders.

        An expired token reverts to a guest session. Network failures keep the
        saved session so the shopper can work offline until the next refresh.
        """
        self.store.load()
        if not self.store.is_authenticated:
            logger.info("Starting as guest")
            return

        try:
            await self.sync_orders()
        except AuthenticationError:
            logger.info("Saved session expired")
        except BazaarError as e:
            logger.warning(f"Could not fetch orders on startup: {e}")

    async def refresh_user(self) -> User:
        """Re-read the profile of the logged-in user."""
        token = self.store.token
        if not token:
            raise AuthenticationError("Not authenticated", status_code=401)

        try:
            user = await self.client.get_me()
        except AuthenticationError:
            self._force_logout(token)
            raise

        self.store.set_user(user)
        return user

    # Pull-syncs

    async def _pull(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        apply: Callable[[Any], None],
    ) -> bool:
        token = self.store.token
        if not token:
            logger.debug(f"Skipping {name} sync: not authenticated")
            return False

        try:
            data = await fetch()
        except AuthenticationError:
            self._force_logout(token)
            raise

        if self.store.token != token:
            logger.info(f"Session changed while syncing {name}, discarding result")
            return False

        apply(data)
        logger.info(f"Synced {name}")
        return True

    async def sync_cart(self) -> bool:
        def apply(rows: list) -> None:
            items = [row.to_cart_item() for row in rows]
            self.store.replace_cart([item for item in items if item is not None])

        return await self._pull("cart", self.client.get_cart, apply)

    async def sync_wishlist(self) -> bool:
        def apply(rows: list) -> None:
            self.store.replace_wishlist([row.product_id for row in rows])

        return await self._pull("wishlist", self.client.get_wishlist, apply)

    async def sync_addresses(self) -> bool:
        return await self._pull("addresses", self.client.get_addresses, self.store.replace_addresses)

    async def sync_orders(self) -> bool:
        return await self._pull("orders", self.client.get_orders, self.store.replace_orders)

    async def sync_all(self) -> dict[str, bool]:
        """
        Run the four pull-syncs independently.

        Returns:
            Mapping of collection name to whether it was refreshed
        """
        results = await asyncio.gather(
            self.sync_cart(),
            self.sync_wishlist(),
            self.sync_addresses(),
            self.sync_orders(),
            return_exceptions=True,
        )

        outcome: dict[str, bool] = {}
        for name, result in zip(SYNCED_COLLECTIONS, results):
            if isinstance(result, BazaarError):
                logger.warning(f"Could not sync {name}: {result}")
                outcome[name] = False
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome[name] = result
        return outcome
