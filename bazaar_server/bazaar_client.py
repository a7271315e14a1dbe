"""Sudanese Bazaar REST API client."""

import logging
import os
from decimal import Decimal
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .exceptions import ApiError, NetworkError, error_for_status
from .models import (
    Address,
    AddressSnapshot,
    AuthCredentials,
    AuthResponse,
    CartItemResponse,
    Category,
    Order,
    OrderItem,
    Product,
    RegistrationData,
    User,
    WishlistItem,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:5000"


def resolve_base_url(domain: Optional[str] = None) -> str:
    """
    Work out the API origin.

    Args:
        domain: Public domain of the deployment. Defaults to BAZAAR_API_DOMAIN.

    Returns:
        ``https://<domain>`` (dev-server port stripped) or the local dev server
    """
    domain = domain or os.environ.get("BAZAAR_API_DOMAIN")
    if domain:
        return f"https://{domain.replace(':5000', '')}"
    return DEFAULT_BASE_URL


def _format_error(error: Any) -> str:
    """Flatten the ``error`` field of an API error body into one message."""
    if isinstance(error, list):
        # Schema validation failures come back as a list of issues
        parts = []
        for issue in error:
            if isinstance(issue, dict):
                path = ".".join(str(p) for p in issue.get("path", []))
                message = issue.get("message", "invalid value")
                parts.append(f"{path}: {message}" if path else message)
            else:
                parts.append(str(issue))
        return "; ".join(parts)
    return str(error)


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse(model: type[ModelT], data: Any) -> ModelT:
    """Validate one response object, reporting malformed payloads as ApiError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Malformed {model.__name__} in response: {e}")
        raise ApiError(f"Invalid {model.__name__} data from server") from e


def _parse_list(model: type[ModelT], data: Any) -> list[ModelT]:
    if not isinstance(data, list):
        raise ApiError(f"Expected a list of {model.__name__} from server")
    return [_parse(model, item) for item in data]


def _flag(data: Any, key: str) -> bool:
    if not isinstance(data, dict):
        raise ApiError(f"Unexpected response from server: {data!r}")
    return bool(data.get(key))


class BazaarClient:
    """Client for the Sudanese Bazaar REST API.

    Stateless apart from one shared bearer token. There is no retry, caching
    or queuing: every failure is raised to the caller as a typed error.
    """

    API_PREFIX = "/api"

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the Bazaar client.

        Args:
            base_url: API origin (see resolve_base_url)
            token: Initial session token, if already logged in
            timeout: Request timeout in seconds
            transport: Custom httpx transport (used by tests)
        """
        self.base_url = (base_url or resolve_base_url()).rstrip("/")
        self._token = token
        self.client = httpx.AsyncClient(
            base_url=f"{self.base_url}{self.API_PREFIX}",
            timeout=timeout,
            follow_redirects=True,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        """Set or clear the bearer token attached to every request."""
        self._token = token

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "BazaarClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        headers = dict(kwargs.pop("headers", None) or {})
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            response = await self.client.request(method, endpoint, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"{method} {endpoint} failed: {e!r}")
            raise NetworkError(f"Network error: {e}") from e

        logger.debug(f"{method} {endpoint} -> {response.status_code}")

        if not response.is_success:
            raise self._error_from_response(response)

        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"{method} {endpoint} returned a non-JSON body")
            raise ApiError(
                f"Invalid response from server (status {response.status_code})",
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ApiError:
        message = f"HTTP error! status: {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error"):
            message = _format_error(body["error"])

        logger.warning(
            f"{response.request.method} {response.request.url.path} "
            f"returned {response.status_code}: {message}"
        )
        return error_for_status(response.status_code, message)

    # Catalog

    async def get_categories(self) -> list[Category]:
        data = await self._request("GET", "/categories")
        return _parse_list(Category, data)

    async def get_category(self, category_id: str) -> Category:
        data = await self._request("GET", f"/categories/{category_id}")
        return _parse(Category, data)

    async def get_products(
        self,
        category_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Product]:
        """
        List catalog products.

        Args:
            category_id: Only products in this category
            search: Substring matched against English/Arabic names and description
            limit: Maximum number of products

        Returns:
            Matching products
        """
        params: dict[str, Any] = {}
        if category_id:
            params["categoryId"] = category_id
        if search:
            params["search"] = search
        if limit:
            params["limit"] = str(limit)

        data = await self._request("GET", "/products", params=params)
        return _parse_list(Product, data)

    async def get_product(self, product_id: str) -> Product:
        data = await self._request("GET", f"/products/{product_id}")
        return _parse(Product, data)

    # Authentication

    async def register(self, registration: RegistrationData) -> AuthResponse:
        logger.info(f"Registering account for {registration.email}")
        data = await self._request("POST", "/auth/register", json=registration.to_wire())
        return _parse(AuthResponse, data)

    async def login(self, credentials: AuthCredentials) -> AuthResponse:
        logger.info(f"Logging in as {credentials.email}")
        data = await self._request("POST", "/auth/login", json=credentials.model_dump())
        return _parse(AuthResponse, data)

    async def get_me(self) -> User:
        data = await self._request("GET", "/auth/me")
        return _parse(User, data)

    async def logout(self) -> bool:
        data = await self._request("POST", "/auth/logout")
        return _flag(data, "success")

    # Address book

    async def get_addresses(self) -> list[Address]:
        data = await self._request("GET", "/addresses")
        return _parse_list(Address, data)

    async def add_address(self, address: Address) -> Address:
        data = await self._request("POST", "/addresses", json=address.to_request())
        return _parse(Address, data)

    async def delete_address(self, address_id: str) -> bool:
        data = await self._request("DELETE", f"/addresses/{address_id}")
        return _flag(data, "success")

    # Wishlist

    async def get_wishlist(self) -> list[WishlistItem]:
        data = await self._request("GET", "/wishlist")
        return _parse_list(WishlistItem, data)

    async def toggle_wishlist(self, product_id: str) -> bool:
        """Flip wishlist membership server-side. Returns True if now present."""
        data = await self._request("POST", f"/wishlist/{product_id}")
        return _flag(data, "added")

    # Cart

    async def get_cart(self) -> list[CartItemResponse]:
        data = await self._request("GET", "/cart")
        return _parse_list(CartItemResponse, data)

    async def add_to_cart(
        self,
        product_id: str,
        quantity: int = 1,
        selected_size: Optional[str] = None,
        selected_color: Optional[str] = None,
    ) -> bool:
        """
        Add a product to the server cart, merging with a matching line.

        Args:
            product_id: Product ID
            quantity: Quantity to add
            selected_size: Size variant, if any
            selected_color: Color variant, if any

        Returns:
            True if the server accepted the change
        """
        payload: dict[str, Any] = {"productId": product_id, "quantity": quantity}
        if selected_size:
            payload["selectedSize"] = selected_size
        if selected_color:
            payload["selectedColor"] = selected_color

        data = await self._request("POST", "/cart", json=payload)
        return _flag(data, "success")

    async def update_cart_item(self, item_id: str, quantity: int) -> bool:
        """Set a cart line's quantity; the server deletes lines set to <= 0."""
        data = await self._request("PUT", f"/cart/{item_id}", json={"quantity": quantity})
        return _flag(data, "success")

    async def remove_from_cart(self, item_id: str) -> bool:
        data = await self._request("DELETE", f"/cart/{item_id}")
        return _flag(data, "success")

    async def clear_cart(self) -> bool:
        data = await self._request("DELETE", "/cart")
        return _flag(data, "success")

    # Orders

    async def get_orders(self) -> list[Order]:
        """Orders of the current user, most recent first."""
        data = await self._request("GET", "/orders")
        return _parse_list(Order, data)

    async def get_order(self, order_id: str) -> Order:
        data = await self._request("GET", f"/orders/{order_id}")
        return _parse(Order, data)

    async def create_order(
        self,
        items: list[OrderItem],
        total: Decimal,
        delivery_fee: Decimal,
        address_id: Optional[str],
        address_snapshot: AddressSnapshot,
    ) -> Order:
        """
        Submit an order snapshot.

        The server assigns id, ``pending`` status and the estimated delivery
        date, and empties the user's server cart in the same step.

        Args:
            items: Snapshot of the cart lines
            total: Subtotal plus delivery fee
            delivery_fee: Flat delivery fee
            address_id: Address book entry the snapshot was taken from
            address_snapshot: Copy of the delivery address

        Returns:
            The order as stored by the server
        """
        payload = {
            "items": [item.to_wire() for item in items],
            "total": _money(total),
            "deliveryFee": _money(delivery_fee),
            "addressId": address_id,
            "addressSnapshot": address_snapshot.to_wire(),
        }
        logger.info(f"Creating order: {len(items)} line(s), total={_money(total)}")
        data = await self._request("POST", "/orders", json=payload)
        return _parse(Order, data)
