"""HTTP server exposing a Bazaar shopping session over local REST."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .exceptions import (
    ApiError,
    AuthenticationError,
    BazaarError,
    CartError,
    CheckoutError,
    InvalidRequestError,
    NetworkError,
    NotFoundError,
)
from .models import Address, AuthCredentials, RegistrationData
from .session import BazaarSession
from .store import new_local_id

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("bazaar-http-server")

ERROR_STATUS: list[tuple[type[BazaarError], int]] = [
    (InvalidRequestError, 400),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (CartError, 400),
    (CheckoutError, 400),
    (NetworkError, 503),
    (ApiError, 502),
]


def status_for_error(error: BazaarError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return status_code
    return 500


# Request/Response Models
class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    password: str


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None


class ProductRequest(BaseModel):
    product_id: str


class UpdateQuantityRequest(BaseModel):
    product_id: str
    quantity: int


class AddressRequest(BaseModel):
    label: str
    full_name: str
    phone: str
    area: str
    block: str
    street: str
    building: str
    floor: Optional[str] = None
    apartment: Optional[str] = None
    notes: Optional[str] = None
    is_default: bool = False


class PlaceOrderRequest(BaseModel):
    address_id: Optional[str] = None


class LanguageRequest(BaseModel):
    language: str


def _cart_payload(session: BazaarSession) -> dict[str, Any]:
    store = session.store
    return {
        "items": [item.to_wire() for item in store.cart],
        "itemCount": store.get_cart_item_count(),
        "total": f"{store.get_cart_total():.2f}",
    }


def create_app(session: Optional[BazaarSession] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        session: Session to serve. When omitted one is created from the
            environment on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = session is None
        if owned:
            logger.info("Starting Bazaar HTTP Server...")
            app.state.session = BazaarSession.create()
            await app.state.session.start()
        else:
            app.state.session = session

        yield

        if owned:
            logger.info("Shutting down Bazaar HTTP Server...")
            await app.state.session.close()

    app = FastAPI(
        title="Bazaar MCP Server",
        description="HTTP API for shopping on Sudanese Bazaar",
        version="0.1.0",
        lifespan=lifespan,
    )

    def current(request: Request) -> BazaarSession:
        return request.app.state.session

    @app.exception_handler(BazaarError)
    async def bazaar_error_handler(request: Request, exc: BazaarError) -> JSONResponse:
        status_code = status_for_error(exc)
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    # Root endpoint
    @app.get("/")
    async def root(request: Request):
        """Root endpoint with API information."""
        return {
            "name": "Bazaar MCP Server",
            "version": "0.1.0",
            "description": "HTTP API for shopping on Sudanese Bazaar",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": {"login": "POST /auth/login", "register": "POST /auth/register", "logout": "POST /auth/logout", "status": "GET /auth/status"},
                "catalog": {"categories": "GET /categories", "products": "GET /products", "product": "GET /products/{id}"},
                "cart": {"get": "GET /cart", "add": "POST /cart/add", "remove": "POST /cart/remove", "update": "POST /cart/update", "clear": "POST /cart/clear"},
                "wishlist": {"get": "GET /wishlist", "toggle": "POST /wishlist/toggle"},
                "addresses": {"list": "GET /addresses", "add": "POST /addresses", "delete": "DELETE /addresses/{id}", "default": "POST /addresses/{id}/default"},
                "orders": {"list": "GET /orders", "place": "POST /orders/place", "get": "GET /orders/{id}"},
                "sync": "POST /sync",
                "settings": {"language": "POST /settings/language", "get_language": "GET /settings/language"},
            },
            "authenticated": current(request).store.is_authenticated,
        }

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "authenticated": current(request).store.is_authenticated,
        }

    # Authentication endpoints
    @app.post("/auth/login")
    async def login(body: LoginRequest, request: Request):
        """Log in and pull the account's cart, wishlist, addresses and orders."""
        user = await current(request).sync.login(AuthCredentials(email=body.email, password=body.password))
        return {"success": True, "message": f"Successfully logged in as {user.email}", "user": user.to_wire()}

    @app.post("/auth/register")
    async def register(body: RegisterRequest, request: Request):
        registration = RegistrationData(name=body.name, email=body.email, phone=body.phone, password=body.password)
        user = await current(request).sync.register(registration)
        return {"success": True, "message": f"Account created for {user.email}", "user": user.to_wire()}

    @app.post("/auth/logout")
    async def logout(request: Request):
        await current(request).sync.logout()
        return {"success": True, "message": "Successfully logged out"}

    @app.get("/auth/status")
    async def auth_status(request: Request):
        """Get authentication status."""
        store = current(request).store
        return {
            "authenticated": store.is_authenticated,
            "user": store.user.to_wire() if store.user else None,
        }

    # Catalog endpoints
    @app.get("/categories")
    async def list_categories(request: Request):
        categories = await current(request).client.get_categories()
        return {"count": len(categories), "categories": [c.to_wire() for c in categories]}

    @app.get("/products")
    async def list_products(
        request: Request,
        search: Optional[str] = None,
        category_id: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        products = await current(request).client.get_products(
            category_id=category_id, search=search, limit=limit
        )
        return {"count": len(products), "products": [p.to_wire() for p in products]}

    @app.get("/products/{product_id}")
    async def get_product(product_id: str, request: Request):
        product = await current(request).client.get_product(product_id)
        return product.to_wire()

    # Cart endpoints
    @app.get("/cart")
    async def get_cart(request: Request):
        """Get current shopping cart."""
        return _cart_payload(current(request))

    @app.post("/cart/add")
    async def add_to_cart(body: AddToCartRequest, request: Request):
        """Add a product to the cart."""
        shop = current(request)
        await shop.add_product_to_cart(body.product_id, body.quantity, size=body.size, color=body.color)
        return _cart_payload(shop)

    @app.post("/cart/remove")
    async def remove_from_cart(body: ProductRequest, request: Request):
        shop = current(request)
        if not shop.store.remove_from_cart(body.product_id):
            raise HTTPException(status_code=404, detail=f"Product {body.product_id} is not in the cart")
        return _cart_payload(shop)

    @app.post("/cart/update")
    async def update_cart(body: UpdateQuantityRequest, request: Request):
        shop = current(request)
        if not shop.store.update_cart_quantity(body.product_id, body.quantity):
            raise HTTPException(status_code=404, detail=f"Product {body.product_id} is not in the cart")
        return _cart_payload(shop)

    @app.post("/cart/clear")
    async def clear_cart(request: Request):
        shop = current(request)
        shop.store.clear_cart()
        return _cart_payload(shop)

    # Wishlist endpoints
    @app.get("/wishlist")
    async def get_wishlist(request: Request):
        return {"productIds": current(request).store.wishlist}

    @app.post("/wishlist/toggle")
    async def toggle_wishlist(body: ProductRequest, request: Request):
        added = current(request).store.toggle_wishlist(body.product_id)
        return {"added": added, "productIds": current(request).store.wishlist}

    # Address endpoints
    @app.get("/addresses")
    async def list_addresses(request: Request):
        return [address.to_wire() for address in current(request).store.addresses]

    @app.post("/addresses")
    async def add_address(body: AddressRequest, request: Request):
        address = current(request).store.add_address(Address(id=new_local_id(), **body.model_dump()))
        return address.to_wire()

    @app.delete("/addresses/{address_id}")
    async def delete_address(address_id: str, request: Request):
        if not current(request).store.remove_address(address_id):
            raise HTTPException(status_code=404, detail=f"Address {address_id} not found")
        return {"success": True}

    @app.post("/addresses/{address_id}/default")
    async def set_default_address(address_id: str, request: Request):
        if not current(request).store.set_default_address(address_id):
            raise HTTPException(status_code=404, detail=f"Address {address_id} not found")
        return {"success": True}

    # Order endpoints
    @app.get("/orders")
    async def list_orders(request: Request, refresh: bool = False):
        shop = current(request)
        if refresh:
            await shop.sync.sync_orders()
        orders = shop.store.orders
        return {"count": len(orders), "orders": [order.to_wire() for order in orders]}

    @app.post("/orders/place")
    async def place_order(body: PlaceOrderRequest, request: Request):
        order = await current(request).place_order(body.address_id)
        return order.to_wire()

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str, request: Request):
        shop = current(request)
        order = shop.store.get_order(order_id)
        if order is None and shop.store.is_authenticated:
            order = await shop.client.get_order(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        return order.to_wire()

    @app.post("/sync")
    async def sync(request: Request):
        shop = current(request)
        if not shop.store.is_authenticated:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return await shop.sync.sync_all()

    # Settings endpoints
    @app.post("/settings/language")
    async def set_language(body: LanguageRequest, request: Request):
        """Set the preferred language."""
        try:
            current(request).store.set_language(body.language)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"success": True, "language": body.language}

    @app.get("/settings/language")
    async def get_language(request: Request):
        """Get current language setting."""
        return {"language": current(request).store.language}

    return app


def run_http_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Run the HTTP server."""
    import uvicorn

    if reload:
        uvicorn.run("bazaar_server.http_server:create_app", factory=True, host=host, port=port, reload=True, log_level="info")
    else:
        uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_http_server()
