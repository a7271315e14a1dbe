"""MCP Server for the Sudanese Bazaar shop."""

import asyncio
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .exceptions import BazaarError
from .models import (
    ORDER_STEPS,
    Address,
    AuthCredentials,
    Order,
    Product,
    RegistrationData,
)
from .session import BazaarSession
from .store import new_local_id

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("bazaar-mcp-server")

CURRENCY = "KWD"

TOOLS = [
    Tool(
        name="bazaar_login",
        description="Log in to Sudanese Bazaar. Uses BAZAAR_EMAIL/BAZAAR_PASSWORD if not provided. Replaces the guest cart with the account's cart.",
        inputSchema={
            "type": "object",
            "properties": {
                "email": {"type": "string", "description": "Account email"},
                "password": {"type": "string", "description": "Account password"},
            },
        },
    ),
    Tool(
        name="bazaar_register",
        description="Create a Sudanese Bazaar account and log in",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Full name"},
                "email": {"type": "string", "description": "Account email"},
                "phone": {"type": "string", "description": "Phone number (optional)"},
                "password": {"type": "string", "description": "Password (at least 6 characters)"},
            },
            "required": ["name", "email", "password"],
        },
    ),
    Tool(
        name="bazaar_logout",
        description="Log out and reset to an empty guest session",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="bazaar_list_categories",
        description="List product categories",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="bazaar_search_products",
        description="Search the catalog by text and/or category",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search term (English or Arabic)"},
                "category_id": {"type": "string", "description": "Restrict to a category"},
                "limit": {"type": "integer", "description": "Maximum number of results"},
            },
        },
    ),
    Tool(
        name="bazaar_get_product",
        description="Get full details of a product, including available sizes and colors",
        inputSchema={
            "type": "object",
            "properties": {"product_id": {"type": "string", "description": "Product ID"}},
            "required": ["product_id"],
        },
    ),
    Tool(
        name="bazaar_add_to_cart",
        description="Add a product to the cart. Adding the same product and variant again increases its quantity.",
        inputSchema={
            "type": "object",
            "properties": {
                "product_id": {"type": "string", "description": "Product ID to add"},
                "quantity": {"type": "integer", "description": "Quantity to add (default: 1)", "default": 1},
                "size": {"type": "string", "description": "Selected size, if the product has sizes"},
                "color": {"type": "string", "description": "Selected color name, if the product has colors"},
            },
            "required": ["product_id"],
        },
    ),
    Tool(
        name="bazaar_remove_from_cart",
        description="Remove a product (all its variants) from the cart",
        inputSchema={
            "type": "object",
            "properties": {"product_id": {"type": "string", "description": "Product ID to remove"}},
            "required": ["product_id"],
        },
    ),
    Tool(
        name="bazaar_update_cart_quantity",
        description="Set the quantity of a product in the cart. 0 removes it.",
        inputSchema={
            "type": "object",
            "properties": {
                "product_id": {"type": "string", "description": "Product ID to update"},
                "quantity": {"type": "integer", "description": "New quantity"},
            },
            "required": ["product_id", "quantity"],
        },
    ),
    Tool(
        name="bazaar_clear_cart",
        description="Remove everything from the cart",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="bazaar_get_cart",
        description="Get current cart contents with subtotal",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="bazaar_toggle_wishlist",
        description="Add a product to the wishlist, or remove it if already there",
        inputSchema={
            "type": "object",
            "properties": {"product_id": {"type": "string", "description": "Product ID"}},
            "required": ["product_id"],
        },
    ),
    Tool(
        name="bazaar_get_wishlist",
        description="List wishlist product IDs",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="bazaar_list_addresses",
        description="List saved delivery addresses",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="bazaar_add_address",
        description="Save a delivery address",
        inputSchema={
            "type": "object",
            "properties": {
                "label": {"type": "string", "description": "Label such as Home or Work"},
                "full_name": {"type": "string"},
                "phone": {"type": "string"},
                "area": {"type": "string"},
                "block": {"type": "string"},
                "street": {"type": "string"},
                "building": {"type": "string"},
                "floor": {"type": "string"},
                "apartment": {"type": "string"},
                "notes": {"type": "string"},
                "is_default": {"type": "boolean", "default": False},
            },
            "required": ["label", "full_name", "phone", "area", "block", "street", "building"],
        },
    ),
    Tool(
        name="bazaar_remove_address",
        description="Delete a saved address",
        inputSchema={
            "type": "object",
            "properties": {"address_id": {"type": "string"}},
            "required": ["address_id"],
        },
    ),
    Tool(
        name="bazaar_set_default_address",
        description="Make an address the default delivery address",
        inputSchema={
            "type": "object",
            "properties": {"address_id": {"type": "string"}},
            "required": ["address_id"],
        },
    ),
    Tool(
        name="bazaar_place_order",
        description="Place a cash-on-delivery order for the whole cart",
        inputSchema={
            "type": "object",
            "properties": {
                "address_id": {
                    "type": "string",
                    "description": "Delivery address ID (default: the default address)",
                },
            },
        },
    ),
    Tool(
        name="bazaar_get_orders",
        description="List orders, most recent first",
        inputSchema={
            "type": "object",
            "properties": {
                "refresh": {
                    "type": "boolean",
                    "description": "Fetch the latest orders from the server first (default: false)",
                    "default": False,
                },
            },
        },
    ),
    Tool(
        name="bazaar_track_order",
        description="Show the delivery progress of an order",
        inputSchema={
            "type": "object",
            "properties": {"order_id": {"type": "string", "description": "Order ID"}},
            "required": ["order_id"],
        },
    ),
    Tool(
        name="bazaar_refresh",
        description="Re-download cart, wishlist, addresses and orders from the server",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="bazaar_set_language",
        description="Set the preferred language for product names",
        inputSchema={
            "type": "object",
            "properties": {
                "language": {
                    "type": "string",
                    "enum": ["ar", "en"],
                    "description": "'ar' for Arabic, 'en' for English",
                },
            },
            "required": ["language"],
        },
    ),
]


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def _product_name(product: Product, language: str) -> str:
    if language == "ar" and product.name_ar:
        return product.name_ar
    return product.name


def format_product(product: Product, language: str = "en") -> list[str]:
    lines = [_product_name(product, language)]
    lines.append(f"   ID: {product.id}")
    lines.append(f"   Price: {product.price} {CURRENCY}")
    if product.discount_percent:
        lines.append(
            f"   Original Price: {product.original_price} {CURRENCY} (-{product.discount_percent}%)"
        )
    lines.append(f"   Rating: {product.rating} ({product.review_count} reviews)")
    lines.append(f"   In stock: {'Yes' if product.in_stock else 'No'}")
    if product.seller_name:
        lines.append(f"   Seller: {product.seller_name}")
    if product.variants:
        if product.variants.sizes:
            lines.append(f"   Sizes: {', '.join(product.variants.sizes)}")
        if product.variants.colors:
            lines.append(f"   Colors: {', '.join(c.name for c in product.variants.colors)}")
    return lines


def format_cart(session: BazaarSession) -> str:
    store = session.store
    if not store.cart:
        return "Your cart is empty"

    lines = [f"Shopping Cart ({store.get_cart_item_count()} items):\n"]
    for i, item in enumerate(store.cart, 1):
        lines.append(f"\n{i}. {_product_name(item.product, store.language)}")
        lines.append(f"   Product ID: {item.product.id}")
        if item.selected_size:
            lines.append(f"   Size: {item.selected_size}")
        if item.selected_color:
            lines.append(f"   Color: {item.selected_color}")
        lines.append(f"   Price: {item.product.price} {CURRENCY}")
        lines.append(f"   Quantity: {item.quantity}")
        lines.append(f"   Subtotal: {item.line_total} {CURRENCY}")

    lines.append(f"\n{'=' * 50}")
    lines.append(f"Subtotal: {store.get_cart_total()} {CURRENCY}")
    return "\n".join(lines)


def format_order(order: Order) -> list[str]:
    lines = [f"Order {order.id}"]
    lines.append(f"   Status: {order.status.value}")
    lines.append(f"   Date: {order.created_at.strftime('%Y-%m-%d %H:%M')}")
    lines.append(f"   Total: {order.total:.2f} {CURRENCY} (delivery {order.delivery_fee:.2f})")
    if order.estimated_delivery:
        lines.append(f"   Estimated delivery: {order.estimated_delivery.strftime('%Y-%m-%d')}")
    if order.address:
        lines.append(
            f"   Deliver to: {order.address.full_name}, {order.address.area}, "
            f"block {order.address.block}, street {order.address.street}, "
            f"building {order.address.building}"
        )
    if order.items:
        lines.append(f"   Items ({len(order.items)}):")
        for item in order.items:
            lines.append(f"     - {item.product_name} x{item.quantity} ({item.line_total} {CURRENCY})")
    return lines


def format_tracking(order: Order) -> str:
    lines = [f"Order {order.id}: {order.status.value}"]
    for step in ORDER_STEPS:
        mark = "[x]" if order.status.is_reached(step.status) else "[ ]"
        lines.append(f"{mark} {step.label} / {step.label_ar}")
    if order.estimated_delivery:
        lines.append(f"Estimated delivery: {order.estimated_delivery.strftime('%Y-%m-%d')}")
    return "\n".join(lines)


def format_address(address: Address) -> str:
    default = " (default)" if address.is_default else ""
    parts = [address.area, f"block {address.block}", f"street {address.street}", f"building {address.building}"]
    if address.floor:
        parts.append(f"floor {address.floor}")
    if address.apartment:
        parts.append(f"apt {address.apartment}")
    return f"{address.label}{default} [{address.id}]: {address.full_name}, {address.phone}, {', '.join(parts)}"


async def handle_tool(session: BazaarSession, name: str, arguments: Optional[dict[str, Any]]) -> list[TextContent]:
    """Run one tool against the session and render the result as text."""
    arguments = arguments or {}
    store = session.store

    try:
        if name == "bazaar_login":
            email = arguments.get("email")
            password = arguments.get("password")

            # If credentials not provided, use environment credentials
            if not email or not password:
                if session.credentials:
                    email = email or session.credentials.email
                    password = password or session.credentials.password
                else:
                    return _text("Error: No credentials provided and BAZAAR_EMAIL/BAZAAR_PASSWORD not configured.")

            user = await session.sync.login(AuthCredentials(email=email, password=password))
            return _text(f"Successfully logged in as {user.name} ({user.email})")

        elif name == "bazaar_register":
            registration = RegistrationData(
                name=arguments["name"],
                email=arguments["email"],
                phone=arguments.get("phone"),
                password=arguments["password"],
            )
            user = await session.sync.register(registration)
            return _text(f"Account created. Logged in as {user.name} ({user.email})")

        elif name == "bazaar_logout":
            await session.sync.logout()
            return _text("Successfully logged out")

        elif name == "bazaar_list_categories":
            categories = await session.client.get_categories()
            if not categories:
                return _text("No categories found")
            lines = [f"Found {len(categories)} categories:\n"]
            for category in categories:
                label = category.name_ar if store.language == "ar" and category.name_ar else category.name
                lines.append(f"- {label} [{category.id}] ({category.product_count} products)")
            return _text("\n".join(lines))

        elif name == "bazaar_search_products":
            products = await session.client.get_products(
                category_id=arguments.get("category_id"),
                search=arguments.get("query"),
                limit=arguments.get("limit"),
            )
            if not products:
                return _text(f"No products found for: {arguments.get('query') or arguments.get('category_id') or 'catalog'}")

            lines = [f"Found {len(products)} product(s):\n"]
            for i, product in enumerate(products, 1):
                product_lines = format_product(product, store.language)
                lines.append(f"\n{i}. {product_lines[0]}")
                lines.extend(product_lines[1:])
            return _text("\n".join(lines))

        elif name == "bazaar_get_product":
            product = await session.client.get_product(arguments["product_id"])
            lines = format_product(product, store.language)
            description = product.description_ar if store.language == "ar" and product.description_ar else product.description
            if description:
                lines.append(f"\n{description}")
            if store.is_in_wishlist(product.id):
                lines.append("\n(in your wishlist)")
            return _text("\n".join(lines))

        elif name == "bazaar_add_to_cart":
            quantity = arguments.get("quantity", 1)
            line = await session.add_product_to_cart(
                arguments["product_id"],
                quantity=quantity,
                size=arguments.get("size"),
                color=arguments.get("color"),
            )
            return _text(
                f"Added {quantity} x {line.product.name} to cart (now {line.quantity} in this line)"
            )

        elif name == "bazaar_remove_from_cart":
            product_id = arguments["product_id"]
            removed = store.remove_from_cart(product_id)
            if not removed:
                return _text(f"Product {product_id} is not in the cart")
            return _text(f"Removed product {product_id} from cart")

        elif name == "bazaar_update_cart_quantity":
            product_id = arguments["product_id"]
            quantity = arguments["quantity"]
            updated = store.update_cart_quantity(product_id, quantity)
            if not updated:
                return _text(f"Product {product_id} is not in the cart")
            if quantity <= 0:
                return _text(f"Removed product {product_id} from cart")
            return _text(f"Updated product {product_id} to quantity {quantity}")

        elif name == "bazaar_clear_cart":
            store.clear_cart()
            return _text("Cart cleared")

        elif name == "bazaar_get_cart":
            return _text(format_cart(session))

        elif name == "bazaar_toggle_wishlist":
            product_id = arguments["product_id"]
            added = store.toggle_wishlist(product_id)
            return _text(f"{'Added' if added else 'Removed'} product {product_id} {'to' if added else 'from'} wishlist")

        elif name == "bazaar_get_wishlist":
            if not store.wishlist:
                return _text("Your wishlist is empty")
            return _text("Wishlist:\n" + "\n".join(f"- {pid}" for pid in store.wishlist))

        elif name == "bazaar_list_addresses":
            if not store.addresses:
                return _text("No saved addresses")
            return _text("\n".join(format_address(address) for address in store.addresses))

        elif name == "bazaar_add_address":
            address = store.add_address(
                Address(
                    id=new_local_id(),
                    label=arguments["label"],
                    full_name=arguments["full_name"],
                    phone=arguments["phone"],
                    area=arguments["area"],
                    block=arguments["block"],
                    street=arguments["street"],
                    building=arguments["building"],
                    floor=arguments.get("floor"),
                    apartment=arguments.get("apartment"),
                    notes=arguments.get("notes"),
                    is_default=arguments.get("is_default", False),
                )
            )
            return _text(f"Saved address: {format_address(address)}")

        elif name == "bazaar_remove_address":
            address_id = arguments["address_id"]
            if not store.remove_address(address_id):
                return _text(f"Address {address_id} not found")
            return _text(f"Removed address {address_id}")

        elif name == "bazaar_set_default_address":
            address_id = arguments["address_id"]
            if not store.set_default_address(address_id):
                return _text(f"Address {address_id} not found")
            return _text(f"Address {address_id} is now the default")

        elif name == "bazaar_place_order":
            order = await session.place_order(arguments.get("address_id"))
            lines = ["Order placed! Payment: cash on delivery\n"]
            lines.extend(format_order(order))
            return _text("\n".join(lines))

        elif name == "bazaar_get_orders":
            if arguments.get("refresh", False):
                await session.sync.sync_orders()

            if not store.orders:
                return _text("No orders found")

            lines = [f"Found {len(store.orders)} order(s):\n"]
            for i, order in enumerate(store.orders, 1):
                order_lines = format_order(order)
                lines.append(f"\n{i}. {order_lines[0]}")
                lines.extend(order_lines[1:])
            return _text("\n".join(lines))

        elif name == "bazaar_track_order":
            order_id = arguments["order_id"]
            order = store.get_order(order_id)
            if order is None and store.is_authenticated:
                order = await session.client.get_order(order_id)
            if order is None:
                return _text(f"Order {order_id} not found")
            return _text(format_tracking(order))

        elif name == "bazaar_refresh":
            if not store.is_authenticated:
                return _text("Not logged in: nothing to refresh")
            results = await session.sync.sync_all()
            lines = [f"{collection}: {'updated' if ok else 'failed'}" for collection, ok in results.items()]
            return _text("Refresh results:\n" + "\n".join(lines))

        elif name == "bazaar_set_language":
            language = arguments["language"]
            store.set_language(language)
            lang_name = "Arabic" if language == "ar" else "English"
            return _text(f"Language set to {lang_name} ({language})")

        else:
            return _text(f"Unknown tool: {name}")

    except BazaarError as e:
        logger.error(f"Error executing tool {name}: {e}")
        return _text(f"Error: {e}")
    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return _text(f"Error: {str(e)}")


def create_server(session: BazaarSession) -> Server:
    """Build the MCP server bound to one shopping session."""
    app = Server("bazaar-mcp-server")

    @app.list_resources()
    async def list_resources() -> list[Resource]:
        return [
            Resource(
                uri=AnyUrl("bazaar://cart"),
                name="Shopping Cart",
                mimeType="application/json",
                description="Current shopping cart contents",
            ),
            Resource(
                uri=AnyUrl("bazaar://orders"),
                name="Orders",
                mimeType="application/json",
                description="Orders, most recent first",
            ),
        ]

    @app.read_resource()
    async def read_resource(uri: AnyUrl) -> str:
        uri_str = str(uri)

        if uri_str == "bazaar://cart":
            return json.dumps(
                {
                    "items": [item.to_wire() for item in session.store.cart],
                    "itemCount": session.store.get_cart_item_count(),
                    "total": f"{session.store.get_cart_total():.2f}",
                },
                indent=2,
                ensure_ascii=False,
            )

        elif uri_str == "bazaar://orders":
            return json.dumps(
                [order.to_wire() for order in session.store.orders], indent=2, ensure_ascii=False
            )

        raise ValueError(f"Unknown resource: {uri}")

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @app.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        return await handle_tool(session, name, arguments)

    return app


async def main(state_file: Optional[str] = None) -> None:
    """Main entry point for the MCP server."""
    session = BazaarSession.create(state_file=state_file)
    await session.start()

    if not session.store.is_authenticated:
        if session.credentials:
            await session.ensure_authenticated()
        else:
            logger.warning("No credentials found in environment variables (BAZAAR_EMAIL, BAZAAR_PASSWORD)")
            logger.warning("Running as guest; use bazaar_login to sync with an account")

    logger.info("Starting Bazaar MCP Server...")
    app = create_server(session)

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await session.close()


if __name__ == "__main__":
    asyncio.run(main())
