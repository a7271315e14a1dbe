"""Data models for Sudanese Bazaar entities."""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Literal, NamedTuple, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Language = Literal["ar", "en"]

DELIVERY_FEE = Decimal("2.00")
CURRENT_SCHEMA_VERSION = 2


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for models exchanged with the Bazaar REST API.

    The API speaks camelCase JSON and sends ``null`` for unset columns; both
    spellings are accepted and nulls fall back to the field default.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    def to_wire(self) -> dict[str, Any]:
        """Serialize to a camelCase JSON-ready dict."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AuthCredentials(BaseModel):
    """Authentication credentials."""

    email: str
    password: str


class RegistrationData(WireModel):
    """Payload for creating a new account."""

    name: str
    email: str
    phone: Optional[str] = None
    password: str


class User(WireModel):
    """Authenticated customer."""

    id: str
    name: str
    email: str
    phone: Optional[str] = None
    avatar: Optional[str] = None


class AuthResponse(WireModel):
    """Result of a successful login or registration."""

    user: User
    token: str


class Category(WireModel):
    """Represents a product category."""

    id: str
    name: str
    name_ar: str = ""
    icon: str = ""
    image: Optional[str] = None
    product_count: int = 0


class ProductColor(WireModel):
    name: str
    value: str


class ProductVariants(WireModel):
    sizes: list[str] = Field(default_factory=list)
    colors: list[ProductColor] = Field(default_factory=list)


class Product(WireModel):
    """Represents a catalog product. Read-only on the client."""

    id: str = Field(description="Product ID")
    name: str = Field(description="English product name")
    name_ar: str = Field(default="", description="Arabic product name")
    description: str = ""
    description_ar: str = ""
    price: Decimal = Field(description="Unit price")
    original_price: Optional[Decimal] = Field(None, description="Price before discount")
    images: list[str] = Field(default_factory=list)
    category_id: str = ""
    rating: Decimal = Decimal("0")
    review_count: int = 0
    variants: Optional[ProductVariants] = None
    in_stock: bool = True
    seller_id: str = ""
    seller_name: str = ""

    @field_validator("original_price", mode="before")
    @classmethod
    def _blank_original_price(cls, value: Any) -> Any:
        # The API sends "" as well as null for products without a discount
        return value or None

    @property
    def discount_percent(self) -> int:
        """Rounded discount relative to ``original_price`` (0 when not discounted)."""
        if not self.original_price or self.original_price <= self.price:
            return 0
        ratio = (self.original_price - self.price) / self.original_price * 100
        return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


CartLineKey = tuple[str, Optional[str], Optional[str]]


class CartItem(WireModel):
    """A cart line. ``id`` is only set once the line exists server-side."""

    id: Optional[str] = None
    product: Product
    quantity: int = Field(default=1, gt=0)
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None

    @property
    def line_key(self) -> CartLineKey:
        """Merge identity: two lines are the same iff product and variant match."""
        return (self.product.id, self.selected_size, self.selected_color)

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity


class CartItemResponse(WireModel):
    """Cart row as returned by ``GET /cart`` (product joined, may be missing)."""

    id: str
    quantity: Optional[int] = None
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None
    product: Optional[Product] = None

    def to_cart_item(self) -> Optional[CartItem]:
        """Convert to a local cart line; rows whose product is gone yield None."""
        if self.product is None:
            return None
        return CartItem(
            id=self.id,
            product=self.product,
            quantity=self.quantity or 1,
            selected_size=self.selected_size,
            selected_color=self.selected_color,
        )


class WishlistItem(WireModel):
    """Wishlist row as returned by ``GET /wishlist``."""

    id: str
    product_id: str
    product: Optional[Product] = None


class Address(WireModel):
    """Delivery address from the user's address book."""

    id: str
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

    def to_request(self) -> dict[str, Any]:
        """Body for ``POST /addresses``; the server assigns id and owner."""
        payload = self.to_wire()
        payload.pop("id", None)
        return payload


class AddressSnapshot(WireModel):
    """Immutable copy of an address taken when an order is placed."""

    model_config = ConfigDict(frozen=True)

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

    @classmethod
    def from_address(cls, address: Address) -> "AddressSnapshot":
        return cls(
            label=address.label,
            full_name=address.full_name,
            phone=address.phone,
            area=address.area,
            block=address.block,
            street=address.street,
            building=address.building,
            floor=address.floor,
            apartment=address.apartment,
            notes=address.notes,
        )


class OrderItem(WireModel):
    """Immutable copy of a cart line taken when an order is placed."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    product_name: str
    product_name_ar: str = ""
    price: Decimal
    quantity: int = Field(gt=0)
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None
    image: Optional[str] = None

    @field_serializer("price", when_used="json")
    def _price_as_number(self, price: Decimal) -> float:
        # Order item prices travel as JSON numbers, unlike order totals
        return float(price)

    @classmethod
    def from_cart_item(cls, item: CartItem) -> "OrderItem":
        product = item.product
        return cls(
            product_id=product.id,
            product_name=product.name,
            product_name_ar=product.name_ar,
            price=product.price,
            quantity=item.quantity,
            selected_size=item.selected_size,
            selected_color=item.selected_color,
            image=product.images[0] if product.images else None,
        )

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class OrderStatus(str, Enum):
    """Server-assigned order status. Progresses forward only."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"

    @property
    def step_index(self) -> int:
        return list(OrderStatus).index(self)

    def is_reached(self, step: "OrderStatus") -> bool:
        """Whether an order in this status has passed through ``step``."""
        return step.step_index <= self.step_index


class TrackingStep(NamedTuple):
    status: OrderStatus
    label: str
    label_ar: str


ORDER_STEPS: tuple[TrackingStep, ...] = (
    TrackingStep(OrderStatus.PENDING, "Order Placed", "تم تقديم الطلب"),
    TrackingStep(OrderStatus.CONFIRMED, "Order Confirmed", "تم تأكيد الطلب"),
    TrackingStep(OrderStatus.OUT_FOR_DELIVERY, "Out for Delivery", "في الطريق"),
    TrackingStep(OrderStatus.DELIVERED, "Delivered", "تم التوصيل"),
)


class Order(WireModel):
    """Represents a placed order."""

    id: str = Field(description="Order ID")
    items: list[OrderItem] = Field(default_factory=list)
    total: Decimal = Field(description="Subtotal plus delivery fee")
    delivery_fee: Decimal = DELIVERY_FEE
    status: OrderStatus = OrderStatus.PENDING
    address: Optional[AddressSnapshot] = Field(
        None, alias="addressSnapshot", description="Delivery address at placement time"
    )
    address_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    estimated_delivery: Optional[datetime] = None

    @property
    def subtotal(self) -> Decimal:
        return self.total - self.delivery_fee

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class PersistedState(WireModel):
    """Subset of the store that survives restarts. Orders are never persisted."""

    schema_version: int = CURRENT_SCHEMA_VERSION
    user: Optional[User] = None
    token: Optional[str] = None
    cart: list[CartItem] = Field(default_factory=list)
    wishlist: list[str] = Field(default_factory=list)
    addresses: list[Address] = Field(default_factory=list)
    language: Language = "ar"
