"""
Database Schemas for the Gem Marketplace

Each Pydantic model represents a MongoDB collection document (or a part of
one). Collection names: "gem", "cart", "order", "counter".
The request payloads accepted by the API live at the bottom of this module.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


GEM_CATEGORIES = (
    # Navratna
    "Blue Sapphire (Neelam)",
    "Yellow Sapphire (Pukhraj)",
    "Ruby (Manik)",
    "Emerald (Panna)",
    "Diamond (Heera)",
    "Pearl (Moti)",
    "Cat's Eye (Lehsunia)",
    "Hessonite (Gomed)",
    "Coral (Moonga)",
    # Exclusive gemstones
    "Alexandrite",
    "Basra Pearl",
    "Burma Ruby",
    "Colombian Emerald",
    "Cornflower Blue Sapphire",
    "Kashmir Blue Sapphire",
    "No-Oil Emerald",
    "Padparadscha Sapphire",
    "Panjshir Emerald",
    "Swat Emerald",
    "Pigeon Blood Ruby",
    "Royal Blue Sapphire",
    # Sapphire
    "Sapphire",
    "Bi-Colour Sapphire (Pitambari)",
    "Color Change Sapphire",
    "Green Sapphire",
    "Pink Sapphire",
    "Peach Sapphire",
    "Purple Sapphire (Khooni Neelam)",
    "White Sapphire",
    # Upratna
    "Amethyst",
    "Aquamarine",
    "Blue Topaz",
    "Citrine Stone (Sunela)",
    "Tourmaline",
    "Opal",
    "Tanzanite",
    "Iolite (Neeli)",
    "Jasper (Mahe Mariyam)",
    "Lapis",
    # Legacy
    "Emerald",
    "Ruby",
    "Pearl",
    "Red Coral",
    "Gomed (Hessonite)",
    "Diamond",
    "Cat's Eye",
    "Moonstone",
    "Turquoise",
)

SizeUnit = Literal["carat", "gram", "ounce", "ratti"]
DiscountType = Literal["percentage", "fixed"]

PRICE_REQUIRED = "Price is required and must be > 0 when contact_for_price is false"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


CANCELLABLE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.PROCESSING.value)


class PaymentMethod(str, Enum):
    COD = "COD"
    ONLINE = "Online"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _check_category(value):
    if value is not None and value not in GEM_CATEGORIES:
        raise ValueError(f"Unknown category: {value}")
    return value


class GemListing(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255, description="Gem name")
    hindi_name: str = Field(..., min_length=1, max_length=255)
    alternate_names: List[str] = Field(default_factory=list)
    planet: str = Field(..., min_length=1, max_length=100)
    planet_hindi: Optional[str] = Field(None, max_length=100)
    color: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    benefits: List[str] = Field(default_factory=list)
    suitable_for: List[str] = Field(default_factory=list, description="Zodiac signs")
    category: str = Field(..., description="One of GEM_CATEGORIES")
    price: Optional[float] = Field(None, ge=0, description="Absent when contact_for_price is set")
    contact_for_price: bool = Field(False)
    discount: float = Field(0, ge=0)
    discount_type: DiscountType = "percentage"
    size_weight: float = Field(..., ge=0)
    size_unit: SizeUnit = "carat"
    stock: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    certification: str = Field(..., min_length=1, max_length=255)
    origin: str = Field(..., min_length=1, max_length=255)
    delivery_days: int = Field(..., ge=1)
    hero_image: str = Field(..., min_length=1)
    low_stock_threshold: int = Field(5, ge=0)

    @field_validator("category")
    @classmethod
    def known_category(cls, value):
        return _check_category(value)

    @model_validator(mode="after")
    def price_or_contact(self):
        if self.contact_for_price:
            self.price = None
        elif self.price is None or self.price <= 0:
            raise ValueError(PRICE_REQUIRED)
        return self


class ListingUpdate(BaseModel):
    """Partial update of a listing. Only fields present in the payload apply."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    hindi_name: Optional[str] = Field(None, min_length=1, max_length=255)
    alternate_names: Optional[List[str]] = None
    planet: Optional[str] = Field(None, min_length=1, max_length=100)
    planet_hindi: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1)
    benefits: Optional[List[str]] = None
    suitable_for: Optional[List[str]] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    contact_for_price: Optional[bool] = None
    discount: Optional[float] = Field(None, ge=0)
    discount_type: Optional[DiscountType] = None
    size_weight: Optional[float] = Field(None, ge=0)
    size_unit: Optional[SizeUnit] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    certification: Optional[str] = Field(None, min_length=1, max_length=255)
    origin: Optional[str] = Field(None, min_length=1, max_length=255)
    delivery_days: Optional[int] = Field(None, ge=1)
    hero_image: Optional[str] = Field(None, min_length=1)
    low_stock_threshold: Optional[int] = Field(None, ge=0)

    @field_validator("category")
    @classmethod
    def known_category(cls, value):
        return _check_category(value)


class CartLine(BaseModel):
    item_id: str
    listing_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Listing price when the line was added")


class Cart(BaseModel):
    user: str
    items: List[CartLine] = Field(default_factory=list)


class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    listing_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at time of purchase")
    seller: str


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    order_number: str
    buyer: str
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_status: PaymentStatus = PaymentStatus.PENDING
    total_price: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    tracking_number: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


# Request payloads

class OrderLineIn(BaseModel):
    listing_id: str
    quantity: int = Field(..., ge=1)
    price: Optional[float] = Field(None, ge=0, description="Unit price shown to the buyer")


class PlaceOrderRequest(BaseModel):
    items: List[OrderLineIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD


class CheckoutRequest(BaseModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD


class AddToCartRequest(BaseModel):
    listing_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
