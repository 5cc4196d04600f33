"""
Database schemas for the storefront.

Each document model maps to one MongoDB collection named after the
lowercased class name (product, category, pack, order, user). Request bodies
accept both snake_case and camelCase keys; documents are stored snake_case.
"""
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Translations(ApiModel):
    fr: str = ""
    ar: str = ""


# Plain strings are kept for records created before translations existed
LocalizedText = Union[str, Translations]


# -----------------------------
# CATALOG
# -----------------------------
class VariantAttribute(ApiModel):
    name: str
    values: list[str] = Field(default_factory=list)


class Variant(ApiModel):
    attributes: dict[str, str] = Field(default_factory=dict)
    price: float = Field(ge=0)
    promo_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None


class Product(ApiModel):
    name: LocalizedText
    description: LocalizedText = ""
    price: Optional[float] = Field(None, ge=0)
    promo_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)
    num_reviews: int = 0
    tags: list[str] = Field(default_factory=list)
    featured: bool = False
    has_variants: bool = False
    variant_attributes: list[VariantAttribute] = Field(default_factory=list)
    variants: list[Variant] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_pricing(self):
        if self.has_variants:
            if not self.variants:
                raise ValueError("Products with variants need at least one variant")
        elif self.price is None:
            raise ValueError("Valid price is required")
        return self


class ProductUpdate(ApiModel):
    name: Optional[LocalizedText] = None
    description: Optional[LocalizedText] = None
    price: Optional[float] = Field(None, ge=0)
    promo_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[list[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    tags: Optional[list[str]] = None
    featured: Optional[bool] = None
    has_variants: Optional[bool] = None
    variant_attributes: Optional[list[VariantAttribute]] = None
    variants: Optional[list[Variant]] = None


class Category(ApiModel):
    name: LocalizedText
    description: str = ""
    image: str = ""
    parent: Optional[str] = None


class CategoryUpdate(ApiModel):
    name: Optional[LocalizedText] = None
    description: Optional[str] = None
    image: Optional[str] = None


class PackEntry(ApiModel):
    product: str
    quantity: int = Field(1, ge=1)


class Pack(ApiModel):
    name: LocalizedText
    description: LocalizedText = ""
    products: list[PackEntry] = Field(default_factory=list)
    original_price: Optional[float] = Field(None, ge=0)
    discount_price: float = Field(ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    image: Optional[str] = None
    active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    featured: bool = False


class PackUpdate(ApiModel):
    name: Optional[LocalizedText] = None
    description: Optional[LocalizedText] = None
    products: Optional[list[PackEntry]] = None
    original_price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    image: Optional[str] = None
    active: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    featured: Optional[bool] = None


# -----------------------------
# ORDERS
# -----------------------------
class OrderStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class Address(ApiModel):
    street: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""


class GuestInfo(ApiModel):
    name: str = ""
    email: Optional[EmailStr] = None
    phone: str = ""
    address: Optional[Address] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, v):
        # missing and blank are reported together with the other required fields
        if isinstance(v, str) and not v.strip():
            return None
        return v


class OrderLineIn(ApiModel):
    product: Optional[str] = None
    pack: Optional[str] = None
    quantity: int = Field(ge=1)
    variant_attributes: Optional[dict[str, str]] = None

    @model_validator(mode="after")
    def one_target(self):
        if bool(self.product) == bool(self.pack):
            raise ValueError("Each item needs exactly one of product or pack")
        return self


class CreateOrderRequest(ApiModel):
    items: list[OrderLineIn]
    guest_info: Optional[GuestInfo] = None
    notes: Optional[str] = None


class OrderItem(ApiModel):
    product: str
    pack: Optional[str] = None
    name: str
    quantity: int = Field(ge=1)
    price: float = Field(ge=0)
    image: str = ""


class Order(ApiModel):
    user: Optional[str] = None
    guest_info: Optional[GuestInfo] = None
    items: list[OrderItem]
    subtotal: float = Field(ge=0)
    shipping_cost: float = Field(0, ge=0)
    total: float = Field(ge=0)
    status: OrderStatus = OrderStatus.PENDING
    notes: str = ""


class StatusUpdate(ApiModel):
    status: str


# -----------------------------
# USERS / PRICING
# -----------------------------
class User(ApiModel):
    name: str
    email: EmailStr
    role: str = "user"
    phone: Optional[str] = None
    address: Optional[Address] = None


class QuoteRequest(ApiModel):
    product: str
    variant_attributes: Optional[dict[str, str]] = None
