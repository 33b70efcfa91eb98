"""
Database Schemas for Artvia

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase of the class name.
Fields are snake_case in Python and camelCase in stored documents and JSON bodies.
"""
from typing import Annotated, Optional, List, Literal, Any
from email_validator import validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime

PAYMENT_METHODS = ("card", "cash")
ORDER_STATUSES = (
    "pending",
    "pending_payment",
    "payment_uploaded",
    "payment_confirmed",
    "paid",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
)

OrderStatus = Literal[
    "pending", "pending_payment", "payment_uploaded", "payment_confirmed",
    "paid", "processing", "shipped", "delivered", "cancelled",
]


def check_email(value: str) -> str:
    # format check only; the address is stored and looked up exactly as submitted
    validate_email(value, check_deliverability=False)
    return value


Email = Annotated[str, AfterValidator(check_email)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Users collection
class User(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: Email
    password: str  # bcrypt digest; legacy accounts may still hold plaintext
    role: Literal["user", "admin"] = "user"
    is_admin: bool = False


# Categories collection
class Category(CamelModel):
    name: str = Field(..., min_length=1)
    name_uz: str = Field(..., min_length=1)
    name_ru: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)


# Products collection
class Product(CamelModel):
    title: str
    title_uz: str
    title_ru: str
    description: str
    description_uz: str
    description_ru: str
    price: float = Field(..., ge=0)
    image: str = ""
    category: Any  # ObjectId of the category
    category_name: str


# Favorites collection, unique per (user, product)
class Favorite(CamelModel):
    user: Any
    product: Any


# Portfolio works collection
class Work(CamelModel):
    title: str = "Untitled Work"
    description_uz: str
    description_ru: str
    description_en: str
    category: str = "General"
    image: Optional[str] = None
    video: Optional[str] = None
    video_url: Optional[str] = None
    featured: bool = False


# Orders collection
class OrderItem(CamelModel):
    product: Any
    name: str
    image: str = ""
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0)


class PersonalInfo(CamelModel):
    name: str
    email: str
    phone: str


class DeliveryAddress(CamelModel):
    region: str
    address: str
    comment: str = ""


class DeliveryLocation(CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Order(CamelModel):
    user: Any
    items: List[OrderItem]
    total_price: float = Field(..., ge=0)
    personal_info: PersonalInfo
    payment_method: Literal["card", "cash"]
    delivery_address: DeliveryAddress
    delivery_location: DeliveryLocation
    status: OrderStatus = "pending"
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    payment_screenshot: str = ""
