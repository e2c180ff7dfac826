"""
Database Schemas for the Storefront

Each Pydantic model represents a collection in MongoDB. Collection name is the lowercase of the class name.
"""

from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from pydantic.alias_generators import to_camel

ORDER_STATUSES = ("pending", "processing", "shipped", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed")

# Request bodies accept camelCase keys (and snake_case); responses go out camelCase.
WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(BaseModel):
    name: str
    email: EmailStr
    password_hash: str
    role: Literal["customer", "admin"] = Field("customer", description="user role: customer, admin")
    phone: Optional[str] = None
    address: Optional[str] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    image: Optional[str] = None
    images: List[str] = []
    status: Literal["active", "inactive"] = "active"
    featured: bool = False


class CustomerInfo(BaseModel):
    """Contact snapshot copied onto the order at checkout."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    image: Optional[str] = None


class Order(BaseModel):
    order_id: str = Field(..., description="Human-friendly order code")
    customer: CustomerInfo
    items: List[OrderItem]
    subtotal: float
    delivery_fee: float
    total: float
    status: Literal["pending", "processing", "shipped", "completed", "cancelled"] = "pending"
    payment_method: str = "cash"
    payment_status: Literal["pending", "paid", "failed"] = "pending"
    delivery_option: str = "standard"


class CartLine(BaseModel):
    """One line of a checkout submission. Only the product reference and
    quantity are used; name/price/image are re-read from the catalog."""
    model_config = WIRE_CONFIG

    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    name: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None


def to_wire(data):
    """Rename snake_case document keys to camelCase for responses; "_id" and
    other underscore-prefixed keys are left alone."""
    if isinstance(data, dict):
        return {
            (k if k.startswith("_") else to_camel(k)): to_wire(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [to_wire(v) for v in data]
    return data
