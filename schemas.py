"""
Ayn Wine Database Schemas

Each Pydantic model below represents one MongoDB collection. The collection name is the lowercase
class name, except WishlistItem -> "wishlist" and EmailLog -> "email_log".

References to other documents are stored as the string form of their ObjectId.
These schemas are used for validation before inserting documents.
"""
from typing import List, Optional
from pydantic import BaseModel, Field, EmailStr


class User(BaseModel):
    name: str
    email: EmailStr
    password_hash: str
    role: str = Field("customer", description="customer | admin")
    phone: Optional[str] = None


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    category: str
    image: Optional[str] = None
    tags: List[str] = []
    volume: Optional[str] = None
    alcohol: Optional[float] = None
    origin: Optional[str] = None
    reviews: int = 0


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []
    total: float = 0.0
    version: int = 0  # bumped by every write, see cart.CartService


class OrderItem(BaseModel):
    product_id: str
    product_name: str  # snapshot at checkout
    price: float  # snapshot at checkout
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    user_id: str
    shipping_address_id: str
    items: List[OrderItem]
    total: float
    status: str = Field("pending", description="pending|processing|shipped|delivered|cancelled")
    payment_status: str = Field("pending", description="pending|completed|failed|refunded")
    stripe_payment_intent_id: Optional[str] = None
    tracking_number: Optional[str] = None


class Address(BaseModel):
    user_id: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str
    is_default: bool = False


class WishlistItem(BaseModel):
    user_id: str
    product_id: str


class EmailLog(BaseModel):
    to: str
    subject: str
    body: str
    status: str = Field("pending", description="pending|sent|failed")
    error: Optional[str] = None
