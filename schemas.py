"""
Database Schemas for the Sport Store

Each record kind held in the flat document has a Pydantic model here
(collection name = plural lowercase of the class name), next to the
request bodies the API accepts for it.
"""
from typing import List, Optional, Literal
from pydantic import AliasChoices, BaseModel, Field, EmailStr, model_validator

PaymentMethod = Literal["mock", "stripe"]
PaymentStatus = Literal["pending", "paid", "requires_action", "failed", "refunded"]
OrderStatus = Literal["Processing", "Shipped", "Delivered", "Cancelled"]

EXTERNAL_PAYMENT_METHODS = {"stripe"}


# ---------------------------
# Stored records
# ---------------------------
class User(BaseModel):
    id: str
    name: str = Field(..., description="Full name")
    # Checked as EmailStr at registration; the configured admin address may
    # use a special-use domain such as .local.
    email: str
    password_hash: str = Field(..., description="Salted password hash, salt:hash")
    is_admin: bool = False
    created_at: str


class Product(BaseModel):
    id: str
    name: str
    brand: str
    category: str
    price: float = Field(..., ge=0)
    rating: float = Field(4.5, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    stock: int = Field(..., ge=0)
    images: List[str] = []
    short_description: str = ""
    description: str
    highlights: List[str] = []
    specs: dict = {}
    updated_at: Optional[str] = None


class OrderItem(BaseModel):
    """Product data copied at checkout time; never refreshed afterwards."""

    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    subtotal: float = Field(..., ge=0)
    image: Optional[str] = None
    backup_image: Optional[str] = None


class Totals(BaseModel):
    subtotal: float
    shipping: float
    tax: float
    total: float


class ShippingAddress(BaseModel):
    model_config = {"str_strip_whitespace": True}

    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., min_length=1)


class Order(BaseModel):
    id: str
    user_id: str
    user_name: str
    created_at: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    checkout_url: Optional[str] = None
    status: OrderStatus = "Processing"
    shipping: ShippingAddress
    items: List[OrderItem]
    totals: Totals


# ---------------------------
# Caller identity
# ---------------------------
class Identity(BaseModel):
    """Claims carried by a verified token."""

    id: str
    name: str
    email: str
    is_admin: bool = False


# ---------------------------
# Request bodies
# ---------------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: str = Field(..., min_length=1)
    password: str


class CartLine(BaseModel):
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(..., validation_alias=AliasChoices("quantity", "qty"))


class CheckoutBody(BaseModel):
    items: List[CartLine]
    payment_method: PaymentMethod = Field("mock", validation_alias=AliasChoices("payment_method", "paymentMethod"))
    shipping: ShippingAddress


class ProductCreateBody(BaseModel):
    name: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    images: List[str] = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    rating: float = Field(4.5, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    short_description: str = ""
    highlights: List[str] = []
    specs: dict = {}


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    review_count: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    highlights: Optional[List[str]] = None
    specs: Optional[dict] = None


class OrderStatusBody(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None

    @model_validator(mode="after")
    def require_a_change(self):
        if self.status is None and self.payment_status is None:
            raise ValueError("Provide status or payment_status")
        return self
