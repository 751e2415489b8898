"""
Database Schemas for the board-game shop

Each document model represents a MongoDB collection. Collection name is the
lowercase class name (e.g., Product -> "product"). Fields are stored and
exchanged in camelCase; Python code may use either spelling.

Request payload models live at the bottom of the module.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    user = "user"
    admin = "admin"


class ProductCategory(str, Enum):
    party = "party"
    family = "family"
    strategy = "strategy"
    accessory = "accessory"


class CartStatus(str, Enum):
    active = "active"
    ordered = "ordered"
    abandoned = "abandoned"


class PaymentMethod(str, Enum):
    card = "card"
    account_transfer = "account_transfer"
    bank_transfer = "bank_transfer"  # manual deposit, never verified with the gateway
    virtual_account = "virtual_account"
    mobile = "mobile"
    easy_pay = "easy_pay"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    refunded = "refunded"


class OrderStatus(str, Enum):
    received = "received"
    awaiting_payment = "awaiting_payment"
    paid = "paid"
    preparing = "preparing"
    shipping = "shipping"
    delivered = "delivered"
    cancelled = "cancelled"
    refunding = "refunding"
    refunded = "refunded"


CANCELLABLE_STATUSES = {
    OrderStatus.received.value,
    OrderStatus.awaiting_payment.value,
    OrderStatus.paid.value,
    OrderStatus.preparing.value,
}
UNDELETABLE_STATUSES = {OrderStatus.shipping.value, OrderStatus.delivered.value}


class ShippingRequest(str, Enum):
    front_door = "front_door"
    in_person_or_front_door = "in_person_or_front_door"
    security_office = "security_office"
    parcel_locker = "parcel_locker"
    other = "other"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        arbitrary_types_allowed=True,
    )


# ---------- Documents ----------

class User(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., description="bcrypt hash of the user's password")
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role = Role.user


class Product(CamelModel):
    product_code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: ProductCategory
    image: str = Field(..., min_length=1)
    description: str = ""


class CartItem(CamelModel):
    product: ObjectId
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0, description="Product price when the line was last touched")


class Cart(CamelModel):
    user: ObjectId
    items: List[CartItem] = []
    total_amount: float = Field(0, ge=0)
    status: CartStatus = CartStatus.active


class OrderItem(CamelModel):
    """Snapshot of a product at purchase time"""
    product: ObjectId
    product_code: str
    product_name: str
    product_image: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    subtotal: float = Field(..., ge=0)


class Shipping(CamelModel):
    recipient_name: str
    recipient_phone: str
    postal_code: str
    address: str
    detail_address: str = ""
    shipping_request: ShippingRequest = ShippingRequest.front_door
    shipping_memo: str = ""


class Amount(CamelModel):
    items_total: float = Field(..., ge=0)
    shipping_fee: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)


class Payment(CamelModel):
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.pending
    paid_at: Optional[datetime] = None
    payment_id: Optional[str] = None
    payment_info: Optional[Dict[str, Any]] = None


class Delivery(CamelModel):
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class Points(CamelModel):
    earned: int = Field(0, ge=0)
    used: int = Field(0, ge=0)


class Cancellation(CamelModel):
    reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    refund_amount: Optional[float] = None


class Order(CamelModel):
    order_number: str
    user: ObjectId
    items: List[OrderItem] = Field(..., min_length=1)
    shipping: Shipping
    amount: Amount
    payment: Payment
    status: OrderStatus = OrderStatus.received
    delivery: Delivery = Field(default_factory=Delivery)
    points: Points = Field(default_factory=Points)
    memo: str = ""
    cancellation: Cancellation = Field(default_factory=Cancellation)


# ---------- Request payloads ----------

class UserCreate(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Optional[Role] = None


class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Optional[Role] = None


class LoginPayload(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProductCreate(Product):
    pass


class ProductUpdate(CamelModel):
    product_code: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[ProductCategory] = None
    image: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class CartItemAdd(CamelModel):
    product_id: Optional[str] = None
    quantity: int = 1


class CartItemUpdate(CamelModel):
    quantity: Optional[int] = None


class ShippingInput(CamelModel):
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    postal_code: Optional[str] = None
    address: Optional[str] = None
    detail_address: Optional[str] = None
    shipping_request: Optional[ShippingRequest] = None
    shipping_memo: Optional[str] = None


class PaymentInput(CamelModel):
    method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = None
    payment_info: Optional[Dict[str, Any]] = None


class OrderCreate(CamelModel):
    shipping: Optional[ShippingInput] = None
    payment: Optional[PaymentInput] = None
    points_used: int = 0
    memo: str = ""


class PaymentUpdate(CamelModel):
    method: Optional[PaymentMethod] = None
    status: Optional[PaymentStatus] = None
    payment_id: Optional[str] = None
    payment_info: Optional[Dict[str, Any]] = None
    paid_at: Optional[datetime] = None


class PointsUpdate(CamelModel):
    earned: Optional[int] = Field(None, ge=0)
    used: Optional[int] = Field(None, ge=0)


class OrderUpdate(CamelModel):
    shipping: Optional[ShippingInput] = None
    payment: Optional[PaymentUpdate] = None
    memo: Optional[str] = None
    points: Optional[PointsUpdate] = None


class OrderStatusChange(CamelModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class OrderCancel(CamelModel):
    reason: Optional[str] = None
