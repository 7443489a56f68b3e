from __future__ import annotations
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..errors import ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    # paid at the processor, but the advisory reservation lost the race for
    # stock; nothing was decremented and the order needs a refund
    PAID_UNFULFILLED = "paid_unfulfilled"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


# ----------------------------
# Catalog
# ----------------------------
class Product(BaseModel):
    id: str
    name: str
    price_cents: int
    inventory: int = 0
    active: bool = True
    category: str = "General"
    condition: str = "Good"
    brand: str = ""
    size: str = ""
    description: str = ""
    image_url: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0


class ProductIn(BaseModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    price_cents: int
    inventory: int = Field(default=0, ge=0)
    active: bool = True
    category: str = "General"
    condition: str = "Good"
    brand: str = ""
    size: str = ""
    description: str = ""
    image_url: str = ""


class ProductPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    price_cents: Optional[int] = None
    inventory: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    brand: Optional[str] = None
    size: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


# ----------------------------
# Cart
# ----------------------------
class CartLine(BaseModel):
    # prices sent by the client are dropped on purpose
    id: str = Field(min_length=1)
    qty: int = 1


class CheckoutRequest(BaseModel):
    cart: List[CartLine] = Field(default_factory=list)


# ----------------------------
# Orders
# ----------------------------
class OrderItem(BaseModel):
    product_id: str
    name: str
    unit_price_cents: int
    qty: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.qty


class Customer(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class ShippingAddress(BaseModel):
    name: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class Order(BaseModel):
    id: str
    status: OrderStatus = OrderStatus.PENDING
    items: List[OrderItem]
    subtotal_cents: int
    currency: str = "usd"
    created_at: float
    paid_at: Optional[float] = None
    payment_session_id: Optional[str] = None
    payment_event_id: Optional[str] = None
    customer: Optional[Customer] = None
    shipping: Optional[ShippingAddress] = None

    @classmethod
    def new_pending(cls, *, order_id: str, items: List[OrderItem],
                    currency: str, created_at: float,
                    payment_session_id: Optional[str] = None) -> "Order":
        if not items:
            raise ValidationError("order has no items")
        return cls(
            id=order_id,
            status=OrderStatus.PENDING,
            items=list(items),
            subtotal_cents=sum(i.line_total_cents for i in items),
            currency=currency,
            created_at=created_at,
            payment_session_id=payment_session_id,
        )

    def check_pending_invariants(self) -> None:
        """Raised before anything is written for a new order."""
        if self.status is not OrderStatus.PENDING:
            raise ValidationError("new orders must be pending")
        if not self.items:
            raise ValidationError("order has no items")
        for item in self.items:
            if item.qty <= 0 or item.unit_price_cents < 0:
                raise ValidationError(
                    f"invalid line for product {item.product_id}"
                )
        if self.subtotal_cents != sum(i.line_total_cents for i in self.items):
            raise ValidationError("subtotal does not match order items")
