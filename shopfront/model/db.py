from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
    Index,
)

from .schemas import (
    Customer, Order, OrderItem, OrderStatus, Product, ShippingAddress
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class ProductRow(Base):
    __tablename__ = "products"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    price_cents = Column(Integer, nullable=False)
    inventory = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    category = Column(String, nullable=False, default="General")
    condition = Column(String, nullable=False, default="Good")
    brand = Column(String, nullable=False, default="")
    size = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    image_url = Column(String, nullable=False, default="")
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    def to_model(self) -> Product:
        return Product(
            id=self.id,
            name=self.name,
            price_cents=self.price_cents,
            inventory=self.inventory,
            active=self.active,
            category=self.category,
            condition=self.condition,
            brand=self.brand,
            size=self.size,
            description=self.description,
            image_url=self.image_url,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class OrderRow(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)

    # pending | paid | paid_unfulfilled
    status = Column(String, nullable=False, default="pending")
    items = Column(JSON, nullable=False)  # list of OrderItem dicts
    subtotal_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)

    payment_session_id = Column(String, nullable=True, unique=True)
    payment_event_id = Column(String, nullable=True)
    customer = Column(JSON, nullable=True)
    shipping = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_orders_created_at", "created_at"),
    )

    @classmethod
    def from_model(cls, order: Order) -> "OrderRow":
        row = cls(id=order.id)
        row.apply(order)
        return row

    def apply(self, order: Order) -> None:
        self.status = order.status.value
        self.items = [i.model_dump() for i in order.items]
        self.subtotal_cents = order.subtotal_cents
        self.currency = order.currency
        self.created_at = order.created_at
        self.paid_at = order.paid_at
        self.payment_session_id = order.payment_session_id
        self.payment_event_id = order.payment_event_id
        self.customer = order.customer.model_dump() if order.customer else None
        self.shipping = order.shipping.model_dump() if order.shipping else None

    def to_model(self) -> Order:
        return Order(
            id=self.id,
            status=OrderStatus(self.status),
            items=[OrderItem(**i) for i in self.items],
            subtotal_cents=self.subtotal_cents,
            currency=self.currency,
            created_at=self.created_at,
            paid_at=self.paid_at,
            payment_session_id=self.payment_session_id,
            payment_event_id=self.payment_event_id,
            customer=Customer(**self.customer) if self.customer else None,
            shipping=(
                ShippingAddress(**self.shipping) if self.shipping else None
            ),
        )
