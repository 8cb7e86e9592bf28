"""
Order models

Orders are created once per checkout, in the same transaction as their
items and stock decrements. Status changes afterwards follow
ORDER_STATUS_TRANSITIONS; orders are never hard-deleted.
"""
from datetime import datetime, timezone
from typing import Dict, FrozenSet
from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Text, Numeric, Index,
    Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum

from tireledger.core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"  # service appointments only, never reached by retail orders


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.NO_SHOW: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_STATUS_TRANSITIONS.get(current, frozenset())


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), unique=True, index=True, nullable=False)
    user_id = Column(Integer, nullable=True, index=True)  # null for guest checkout

    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(String(30))

    # Pricing - Numeric(12,2) for money
    subtotal = Column(Numeric(12, 2), nullable=False)
    catalog_discount = Column(Numeric(12, 2), nullable=False, default=0)
    promotions_discount = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    promotion_codes = Column(String(255))  # comma separated, as applied

    # Shipping
    shipping_method_id = Column(String(64))
    shipping_method_name = Column(String(120))
    tracking_number = Column(String(64))

    # Customer
    customer_name = Column(String(200))
    customer_email = Column(String(255))
    customer_phone = Column(String(40))

    # Shipping address
    shipping_address_line1 = Column(String(255), nullable=False)
    shipping_address_line2 = Column(String(255))
    shipping_city = Column(String(100), nullable=False)
    shipping_state = Column(String(100))
    shipping_postal_code = Column(String(20), nullable=False)
    shipping_country = Column(String(100), nullable=False)

    # Billing address
    billing_address_line1 = Column(String(255))
    billing_address_line2 = Column(String(255))
    billing_city = Column(String(100))
    billing_state = Column(String(100))
    billing_postal_code = Column(String(20))
    billing_country = Column(String(100))

    notes = Column(Text)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    shipped_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
    history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Order {self.order_number}: {self.status}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    # Snapshot of product at time of order, never recomputed
    product_name = Column(String(500), nullable=False)
    product_sku = Column(String(50))
    price = Column(Numeric(12, 2), nullable=False)
    original_price = Column(Numeric(12, 2))
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(OrderStatus), nullable=False)
    note = Column(Text)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    order = relationship("Order", back_populates="history")
