"""
Order models.

OrderEvent: append-only log, the source of truth for an order.
Order: projection of the folded event log, rebuilt after every append.
"""
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, Numeric, DateTime, ForeignKey, Uuid, func, Index,
)
from sqlalchemy.orm import relationship

from orderdesk.db.base import Base, JSONType


class Order(Base):
    """Read model for an order. Never written directly by commands."""
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    order_number = Column(String(50), index=True)  # Assigned on confirmation
    status = Column(String(30), nullable=False, default="draft")
    order_type = Column(String(20), nullable=False, default="dine_in")
    currency = Column(String(3), nullable=False, default="USD")

    # Customer
    customer_name = Column(String(255))
    customer_phone = Column(String(50))
    customer_email = Column(String(255))
    table_number = Column(String(20))
    notes = Column(Text)

    # Lines and applied offers as folded from events
    items = Column(JSONType, nullable=False, default=list)
    applied_offers = Column(JSONType, nullable=False, default=list)

    # Financial
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    tip = Column(Numeric(10, 2), nullable=False, default=0)
    surcharge = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)

    # Payment
    payment_method = Column(String(30))
    payment_status = Column(String(20), nullable=False, default="pending")

    # Version of the last applied event
    version = Column(Integer, nullable=False, default=0)

    # Timeline
    started_at = Column(DateTime)
    confirmed_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    restaurant = relationship("Restaurant", back_populates="orders")
    events = relationship(
        "OrderEvent",
        back_populates="order",
        order_by="OrderEvent.version",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index('idx_orders_restaurant_status', 'restaurant_id', 'status'),
        Index('idx_orders_restaurant_created', 'restaurant_id', 'created_at'),
    )


class OrderEvent(Base):
    """
    Immutable order event.

    Versions are contiguous per order starting at 1; the unique index makes a
    second writer of the same version fail instead of forking the stream.
    """
    __tablename__ = "order_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    version = Column(Integer, nullable=False)
    event_type = Column(String(50), nullable=False)
    properties = Column(JSONType, nullable=False, default=dict)
    actor_id = Column(Uuid)
    actor_name = Column(String(255))
    created_at = Column(DateTime, nullable=False)

    order = relationship("Order", back_populates="events")

    __table_args__ = (
        Index('idx_order_events_order_version', 'order_id', 'version', unique=True),
        Index('idx_order_events_order_created', 'order_id', 'created_at'),
    )
