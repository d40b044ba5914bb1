"""
Offer (discount rule) and offer usage models.
"""
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, Numeric, DateTime, ForeignKey, Uuid, func, Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from orderdesk.db.base import Base, JSONType


OFFER_TYPES = (
    "percentage",
    "fixed",
    "buy_x_get_y",
    "combo",
    "happy_hour",
    "early_bird",
    "loyalty",
    "staff",
)

# Types whose value is a percentage of the order amount
PERCENTAGE_TYPES = ("percentage", "happy_hour", "early_bird", "loyalty", "staff")


class Offer(Base):
    """A configured discount/promotion rule."""
    __tablename__ = "offers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    type = Column(String(20), nullable=False)  # one of OFFER_TYPES
    value = Column(Numeric(10, 2), nullable=False, default=0)
    max_discount = Column(Numeric(10, 2))  # Cap on the computed discount
    code = Column(String(50))

    is_active = Column(Boolean, default=True, nullable=False)
    auto_apply = Column(Boolean, default=False, nullable=False)
    is_stackable = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=0, nullable=False)

    # Validity window
    starts_at = Column(DateTime)
    ends_at = Column(DateTime)
    valid_days = Column(JSONType)  # ["monday", "friday"]
    valid_time_start = Column(String(5))  # "HH:MM", restaurant local time
    valid_time_end = Column(String(5))

    # Order conditions
    minimum_amount = Column(Numeric(10, 2))
    minimum_quantity = Column(Integer)

    # Limits
    usage_limit = Column(Integer)
    usage_per_customer = Column(Integer)
    usage_count = Column(Integer, default=0, nullable=False)

    # Scoping
    target_item_ids = Column(JSONType)  # list of item UUID strings
    excluded_item_ids = Column(JSONType)
    conditions = Column(JSONType)  # buy_quantity/get_quantity/discount_percent, combo_items

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime)  # Soft delete

    restaurant = relationship("Restaurant", back_populates="offers")
    usages = relationship("OfferUsage", back_populates="offer", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_offers_restaurant_active', 'restaurant_id', 'is_active'),
        Index('idx_offers_restaurant_code', 'restaurant_id', 'code', unique=True),
        CheckConstraint('usage_limit IS NULL OR usage_count <= usage_limit', name='ck_offers_usage_within_limit'),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class OfferUsage(Base):
    """One confirmed application of an offer to an order."""
    __tablename__ = "offer_usages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    offer_id = Column(Uuid, ForeignKey("offers.id", ondelete="CASCADE"), nullable=False)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="SET NULL"))
    customer_ref = Column(String(255))  # Email or phone of the customer, if known
    discount_amount = Column(Numeric(10, 2), nullable=False)
    order_amount = Column(Numeric(10, 2), nullable=False)
    used_at = Column(DateTime, nullable=False)

    offer = relationship("Offer", back_populates="usages")

    __table_args__ = (
        Index('idx_offer_usages_offer_customer', 'offer_id', 'customer_ref'),
    )
