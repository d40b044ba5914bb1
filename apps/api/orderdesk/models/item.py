"""
Item catalog model.
"""
import uuid
from sqlalchemy import Column, String, Text, Boolean, Numeric, DateTime, ForeignKey, Uuid, func, Index
from sqlalchemy.orm import relationship

from orderdesk.db.base import Base


class Item(Base):
    """A dish or product sold by the restaurant. Source of truth for order prices."""
    __tablename__ = "items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    sku = Column(String(64))
    category = Column(String(100))  # e.g. "Mains", "Drinks"
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    restaurant = relationship("Restaurant", back_populates="items")

    __table_args__ = (
        Index('idx_items_restaurant_sku', 'restaurant_id', 'sku', unique=True),
    )
