import uuid
from sqlalchemy import Column, String, DateTime, Uuid, func, ForeignKey
from sqlalchemy.orm import relationship
from orderdesk.db.base import Base

class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    timezone = Column(String(50), nullable=False, server_default='UTC')
    currency = Column(String(3), nullable=False, server_default='USD')
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    owner = relationship("User", back_populates="restaurants")
    items = relationship("Item", back_populates="restaurant", cascade="all, delete-orphan")
    offers = relationship("Offer", back_populates="restaurant", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="restaurant", cascade="all, delete-orphan")
