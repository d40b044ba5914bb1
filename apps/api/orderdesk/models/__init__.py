"""
SQLAlchemy models for OrderDesk.
"""
# Core entities
from orderdesk.models.user import User
from orderdesk.models.restaurant import Restaurant

# Catalog
from orderdesk.models.item import Item

# Offers
from orderdesk.models.offer import Offer, OfferUsage

# Orders
from orderdesk.models.order import Order, OrderEvent


__all__ = [
    # Core
    "User",
    "Restaurant",
    # Catalog
    "Item",
    # Offers
    "Offer",
    "OfferUsage",
    # Orders
    "Order",
    "OrderEvent",
]
