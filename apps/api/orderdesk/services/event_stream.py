"""
Event stream and time travel for orders.

Read-only views over the stored events of an order: the annotated stream,
state reconstructed at a point in time, events in a time window and
activity statistics.
"""
from collections import Counter
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderdesk.core.clock import to_naive_utc
from orderdesk.core.money import money_str
from orderdesk.models.order import Order, OrderEvent
from orderdesk.services.order_state import replay

EVENT_ICONS = {
    "OrderStarted": "play-circle",
    "ItemsAddedToOrder": "shopping-cart",
    "ItemsValidated": "check-circle",
    "ItemsModified": "edit",
    "PriceCalculated": "calculator",
    "PromotionsCalculated": "percent",
    "PromotionApplied": "tag",
    "PromotionRemoved": "tag-x",
    "TipAdded": "dollar-sign",
    "PriceAdjusted": "trending-up",
    "PaymentMethodSet": "credit-card",
    "OrderConfirmed": "check-circle-2",
    "OrderStatusChanged": "arrow-right-circle",
    "PaymentProcessed": "check-square",
    "PaymentFailed": "alert-triangle",
    "CustomerInfoUpdated": "user",
    "OrderCancelled": "x-circle",
    "OrderRefunded": "rotate-ccw",
}

EVENT_COLORS = {
    "OrderStarted": "blue",
    "ItemsAddedToOrder": "green",
    "ItemsValidated": "green",
    "ItemsModified": "yellow",
    "PriceCalculated": "blue",
    "PromotionsCalculated": "purple",
    "PromotionApplied": "purple",
    "PromotionRemoved": "orange",
    "TipAdded": "green",
    "PriceAdjusted": "orange",
    "PaymentMethodSet": "blue",
    "OrderConfirmed": "green",
    "OrderStatusChanged": "blue",
    "PaymentProcessed": "green",
    "PaymentFailed": "red",
    "CustomerInfoUpdated": "blue",
    "OrderCancelled": "red",
    "OrderRefunded": "red",
}


def describe_event(event_type: str, properties: dict) -> str:
    """Human readable one-liner for an event."""
    p = properties or {}
    if event_type == "OrderStarted":
        return "Order was created"
    if event_type == "ItemsAddedToOrder":
        return f"Added {len(p.get('items', []))} items to order"
    if event_type == "ItemsValidated":
        return "Items were validated"
    if event_type == "ItemsModified":
        return "Order items were modified"
    if event_type == "PriceCalculated":
        return f"Price calculated: {money_str(p.get('total'))}"
    if event_type == "PromotionsCalculated":
        return "Promotions were calculated"
    if event_type == "PromotionApplied":
        return f"Promotion applied: {p.get('name') or p.get('offer_id')}"
    if event_type == "PromotionRemoved":
        return "Promotion was removed"
    if event_type == "TipAdded":
        return f"Tip added: {money_str(p.get('amount'))}"
    if event_type == "PriceAdjusted":
        return f"Price adjusted ({p.get('type')}): {p.get('reason') or 'No reason'}"
    if event_type == "PaymentMethodSet":
        return f"Payment method set to {p.get('payment_method') or 'unknown'}"
    if event_type == "OrderConfirmed":
        return f"Order {p.get('order_number')} was confirmed" if p.get("order_number") else "Order was confirmed"
    if event_type == "OrderStatusChanged":
        return f"Status changed to {p.get('new_status') or 'unknown'}"
    if event_type == "PaymentProcessed":
        return f"Payment processed: {money_str(p.get('amount'))}"
    if event_type == "PaymentFailed":
        return f"Payment failed: {p.get('reason') or 'Unknown error'}"
    if event_type == "CustomerInfoUpdated":
        return "Customer information updated"
    if event_type == "OrderCancelled":
        return f"Order cancelled: {p.get('reason') or 'No reason'}"
    if event_type == "OrderRefunded":
        return f"Order refunded: {money_str(p.get('amount'))}"
    return event_type


def format_event(event: OrderEvent) -> dict:
    return {
        "id": event.id,
        "order_id": event.order_id,
        "version": event.version,
        "event_type": event.event_type,
        "properties": event.properties or {},
        "actor_id": event.actor_id,
        "actor_name": event.actor_name,
        "created_at": event.created_at,
        "description": describe_event(event.event_type, event.properties),
        "icon": EVENT_ICONS.get(event.event_type, "circle"),
        "color": EVENT_COLORS.get(event.event_type, "gray"),
    }


class EventStreamService:

    def __init__(self, db: Session):
        self.db = db

    def _events(self, order: Order) -> List[OrderEvent]:
        stmt = select(OrderEvent).where(OrderEvent.order_id == order.id).order_by(OrderEvent.version)
        return list(self.db.execute(stmt).scalars().all())

    def get_event_stream(self, order: Order) -> List[dict]:
        """All events, newest first, annotated for display."""
        return [format_event(e) for e in reversed(self._events(order))]

    def get_state_at(self, order: Order, timestamp: datetime) -> dict:
        """
        Order state as it was at ``timestamp``.

        ``state`` is None when no event had happened yet.
        """
        timestamp = to_naive_utc(timestamp)
        events = [e for e in self._events(order) if e.created_at <= timestamp]
        state = replay(events, until=timestamp).to_dict() if events else None
        return {"state": state, "timestamp": timestamp, "event_count": len(events)}

    def get_events_between(self, order: Order, start: datetime, end: datetime) -> List[dict]:
        """Events created within [start, end], in version order."""
        start, end = to_naive_utc(start), to_naive_utc(end)
        return [
            format_event(e) for e in self._events(order)
            if start <= e.created_at <= end
        ]

    def get_statistics(self, order: Order) -> dict:
        events = self._events(order)

        by_type = Counter(e.event_type for e in events)
        by_actor = Counter(e.actor_name or (str(e.actor_id) if e.actor_id else "system") for e in events)

        first: Optional[OrderEvent] = min(events, key=lambda e: e.created_at, default=None)
        last: Optional[OrderEvent] = max(events, key=lambda e: e.created_at, default=None)

        return {
            "order_id": order.id,
            "total_events": len(events),
            "by_type": dict(by_type),
            "by_actor": dict(by_actor),
            "first_event_at": first.created_at if first else None,
            "last_event_at": last.created_at if last else None,
            "duration_seconds": (last.created_at - first.created_at).total_seconds() if events else None,
        }
