"""
Domain exceptions raised by services and mapped to HTTP responses in main.py.
"""
from typing import Any, Dict, List, Optional


class OrderDeskError(Exception):
    """Base class for business-rule violations."""

    code = "ORDERDESK_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InvalidOrderStateError(OrderDeskError):
    """An event cannot be appended to an order in its current state."""

    code = "INVALID_ORDER_STATE"


class LimitExceededError(OrderDeskError):
    """An offer's usage limit was reached while consuming it."""

    code = "LIMIT_EXCEEDED"


class OfferNotApplicableError(OrderDeskError):
    """An offer failed validation against an order."""

    code = "OFFER_NOT_APPLICABLE"

    def __init__(
        self,
        message: str = "Offer is not valid for this order",
        issues: Optional[List[Dict[str, Any]]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.issues = issues or []
        self.suggestions = suggestions or []


class NotFoundError(OrderDeskError):
    """A referenced catalog item, offer or order does not exist for this restaurant."""

    code = "NOT_FOUND"


class UnsupportedEventError(OrderDeskError):
    """An event type that cannot be appended through the generic event route."""

    code = "UNSUPPORTED_EVENT"
