"""
Offer eligibility rules.

The validator collects every failing rule instead of stopping at the first,
so callers can show all reasons an offer does not apply. It is pure: the
caller provides the clock readings and the customer's past usage count.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from orderdesk.core.money import ZERO, to_money

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

SUGGESTIONS = {
    "MIN_AMOUNT": "Add more items to meet the minimum amount requirement",
    "MIN_QUANTITY": "Add more items to meet the minimum quantity requirement",
    "INVALID_ITEMS": "This offer is only valid for specific items",
    "EXCLUDED_ITEMS": "Remove excluded items to use this offer",
    "TIME_RANGE": "This offer is only valid during specific hours",
    "DAY_OF_WEEK": "This offer is only valid on certain days",
    "CUSTOMER_USAGE_LIMIT": "You have already used this offer the maximum number of times",
}


@dataclass
class OrderContext:
    """What the validator needs to know about an order."""
    lines: Sequence[dict] = field(default_factory=list)
    subtotal: Decimal = ZERO
    customer_ref: Optional[str] = None
    provided_code: Optional[str] = None
    customer_usage_count: int = 0

    @property
    def item_ids(self) -> set[str]:
        return {str(line.get("item_id")) for line in self.lines}

    @property
    def item_quantity(self) -> int:
        return sum(int(line.get("quantity", 0)) for line in self.lines)


@dataclass
class ValidationIssue:
    field: str
    message: str
    code: str
    context: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message, "code": self.code, "context": self.context}


@dataclass
class ValidationResult:
    issues: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    @property
    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]

    @property
    def failure_reason(self) -> Optional[str]:
        return None if self.is_valid else "Offer is not valid for this order"


def _parse_hhmm(value: str) -> tuple[int, int]:
    hours, minutes = value.split(":")[:2]
    return int(hours), int(minutes)


def is_within_time_window(start: Optional[str], end: Optional[str], local_now: datetime) -> bool:
    """
    Inclusive HH:MM window. A window whose end is before its start runs
    past midnight (e.g. 22:00-02:00).
    """
    if not start or not end:
        return True

    current = (local_now.hour, local_now.minute)
    start_t, end_t = _parse_hhmm(start), _parse_hhmm(end)
    if start_t <= end_t:
        return start_t <= current <= end_t
    return current >= start_t or current <= end_t


class OfferValidator:

    def validate(self, offer, context: OrderContext, now: datetime, local_now: Optional[datetime] = None) -> ValidationResult:
        """
        Check an offer against an order.

        Args:
            offer: Offer model (or any object with the same attributes)
            context: order lines, subtotal, customer and provided code
            now: current instant, naive UTC
            local_now: current restaurant-local time; defaults to ``now``
        """
        local_now = local_now or now
        issues: list[ValidationIssue] = []

        if not offer.is_active:
            issues.append(ValidationIssue("is_active", "Offer is not active", "INACTIVE"))

        if (offer.starts_at and now < offer.starts_at) or (offer.ends_at and now > offer.ends_at):
            issues.append(ValidationIssue(
                "date_range",
                "Offer is not within valid date range",
                "DATE_RANGE",
                {
                    "starts_at": offer.starts_at.isoformat() if offer.starts_at else None,
                    "ends_at": offer.ends_at.isoformat() if offer.ends_at else None,
                },
            ))

        if not is_within_time_window(offer.valid_time_start, offer.valid_time_end, local_now):
            issues.append(ValidationIssue(
                "time_range",
                "Offer is not within valid time range",
                "TIME_RANGE",
                {"valid_time_start": offer.valid_time_start, "valid_time_end": offer.valid_time_end},
            ))

        if offer.valid_days:
            today = WEEKDAYS[local_now.weekday()]
            if today not in [d.lower() for d in offer.valid_days]:
                issues.append(ValidationIssue(
                    "day_of_week",
                    "Offer is not valid for today",
                    "DAY_OF_WEEK",
                    {"valid_days": offer.valid_days, "current_day": today},
                ))

        subtotal = to_money(context.subtotal)
        if offer.minimum_amount is not None and subtotal < to_money(offer.minimum_amount):
            issues.append(ValidationIssue(
                "minimum_amount",
                "Order does not meet minimum amount requirement",
                "MIN_AMOUNT",
                {"required": str(to_money(offer.minimum_amount)), "actual": str(subtotal)},
            ))

        if offer.minimum_quantity and context.item_quantity < offer.minimum_quantity:
            issues.append(ValidationIssue(
                "minimum_quantity",
                "Order does not meet minimum quantity requirement",
                "MIN_QUANTITY",
                {"required": offer.minimum_quantity, "actual": context.item_quantity},
            ))

        if offer.usage_limit is not None and (offer.usage_count or 0) >= offer.usage_limit:
            issues.append(ValidationIssue(
                "usage_limit",
                "Offer has reached its usage limit",
                "USAGE_LIMIT",
                {"limit": offer.usage_limit, "used": offer.usage_count or 0},
            ))

        if (
            offer.usage_per_customer
            and context.customer_ref
            and context.customer_usage_count >= offer.usage_per_customer
        ):
            issues.append(ValidationIssue(
                "customer_usage",
                "Customer has reached usage limit for this offer",
                "CUSTOMER_USAGE_LIMIT",
                {"customer": context.customer_ref, "limit": offer.usage_per_customer},
            ))

        item_ids = context.item_ids
        targets = {str(i) for i in (offer.target_item_ids or [])}
        if targets and not targets & item_ids:
            issues.append(ValidationIssue(
                "items",
                "Offer is not valid for these items",
                "INVALID_ITEMS",
                {"target_item_ids": sorted(targets)},
            ))

        excluded = {str(i) for i in (offer.excluded_item_ids or [])}
        if excluded & item_ids:
            issues.append(ValidationIssue(
                "exclusions",
                "Order contains excluded items",
                "EXCLUDED_ITEMS",
                {"excluded_items": sorted(excluded & item_ids)},
            ))

        if offer.code and context.provided_code is not None:
            if offer.code.lower() != context.provided_code.strip().lower():
                issues.append(ValidationIssue("code", "Invalid offer code", "INVALID_CODE"))

        return ValidationResult(issues=issues, suggestions=self._suggestions(issues))

    def _suggestions(self, issues: list[ValidationIssue]) -> list[str]:
        suggestions = []
        for issue in issues:
            suggestion = SUGGESTIONS.get(issue.code)
            if suggestion and suggestion not in suggestions:
                suggestions.append(suggestion)
        return suggestions
