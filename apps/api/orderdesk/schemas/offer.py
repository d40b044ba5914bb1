"""
Offer Pydantic schemas for API request/response models.
"""
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from orderdesk.core.clock import to_naive_utc
from orderdesk.models.offer import PERCENTAGE_TYPES

OfferType = Literal[
    "percentage", "fixed", "buy_x_get_y", "combo", "happy_hour", "early_bird", "loyalty", "staff"
]
Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Columns an update may omit but never clear
REQUIRED_FIELDS = ("name", "type", "value", "is_active", "auto_apply", "is_stackable", "priority")


def check_offer_rules(
    type: str,
    value: Optional[Decimal],
    conditions: Optional[Dict[str, Any]],
    starts_at: Optional[datetime],
    ends_at: Optional[datetime],
) -> None:
    """Cross-field rules shared by create and update. Raises ValueError."""
    conditions = conditions or {}

    if type in PERCENTAGE_TYPES and value is not None and value > 100:
        raise ValueError("Percentage value cannot exceed 100")

    if type == "buy_x_get_y":
        for key in ("buy_quantity", "get_quantity"):
            qty = conditions.get(key)
            if not isinstance(qty, int) or qty < 1:
                raise ValueError(f"buy_x_get_y offers require conditions.{key} >= 1")
        percent = conditions.get("discount_percent", 100)
        if not 0 < Decimal(str(percent)) <= 100:
            raise ValueError("conditions.discount_percent must be between 0 and 100")

    if type == "combo" and not conditions.get("combo_items"):
        raise ValueError("combo offers require conditions.combo_items")

    if starts_at and ends_at and ends_at <= starts_at:
        raise ValueError("ends_at must be after starts_at")


class OfferFields(BaseModel):
    """Fields shared by offer create/update payloads."""

    @field_validator("valid_time_start", "valid_time_end", check_fields=False)
    @classmethod
    def validate_hhmm(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not HHMM.match(v):
            raise ValueError("Time must be in HH:MM format")
        return v

    @field_validator("starts_at", "ends_at", check_fields=False)
    @classmethod
    def normalize_window(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Stored as naive UTC
        return to_naive_utc(v) if v is not None else None

    @field_validator("code", check_fields=False)
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class OfferCreate(OfferFields):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    type: OfferType
    value: Decimal = Field(Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    code: Optional[str] = Field(None, max_length=50)
    is_active: bool = True
    auto_apply: bool = False
    is_stackable: bool = False
    priority: int = 0
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    valid_days: Optional[List[Weekday]] = None
    valid_time_start: Optional[str] = None
    valid_time_end: Optional[str] = None
    minimum_amount: Optional[Decimal] = Field(None, ge=0)
    minimum_quantity: Optional[int] = Field(None, ge=1)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_per_customer: Optional[int] = Field(None, ge=1)
    target_item_ids: Optional[List[UUID]] = None
    excluded_item_ids: Optional[List[UUID]] = None
    conditions: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def validate_rules(self):
        check_offer_rules(self.type, self.value, self.conditions, self.starts_at, self.ends_at)
        return self


class OfferUpdate(OfferFields):
    """Partial update; cross-field rules are checked against the merged offer."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    type: Optional[OfferType] = None
    value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    code: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None
    auto_apply: Optional[bool] = None
    is_stackable: Optional[bool] = None
    priority: Optional[int] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    valid_days: Optional[List[Weekday]] = None
    valid_time_start: Optional[str] = None
    valid_time_end: Optional[str] = None
    minimum_amount: Optional[Decimal] = Field(None, ge=0)
    minimum_quantity: Optional[int] = Field(None, ge=1)
    usage_limit: Optional[int] = Field(None, ge=1)
    usage_per_customer: Optional[int] = Field(None, ge=1)
    target_item_ids: Optional[List[UUID]] = None
    excluded_item_ids: Optional[List[UUID]] = None
    conditions: Optional[Dict[str, Any]] = None

    @field_validator(*REQUIRED_FIELDS)
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class OfferResponse(BaseModel):
    id: UUID
    restaurant_id: UUID
    name: str
    description: Optional[str] = None
    type: str
    value: Decimal
    max_discount: Optional[Decimal] = None
    code: Optional[str] = None
    is_active: bool
    auto_apply: bool
    is_stackable: bool
    priority: int
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    valid_days: Optional[List[str]] = None
    valid_time_start: Optional[str] = None
    valid_time_end: Optional[str] = None
    minimum_amount: Optional[Decimal] = None
    minimum_quantity: Optional[int] = None
    usage_limit: Optional[int] = None
    usage_per_customer: Optional[int] = None
    usage_count: int
    target_item_ids: Optional[List[str]] = None
    excluded_item_ids: Optional[List[str]] = None
    conditions: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OfferListResponse(BaseModel):
    offers: List[OfferResponse]
    total: int


class BulkActionRequest(BaseModel):
    action: Literal["activate", "deactivate", "delete"]
    offer_ids: List[UUID] = Field(..., min_length=1)


class BulkActionResponse(BaseModel):
    action: str
    affected: int


# ============ Evaluation ============

class OrderLineInput(BaseModel):
    """A line to evaluate offers against; the price comes from the catalog."""
    item_id: UUID
    quantity: int = Field(1, ge=1)


class OfferOrderRequest(BaseModel):
    """
    Order context for evaluating offers.

    Either reference an existing order or describe the lines directly.
    """
    order_id: Optional[UUID] = None
    items: Optional[List[OrderLineInput]] = None
    customer_ref: Optional[str] = None
    code: Optional[str] = None
    customer_tier_multiplier: Decimal = Field(Decimal("1"), gt=0)

    @model_validator(mode="after")
    def require_order_or_items(self):
        if self.order_id is None and not self.items:
            raise ValueError("Provide order_id or items")
        return self


class CheckCodeRequest(OfferOrderRequest):
    code: str = Field(..., min_length=1, max_length=50)


class ValidationIssueResponse(BaseModel):
    field: str
    message: str
    code: str
    context: Dict[str, Any] = {}


class OfferValidationResponse(BaseModel):
    offer_id: UUID
    is_valid: bool
    message: Optional[str] = None
    issues: List[ValidationIssueResponse] = []
    suggestions: List[str] = []


class DiscountCalculationResponse(BaseModel):
    offer_id: UUID
    offer_name: str
    offer_type: str
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    affected_items: List[Any] = []
    was_limited: bool = False
    limit_reason: Optional[str] = None


class AvailableOffersResponse(BaseModel):
    offers: List[OfferResponse]
    total: int


class BestOfferResponse(BaseModel):
    strategy: Literal["single", "stacked", "none"]
    total_discount: Decimal
    calculations: List[DiscountCalculationResponse]


class CheckCodeResponse(BaseModel):
    code: str
    is_valid: bool
    offer: Optional[OfferResponse] = None
    calculation: Optional[DiscountCalculationResponse] = None
    issues: List[ValidationIssueResponse] = []
    suggestions: List[str] = []


class DailyUsage(BaseModel):
    day: date
    uses: int
    discount: Decimal


class OfferAnalyticsResponse(BaseModel):
    offer_id: UUID
    total_uses: int
    unique_customers: int
    total_discount: Decimal
    average_discount: Decimal
    total_order_value: Decimal
    remaining_uses: Optional[int] = None
    roi: Optional[Decimal] = None
    daily_usage: List[DailyUsage] = []
