"""
Order Pydantic schemas: command payloads, projection and event stream responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


# ============ Commands ============

class OrderCreate(BaseModel):
    order_type: Literal["dine_in", "takeout", "delivery"] = "dine_in"
    table_number: Optional[str] = Field(None, max_length=20)
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=50)
    customer_email: Optional[EmailStr] = None
    notes: Optional[str] = None


class OrderItemInput(BaseModel):
    """Line to add. Prices are always read from the catalog."""
    item_id: UUID
    quantity: int = Field(1, ge=1, le=999)
    notes: Optional[str] = None


class AddItemsRequest(BaseModel):
    items: List[OrderItemInput] = Field(..., min_length=1)


class ModifyItemsRequest(BaseModel):
    """Remove lines and/or set quantities; a quantity of 0 removes the line."""
    removed_item_ids: List[UUID] = []
    quantities: Dict[UUID, int] = {}

    @model_validator(mode="after")
    def require_change(self):
        if not self.removed_item_ids and not self.quantities:
            raise ValueError("Provide removed_item_ids or quantities")
        if any(q < 0 for q in self.quantities.values()):
            raise ValueError("Quantities cannot be negative")
        return self


class CalculatePromotionsRequest(BaseModel):
    codes: List[str] = []
    customer_tier_multiplier: Decimal = Field(Decimal("1"), gt=0)


class ApplyPromotionRequest(BaseModel):
    offer_id: Optional[UUID] = None
    code: Optional[str] = None
    customer_tier_multiplier: Decimal = Field(Decimal("1"), gt=0)

    @model_validator(mode="after")
    def require_offer_or_code(self):
        if self.offer_id is None and not self.code:
            raise ValueError("Provide offer_id or code")
        return self


class RemovePromotionRequest(BaseModel):
    offer_id: UUID


class TipRequest(BaseModel):
    """Tip as an amount, or as a percentage of the subtotal."""
    amount: Optional[Decimal] = Field(None, ge=0)
    percentage: Optional[Decimal] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def require_amount_or_percentage(self):
        if (self.amount is None) == (self.percentage is None):
            raise ValueError("Provide exactly one of amount or percentage")
        return self


class PriceAdjustmentRequest(BaseModel):
    type: Literal["discount", "surcharge", "tip"]
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None


class PaymentMethodRequest(BaseModel):
    payment_method: Literal["cash", "card", "mobile", "voucher", "other"]


class StatusChangeRequest(BaseModel):
    status: Literal["preparing", "ready", "completed"]
    reason: Optional[str] = None


class PaymentRequest(BaseModel):
    """Record a payment. Amount defaults to the outstanding balance."""
    amount: Optional[Decimal] = Field(None, gt=0)
    payment_method: Optional[Literal["cash", "card", "mobile", "voucher", "other"]] = None
    transaction_id: Optional[str] = None


class PaymentFailureRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, ge=0)
    payment_method: Optional[str] = None
    reason: str = Field(..., min_length=1)
    error_code: Optional[str] = None


class CustomerInfoRequest(BaseModel):
    customer_name: Optional[str] = Field(None, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=50)
    customer_email: Optional[EmailStr] = None
    table_number: Optional[str] = Field(None, max_length=20)

    @model_validator(mode="after")
    def require_field(self):
        if all(v is None for v in self.model_dump().values()):
            raise ValueError("Provide at least one customer field")
        return self


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RefundRequest(BaseModel):
    """Refund; amount defaults to what was paid (or the total when nothing was recorded)."""
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: Optional[str] = None


class EmptyCommand(BaseModel):
    """Commands without a payload (validate items, calculate price, confirm)."""
    model_config = ConfigDict(extra="ignore")


class EventAddRequest(BaseModel):
    """Append any supported event type through one route."""
    type: str = Field(..., min_length=1)
    properties: Dict[str, Any] = {}


# ============ Responses ============

class OrderLineResponse(BaseModel):
    item_id: str
    name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    notes: Optional[str] = None


class AppliedOfferResponse(BaseModel):
    offer_id: str
    name: Optional[str] = None
    code: Optional[str] = None
    type: Optional[str] = None
    discount: Decimal


class OrderResponse(BaseModel):
    id: UUID
    restaurant_id: UUID
    order_number: Optional[str] = None
    status: str
    order_type: str
    currency: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    table_number: Optional[str] = None
    notes: Optional[str] = None
    items: List[OrderLineResponse] = []
    applied_offers: List[AppliedOfferResponse] = []
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    tip: Decimal
    surcharge: Decimal
    total: Decimal
    amount_paid: Decimal
    payment_method: Optional[str] = None
    payment_status: str
    version: int
    started_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int


class OrderEventResponse(BaseModel):
    id: UUID
    order_id: UUID
    version: int
    event_type: str
    properties: Dict[str, Any]
    actor_id: Optional[UUID] = None
    actor_name: Optional[str] = None
    created_at: datetime
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


class EventStreamResponse(BaseModel):
    order_id: UUID
    events: List[OrderEventResponse]
    total: int


class StateAtResponse(BaseModel):
    state: Optional[Dict[str, Any]] = None
    timestamp: datetime
    event_count: int


class EventStatisticsResponse(BaseModel):
    order_id: UUID
    total_events: int
    by_type: Dict[str, int]
    by_actor: Dict[str, int]
    first_event_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
