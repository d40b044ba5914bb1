"""
Orders router.

Every mutating endpoint appends one event through EventSourcedOrderService
and returns the rebuilt projection. Event stream and time travel endpoints
read the stored events.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from orderdesk.core.clock import to_naive_utc
from orderdesk.core.deps import get_current_restaurant, get_current_user
from orderdesk.db.session import get_db
from orderdesk.models.order import Order
from orderdesk.models.restaurant import Restaurant
from orderdesk.models.user import User
from orderdesk.schemas.order import (
    AddItemsRequest,
    ApplyPromotionRequest,
    CalculatePromotionsRequest,
    CancelRequest,
    CustomerInfoRequest,
    EventAddRequest,
    EventStatisticsResponse,
    EventStreamResponse,
    ModifyItemsRequest,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    PaymentFailureRequest,
    PaymentMethodRequest,
    PaymentRequest,
    PriceAdjustmentRequest,
    RefundRequest,
    StateAtResponse,
    StatusChangeRequest,
    TipRequest,
)
from orderdesk.services.event_stream import EventStreamService
from orderdesk.services.order_service import EventSourcedOrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_order_service(
    db: Session = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
) -> EventSourcedOrderService:
    return EventSourcedOrderService(db, restaurant)


def get_order_or_404(service: EventSourcedOrderService, order_id: UUID) -> Order:
    order = service.get_order(order_id)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )
    return order


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    order_data: OrderCreate,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    """Start a new order (records OrderStarted)."""
    return service.create_order(order_data, current_user)


@router.get("", response_model=OrderListResponse)
def list_orders(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: EventSourcedOrderService = Depends(get_order_service),
):
    orders, total = service.list_orders(status=status_filter, limit=limit, offset=offset)
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
    )


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: UUID, service: EventSourcedOrderService = Depends(get_order_service)):
    return get_order_or_404(service, order_id)


# ============ Commands ============

@router.post("/{order_id}/items", response_model=OrderResponse)
def add_items(
    order_id: UUID,
    request: AddItemsRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    """Add items at catalog prices."""
    order = get_order_or_404(service, order_id)
    return service.add_items(order, request.items, current_user)


@router.patch("/{order_id}/items", response_model=OrderResponse)
def modify_items(
    order_id: UUID,
    request: ModifyItemsRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.modify_items(order, request.removed_item_ids, request.quantities, current_user)


@router.post("/{order_id}/validate", response_model=OrderResponse)
def validate_items(
    order_id: UUID,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.validate_items(order, current_user)


@router.post("/{order_id}/calculate-price", response_model=OrderResponse)
def calculate_price(
    order_id: UUID,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.calculate_price(order, current_user)


@router.post("/{order_id}/promotions/calculate", response_model=OrderResponse)
def calculate_promotions(
    order_id: UUID,
    request: CalculatePromotionsRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.calculate_promotions(order, request.codes, request.customer_tier_multiplier, current_user)


@router.post("/{order_id}/promotions", response_model=OrderResponse)
def apply_promotion(
    order_id: UUID,
    request: ApplyPromotionRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.apply_promotion(
        order, request.offer_id, request.code, request.customer_tier_multiplier, current_user
    )


@router.delete("/{order_id}/promotions/{offer_id}", response_model=OrderResponse)
def remove_promotion(
    order_id: UUID,
    offer_id: UUID,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.remove_promotion(order, offer_id, current_user)


@router.post("/{order_id}/tip", response_model=OrderResponse)
def add_tip(
    order_id: UUID,
    request: TipRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.add_tip(order, request.amount, request.percentage, current_user)


@router.post("/{order_id}/adjustments", response_model=OrderResponse)
def adjust_price(
    order_id: UUID,
    request: PriceAdjustmentRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.adjust_price(order, request.type, request.amount, request.reason, current_user)


@router.post("/{order_id}/payment-method", response_model=OrderResponse)
def set_payment_method(
    order_id: UUID,
    request: PaymentMethodRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.set_payment_method(order, request.payment_method, current_user)


@router.post("/{order_id}/confirm", response_model=OrderResponse)
def confirm_order(
    order_id: UUID,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    """Confirm and consume offer usage. 409 when an offer's limit was reached."""
    order = get_order_or_404(service, order_id)
    return service.confirm(order, current_user)


@router.post("/{order_id}/status", response_model=OrderResponse)
def change_status(
    order_id: UUID,
    request: StatusChangeRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.change_status(order, request.status, request.reason, current_user)


@router.post("/{order_id}/payments", response_model=OrderResponse)
def process_payment(
    order_id: UUID,
    request: PaymentRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.process_payment(
        order, request.amount, request.payment_method, request.transaction_id, current_user
    )


@router.post("/{order_id}/payments/failed", response_model=OrderResponse)
def record_payment_failure(
    order_id: UUID,
    request: PaymentFailureRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.record_payment_failure(
        order, request.reason, request.amount, request.payment_method, request.error_code, current_user
    )


@router.patch("/{order_id}/customer", response_model=OrderResponse)
def update_customer_info(
    order_id: UUID,
    request: CustomerInfoRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.update_customer_info(order, request.model_dump(mode="json"), current_user)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: UUID,
    request: CancelRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.cancel(order, request.reason, current_user)


@router.post("/{order_id}/refund", response_model=OrderResponse)
def refund_order(
    order_id: UUID,
    request: RefundRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    order = get_order_or_404(service, order_id)
    return service.refund(order, request.amount, request.reason, current_user)


# ============ Events ============

@router.get("/{order_id}/events", response_model=EventStreamResponse)
def get_event_stream(
    order_id: UUID,
    db: Session = Depends(get_db),
    service: EventSourcedOrderService = Depends(get_order_service),
):
    """All events for the order, newest first."""
    order = get_order_or_404(service, order_id)
    events = EventStreamService(db).get_event_stream(order)
    return EventStreamResponse(order_id=order.id, events=events, total=len(events))


@router.post("/{order_id}/events/add", response_model=OrderResponse)
def add_event(
    order_id: UUID,
    request: EventAddRequest,
    service: EventSourcedOrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user),
):
    """
    Append an event by type.

    ``properties`` are the same fields the dedicated endpoint accepts; prices
    and totals sent by the client are ignored.
    """
    order = get_order_or_404(service, order_id)
    try:
        return service.dispatch(order, request.type, request.properties, current_user)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False, include_input=False),
        )


@router.get("/{order_id}/events/between", response_model=EventStreamResponse)
def get_events_between(
    order_id: UUID,
    start: datetime = Query(..., description="Start of window (inclusive)"),
    end: datetime = Query(..., description="End of window (inclusive)"),
    db: Session = Depends(get_db),
    service: EventSourcedOrderService = Depends(get_order_service),
):
    start, end = to_naive_utc(start), to_naive_utc(end)
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must not be before start"
        )
    order = get_order_or_404(service, order_id)
    events = EventStreamService(db).get_events_between(order, start, end)
    return EventStreamResponse(order_id=order.id, events=events, total=len(events))


@router.get("/{order_id}/state-at", response_model=StateAtResponse)
def get_state_at(
    order_id: UUID,
    timestamp: datetime = Query(..., description="Point in time to reconstruct"),
    db: Session = Depends(get_db),
    service: EventSourcedOrderService = Depends(get_order_service),
):
    """Order state reconstructed from the events up to ``timestamp``."""
    order = get_order_or_404(service, order_id)
    return EventStreamService(db).get_state_at(order, timestamp)


@router.get("/{order_id}/statistics", response_model=EventStatisticsResponse)
def get_event_statistics(
    order_id: UUID,
    db: Session = Depends(get_db),
    service: EventSourcedOrderService = Depends(get_order_service),
):
    order = get_order_or_404(service, order_id)
    return EventStreamService(db).get_statistics(order)
