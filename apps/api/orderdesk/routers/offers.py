"""
Offers router: discount rule management and evaluation against orders.

Evaluation endpoints never consume usage; usage is only counted when an
order carrying the offer is confirmed.
"""
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from orderdesk.core.deps import get_current_restaurant
from orderdesk.db.session import get_db
from orderdesk.models.offer import Offer
from orderdesk.models.order import Order
from orderdesk.models.restaurant import Restaurant
from orderdesk.schemas.offer import (
    AvailableOffersResponse,
    BestOfferResponse,
    BulkActionRequest,
    BulkActionResponse,
    CheckCodeRequest,
    CheckCodeResponse,
    DiscountCalculationResponse,
    OfferAnalyticsResponse,
    OfferCreate,
    OfferListResponse,
    OfferOrderRequest,
    OfferResponse,
    OfferType,
    OfferUpdate,
    OfferValidationResponse,
    ValidationIssueResponse,
)
from orderdesk.services.offer_service import EvaluationContext, OfferService

router = APIRouter(prefix="/offers", tags=["offers"])


def get_offer_service(
    db: Session = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
) -> OfferService:
    return OfferService(db, restaurant)


def get_offer_or_404(service: OfferService, offer_id: UUID) -> Offer:
    offer = service.get_offer(offer_id)
    if not offer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Offer not found"
        )
    return offer


def build_context(service: OfferService, request: OfferOrderRequest) -> EvaluationContext:
    """Lines from an existing order, or catalog-priced lines from the request."""
    if request.order_id is not None:
        order = service.db.query(Order).filter(
            Order.id == request.order_id,
            Order.restaurant_id == service.restaurant.id,
        ).first()
        if not order:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Order not found"
            )
        customer_ref = request.customer_ref or order.customer_email or order.customer_phone
        return service.context_from_lines(list(order.items or []), customer_ref, order.id)

    lines = service.build_lines(request.items)
    return service.context_from_lines(lines, request.customer_ref)


# ============ Management ============

@router.get("", response_model=OfferListResponse)
def list_offers(
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    type: Optional[OfferType] = Query(None, description="Filter by offer type"),
    search: Optional[str] = Query(None, description="Search name, code or description"),
    service: OfferService = Depends(get_offer_service),
):
    offers = service.list_offers(is_active=is_active, offer_type=type, search=search)
    return OfferListResponse(
        offers=[OfferResponse.model_validate(o) for o in offers],
        total=len(offers),
    )


@router.post("", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
def create_offer(offer_data: OfferCreate, service: OfferService = Depends(get_offer_service)):
    if service.code_exists(offer_data.code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Offer code {offer_data.code} is already in use"
        )
    return service.create_offer(offer_data)


@router.post("/bulk", response_model=BulkActionResponse)
def bulk_action(request: BulkActionRequest, service: OfferService = Depends(get_offer_service)):
    """Activate, deactivate or delete several offers at once."""
    affected = service.bulk_action(request.action, request.offer_ids)
    return BulkActionResponse(action=request.action, affected=affected)


@router.get("/{offer_id}", response_model=OfferResponse)
def get_offer(offer_id: UUID, service: OfferService = Depends(get_offer_service)):
    return get_offer_or_404(service, offer_id)


@router.patch("/{offer_id}", response_model=OfferResponse)
def update_offer(
    offer_id: UUID,
    update_data: OfferUpdate,
    service: OfferService = Depends(get_offer_service),
):
    offer = get_offer_or_404(service, offer_id)

    if update_data.code and service.code_exists(update_data.code, exclude_id=offer.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Offer code {update_data.code} is already in use"
        )

    try:
        return service.update_offer(offer, update_data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )


@router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_offer(offer_id: UUID, service: OfferService = Depends(get_offer_service)):
    """Soft delete: the offer stops listing and evaluating, its history is kept."""
    service.delete_offer(get_offer_or_404(service, offer_id))


@router.post("/{offer_id}/activate", response_model=OfferResponse)
def activate_offer(offer_id: UUID, service: OfferService = Depends(get_offer_service)):
    return service.set_active(get_offer_or_404(service, offer_id), True)


@router.post("/{offer_id}/deactivate", response_model=OfferResponse)
def deactivate_offer(offer_id: UUID, service: OfferService = Depends(get_offer_service)):
    return service.set_active(get_offer_or_404(service, offer_id), False)


@router.post("/{offer_id}/duplicate", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
def duplicate_offer(
    offer_id: UUID,
    overrides: Optional[OfferUpdate] = None,
    service: OfferService = Depends(get_offer_service),
):
    """
    Create a copy with a reset usage counter.

    Without overrides the copy is inactive and its code gets a ``_copy_<n>`` suffix.
    """
    offer = get_offer_or_404(service, offer_id)

    if overrides and overrides.code and service.code_exists(overrides.code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Offer code {overrides.code} is already in use"
        )

    try:
        return service.duplicate_offer(offer, overrides)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )


@router.get("/{offer_id}/analytics", response_model=OfferAnalyticsResponse)
def offer_analytics(
    offer_id: UUID,
    start_date: Optional[date] = Query(None, description="First day of daily usage"),
    end_date: Optional[date] = Query(None, description="Last day of daily usage"),
    service: OfferService = Depends(get_offer_service),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date"
        )
    return service.analytics(get_offer_or_404(service, offer_id), start_date, end_date)


# ============ Evaluation ============

@router.post("/available", response_model=AvailableOffersResponse)
def available_offers(request: OfferOrderRequest, service: OfferService = Depends(get_offer_service)):
    """Offers that currently apply to the described order."""
    context = build_context(service, request)
    codes = [request.code] if request.code else []
    offers = service.available_offers(context, codes)
    return AvailableOffersResponse(
        offers=[OfferResponse.model_validate(o) for o in offers],
        total=len(offers),
    )


@router.post("/apply-best", response_model=BestOfferResponse)
def apply_best_offer(request: OfferOrderRequest, service: OfferService = Depends(get_offer_service)):
    """Best single offer or stack of stackable offers for the order."""
    context = build_context(service, request)
    codes = [request.code] if request.code else []
    selection = service.apply_best(context, codes, request.customer_tier_multiplier)
    return BestOfferResponse(
        strategy=selection.strategy,
        total_discount=selection.total_discount,
        calculations=[DiscountCalculationResponse(**c.to_dict()) for c in selection.calculations],
    )


@router.post("/check-code", response_model=CheckCodeResponse)
def check_code(request: CheckCodeRequest, service: OfferService = Depends(get_offer_service)):
    context = build_context(service, request)
    offer, result, calculation = service.check_code(request.code, context, request.customer_tier_multiplier)

    if offer is None:
        return CheckCodeResponse(
            code=request.code,
            is_valid=False,
            issues=[ValidationIssueResponse(field="code", message="Invalid offer code", code="INVALID_CODE")],
        )

    return CheckCodeResponse(
        code=request.code,
        is_valid=result.is_valid,
        offer=OfferResponse.model_validate(offer),
        calculation=DiscountCalculationResponse(**calculation.to_dict()) if calculation else None,
        issues=[ValidationIssueResponse(**i.to_dict()) for i in result.issues],
        suggestions=result.suggestions,
    )


@router.post("/{offer_id}/validate", response_model=OfferValidationResponse)
def validate_offer(
    offer_id: UUID,
    request: OfferOrderRequest,
    service: OfferService = Depends(get_offer_service),
):
    """Every rule the order breaks for this offer, with suggestions."""
    offer = get_offer_or_404(service, offer_id)
    context = build_context(service, request)
    result = service.validate(offer, context, request.code)
    return OfferValidationResponse(
        offer_id=offer.id,
        is_valid=result.is_valid,
        message=result.failure_reason,
        issues=[ValidationIssueResponse(**i.to_dict()) for i in result.issues],
        suggestions=result.suggestions,
    )


@router.post("/{offer_id}/apply", response_model=DiscountCalculationResponse)
def apply_offer(
    offer_id: UUID,
    request: OfferOrderRequest,
    service: OfferService = Depends(get_offer_service),
):
    """Calculate the discount this offer gives the order, without consuming usage."""
    offer = get_offer_or_404(service, offer_id)
    context = build_context(service, request)
    calculation = service.apply(offer, context, request.code, request.customer_tier_multiplier)
    return DiscountCalculationResponse(**calculation.to_dict())
