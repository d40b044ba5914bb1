"""
Event-sourced order commands.

Every command loads the order's events, folds them into an OrderState,
checks the command against that state, appends exactly one event and then
rebuilds the ``orders`` projection from the new state. Nothing else writes
the projection.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderdesk.core.clock import to_restaurant_local, utcnow
from orderdesk.core.config import get_settings
from orderdesk.core.exceptions import (
    InvalidOrderStateError,
    NotFoundError,
    OfferNotApplicableError,
    UnsupportedEventError,
)
from orderdesk.core.money import ZERO, money_str, to_money
from orderdesk.models.order import Order, OrderEvent
from orderdesk.models.restaurant import Restaurant
from orderdesk.models.user import User
from orderdesk.schemas.order import (
    AddItemsRequest,
    ApplyPromotionRequest,
    CalculatePromotionsRequest,
    CancelRequest,
    CustomerInfoRequest,
    EmptyCommand,
    ModifyItemsRequest,
    OrderCreate,
    PaymentFailureRequest,
    PaymentMethodRequest,
    PaymentRequest,
    PriceAdjustmentRequest,
    RefundRequest,
    RemovePromotionRequest,
    StatusChangeRequest,
    TipRequest,
)
from orderdesk.services import order_state as events
from orderdesk.services.offer_service import OfferService
from orderdesk.services.order_state import OrderState, apply_event, ensure_can_apply, replay

logger = logging.getLogger(__name__)

# Projection columns copied straight from the folded state
PROJECTED_FIELDS = (
    "status", "order_type", "order_number", "customer_name", "customer_phone",
    "customer_email", "table_number", "notes", "subtotal", "discount", "tax", "tip",
    "surcharge", "total", "amount_paid", "payment_method", "payment_status", "version",
    "started_at", "confirmed_at", "completed_at", "cancelled_at", "cancellation_reason",
)


@dataclass
class _LineRef:
    item_id: UUID
    quantity: int
    notes: Optional[str] = None


class EventSourcedOrderService:
    """Order commands for one restaurant."""

    def __init__(
        self,
        db: Session,
        restaurant: Restaurant,
        clock: Callable[[], datetime] = utcnow,
        tax_rate: Optional[Decimal] = None,
    ):
        self.db = db
        self.restaurant = restaurant
        self.clock = clock
        self.tax_rate = get_settings().TAX_RATE if tax_rate is None else Decimal(str(tax_rate))
        self.offers = OfferService(db, restaurant, clock=clock)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: UUID) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id, Order.restaurant_id == self.restaurant.id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_orders(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> tuple[List[Order], int]:
        base = select(Order).where(Order.restaurant_id == self.restaurant.id)
        if status:
            base = base.where(Order.status == status)

        total = self.db.execute(select(func.count()).select_from(base.subquery())).scalar_one()
        stmt = base.order_by(Order.created_at.desc(), Order.id).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all()), total

    def load_state(self, order: Order) -> OrderState:
        return replay(order.events)

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    def _record(self, order: Order, event_type: str, properties: Dict[str, Any], actor: Optional[User]) -> OrderState:
        """Guard, append and project one event. The caller commits."""
        state = self.load_state(order)
        ensure_can_apply(state, event_type, properties)

        event = OrderEvent(
            order_id=order.id,
            version=state.version + 1,
            event_type=event_type,
            properties=properties,
            actor_id=actor.id if actor else None,
            actor_name=actor.email if actor else None,
            created_at=self.clock(),
        )
        order.events.append(event)

        apply_event(state, event.event_type, event.properties, event.version, event.created_at)
        self._project(order, state)

        logger.info(f"Order {order.id} v{event.version}: {event_type} -> {state.status}")
        return state

    def _project(self, order: Order, state: OrderState) -> None:
        for name in PROJECTED_FIELDS:
            setattr(order, name, getattr(state, name))
        order.items = [dict(line) for line in state.items]
        order.applied_offers = [dict(offer) for offer in state.applied_offers]

    def _commit(self, order: Order) -> Order:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise InvalidOrderStateError(
                "Order was modified by another request, please retry",
                {"order_id": str(order.id)},
            )
        self.db.refresh(order)
        return order

    def _context(self, state: OrderState):
        return self.offers.context_from_lines(
            [dict(line) for line in state.items],
            customer_ref=state.customer_email or state.customer_phone,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_order(self, data: OrderCreate, actor: Optional[User] = None) -> Order:
        order = Order(
            restaurant_id=self.restaurant.id,
            status=events.DRAFT,
            order_type=data.order_type,
            currency=self.restaurant.currency or get_settings().DEFAULT_CURRENCY,
            items=[],
            applied_offers=[],
            version=0,
        )
        self.db.add(order)
        self.db.flush()

        properties = data.model_dump(mode="json")
        properties["currency"] = order.currency
        self._record(order, events.ORDER_STARTED, properties, actor)
        return self._commit(order)

    def add_items(self, order: Order, items: Sequence, actor: Optional[User] = None) -> Order:
        """Add lines priced from the catalog; repeated items merge into one line."""
        lines = self.offers.build_lines(items)
        self._record(order, events.ITEMS_ADDED_TO_ORDER, {"items": lines}, actor)
        return self._commit(order)

    def modify_items(
        self,
        order: Order,
        removed_item_ids: Sequence[UUID] = (),
        quantities: Optional[Dict[UUID, int]] = None,
        actor: Optional[User] = None,
    ) -> Order:
        state = self.load_state(order)
        present = {line["item_id"] for line in state.items}
        touched = {str(i) for i in removed_item_ids} | {str(k) for k in (quantities or {})}
        unknown = touched - present
        if unknown:
            raise NotFoundError("Items are not part of this order", {"item_ids": sorted(unknown)})

        self._record(order, events.ITEMS_MODIFIED, {
            "removed_item_ids": [str(i) for i in removed_item_ids],
            "quantities": {str(k): v for k, v in (quantities or {}).items()},
        }, actor)
        return self._commit(order)

    def validate_items(self, order: Order, actor: Optional[User] = None) -> Order:
        """Re-price every line against the current catalog."""
        state = self.load_state(order)
        refs = [
            _LineRef(UUID(line["item_id"]), int(line["quantity"]), line.get("notes"))
            for line in state.items
        ]
        try:
            lines = self.offers.build_lines(refs) if refs else []
        except NotFoundError as e:
            raise InvalidOrderStateError("Some items are no longer available", e.context)

        subtotal = to_money(sum((Decimal(l["line_total"]) for l in lines), ZERO))
        self._record(order, events.ITEMS_VALIDATED_EVENT, {
            "items": lines,
            "subtotal": money_str(subtotal),
        }, actor)
        return self._commit(order)

    def calculate_price(self, order: Order, actor: Optional[User] = None) -> Order:
        state = self.load_state(order)
        tax = to_money(state.subtotal * self.tax_rate)
        total = max(state.subtotal - state.discount + tax + state.tip + state.surcharge, ZERO)

        self._record(order, events.PRICE_CALCULATED_EVENT, {
            "subtotal": money_str(state.subtotal),
            "tax_rate": str(self.tax_rate),
            "tax": money_str(tax),
            "tip": money_str(state.tip),
            "total": money_str(total),
        }, actor)
        return self._commit(order)

    def calculate_promotions(
        self,
        order: Order,
        codes: Sequence[str] = (),
        customer_tier_multiplier: Decimal = Decimal("1"),
        actor: Optional[User] = None,
    ) -> Order:
        """Pick the best auto-apply offers (plus offers unlocked by ``codes``)."""
        state = self.load_state(order)
        context = self._context(state)

        available = self.offers.available_offers(context, codes, auto_apply_only=True)
        by_id = {str(o.id): o for o in available}
        selection = self.offers.calculator.select_best(
            available, context.subtotal, context.lines, customer_tier_multiplier
        )

        applied = [
            {
                "offer_id": str(c.offer_id),
                "name": c.offer_name,
                "code": by_id[str(c.offer_id)].code,
                "type": c.offer_type,
                "discount": money_str(c.discount_amount),
            }
            for c in selection.calculations
        ]
        self._record(order, events.PROMOTIONS_CALCULATED_EVENT, {
            "applied_offers": applied,
            "discount": money_str(selection.total_discount),
            "strategy": selection.strategy,
        }, actor)
        return self._commit(order)

    def apply_promotion(
        self,
        order: Order,
        offer_id: Optional[UUID] = None,
        code: Optional[str] = None,
        customer_tier_multiplier: Decimal = Decimal("1"),
        actor: Optional[User] = None,
    ) -> Order:
        """Add one offer on top of those already applied, computed on the remaining amount."""
        offer = self.offers.get_offer(offer_id) if offer_id else self.offers.find_by_code(code or "")
        if offer is None:
            raise NotFoundError("Offer not found")

        state = self.load_state(order)
        if str(offer.id) in state.applied_offer_ids():
            raise InvalidOrderStateError("Promotion is already applied to this order")

        for applied in state.applied_offers:
            other = self.offers.get_offer(UUID(str(applied["offer_id"])))
            if other is None or not self.offers.calculator.can_stack_with(offer, other):
                raise InvalidOrderStateError(
                    "Offer cannot be combined with promotions already applied",
                    {"offer_id": str(offer.id), "conflicts_with": str(applied["offer_id"])},
                )

        context = self._context(state)
        result = self.offers.validate(offer, context, code)
        if not result.is_valid:
            raise OfferNotApplicableError(
                issues=[issue.to_dict() for issue in result.issues],
                suggestions=result.suggestions,
            )

        remaining = max(state.subtotal - state.discount, ZERO)
        calculation = self.offers.calculator.calculate(
            offer, remaining, context.lines, customer_tier_multiplier
        )
        self._record(order, events.PROMOTION_APPLIED, {
            "offer_id": str(offer.id),
            "name": offer.name,
            "code": offer.code,
            "type": offer.type,
            "discount": money_str(calculation.discount_amount),
        }, actor)
        return self._commit(order)

    def remove_promotion(self, order: Order, offer_id: UUID, actor: Optional[User] = None) -> Order:
        self._record(order, events.PROMOTION_REMOVED, {"offer_id": str(offer_id)}, actor)
        return self._commit(order)

    def add_tip(
        self,
        order: Order,
        amount: Optional[Decimal] = None,
        percentage: Optional[Decimal] = None,
        actor: Optional[User] = None,
    ) -> Order:
        properties: Dict[str, Any] = {}
        if percentage is not None:
            state = self.load_state(order)
            amount = state.subtotal * Decimal(str(percentage)) / Decimal(100)
            properties["percentage"] = str(percentage)
        properties["amount"] = money_str(amount)

        self._record(order, events.TIP_ADDED, properties, actor)
        return self._commit(order)

    def adjust_price(
        self,
        order: Order,
        adjustment_type: str,
        amount: Decimal,
        reason: Optional[str] = None,
        actor: Optional[User] = None,
    ) -> Order:
        self._record(order, events.PRICE_ADJUSTED, {
            "type": adjustment_type,
            "amount": money_str(amount),
            "reason": reason,
        }, actor)
        return self._commit(order)

    def set_payment_method(self, order: Order, payment_method: str, actor: Optional[User] = None) -> Order:
        self._record(order, events.PAYMENT_METHOD_SET, {"payment_method": payment_method}, actor)
        return self._commit(order)

    def confirm(self, order: Order, actor: Optional[User] = None) -> Order:
        """
        Confirm the order and consume one use of every applied offer.

        Usage increments and the OrderConfirmed event share one transaction:
        if any offer hits its limit everything rolls back and the order stays
        unconfirmed.
        """
        state = self.load_state(order)
        ensure_can_apply(state, events.ORDER_CONFIRMED, {})

        customer_ref = state.customer_email or state.customer_phone
        try:
            for applied in state.applied_offers:
                self.offers.record_usage(
                    offer_id=UUID(str(applied["offer_id"])),
                    order_id=order.id,
                    customer_ref=customer_ref,
                    discount_amount=to_money(applied.get("discount")),
                    order_amount=state.subtotal,
                )
            self._record(order, events.ORDER_CONFIRMED, {
                "order_number": self._next_order_number(),
                "total": money_str(state.total),
            }, actor)
        except Exception:
            self.db.rollback()
            raise

        return self._commit(order)

    def _next_order_number(self) -> str:
        """YYYYMMDD-NNNN, sequential per restaurant and local day."""
        today = to_restaurant_local(self.clock(), self.restaurant.timezone)
        prefix = today.strftime("%Y%m%d")
        count = self.db.execute(
            select(func.count(Order.id)).where(
                Order.restaurant_id == self.restaurant.id,
                Order.order_number.like(f"{prefix}-%"),
            )
        ).scalar_one()
        return f"{prefix}-{count + 1:04d}"

    def change_status(self, order: Order, new_status: str, reason: Optional[str] = None, actor: Optional[User] = None) -> Order:
        self._record(order, events.ORDER_STATUS_CHANGED, {
            "old_status": order.status,
            "new_status": new_status,
            "reason": reason,
        }, actor)
        return self._commit(order)

    def process_payment(
        self,
        order: Order,
        amount: Optional[Decimal] = None,
        payment_method: Optional[str] = None,
        transaction_id: Optional[str] = None,
        actor: Optional[User] = None,
    ) -> Order:
        state = self.load_state(order)
        if amount is None:
            amount = state.total - state.amount_paid
            if amount <= 0:
                raise InvalidOrderStateError("Order has no outstanding balance")

        payment_method = payment_method or state.payment_method
        if not payment_method:
            raise InvalidOrderStateError("Payment method must be set before processing payment")

        self._record(order, events.PAYMENT_PROCESSED, {
            "amount": money_str(amount),
            "payment_method": payment_method,
            "status": "succeeded",
            "transaction_id": transaction_id,
        }, actor)
        return self._commit(order)

    def record_payment_failure(
        self,
        order: Order,
        reason: str,
        amount: Optional[Decimal] = None,
        payment_method: Optional[str] = None,
        error_code: Optional[str] = None,
        actor: Optional[User] = None,
    ) -> Order:
        self._record(order, events.PAYMENT_FAILED, {
            "reason": reason,
            "amount": money_str(amount) if amount is not None else None,
            "payment_method": payment_method,
            "error_code": error_code,
        }, actor)
        logger.warning(f"Payment failed for order {order.id}: {reason}")
        return self._commit(order)

    def update_customer_info(self, order: Order, info: Dict[str, Any], actor: Optional[User] = None) -> Order:
        properties = {k: v for k, v in info.items() if k in events.CUSTOMER_FIELDS and v is not None}
        self._record(order, events.CUSTOMER_INFO_UPDATED, properties, actor)
        return self._commit(order)

    def cancel(self, order: Order, reason: str, actor: Optional[User] = None) -> Order:
        self._record(order, events.ORDER_CANCELLED, {"reason": reason, "previous_status": order.status}, actor)
        return self._commit(order)

    def refund(self, order: Order, amount: Optional[Decimal] = None, reason: Optional[str] = None, actor: Optional[User] = None) -> Order:
        if amount is None:
            state = self.load_state(order)
            amount = state.amount_paid if state.amount_paid > 0 else state.total
        self._record(order, events.ORDER_REFUNDED, {"amount": money_str(amount), "reason": reason}, actor)
        return self._commit(order)

    # ------------------------------------------------------------------
    # Generic event route
    # ------------------------------------------------------------------

    def dispatch(self, order: Order, event_type: str, properties: Dict[str, Any], actor: Optional[User] = None) -> Order:
        """
        Run the command behind ``event_type`` with client ``properties``.

        Properties are validated with the command's request schema, so
        client-sent prices and totals are dropped; the command computes them.
        Raises pydantic.ValidationError for bad properties and
        UnsupportedEventError for event types that have no command here.
        """
        entry = DISPATCH.get(event_type)
        if entry is None:
            raise UnsupportedEventError(
                f"Event type {event_type} cannot be added",
                {"supported": sorted(DISPATCH)},
            )
        schema, handler = entry
        payload = schema.model_validate(properties or {})
        return handler(self, order, payload, actor)


def _dispatch_table() -> Dict[str, tuple[type[BaseModel], Callable]]:
    return {
        events.ITEMS_ADDED_TO_ORDER: (
            AddItemsRequest, lambda s, o, p, a: s.add_items(o, p.items, a)),
        events.ITEMS_MODIFIED: (
            ModifyItemsRequest, lambda s, o, p, a: s.modify_items(o, p.removed_item_ids, p.quantities, a)),
        events.ITEMS_VALIDATED_EVENT: (
            EmptyCommand, lambda s, o, p, a: s.validate_items(o, a)),
        events.PRICE_CALCULATED_EVENT: (
            EmptyCommand, lambda s, o, p, a: s.calculate_price(o, a)),
        events.PROMOTIONS_CALCULATED_EVENT: (
            CalculatePromotionsRequest,
            lambda s, o, p, a: s.calculate_promotions(o, p.codes, p.customer_tier_multiplier, a)),
        events.PROMOTION_APPLIED: (
            ApplyPromotionRequest,
            lambda s, o, p, a: s.apply_promotion(o, p.offer_id, p.code, p.customer_tier_multiplier, a)),
        events.PROMOTION_REMOVED: (
            RemovePromotionRequest, lambda s, o, p, a: s.remove_promotion(o, p.offer_id, a)),
        events.TIP_ADDED: (
            TipRequest, lambda s, o, p, a: s.add_tip(o, p.amount, p.percentage, a)),
        events.PRICE_ADJUSTED: (
            PriceAdjustmentRequest, lambda s, o, p, a: s.adjust_price(o, p.type, p.amount, p.reason, a)),
        events.PAYMENT_METHOD_SET: (
            PaymentMethodRequest, lambda s, o, p, a: s.set_payment_method(o, p.payment_method, a)),
        events.ORDER_CONFIRMED: (
            EmptyCommand, lambda s, o, p, a: s.confirm(o, a)),
        events.ORDER_STATUS_CHANGED: (
            StatusChangeRequest, lambda s, o, p, a: s.change_status(o, p.status, p.reason, a)),
        events.PAYMENT_PROCESSED: (
            PaymentRequest,
            lambda s, o, p, a: s.process_payment(o, p.amount, p.payment_method, p.transaction_id, a)),
        events.PAYMENT_FAILED: (
            PaymentFailureRequest,
            lambda s, o, p, a: s.record_payment_failure(o, p.reason, p.amount, p.payment_method, p.error_code, a)),
        events.CUSTOMER_INFO_UPDATED: (
            CustomerInfoRequest, lambda s, o, p, a: s.update_customer_info(o, p.model_dump(mode="json"), a)),
        events.ORDER_CANCELLED: (
            CancelRequest, lambda s, o, p, a: s.cancel(o, p.reason, a)),
        events.ORDER_REFUNDED: (
            RefundRequest, lambda s, o, p, a: s.refund(o, p.amount, p.reason, a)),
    }


DISPATCH = _dispatch_table()
