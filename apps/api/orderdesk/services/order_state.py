"""
Order state reconstruction.

An order's state is the left fold of its events over a fresh draft state.
``replay`` never mutates the events it is given and never checks business
rules: guards belong to the append path (``ensure_can_apply``) so that any
stored history can always be replayed.
"""
import copy
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from orderdesk.core.exceptions import InvalidOrderStateError
from orderdesk.core.money import ZERO, to_money

# Statuses
DRAFT = "draft"
STARTED = "started"
ITEMS_ADDED = "items_added"
ITEMS_VALIDATED = "items_validated"
PRICE_CALCULATED = "price_calculated"
PROMOTIONS_CALCULATED = "promotions_calculated"
CONFIRMED = "confirmed"
PREPARING = "preparing"
READY = "ready"
COMPLETED = "completed"
CANCELLED = "cancelled"
REFUNDED = "refunded"

LIFECYCLE = (
    DRAFT, STARTED, ITEMS_ADDED, ITEMS_VALIDATED, PRICE_CALCULATED,
    PROMOTIONS_CALCULATED, CONFIRMED, PREPARING, READY, COMPLETED,
)
TERMINAL_STATUSES = (COMPLETED, CANCELLED, REFUNDED)
CANCELLABLE_STATUSES = LIFECYCLE[:-1]

# Linear lifecycle, cancellation from any pre-terminal status, refund after completion
TRANSITIONS: dict[str, tuple[str, ...]] = {
    status: (LIFECYCLE[i + 1], CANCELLED) for i, status in enumerate(CANCELLABLE_STATUSES)
}
TRANSITIONS[COMPLETED] = (REFUNDED,)
TRANSITIONS[CANCELLED] = ()
TRANSITIONS[REFUNDED] = ()

# Statuses only reachable through OrderStatusChanged
KITCHEN_STATUSES = (PREPARING, READY, COMPLETED)

# Event types
ORDER_STARTED = "OrderStarted"
ITEMS_ADDED_TO_ORDER = "ItemsAddedToOrder"
ITEMS_MODIFIED = "ItemsModified"
ITEMS_VALIDATED_EVENT = "ItemsValidated"
PRICE_CALCULATED_EVENT = "PriceCalculated"
PROMOTIONS_CALCULATED_EVENT = "PromotionsCalculated"
PROMOTION_APPLIED = "PromotionApplied"
PROMOTION_REMOVED = "PromotionRemoved"
TIP_ADDED = "TipAdded"
PRICE_ADJUSTED = "PriceAdjusted"
PAYMENT_METHOD_SET = "PaymentMethodSet"
ORDER_CONFIRMED = "OrderConfirmed"
ORDER_STATUS_CHANGED = "OrderStatusChanged"
PAYMENT_PROCESSED = "PaymentProcessed"
PAYMENT_FAILED = "PaymentFailed"
CUSTOMER_INFO_UPDATED = "CustomerInfoUpdated"
ORDER_CANCELLED = "OrderCancelled"
ORDER_REFUNDED = "OrderRefunded"

EVENT_TYPES = (
    ORDER_STARTED, ITEMS_ADDED_TO_ORDER, ITEMS_MODIFIED, ITEMS_VALIDATED_EVENT,
    PRICE_CALCULATED_EVENT, PROMOTIONS_CALCULATED_EVENT, PROMOTION_APPLIED,
    PROMOTION_REMOVED, TIP_ADDED, PRICE_ADJUSTED, PAYMENT_METHOD_SET,
    ORDER_CONFIRMED, ORDER_STATUS_CHANGED, PAYMENT_PROCESSED, PAYMENT_FAILED,
    CUSTOMER_INFO_UPDATED, ORDER_CANCELLED, ORDER_REFUNDED,
)

ADJUSTMENT_TYPES = ("discount", "surcharge", "tip")
CUSTOMER_FIELDS = ("customer_name", "customer_phone", "customer_email", "table_number")


@dataclass
class OrderState:
    """Accumulator for an order's event fold."""
    status: str = DRAFT
    version: int = 0
    order_type: Optional[str] = None
    currency: Optional[str] = None
    order_number: Optional[str] = None

    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    table_number: Optional[str] = None
    notes: Optional[str] = None

    items: list = field(default_factory=list)
    items_validated: bool = False
    applied_offers: list = field(default_factory=list)
    adjustments: list = field(default_factory=list)

    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    tax: Decimal = ZERO
    tip: Decimal = ZERO
    surcharge: Decimal = ZERO
    total: Decimal = ZERO
    amount_paid: Decimal = ZERO
    refunded_amount: Decimal = ZERO

    payment_method: Optional[str] = None
    payment_status: str = "pending"
    last_payment_failure: Optional[dict] = None

    started_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    last_event_at: Optional[datetime] = None

    def applied_offer_ids(self) -> list[str]:
        return [str(o.get("offer_id")) for o in self.applied_offers]

    def item_quantity(self) -> int:
        return sum(int(line.get("quantity", 0)) for line in self.items)

    def to_dict(self) -> dict:
        """JSON-safe representation (money as strings, datetimes as ISO 8601)."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
            elif isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


def recompute_total(state: OrderState) -> None:
    """total = max(0, subtotal - discount + tax + tip + surcharge)"""
    total = state.subtotal - state.discount + state.tax + state.tip + state.surcharge
    state.total = to_money(max(total, ZERO))


def _line(raw: dict) -> dict:
    line = {
        "item_id": str(raw["item_id"]),
        "name": raw.get("name"),
        "quantity": int(raw.get("quantity", 1)),
        "unit_price": str(to_money(raw.get("unit_price"))),
        "notes": raw.get("notes"),
    }
    line["line_total"] = str(to_money(Decimal(line["unit_price"]) * line["quantity"]))
    return line


def _lines_subtotal(lines: Iterable[dict]) -> Decimal:
    return to_money(sum((to_money(l.get("line_total")) for l in lines), ZERO))


def _merge_items(existing: list, added: Iterable[dict]) -> list:
    merged = [dict(l) for l in existing]
    by_id = {l["item_id"]: l for l in merged}
    for raw in added:
        line = _line(raw)
        current = by_id.get(line["item_id"])
        if current is None:
            merged.append(line)
            by_id[line["item_id"]] = line
        else:
            current["quantity"] += line["quantity"]
            current["line_total"] = str(to_money(Decimal(current["unit_price"]) * current["quantity"]))
    return merged


# --- event handlers ---------------------------------------------------------

def _on_started(state: OrderState, props: dict, at: datetime) -> None:
    state.status = STARTED
    state.started_at = at
    state.order_type = props.get("order_type", state.order_type)
    state.currency = props.get("currency", state.currency)
    state.notes = props.get("notes", state.notes)
    for name in CUSTOMER_FIELDS:
        if props.get(name) is not None:
            setattr(state, name, props[name])


def _on_items_added(state: OrderState, props: dict, at: datetime) -> None:
    state.status = ITEMS_ADDED
    state.items = _merge_items(state.items, props.get("items", []))
    state.items_validated = False
    state.subtotal = _lines_subtotal(state.items)
    recompute_total(state)


def _on_items_modified(state: OrderState, props: dict, at: datetime) -> None:
    removed = {str(i) for i in props.get("removed_item_ids", [])}
    quantities = {str(k): int(v) for k, v in (props.get("quantities") or {}).items()}

    lines = []
    for line in state.items:
        if line["item_id"] in removed:
            continue
        line = dict(line)
        if line["item_id"] in quantities:
            line["quantity"] = quantities[line["item_id"]]
            if line["quantity"] <= 0:
                continue
            line["line_total"] = str(to_money(Decimal(line["unit_price"]) * line["quantity"]))
        lines.append(line)

    state.items = lines
    state.items_validated = False
    state.subtotal = _lines_subtotal(state.items)
    recompute_total(state)


def _on_items_validated(state: OrderState, props: dict, at: datetime) -> None:
    state.status = ITEMS_VALIDATED
    state.items = [_line(l) for l in props.get("items", [])]
    state.items_validated = True
    state.subtotal = to_money(props.get("subtotal", _lines_subtotal(state.items)))
    recompute_total(state)


def _on_price_calculated(state: OrderState, props: dict, at: datetime) -> None:
    state.status = PRICE_CALCULATED
    state.subtotal = to_money(props.get("subtotal", state.subtotal))
    state.tax = to_money(props.get("tax", state.tax))
    state.tip = to_money(props.get("tip", state.tip))
    recompute_total(state)


def _on_promotions_calculated(state: OrderState, props: dict, at: datetime) -> None:
    state.status = PROMOTIONS_CALCULATED
    state.applied_offers = [dict(o) for o in props.get("applied_offers", [])]
    state.discount = to_money(props.get("discount", sum(
        (to_money(o.get("discount")) for o in state.applied_offers), ZERO
    )))
    recompute_total(state)


def _on_promotion_applied(state: OrderState, props: dict, at: datetime) -> None:
    state.applied_offers = state.applied_offers + [dict(props)]
    state.discount = to_money(state.discount + to_money(props.get("discount")))
    recompute_total(state)


def _on_promotion_removed(state: OrderState, props: dict, at: datetime) -> None:
    offer_id = str(props.get("offer_id"))
    remaining = []
    for offer in state.applied_offers:
        if str(offer.get("offer_id")) == offer_id:
            state.discount = to_money(max(state.discount - to_money(offer.get("discount")), ZERO))
        else:
            remaining.append(offer)
    state.applied_offers = remaining
    recompute_total(state)


def _on_tip_added(state: OrderState, props: dict, at: datetime) -> None:
    state.tip = to_money(props.get("amount"))
    recompute_total(state)


def _on_price_adjusted(state: OrderState, props: dict, at: datetime) -> None:
    amount = to_money(props.get("amount"))
    kind = props.get("type")
    if kind == "discount":
        state.discount = to_money(state.discount + amount)
    elif kind == "surcharge":
        state.surcharge = to_money(state.surcharge + amount)
    elif kind == "tip":
        state.tip = to_money(state.tip + amount)
    state.adjustments = state.adjustments + [dict(props)]
    recompute_total(state)


def _on_payment_method_set(state: OrderState, props: dict, at: datetime) -> None:
    state.payment_method = props.get("payment_method")


def _on_confirmed(state: OrderState, props: dict, at: datetime) -> None:
    state.status = CONFIRMED
    state.order_number = props.get("order_number", state.order_number)
    state.confirmed_at = at


def _on_status_changed(state: OrderState, props: dict, at: datetime) -> None:
    state.status = props.get("new_status", state.status)
    if state.status == COMPLETED:
        state.completed_at = at


def _on_payment_processed(state: OrderState, props: dict, at: datetime) -> None:
    state.payment_method = props.get("payment_method", state.payment_method)
    if props.get("status", "succeeded") == "succeeded":
        state.amount_paid = to_money(state.amount_paid + to_money(props.get("amount")))
        state.payment_status = "paid" if state.amount_paid >= state.total else "partially_paid"
    else:
        state.payment_status = props.get("status")


def _on_payment_failed(state: OrderState, props: dict, at: datetime) -> None:
    state.payment_status = "failed"
    state.last_payment_failure = dict(props, failed_at=at.isoformat() if at else None)


def _on_customer_info_updated(state: OrderState, props: dict, at: datetime) -> None:
    for name in CUSTOMER_FIELDS:
        if name in props and props[name] is not None:
            setattr(state, name, props[name])


def _on_cancelled(state: OrderState, props: dict, at: datetime) -> None:
    state.status = CANCELLED
    state.cancellation_reason = props.get("reason")
    state.cancelled_at = at


def _on_refunded(state: OrderState, props: dict, at: datetime) -> None:
    state.status = REFUNDED
    state.refunded_amount = to_money(props.get("amount"))
    state.payment_status = "refunded"
    state.refunded_at = at


HANDLERS = {
    ORDER_STARTED: _on_started,
    ITEMS_ADDED_TO_ORDER: _on_items_added,
    ITEMS_MODIFIED: _on_items_modified,
    ITEMS_VALIDATED_EVENT: _on_items_validated,
    PRICE_CALCULATED_EVENT: _on_price_calculated,
    PROMOTIONS_CALCULATED_EVENT: _on_promotions_calculated,
    PROMOTION_APPLIED: _on_promotion_applied,
    PROMOTION_REMOVED: _on_promotion_removed,
    TIP_ADDED: _on_tip_added,
    PRICE_ADJUSTED: _on_price_adjusted,
    PAYMENT_METHOD_SET: _on_payment_method_set,
    ORDER_CONFIRMED: _on_confirmed,
    ORDER_STATUS_CHANGED: _on_status_changed,
    PAYMENT_PROCESSED: _on_payment_processed,
    PAYMENT_FAILED: _on_payment_failed,
    CUSTOMER_INFO_UPDATED: _on_customer_info_updated,
    ORDER_CANCELLED: _on_cancelled,
    ORDER_REFUNDED: _on_refunded,
}


def apply_event(state: OrderState, event_type: str, properties: dict, version: int, created_at: datetime) -> OrderState:
    """
    Fold one event into ``state`` (in place) and return it.

    Unknown event types only advance the version, so history written by a
    newer release still replays.
    """
    handler = HANDLERS.get(event_type)
    if handler is not None:
        handler(state, copy.deepcopy(properties or {}), created_at)
    state.version = version
    state.last_event_at = created_at
    return state


def replay(events: Iterable[Any], until: Optional[datetime] = None) -> OrderState:
    """
    Rebuild state from stored events.

    Events are objects with ``version``, ``event_type``, ``properties`` and
    ``created_at`` attributes (``OrderEvent`` rows). They are applied in
    version order; with ``until`` only events created at or before it count.
    """
    state = OrderState()
    for event in sorted(events, key=lambda e: e.version):
        if until is not None and event.created_at > until:
            continue
        apply_event(state, event.event_type, event.properties, event.version, event.created_at)
    return state


# --- guards -----------------------------------------------------------------

def _require_status(state: OrderState, allowed: Iterable[str], action: str) -> None:
    if state.status not in allowed:
        raise InvalidOrderStateError(
            f"Cannot {action} when order is {state.status}",
            {"status": state.status, "allowed": list(allowed)},
        )


def can_transition(current: str, new_status: str) -> bool:
    return new_status in TRANSITIONS.get(current, ())


def ensure_can_apply(state: OrderState, event_type: str, properties: dict) -> None:
    """Raise InvalidOrderStateError when ``event_type`` may not be appended now."""
    open_statuses = [s for s in LIFECYCLE if s not in (DRAFT, COMPLETED)]

    if event_type == ORDER_STARTED:
        _require_status(state, (DRAFT,), "start order")

    elif event_type == ITEMS_ADDED_TO_ORDER:
        _require_status(state, (DRAFT, STARTED, ITEMS_ADDED), "add items")
        if not properties.get("items"):
            raise InvalidOrderStateError("No items to add")

    elif event_type == ITEMS_MODIFIED:
        _require_status(state, (ITEMS_ADDED,), "modify items")

    elif event_type == ITEMS_VALIDATED_EVENT:
        _require_status(state, (ITEMS_ADDED,), "validate items")
        if not state.items:
            raise InvalidOrderStateError("Cannot validate an order without items")

    elif event_type == PRICE_CALCULATED_EVENT:
        _require_status(state, (ITEMS_VALIDATED,), "calculate price")
        if not state.items_validated:
            raise InvalidOrderStateError("Items must be validated before calculating price")

    elif event_type == PROMOTIONS_CALCULATED_EVENT:
        _require_status(state, (PRICE_CALCULATED, PROMOTIONS_CALCULATED), "calculate promotions")

    elif event_type == PROMOTION_APPLIED:
        _require_status(state, (PRICE_CALCULATED, PROMOTIONS_CALCULATED), "apply promotion")
        if str(properties.get("offer_id")) in state.applied_offer_ids():
            raise InvalidOrderStateError("Promotion is already applied to this order")

    elif event_type == PROMOTION_REMOVED:
        _require_status(state, (PRICE_CALCULATED, PROMOTIONS_CALCULATED), "remove promotion")
        if str(properties.get("offer_id")) not in state.applied_offer_ids():
            raise InvalidOrderStateError("Promotion is not applied to this order")

    elif event_type in (TIP_ADDED, PRICE_ADJUSTED, PAYMENT_METHOD_SET, CUSTOMER_INFO_UPDATED):
        _require_status(state, open_statuses, "update order")
        if event_type == PRICE_ADJUSTED and properties.get("type") not in ADJUSTMENT_TYPES:
            raise InvalidOrderStateError(f"Unknown adjustment type: {properties.get('type')}")

    elif event_type == ORDER_CONFIRMED:
        _require_status(state, (PROMOTIONS_CALCULATED,), "confirm order")
        if not state.items or not state.items_validated:
            raise InvalidOrderStateError("Order must have validated items before confirmation")
        if not state.payment_method:
            raise InvalidOrderStateError("Payment method must be set before confirmation")

    elif event_type == ORDER_STATUS_CHANGED:
        new_status = properties.get("new_status")
        if new_status not in KITCHEN_STATUSES or not can_transition(state.status, new_status):
            raise InvalidOrderStateError(
                f"Cannot transition from {state.status} to {new_status}",
                {"status": state.status, "new_status": new_status},
            )

    elif event_type in (PAYMENT_PROCESSED, PAYMENT_FAILED):
        _require_status(state, [s for s in LIFECYCLE if s != DRAFT], "process payment")

    elif event_type == ORDER_CANCELLED:
        _require_status(state, CANCELLABLE_STATUSES, "cancel order")

    elif event_type == ORDER_REFUNDED:
        _require_status(state, (COMPLETED,), "refund order")
        limit = max(state.amount_paid, state.total)
        if to_money(properties.get("amount")) > limit:
            raise InvalidOrderStateError(
                "Refund amount exceeds amount paid",
                {"amount": str(to_money(properties.get("amount"))), "limit": str(limit)},
            )

    else:
        raise InvalidOrderStateError(f"Unknown event type: {event_type}")
