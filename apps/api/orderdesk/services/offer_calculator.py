"""
Offer discount calculator.

Pure computation over Decimal amounts: no database access, no clock. Every
discount is rounded half-up to cents, never exceeds the amount it was
computed on, and is capped by the offer's ``max_discount`` whatever its type.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from orderdesk.core.money import ZERO, to_money
from orderdesk.models.offer import PERCENTAGE_TYPES

# At most one of these may take part in a stack
EXCLUSIVE_TYPES = ("buy_x_get_y", "combo")

HUNDRED = Decimal(100)


@dataclass
class DiscountCalculation:
    """Outcome of evaluating one offer against an amount."""
    offer_id: Any
    offer_name: str
    offer_type: str
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    affected_items: list = field(default_factory=list)
    was_limited: bool = False
    limit_reason: Optional[str] = None
    priority: int = 0

    def to_dict(self) -> dict:
        return {
            "offer_id": str(self.offer_id) if self.offer_id is not None else None,
            "offer_name": self.offer_name,
            "offer_type": self.offer_type,
            "original_amount": self.original_amount,
            "discount_amount": self.discount_amount,
            "final_amount": self.final_amount,
            "affected_items": self.affected_items,
            "was_limited": self.was_limited,
            "limit_reason": self.limit_reason,
        }


@dataclass
class StackedCalculation:
    """Result of applying several stackable offers one after another."""
    original_amount: Decimal
    total_discount: Decimal
    final_amount: Decimal
    calculations: list[DiscountCalculation] = field(default_factory=list)


@dataclass
class OfferSelection:
    """Best discount found for an order: one offer alone or a stack."""
    strategy: str  # "single", "stacked" or "none"
    total_discount: Decimal
    calculations: list[DiscountCalculation] = field(default_factory=list)


def _ids(values: Optional[Iterable[Any]]) -> set[str]:
    return {str(v) for v in (values or [])}


def _line_total(line: dict) -> Decimal:
    if line.get("line_total") is not None:
        return to_money(line["line_total"])
    return to_money(to_money(line.get("unit_price")) * int(line.get("quantity", 0)))


class OfferCalculator:
    """
    Computes discounts for offers.

    ``lines`` are order lines as dicts with ``item_id``, ``quantity`` and
    ``unit_price`` (``line_total`` optional). ``amount`` is the amount the
    offer is evaluated against; it is the order subtotal for a single offer
    and the remaining amount when stacking.
    """

    def calculate(
        self,
        offer,
        amount: Any,
        lines: Optional[Sequence[dict]] = None,
        customer_tier_multiplier: Any = 1,
    ) -> DiscountCalculation:
        lines = list(lines or [])
        original = to_money(amount)
        targets = _ids(offer.target_item_ids)

        scoped = [l for l in lines if str(l.get("item_id")) in targets] if targets else lines
        if targets:
            base = min(sum((_line_total(l) for l in scoped), ZERO), original)
        else:
            base = original

        affected: list = []
        value = Decimal(str(offer.value or 0))
        conditions = offer.conditions or {}

        if offer.type in PERCENTAGE_TYPES:
            raw = base * value / HUNDRED
            if offer.type == "loyalty":
                raw = raw * Decimal(str(customer_tier_multiplier or 1))
            affected = [str(l.get("item_id")) for l in scoped]
        elif offer.type == "fixed":
            raw = min(value, base)
            affected = [str(l.get("item_id")) for l in scoped]
        elif offer.type == "buy_x_get_y":
            raw, affected = self.calculate_buy_x_get_y(
                scoped,
                int(conditions.get("buy_quantity", 1) or 1),
                int(conditions.get("get_quantity", 1) or 1),
                Decimal(str(conditions.get("discount_percent", 100))),
            )
        elif offer.type == "combo":
            combo_items = [str(i) for i in conditions.get("combo_items", [])]
            raw = self.calculate_combo(combo_items, lines, value)
            affected = combo_items if raw > 0 else []
        else:
            raw = ZERO

        discount = to_money(max(min(raw, base), ZERO))

        was_limited = False
        limit_reason = None
        if offer.max_discount is not None and discount > to_money(offer.max_discount):
            discount = to_money(offer.max_discount)
            was_limited = True
            limit_reason = f"Discount limited to maximum of {discount}"

        return DiscountCalculation(
            offer_id=offer.id,
            offer_name=offer.name,
            offer_type=offer.type,
            original_amount=original,
            discount_amount=discount,
            final_amount=to_money(max(original - discount, ZERO)),
            affected_items=affected,
            was_limited=was_limited,
            limit_reason=limit_reason,
            priority=offer.priority or 0,
        )

    def calculate_buy_x_get_y(
        self,
        lines: Sequence[dict],
        buy_quantity: int,
        get_quantity: int,
        discount_percent: Decimal = HUNDRED,
    ) -> tuple[Decimal, list]:
        """
        Discount for buy X get Y.

        Per item id, every complete set of ``buy + get`` units earns ``get``
        discounted units; the cheapest units of that item are the ones
        discounted.
        """
        set_size = buy_quantity + get_quantity
        if set_size <= 0:
            return ZERO, []

        units_by_item: dict[str, list[Decimal]] = {}
        for line in lines:
            unit_price = to_money(line.get("unit_price"))
            units_by_item.setdefault(str(line.get("item_id")), []).extend(
                [unit_price] * int(line.get("quantity", 0))
            )

        total = ZERO
        affected = []
        for item_id, units in units_by_item.items():
            sets = len(units) // set_size
            if sets == 0:
                continue
            free_units = sorted(units)[: get_quantity * sets]
            total += sum(free_units, ZERO) * discount_percent / HUNDRED
            affected.append({
                "item_id": item_id,
                "sets": sets,
                "discounted_quantity": len(free_units),
            })

        return to_money(total), affected

    def calculate_combo(self, combo_items: Sequence[str], lines: Sequence[dict], combo_price: Decimal) -> Decimal:
        """Difference between the items' regular prices and the combo price, if all are ordered."""
        if not combo_items:
            return ZERO

        prices = {str(l.get("item_id")): to_money(l.get("unit_price")) for l in lines}
        if any(item_id not in prices for item_id in combo_items):
            return ZERO

        regular = sum((prices[item_id] for item_id in combo_items), ZERO)
        return max(to_money(regular - combo_price), ZERO)

    def compare_offers(self, offers: Sequence, amount: Any, lines=None, customer_tier_multiplier: Any = 1) -> list[DiscountCalculation]:
        """Calculations for every offer, best first: highest discount, then highest priority."""
        calculations = [
            self.calculate(offer, amount, lines, customer_tier_multiplier) for offer in offers
        ]
        return sorted(calculations, key=lambda c: (c.discount_amount, c.priority), reverse=True)

    def can_stack_with(self, first, second) -> bool:
        if not first.is_stackable or not second.is_stackable:
            return False

        if first.type in EXCLUSIVE_TYPES and second.type in EXCLUSIVE_TYPES:
            return False

        # Overlapping targets would discount the same lines twice
        first_targets = _ids(first.target_item_ids)
        second_targets = _ids(second.target_item_ids)
        if first_targets and second_targets and first_targets & second_targets:
            return False

        return True

    def calculate_stacked(self, offers: Sequence, amount: Any, lines=None, customer_tier_multiplier: Any = 1) -> StackedCalculation:
        """
        Apply stackable offers by descending priority, each on what remains
        after the previous ones. Offers that cannot stack with one already
        applied are skipped.
        """
        original = to_money(amount)
        remaining = original
        applied = []
        calculations = []

        ordered = sorted(
            (o for o in offers if o.is_stackable),
            key=lambda o: o.priority or 0,
            reverse=True,
        )
        for offer in ordered:
            if not all(self.can_stack_with(offer, other) for other in applied):
                continue

            calculation = self.calculate(offer, remaining, lines, customer_tier_multiplier)
            if calculation.discount_amount <= 0:
                continue

            remaining = to_money(remaining - calculation.discount_amount)
            applied.append(offer)
            calculations.append(calculation)

        return StackedCalculation(
            original_amount=original,
            total_discount=to_money(original - remaining),
            final_amount=remaining,
            calculations=calculations,
        )

    def select_best(self, offers: Sequence, amount: Any, lines=None, customer_tier_multiplier: Any = 1) -> OfferSelection:
        """Pick the larger of the best single offer and the stacked stackable offers."""
        ranked = self.compare_offers(offers, amount, lines, customer_tier_multiplier)
        best = ranked[0] if ranked and ranked[0].discount_amount > 0 else None

        stacked = self.calculate_stacked(offers, amount, lines, customer_tier_multiplier)

        if len(stacked.calculations) > 1 and (best is None or stacked.total_discount > best.discount_amount):
            return OfferSelection("stacked", stacked.total_discount, stacked.calculations)

        if best is not None:
            return OfferSelection("single", best.discount_amount, [best])

        return OfferSelection("none", ZERO, [])
