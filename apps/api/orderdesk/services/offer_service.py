"""
Offer management and evaluation for one restaurant.

Wraps the pure calculator and validator with persistence: offer CRUD,
catalog-priced order contexts, customer usage lookups and the usage counter
consumed when an order is confirmed.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from orderdesk.core.clock import to_restaurant_local, utcnow
from orderdesk.core.exceptions import LimitExceededError, NotFoundError, OfferNotApplicableError
from orderdesk.core.money import ZERO, to_money
from orderdesk.models.item import Item
from orderdesk.models.offer import Offer, OfferUsage
from orderdesk.models.restaurant import Restaurant
from orderdesk.schemas.offer import OfferCreate, OfferUpdate, check_offer_rules
from orderdesk.services.offer_calculator import DiscountCalculation, OfferCalculator, OfferSelection
from orderdesk.services.offer_validator import OfferValidator, OrderContext, ValidationResult

logger = logging.getLogger(__name__)

# Copied as-is by duplicate_offer
DUPLICATED_FIELDS = (
    "name", "description", "type", "value", "max_discount", "auto_apply", "is_stackable",
    "priority", "starts_at", "ends_at", "valid_days", "valid_time_start", "valid_time_end",
    "minimum_amount", "minimum_quantity", "usage_limit", "usage_per_customer",
    "target_item_ids", "excluded_item_ids", "conditions",
)


@dataclass
class EvaluationContext:
    """Catalog-priced lines plus customer info for evaluating offers."""
    lines: List[dict] = field(default_factory=list)
    subtotal: Decimal = ZERO
    customer_ref: Optional[str] = None
    order_id: Optional[UUID] = None


def _id_list(values: Optional[Iterable]) -> Optional[List[str]]:
    if values is None:
        return None
    return [str(v) for v in values]


class OfferService:
    """Offer operations scoped to a single restaurant."""

    def __init__(self, db: Session, restaurant: Restaurant, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.restaurant = restaurant
        self.clock = clock
        self.calculator = OfferCalculator()
        self.validator = OfferValidator()

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def _base_query(self):
        return select(Offer).where(
            Offer.restaurant_id == self.restaurant.id,
            Offer.deleted_at.is_(None),
        )

    def list_offers(
        self,
        is_active: Optional[bool] = None,
        offer_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Offer]:
        stmt = self._base_query()
        if is_active is not None:
            stmt = stmt.where(Offer.is_active == is_active)
        if offer_type:
            stmt = stmt.where(Offer.type == offer_type)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(or_(
                func.lower(Offer.name).like(pattern),
                func.lower(Offer.code).like(pattern),
                func.lower(Offer.description).like(pattern),
            ))
        stmt = stmt.order_by(Offer.priority.desc(), Offer.created_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def get_offer(self, offer_id: UUID) -> Optional[Offer]:
        stmt = self._base_query().where(Offer.id == offer_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_code(self, code: str) -> Optional[Offer]:
        stmt = self._base_query().where(func.lower(Offer.code) == code.strip().lower())
        return self.db.execute(stmt).scalars().first()

    def code_exists(self, code: Optional[str], exclude_id: Optional[UUID] = None) -> bool:
        """Codes stay reserved by soft-deleted offers, matching the unique index."""
        if not code:
            return False
        stmt = select(Offer.id).where(
            Offer.restaurant_id == self.restaurant.id,
            func.lower(Offer.code) == code.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Offer.id != exclude_id)
        return self.db.execute(stmt).first() is not None

    def create_offer(self, data: OfferCreate) -> Offer:
        values = data.model_dump()
        values["target_item_ids"] = _id_list(data.target_item_ids)
        values["excluded_item_ids"] = _id_list(data.excluded_item_ids)

        offer = Offer(restaurant_id=self.restaurant.id, usage_count=0, **values)
        self.db.add(offer)
        self.db.commit()
        self.db.refresh(offer)
        logger.info(f"Created offer {offer.id} ({offer.type}) for restaurant {self.restaurant.id}")
        return offer

    def update_offer(self, offer: Offer, data: OfferUpdate) -> Offer:
        """
        Apply a partial update.

        Raises ValueError when the merged offer breaks a cross-field rule.
        """
        changes = data.model_dump(exclude_unset=True)
        for key in ("target_item_ids", "excluded_item_ids"):
            if key in changes:
                changes[key] = _id_list(changes[key])

        merged = {
            name: changes.get(name, getattr(offer, name))
            for name in ("type", "value", "conditions", "starts_at", "ends_at")
        }
        check_offer_rules(**merged)

        for key, value in changes.items():
            setattr(offer, key, value)

        self.db.commit()
        self.db.refresh(offer)
        return offer

    def delete_offer(self, offer: Offer) -> None:
        offer.deleted_at = self.clock()
        offer.is_active = False
        self.db.commit()
        logger.info(f"Soft-deleted offer {offer.id}")

    def set_active(self, offer: Offer, is_active: bool) -> Offer:
        offer.is_active = is_active
        self.db.commit()
        self.db.refresh(offer)
        return offer

    def bulk_action(self, action: str, offer_ids: Sequence[UUID]) -> int:
        """Activate, deactivate or delete several offers. Returns how many were affected."""
        stmt = self._base_query().where(Offer.id.in_(list(offer_ids)))
        offers = self.db.execute(stmt).scalars().all()

        now = self.clock()
        for offer in offers:
            if action == "activate":
                offer.is_active = True
            elif action == "deactivate":
                offer.is_active = False
            elif action == "delete":
                offer.is_active = False
                offer.deleted_at = now
            else:
                raise ValueError(f"Unknown bulk action: {action}")

        self.db.commit()
        logger.info(f"Bulk {action} applied to {len(offers)} offers")
        return len(offers)

    def duplicate_offer(self, offer: Offer, overrides: Optional[OfferUpdate] = None) -> Offer:
        """
        Copy an offer with a fresh usage counter.

        The copy is inactive and gets a unique ``_copy_<n>`` code unless
        ``overrides`` sets ``is_active`` or ``code``. Raises ValueError when
        the overridden copy breaks a cross-field rule.
        """
        changes = overrides.model_dump(exclude_unset=True) if overrides else {}
        for key in ("target_item_ids", "excluded_item_ids"):
            if key in changes:
                changes[key] = _id_list(changes[key])

        copy = Offer(restaurant_id=offer.restaurant_id, is_active=False, usage_count=0)
        for name in DUPLICATED_FIELDS:
            value = getattr(offer, name)
            if isinstance(value, (list, dict)):
                value = type(value)(value)
            setattr(copy, name, value)
        for key, value in changes.items():
            setattr(copy, key, value)
        check_offer_rules(copy.type, copy.value, copy.conditions, copy.starts_at, copy.ends_at)

        if offer.code and "code" not in changes:
            n = 1
            while self.code_exists(f"{offer.code}_copy_{n}"):
                n += 1
            copy.code = f"{offer.code}_copy_{n}"

        self.db.add(copy)
        self.db.commit()
        self.db.refresh(copy)
        logger.info(f"Duplicated offer {offer.id} as {copy.id}")
        return copy

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def build_lines(self, items: Sequence) -> List[dict]:
        """
        Price lines from the catalog.

        ``items`` have ``item_id`` and ``quantity``; lines for the same item
        are merged. Raises NotFoundError for unknown or inactive items.
        """
        ids = {item.item_id for item in items}
        stmt = select(Item).where(
            Item.restaurant_id == self.restaurant.id,
            Item.id.in_(ids),
            Item.is_active.is_(True),
        )
        catalog = {item.id: item for item in self.db.execute(stmt).scalars().all()}

        missing = [str(i) for i in ids if i not in catalog]
        if missing:
            raise NotFoundError("Items not found in catalog", {"item_ids": sorted(missing)})

        lines: dict = {}
        for entry in items:
            item = catalog[entry.item_id]
            line = lines.setdefault(str(item.id), {
                "item_id": str(item.id),
                "name": item.name,
                "quantity": 0,
                "unit_price": str(to_money(item.price)),
                "notes": getattr(entry, "notes", None),
            })
            line["quantity"] += entry.quantity

        for line in lines.values():
            line["line_total"] = str(to_money(Decimal(line["unit_price"]) * line["quantity"]))
        return list(lines.values())

    def context_from_lines(self, lines: List[dict], customer_ref: Optional[str] = None, order_id: Optional[UUID] = None) -> EvaluationContext:
        subtotal = to_money(sum((to_money(l.get("line_total")) for l in lines), ZERO))
        return EvaluationContext(lines=lines, subtotal=subtotal, customer_ref=customer_ref, order_id=order_id)

    def customer_usage_count(self, offer: Offer, customer_ref: Optional[str]) -> int:
        if not customer_ref:
            return 0
        stmt = select(func.count(OfferUsage.id)).where(
            OfferUsage.offer_id == offer.id,
            OfferUsage.customer_ref == customer_ref,
        )
        return self.db.execute(stmt).scalar_one()

    def validate(self, offer: Offer, context: EvaluationContext, code: Optional[str] = None) -> ValidationResult:
        now = self.clock()
        order_context = OrderContext(
            lines=context.lines,
            subtotal=context.subtotal,
            customer_ref=context.customer_ref,
            provided_code=code,
            customer_usage_count=self.customer_usage_count(offer, context.customer_ref),
        )
        return self.validator.validate(
            offer,
            order_context,
            now=now,
            local_now=to_restaurant_local(now, self.restaurant.timezone),
        )

    def _is_unlocked(self, offer: Offer, codes: Sequence[str], auto_apply_only: bool) -> bool:
        """Whether an offer may be considered without being explicitly chosen."""
        if offer.code and offer.code.lower() in codes:
            return True
        if auto_apply_only:
            return bool(offer.auto_apply)
        return not offer.code or bool(offer.auto_apply)

    def available_offers(
        self,
        context: EvaluationContext,
        codes: Sequence[str] = (),
        auto_apply_only: bool = False,
    ) -> List[Offer]:
        """Active offers that pass validation for the order."""
        codes = [c.strip().lower() for c in codes if c]
        stmt = self._base_query().where(Offer.is_active.is_(True)).order_by(Offer.priority.desc())

        available = []
        for offer in self.db.execute(stmt).scalars().all():
            if not self._is_unlocked(offer, codes, auto_apply_only):
                continue
            if self.validate(offer, context).is_valid:
                available.append(offer)
        return available

    def apply(
        self,
        offer: Offer,
        context: EvaluationContext,
        code: Optional[str] = None,
        customer_tier_multiplier: Decimal = Decimal("1"),
    ) -> DiscountCalculation:
        """
        Validate and calculate one offer. Usage is not consumed here.

        Raises OfferNotApplicableError with every failing rule.
        """
        result = self.validate(offer, context, code)
        if not result.is_valid:
            raise OfferNotApplicableError(
                issues=[issue.to_dict() for issue in result.issues],
                suggestions=result.suggestions,
            )
        return self.calculator.calculate(offer, context.subtotal, context.lines, customer_tier_multiplier)

    def apply_best(
        self,
        context: EvaluationContext,
        codes: Sequence[str] = (),
        customer_tier_multiplier: Decimal = Decimal("1"),
        auto_apply_only: bool = False,
    ) -> OfferSelection:
        offers = self.available_offers(context, codes, auto_apply_only)
        return self.calculator.select_best(offers, context.subtotal, context.lines, customer_tier_multiplier)

    def check_code(
        self,
        code: str,
        context: EvaluationContext,
        customer_tier_multiplier: Decimal = Decimal("1"),
    ):
        """
        Look up an offer by code and evaluate it.

        Returns (offer, validation result, calculation); offer is None when
        no offer has the code, calculation is None when it does not apply.
        """
        offer = self.find_by_code(code)
        if offer is None:
            return None, None, None

        result = self.validate(offer, context, code)
        calculation = None
        if result.is_valid:
            calculation = self.calculator.calculate(offer, context.subtotal, context.lines, customer_tier_multiplier)
        return offer, result, calculation

    # ------------------------------------------------------------------
    # Usage accounting
    # ------------------------------------------------------------------

    def record_usage(
        self,
        offer_id: UUID,
        order_id: Optional[UUID],
        customer_ref: Optional[str],
        discount_amount: Decimal,
        order_amount: Decimal,
    ) -> None:
        """
        Consume one use of an offer inside the caller's transaction.

        The increment is a single conditional UPDATE so concurrent
        confirmations cannot push usage_count past usage_limit. The caller
        commits or rolls back.
        """
        stmt = (
            update(Offer)
            .where(
                Offer.id == offer_id,
                Offer.deleted_at.is_(None),
                or_(Offer.usage_limit.is_(None), Offer.usage_count < Offer.usage_limit),
            )
            .values(usage_count=Offer.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount == 0:
            logger.warning(f"Usage limit reached for offer {offer_id} while confirming order {order_id}")
            raise LimitExceededError(
                "Offer usage limit reached",
                {"offer_id": str(offer_id), "order_id": str(order_id) if order_id else None},
            )

        self.db.add(OfferUsage(
            offer_id=offer_id,
            order_id=order_id,
            customer_ref=customer_ref,
            discount_amount=to_money(discount_amount),
            order_amount=to_money(order_amount),
            used_at=self.clock(),
        ))
        logger.info(f"Recorded usage of offer {offer_id} for order {order_id}: discount {to_money(discount_amount)}")

    def analytics(self, offer: Offer, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        """
        Usage totals for an offer.

        ``start_date`` and ``end_date`` only narrow ``daily_usage``; totals
        always cover the whole history. ``roi`` is order value net of
        discount per unit of discount, in percent, or None without usage.
        """
        usages = self.db.execute(
            select(OfferUsage).where(OfferUsage.offer_id == offer.id).order_by(OfferUsage.used_at)
        ).scalars().all()

        total_discount = to_money(sum((u.discount_amount for u in usages), ZERO))
        total_order_value = to_money(sum((u.order_amount for u in usages), ZERO))

        daily: dict = {}
        for usage in usages:
            day = usage.used_at.date()
            entry = daily.setdefault(day, {"day": day, "uses": 0, "discount": ZERO})
            entry["uses"] += 1
            entry["discount"] = to_money(entry["discount"] + usage.discount_amount)

        daily_usage = [
            entry for day, entry in daily.items()
            if (start_date is None or day >= start_date) and (end_date is None or day <= end_date)
        ]

        roi = None
        if total_discount > 0 and total_order_value > 0:
            roi = to_money((total_order_value - total_discount) / total_discount * 100)

        remaining = None
        if offer.usage_limit is not None:
            remaining = max(offer.usage_limit - (offer.usage_count or 0), 0)

        return {
            "offer_id": offer.id,
            "total_uses": len(usages),
            "unique_customers": len({u.customer_ref for u in usages if u.customer_ref}),
            "total_discount": total_discount,
            "average_discount": to_money(total_discount / len(usages)) if usages else ZERO,
            "total_order_value": total_order_value,
            "remaining_uses": remaining,
            "roi": roi,
            "daily_usage": daily_usage,
        }
