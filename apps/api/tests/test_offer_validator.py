"""
Unit tests for offer eligibility rules.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from orderdesk.services.offer_validator import OfferValidator, OrderContext, is_within_time_window

# Wednesday noon
NOW = datetime(2026, 3, 4, 12, 0)

BURGER = str(uuid4())
FRIES = str(uuid4())


def offer(**kwargs):
    values = {
        "is_active": True,
        "starts_at": None,
        "ends_at": None,
        "valid_time_start": None,
        "valid_time_end": None,
        "valid_days": None,
        "minimum_amount": None,
        "minimum_quantity": None,
        "usage_limit": None,
        "usage_count": 0,
        "usage_per_customer": None,
        "target_item_ids": None,
        "excluded_item_ids": None,
        "code": None,
    }
    values.update(kwargs)
    return SimpleNamespace(**values)


def context(subtotal="30.00", **kwargs):
    lines = kwargs.pop("lines", [
        {"item_id": BURGER, "quantity": 1, "unit_price": "15.00"},
        {"item_id": FRIES, "quantity": 2, "unit_price": "4.00"},
    ])
    return OrderContext(lines=lines, subtotal=Decimal(subtotal), **kwargs)


class TestOfferValidator:

    def setup_method(self):
        self.validator = OfferValidator()

    def test_plain_offer_is_valid(self):
        result = self.validator.validate(offer(), context(), NOW)

        assert result.is_valid is True
        assert result.issues == []
        assert result.failure_reason is None

    def test_minimum_amount_rejected_with_suggestion(self):
        result = self.validator.validate(offer(minimum_amount=Decimal("50.00")), context("30.00"), NOW)

        assert result.is_valid is False
        assert result.codes == ["MIN_AMOUNT"]
        assert result.issues[0].context == {"required": "50.00", "actual": "30.00"}
        assert "Add more items to meet the minimum amount requirement" in result.suggestions
        assert result.failure_reason == "Offer is not valid for this order"

    def test_collects_every_failing_rule(self):
        broken = offer(
            is_active=False,
            minimum_amount=Decimal("50"),
            minimum_quantity=5,
            valid_days=["monday"],
        )

        result = self.validator.validate(broken, context(), NOW)

        assert result.codes == ["INACTIVE", "DAY_OF_WEEK", "MIN_AMOUNT", "MIN_QUANTITY"]
        assert len(result.suggestions) == 3

    def test_date_range(self):
        expired = offer(ends_at=NOW - timedelta(days=1))
        upcoming = offer(starts_at=NOW + timedelta(hours=1))
        current = offer(starts_at=NOW - timedelta(days=1), ends_at=NOW + timedelta(days=1))

        assert self.validator.validate(expired, context(), NOW).codes == ["DATE_RANGE"]
        assert self.validator.validate(upcoming, context(), NOW).codes == ["DATE_RANGE"]
        assert self.validator.validate(current, context(), NOW).is_valid

    def test_time_window_uses_local_time(self):
        happy_hour = offer(valid_time_start="17:00", valid_time_end="19:00")

        assert self.validator.validate(happy_hour, context(), NOW).codes == ["TIME_RANGE"]
        assert self.validator.validate(happy_hour, context(), NOW, local_now=NOW.replace(hour=18)).is_valid

    def test_valid_days_use_local_day(self):
        thursday_only = offer(valid_days=["thursday"])
        late = NOW.replace(hour=23, minute=30)
        local_next_day = late + timedelta(hours=2)

        assert self.validator.validate(thursday_only, context(), late).codes == ["DAY_OF_WEEK"]
        assert self.validator.validate(thursday_only, context(), late, local_now=local_next_day).is_valid

    def test_usage_limit_reached(self):
        result = self.validator.validate(offer(usage_limit=5, usage_count=5), context(), NOW)

        assert result.codes == ["USAGE_LIMIT"]
        assert result.issues[0].context == {"limit": 5, "used": 5}

    def test_customer_usage_limit(self):
        once = offer(usage_per_customer=1)

        used = self.validator.validate(once, context(customer_ref="ada@example.com", customer_usage_count=1), NOW)
        fresh = self.validator.validate(once, context(customer_ref="ada@example.com", customer_usage_count=0), NOW)
        anonymous = self.validator.validate(once, context(customer_usage_count=3), NOW)

        assert used.codes == ["CUSTOMER_USAGE_LIMIT"]
        assert fresh.is_valid
        assert anonymous.is_valid

    def test_target_items_must_be_in_order(self):
        result = self.validator.validate(offer(target_item_ids=[str(uuid4())]), context(), NOW)

        assert result.codes == ["INVALID_ITEMS"]
        assert self.validator.validate(offer(target_item_ids=[FRIES]), context(), NOW).is_valid

    def test_excluded_items(self):
        result = self.validator.validate(offer(excluded_item_ids=[FRIES]), context(), NOW)

        assert result.codes == ["EXCLUDED_ITEMS"]
        assert result.issues[0].context == {"excluded_items": [FRIES]}
        assert result.suggestions == ["Remove excluded items to use this offer"]

    def test_code_checked_only_when_provided(self):
        coded = offer(code="SAVE10")

        assert self.validator.validate(coded, context(), NOW).is_valid
        assert self.validator.validate(coded, context(provided_code=" save10 "), NOW).is_valid
        assert self.validator.validate(coded, context(provided_code="WRONG"), NOW).codes == ["INVALID_CODE"]


class TestTimeWindow:

    @pytest.mark.parametrize("hour,minute,expected", [
        (17, 0, True),
        (19, 0, True),
        (19, 1, False),
        (16, 59, False),
    ])
    def test_window_is_inclusive(self, hour, minute, expected):
        assert is_within_time_window("17:00", "19:00", NOW.replace(hour=hour, minute=minute)) is expected

    @pytest.mark.parametrize("hour,expected", [(23, True), (1, True), (2, True), (3, False), (12, False)])
    def test_window_across_midnight(self, hour, expected):
        assert is_within_time_window("22:00", "02:00", NOW.replace(hour=hour, minute=0)) is expected

    def test_missing_bounds_always_match(self):
        assert is_within_time_window(None, "10:00", NOW) is True
        assert is_within_time_window("10:00", None, NOW) is True
