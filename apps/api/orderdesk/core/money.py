"""
Decimal money helpers shared by pricing and offer calculations.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a number or numeric string to a Decimal rounded half-up to cents."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Any) -> str:
    """Serialize money for JSON event payloads."""
    return str(to_money(value))
