"""
Decimal helpers shared by the engine.

All currency math is done in Decimal and quantized to the cent with
ROUND_HALF_UP. Floats only appear at the JSON boundary.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value, field: str | None = None) -> Decimal:
    """Convert Numeric/float/str/None to Decimal. None and "" become 0."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError("Expected a number, got a boolean.", field=field)
    try:
        # str() first so 0.1 (float) becomes Decimal("0.1"), not its binary expansion
        result = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"'{value}' is not a valid number.", field=field) from None
    if not result.is_finite():
        raise ValidationError(f"'{value}' is not a valid number.", field=field)
    return result


def money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount, percent) -> Decimal:
    """amount * percent / 100, unrounded."""
    return to_decimal(amount) * to_decimal(percent) / HUNDRED


def as_float(value) -> float:
    """JSON representation of a currency amount (2 decimals)."""
    return float(money(value))
