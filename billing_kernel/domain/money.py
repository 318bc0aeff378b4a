"""
Money helpers (``billing_kernel.domain.money``).

All monetary values are ``Decimal`` -- NEVER ``float``.  Derived amounts are
rounded to cents with ROUND_HALF_UP; percentage rollups to whole percents.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from billing_kernel.exceptions import ValidationError

ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")
WHOLE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Coerce int/str/Decimal to Decimal. Floats are rejected."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(
            f"{field} must be a Decimal, int or numeric string, not {type(value).__name__}",
            field=field,
            value=value,
        )
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"{field} is not numeric: {value!r}", field=field, value=value)
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field, value=value)
    return result


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def percent(part: int, whole: int) -> int:
    """``round(100 * part / whole)`` half-up; 0 when ``whole`` is 0."""
    if whole == 0:
        return 0
    ratio = Decimal(part) * HUNDRED / Decimal(whole)
    return int(ratio.quantize(WHOLE, rounding=ROUND_HALF_UP))


def plain(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros (``200``, ``1.5``)."""
    if value == value.to_integral_value():
        return str(value.quantize(WHOLE))
    return format(value.normalize(), "f")


def fixed2(value: Decimal) -> str:
    """Render a Decimal with exactly two places (``5000.00``)."""
    return str(round_money(value))
