"""
Decimal helpers for volumes, prices and money.

Every quantity in the reconciliation engine is a Decimal with four places,
matching the Numeric(19, 4) columns. JSON floats are read through their
repr (0.1 stays Decimal("0.1")), never through their binary expansion, so
float drift does not leak into variances.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

SCALE = Decimal("0.0001")
ZERO = Decimal("0")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(SCALE, rounding=ROUND_HALF_UP)


def parse_decimal(value: Any, field: str, *, allow_negative: bool = False) -> Decimal:
    """
    Coerce JSON input (int, numeric string, or float) into a 4-place Decimal.

    Floats are converted through repr so 12.5 becomes Decimal("12.5") rather
    than its binary expansion. Raises ValueError with the field name on bad input.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"{field} is required and must be a number")
    try:
        if isinstance(value, float):
            result = Decimal(repr(value))
        else:
            result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be a number")
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    if not allow_negative and result < 0:
        raise ValueError(f"{field} cannot be negative")
    return quantize(result)


def to_decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a Decimal for JSON as a fixed 4-place string."""
    if value is None:
        return None
    return format(quantize(Decimal(value)), "f")
