from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
QTY_STEP = Decimal("0.001")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """
    Coerce DB/JSON numerics to Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    None -> 0 is deliberately NOT done here; callers decide what a missing
    value means.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"not a number: {value!r}")


def money(value) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_floor(value) -> Decimal:
    """Truncate to cents (interest is never rounded up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_DOWN)


def qty(value) -> Decimal:
    return to_decimal(value).quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def to_str(value: Optional[Decimal]) -> Optional[str]:
    """JSON-safe rendering; None stays None."""
    if value is None:
        return None
    return str(to_decimal(value))
