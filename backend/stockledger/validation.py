from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from .errors import ValidationError
from stockledger.decimal_utils import money, qty, to_decimal
from stockledger.time_utils import parse_iso_date

# Maximum line quantity / amount accepted from a client.
# Keeps obviously broken input (1e15 units) away from Numeric(12, x) columns.
MAX_QUANTITY = Decimal("999999")
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: Decimal
    unit_price: Decimal | None = None
    unit_cost: Decimal | None = None


def parse_int(value: Any, field: str) -> int:
    """Strict integer: rejects bools, floats and decimal strings."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer", details={field: value})


def parse_decimal(value: Any, field: str) -> Decimal:
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        result = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number", details={field: value})
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={field: value})
    return result


def parse_quantity(value: Any, field: str = "quantity") -> Decimal:
    result = qty(parse_decimal(value, field))
    if result <= 0:
        raise ValidationError(f"{field} must be positive", details={field: str(result)})
    if result > MAX_QUANTITY:
        raise ValidationError(f"{field} is too large", details={field: str(result)})
    return result


def parse_amount(value: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
    result = money(parse_decimal(value, field))
    if result < 0 or (result == 0 and not allow_zero):
        raise ValidationError(f"{field} must be positive", details={field: str(result)})
    if result > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large", details={field: str(result)})
    return result


def parse_optional_date(value: Any, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", details={field: value})


def parse_line_items(items: Any, *, with_price: bool = False, with_cost: bool = False) -> list[LineItem]:
    """
    Shape-check a list of {"product_id", "quantity"[, "unit_price" | "unit_cost"]} dicts.

    Runs before any transaction opens; product existence is checked by the
    caller against the tenant.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    parsed = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        product_id = parse_int(raw.get("product_id"), "product_id")
        quantity = parse_quantity(raw.get("quantity"))
        unit_price = None
        if with_price and raw.get("unit_price") not in (None, ""):
            unit_price = parse_amount(raw.get("unit_price"), "unit_price", allow_zero=True)
        unit_cost = None
        if with_cost and raw.get("unit_cost") not in (None, ""):
            unit_cost = parse_decimal(raw.get("unit_cost"), "unit_cost")
            if unit_cost < 0:
                raise ValidationError("unit_cost cannot be negative", details={"index": index})
        parsed.append(LineItem(product_id=product_id, quantity=quantity, unit_price=unit_price, unit_cost=unit_cost))
    return parsed
