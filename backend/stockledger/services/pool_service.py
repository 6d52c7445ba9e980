"""
Inventory pools and presentations.

A SIMPLE product either holds its own stock or, when base_product_id is set,
is a presentation of a base (pool) product: selling one unit of it consumes
units_per_sale base units. Movements are always written against the pool,
never against the presentation.

Example: a 12-pack of soda (units_per_sale=12) and a single can
(units_per_sale=1) both drawing from the "soda can" pool.

Every writer resolves through resolve_movement(), and every stock check for
a SIMPLE product reads through get_pool_stock(), so the pool arithmetic lives
here and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR

from ..errors import ValidationError
from ..models import Product
from stockledger.decimal_utils import ZERO, qty, to_decimal, to_str
from .ledger_service import get_current_stock


@dataclass(frozen=True)
class ResolvedMovement:
    product_id: int
    quantity: Decimal


@dataclass(frozen=True)
class PoolStock:
    pool_product_id: int
    base_units: Decimal
    units_per_sale: Decimal
    available_sale_units: int
    can_sell: bool

    def to_dict(self) -> dict:
        return {
            "pool_product_id": self.pool_product_id,
            "base_units": to_str(self.base_units),
            "units_per_sale": to_str(self.units_per_sale),
            "available_sale_units": self.available_sale_units,
            "can_sell": self.can_sell,
        }


@dataclass(frozen=True)
class QuantityCheck:
    product_id: int
    pool_product_id: int
    can_sell: bool
    requested: Decimal
    required_base_units: Decimal
    available_base_units: Decimal
    missing_base_units: Decimal

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "pool_product_id": self.pool_product_id,
            "can_sell": self.can_sell,
            "requested": to_str(self.requested),
            "required_base_units": to_str(self.required_base_units),
            "available_base_units": to_str(self.available_base_units),
            "missing_base_units": to_str(self.missing_base_units),
        }


def effective_units_per_sale(product: Product) -> Decimal:
    """Base units one sale unit consumes; 1 for a product that is its own pool."""
    if not product.base_product_id:
        return Decimal("1")
    units = to_decimal(product.units_per_sale) if product.units_per_sale is not None else Decimal("1")
    if units <= 0:
        raise ValidationError(
            "units_per_sale must be positive",
            details={"product_id": product.id, "units_per_sale": to_str(units)},
        )
    return units


def floor_units(value: Decimal) -> int:
    """Whole units, never negative."""
    whole = int(to_decimal(value).to_integral_value(rounding=ROUND_FLOOR))
    return max(whole, 0)


def resolve_movement(product: Product, sale_quantity) -> ResolvedMovement:
    """Map a quantity in the product's sale units onto its pool."""
    if product.is_combo:
        raise ValidationError(
            "COMBO products hold no stock; resolve each component instead",
            details={"product_id": product.id},
        )
    units = effective_units_per_sale(product)
    return ResolvedMovement(
        product_id=product.pool_product_id,
        quantity=qty(to_decimal(sale_quantity) * units),
    )


def get_pool_stock(tenant_id: int, product: Product, base_units: Decimal | None = None) -> PoolStock:
    """
    Stock of the product's pool, in base units and in whole sale units.

    base_units can be passed in when the caller already aggregated the ledger
    (bulk listings) to avoid one query per product.
    """
    if base_units is None:
        base_units = get_current_stock(tenant_id, product.pool_product_id)
    units = effective_units_per_sale(product)
    available = floor_units(base_units / units)
    return PoolStock(
        pool_product_id=product.pool_product_id,
        base_units=base_units,
        units_per_sale=units,
        available_sale_units=available,
        can_sell=available > 0,
    )


def validate_quantity(
    tenant_id: int,
    product: Product,
    requested,
    reserved_base_units: Decimal = ZERO,
) -> QuantityCheck:
    """
    Can `requested` sale units be taken from the pool right now?

    reserved_base_units is what earlier lines of the same sale already claim
    from this pool (two presentations of one base product in one cart).
    Called under the checkout lock; the result is only trustworthy there.
    """
    requested = to_decimal(requested)
    resolved = resolve_movement(product, requested)
    available = get_current_stock(tenant_id, resolved.product_id) - reserved_base_units
    missing = resolved.quantity - available
    return QuantityCheck(
        product_id=product.id,
        pool_product_id=resolved.product_id,
        can_sell=missing <= 0,
        requested=requested,
        required_base_units=resolved.quantity,
        available_base_units=max(available, ZERO),
        missing_base_units=max(missing, ZERO),
    )


def get_simple_availability(tenant_id: int, product: Product, base_units: Decimal | None = None) -> dict:
    pool = get_pool_stock(tenant_id, product, base_units=base_units)
    stock_min = to_decimal(product.stock_min) if product.stock_min is not None else None
    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "product_type": product.product_type,
        "current_stock": pool.available_sale_units,
        "base_stock": to_str(pool.base_units),
        "available_for_sale": pool.can_sell,
        "units_per_sale": to_str(pool.units_per_sale),
        "base_product_id": product.base_product_id,
        "stock_min": to_str(stock_min),
        "is_below_min": stock_min is not None and pool.available_sale_units < stock_min,
    }
