"""
COMBO products: bundles sold as one line and built from SIMPLE components.

A combo never has ledger rows of its own. Its stock is derived: how many
complete bundles the components' pools can still cover. Selling a combo
writes one OUT/SALE movement per component (resolved through the component's
pool) under the sale's reference. A void mirrors those recorded rows
(sales_service.write_void_movements), so later recipe edits do not change
what comes back.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product, ProductComponent
from ..models.inventory import (
    DIRECTION_OUT,
    PRODUCT_COMBO,
    PRODUCT_SIMPLE,
    REASON_SALE,
)
from stockledger.decimal_utils import ZERO, money, qty, to_decimal, to_str
from .ledger_service import REF_SALE, append_movement, get_average_cost, get_stock_map
from .pool_service import effective_units_per_sale, floor_units, resolve_movement

logger = logging.getLogger(__name__)


def _load_combo(tenant_id: int, combo_id: int) -> Product:
    combo = db.session.query(Product).filter_by(id=combo_id, tenant_id=tenant_id).first()
    if not combo:
        raise NotFoundError("Product not found", details={"product_id": combo_id})
    if combo.product_type != PRODUCT_COMBO:
        raise ValidationError("Product is not a COMBO", details={"product_id": combo_id})
    return combo


def base_units_per_combo(combo: Product) -> dict[int, Decimal]:
    """Base units of each pool that one combo consumes (two components may share a pool)."""
    required: dict[int, Decimal] = {}
    for link in combo.components:
        resolved = resolve_movement(link.component, to_decimal(link.qty_per_combo))
        required[resolved.product_id] = required.get(resolved.product_id, ZERO) + resolved.quantity
    return required


def calculate_combo_stock(tenant_id: int, combo_id: int) -> int:
    """
    Complete combos the current stock can cover:
    min over components of floor(component stock / qty per combo).
    A combo without components has no stock.
    """
    combo = _load_combo(tenant_id, combo_id)
    required = base_units_per_combo(combo)
    if not required:
        return 0
    stock = get_stock_map(tenant_id, required.keys())
    return min(floor_units(stock[pool_id] / per_combo) for pool_id, per_combo in required.items())


def get_combo_availability(tenant_id: int, combo_id: int) -> dict:
    combo = _load_combo(tenant_id, combo_id)
    required = base_units_per_combo(combo)
    stock = get_stock_map(tenant_id, required.keys())

    per_pool_max = {
        pool_id: floor_units(stock[pool_id] / per_combo) for pool_id, per_combo in required.items()
    }
    available = min(per_pool_max.values()) if per_pool_max else 0

    components = []
    for link in combo.components:
        component = link.component
        units = effective_units_per_sale(component)
        pool_id = component.pool_product_id
        components.append({
            "component_id": component.id,
            "name": component.name,
            "sku": component.sku,
            "qty_per_combo": to_str(link.qty_per_combo),
            "pool_product_id": pool_id,
            "current_stock": floor_units(stock[pool_id] / units),
            "base_stock": to_str(stock[pool_id]),
            "max_combos": per_pool_max[pool_id],
            "is_limiting": per_pool_max[pool_id] == available,
        })

    return {
        "product_id": combo.id,
        "sku": combo.sku,
        "name": combo.name,
        "product_type": PRODUCT_COMBO,
        "current_stock": available,
        "available_for_sale": available > 0,
        "components": components,
    }


def validate_combo_sale(
    tenant_id: int,
    combo_id: int,
    quantity,
    reserved: dict[int, Decimal] | None = None,
) -> dict:
    """
    Can `quantity` combos be sold right now?

    reserved maps pool product id -> base units already claimed by earlier
    lines of the same sale. Every short component is reported, not only the
    first one.
    """
    combo = _load_combo(tenant_id, combo_id)
    quantity = to_decimal(quantity)
    reserved = reserved or {}

    if not combo.components:
        return {
            "can_sell": False,
            "missing_components": [],
            "error": "Combo has no components",
        }

    required = {pool_id: per_combo * quantity for pool_id, per_combo in base_units_per_combo(combo).items()}
    stock = get_stock_map(tenant_id, required.keys())

    missing = []
    for link in combo.components:
        pool_id = link.component.pool_product_id
        available = stock[pool_id] - reserved.get(pool_id, ZERO)
        needed = required[pool_id]
        if available < needed:
            missing.append({
                "component_id": link.component_product_id,
                "name": link.component.name,
                "pool_product_id": pool_id,
                "current_stock": to_str(max(available, ZERO)),
                "required_stock": to_str(qty(needed)),
                "missing_qty": to_str(qty(needed - max(available, ZERO))),
            })

    return {"can_sell": not missing, "missing_components": missing}


def calculate_combo_cost(tenant_id: int, combo_id: int) -> dict:
    """
    Cost and margin of one combo at current average component cost.

    implied_discount is what the customer saves against buying the
    components one by one at their own sale prices.
    """
    combo = _load_combo(tenant_id, combo_id)

    combo_cost = ZERO
    component_price_sum = ZERO
    for link in combo.components:
        component = link.component
        per_combo = to_decimal(link.qty_per_combo)
        base_cost = get_average_cost(tenant_id, component.pool_product_id)
        combo_cost += base_cost * effective_units_per_sale(component) * per_combo
        component_price_sum += to_decimal(component.sale_price) * per_combo

    sale_price = to_decimal(combo.sale_price)
    combo_margin = sale_price - combo_cost
    if combo_cost > 0 and sale_price > 0:
        margin_percentage = (combo_margin / sale_price * 100).quantize(Decimal("0.01"))
    else:
        margin_percentage = ZERO

    return {
        "product_id": combo.id,
        "combo_cost": to_str(money(combo_cost)),
        "component_price_sum": to_str(money(component_price_sum)),
        "combo_sale_price": to_str(money(sale_price)),
        "implied_discount": to_str(money(component_price_sum - sale_price)),
        "combo_margin": to_str(money(combo_margin)),
        "margin_percentage": to_str(margin_percentage),
    }


def write_sale_movements(tenant_id: int, combo_id: int, quantity, sale_id: int) -> list[InventoryMovement]:
    """One OUT/SALE row per component, against each component's pool. No commit."""
    combo = _load_combo(tenant_id, combo_id)
    movements = []
    for link in combo.components:
        resolved = resolve_movement(link.component, to_decimal(link.qty_per_combo) * to_decimal(quantity))
        movements.append(append_movement(
            tenant_id=tenant_id,
            product_id=resolved.product_id,
            direction=DIRECTION_OUT,
            reason=REASON_SALE,
            quantity=resolved.quantity,
            cost_at_movement=get_average_cost(tenant_id, resolved.product_id),
            ref_type=REF_SALE,
            ref_id=sale_id,
            note=f"Combo {combo.sku} x{quantity}",
        ))
    return movements


def set_components(tenant_id: int, combo_id: int, components: list[dict]) -> Product:
    """
    Replace a combo's component list.

    components: [{"component_product_id": int, "qty_per_combo": number}, ...]
    Components must be active SIMPLE products of the same tenant, at least one
    is required, and a combo cannot contain itself.
    """
    combo = _load_combo(tenant_id, combo_id)

    if not components:
        raise ValidationError("A combo needs at least one component")

    seen: set[int] = set()
    links = []
    for position, raw in enumerate(components):
        if not isinstance(raw, dict):
            raise ValidationError("Each component must be an object", details={"position": position})
        component_id = raw.get("component_product_id")
        if not isinstance(component_id, int) or isinstance(component_id, bool):
            raise ValidationError("component_product_id must be an integer", details={"position": position})
        if component_id == combo.id:
            raise ValidationError("A combo cannot contain itself", details={"position": position})
        if component_id in seen:
            raise ValidationError(
                "Component listed twice", details={"component_product_id": component_id}
            )
        seen.add(component_id)

        try:
            per_combo = qty(raw.get("qty_per_combo"))
        except ValueError:
            raise ValidationError("qty_per_combo must be a number", details={"position": position})
        if per_combo <= 0:
            raise ValidationError("qty_per_combo must be positive", details={"position": position})

        component = (
            db.session.query(Product)
            .filter_by(id=component_id, tenant_id=tenant_id, is_active=True)
            .first()
        )
        if not component:
            raise ValidationError("Component product not found", details={"component_product_id": component_id})
        if component.product_type != PRODUCT_SIMPLE:
            raise ValidationError(
                "Combo components must be SIMPLE products",
                details={"component_product_id": component_id},
            )

        links.append(ProductComponent(
            tenant_id=tenant_id,
            component_product_id=component_id,
            qty_per_combo=per_combo,
            position=position,
        ))

    # Old rows must be gone before the unique (combo, component) pairs are re-inserted
    combo.components = []
    db.session.flush()
    combo.components = links
    db.session.commit()
    logger.info("Combo %s now has %s components", combo.id, len(links))
    return combo
