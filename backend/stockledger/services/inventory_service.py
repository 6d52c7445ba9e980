from __future__ import annotations

import logging

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product
from ..models.inventory import (
    DIRECTION_IN,
    DIRECTION_OUT,
    PRODUCT_COMBO,
    PRODUCT_SIMPLE,
    REASON_ADJUST,
    REASON_WASTE,
)
from ..validation import parse_quantity
from stockledger.decimal_utils import to_str
from . import combo_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .ledger_service import REF_ADJUSTMENT, append_movement, get_average_cost, get_current_stock, get_stock_map
from .pool_service import get_simple_availability, resolve_movement

logger = logging.getLogger(__name__)


def _get_product(tenant_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if not product:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def get_availability(tenant_id: int, product_id: int) -> dict:
    """Sellable stock of any product: pool-based for SIMPLE, component-based for COMBO."""
    product = _get_product(tenant_id, product_id)
    if product.product_type == PRODUCT_COMBO:
        return combo_service.get_combo_availability(tenant_id, product.id)
    return get_simple_availability(tenant_id, product)


def get_bulk_availability(tenant_id: int, product_ids=None) -> list[dict]:
    """
    Availability for many products. SIMPLE stock comes from one grouped
    ledger query; combos are computed one by one.
    """
    query = db.session.query(Product).filter(Product.tenant_id == tenant_id, Product.is_active.is_(True))
    if product_ids is not None:
        query = query.filter(Product.id.in_(list(product_ids)))
    products = query.order_by(Product.id.asc()).all()

    simple = [p for p in products if p.product_type == PRODUCT_SIMPLE]
    stock = get_stock_map(tenant_id, [p.pool_product_id for p in simple])

    result = []
    for product in products:
        if product.product_type == PRODUCT_COMBO:
            result.append(combo_service.get_combo_availability(tenant_id, product.id))
        else:
            result.append(get_simple_availability(tenant_id, product, base_units=stock[product.pool_product_id]))
    return result


def list_below_min(tenant_id: int) -> list[dict]:
    """Active SIMPLE products whose sellable stock is under their stock_min."""
    products = (
        db.session.query(Product)
        .filter(
            Product.tenant_id == tenant_id,
            Product.is_active.is_(True),
            Product.product_type == PRODUCT_SIMPLE,
            Product.stock_min.isnot(None),
        )
        .order_by(Product.id.asc())
        .all()
    )
    stock = get_stock_map(tenant_id, [p.pool_product_id for p in products])
    rows = [get_simple_availability(tenant_id, p, base_units=stock[p.pool_product_id]) for p in products]
    return [row for row in rows if row["is_below_min"]]


def adjust_stock(
    tenant_id: int,
    product_id: int,
    direction: str,
    quantity,
    reason: str = REASON_ADJUST,
    note: str | None = None,
) -> InventoryMovement:
    """
    Manual correction (count differences, breakage, waste).

    quantity is in the product's sale units and lands in its pool. An OUT
    that would take the pool below zero is refused.
    """
    if direction not in (DIRECTION_IN, DIRECTION_OUT):
        raise ValidationError(f"Unknown movement direction: {direction}")
    if reason not in (REASON_ADJUST, REASON_WASTE):
        raise ValidationError("Adjustments use reason ADJUST or WASTE")
    if reason == REASON_WASTE and direction != DIRECTION_OUT:
        raise ValidationError("WASTE adjustments remove stock")
    quantity = parse_quantity(quantity)

    product = _get_product(tenant_id, product_id)
    if product.product_type != PRODUCT_SIMPLE:
        raise ValidationError("Only SIMPLE products hold stock", details={"product_id": product.id})

    def _op():
        begin_write_transaction()
        lock_for_update(
            db.session.query(Product).filter(Product.id.in_(sorted({product.id, product.pool_product_id})))
        ).all()
        resolved = resolve_movement(product, quantity)

        cost = None
        if direction == DIRECTION_OUT:
            on_hand = get_current_stock(tenant_id, resolved.product_id)
            if resolved.quantity > on_hand:
                raise InsufficientStockError(
                    "Adjustment would make stock negative",
                    details={"items": [{
                        "product_id": product.id,
                        "pool_product_id": resolved.product_id,
                        "requested_base_units": to_str(resolved.quantity),
                        "available_base_units": to_str(on_hand),
                    }]},
                )
            cost = get_average_cost(tenant_id, resolved.product_id)

        movement = append_movement(
            tenant_id=tenant_id,
            product_id=resolved.product_id,
            direction=direction,
            reason=reason,
            quantity=resolved.quantity,
            cost_at_movement=cost,
            ref_type=REF_ADJUSTMENT,
            note=note,
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    logger.info(
        "Stock adjusted: product %s %s %s (%s)", movement.product_id, direction, movement.quantity, reason
    )
    return movement
