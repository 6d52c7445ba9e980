"""
Stock ledger: the append-only movement log every stock figure is derived from.

Stock is never stored. get_current_stock() aggregates the ledger live, so a
movement committed by another transaction is visible to the next read.
append_movement() is the only way rows get in; nothing updates or deletes
them (enforced by stockledger/immutability.py).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import case, func

from ..errors import ValidationError
from ..extensions import db
from ..models import InventoryMovement
from ..models.inventory import (
    DIRECTION_IN,
    DIRECTION_OUT,
    DIRECTIONS,
    REASONS,
    REASON_ADJUST,
    REASON_PURCHASE,
    REASON_SALE,
    REASON_VOID,
    REASON_WASTE,
)
from stockledger.decimal_utils import ZERO, qty, to_decimal

REF_SALE = "SALE"
REF_PURCHASE_ORDER = "PURCHASE_ORDER"
REF_ADJUSTMENT = "ADJUSTMENT"

COST_STEP = Decimal("0.0001")

# Which directions each reason may be written with
_REASON_DIRECTIONS = {
    REASON_SALE: {DIRECTION_OUT},
    REASON_PURCHASE: {DIRECTION_IN},
    REASON_VOID: {DIRECTION_IN},
    REASON_WASTE: {DIRECTION_OUT},
    REASON_ADJUST: {DIRECTION_IN, DIRECTION_OUT},
}


@dataclass(frozen=True)
class MovementQuery:
    product_id: int | None = None
    direction: str | None = None
    reason: str | None = None
    ref_type: str | None = None
    ref_id: int | None = None
    limit: int | None = 200


def _signed_quantity():
    return case(
        (InventoryMovement.direction == DIRECTION_IN, InventoryMovement.quantity),
        else_=-InventoryMovement.quantity,
    )


def get_current_stock(tenant_id: int, product_id: int) -> Decimal:
    """Sum(IN) - Sum(OUT) for one product in one tenant."""
    total = (
        db.session.query(func.coalesce(func.sum(_signed_quantity()), 0))
        .filter(
            InventoryMovement.tenant_id == tenant_id,
            InventoryMovement.product_id == product_id,
        )
        .scalar()
    )
    return qty(total if total is not None else ZERO)


def get_stock_map(tenant_id: int, product_ids) -> dict[int, Decimal]:
    """Current stock for many products in one query; products without movements map to 0."""
    ids = sorted(set(product_ids))
    result = {pid: qty(ZERO) for pid in ids}
    if not ids:
        return result
    rows = (
        db.session.query(InventoryMovement.product_id, func.sum(_signed_quantity()))
        .filter(
            InventoryMovement.tenant_id == tenant_id,
            InventoryMovement.product_id.in_(ids),
        )
        .group_by(InventoryMovement.product_id)
        .all()
    )
    for product_id, total in rows:
        result[product_id] = qty(total if total is not None else ZERO)
    return result


def get_average_cost(tenant_id: int, product_id: int) -> Decimal:
    """
    Plain mean of unit_cost over IN movements that carry one.

    Compensating VOID rows and adjustments have no unit_cost, so they never
    move the average. Returns 0 when nothing has been purchased with a cost.
    """
    avg = (
        db.session.query(func.avg(InventoryMovement.unit_cost))
        .filter(
            InventoryMovement.tenant_id == tenant_id,
            InventoryMovement.product_id == product_id,
            InventoryMovement.direction == DIRECTION_IN,
            InventoryMovement.unit_cost.isnot(None),
        )
        .scalar()
    )
    if avg is None:
        return ZERO
    return to_decimal(avg).quantize(COST_STEP)


def append_movement(
    *,
    tenant_id: int,
    product_id: int,
    direction: str,
    reason: str,
    quantity,
    unit_cost=None,
    cost_at_movement=None,
    ref_type: str | None = None,
    ref_id: int | None = None,
    note: str | None = None,
) -> InventoryMovement:
    """
    Add one ledger row to the current transaction (flushed, not committed).

    The caller owns the transaction: a sale writes all of its movements and
    its header, then commits once.
    """
    if direction not in DIRECTIONS:
        raise ValidationError(f"Unknown movement direction: {direction}")
    if reason not in REASONS:
        raise ValidationError(f"Unknown movement reason: {reason}")
    if direction not in _REASON_DIRECTIONS[reason]:
        raise ValidationError(f"{reason} movements cannot be {direction}")

    try:
        quantity = qty(quantity)
    except ValueError:
        raise ValidationError("quantity must be a number", details={"quantity": quantity})
    if quantity <= 0:
        raise ValidationError("quantity must be positive", details={"quantity": str(quantity)})

    if unit_cost is not None:
        if direction != DIRECTION_IN:
            raise ValidationError("unit_cost is only recorded on IN movements")
        unit_cost = to_decimal(unit_cost).quantize(COST_STEP)
        if unit_cost < 0:
            raise ValidationError("unit_cost cannot be negative")

    if cost_at_movement is not None:
        cost_at_movement = to_decimal(cost_at_movement).quantize(COST_STEP)

    movement = InventoryMovement(
        tenant_id=tenant_id,
        product_id=product_id,
        direction=direction,
        reason=reason,
        quantity=quantity,
        unit_cost=unit_cost,
        cost_at_movement=cost_at_movement,
        ref_type=ref_type,
        ref_id=ref_id,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_movements(tenant_id: int, options: MovementQuery | None = None) -> list[InventoryMovement]:
    options = options or MovementQuery()
    query = db.session.query(InventoryMovement).filter(InventoryMovement.tenant_id == tenant_id)

    if options.product_id is not None:
        query = query.filter(InventoryMovement.product_id == options.product_id)
    if options.direction is not None:
        query = query.filter(InventoryMovement.direction == options.direction)
    if options.reason is not None:
        query = query.filter(InventoryMovement.reason == options.reason)
    if options.ref_type is not None:
        query = query.filter(InventoryMovement.ref_type == options.ref_type)
    if options.ref_id is not None:
        query = query.filter(InventoryMovement.ref_id == options.ref_id)

    query = query.order_by(InventoryMovement.created_at.asc(), InventoryMovement.id.asc())
    if options.limit is not None:
        query = query.limit(options.limit)
    return query.all()


def get_sale_movements(tenant_id: int, sale_id: int) -> list[InventoryMovement]:
    """Every ledger row a sale produced, its compensating rows included."""
    return list_movements(tenant_id, MovementQuery(ref_type=REF_SALE, ref_id=sale_id, limit=None))
