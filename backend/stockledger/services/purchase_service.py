"""
Stock receipts from suppliers.

Receiving needs no availability check: each line is resolved through the
pool and appended as IN/PURCHASE with its cost per base unit, in the same
transaction as the purchase order and its payable terms.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal

from flask import current_app

from ..errors import InvalidStateError, NotFoundError, OverpaymentError, ValidationError
from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem, Supplier
from ..models.inventory import DIRECTION_IN, PRODUCT_SIMPLE, REASON_PURCHASE
from ..validation import parse_amount, parse_line_items
from stockledger.decimal_utils import ZERO, money, to_decimal, to_str
from stockledger.time_utils import today, utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .ledger_service import REF_PURCHASE_ORDER, append_movement
from .pool_service import effective_units_per_sale, resolve_movement

logger = logging.getLogger(__name__)

PO_PAID = "PAID"
PO_PENDING = "PENDING"
PO_PARTIAL = "PARTIAL"


def _payable_status(total: Decimal, paid: Decimal) -> str:
    if paid >= total:
        return PO_PAID
    return PO_PARTIAL if paid > 0 else PO_PENDING


def receive_purchase(
    tenant_id: int,
    items,
    supplier_id: int | None = None,
    *,
    invoice_number: str | None = None,
    purchase_date: date | None = None,
    credit_days: int | None = None,
    amount_paid=None,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Receive stock.

    items: [{"product_id", "quantity", "unit_cost"?}] with quantity in the
    product's sale units and unit_cost per sale unit. Only SIMPLE products
    can be received; a presentation's units land in its pool.

    credit_days > 0 (or the supplier's default) makes the order a payable:
    due_date = purchase_date + credit_days, status PENDING/PARTIAL until
    pay_purchase_order() settles it. Otherwise it is PAID on receipt.
    """
    from .sales_service import load_products

    lines = parse_line_items(items, with_cost=True)
    products = load_products(tenant_id, [line.product_id for line in lines])
    missing = sorted({line.product_id for line in lines} - set(products))
    if missing:
        raise ValidationError("One or more products not found or inactive", details={"product_ids": missing})
    combos = sorted(p.id for p in products.values() if p.product_type != PRODUCT_SIMPLE)
    if combos:
        raise ValidationError("Only SIMPLE products can be received", details={"product_ids": combos})

    supplier = None
    if supplier_id is not None:
        supplier = db.session.query(Supplier).filter_by(id=supplier_id, tenant_id=tenant_id).first()
        if not supplier:
            raise ValidationError("Supplier not found", details={"supplier_id": supplier_id})

    if credit_days is None:
        credit_days = supplier.default_credit_days if supplier and supplier.default_credit_days else 0
    if not isinstance(credit_days, int) or isinstance(credit_days, bool) or credit_days < 0:
        raise ValidationError("credit_days must be a non-negative integer")

    purchase_date = purchase_date or today()

    def _op():
        begin_write_transaction()
        order = PurchaseOrder(
            tenant_id=tenant_id,
            supplier_id=supplier.id if supplier else None,
            invoice_number=invoice_number,
            purchase_date=purchase_date,
            credit_days=credit_days,
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        total = ZERO
        for line in lines:
            product = products[line.product_id]
            resolved = resolve_movement(product, line.quantity)
            base_cost = None
            if line.unit_cost is not None:
                base_cost = to_decimal(line.unit_cost) / effective_units_per_sale(product)

            movement = append_movement(
                tenant_id=tenant_id,
                product_id=resolved.product_id,
                direction=DIRECTION_IN,
                reason=REASON_PURCHASE,
                quantity=resolved.quantity,
                unit_cost=base_cost,
                ref_type=REF_PURCHASE_ORDER,
                ref_id=order.id,
            )

            line_total = money(line.unit_cost * line.quantity) if line.unit_cost is not None else ZERO
            total += line_total
            order.items.append(PurchaseOrderItem(
                product_id=product.id,
                quantity=line.quantity,
                unit_cost=money(line.unit_cost) if line.unit_cost is not None else None,
                line_total=line_total,
                movement_id=movement.id,
            ))

        order.total_amount = money(total)
        if credit_days > 0:
            paid = parse_amount(amount_paid, "amount_paid", allow_zero=True) if amount_paid not in (None, "") else ZERO
            if paid > order.total_amount:
                raise OverpaymentError(
                    "amount_paid exceeds the purchase total",
                    details={"amount_paid": to_str(paid), "total_amount": to_str(order.total_amount)},
                )
            order.due_date = purchase_date + timedelta(days=credit_days)
            order.amount_paid = paid
            order.status = _payable_status(order.total_amount, paid)
        else:
            order.amount_paid = order.total_amount
            order.status = PO_PAID
        if order.status == PO_PAID:
            order.paid_at = utcnow()

        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Purchase order %s received: %s lines, total=%s", order.id, len(lines), order.total_amount)
    return order


def pay_purchase_order(tenant_id: int, purchase_order_id: int, amount) -> PurchaseOrder:
    """Record a payment to the supplier against an open payable."""
    amount = parse_amount(amount)
    epsilon = to_decimal(current_app.config.get("CREDIT_PAID_EPSILON", Decimal("0.01")))

    def _op():
        begin_write_transaction()
        order = lock_for_update(
            db.session.query(PurchaseOrder).filter_by(id=purchase_order_id, tenant_id=tenant_id)
        ).first()
        if not order:
            raise NotFoundError("Purchase order not found", details={"purchase_order_id": purchase_order_id})
        if order.status == PO_PAID:
            raise InvalidStateError("Purchase order is already paid", details={"purchase_order_id": order.id})

        outstanding = money(to_decimal(order.total_amount) - to_decimal(order.amount_paid))
        if amount > outstanding:
            raise OverpaymentError(
                "Payment amount exceeds the outstanding balance",
                details={"amount": to_str(amount), "outstanding": to_str(outstanding)},
            )

        order.amount_paid = money(to_decimal(order.amount_paid) + amount)
        if outstanding - amount <= epsilon:
            order.amount_paid = order.total_amount
            order.status = PO_PAID
            order.paid_at = utcnow()
        else:
            order.status = PO_PARTIAL
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Purchase order %s paid %s (status %s)", order.id, amount, order.status)
    return order


def list_payables(tenant_id: int, as_of: date | None = None) -> list[dict]:
    """Open supplier payables, oldest due first, with an is_overdue flag."""
    as_of = as_of or today()
    orders = (
        db.session.query(PurchaseOrder)
        .filter(PurchaseOrder.tenant_id == tenant_id, PurchaseOrder.status.in_([PO_PENDING, PO_PARTIAL]))
        .order_by(PurchaseOrder.due_date.asc(), PurchaseOrder.id.asc())
        .all()
    )
    result = []
    for order in orders:
        data = order.to_dict()
        data["outstanding"] = to_str(money(to_decimal(order.total_amount) - to_decimal(order.amount_paid)))
        data["is_overdue"] = order.due_date is not None and order.due_date < as_of
        result.append(data)
    return result


def get_purchase_order(tenant_id: int, purchase_order_id: int) -> PurchaseOrder:
    order = db.session.query(PurchaseOrder).filter_by(id=purchase_order_id, tenant_id=tenant_id).first()
    if not order:
        raise NotFoundError("Purchase order not found", details={"purchase_order_id": purchase_order_id})
    return order
