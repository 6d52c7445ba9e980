"""
Settlement engine: checkout, deferred confirmation, discard and void.

LIFECYCLE:
    PENDING   -> COMPLETED  (staff confirms cash / transfer)
    PENDING   -> DISCARDED  (order never confirmed; no ledger effect)
    COMPLETED -> VOIDED     (compensating movements)

Ledger movements exist only for COMPLETED sales: written once when the sale
becomes COMPLETED and compensated once when it is VOIDED. A PENDING order
reserves nothing.

Every write runs the same protocol inside one transaction:
    1. take the write lock (row locks on the involved products; BEGIN
       IMMEDIATE on SQLite)
    2. re-validate stock for every line against the locked state
    3. write sale rows and movements
    4. commit, or roll back everything
Shape and product-existence checks happen before the transaction opens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from flask import current_app

from ..errors import (
    AlreadyVoidedError,
    InsufficientStockError,
    InvalidStateError,
    SaleNotFoundError,
    TaxConfigurationError,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, InventoryMovement, Product, Sale, SaleItem
from ..models.inventory import DIRECTION_IN, DIRECTION_OUT, REASON_SALE, REASON_VOID
from ..models.sales import (
    CHANNEL_GROUP,
    CHANNEL_POS,
    CHANNEL_PORTAL,
    CHANNELS,
    METHOD_CASH,
    METHOD_CREDIT,
    METHOD_TRANSFER,
    PAYMENT_METHODS,
    SALE_COMPLETED,
    SALE_DISCARDED,
    SALE_PENDING,
    SALE_VOIDED,
)
from ..validation import LineItem, parse_decimal, parse_int, parse_line_items, parse_optional_date
from stockledger.decimal_utils import ZERO, money, to_decimal, to_str
from stockledger.time_utils import today, utcnow
from . import combo_service, credit_service
from .communications_service import dismiss_sale_notifications, notify_pending_sale
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .ledger_service import REF_SALE, append_movement, get_average_cost, get_sale_movements
from .pool_service import floor_units, resolve_movement, validate_quantity
from .settings_service import KEY_TAX_ENABLED, KEY_TAX_RATE, get_setting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxConfig:
    enabled: bool
    rate: Decimal  # percent, 0-100


@dataclass(frozen=True)
class CreditTerms:
    due_date: date
    interest_rate: Decimal  # fractional daily rate


def is_deferred(payment_method: str, channel: str) -> bool:
    """Methods whose money is confirmed by staff after the order is placed."""
    if payment_method == METHOD_TRANSFER:
        return True
    return payment_method == METHOD_CASH and channel == CHANNEL_PORTAL


def get_tax_config(tenant_id: int) -> TaxConfig:
    """
    Tax settings for a checkout.

    Tax is on unless tax_enabled says otherwise; when on, tax_rate must be a
    percentage between 0 and 100. A missing rate is an error, never 0.
    """
    enabled = get_setting(tenant_id, KEY_TAX_ENABLED, True)
    if isinstance(enabled, str):
        enabled = enabled.strip().lower() in {"true", "1", "yes", "on"}
    if not enabled:
        return TaxConfig(enabled=False, rate=ZERO)

    raw = get_setting(tenant_id, KEY_TAX_RATE)
    rate = None
    if raw is not None:
        try:
            rate = to_decimal(raw)
        except ValueError:
            rate = None
    if rate is None or not rate.is_finite() or rate < 0 or rate > 100:
        raise TaxConfigurationError(
            "Tax rate is not configured",
            details={"tax_rate": None if raw is None else str(raw)},
        )
    # Same scale as Sale.tax_rate, so the stored rate reproduces the tax
    return TaxConfig(enabled=True, rate=money(rate))


def load_products(tenant_id: int, product_ids, *, active_only: bool = True, lock: bool = False) -> dict[int, Product]:
    ids = sorted(set(product_ids))
    query = db.session.query(Product).filter(Product.tenant_id == tenant_id, Product.id.in_(ids))
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    query = query.order_by(Product.id.asc())
    if lock:
        query = lock_for_update(query)
    return {p.id: p for p in query.all()}


def require_products(tenant_id: int, lines: list[LineItem], active_only: bool = True) -> dict[int, Product]:
    """Every line must name an (active) product of this tenant; combos sell in whole units."""
    products = load_products(tenant_id, [line.product_id for line in lines], active_only=active_only)
    missing = sorted({line.product_id for line in lines} - set(products))
    if missing:
        raise ValidationError("One or more products not found or inactive", details={"product_ids": missing})
    for line in lines:
        product = products[line.product_id]
        if product.is_combo and line.quantity != line.quantity.to_integral_value():
            raise ValidationError(
                "Combos are sold in whole units",
                details={"product_id": product.id, "quantity": to_str(line.quantity)},
            )
    return products


def lock_stock_rows(tenant_id: int, product_ids) -> dict[int, Product]:
    """
    Lock the sold products plus every row whose stock they draw on (pool
    products, combo components and their pools), in id order.
    """
    locked = load_products(tenant_id, product_ids, active_only=False, lock=True)
    extra = set()
    for product in locked.values():
        if product.base_product_id:
            extra.add(product.base_product_id)
        for link in product.components:
            extra.add(link.component_product_id)
            if link.component.base_product_id:
                extra.add(link.component.base_product_id)
    extra -= set(locked)
    if extra:
        load_products(tenant_id, extra, active_only=False, lock=True)
    return locked


def ensure_available(tenant_id: int, lines: list[LineItem], products: dict[int, Product]) -> None:
    """
    Re-validate every line against current stock. Call only under the lock.

    Lines drawing on the same pool are checked cumulatively. Raises
    InsufficientStockError listing every short line.
    """
    reserved: dict[int, Decimal] = {}
    shortfalls = []

    for line in lines:
        product = products[line.product_id]
        if product.is_combo:
            result = combo_service.validate_combo_sale(tenant_id, product.id, line.quantity, reserved=reserved)
            if not result["can_sell"]:
                shortfalls.append({
                    "product_id": product.id,
                    "name": product.name,
                    "product_type": product.product_type,
                    "requested": to_str(line.quantity),
                    "missing_components": result["missing_components"],
                })
            for pool_id, per_combo in combo_service.base_units_per_combo(product).items():
                reserved[pool_id] = reserved.get(pool_id, ZERO) + per_combo * line.quantity
            continue

        check = validate_quantity(
            tenant_id, product, line.quantity, reserved_base_units=reserved.get(product.pool_product_id, ZERO)
        )
        if not check.can_sell:
            shortfalls.append({
                "product_id": product.id,
                "name": product.name,
                "product_type": product.product_type,
                "requested": to_str(line.quantity),
                "available": floor_units(check.available_base_units / (check.required_base_units / line.quantity)),
                "required_base_units": to_str(check.required_base_units),
                "available_base_units": to_str(check.available_base_units),
                "missing_base_units": to_str(check.missing_base_units),
            })
        reserved[check.pool_product_id] = reserved.get(check.pool_product_id, ZERO) + check.required_base_units

    if shortfalls:
        raise InsufficientStockError("Insufficient stock for one or more items", details={"items": shortfalls})


def write_sale_movements(sale: Sale) -> list[InventoryMovement]:
    """OUT/SALE rows for every line of a sale that is becoming COMPLETED."""
    movements = []
    for item in sale.items:
        if item.product.is_combo:
            movements.extend(combo_service.write_sale_movements(sale.tenant_id, item.product_id, item.quantity, sale.id))
            continue
        resolved = resolve_movement(item.product, item.quantity)
        movements.append(append_movement(
            tenant_id=sale.tenant_id,
            product_id=resolved.product_id,
            direction=DIRECTION_OUT,
            reason=REASON_SALE,
            quantity=resolved.quantity,
            cost_at_movement=get_average_cost(sale.tenant_id, resolved.product_id),
            ref_type=REF_SALE,
            ref_id=sale.id,
        ))
    return movements


def write_void_movements(sale: Sale) -> list[InventoryMovement]:
    """
    IN/VOID mirror rows for a sale that is being voided.

    One compensating row per OUT/SALE row the sale recorded, same product and
    quantity. Combo recipes or pool factors changed after the sale do not
    affect what comes back.
    """
    movements = []
    for original in get_sale_movements(sale.tenant_id, sale.id):
        if original.direction != DIRECTION_OUT or original.reason != REASON_SALE:
            continue
        movements.append(append_movement(
            tenant_id=sale.tenant_id,
            product_id=original.product_id,
            direction=DIRECTION_IN,
            reason=REASON_VOID,
            quantity=original.quantity,
            cost_at_movement=get_average_cost(sale.tenant_id, original.product_id),
            ref_type=REF_SALE,
            ref_id=sale.id,
            note=f"Void of movement {original.id}",
        ))
    return movements


def _lines_of(sale: Sale) -> list[LineItem]:
    return [LineItem(product_id=item.product_id, quantity=to_decimal(item.quantity)) for item in sale.items]


def build_sale(
    *,
    tenant_id: int,
    lines: list[LineItem],
    products: dict[int, Product],
    payment_method: str,
    channel: str,
    status: str,
    customer_id: int | None = None,
    transfer_reference: str | None = None,
    notes: str | None = None,
) -> Sale:
    """Price the lines, apply tax and add the sale + items to the session (flushed)."""
    subtotal = ZERO
    taxable_subtotal = ZERO
    items = []
    for line in lines:
        product = products[line.product_id]
        unit_price = line.unit_price if line.unit_price is not None else money(product.sale_price)
        total_price = money(unit_price * line.quantity)
        subtotal += total_price
        if product.tax_applies:
            taxable_subtotal += total_price
        items.append(SaleItem(
            tenant_id=tenant_id,
            product_id=product.id,
            product_type=product.product_type,
            quantity=line.quantity,
            unit_price=unit_price,
            total_price=total_price,
        ))

    tax = get_tax_config(tenant_id)
    tax_amount = money(taxable_subtotal * tax.rate / 100) if tax.enabled else ZERO
    total = money(subtotal + tax_amount)

    completed = status == SALE_COMPLETED
    paid_now = completed and payment_method != METHOD_CREDIT
    if payment_method == METHOD_CREDIT:
        payment_status = "CREDIT"
    else:
        payment_status = "PAID" if paid_now else "PENDING"

    sale = Sale(
        tenant_id=tenant_id,
        customer_id=customer_id,
        channel=channel,
        status=status,
        payment_method=payment_method,
        subtotal=money(subtotal),
        taxable_subtotal=money(taxable_subtotal),
        tax_rate=tax.rate if tax.enabled else None,
        tax_amount=tax_amount,
        total_amount=total,
        payment_status=payment_status,
        amount_paid=total if paid_now else ZERO,
        transfer_reference=transfer_reference if payment_method == METHOD_TRANSFER else None,
        notes=notes,
        completed_at=utcnow() if completed else None,
    )
    sale.items = items
    db.session.add(sale)
    db.session.flush()
    return sale


def _credit_terms(tenant_id: int, customer_id, due_date, interest_rate) -> tuple[int, CreditTerms]:
    if customer_id is None:
        raise ValidationError("customer_id is required for credit sales")
    customer = db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id, is_active=True).first()
    if not customer:
        raise ValidationError("Customer not found or inactive", details={"customer_id": customer_id})

    due = parse_optional_date(due_date, "credit_due_date")
    if due is None:
        raise ValidationError("credit_due_date is required for credit sales")
    if due < today():
        raise ValidationError("Credit due date cannot be in the past", details={"credit_due_date": due.isoformat()})

    if interest_rate in (None, ""):
        rate = to_decimal(current_app.config["DEFAULT_CREDIT_INTEREST_RATE"])
    else:
        percent = parse_decimal(interest_rate, "credit_interest_rate")
        if percent < 0 or percent > 100:
            raise ValidationError("credit_interest_rate must be a percentage between 0 and 100")
        rate = percent / 100
    return customer.id, CreditTerms(due_date=due, interest_rate=rate)


def checkout(
    tenant_id: int,
    items,
    payment_method: str,
    *,
    channel: str = CHANNEL_POS,
    customer_id: int | None = None,
    credit_due_date=None,
    credit_interest_rate=None,
    transfer_reference: str | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Sell a cart.

    CARD, CREDIT and POS cash complete immediately and write movements.
    TRANSFER (any channel) and CASH on the customer portal create a PENDING
    sale with no movements and a staff notification; see
    confirm_deferred_sale().

    items: [{"product_id": int, "quantity": number, "unit_price"?: number}]
    credit_interest_rate is a daily percentage (0.1 = 0.1% per day).
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {payment_method}")
    if channel not in CHANNELS or channel == CHANNEL_GROUP:
        raise ValidationError(f"Unknown sales channel: {channel}")

    lines = parse_line_items(items, with_price=True)
    require_products(tenant_id, lines)
    if customer_id is not None:
        customer_id = parse_int(customer_id, "customer_id")

    terms = None
    if payment_method == METHOD_CREDIT:
        customer_id, terms = _credit_terms(tenant_id, customer_id, credit_due_date, credit_interest_rate)
    elif customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id).first()
        if not customer:
            raise ValidationError("Customer not found", details={"customer_id": customer_id})

    deferred = is_deferred(payment_method, channel)
    status = SALE_PENDING if deferred else SALE_COMPLETED

    def _op():
        begin_write_transaction()
        products = lock_stock_rows(tenant_id, [line.product_id for line in lines])
        inactive = sorted(p.id for p in products.values() if not p.is_active)
        if inactive or len(products) != len({line.product_id for line in lines}):
            raise ValidationError("One or more products not found or inactive", details={"product_ids": inactive})

        ensure_available(tenant_id, lines, products)

        sale = build_sale(
            tenant_id=tenant_id,
            lines=lines,
            products=products,
            payment_method=payment_method,
            channel=channel,
            status=status,
            customer_id=customer_id,
            transfer_reference=transfer_reference,
            notes=notes,
        )

        if status == SALE_COMPLETED:
            write_sale_movements(sale)
        else:
            notify_pending_sale(sale)

        if terms is not None:
            credit_service.create_credit(
                tenant_id=tenant_id,
                customer_id=customer_id,
                amount=sale.total_amount,
                interest_rate=terms.interest_rate,
                due_date=terms.due_date,
                sale_id=sale.id,
            )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info(
        "Sale %s %s via %s/%s total=%s", sale.id, sale.status, sale.channel, sale.payment_method, sale.total_amount
    )
    return sale


def _load_sale(tenant_id: int, sale_id: int, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if not sale:
        raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def confirm_deferred_sale(tenant_id: int, sale_id: int) -> Sale:
    """
    PENDING -> COMPLETED once staff has the money.

    Stock was never reserved for the order, so it is re-validated under the
    lock exactly as at checkout and the movements are written now.
    """
    def _op():
        begin_write_transaction()
        sale = _load_sale(tenant_id, sale_id, lock=True)
        if sale.status != SALE_PENDING:
            raise InvalidStateError(
                f"Only PENDING sales can be confirmed (sale is {sale.status})",
                details={"sale_id": sale.id, "status": sale.status},
            )

        lines = _lines_of(sale)
        products = lock_stock_rows(tenant_id, [line.product_id for line in lines])
        ensure_available(tenant_id, lines, products)

        write_sale_movements(sale)
        sale.status = SALE_COMPLETED
        sale.completed_at = utcnow()
        sale.payment_status = "PAID"
        sale.amount_paid = sale.total_amount
        dismiss_sale_notifications(tenant_id, sale.id)

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Sale %s confirmed", sale.id)
    return sale


def discard_pending_sale(tenant_id: int, sale_id: int, reason: str | None = None) -> Sale:
    """Reject a PENDING order. It never touched the ledger, so nothing is compensated."""
    def _op():
        begin_write_transaction()
        sale = _load_sale(tenant_id, sale_id, lock=True)
        if sale.status != SALE_PENDING:
            raise InvalidStateError(
                f"Only PENDING sales can be discarded (sale is {sale.status})",
                details={"sale_id": sale.id, "status": sale.status},
            )
        sale.status = SALE_DISCARDED
        sale.discarded_at = utcnow()
        sale.void_reason = reason
        sale.payment_status = "CANCELLED"
        dismiss_sale_notifications(tenant_id, sale.id)
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Sale %s discarded", sale.id)
    return sale


def void_locked(sale: Sale, reason: str) -> Sale:
    """Void a locked COMPLETED sale inside the caller's transaction."""
    if sale.status == SALE_VOIDED:
        raise AlreadyVoidedError("Sale already voided", details={"sale_id": sale.id})
    if sale.status != SALE_COMPLETED:
        raise InvalidStateError(
            f"Only COMPLETED sales can be voided (sale is {sale.status})",
            details={"sale_id": sale.id, "status": sale.status},
        )

    load_products(
        sale.tenant_id,
        [m.product_id for m in get_sale_movements(sale.tenant_id, sale.id)],
        active_only=False,
        lock=True,
    )
    write_void_movements(sale)
    credit_service.cancel_credits_for_sale(sale.tenant_id, sale.id)

    from .group_purchase_service import cancel_for_voided_sale
    cancel_for_voided_sale(sale)

    sale.status = SALE_VOIDED
    sale.voided_at = utcnow()
    sale.void_reason = reason
    sale.payment_status = "VOIDED"
    return sale


def void_sale(tenant_id: int, sale_id: int, reason: str) -> Sale:
    """
    COMPLETED -> VOIDED: compensating IN/VOID movements for every line and
    cancellation of the credits the sale opened. History is never edited.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason required")

    def _op():
        begin_write_transaction()
        sale = _load_sale(tenant_id, sale_id, lock=True)
        void_locked(sale, str(reason).strip())
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    logger.info("Sale %s voided: %s", sale.id, sale.void_reason)
    return sale


def get_sale(tenant_id: int, sale_id: int) -> Sale:
    return _load_sale(tenant_id, sale_id)


def list_sales(
    tenant_id: int,
    status: str | None = None,
    customer_id: int | None = None,
    limit: int = 50,
) -> list[Sale]:
    query = db.session.query(Sale).filter(Sale.tenant_id == tenant_id)
    if status:
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
