"""
Group purchases: one product bought jointly by several customers.

The sale behind a group purchase runs through the regular settlement
protocol (lock, re-validate, write movements). Each participant owes a share;
whatever a participant does not pay up front becomes a CustomerCredit linked
to the participant. Cancelling the purchase voids the sale, so stock comes
back through compensating movements, and cancels the open credits.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, CustomerPayment, GroupPurchase, GroupPurchaseParticipant, Sale
from ..models.sales import CHANNEL_GROUP, METHOD_CARD, METHOD_CASH, METHOD_CREDIT, SALE_COMPLETED
from ..validation import LineItem, parse_amount, parse_decimal, parse_int, parse_optional_date, parse_quantity
from stockledger.decimal_utils import ZERO, money, to_decimal, to_str
from stockledger.time_utils import today, utcnow
from . import credit_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

STATUS_PENDING = "PENDING"
STATUS_PARTIAL = "PARTIAL"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"

GROUP_PAYMENT_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_CREDIT)

# Participant shares may differ from the sale total by rounding only
SHARE_TOLERANCE = Decimal("0.01")


def _parse_participants(tenant_id: int, participants) -> list[dict]:
    if not isinstance(participants, list) or not participants:
        raise ValidationError("At least one participant is required")

    parsed = []
    seen = set()
    for index, raw in enumerate(participants):
        if not isinstance(raw, dict):
            raise ValidationError("Each participant must be an object", details={"index": index})
        customer_id = parse_int(raw.get("customer_id"), "customer_id")
        if customer_id in seen:
            raise ValidationError("Customer listed twice", details={"customer_id": customer_id})
        seen.add(customer_id)

        amount_due = parse_amount(raw.get("amount_due"), "amount_due")
        amount_paid = ZERO
        if raw.get("amount_paid") not in (None, ""):
            amount_paid = parse_amount(raw.get("amount_paid"), "amount_paid", allow_zero=True)
        if amount_paid > amount_due:
            raise ValidationError(
                "amount_paid cannot exceed amount_due", details={"customer_id": customer_id}
            )

        rate = ZERO
        if raw.get("interest_rate") not in (None, ""):
            percent = parse_decimal(raw.get("interest_rate"), "interest_rate")
            if percent < 0 or percent > 100:
                raise ValidationError("interest_rate must be a percentage between 0 and 100")
            rate = percent / 100

        customer = db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id, is_active=True).first()
        if not customer:
            raise ValidationError("Customer not found or inactive", details={"customer_id": customer_id})

        parsed.append({
            "customer_id": customer_id,
            "amount_due": amount_due,
            "amount_paid": amount_paid,
            "due_date": parse_optional_date(raw.get("due_date"), "due_date"),
            "interest_rate": rate,
        })
    return parsed


def refresh_status(group_purchase: GroupPurchase) -> GroupPurchase:
    """Derive the purchase status (and its sale's paid amount) from the participants."""
    if group_purchase.status == STATUS_CANCELLED:
        return group_purchase

    participants = group_purchase.participants
    if participants and all(p.status == "PAID" for p in participants):
        group_purchase.status = STATUS_COMPLETED
        group_purchase.completed_at = group_purchase.completed_at or utcnow()
    elif any(p.status in ("PAID", "PARTIAL") for p in participants):
        group_purchase.status = STATUS_PARTIAL
    else:
        group_purchase.status = STATUS_PENDING

    sale = group_purchase.sale
    paid = money(sum((to_decimal(p.amount_paid) for p in participants), ZERO))
    sale.amount_paid = paid
    if group_purchase.status == STATUS_COMPLETED:
        sale.payment_status = "PAID"
    else:
        sale.payment_status = "PARTIAL" if paid > 0 else "CREDIT"
    return group_purchase


def create_group_purchase(
    tenant_id: int,
    product_id,
    quantity,
    participants,
    payment_method: str = METHOD_CASH,
    notes: str | None = None,
) -> GroupPurchase:
    """
    participants: [{"customer_id", "amount_due", "amount_paid"?, "due_date"?,
    "interest_rate"? (daily percent)}]. Shares must add up to the sale total.
    """
    from .sales_service import build_sale, ensure_available, lock_stock_rows, require_products, write_sale_movements

    if payment_method not in GROUP_PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method for group purchases: {payment_method}")

    line = LineItem(product_id=parse_int(product_id, "product_id"), quantity=parse_quantity(quantity))
    require_products(tenant_id, [line])
    shares = _parse_participants(tenant_id, participants)

    def _op():
        begin_write_transaction()
        products = lock_stock_rows(tenant_id, [line.product_id])
        ensure_available(tenant_id, [line], products)

        sale = build_sale(
            tenant_id=tenant_id,
            lines=[line],
            products=products,
            payment_method=payment_method,
            channel=CHANNEL_GROUP,
            status=SALE_COMPLETED,
            notes=notes or f"Group purchase - {len(shares)} participants",
        )

        share_sum = sum((s["amount_due"] for s in shares), ZERO)
        if abs(share_sum - to_decimal(sale.total_amount)) > SHARE_TOLERANCE:
            raise ValidationError(
                "Participant amounts must add up to the total amount",
                details={"participants_total": to_str(share_sum), "total_amount": to_str(sale.total_amount)},
            )

        write_sale_movements(sale)

        group_purchase = GroupPurchase(
            tenant_id=tenant_id,
            sale_id=sale.id,
            product_id=line.product_id,
            quantity=line.quantity,
            total_amount=sale.total_amount,
            status=STATUS_PENDING,
        )
        db.session.add(group_purchase)
        db.session.flush()

        for share in shares:
            paid = share["amount_paid"]
            participant = GroupPurchaseParticipant(
                group_purchase_id=group_purchase.id,
                customer_id=share["customer_id"],
                amount_due=share["amount_due"],
                amount_paid=paid,
                status="PAID" if paid >= share["amount_due"] else ("PARTIAL" if paid > 0 else "PENDING"),
                due_date=share["due_date"],
                interest_rate=share["interest_rate"],
                paid_at=utcnow() if paid >= share["amount_due"] else None,
            )
            group_purchase.participants.append(participant)
            db.session.flush()

            if paid > 0:
                db.session.add(CustomerPayment(
                    tenant_id=tenant_id,
                    customer_id=share["customer_id"],
                    group_purchase_participant_id=participant.id,
                    amount=paid,
                    payment_method=METHOD_CARD if payment_method == METHOD_CARD else METHOD_CASH,
                    payment_date=today(),
                    notes="Paid at group purchase checkout",
                ))

            remaining = share["amount_due"] - paid
            if remaining > 0:
                credit_service.create_credit(
                    tenant_id=tenant_id,
                    customer_id=share["customer_id"],
                    amount=remaining,
                    interest_rate=share["interest_rate"],
                    due_date=share["due_date"],
                    participant_id=participant.id,
                )

        refresh_status(group_purchase)
        db.session.commit()
        return group_purchase

    group_purchase = run_with_retry(_op)
    logger.info(
        "Group purchase %s created (sale %s, %s participants)",
        group_purchase.id, group_purchase.sale_id, len(shares),
    )
    return group_purchase


def cancel_for_voided_sale(sale: Sale) -> list[GroupPurchase]:
    """Mark the group purchases of a sale being voided as CANCELLED and cancel their open credits. No commit."""
    group_purchases = lock_for_update(
        db.session.query(GroupPurchase).filter_by(tenant_id=sale.tenant_id, sale_id=sale.id)
    ).all()
    now = utcnow()
    for group_purchase in group_purchases:
        group_purchase.status = STATUS_CANCELLED
        group_purchase.cancelled_at = now
        for participant in group_purchase.participants:
            if participant.credit is not None:
                credit_service.cancel_credit(participant.credit)
    return group_purchases


def _load(tenant_id: int, group_purchase_id: int, lock: bool = False) -> GroupPurchase:
    query = db.session.query(GroupPurchase).filter_by(id=group_purchase_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    group_purchase = query.first()
    if not group_purchase:
        raise NotFoundError("Group purchase not found", details={"group_purchase_id": group_purchase_id})
    return group_purchase


def cancel_group_purchase(tenant_id: int, group_purchase_id: int, reason: str) -> GroupPurchase:
    from .sales_service import void_locked

    if not reason or not str(reason).strip():
        raise ValidationError("reason required")

    def _op():
        begin_write_transaction()
        group_purchase = _load(tenant_id, group_purchase_id, lock=True)
        if group_purchase.status == STATUS_CANCELLED:
            raise InvalidStateError(
                "Group purchase is already cancelled", details={"group_purchase_id": group_purchase.id}
            )
        sale = lock_for_update(db.session.query(Sale).filter_by(id=group_purchase.sale_id)).first()
        void_locked(sale, str(reason).strip())
        db.session.commit()
        return group_purchase

    group_purchase = run_with_retry(_op)
    logger.info("Group purchase %s cancelled", group_purchase.id)
    return group_purchase


def get_group_purchase(tenant_id: int, group_purchase_id: int) -> GroupPurchase:
    return _load(tenant_id, group_purchase_id)


def list_group_purchases(tenant_id: int, status: str | None = None) -> list[GroupPurchase]:
    query = db.session.query(GroupPurchase).filter_by(tenant_id=tenant_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(GroupPurchase.created_at.desc(), GroupPurchase.id.desc()).all()
