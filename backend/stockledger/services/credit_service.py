"""
Customer credit ledger.

Each CustomerCredit is an independent debt instrument with a daily interest
rate. Interest is pulled, not pushed: accrue() is called at every read and
write entry point and brings the balance up to the requested date. Nothing
runs on a schedule.

Accrual is simple interest on the balance at the time of accrual:

    days  = as_of - last_interest_calculation_date   (whole days)
    delta = current_balance * interest_rate * days   (truncated to cents)

and is a no-op when as_of is not strictly after the last calculation date,
which makes repeated reads on the same day idempotent.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from flask import current_app

from ..errors import CreditNotFoundError, InvalidStateError, OverpaymentError, ValidationError
from ..extensions import db
from ..models import CustomerCredit, Sale
from ..models.customers import CREDIT_ACTIVE, CREDIT_CANCELLED, CREDIT_PAID
from stockledger.decimal_utils import ZERO, money, money_floor, to_decimal, to_str
from stockledger.time_utils import today, utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


def _paid_epsilon() -> Decimal:
    return to_decimal(current_app.config.get("CREDIT_PAID_EPSILON", Decimal("0.01")))


def _load_credit(tenant_id: int, credit_id: int, lock: bool = False) -> CustomerCredit:
    query = db.session.query(CustomerCredit).filter_by(id=credit_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    credit = query.first()
    if not credit:
        raise CreditNotFoundError("Credit not found", details={"credit_id": credit_id})
    return credit


def create_credit(
    *,
    tenant_id: int,
    customer_id: int,
    amount,
    interest_rate,
    due_date: date | None = None,
    sale_id: int | None = None,
    participant_id: int | None = None,
    start_date: date | None = None,
) -> CustomerCredit:
    """Open an ACTIVE credit inside the caller's transaction (flushed, not committed)."""
    amount = money(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive", details={"amount": to_str(amount)})
    interest_rate = to_decimal(interest_rate)
    if interest_rate < 0:
        raise ValidationError("interest_rate cannot be negative")
    if (sale_id is None) == (participant_id is None):
        raise ValidationError("A credit originates from exactly one sale or group purchase participant")

    credit = CustomerCredit(
        tenant_id=tenant_id,
        customer_id=customer_id,
        sale_id=sale_id,
        group_purchase_participant_id=participant_id,
        initial_amount=amount,
        current_balance=amount,
        interest_amount=ZERO,
        amount_paid=ZERO,
        interest_rate=interest_rate,
        status=CREDIT_ACTIVE,
        due_date=due_date,
        last_interest_calculation_date=start_date or today(),
    )
    db.session.add(credit)
    db.session.flush()
    return credit


def _accrue_locked(credit: CustomerCredit, as_of: date) -> Decimal:
    """Bring interest up to as_of. Returns the interest added (0 for a no-op)."""
    if credit.status != CREDIT_ACTIVE:
        return ZERO
    last = credit.last_interest_calculation_date
    if last is not None and as_of <= last:
        return ZERO

    days = (as_of - last).days if last is not None else 0
    rate = to_decimal(credit.interest_rate or 0)
    balance = to_decimal(credit.current_balance)
    delta = ZERO
    if days > 0 and rate > 0 and balance > 0:
        delta = money_floor(balance * rate * days)

    credit.interest_amount = money(to_decimal(credit.interest_amount or 0) + delta)
    credit.current_balance = money(balance + delta)
    credit.last_interest_calculation_date = as_of
    return delta


def accrue(tenant_id: int, credit_id: int, as_of: date | None = None) -> CustomerCredit:
    """Accrue interest up to as_of (default: today) and commit."""
    as_of = as_of or today()

    def _op():
        begin_write_transaction()
        credit = _load_credit(tenant_id, credit_id, lock=True)
        delta = _accrue_locked(credit, as_of)
        db.session.commit()
        if delta > 0:
            logger.info("Credit %s accrued %s interest up to %s", credit.id, delta, as_of)
        return credit

    return run_with_retry(_op)


def accrue_all(tenant_id: int, as_of: date | None = None) -> int:
    """Accrue every ACTIVE credit of a tenant; returns how many were touched."""
    as_of = as_of or today()

    def _op():
        begin_write_transaction()
        credits = lock_for_update(
            db.session.query(CustomerCredit).filter_by(tenant_id=tenant_id, status=CREDIT_ACTIVE)
        ).all()
        touched = 0
        for credit in credits:
            if _accrue_locked(credit, as_of) > 0:
                touched += 1
        db.session.commit()
        return touched

    return run_with_retry(_op)


def _apply_payment_locked(credit: CustomerCredit, amount: Decimal, as_of: date) -> CustomerCredit:
    if credit.status != CREDIT_ACTIVE:
        raise InvalidStateError(
            f"Cannot pay a {credit.status} credit",
            details={"credit_id": credit.id, "status": credit.status},
        )

    _accrue_locked(credit, as_of)

    balance = to_decimal(credit.current_balance)
    if amount > balance:
        raise OverpaymentError(
            "Payment amount exceeds current balance",
            details={
                "credit_id": credit.id,
                "amount": to_str(amount),
                "current_balance": to_str(balance),
            },
        )

    remaining = money(balance - amount)
    credit.amount_paid = money(to_decimal(credit.amount_paid or 0) + amount)

    if remaining <= _paid_epsilon():
        credit.current_balance = ZERO
        credit.status = CREDIT_PAID
        credit.paid_at = utcnow()
        logger.info("Credit %s paid off", credit.id)
    else:
        credit.current_balance = remaining

    _update_origin(credit, amount)
    return credit


def _update_origin(credit: CustomerCredit, amount: Decimal) -> None:
    """Reflect the payment on the participant share or sale the credit came from."""
    participant = credit.participant
    if participant is not None:
        participant.amount_paid = money(to_decimal(participant.amount_paid or 0) + amount)
        if credit.status == CREDIT_PAID or participant.amount_paid >= to_decimal(participant.amount_due):
            participant.status = "PAID"
            participant.paid_at = participant.paid_at or utcnow()
        else:
            participant.status = "PARTIAL"
        from .group_purchase_service import refresh_status
        refresh_status(participant.group_purchase)
        return

    if credit.sale_id is not None:
        sale = db.session.get(Sale, credit.sale_id)
        if sale is not None:
            sale.amount_paid = money(to_decimal(sale.amount_paid or 0) + amount)
            sale.payment_status = "PAID" if credit.status == CREDIT_PAID else "PARTIAL"


def apply_payment(tenant_id: int, credit_id: int, amount, as_of: date | None = None) -> CustomerCredit:
    """
    Apply `amount` to a credit inside the caller's transaction (no commit).

    Interest is accrued to as_of (default today) first; an amount above the
    resulting balance is rejected whole, never clamped.
    """
    amount = money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    credit = _load_credit(tenant_id, credit_id, lock=True)
    return _apply_payment_locked(credit, amount, as_of or today())


def pay_credit(
    tenant_id: int,
    credit_id: int,
    amount,
    payment_method: str = "CASH",
    payment_date: date | None = None,
    notes: str | None = None,
) -> CustomerCredit:
    """Record a customer payment against a credit and apply it, in one transaction."""
    from .payment_service import record_payment

    credit = _load_credit(tenant_id, credit_id)
    record_payment(
        tenant_id,
        customer_id=credit.customer_id,
        amount=amount,
        payment_method=payment_method,
        credit_id=credit_id,
        payment_date=payment_date,
        notes=notes,
    )
    return _load_credit(tenant_id, credit_id)


def cancel_credits_for_sale(tenant_id: int, sale_id: int) -> list[CustomerCredit]:
    """ACTIVE credits of a voided sale become CANCELLED; balances are left as they were. No commit."""
    credits = lock_for_update(
        db.session.query(CustomerCredit).filter_by(tenant_id=tenant_id, sale_id=sale_id, status=CREDIT_ACTIVE)
    ).all()
    now = utcnow()
    for credit in credits:
        credit.status = CREDIT_CANCELLED
        credit.cancelled_at = now
    return credits


def cancel_credit(credit: CustomerCredit) -> bool:
    if credit.status != CREDIT_ACTIVE:
        return False
    credit.status = CREDIT_CANCELLED
    credit.cancelled_at = utcnow()
    return True


def list_credits(
    tenant_id: int,
    customer_id: int | None = None,
    status: str | None = None,
    as_of: date | None = None,
) -> list[CustomerCredit]:
    """Credits of a tenant, optionally filtered; ACTIVE ones are accrued to as_of first."""
    as_of = as_of or today()

    def _filtered(query):
        query = query.filter(CustomerCredit.tenant_id == tenant_id)
        if customer_id is not None:
            query = query.filter(CustomerCredit.customer_id == customer_id)
        if status is not None:
            query = query.filter(CustomerCredit.status == status)
        return query

    def _op():
        begin_write_transaction()
        active = lock_for_update(
            _filtered(db.session.query(CustomerCredit)).filter(CustomerCredit.status == CREDIT_ACTIVE)
        ).order_by(CustomerCredit.id.asc()).all()
        for credit in active:
            _accrue_locked(credit, as_of)
        db.session.commit()
        return _filtered(db.session.query(CustomerCredit)).order_by(
            CustomerCredit.created_at.asc(), CustomerCredit.id.asc()
        ).all()

    return run_with_retry(_op)


def get_customer_credit_summary(tenant_id: int, customer_id: int, as_of: date | None = None) -> dict:
    """Open balance of a customer, with every ACTIVE credit accrued to as_of first."""
    as_of = as_of or today()

    def _op():
        begin_write_transaction()
        credits = lock_for_update(
            db.session.query(CustomerCredit).filter_by(
                tenant_id=tenant_id, customer_id=customer_id, status=CREDIT_ACTIVE
            )
        ).order_by(CustomerCredit.id.asc()).all()
        for credit in credits:
            _accrue_locked(credit, as_of)
        db.session.commit()
        return credits

    credits = run_with_retry(_op)

    total_balance = sum((to_decimal(c.current_balance) for c in credits), ZERO)
    total_interest = sum((to_decimal(c.interest_amount) for c in credits), ZERO)
    overdue = [c for c in credits if c.due_date is not None and c.due_date < as_of]
    return {
        "customer_id": customer_id,
        "as_of": as_of.isoformat(),
        "active_credits": len(credits),
        "total_balance": to_str(money(total_balance)),
        "total_interest": to_str(money(total_interest)),
        "overdue_credits": len(overdue),
        "credits": [c.to_dict() for c in credits],
    }


def list_overdue_credits(tenant_id: int, as_of: date | None = None) -> list[CustomerCredit]:
    """
    ACTIVE credits past their due date, accrued to as_of.

    Display only: being overdue changes neither the rate nor the status.
    """
    as_of = as_of or today()

    def _op():
        begin_write_transaction()
        credits = lock_for_update(
            db.session.query(CustomerCredit).filter(
                CustomerCredit.tenant_id == tenant_id,
                CustomerCredit.status == CREDIT_ACTIVE,
                CustomerCredit.due_date.isnot(None),
                CustomerCredit.due_date < as_of,
            )
        ).order_by(CustomerCredit.due_date.asc()).all()
        for credit in credits:
            _accrue_locked(credit, as_of)
        db.session.commit()
        return credits

    return run_with_retry(_op)
