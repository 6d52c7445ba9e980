from __future__ import annotations

import logging
from datetime import date

from ..errors import InvalidStateError, NotFoundError, OverpaymentError, ValidationError
from ..extensions import db
from ..models import Customer, CustomerCredit, CustomerPayment, GroupPurchaseParticipant
from ..models.customers import CREDIT_ACTIVE
from ..validation import parse_amount
from stockledger.decimal_utils import money, to_decimal, to_str
from stockledger.time_utils import today, utcnow
from . import credit_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .group_purchase_service import STATUS_CANCELLED

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("CASH", "CARD", "TRANSFER")


def _apply_to_participant(participant: GroupPurchaseParticipant, amount) -> None:
    """Pay a participant share that has no open credit behind it."""
    from .group_purchase_service import refresh_status

    outstanding = money(to_decimal(participant.amount_due) - to_decimal(participant.amount_paid))
    if amount > outstanding:
        raise OverpaymentError(
            "Payment amount exceeds the participant's outstanding share",
            details={"participant_id": participant.id, "amount": to_str(amount), "outstanding": to_str(outstanding)},
        )
    participant.amount_paid = money(to_decimal(participant.amount_paid) + amount)
    if participant.amount_paid >= to_decimal(participant.amount_due):
        participant.status = "PAID"
        participant.paid_at = utcnow()
    else:
        participant.status = "PARTIAL"
    refresh_status(participant.group_purchase)


def record_payment(
    tenant_id: int,
    *,
    customer_id: int,
    amount,
    payment_method: str = "CASH",
    credit_id: int | None = None,
    participant_id: int | None = None,
    payment_date: date | None = None,
    notes: str | None = None,
) -> CustomerPayment:
    """
    Record money received from a customer.

    The payment row is immutable. When it targets a credit (directly, or via
    a group purchase participant with an ACTIVE credit) it is applied to that
    credit in the same transaction: interest first, then the balance.
    Over-payment is rejected whole.
    """
    amount = parse_amount(amount)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {payment_method}")
    payment_date = payment_date or today()

    customer = db.session.query(Customer).filter_by(id=customer_id, tenant_id=tenant_id).first()
    if not customer:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})

    def _op():
        begin_write_transaction()
        target_credit_id = credit_id
        participant = None

        if participant_id is not None:
            participant = lock_for_update(
                db.session.query(GroupPurchaseParticipant).filter_by(id=participant_id, customer_id=customer_id)
            ).first()
            if not participant or participant.group_purchase.tenant_id != tenant_id:
                raise NotFoundError("Participant not found", details={"participant_id": participant_id})
            if participant.group_purchase.status == STATUS_CANCELLED:
                raise InvalidStateError(
                    "Group purchase is cancelled",
                    details={"participant_id": participant_id, "group_purchase_id": participant.group_purchase_id},
                )
            if target_credit_id is None and participant.credit is not None and participant.credit.status == CREDIT_ACTIVE:
                target_credit_id = participant.credit.id

        if target_credit_id is not None:
            credit = db.session.query(CustomerCredit).filter_by(id=target_credit_id, tenant_id=tenant_id).first()
            if credit is not None and credit.customer_id != customer_id:
                raise ValidationError(
                    "Credit belongs to another customer",
                    details={"credit_id": target_credit_id, "customer_id": customer_id},
                )
            credit = credit_service.apply_payment(tenant_id, target_credit_id, amount)
            linked_participant_id = credit.group_purchase_participant_id
        elif participant is not None:
            _apply_to_participant(participant, amount)
            linked_participant_id = participant.id
        else:
            linked_participant_id = None

        payment = CustomerPayment(
            tenant_id=tenant_id,
            customer_id=customer_id,
            credit_id=target_credit_id,
            group_purchase_participant_id=linked_participant_id,
            amount=amount,
            payment_method=payment_method,
            payment_date=payment_date,
            notes=notes,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    logger.info(
        "Payment %s of %s recorded for customer %s (credit=%s)",
        payment.id, payment.amount, customer_id, payment.credit_id,
    )
    return payment


def list_payments(tenant_id: int, customer_id: int | None = None, credit_id: int | None = None) -> list[CustomerPayment]:
    query = db.session.query(CustomerPayment).filter_by(tenant_id=tenant_id)
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    if credit_id is not None:
        query = query.filter_by(credit_id=credit_id)
    return query.order_by(CustomerPayment.created_at.asc(), CustomerPayment.id.asc()).all()
