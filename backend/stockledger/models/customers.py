from __future__ import annotations

from ..extensions import db
from stockledger.decimal_utils import to_str
from stockledger.time_utils import utcnow, to_utc_z, to_iso_date


CREDIT_ACTIVE = "ACTIVE"
CREDIT_PAID = "PAID"
CREDIT_CANCELLED = "CANCELLED"


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerCredit(db.Model):
    """
    Interest-bearing balance owed by a customer.

    Created when a sale (payment method CREDIT) or a group-purchase
    participant share is settled on credit terms.

    BALANCE:
    - current_balance = initial_amount + interest_amount - amount_paid
    - interest_rate is a fractional DAILY rate (0.001 = 0.1% per day)
    - interest accrues lazily (services/credit_service.accrue), never from a
      scheduler; last_interest_calculation_date makes accrual idempotent per day
    - due_date is informational only; it never gates interest

    LIFECYCLE: ACTIVE -> PAID (balance within epsilon of zero)
               ACTIVE -> CANCELLED (originating sale voided)
    """
    __tablename__ = "customer_credits"
    __table_args__ = (
        db.Index("ix_credits_tenant_customer_status", "tenant_id", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Originating transaction: exactly one of these is set
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    group_purchase_participant_id = db.Column(
        db.Integer, db.ForeignKey("group_purchase_participants.id"), nullable=True, index=True
    )

    initial_amount = db.Column(db.Numeric(12, 2), nullable=False)
    current_balance = db.Column(db.Numeric(12, 2), nullable=False)
    interest_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    interest_rate = db.Column(db.Numeric(8, 6), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=CREDIT_ACTIVE, index=True)
    due_date = db.Column(db.Date, nullable=True, index=True)
    last_interest_calculation_date = db.Column(db.Date, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("credits", lazy=True))
    sale = db.relationship("Sale", backref=db.backref("credits", lazy=True))
    participant = db.relationship(
        "GroupPurchaseParticipant",
        backref=db.backref("credit", uselist=False, lazy=True),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CustomerCredit id={self.id} status={self.status} balance={self.current_balance}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "group_purchase_participant_id": self.group_purchase_participant_id,
            "initial_amount": to_str(self.initial_amount),
            "current_balance": to_str(self.current_balance),
            "interest_amount": to_str(self.interest_amount),
            "amount_paid": to_str(self.amount_paid),
            "interest_rate": to_str(self.interest_rate),
            "status": self.status,
            "due_date": to_iso_date(self.due_date),
            "last_interest_calculation_date": to_iso_date(self.last_interest_calculation_date),
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }


class CustomerPayment(db.Model):
    """
    Money received from a customer. Immutable record.

    Applying the payment to a credit is a separate step performed in the same
    DB transaction (services/payment_service.record_payment).
    """
    __tablename__ = "customer_payments"
    __table_args__ = (
        db.Index("ix_customer_payments_tenant_customer", "tenant_id", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("customer_credits.id"), nullable=True, index=True)
    group_purchase_participant_id = db.Column(
        db.Integer, db.ForeignKey("group_purchase_participants.id"), nullable=True, index=True
    )

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    credit = db.relationship("CustomerCredit", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "credit_id": self.credit_id,
            "group_purchase_participant_id": self.group_purchase_participant_id,
            "amount": to_str(self.amount),
            "payment_method": self.payment_method,
            "payment_date": to_iso_date(self.payment_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class GroupPurchase(db.Model):
    """
    One product bought jointly by several customers.

    The underlying Sale goes through the normal settlement protocol; each
    participant owes a share, optionally on credit.

    STATUS (derived from participants): PENDING, PARTIAL, COMPLETED;
    CANCELLED once the purchase is cancelled and its sale voided.
    """
    __tablename__ = "group_purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale")
    product = db.relationship("Product")
    participants = db.relationship(
        "GroupPurchaseParticipant", backref="group_purchase", lazy=True, order_by="GroupPurchaseParticipant.id"
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": to_str(self.quantity),
            "total_amount": to_str(self.total_amount),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "participants": [p.to_dict() for p in self.participants],
        }


class GroupPurchaseParticipant(db.Model):
    """Participant share. STATUS: PENDING, PARTIAL, PAID."""
    __tablename__ = "group_purchase_participants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    group_purchase_id = db.Column(db.Integer, db.ForeignKey("group_purchases.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount_due = db.Column(db.Numeric(12, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    due_date = db.Column(db.Date, nullable=True)
    interest_rate = db.Column(db.Numeric(8, 6), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer")

    def to_dict(self) -> dict:
        credit = self.credit
        return {
            "id": self.id,
            "group_purchase_id": self.group_purchase_id,
            "customer_id": self.customer_id,
            "amount_due": to_str(self.amount_due),
            "amount_paid": to_str(self.amount_paid),
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "interest_rate": to_str(self.interest_rate),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "credit_id": credit.id if credit else None,
        }
