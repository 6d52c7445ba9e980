from __future__ import annotations

from ..extensions import db
from stockledger.decimal_utils import to_str
from stockledger.time_utils import utcnow, to_utc_z


SALE_PENDING = "PENDING"
SALE_COMPLETED = "COMPLETED"
SALE_VOIDED = "VOIDED"
SALE_DISCARDED = "DISCARDED"

CHANNEL_POS = "POS"
CHANNEL_PORTAL = "PORTAL"
CHANNEL_GROUP = "GROUP"
CHANNELS = (CHANNEL_POS, CHANNEL_PORTAL, CHANNEL_GROUP)

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_TRANSFER = "TRANSFER"
METHOD_CREDIT = "CREDIT"
PAYMENT_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_TRANSFER, METHOD_CREDIT)


class Sale(db.Model):
    """
    Sale header.

    LIFECYCLE:
    - PENDING: awaiting staff confirmation (cash collected in person, bank
      transfer). Has NO ledger movements.
    - COMPLETED: movements written exactly once, at this transition.
    - VOIDED: compensating movements written exactly once, at this transition.
    - DISCARDED: a PENDING order that was never confirmed; no ledger effect.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    channel = db.Column(db.String(16), nullable=False, default=CHANNEL_POS)
    status = db.Column(db.String(16), nullable=False, default=SALE_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False)

    # Historical tax information, frozen at checkout
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    taxable_subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=True)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    # PAID, PENDING (awaiting confirmation), CREDIT (open balance), PARTIAL
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    transfer_reference = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Void / discard audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.Text, nullable=True)
    discarded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", backref="sale", lazy=True, order_by="SaleItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} status={self.status} total={self.total_amount}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "channel": self.channel,
            "status": self.status,
            "payment_method": self.payment_method,
            "subtotal": to_str(self.subtotal),
            "taxable_subtotal": to_str(self.taxable_subtotal),
            "tax_rate": to_str(self.tax_rate),
            "tax_amount": to_str(self.tax_amount),
            "total_amount": to_str(self.total_amount),
            "payment_status": self.payment_status,
            "amount_paid": to_str(self.amount_paid),
            "transfer_reference": self.transfer_reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "discarded_at": to_utc_z(self.discarded_at) if self.discarded_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Sale line. quantity is in the product's own sale units."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_type = db.Column(db.String(16), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_type": self.product_type,
            "quantity": to_str(self.quantity),
            "unit_price": to_str(self.unit_price),
            "total_price": to_str(self.total_price),
        }
