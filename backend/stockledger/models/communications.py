from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import utcnow, to_utc_z


class Notification(db.Model):
    """
    In-app staff notification.

    Written in the same transaction as the event it announces (e.g. a
    PENDING sale awaiting confirmation); delivery (in-app feed, push) is done
    by an external consumer. Dismissed when the underlying sale is confirmed
    or discarded.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_tenant_dismissed", "tenant_id", "dismissed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    dismissed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "type": self.type,
            "sale_id": self.sale_id,
            "title": self.title,
            "body": self.body,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
            "dismissed_at": to_utc_z(self.dismissed_at) if self.dismissed_at else None,
        }
