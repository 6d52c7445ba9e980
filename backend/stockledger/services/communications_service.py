from __future__ import annotations

from ..extensions import db
from ..models import Notification, Sale
from stockledger.decimal_utils import to_str
from stockledger.time_utils import utcnow


TYPE_PENDING_TRANSFER = "PENDING_TRANSFER"
TYPE_PENDING_CASH = "PENDING_CASH"


def notify_pending_sale(sale: Sale) -> Notification:
    """
    Record that a deferred sale is waiting for staff confirmation.

    Written inside the sale's transaction (no commit here) so the row exists
    exactly when the sale does. Push/e-mail delivery reads these rows.
    """
    kind = TYPE_PENDING_TRANSFER if sale.payment_method == "TRANSFER" else TYPE_PENDING_CASH
    title = "Transfer awaiting verification" if kind == TYPE_PENDING_TRANSFER else "Cash order awaiting confirmation"
    notification = Notification(
        tenant_id=sale.tenant_id,
        type=kind,
        sale_id=sale.id,
        title=title,
        body=f"Sale #{sale.id} for {to_str(sale.total_amount)} is pending",
        payload={
            "sale_id": sale.id,
            "total_amount": to_str(sale.total_amount),
            "payment_method": sale.payment_method,
            "transfer_reference": sale.transfer_reference,
        },
    )
    db.session.add(notification)
    db.session.flush()
    return notification


def dismiss_sale_notifications(tenant_id: int, sale_id: int) -> int:
    """Dismiss open notifications for a sale once it is confirmed or discarded. No commit."""
    now = utcnow()
    open_rows = (
        db.session.query(Notification)
        .filter(
            Notification.tenant_id == tenant_id,
            Notification.sale_id == sale_id,
            Notification.dismissed_at.is_(None),
        )
        .all()
    )
    for row in open_rows:
        row.dismissed_at = now
    return len(open_rows)


def list_notifications(tenant_id: int, include_dismissed: bool = False, limit: int = 100) -> list[Notification]:
    query = db.session.query(Notification).filter(Notification.tenant_id == tenant_id)
    if not include_dismissed:
        query = query.filter(Notification.dismissed_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
