from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import utcnow, to_utc_z


class Tenant(db.Model):
    """
    Business tenant (one shop / organization).

    MULTI-TENANT: every core row carries tenant_id and every core call takes
    it as an explicit argument. There is no implicit default tenant.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Setting(db.Model):
    """
    Tenant-scoped key/value business setting (tax rate, tax enabled, ...).

    value is stored as text; value_type tells the reader how to decode it:
    string, number, boolean, json.
    """
    __tablename__ = "settings"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "key", name="uq_settings_tenant_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    key = db.Column(db.String(100), nullable=False)
    value = db.Column(db.Text, nullable=True)
    value_type = db.Column(db.String(16), nullable=False, default="string")
    description = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "key": self.key,
            "value": self.value,
            "value_type": self.value_type,
            "description": self.description,
            "updated_at": to_utc_z(self.updated_at),
        }
