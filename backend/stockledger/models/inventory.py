from __future__ import annotations

from ..extensions import db
from stockledger.decimal_utils import to_str
from stockledger.time_utils import utcnow, to_utc_z, to_iso_date


PRODUCT_SIMPLE = "SIMPLE"
PRODUCT_COMBO = "COMBO"
PRODUCT_TYPES = (PRODUCT_SIMPLE, PRODUCT_COMBO)

DIRECTION_IN = "IN"
DIRECTION_OUT = "OUT"
DIRECTIONS = (DIRECTION_IN, DIRECTION_OUT)

REASON_SALE = "SALE"
REASON_PURCHASE = "PURCHASE"
REASON_ADJUST = "ADJUST"
REASON_VOID = "VOID"
REASON_WASTE = "WASTE"
REASONS = (REASON_SALE, REASON_PURCHASE, REASON_ADJUST, REASON_VOID, REASON_WASTE)


class Product(db.Model):
    """
    Product master data.

    SIMPLE products hold stock through the movement ledger. A SIMPLE product
    with base_product_id set is a "presentation": it has no ledger rows of its
    own and consumes units_per_sale base units of the pool product per unit
    sold.

    COMBO products never hold stock; availability is derived from their
    components (see services/combo_service.py).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_type", "tenant_id", "product_type"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    product_type = db.Column(db.String(16), nullable=False, default=PRODUCT_SIMPLE)

    sale_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_applies = db.Column(db.Boolean, nullable=False, default=True)

    # Below-minimum alert threshold, in sale units (SIMPLE only)
    stock_min = db.Column(db.Numeric(12, 3), nullable=True)

    # Inventory pool
    base_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    units_per_sale = db.Column(db.Numeric(12, 3), nullable=False, default=1)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    base_product = db.relationship("Product", remote_side=[id], backref=db.backref("pool_products", lazy=True))
    components = db.relationship(
        "ProductComponent",
        foreign_keys="ProductComponent.combo_product_id",
        order_by="ProductComponent.position",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def is_combo(self) -> bool:
        return self.product_type == PRODUCT_COMBO

    @property
    def pool_product_id(self) -> int:
        return self.base_product_id or self.id

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} type={self.product_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "product_type": self.product_type,
            "sale_price": to_str(self.sale_price),
            "tax_applies": self.tax_applies,
            "stock_min": to_str(self.stock_min),
            "base_product_id": self.base_product_id,
            "units_per_sale": to_str(self.units_per_sale),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductComponent(db.Model):
    """
    One component line of a COMBO: qty_per_combo units of a SIMPLE product.

    Invariants (enforced in combo_service.set_components):
    - a COMBO has at least one component
    - components are SIMPLE (no nested combos)
    """
    __tablename__ = "product_components"
    __table_args__ = (
        db.UniqueConstraint("combo_product_id", "component_product_id", name="uq_components_combo_component"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    combo_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    qty_per_combo = db.Column(db.Numeric(12, 3), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    component = db.relationship("Product", foreign_keys=[component_product_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "combo_product_id": self.combo_product_id,
            "component_product_id": self.component_product_id,
            "qty_per_combo": to_str(self.qty_per_combo),
            "position": self.position,
        }


class InventoryMovement(db.Model):
    """
    Stock ledger entry. Append-only.

    - quantity is always positive; direction carries the sign.
    - unit_cost is set only on IN movements that carry a purchase cost and is
      the only input to average cost.
    - cost_at_movement snapshots average cost when an OUT (or its compensating
      IN) is written, for COGS.
    - Rows are never updated or deleted (see stockledger/immutability.py).
      Corrections are opposite-direction rows with the same ref_type/ref_id.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_movements_tenant_product", "tenant_id", "product_id"),
        db.Index("ix_movements_ref", "ref_type", "ref_id"),
        db.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    direction = db.Column(db.String(3), nullable=False, index=True)
    reason = db.Column(db.String(16), nullable=False, index=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    # Per base unit
    unit_cost = db.Column(db.Numeric(12, 4), nullable=True)
    cost_at_movement = db.Column(db.Numeric(12, 4), nullable=True)

    ref_type = db.Column(db.String(32), nullable=True)
    ref_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement id={self.id} product_id={self.product_id} "
            f"{self.direction} {self.quantity} {self.reason}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "direction": self.direction,
            "reason": self.reason,
            "quantity": to_str(self.quantity),
            "unit_cost": to_str(self.unit_cost),
            "cost_at_movement": to_str(self.cost_at_movement),
            "ref_type": self.ref_type,
            "ref_id": self.ref_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    default_credit_days = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "default_credit_days": self.default_credit_days,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    """
    Stock receipt header. Lines become IN/PURCHASE movements at creation.

    Supplier credit terms: credit_days > 0 leaves the order PENDING with a
    due_date; otherwise it is PAID on receipt.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    invoice_number = db.Column(db.String(100), nullable=True)
    purchase_date = db.Column(db.Date, nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    credit_days = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.Date, nullable=True)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="PAID", index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    items = db.relationship("PurchaseOrderItem", backref="purchase_order", lazy=True, order_by="PurchaseOrderItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "supplier_id": self.supplier_id,
            "invoice_number": self.invoice_number,
            "purchase_date": to_iso_date(self.purchase_date),
            "total_amount": to_str(self.total_amount),
            "credit_days": self.credit_days,
            "due_date": to_iso_date(self.due_date),
            "amount_paid": to_str(self.amount_paid),
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # As entered, in the product's own sale units
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    line_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")
    movement = db.relationship("InventoryMovement")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "quantity": to_str(self.quantity),
            "unit_cost": to_str(self.unit_cost),
            "line_total": to_str(self.line_total),
            "movement_id": self.movement_id,
        }
