from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from ..models.inventory import PRODUCT_COMBO, PRODUCT_SIMPLE, PRODUCT_TYPES
from ..validation import parse_amount, parse_decimal, parse_int


def create_product(tenant_id: int, data: dict) -> Product:
    """
    Create a SIMPLE or COMBO product.

    A SIMPLE product may name a base_product_id (its pool) and units_per_sale.
    The pool must be a SIMPLE product of the same tenant that is not itself a
    presentation. Combo components are set afterwards with
    combo_service.set_components().
    """
    sku = (data.get("sku") or "").strip()
    name = (data.get("name") or "").strip()
    if not sku or not name:
        raise ValidationError("sku and name are required")

    product_type = (data.get("product_type") or PRODUCT_SIMPLE).upper()
    if product_type not in PRODUCT_TYPES:
        raise ValidationError(f"Unknown product type: {product_type}")

    if db.session.query(Product).filter_by(tenant_id=tenant_id, sku=sku).first():
        raise ConflictError("SKU already exists", details={"sku": sku})

    product = Product(
        tenant_id=tenant_id,
        sku=sku,
        name=name,
        product_type=product_type,
        sale_price=parse_amount(data.get("sale_price"), "sale_price", allow_zero=True),
        tax_applies=bool(data.get("tax_applies", True)),
        is_active=bool(data.get("is_active", True)),
    )

    if product_type == PRODUCT_COMBO:
        for field in ("base_product_id", "stock_min"):
            if data.get(field) is not None:
                raise ValidationError(f"{field} does not apply to COMBO products")
    else:
        if data.get("stock_min") is not None:
            stock_min = parse_decimal(data.get("stock_min"), "stock_min")
            if stock_min < 0:
                raise ValidationError("stock_min cannot be negative")
            product.stock_min = stock_min

        if data.get("base_product_id") is not None:
            base_id = parse_int(data.get("base_product_id"), "base_product_id")
            base = db.session.query(Product).filter_by(id=base_id, tenant_id=tenant_id).first()
            if not base:
                raise ValidationError("Base product not found", details={"base_product_id": base_id})
            if base.product_type != PRODUCT_SIMPLE or base.base_product_id:
                raise ValidationError(
                    "Base product must be a SIMPLE product that holds its own stock",
                    details={"base_product_id": base_id},
                )
            units = parse_decimal(data.get("units_per_sale", 1), "units_per_sale")
            if units <= 0:
                raise ValidationError("units_per_sale must be positive")
            product.base_product_id = base.id
            product.units_per_sale = units

    db.session.add(product)
    db.session.commit()
    return product


def get_product(tenant_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if not product:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def list_products(tenant_id: int, include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product).filter_by(tenant_id=tenant_id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(Product.sku.asc()).all()
