# backend/stockledger/routes/products.py
"""Product master data, combo composition and availability."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import combo_service, inventory_service, products_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.post("/")
@require_tenant
def create_product_route():
    try:
        product = products_service.create_product(g.tenant_id, request.get_json() or {})
        return jsonify({"product": product.to_dict()}), 201
    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/")
@require_tenant
def list_products_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    products = products_service.list_products(g.tenant_id, include_inactive=include_inactive)
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.get("/availability")
@require_tenant
def bulk_availability_route():
    """?ids=1,2,3 (optional; default all active products)."""
    raw_ids = request.args.get("ids")
    product_ids = None
    if raw_ids:
        try:
            product_ids = [int(part) for part in raw_ids.split(",") if part.strip()]
        except ValueError:
            return jsonify({"error": "ids must be a comma-separated list of integers"}), 400
    return jsonify({"availability": inventory_service.get_bulk_availability(g.tenant_id, product_ids)}), 200


@products_bp.get("/below-min")
@require_tenant
def below_min_route():
    return jsonify({"products": inventory_service.list_below_min(g.tenant_id)}), 200


@products_bp.get("/<int:product_id>")
@require_tenant
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(g.tenant_id, product_id)
        data = product.to_dict()
        if product.is_combo:
            data["components"] = [c.to_dict() for c in product.components]
        return jsonify({"product": data}), 200
    except StockLedgerError as e:
        return error_response(e)


@products_bp.get("/<int:product_id>/availability")
@require_tenant
def availability_route(product_id: int):
    try:
        return jsonify({"availability": inventory_service.get_availability(g.tenant_id, product_id)}), 200
    except StockLedgerError as e:
        return error_response(e)


@products_bp.put("/<int:product_id>/components")
@require_tenant
def set_components_route(product_id: int):
    """Body: {"components": [{"component_product_id", "qty_per_combo"}]}"""
    try:
        data = request.get_json() or {}
        combo = combo_service.set_components(g.tenant_id, product_id, data.get("components") or [])
        return jsonify({
            "product": combo.to_dict(),
            "components": [c.to_dict() for c in combo.components],
        }), 200
    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set combo components")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/cost")
@require_tenant
def combo_cost_route(product_id: int):
    try:
        return jsonify({"cost": combo_service.calculate_combo_cost(g.tenant_id, product_id)}), 200
    except StockLedgerError as e:
        return error_response(e)
