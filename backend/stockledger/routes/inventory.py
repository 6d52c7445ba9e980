# backend/stockledger/routes/inventory.py
"""Inventory ledger routes: stock, movements, manual adjustments."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import inventory_service, ledger_service
from ..services.ledger_service import MovementQuery
from ..decimal_utils import to_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/<int:product_id>/stock")
@require_tenant
def stock_route(product_id: int):
    """Raw ledger figures for one product row (a pool, or a product that is its own pool)."""
    return jsonify({
        "product_id": product_id,
        "current_stock": to_str(ledger_service.get_current_stock(g.tenant_id, product_id)),
        "average_cost": to_str(ledger_service.get_average_cost(g.tenant_id, product_id)),
    }), 200


@inventory_bp.get("/movements")
@require_tenant
def movements_route():
    options = MovementQuery(
        product_id=request.args.get("product_id", type=int),
        direction=request.args.get("direction"),
        reason=request.args.get("reason"),
        ref_type=request.args.get("ref_type"),
        ref_id=request.args.get("ref_id", type=int),
        limit=max(1, min(request.args.get("limit", 200, type=int), 1000)),
    )
    movements = ledger_service.list_movements(g.tenant_id, options)
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@inventory_bp.post("/adjust")
@require_tenant
def adjust_route():
    """Body: {"product_id", "direction": IN|OUT, "quantity", "reason"?: ADJUST|WASTE, "note"?}"""
    try:
        data = request.get_json() or {}
        product_id = data.get("product_id")
        if not isinstance(product_id, int):
            return jsonify({"error": "product_id required"}), 400

        movement = inventory_service.adjust_stock(
            g.tenant_id,
            product_id,
            (data.get("direction") or "").upper(),
            data.get("quantity"),
            reason=(data.get("reason") or "ADJUST").upper(),
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
