# backend/stockledger/routes/group_purchases.py
"""Group purchase routes."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import group_purchase_service


group_purchases_bp = Blueprint("group_purchases", __name__, url_prefix="/api/group-purchases")


@group_purchases_bp.post("/")
@require_tenant
def create_group_purchase_route():
    """
    Body: {"product_id", "quantity", "payment_method"?,
           "participants": [{"customer_id", "amount_due", "amount_paid"?, "due_date"?, "interest_rate"?}],
           "notes"?}
    """
    try:
        data = request.get_json() or {}
        group_purchase = group_purchase_service.create_group_purchase(
            g.tenant_id,
            data.get("product_id"),
            data.get("quantity"),
            data.get("participants"),
            payment_method=(data.get("payment_method") or "CASH").upper(),
            notes=data.get("notes"),
        )
        return jsonify({"group_purchase": group_purchase.to_dict()}), 201

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create group purchase")
        return jsonify({"error": "Internal server error"}), 500


@group_purchases_bp.get("/")
@require_tenant
def list_group_purchases_route():
    rows = group_purchase_service.list_group_purchases(g.tenant_id, status=request.args.get("status"))
    return jsonify({"group_purchases": [gp.to_dict() for gp in rows]}), 200


@group_purchases_bp.get("/<int:group_purchase_id>")
@require_tenant
def get_group_purchase_route(group_purchase_id: int):
    try:
        group_purchase = group_purchase_service.get_group_purchase(g.tenant_id, group_purchase_id)
        return jsonify({"group_purchase": group_purchase.to_dict()}), 200
    except StockLedgerError as e:
        return error_response(e)


@group_purchases_bp.post("/<int:group_purchase_id>/cancel")
@require_tenant
def cancel_group_purchase_route(group_purchase_id: int):
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400

        group_purchase = group_purchase_service.cancel_group_purchase(g.tenant_id, group_purchase_id, reason)
        return jsonify({"group_purchase": group_purchase.to_dict()}), 200

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel group purchase")
        return jsonify({"error": "Internal server error"}), 500
