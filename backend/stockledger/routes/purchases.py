# backend/stockledger/routes/purchases.py
"""Supplier purchases: stock receipts and payables."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import purchase_service
from ..validation import parse_optional_date


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("/")
@require_tenant
def receive_purchase_route():
    """
    Body: {"items": [{"product_id", "quantity", "unit_cost"?}], "supplier_id"?,
           "invoice_number"?, "purchase_date"?, "credit_days"?, "amount_paid"?, "notes"?}
    """
    try:
        data = request.get_json() or {}
        order = purchase_service.receive_purchase(
            g.tenant_id,
            data.get("items"),
            data.get("supplier_id"),
            invoice_number=data.get("invoice_number"),
            purchase_date=parse_optional_date(data.get("purchase_date"), "purchase_date"),
            credit_days=data.get("credit_days"),
            amount_paid=data.get("amount_paid"),
            notes=data.get("notes"),
        )
        return jsonify({"purchase_order": order.to_dict()}), 201

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/payables")
@require_tenant
def payables_route():
    return jsonify({"payables": purchase_service.list_payables(g.tenant_id)}), 200


@purchases_bp.get("/<int:purchase_order_id>")
@require_tenant
def get_purchase_route(purchase_order_id: int):
    try:
        order = purchase_service.get_purchase_order(g.tenant_id, purchase_order_id)
        return jsonify({"purchase_order": order.to_dict()}), 200
    except StockLedgerError as e:
        return error_response(e)


@purchases_bp.post("/<int:purchase_order_id>/payments")
@require_tenant
def pay_purchase_route(purchase_order_id: int):
    try:
        data = request.get_json() or {}
        order = purchase_service.pay_purchase_order(g.tenant_id, purchase_order_id, data.get("amount"))
        return jsonify({"purchase_order": order.to_dict()}), 200

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to pay purchase order")
        return jsonify({"error": "Internal server error"}), 500
