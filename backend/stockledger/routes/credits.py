# backend/stockledger/routes/credits.py
"""Customer credit routes. Every read accrues interest up to today first."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import credit_service
from ..validation import parse_optional_date


credits_bp = Blueprint("credits", __name__, url_prefix="/api/credits")


@credits_bp.get("/")
@require_tenant
def list_credits_route():
    credits = credit_service.list_credits(
        g.tenant_id,
        customer_id=request.args.get("customer_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"credits": [c.to_dict() for c in credits]}), 200


@credits_bp.get("/overdue")
@require_tenant
def overdue_credits_route():
    credits = credit_service.list_overdue_credits(g.tenant_id)
    return jsonify({"credits": [c.to_dict() for c in credits]}), 200


@credits_bp.get("/customers/<int:customer_id>/summary")
@require_tenant
def customer_summary_route(customer_id: int):
    return jsonify({"summary": credit_service.get_customer_credit_summary(g.tenant_id, customer_id)}), 200


@credits_bp.get("/<int:credit_id>")
@require_tenant
def get_credit_route(credit_id: int):
    try:
        credit = credit_service.accrue(g.tenant_id, credit_id)
        return jsonify({"credit": credit.to_dict()}), 200
    except StockLedgerError as e:
        return error_response(e)


@credits_bp.post("/<int:credit_id>/payments")
@require_tenant
def pay_credit_route(credit_id: int):
    """Body: {"amount", "payment_method"?: CASH|CARD|TRANSFER, "payment_date"?, "notes"?}"""
    try:
        data = request.get_json() or {}
        if data.get("amount") in (None, ""):
            return jsonify({"error": "amount required"}), 400

        credit = credit_service.pay_credit(
            g.tenant_id,
            credit_id,
            data.get("amount"),
            payment_method=(data.get("payment_method") or "CASH").upper(),
            payment_date=parse_optional_date(data.get("payment_date"), "payment_date"),
            notes=data.get("notes"),
        )
        return jsonify({"credit": credit.to_dict()}), 200

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply credit payment")
        return jsonify({"error": "Internal server error"}), 500
