# backend/stockledger/routes/payments.py
"""Customer payments (on account, against a credit, or a group purchase share)."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import payment_service
from ..validation import parse_int, parse_optional_date


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/")
@require_tenant
def record_payment_route():
    try:
        data = request.get_json() or {}
        credit_id = data.get("credit_id")
        participant_id = data.get("group_purchase_participant_id")
        payment = payment_service.record_payment(
            g.tenant_id,
            customer_id=parse_int(data.get("customer_id"), "customer_id"),
            amount=data.get("amount"),
            payment_method=(data.get("payment_method") or "CASH").upper(),
            credit_id=parse_int(credit_id, "credit_id") if credit_id is not None else None,
            participant_id=parse_int(participant_id, "group_purchase_participant_id") if participant_id is not None else None,
            payment_date=parse_optional_date(data.get("payment_date"), "payment_date"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 201

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/")
@require_tenant
def list_payments_route():
    payments = payment_service.list_payments(
        g.tenant_id,
        customer_id=request.args.get("customer_id", type=int),
        credit_id=request.args.get("credit_id", type=int),
    )
    return jsonify({"payments": [p.to_dict() for p in payments]}), 200
