# backend/stockledger/routes/sales.py
"""Sales API routes: checkout, deferred confirmation, discard, void."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import ledger_service, sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
@require_tenant
def checkout_route():
    """
    Sell a cart.

    Body: {"items": [{"product_id", "quantity", "unit_price"?}],
           "payment_method": CASH|CARD|TRANSFER|CREDIT,
           "channel"?: POS|PORTAL, "customer_id"?,
           "credit_due_date"?, "credit_interest_rate"?,
           "transfer_reference"?, "notes"?}
    """
    try:
        data = request.get_json() or {}
        payment_method = (data.get("payment_method") or "").upper()
        if not payment_method:
            return jsonify({"error": "payment_method required"}), 400

        sale = sales_service.checkout(
            g.tenant_id,
            data.get("items"),
            payment_method,
            channel=(data.get("channel") or "POS").upper(),
            customer_id=data.get("customer_id"),
            credit_due_date=data.get("credit_due_date"),
            credit_interest_rate=data.get("credit_interest_rate"),
            transfer_reference=data.get("transfer_reference"),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
@require_tenant
def list_sales_route():
    status = request.args.get("status")
    customer_id = request.args.get("customer_id", type=int)
    limit = max(1, min(request.args.get("limit", 50, type=int), 500))
    sales = sales_service.list_sales(g.tenant_id, status=status, customer_id=customer_id, limit=limit)
    return jsonify({"sales": [s.to_dict(include_items=False) for s in sales]}), 200


@sales_bp.get("/<int:sale_id>")
@require_tenant
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(g.tenant_id, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except StockLedgerError as e:
        return error_response(e)


@sales_bp.get("/<int:sale_id>/movements")
@require_tenant
def sale_movements_route(sale_id: int):
    """Ledger trace of a sale: its OUT/SALE rows and any IN/VOID compensations."""
    try:
        sales_service.get_sale(g.tenant_id, sale_id)
        movements = ledger_service.get_sale_movements(g.tenant_id, sale_id)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except StockLedgerError as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/confirm")
@require_tenant
def confirm_sale_route(sale_id: int):
    """Confirm a PENDING cash/transfer order; writes its movements."""
    try:
        sale = sales_service.confirm_deferred_sale(g.tenant_id, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/discard")
@require_tenant
def discard_sale_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.discard_pending_sale(g.tenant_id, sale_id, reason=data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to discard sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/void")
@require_tenant
def void_sale_route(sale_id: int):
    """Void a COMPLETED sale: compensating movements + credit cancellation."""
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if not reason:
            return jsonify({"error": "reason required"}), 400

        sale = sales_service.void_sale(g.tenant_id, sale_id, reason)
        return jsonify({"sale": sale.to_dict()}), 200

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500
