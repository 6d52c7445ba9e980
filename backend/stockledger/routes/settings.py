# backend/stockledger/routes/settings.py
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_tenant
from ..errors import StockLedgerError
from ..services import settings_service


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("/")
@require_tenant
def list_settings_route():
    items = [s.to_dict() for s in settings_service.list_settings(g.tenant_id)]
    return jsonify({"items": items, "count": len(items)}), 200


@settings_bp.put("/<key>")
@require_tenant
def set_setting_route(key: str):
    """Body: {"value", "value_type"?: string|number|boolean|json, "description"?}"""
    try:
        data = request.get_json() or {}
        if "value" not in data:
            return jsonify({"error": "value required"}), 400

        setting = settings_service.set_setting(
            g.tenant_id,
            key,
            data["value"],
            value_type=data.get("value_type"),
            description=data.get("description"),
        )
        return jsonify({"setting": setting.to_dict()}), 200

    except StockLedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update setting")
        return jsonify({"error": "Internal server error"}), 500
