# backend/stockledger/routes/communications.py
from flask import Blueprint, g, jsonify, request

from ..decorators import require_tenant
from ..services import communications_service


communications_bp = Blueprint("communications", __name__, url_prefix="/api/notifications")


@communications_bp.get("/")
@require_tenant
def list_notifications_route():
    include_dismissed = request.args.get("include_dismissed", "false").lower() == "true"
    rows = communications_service.list_notifications(g.tenant_id, include_dismissed=include_dismissed)
    return jsonify({"notifications": [n.to_dict() for n in rows]}), 200
