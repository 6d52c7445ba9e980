from functools import wraps

from flask import g, jsonify, request

from .extensions import db
from .models import Tenant


def require_tenant(f):
    """
    Establish tenant context from the X-Tenant-ID header.

    Sets g.tenant_id. Every service call below the route is scoped by it;
    authentication itself is handled in front of this service.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get("X-Tenant-ID") or "").strip()
        if not raw.isdigit():
            return jsonify({"error": "X-Tenant-ID header required", "code": "TENANT_REQUIRED"}), 400

        tenant = db.session.get(Tenant, int(raw))
        if not tenant or not tenant.is_active:
            return jsonify({"error": "Tenant not found", "code": "TENANT_NOT_FOUND"}), 404

        g.tenant_id = tenant.id
        return f(*args, **kwargs)

    return decorated_function


def error_response(exc):
    """JSON body + status for a domain error."""
    return jsonify(exc.to_dict()), exc.http_status
