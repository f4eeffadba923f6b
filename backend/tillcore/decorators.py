# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .extensions import db
from .models import Tenant


def _header_int(name: str):
    raw = (request.headers.get(name) or "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_tenant_context(f):
    """
    Establish tenant context from the upstream identity gateway.

    The gateway authenticates the caller and forwards:
    - X-Tenant-Id: the tenant the request acts for (required)
    - X-Operator-Id: the operator performing it (optional)

    Sets g.tenant_id and g.operator_id. Returns 401 when the tenant header
    is missing or malformed and 403 when the tenant is unknown or inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = _header_int("X-Tenant-Id")
        if tenant_id is None:
            return jsonify({"error": "Tenant context required", "code": "UNAUTHENTICATED"}), 401

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            return jsonify({"error": "Tenant is not active", "code": "FORBIDDEN"}), 403

        g.tenant_id = tenant.id
        g.operator_id = _header_int("X-Operator-Id")
        return f(*args, **kwargs)

    return decorated_function
