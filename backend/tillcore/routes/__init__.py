# Overview: Shared helpers for the API blueprints.

from flask import jsonify


# Error code -> HTTP status; anything unlisted is a 400
STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "PRODUCT_NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "IDENTIFIER_EXHAUSTED": 503,
    "INSUFFICIENT_STOCK": 409,
    "QUANTITY_EXCEEDED": 409,
    "AMOUNT_INVALID": 409,
}


def service_error_response(exc: Exception):
    """JSON body and status for a service error carrying code/details."""
    code = getattr(exc, "code", None) or "VALIDATION"
    details = getattr(exc, "details", None) or {}
    field = getattr(exc, "field", None)
    if field and "field" not in details:
        details = {**details, "field": field}
    return jsonify({"error": str(exc), "code": code, "details": details}), STATUS_BY_CODE.get(code, 400)


def internal_error_response():
    return jsonify({"error": "Internal server error", "code": "INTERNAL"}), 500
