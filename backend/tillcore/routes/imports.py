# Overview: Flask API route for bulk product import.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..services import import_service
from ..services.import_service import ProductImportError
from . import internal_error_response, service_error_response


imports_bp = Blueprint("imports", __name__, url_prefix="/api/products")


@imports_bp.post("/import")
@require_tenant_context
def import_products_route():
    """
    Import a batch of product rows.

    Request body: {"products": [{"sku": "...", "name": "...", "price": "12.50", ...}]}

    Returns:
        200: {"success_count", "failed_count", "errors": [{"row", "error", "sku", "name"}], ...}
             (per-row failures never fail the request)
        400: Empty batch, more than IMPORT_MAX_ROWS rows, or duplicate SKUs/names
    """
    try:
        data = request.get_json(silent=True) or {}
        result = import_service.reconcile_import(
            tenant_id=g.tenant_id,
            operator_id=g.operator_id,
            rows=data.get("products"),
        )
        return jsonify(result), 200

    except ProductImportError as e:
        return service_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to import products")
        return internal_error_response()
