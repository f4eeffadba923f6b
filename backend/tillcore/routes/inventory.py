# Overview: Flask API routes for stock movements; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..services import inventory_service
from ..services.inventory_service import InventoryError
from ..validation import ValidationError, coerce_int
from . import internal_error_response, service_error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/products")


@inventory_bp.get("/<int:product_id>/movements")
@require_tenant_context
def list_movements_route(product_id: int):
    """Stock movement history for a product, newest first."""
    try:
        limit = request.args.get("limit")
        limit = coerce_int(limit, "limit") if limit else inventory_service.HISTORY_LIMIT
        limit = max(1, min(limit, 500))

        product = inventory_service.get_product(g.tenant_id, product_id)
        movements = inventory_service.get_stock_history(g.tenant_id, product_id, limit=limit)
        return jsonify({
            "product": product.to_dict(),
            "movements": [m.to_dict() for m in movements],
        }), 200

    except (InventoryError, ValidationError) as e:
        return service_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load stock movements")
        return internal_error_response()


@inventory_bp.post("/<int:product_id>/movements")
@require_tenant_context
def record_movement_route(product_id: int):
    """
    Record a manual restock or correction.

    Request body:
    {
        "type": "REFILL" | "ADJUSTMENT",
        "quantity": 12,            (signed)
        "reference": "PO-1001",    (optional)
        "reason": "Weekly delivery" (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        movement = inventory_service.record_stock_movement(
            tenant_id=g.tenant_id,
            product_id=product_id,
            delta=data.get("quantity"),
            movement_type=str(data.get("type") or "").upper(),
            operator_id=g.operator_id,
            reference=data.get("reference"),
            reason=data.get("reason"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except InventoryError as e:
        return service_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return internal_error_response()
