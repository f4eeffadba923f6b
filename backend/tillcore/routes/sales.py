# Overview: Flask API routes for sales; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..services import sales_service
from ..services.identifier_service import IdentifierError
from ..services.sales_service import SaleError
from . import internal_error_response, service_error_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_tenant_context
def commit_sale_route():
    """
    Record a completed sale and decrement stock.

    Request body:
    {
        "payment_method": "CASH",
        "subtotal_cents": 10000,       (optional, defaults to sum of items)
        "tax_cents": 1500,             (optional)
        "discount_cents": 0,           (optional)
        "total_cents": 11500,          (optional, must equal subtotal + tax - discount)
        "cash_received_cents": 12000,  (optional)
        "notes": "...",                (optional)
        "items": [
            {"product_id": 1, "quantity": 2, "unit_price_cents": 5000, "tax_cents": 1500}
        ]
    }

    Returns:
        201: {"sale_id", "sale_number", "sale"}
        400: Invalid input
        404: Product not found
        409: Insufficient stock
        503: No sale number could be allocated
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.commit_sale(
            tenant_id=g.tenant_id,
            operator_id=g.operator_id,
            header=data,
            items=data.get("items"),
        )
        return jsonify({
            "sale_id": sale.id,
            "sale_number": sale.sale_number,
            "sale": sale.to_dict(include_items=True),
        }), 201

    except (SaleError, IdentifierError) as e:
        return service_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return internal_error_response()


@sales_bp.get("/<int:sale_id>")
@require_tenant_context
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(g.tenant_id, sale_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except SaleError as e:
        return service_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return internal_error_response()
