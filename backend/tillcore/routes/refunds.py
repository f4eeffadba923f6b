# Overview: Flask API routes for refunds; parses input and returns JSON responses.

"""
Refund API Routes

DESIGN:
- A refund is adjudicated and committed in one request against one sale.
- Failures carry a distinct code (NOT_FOUND, FORBIDDEN, POLICY_EXPIRED,
  PAYMENT_MISMATCH, QUANTITY_EXCEEDED, AMOUNT_INVALID) so the till can show
  a specific message.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..services import refund_service
from ..services.identifier_service import IdentifierError
from ..services.refund_service import RefundError
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, coerce_bool, coerce_int
from . import internal_error_response, service_error_response


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


@refunds_bp.post("")
@require_tenant_context
def create_refund_route():
    """
    Refund items of a completed sale.

    Request body:
    {
        "sale_id": 123,
        "items": [{"sale_item_id": 456, "quantity": 1}],
        "payment_method": "CASH",
        "reason": "Customer returned damaged goods",
        "notes": "...",        (optional)
        "restock": true        (optional, default true)
    }

    Returns:
        201: {"refund_id", "refund_number", "refund"}
        400: Invalid input, refund window expired or payment method mismatch
        403: Sale belongs to another tenant
        404: Sale or sale item not found
        409: Quantity or amount exceeds what remains refundable
    """
    try:
        data = request.get_json(silent=True) or {}
        sale_id = coerce_int(data.get("sale_id"), "sale_id")

        refund = refund_service.adjudicate_refund(
            tenant_id=g.tenant_id,
            operator_id=g.operator_id,
            sale_id=sale_id,
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            reason=data.get("reason"),
            notes=data.get("notes"),
            restock=coerce_bool(data.get("restock"), "restock", default=True),
        )
        return jsonify({
            "refund_id": refund.id,
            "refund_number": refund.refund_number,
            "refund": refund.to_dict(include_items=True),
        }), 201

    except (RefundError, IdentifierError, ValidationError) as e:
        return service_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create refund")
        return internal_error_response()


@refunds_bp.get("")
@require_tenant_context
def list_refunds_route():
    """
    List refunds, newest first.

    Query params: sale_id, start, end (ISO-8601, inclusive)
    """
    try:
        sale_id = request.args.get("sale_id")
        result = refund_service.list_refunds(
            g.tenant_id,
            sale_id=coerce_int(sale_id, "sale_id") if sale_id else None,
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
        )
        return jsonify({
            "refunds": [r.to_dict() for r in result["refunds"]],
            "total_refunded_cents": result["total_refunded_cents"],
        }), 200

    except ValidationError as e:
        return service_error_response(e)
    except ValueError as e:
        return jsonify({"error": f"Invalid date: {e}", "code": "VALIDATION", "details": {}}), 400
    except Exception:
        current_app.logger.exception("Failed to list refunds")
        return internal_error_response()


@refunds_bp.get("/<int:refund_id>")
@require_tenant_context
def get_refund_route(refund_id: int):
    try:
        refund = refund_service.get_refund(g.tenant_id, refund_id)
        return jsonify({"refund": refund.to_dict(include_items=True)}), 200
    except RefundError as e:
        return service_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load refund")
        return internal_error_response()
