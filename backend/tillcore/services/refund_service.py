"""
Refund Adjudicator

Validates a refund request against a completed sale and commits the refund.

DESIGN PRINCIPLES:
- Tax on returned units comes from the tax recorded on the sale line, never
  from the tenant's current rate, so customers get back exactly what they
  were charged.
- Proration is cumulative: refunding every unit of a line, in one refund or
  many, returns exactly the line's recorded tax.
- The refund, its items, the sale's running totals and each sale item's
  quantity_refunded are written in one transaction. A partial write would
  corrupt the refundable quantity seen by later refunds.

VALIDATION ORDER (fail fast, one code per failure):
1. Sale exists (NOT_FOUND), belongs to the tenant (FORBIDDEN), is within
   the tenant's refund window (POLICY_EXPIRED), and was paid the same way
   (PAYMENT_MISMATCH; a MIXED sale accepts any method).
2. Every requested line belongs to the sale (NOT_FOUND) and has enough
   unrefunded quantity (QUANTITY_EXCEEDED).
3. Amounts are non-negative and the refund total is positive and within
   the sale's remaining refundable amount (AMOUNT_INVALID).
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Refund, RefundItem, Sale, SaleItem, Tenant
from ..models.sales import PAYMENT_METHODS, REFUND_STATUS_FULL, REFUND_STATUS_PARTIAL
from ..time_utils import calendar_days_between, utcnow
from ..validation import (
    MAX_NOTES_LENGTH,
    ValidationError,
    coerce_choice,
    coerce_int,
    coerce_positive_int,
    coerce_text,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .identifier_service import next_refund_number
from .inventory_service import apply_delta


# A refund may overshoot the remaining amount by this much (rounding)
REFUND_AMOUNT_TOLERANCE_CENTS = 1

# Within this distance of the sale total the sale counts as fully refunded
FULL_REFUND_TOLERANCE_CENTS = 5

REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 500


class RefundError(Exception):
    """Raised for refund operation errors."""

    def __init__(self, message: str, code: str = "VALIDATION", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


def _prorate(amount_cents: int, units: int, quantity: int) -> int:
    # amount * units / quantity, rounded half-up
    return (amount_cents * units + quantity // 2) // quantity


def prorated_tax(sale_item: SaleItem, quantity: int) -> int:
    """Tax for refunding quantity more units of sale_item."""
    already = sale_item.quantity_refunded
    return (
        _prorate(sale_item.tax_cents, already + quantity, sale_item.quantity)
        - _prorate(sale_item.tax_cents, already, sale_item.quantity)
    )


def _parse_request_items(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise RefundError("Refund must include at least one item")

    parsed = []
    seen = set()
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise RefundError(f"items[{index}] must be an object")
        try:
            sale_item_id = coerce_int(raw.get("sale_item_id"), f"items[{index}].sale_item_id")
            quantity = coerce_positive_int(raw.get("quantity"), f"items[{index}].quantity")
        except ValidationError as exc:
            raise RefundError(str(exc), details={"field": exc.field})
        if sale_item_id in seen:
            raise RefundError(
                f"Sale item {sale_item_id} is listed more than once",
                details={"sale_item_id": sale_item_id},
            )
        seen.add(sale_item_id)
        parsed.append((sale_item_id, quantity))
    return parsed


def _check_policy(sale: Sale, tenant_id: int, payment_method: str) -> None:
    if sale.tenant_id != tenant_id:
        raise RefundError("Sale belongs to another tenant", code="FORBIDDEN")

    tenant = db.session.get(Tenant, tenant_id)
    limit = tenant.refund_day_limit if tenant else None
    if limit is not None:
        age = calendar_days_between(sale.created_at, utcnow())
        if age > limit:
            raise RefundError(
                f"Refund window of {limit} days has expired",
                code="POLICY_EXPIRED",
                details={"days_since_sale": age, "refund_day_limit": limit},
            )

    if sale.payment_method != "MIXED" and payment_method != sale.payment_method:
        raise RefundError(
            f"Refund must use the original payment method ({sale.payment_method})",
            code="PAYMENT_MISMATCH",
            details={"sale_payment_method": sale.payment_method, "refund_payment_method": payment_method},
        )


def adjudicate_refund(
    *,
    tenant_id: int,
    operator_id: int | None,
    sale_id: int,
    items: list,
    payment_method: str,
    reason: str,
    notes: str | None = None,
    restock: bool = True,
) -> Refund:
    """
    Validate and commit a refund against a completed sale.

    Returns the committed Refund. With restock=True every refunded unit is
    returned to stock as a REFUND movement in the same transaction.
    """
    try:
        payment_method = coerce_choice(payment_method, "payment_method", PAYMENT_METHODS)
        reason = coerce_text(
            reason, "reason", required=True,
            min_length=REASON_MIN_LENGTH, max_length=REASON_MAX_LENGTH,
        )
        notes = coerce_text(notes, "notes", max_length=MAX_NOTES_LENGTH)
    except ValidationError as exc:
        raise RefundError(str(exc), details={"field": exc.field})
    requested = _parse_request_items(items)

    def _op():
        begin_write()

        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).populate_existing().first()
        if sale is None:
            raise RefundError(f"Sale {sale_id} not found", code="NOT_FOUND")
        _check_policy(sale, tenant_id, payment_method)

        sale_items = {
            item.id: item
            for item in lock_for_update(
                db.session.query(SaleItem).filter_by(sale_id=sale.id)
            ).populate_existing().all()
        }

        lines = []
        for sale_item_id, quantity in requested:
            sale_item = sale_items.get(sale_item_id)
            if sale_item is None:
                raise RefundError(
                    f"Sale item {sale_item_id} is not part of sale {sale.sale_number}",
                    code="NOT_FOUND",
                    details={"sale_item_id": sale_item_id},
                )
            if quantity > sale_item.refundable_quantity:
                raise RefundError(
                    f"Cannot refund {quantity} units of sale item {sale_item_id}; "
                    f"{sale_item.refundable_quantity} remain refundable",
                    code="QUANTITY_EXCEEDED",
                    details={
                        "sale_item_id": sale_item_id,
                        "requested_quantity": quantity,
                        "quantity": sale_item.quantity,
                        "quantity_refunded": sale_item.quantity_refunded,
                    },
                )

            subtotal = sale_item.unit_price_cents * quantity
            tax = prorated_tax(sale_item, quantity)
            if subtotal < 0 or tax < 0:
                raise RefundError(
                    f"Computed refund amount for sale item {sale_item_id} is negative",
                    code="AMOUNT_INVALID",
                    details={"sale_item_id": sale_item_id},
                )
            lines.append((sale_item, quantity, subtotal, tax))

        refund_subtotal = sum(line[2] for line in lines)
        refund_tax = sum(line[3] for line in lines)
        refund_total = refund_subtotal + refund_tax
        if refund_total <= 0:
            raise RefundError("Refund total must be positive", code="AMOUNT_INVALID")

        remaining = sale.remaining_refundable_cents
        if refund_total > remaining + REFUND_AMOUNT_TOLERANCE_CENTS:
            raise RefundError(
                "Refund exceeds the remaining refundable amount",
                code="AMOUNT_INVALID",
                details={"refund_total_cents": refund_total, "remaining_refundable_cents": remaining},
            )

        new_total_refunded = sale.total_refunded_cents + refund_total
        if new_total_refunded >= sale.total_cents - FULL_REFUND_TOLERANCE_CENTS:
            status = REFUND_STATUS_FULL
        else:
            status = REFUND_STATUS_PARTIAL

        refund_number = next_refund_number()
        refund = Refund(
            tenant_id=tenant_id,
            sale_id=sale.id,
            refund_number=refund_number,
            refund_type=status,
            subtotal_cents=refund_subtotal,
            tax_cents=refund_tax,
            total_cents=refund_total,
            payment_method=payment_method,
            reason=reason,
            notes=notes,
            restocked=bool(restock),
            operator_id=operator_id,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()

        for sale_item, quantity, subtotal, tax in lines:
            db.session.add(RefundItem(
                refund_id=refund.id,
                sale_item_id=sale_item.id,
                product_id=sale_item.product_id,
                quantity=quantity,
                unit_price_cents=sale_item.unit_price_cents,
                subtotal_cents=subtotal,
                tax_cents=tax,
                total_cents=subtotal + tax,
            ))
            sale_item.quantity_refunded = sale_item.quantity_refunded + quantity

        sale.total_refunded_cents = new_total_refunded
        sale.refund_status = status

        if restock:
            for sale_item, quantity, _, _ in lines:
                apply_delta(
                    tenant_id=tenant_id,
                    product_id=sale_item.product_id,
                    delta=quantity,
                    movement_type="REFUND",
                    operator_id=operator_id,
                    reference=refund_number,
                    reason=f"Refund: {reason}",
                )

        db.session.commit()
        return refund

    # IntegrityError here is a refund number taken between probe and commit
    refund = run_with_retry(_op, retry_on=(IntegrityError,))
    current_app.logger.info(
        "Committed refund %s for sale %s (tenant=%s, total_cents=%s, type=%s)",
        refund.refund_number, sale_id, tenant_id, refund.total_cents, refund.refund_type,
    )
    return refund


def get_refund(tenant_id: int, refund_id: int) -> Refund:
    refund = db.session.get(Refund, refund_id)
    if refund is None:
        raise RefundError(f"Refund {refund_id} not found", code="NOT_FOUND")
    if refund.tenant_id != tenant_id:
        raise RefundError("Refund belongs to another tenant", code="FORBIDDEN")
    return refund


def list_refunds(
    tenant_id: int,
    *,
    sale_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """
    Refunds for a tenant, newest first, with their summed total.

    start and end are inclusive bounds on created_at.
    """
    q = db.session.query(Refund).filter(Refund.tenant_id == tenant_id)
    if sale_id is not None:
        q = q.filter(Refund.sale_id == sale_id)
    if start is not None:
        q = q.filter(Refund.created_at >= start)
    if end is not None:
        q = q.filter(Refund.created_at <= end)

    refunds = q.order_by(Refund.created_at.desc(), Refund.id.desc()).all()
    return {
        "refunds": refunds,
        "total_refunded_cents": sum(r.total_cents for r in refunds),
    }
