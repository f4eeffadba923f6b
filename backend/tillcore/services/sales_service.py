"""
Sale Committer

A sale is recorded once, already completed: header, items and the SALE
stock movement for every item are written in one transaction.

COMMIT SEQUENCE:
1. Validate header and items before touching the store.
2. Take the write lock and load every referenced product.
3. Allocate the sale number.
4. Insert the sale, then each item followed by its ledger decrement.
5. Commit. Any failure rolls the whole unit back; nothing partial survives.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, Sale, SaleItem
from ..models.sales import PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import (
    MAX_NOTES_LENGTH,
    MAX_PRICE_CENTS,
    ValidationError,
    coerce_cents,
    coerce_choice,
    coerce_int,
    coerce_positive_int,
    coerce_text,
)
from .concurrency import begin_write, run_with_retry
from .identifier_service import next_sale_number
from .inventory_service import apply_delta


# Largest quantity accepted on a single sale line
MAX_LINE_QUANTITY = 100_000


class SaleError(Exception):
    """Raised for sale operation errors."""

    def __init__(self, message: str, code: str = "VALIDATION", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


def _check_amount(value: int, field: str) -> None:
    # Computed amounts bypass coerce_cents; hold them to the same cap
    if value > MAX_PRICE_CENTS:
        raise SaleError(
            f"{field} exceeds maximum of {MAX_PRICE_CENTS} cents",
            details={"field": field, "max_cents": MAX_PRICE_CENTS, "got": value},
        )


def _parse_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise SaleError("Sale must contain at least one item")

    parsed = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise SaleError(f"items[{index}] must be an object")
        prefix = f"items[{index}]"
        product_id = coerce_int(raw.get("product_id"), f"{prefix}.product_id")
        quantity = coerce_positive_int(raw.get("quantity"), f"{prefix}.quantity")
        if quantity > MAX_LINE_QUANTITY:
            raise SaleError(
                f"{prefix}.quantity exceeds maximum of {MAX_LINE_QUANTITY}",
                details={"field": f"{prefix}.quantity", "index": index},
            )
        unit_price = coerce_cents(raw.get("unit_price_cents"), f"{prefix}.unit_price_cents")
        tax = coerce_cents(raw.get("tax_cents"), f"{prefix}.tax_cents", required=False)
        _check_amount(unit_price * quantity, f"{prefix}.subtotal_cents")
        _check_amount(unit_price * quantity + tax, f"{prefix}.total_cents")

        subtotal = coerce_cents(
            raw.get("subtotal_cents"), f"{prefix}.subtotal_cents",
            required=False, default=unit_price * quantity,
        )
        # Refunds price returned units at unit_price; the line must agree
        if subtotal != unit_price * quantity:
            raise SaleError(
                f"{prefix}.subtotal_cents must equal unit_price_cents x quantity",
                details={"index": index, "expected": unit_price * quantity, "got": subtotal},
            )
        total = coerce_cents(
            raw.get("total_cents"), f"{prefix}.total_cents",
            required=False, default=subtotal + tax,
        )
        if total != subtotal + tax:
            raise SaleError(
                f"{prefix}.total_cents must equal subtotal_cents + tax_cents",
                details={"index": index, "expected": subtotal + tax, "got": total},
            )

        parsed.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "subtotal_cents": subtotal,
            "tax_cents": tax,
            "total_cents": total,
        })
    return parsed


def _parse_header(header, items: list[dict]) -> dict:
    if not isinstance(header, dict):
        raise SaleError("Sale header must be an object")

    item_subtotal = sum(item["subtotal_cents"] for item in items)
    item_tax = sum(item["tax_cents"] for item in items)
    _check_amount(item_subtotal, "subtotal_cents")
    _check_amount(item_tax, "tax_cents")
    _check_amount(item_subtotal + item_tax, "total_cents")

    subtotal = coerce_cents(header.get("subtotal_cents"), "subtotal_cents", required=False, default=item_subtotal)
    tax = coerce_cents(header.get("tax_cents"), "tax_cents", required=False, default=item_tax)
    discount = coerce_cents(header.get("discount_cents"), "discount_cents", required=False)

    if subtotal != item_subtotal:
        raise SaleError(
            "subtotal_cents does not match the sum of item subtotals",
            details={"expected": item_subtotal, "got": subtotal},
        )
    if tax != item_tax:
        raise SaleError(
            "tax_cents does not match the sum of item tax",
            details={"expected": item_tax, "got": tax},
        )
    if discount > subtotal + tax:
        raise SaleError("discount_cents cannot exceed subtotal plus tax")

    expected_total = subtotal + tax - discount
    total = coerce_cents(header.get("total_cents"), "total_cents", required=False, default=expected_total)
    if total != expected_total:
        raise SaleError(
            "total_cents must equal subtotal_cents + tax_cents - discount_cents",
            details={"expected": expected_total, "got": total},
        )

    payment_method = coerce_choice(header.get("payment_method"), "payment_method", PAYMENT_METHODS)
    cash_received = coerce_cents(header.get("cash_received_cents"), "cash_received_cents", required=False, default=None)
    cash_change = coerce_cents(header.get("cash_change_cents"), "cash_change_cents", required=False, default=None)
    card_amount = coerce_cents(header.get("card_amount_cents"), "card_amount_cents", required=False, default=None)

    if payment_method == "CASH" and cash_received is not None:
        if cash_received < total:
            raise SaleError(
                "Cash received is less than the sale total",
                details={"total_cents": total, "cash_received_cents": cash_received},
            )
        if cash_change is None:
            cash_change = cash_received - total
    elif payment_method == "CARD" and card_amount is None:
        card_amount = total
    elif payment_method == "MIXED" and cash_received is not None and card_amount is not None:
        if cash_received + card_amount < total:
            raise SaleError(
                "Cash and card amounts do not cover the sale total",
                details={"total_cents": total, "paid_cents": cash_received + card_amount},
            )

    return {
        "subtotal_cents": subtotal,
        "tax_cents": tax,
        "discount_cents": discount,
        "total_cents": total,
        "payment_method": payment_method,
        "cash_received_cents": cash_received,
        "cash_change_cents": cash_change,
        "card_amount_cents": card_amount,
        "notes": coerce_text(header.get("notes"), "notes", max_length=MAX_NOTES_LENGTH),
        "customer_id": coerce_text(header.get("customer_id"), "customer_id", max_length=64),
    }


def _load_products(tenant_id: int, product_ids: set[int]) -> dict[int, Product]:
    products = (
        db.session.query(Product)
        .filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
        .all()
    )
    by_id = {p.id: p for p in products}

    missing = sorted(product_ids - set(by_id))
    if missing:
        raise SaleError(
            "Product not found",
            code="PRODUCT_NOT_FOUND",
            details={"product_ids": missing},
        )
    inactive = sorted(pid for pid, p in by_id.items() if not p.is_active)
    if inactive:
        raise SaleError(
            "Cannot sell inactive products",
            code="PRODUCT_INACTIVE",
            details={"product_ids": inactive},
        )
    return by_id


def commit_sale(*, tenant_id: int, operator_id: int | None, header: dict, items: list) -> Sale:
    """
    Record a completed sale with its items and decrement stock.

    Returns the committed Sale. Raises SaleError on validation, product or
    stock problems, and IdentifierError when no sale number is free.
    """
    try:
        parsed_items = _parse_items(items)
        values = _parse_header(header, parsed_items)
    except ValidationError as exc:
        raise SaleError(str(exc), details={"field": exc.field} if exc.field else None)

    allow_negative = bool(current_app.config.get("ALLOW_NEGATIVE_STOCK", False))

    def _op():
        begin_write()
        _load_products(tenant_id, {item["product_id"] for item in parsed_items})

        sale_number = next_sale_number()
        sale = Sale(
            tenant_id=tenant_id,
            sale_number=sale_number,
            operator_id=operator_id,
            created_at=utcnow(),
            **values,
        )
        db.session.add(sale)
        db.session.flush()

        short = []
        for item in parsed_items:
            db.session.add(SaleItem(sale_id=sale.id, **item))
            new_stock = apply_delta(
                tenant_id=tenant_id,
                product_id=item["product_id"],
                delta=-item["quantity"],
                movement_type="SALE",
                operator_id=operator_id,
                reference=sale_number,
            )
            if new_stock < 0 and not allow_negative:
                short.append({
                    "product_id": item["product_id"],
                    "requested_quantity": item["quantity"],
                    "resulting_stock": new_stock,
                })

        if short:
            raise SaleError(
                "Insufficient stock to complete sale",
                code="INSUFFICIENT_STOCK",
                details={"items": short},
            )

        db.session.commit()
        return sale

    # IntegrityError here is a sale number taken between probe and commit
    sale = run_with_retry(_op, retry_on=(IntegrityError,))
    current_app.logger.info(
        "Committed sale %s (tenant=%s, items=%s, total_cents=%s)",
        sale.sale_number, tenant_id, len(parsed_items), sale.total_cents,
    )
    return sale


def get_sale(tenant_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, tenant_id=tenant_id).first()
    if sale is None:
        raise SaleError(f"Sale {sale_id} not found", code="NOT_FOUND")
    return sale
