# Overview: Bulk product import; dedups, matches and merges externally authored rows.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import httpx
from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..storage import get_object_store
from ..time_utils import utcnow
from ..validation import ValidationError
from .category_service import ensure_categories
from .concurrency import begin_write, lock_for_update, run_with_retry
from .image_service import ImageJob, rehost_images
from .import_schemas import ProductImportSchema, is_fetchable_url
from .inventory_service import InventoryError, apply_delta
"""
Import Reconciler

PASSES:
1. Pre-pass (whole batch, fail fast): size cap, then duplicate SKUs and
   duplicate names after trimming and case folding.
2. Lookup pass: one query each for existing products by SKU (tenant),
   barcode (store-wide) and name (tenant).
3. Category pass: missing category names are created.
4. Image pass: external images are re-hosted, bounded and non-fatal.
5. Row pass: each row is validated and written in its own transaction.

ROW OUTCOMES:
- no product with the SKU        -> create; stock enters as a REFILL movement
- active product with the SKU    -> merge; imported stock is ADDED (REFILL)
- inactive product with the SKU  -> reactivate; stock is RESET (ADJUSTMENT)

The lookup snapshot can go stale under concurrent imports. Uniqueness
constraints on (tenant, sku), (tenant, name) and barcode are the backstop:
a violation fails that row, it never overwrites another product.
"""


IMPORT_REFERENCE = "IMPORT"

OUTCOME_CREATED = "created"
OUTCOME_MERGED = "merged"
OUTCOME_REACTIVATED = "reactivated"


class ProductImportError(Exception):
    """Raised when a whole import batch is rejected."""

    def __init__(self, message: str, code: str = "VALIDATION", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class RowRejected(Exception):
    """One row cannot be imported; the batch carries on."""


@dataclass
class ImportLookups:
    """Snapshot of existing products taken once per batch."""
    product_by_sku: dict[str, int] = field(default_factory=dict)
    barcode_owner: dict[str, tuple[int, str]] = field(default_factory=dict)
    name_owner: dict[str, str] = field(default_factory=dict)


def _batch_duplicates(normalized: list[dict[str, Any]], key: str, label: str) -> list[dict[str, Any]]:
    rows_by_key: dict[str, list[int]] = defaultdict(list)
    for row_number, row in enumerate(normalized, start=1):
        if row.get(key):
            rows_by_key[row[key]].append(row_number)

    return [
        {
            "key": k,
            "rows": row_numbers,
            "values": [normalized[n - 1][label] for n in row_numbers],
        }
        for k, row_numbers in rows_by_key.items()
        if len(row_numbers) > 1
    ]


def _check_batch(rows: Any, normalized: list[dict[str, Any]] | None = None) -> None:
    max_rows = int(current_app.config.get("IMPORT_MAX_ROWS", 500))
    if not isinstance(rows, list) or not rows:
        raise ProductImportError("No products provided", code="EMPTY_BATCH")
    if len(rows) > max_rows:
        raise ProductImportError(
            f"Import is limited to {max_rows} rows per batch",
            code="BATCH_TOO_LARGE",
            details={"row_count": len(rows), "max_rows": max_rows},
        )
    if normalized is None:
        return

    duplicate_skus = _batch_duplicates(normalized, "sku_key", "sku")
    if duplicate_skus:
        raise ProductImportError(
            "Duplicate SKUs in import batch",
            code="DUPLICATE_SKU",
            details={"duplicates": duplicate_skus},
        )
    duplicate_names = _batch_duplicates(normalized, "name_key", "name")
    if duplicate_names:
        raise ProductImportError(
            "Duplicate product names in import batch",
            code="DUPLICATE_NAME",
            details={"duplicates": duplicate_names},
        )


def _load_lookups(tenant_id: int, normalized: list[dict[str, Any]]) -> ImportLookups:
    sku_keys = {r["sku_key"] for r in normalized if r.get("sku_key")}
    barcodes = {r["barcode"] for r in normalized if r.get("barcode")}
    name_keys = {r["name_key"] for r in normalized if r.get("name_key")}

    lookups = ImportLookups()
    if sku_keys:
        for product in (
            db.session.query(Product)
            .filter(Product.tenant_id == tenant_id, Product.sku_normalized.in_(sku_keys))
            .all()
        ):
            lookups.product_by_sku[product.sku_normalized] = product.id
    if barcodes:
        # Barcodes are global, not tenant-scoped
        for product in db.session.query(Product).filter(Product.barcode.in_(barcodes)).all():
            lookups.barcode_owner[product.barcode] = (product.tenant_id, product.sku_normalized)
    if name_keys:
        for product in (
            db.session.query(Product)
            .filter(Product.tenant_id == tenant_id, func.lower(Product.name).in_(name_keys))
            .all()
        ):
            lookups.name_owner[product.name.strip().lower()] = product.sku_normalized
    return lookups


def _check_collisions(tenant_id: int, values: dict[str, Any], lookups: ImportLookups) -> None:
    barcode = values.get("barcode")
    if barcode:
        owner = lookups.barcode_owner.get(barcode)
        if owner is not None and owner != (tenant_id, values["sku_key"]):
            raise RowRejected(f"Barcode {barcode} is already used by another product")

    owner_sku = lookups.name_owner.get(values["name_key"])
    if owner_sku is not None and owner_sku != values["sku_key"]:
        raise RowRejected(f"Product name '{values['name']}' is already used by SKU {owner_sku}")


def _apply_descriptive_fields(product: Product, values: dict[str, Any]) -> None:
    # Required fields always overwrite; optional ones only when the row has them
    product.name = values["name"]
    product.selling_price_cents = values["selling_price_cents"]
    for attr in ("barcode", "category", "description", "image_url", "cost_price_cents",
                 "low_stock_threshold", "taxable"):
        if values.get(attr) is not None:
            setattr(product, attr, values[attr])


def _reconcile_row(
    *,
    tenant_id: int,
    operator_id: int | None,
    values: dict[str, Any],
    lookups: ImportLookups,
    schema: ProductImportSchema,
) -> tuple[str, Product]:
    begin_write()
    _check_collisions(tenant_id, values, lookups)

    quantity = values["stock"]
    product_id = lookups.product_by_sku.get(values["sku_key"])
    product = None
    if product_id is not None:
        product = (
            lock_for_update(db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id))
            .populate_existing()
            .first()
        )

    if product is None:
        product = Product(
            tenant_id=tenant_id,
            sku=values["sku"],
            sku_normalized=values["sku_key"],
            barcode=values["barcode"],
            name=values["name"],
            description=values["description"],
            category=values["category"],
            image_url=values["image_url"],
            cost_price_cents=values["cost_price_cents"],
            selling_price_cents=values["selling_price_cents"],
            stock_level=0,
            is_active=True,
            created_at=utcnow(),
            **schema.creation_defaults(values),
        )
        db.session.add(product)
        db.session.flush()
        if quantity:
            apply_delta(
                tenant_id=tenant_id,
                product_id=product.id,
                delta=quantity,
                movement_type="REFILL",
                operator_id=operator_id,
                reference=IMPORT_REFERENCE,
                reason="Product import: initial stock",
            )
        outcome = OUTCOME_CREATED

    elif product.is_active:
        _apply_descriptive_fields(product, values)
        if quantity:
            apply_delta(
                tenant_id=tenant_id,
                product_id=product.id,
                delta=quantity,
                movement_type="REFILL",
                operator_id=operator_id,
                reference=IMPORT_REFERENCE,
                reason="Product import: restock",
            )
        outcome = OUTCOME_MERGED

    else:
        # Re-listing: imported quantity replaces whatever was left
        delta = quantity - product.stock_level
        product.is_active = True
        _apply_descriptive_fields(product, values)
        if delta:
            apply_delta(
                tenant_id=tenant_id,
                product_id=product.id,
                delta=delta,
                movement_type="ADJUSTMENT",
                operator_id=operator_id,
                reference=IMPORT_REFERENCE,
                reason="Product import: reactivated, stock reset",
            )
        outcome = OUTCOME_REACTIVATED

    db.session.commit()
    return outcome, product


def _remember(lookups: ImportLookups, tenant_id: int, product: Product, values: dict[str, Any]) -> None:
    sku_normalized = product.sku_normalized
    lookups.product_by_sku[sku_normalized] = product.id
    for key in [k for k, owner in lookups.name_owner.items() if owner == sku_normalized]:
        del lookups.name_owner[key]
    lookups.name_owner[product.name.strip().lower()] = sku_normalized
    owner = (tenant_id, sku_normalized)
    for barcode in [b for b, o in lookups.barcode_owner.items() if o == owner and b != product.barcode]:
        del lookups.barcode_owner[barcode]
    if product.barcode:
        lookups.barcode_owner[product.barcode] = owner


def _image_jobs(parsed: list[tuple[dict[str, Any], list[str]]]) -> list[ImageJob]:
    return [
        ImageJob(row=row_number, url=values["image_url"])
        for row_number, (values, errors) in enumerate(parsed, start=1)
        if not errors and is_fetchable_url(values.get("image_url"))
    ]


def reconcile_import(
    *,
    tenant_id: int,
    operator_id: int | None,
    rows: list,
    object_store=None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """
    Import a batch of product rows.

    Raises ProductImportError only when the whole batch is rejected (empty,
    too large, duplicate SKUs or names). Every other problem is reported per
    row in the result and does not stop the batch.
    """
    _check_batch(rows)
    schema = ProductImportSchema()
    normalized = [schema.normalize_row(row) for row in rows]
    _check_batch(rows, normalized)

    lookups = _load_lookups(tenant_id, normalized)
    # End the read transaction before the slow image pass
    db.session.rollback()

    categories_created = ensure_categories(tenant_id, (r.get("category") for r in normalized))

    parsed = [schema.coerce_row(row) for row in normalized]

    config = current_app.config
    store = object_store if object_store is not None else get_object_store()
    rehosted = rehost_images(
        _image_jobs(parsed),
        store=store,
        tenant_id=tenant_id,
        concurrency=int(config.get("IMPORT_IMAGE_CONCURRENCY", 5)),
        timeout=float(config.get("IMPORT_IMAGE_TIMEOUT_SECONDS", 10)),
        max_bytes=int(config.get("IMPORT_IMAGE_MAX_BYTES", 5 * 1024 * 1024)),
        prefix=config.get("IMPORT_IMAGE_PREFIX", "products"),
        transport=http_transport,
    )

    result: dict[str, Any] = {
        "success_count": 0,
        "failed_count": 0,
        "errors": [],
        OUTCOME_CREATED: 0,
        OUTCOME_MERGED: 0,
        OUTCOME_REACTIVATED: 0,
        "categories_created": categories_created,
        "images_rehosted": len(rehosted),
    }

    def fail(row_number: int, values: dict[str, Any], message: str) -> None:
        result["failed_count"] += 1
        result["errors"].append({
            "row": row_number,
            "error": message,
            "sku": values.get("sku"),
            "name": values.get("name"),
        })

    for row_number, (values, errors) in enumerate(parsed, start=1):
        if not isinstance(rows[row_number - 1], dict):
            fail(row_number, values, "Row must be an object")
            continue
        if errors:
            fail(row_number, values, "; ".join(errors))
            continue
        if row_number in rehosted:
            values["image_url"] = rehosted[row_number]

        try:
            outcome, product = run_with_retry(
                lambda: _reconcile_row(
                    tenant_id=tenant_id,
                    operator_id=operator_id,
                    values=values,
                    lookups=lookups,
                    schema=schema,
                )
            )
        except RowRejected as exc:
            fail(row_number, values, str(exc))
            continue
        except (ValidationError, InventoryError) as exc:
            fail(row_number, values, str(exc))
            continue
        except IntegrityError:
            fail(row_number, values, "Conflicting concurrent write (SKU, name or barcode already taken)")
            continue

        _remember(lookups, tenant_id, product, values)
        result["success_count"] += 1
        result[outcome] += 1

    current_app.logger.info(
        "Product import for tenant %s: %s succeeded, %s failed "
        "(created=%s, merged=%s, reactivated=%s, categories=%s, images=%s)",
        tenant_id, result["success_count"], result["failed_count"],
        result[OUTCOME_CREATED], result[OUTCOME_MERGED], result[OUTCOME_REACTIVATED],
        categories_created, result["images_rehosted"],
    )
    return result
