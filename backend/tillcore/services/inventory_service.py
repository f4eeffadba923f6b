# Overview: Inventory ledger; the single path by which stock levels change.

from __future__ import annotations

from sqlalchemy import func, update

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_TYPES
from ..time_utils import utcnow
from ..validation import ValidationError, coerce_int, coerce_text
from .concurrency import begin_write, run_with_retry
"""
Inventory Ledger Invariants (authoritative)

- Product.stock_level changes only through apply_delta().
- apply_delta() performs ONE atomic UPDATE ... SET stock_level = stock_level + delta
  ... RETURNING stock_level. There is no read-then-write window in which a
  concurrent caller could observe or overwrite a stale level.
- Every change appends exactly one StockMovement in the same transaction,
  with previous_stock derived as new_stock - delta (never re-read).
- Replaying a product's movements from zero reproduces stock_level.
- The ledger does not refuse negative results; callers decide (the sale
  committer refuses unless ALLOW_NEGATIVE_STOCK is set).
"""


MANUAL_MOVEMENT_TYPES = ("REFILL", "ADJUSTMENT")

HISTORY_LIMIT = 100


class InventoryError(Exception):
    """Raised for inventory ledger errors."""

    def __init__(self, message: str, code: str = "VALIDATION", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


def _expire_cached_product(product_id: int) -> None:
    # The UPDATE bypasses the ORM; drop any loaded copy so the next access
    # sees the new stock_level and version_id.
    session = db.session()
    key = session.identity_key(Product, product_id)
    cached = session.identity_map.get(key)
    if cached is not None:
        session.expire(cached)


def _apply_delta(
    *,
    tenant_id: int,
    product_id: int,
    delta: int,
    movement_type: str,
    operator_id: int | None = None,
    reference: str | None = None,
    reason: str | None = None,
) -> StockMovement:
    if movement_type not in MOVEMENT_TYPES:
        raise InventoryError(f"Unknown movement type: {movement_type}")
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InventoryError("delta must be an integer")

    # Pending ORM changes must reach the row before the raw UPDATE does
    db.session.flush()

    products = Product.__table__
    stmt = (
        update(products)
        .where(products.c.id == product_id, products.c.tenant_id == tenant_id)
        .values(
            stock_level=products.c.stock_level + delta,
            version_id=products.c.version_id + 1,
            updated_at=utcnow(),
        )
        .returning(products.c.stock_level)
    )
    new_stock = db.session.execute(stmt).scalar_one_or_none()
    if new_stock is None:
        raise InventoryError(
            f"Product {product_id} not found",
            code="PRODUCT_NOT_FOUND",
            details={"product_id": product_id},
        )

    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product_id,
        type=movement_type,
        quantity_delta=delta,
        previous_stock=new_stock - delta,
        new_stock=new_stock,
        operator_id=operator_id,
        reference=reference,
        reason=reason[:255] if reason else None,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()

    _expire_cached_product(product_id)
    return movement


def apply_delta(
    *,
    tenant_id: int,
    product_id: int,
    delta: int,
    movement_type: str,
    operator_id: int | None = None,
    reference: str | None = None,
    reason: str | None = None,
) -> int:
    """
    Atomically add delta to a product's stock and append its movement.

    Runs inside the caller's transaction and does not commit. Returns the
    resulting stock level.
    """
    movement = _apply_delta(
        tenant_id=tenant_id,
        product_id=product_id,
        delta=delta,
        movement_type=movement_type,
        operator_id=operator_id,
        reference=reference,
        reason=reason,
    )
    return movement.new_stock


def record_stock_movement(
    *,
    tenant_id: int,
    product_id: int,
    delta,
    movement_type: str,
    operator_id: int | None = None,
    reference: str | None = None,
    reason: str | None = None,
) -> StockMovement:
    """
    Manual restock (REFILL) or correction (ADJUSTMENT), committed on its own.

    Unlike a sale, a manual adjustment may not leave stock negative.
    """
    try:
        delta = coerce_int(delta, "quantity")
        reference = coerce_text(reference, "reference", max_length=64)
        reason = coerce_text(reason, "reason", max_length=255)
    except ValidationError as exc:
        raise InventoryError(str(exc))
    if movement_type not in MANUAL_MOVEMENT_TYPES:
        raise InventoryError(f"movement type must be one of: {', '.join(MANUAL_MOVEMENT_TYPES)}")
    if delta == 0:
        raise InventoryError("quantity must not be zero")

    def _op():
        begin_write()
        movement = _apply_delta(
            tenant_id=tenant_id,
            product_id=product_id,
            delta=delta,
            movement_type=movement_type,
            operator_id=operator_id,
            reference=reference,
            reason=reason,
        )
        if movement.new_stock < 0:
            raise InventoryError(
                "Adjustment would leave stock negative",
                code="INSUFFICIENT_STOCK",
                details={"product_id": product_id, "resulting_stock": movement.new_stock},
            )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def get_product(tenant_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise InventoryError(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")
    return product


def get_stock_history(tenant_id: int, product_id: int, limit: int = HISTORY_LIMIT) -> list[StockMovement]:
    """Most recent movements first."""
    get_product(tenant_id, product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(tenant_id=tenant_id, product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def replay_stock(product_id: int) -> int:
    """Stock level reconstructed from zero by summing every movement."""
    total = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def find_stock_drift(tenant_id: int | None = None) -> list[dict]:
    """
    Products whose stored stock_level disagrees with their movement history.

    An empty list means every product satisfies the conservation invariant.
    """
    replayed = (
        db.session.query(
            StockMovement.product_id.label("product_id"),
            func.sum(StockMovement.quantity_delta).label("replayed"),
        )
        .group_by(StockMovement.product_id)
        .subquery()
    )
    q = (
        db.session.query(Product, func.coalesce(replayed.c.replayed, 0))
        .outerjoin(replayed, replayed.c.product_id == Product.id)
    )
    if tenant_id is not None:
        q = q.filter(Product.tenant_id == tenant_id)

    drift = []
    for product, replayed_level in q.order_by(Product.id).all():
        if int(replayed_level) != product.stock_level:
            drift.append({
                "product_id": product.id,
                "tenant_id": product.tenant_id,
                "sku": product.sku,
                "stock_level": product.stock_level,
                "replayed_stock": int(replayed_level),
            })
    return drift
