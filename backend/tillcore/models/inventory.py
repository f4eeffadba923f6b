from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


MOVEMENT_TYPES = ("SALE", "REFUND", "REFILL", "ADJUSTMENT")

DEFAULT_LOW_STOCK_THRESHOLD = 10


class Product(db.Model):
    """
    Tenant-scoped catalog entry.

    SKU DESIGN:
    - sku keeps the spelling the tenant typed; sku_normalized (trimmed,
      lower-cased) carries the uniqueness constraint, so "ABC" and "abc"
      are the same SKU.
    - barcode is unique across the whole store, not per tenant.
    - name is unique per tenant.

    STOCK:
    - stock_level is only ever changed through inventory_service.apply_delta,
      which appends a StockMovement in the same transaction.
    - Products are never hard-deleted; is_active=False is a soft delete that
      the product import can reverse.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku_normalized", name="uq_products_tenant_sku"),
        db.UniqueConstraint("tenant_id", "name", name="uq_products_tenant_name"),
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    sku_normalized = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Soft reference to ProductCategory.name (no FK; see category_service)
    category = db.Column(db.String(100), nullable=True, index=True)
    image_url = db.Column(db.String(1024), nullable=True)

    cost_price_cents = db.Column(db.Integer, nullable=True)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    stock_level = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_LOW_STOCK_THRESHOLD)

    taxable = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} tenant_id={self.tenant_id}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock_level <= self.low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "image_url": self.image_url,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "stock_level": self.stock_level,
            "low_stock_threshold": self.low_stock_threshold,
            "taxable": self.taxable,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductCategory(db.Model):
    """
    Tenant-scoped category label.

    Products reference categories by name only. Deleting or deactivating a
    category never touches products; the table is advisory metadata that
    the product import fills in lazily.
    """
    __tablename__ = "product_categories"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_product_categories_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit record of one stock change.

    INVARIANTS:
    - new_stock = previous_stock + quantity_delta (enforced by a CHECK)
    - Replaying a product's movements in id order from zero reproduces its
      current stock_level.
    - Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("new_stock = previous_stock + quantity_delta", name="ck_stock_movements_chain"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # SALE, REFUND, REFILL, ADJUSTMENT

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    operator_id = db.Column(db.Integer, nullable=True, index=True)
    reference = db.Column(db.String(64), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "operator_id": self.operator_id,
            "reference": self.reference,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
