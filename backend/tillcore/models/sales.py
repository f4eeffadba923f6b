from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


PAYMENT_METHODS = ("CASH", "CARD", "MIXED")

REFUND_STATUS_NONE = "NONE"
REFUND_STATUS_PARTIAL = "PARTIAL"
REFUND_STATUS_FULL = "FULL"


class Sale(db.Model):
    """
    One completed sale.

    Created once, together with its items and SALE stock movements, by
    sales_service.commit_sale. Afterwards only total_refunded_cents and
    refund_status change, and only through refund_service.

    Refund status moves NONE -> PARTIAL -> FULL; total_refunded_cents never
    decreases.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.CheckConstraint("total_refunded_cents >= 0", name="ck_sales_refunded_non_negative"),
        db.Index("ix_sales_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # Human-readable number (e.g., "SALE-20261019-0001")
    sale_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED")

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, index=True)  # CASH, CARD, MIXED
    cash_received_cents = db.Column(db.Integer, nullable=True)
    cash_change_cents = db.Column(db.Integer, nullable=True)
    card_amount_cents = db.Column(db.Integer, nullable=True)

    # Running refund accumulator
    total_refunded_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_status = db.Column(db.String(16), nullable=False, default=REFUND_STATUS_NONE, index=True)

    notes = db.Column(db.String(500), nullable=True)
    customer_id = db.Column(db.String(64), nullable=True)
    operator_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_refundable_cents(self) -> int:
        return self.total_cents - self.total_refunded_cents

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_number": self.sale_number,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "cash_received_cents": self.cash_received_cents,
            "cash_change_cents": self.cash_change_cents,
            "card_amount_cents": self.card_amount_cents,
            "total_refunded_cents": self.total_refunded_cents,
            "refund_status": self.refund_status,
            "notes": self.notes,
            "customer_id": self.customer_id,
            "operator_id": self.operator_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale.

    quantity_refunded is the only column that changes after creation and
    never exceeds quantity.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint(
            "quantity_refunded >= 0 AND quantity_refunded <= quantity",
            name="ck_sale_items_refunded_bounded",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    quantity_refunded = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - self.quantity_refunded

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "quantity_refunded": self.quantity_refunded,
            "created_at": to_utc_z(self.created_at),
        }
