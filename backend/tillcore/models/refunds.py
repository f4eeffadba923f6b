from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Refund(db.Model):
    """
    One refund transaction against exactly one sale.

    refund_type records the sale's refund status after this refund was
    applied (PARTIAL or FULL). Refunds are created once, with their items,
    in the same transaction that updates the sale and its sale items.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("refund_number", name="uq_refunds_refund_number"),
        db.Index("ix_refunds_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Human-readable number (e.g., "REF-20261019-0001")
    refund_number = db.Column(db.String(64), nullable=False)
    refund_type = db.Column(db.String(16), nullable=False)  # PARTIAL, FULL
    status = db.Column(db.String(16), nullable=False, default="COMPLETED")

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(500), nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    # False when the goods were discarded instead of returned to stock
    restocked = db.Column(db.Boolean, nullable=False, default=True)

    operator_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("refunds", lazy=True))

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sale_id": self.sale_id,
            "sale_number": self.sale.sale_number if self.sale else None,
            "refund_number": self.refund_number,
            "refund_type": self.refund_type,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "reason": self.reason,
            "notes": self.notes,
            "restocked": self.restocked,
            "operator_id": self.operator_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class RefundItem(db.Model):
    """One refunded line, pointing back at the sale item it reduces."""
    __tablename__ = "refund_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_refund_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    refund = db.relationship("Refund", backref=db.backref("items", lazy=True, order_by="RefundItem.id"))
    sale_item = db.relationship("SaleItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_id": self.refund_id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }
