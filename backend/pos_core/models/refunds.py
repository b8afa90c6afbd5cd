from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


REFUND_FULL = "FULL"
REFUND_PARTIAL = "PARTIAL"
REFUND_TYPES = (REFUND_FULL, REFUND_PARTIAL)

REFUND_COMPLETED = "COMPLETED"
REFUND_CANCELLED = "CANCELLED"


class Refund(db.Model):
    """
    Refund document against one original sale.

    IMMUTABLE after completion. Only COMPLETED refunds count towards the
    already-refunded quantity of a sale line; CANCELLED is kept for legacy
    rows and is never produced by refund_service.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_refunds_document_number"),
        db.Index("ix_refunds_sale_status", "original_sale_id", "status"),
        db.CheckConstraint("total_cents >= 0", name="ck_refunds_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "RF-000042")
    document_number = db.Column(db.String(64), nullable=False)

    original_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    refund_type = db.Column(db.String(16), nullable=False)  # FULL, PARTIAL
    reason = db.Column(db.Text, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=REFUND_COMPLETED, index=True)

    processed_by_user_id = db.Column(db.Integer, nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    original_sale = db.relationship("Sale", backref=db.backref("refunds", lazy=True))
    lines = db.relationship(
        "RefundLine",
        backref="refund",
        lazy=True,
        order_by="RefundLine.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "original_sale_id": self.original_sale_id,
            "original_sale_number": self.original_sale.document_number if self.original_sale else None,
            "refund_type": self.refund_type,
            "reason": self.reason,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "status": self.status,
            "processed_by_user_id": self.processed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }


class RefundLine(db.Model):
    """
    Refunded quantity of one sale line.

    CRITICAL: for each (sale, product) the sum of quantity over COMPLETED
    refunds never exceeds SaleLine.quantity.
    """
    __tablename__ = "refund_lines"
    __table_args__ = (
        db.UniqueConstraint("refund_id", "product_id", name="uq_refund_lines_refund_product"),
        db.CheckConstraint("quantity > 0", name="ck_refund_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)

    # Original unit price from the sale line
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale_line = db.relationship("SaleLine", backref=db.backref("refund_lines", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_id": self.refund_id,
            "sale_line_id": self.sale_line_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
