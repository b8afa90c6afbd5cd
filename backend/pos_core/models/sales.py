from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


SALE_COMPLETED = "COMPLETED"
SALE_REFUNDED = "REFUNDED"

PAYMENT_METHODS = ("CASH", "CARD", "CHECK", "GIFT_CARD", "STORE_CREDIT")


class Sale(db.Model):
    """
    Finalized sale document.

    A Sale only exists once checkout committed: there is no DRAFT state here,
    the cart plays that role. After creation only status (-> REFUNDED) and
    refunded_at change, and only from the refund orchestrator.

    The money identity is enforced by the database as well as by the service:
        total = subtotal - discount + tax
        change = tendered - total >= 0
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_sales_document_number"),
        db.CheckConstraint(
            "total_cents = subtotal_cents - discount_cents + tax_cents",
            name="ck_sales_total_identity",
        ),
        db.CheckConstraint(
            "discount_cents >= 0 AND discount_cents <= subtotal_cents",
            name="ck_sales_discount_bounds",
        ),
        db.CheckConstraint("tax_cents >= 0", name="ck_sales_tax_non_negative"),
        db.CheckConstraint(
            "change_cents = tendered_cents - total_cents AND change_cents >= 0",
            name="ck_sales_change_identity",
        ),
        # Composite index for status/date listings (receipts, reporting)
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "S-000123")
    document_number = db.Column(db.String(64), nullable=False)

    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    client_id = db.Column(db.Integer, nullable=True, index=True)
    store_id = db.Column(db.Integer, nullable=True, index=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    tendered_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False)  # CASH, CARD, CHECK, GIFT_CARD, STORE_CREDIT
    coupon_code = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "cashier_id": self.cashier_id,
            "client_id": self.client_id,
            "store_id": self.store_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tendered_cents": self.tendered_cents,
            "change_cents": self.change_cents,
            "payment_method": self.payment_method,
            "coupon_code": self.coupon_code,
            "notes": self.notes,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
        }


class SaleLine(db.Model):
    """Immutable sale line. One line per product per sale."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_lines_sale_product"),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint(
            "line_total_cents = quantity * unit_price_cents",
            name="ck_sale_lines_total_identity",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
