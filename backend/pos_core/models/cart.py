from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


REMOVAL_REMOVED = "REMOVED"
REMOVAL_CLEARED = "CLEARED"
REMOVAL_CHECKED_OUT = "CHECKED_OUT"


class CartLine(db.Model):
    """
    In-progress line item owned by one cashier/customer session.

    Lines are soft-removed (is_active=False + removal_reason) so the cart
    history stays auditable; CHECKED_OUT lines point at the sale they became.
    Only one active line may exist per (owner_id, product_id).
    """
    __tablename__ = "cart_lines"
    __table_args__ = (
        db.Index(
            "uq_cart_lines_active_owner_product",
            "owner_id",
            "product_id",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active = true"),
        ),
        db.Index("ix_cart_lines_owner_active", "owner_id", "is_active"),
        db.CheckConstraint("quantity > 0", name="ck_cart_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    # Price snapshot taken when the line was created
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    removal_reason = db.Column(db.String(16), nullable=True)  # REMOVED, CLEARED, CHECKED_OUT
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "is_active": self.is_active,
            "removal_reason": self.removal_reason,
            "removed_at": to_utc_z(self.removed_at) if self.removed_at else None,
            "sale_id": self.sale_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
