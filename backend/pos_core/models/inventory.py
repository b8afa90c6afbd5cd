from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


MOVEMENT_SALE = "SALE"
MOVEMENT_REFUND = "REFUND"
MOVEMENT_MANUAL = "MANUAL"
MOVEMENT_TYPES = (MOVEMENT_SALE, MOVEMENT_REFUND, MOVEMENT_MANUAL)

ALERT_LOW_STOCK = "LOW_STOCK"


class Product(db.Model):
    """
    Product master data plus the stock counter owned by the inventory ledger.

    The catalog collaborator owns name/price/active; this engine only ever
    writes stock_quantity, and only through inventory_service.

    Products are never hard-deleted while a sale or refund line references
    them; deactivate with is_active=False instead.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_active_stock", "is_active", "stock_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity == 0

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity < self.min_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "min_stock": self.min_stock,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit of every stock change.

    IMMUTABLE: rows are written in the same transaction as the stock update
    they describe and are never updated or deleted.
    reference_id points at the sale (SALE), the refund (REFUND) or nothing (MANUAL).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_type_reference", "movement_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False)  # SALE, REFUND, MANUAL
    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StockAlert(db.Model):
    """
    Open low-stock condition for a product.

    At most one unresolved alert per (product, alert_type); the partial unique
    index makes a duplicate insert fail even under concurrent writers.
    Out-of-stock is derived from Product.stock_quantity, never stored here.
    """
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.Index(
            "uq_stock_alerts_open_per_type",
            "product_id",
            "alert_type",
            unique=True,
            sqlite_where=db.text("is_resolved = 0"),
            postgresql_where=db.text("is_resolved = false"),
        ),
        db.Index("ix_stock_alerts_resolved_created", "is_resolved", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    alert_type = db.Column(db.String(32), nullable=False, default=ALERT_LOW_STOCK)
    message = db.Column(db.String(255), nullable=True)

    is_resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, nullable=True)
    resolution_note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_alerts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "alert_type": self.alert_type,
            "message": self.message,
            "is_resolved": self.is_resolved,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "resolved_by_user_id": self.resolved_by_user_id,
            "resolution_note": self.resolution_note,
            "created_at": to_utc_z(self.created_at),
        }
