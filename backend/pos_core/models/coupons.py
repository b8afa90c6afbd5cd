from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import is_past, to_utc_z


DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


class Coupon(db.Model):
    """
    Discount coupon.

    discount_value is a whole percent for PERCENTAGE and cents for FIXED.
    Codes are stored upper-case. Only usage_count changes on redemption, and
    only through the guarded increment in coupon_service.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_coupons_code"),
        db.CheckConstraint("usage_count >= 0", name="ck_coupons_usage_non_negative"),
        db.CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_coupons_usage_within_limit",
        ),
        db.CheckConstraint("discount_value > 0", name="ck_coupons_value_positive"),
        db.Index("ix_coupons_active_expires", "is_active", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)  # PERCENTAGE, FIXED
    discount_value = db.Column(db.Integer, nullable=False)

    min_purchase_cents = db.Column(db.Integer, nullable=False, default=0)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    allow_multiple_use = db.Column(db.Boolean, nullable=False, default=False)

    # Optional binding to one client
    client_id = db.Column(db.Integer, nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_expired(self) -> bool:
        return is_past(self.expires_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "is_active": self.is_active,
            "is_expired": self.is_expired,
            "allow_multiple_use": self.allow_multiple_use,
            "client_id": self.client_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CouponUsage(db.Model):
    """Append-only record of one coupon redemption."""
    __tablename__ = "coupon_usages"
    __table_args__ = (
        db.Index("ix_coupon_usages_coupon_client", "coupon_id", "client_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    client_id = db.Column(db.Integer, nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    discount_cents = db.Column(db.Integer, nullable=False)
    used_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    coupon = db.relationship("Coupon", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "client_id": self.client_id,
            "sale_id": self.sale_id,
            "discount_cents": self.discount_cents,
            "used_by_user_id": self.used_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
