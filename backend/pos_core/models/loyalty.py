from __future__ import annotations

from ..extensions import db
from pos_core.time_utils import to_utc_z


LOYALTY_EARN = "EARN"
LOYALTY_REDEEM = "REDEEM"
LOYALTY_ADJUST = "ADJUST"


class LoyaltyAccount(db.Model):
    """
    Loyalty points account for a client. One account per client.

    Balance changes go through single-statement guarded updates in
    loyalty_service, so the row carries no optimistic version column.
    """
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("client_id", name="uq_loyalty_accounts_client"),
        db.CheckConstraint("points_balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=False)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_points_redeemed = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "points_balance": self.points_balance,
            "lifetime_points_earned": self.lifetime_points_earned,
            "lifetime_points_redeemed": self.lifetime_points_redeemed,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of point events.

    TRANSACTION TYPES:
    - EARN: Points accrued from a sale
    - REDEEM: Points spent by the client
    - ADJUST: Manual grant/deduction by a manager

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_account_occurred", "loyalty_account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    loyalty_account_id = db.Column(db.Integer, db.ForeignKey("loyalty_accounts.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # EARN, REDEEM, ADJUST
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem
    balance_after = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    loyalty_account = db.relationship("LoyaltyAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "loyalty_account_id": self.loyalty_account_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
