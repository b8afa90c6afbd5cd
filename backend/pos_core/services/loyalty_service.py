# Overview: Loyalty ledger; point accrual, redemption and manual adjustments.

from __future__ import annotations

from sqlalchemy import func, update

from ..extensions import db
from ..models import LoyaltyAccount, LoyaltyTransaction
from ..models.loyalty import LOYALTY_ADJUST, LOYALTY_EARN, LOYALTY_REDEEM
from pos_core.errors import InsufficientPoints, ValidationError
from pos_core.time_utils import utcnow
from pos_core.validation import require_positive_quantity
from .concurrency import run_atomic


# 1 point per 10 currency units (1000 cents)
POINTS_UNIT_CENTS = 1000


def points_for_total(total_cents: int) -> int:
    return max(total_cents, 0) // POINTS_UNIT_CENTS


# =============================================================================
# ACCOUNT HELPERS
# =============================================================================

def _get_or_create_account(client_id: int) -> LoyaltyAccount:
    account = db.session.query(LoyaltyAccount).filter_by(client_id=client_id).first()
    if account is None:
        account = LoyaltyAccount(
            client_id=client_id,
            points_balance=0,
            lifetime_points_earned=0,
            lifetime_points_redeemed=0,
        )
        db.session.add(account)
        db.session.flush()
    return account


def _apply_points_delta(account: LoyaltyAccount, delta: int) -> bool:
    """
    Single-statement balance change that never goes below zero.

    Returns False when the guard rejected the change.
    """
    db.session.flush()
    values = {"points_balance": LoyaltyAccount.points_balance + delta}
    if delta > 0:
        values["lifetime_points_earned"] = LoyaltyAccount.lifetime_points_earned + delta
    else:
        values["lifetime_points_redeemed"] = LoyaltyAccount.lifetime_points_redeemed - delta

    stmt = (
        update(LoyaltyAccount)
        .where(LoyaltyAccount.id == account.id, LoyaltyAccount.points_balance + delta >= 0)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.refresh(account)
    return result.rowcount == 1


def _record(
    account: LoyaltyAccount,
    transaction_type: str,
    points: int,
    *,
    sale_id: int | None = None,
    reason: str | None = None,
    user_id: int | None = None,
) -> LoyaltyTransaction:
    txn = LoyaltyTransaction(
        loyalty_account_id=account.id,
        transaction_type=transaction_type,
        points=points,
        balance_after=account.points_balance,
        sale_id=sale_id,
        reason=reason,
        user_id=user_id,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    return txn


# =============================================================================
# OPERATIONS
# =============================================================================

def accrue_points(client_id: int, total_cents: int, sale_id: int, user_id: int | None = None) -> int:
    """
    Credit points for a completed sale. Caller owns the transaction.

    Returns the number of points earned (0 for totals below one unit).
    """
    points = points_for_total(total_cents)
    if points == 0:
        return 0

    account = _get_or_create_account(client_id)
    _apply_points_delta(account, points)
    _record(
        account,
        LOYALTY_EARN,
        points,
        sale_id=sale_id,
        reason=f"Points earned on sale {sale_id}",
        user_id=user_id,
    )
    db.session.flush()
    return points


def redeem_points(client_id: int, points: int, reason: str, user_id: int | None = None) -> LoyaltyAccount:
    """Spend points. InsufficientPoints if the balance would go below zero."""
    require_positive_quantity(points, "points")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op() -> LoyaltyAccount:
        account = db.session.query(LoyaltyAccount).filter_by(client_id=client_id).first()
        available = account.points_balance if account else 0
        if account is None or not _apply_points_delta(account, -points):
            raise InsufficientPoints(
                f"Insufficient points: requested {points}, available {available}",
                {"client_id": client_id, "requested": points, "available": available},
            )
        _record(account, LOYALTY_REDEEM, -points, reason=reason.strip(), user_id=user_id)
        return account

    return run_atomic(_op)


def adjust_points(client_id: int, points: int, reason: str, user_id: int) -> LoyaltyAccount:
    """
    Manager grant (positive) or deduction (negative).

    Deductions below zero are rejected, never clamped.
    """
    if isinstance(points, bool) or not isinstance(points, int) or points == 0:
        raise ValidationError("points must be a non-zero integer")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op() -> LoyaltyAccount:
        account = _get_or_create_account(client_id)
        available = account.points_balance
        if not _apply_points_delta(account, points):
            raise InsufficientPoints(
                f"Adjustment would make the balance negative (available {available})",
                {"client_id": client_id, "requested": points, "available": available},
            )
        _record(account, LOYALTY_ADJUST, points, reason=reason.strip(), user_id=user_id)
        return account

    return run_atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_account(client_id: int) -> dict:
    """Balance view. Clients without an account read as zero points."""
    account = db.session.query(LoyaltyAccount).filter_by(client_id=client_id).first()
    if account is None:
        return {
            "client_id": client_id,
            "points_balance": 0,
            "lifetime_points_earned": 0,
            "lifetime_points_redeemed": 0,
        }
    return account.to_dict()


def list_transactions(client_id: int, *, limit: int = 100) -> list[LoyaltyTransaction]:
    return (
        db.session.query(LoyaltyTransaction)
        .join(LoyaltyAccount, LoyaltyAccount.id == LoyaltyTransaction.loyalty_account_id)
        .filter(LoyaltyAccount.client_id == client_id)
        .order_by(LoyaltyTransaction.occurred_at.desc(), LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )


def get_reward_stats(client_id: int) -> dict:
    account = get_account(client_id)
    rows = (
        db.session.query(
            LoyaltyTransaction.transaction_type,
            func.count(LoyaltyTransaction.id),
            func.coalesce(func.sum(LoyaltyTransaction.points), 0),
        )
        .join(LoyaltyAccount, LoyaltyAccount.id == LoyaltyTransaction.loyalty_account_id)
        .filter(LoyaltyAccount.client_id == client_id)
        .group_by(LoyaltyTransaction.transaction_type)
        .all()
    )
    by_type = {
        txn_type: {"count": int(count), "points": int(points)}
        for txn_type, count, points in rows
    }
    return {
        "client_id": client_id,
        "current_points": account["points_balance"],
        "total_earned": account["lifetime_points_earned"],
        "total_redeemed": account["lifetime_points_redeemed"],
        "by_type": by_type,
    }
