# Overview: Coupon authority; validation, redemption and coupon management.

"""
Coupon Authority

validate_coupon() is read-only and reports EVERY failed rule at once so the
cashier can show all of them. redeem_coupon() is the only writer of
usage_count and runs inside the checkout transaction:

    UPDATE coupons SET usage_count = usage_count + 1
     WHERE id = :id AND (usage_limit IS NULL OR usage_count < usage_limit)

so the usage limit holds even when two checkouts race for the last use.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, or_, update

from ..extensions import db
from ..models import Coupon, CouponUsage
from ..models.coupons import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, DISCOUNT_TYPES
from pos_core.errors import CouponConflict, CouponNotFound, InvalidCoupon, ValidationError
from pos_core.time_utils import is_past, to_utc_naive, utcnow
from pos_core.validation import MAX_AMOUNT_CENTS
from .concurrency import lock_for_update, run_atomic


# =============================================================================
# VIOLATION RULES
# =============================================================================

RULE_NOT_FOUND = "NOT_FOUND"
RULE_INACTIVE = "INACTIVE"
RULE_EXPIRED = "EXPIRED"
RULE_CLIENT_MISMATCH = "CLIENT_MISMATCH"
RULE_BELOW_MIN_PURCHASE = "BELOW_MIN_PURCHASE"
RULE_USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
RULE_ALREADY_USED = "ALREADY_USED"

CODE_GENERATION_ATTEMPTS = 10
CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class CouponValidation:
    is_valid: bool
    violations: list[dict] = field(default_factory=list)
    coupon: Coupon | None = None
    discount_cents: int = 0

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "violations": self.violations,
            "coupon": self.coupon.to_dict() if self.coupon else None,
            "discount_cents": self.discount_cents,
        }


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def calculate_discount(coupon: Coupon, purchase_cents: int) -> int:
    """
    Discount in cents for a purchase amount.

    PERCENTAGE rounds half-up to the cent. The result is clamped to
    max_discount_cents (when set) and to the purchase amount.
    """
    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = (purchase_cents * coupon.discount_value + 50) // 100
    else:
        discount = coupon.discount_value

    if coupon.max_discount_cents is not None:
        discount = min(discount, coupon.max_discount_cents)
    return max(0, min(discount, purchase_cents))


def _has_client_used(coupon_id: int, client_id: int) -> bool:
    return (
        db.session.query(CouponUsage.id)
        .filter_by(coupon_id=coupon_id, client_id=client_id)
        .first()
        is not None
    )


def _violation(rule: str, message: str) -> dict:
    return {"rule": rule, "message": message}


# =============================================================================
# VALIDATION / REDEMPTION
# =============================================================================

def validate_coupon(code: str, client_id: int | None, purchase_cents: int) -> CouponValidation:
    """Evaluate every coupon rule against a purchase. Mutates nothing."""
    normalized = normalize_code(code)
    coupon = (
        db.session.query(Coupon).filter_by(code=normalized).first()
        if normalized else None
    )
    if coupon is None:
        return CouponValidation(
            is_valid=False,
            violations=[_violation(RULE_NOT_FOUND, f"Coupon {normalized or code!r} does not exist")],
        )

    violations: list[dict] = []

    if not coupon.is_active:
        violations.append(_violation(RULE_INACTIVE, "Coupon is not active"))

    if is_past(coupon.expires_at):
        violations.append(_violation(RULE_EXPIRED, "Coupon has expired"))

    if coupon.client_id is not None and coupon.client_id != client_id:
        violations.append(_violation(RULE_CLIENT_MISMATCH, "Coupon is not valid for this client"))

    if purchase_cents < coupon.min_purchase_cents:
        violations.append(
            _violation(
                RULE_BELOW_MIN_PURCHASE,
                f"Minimum purchase of {coupon.min_purchase_cents} cents required",
            )
        )

    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        violations.append(_violation(RULE_USAGE_LIMIT_REACHED, "Coupon usage limit reached"))

    if client_id is not None and not coupon.allow_multiple_use and _has_client_used(coupon.id, client_id):
        violations.append(_violation(RULE_ALREADY_USED, "Client has already used this coupon"))

    if violations:
        return CouponValidation(is_valid=False, violations=violations, coupon=coupon)

    return CouponValidation(
        is_valid=True,
        coupon=coupon,
        discount_cents=calculate_discount(coupon, purchase_cents),
    )


def redeem_coupon(
    code: str,
    client_id: int | None,
    sale_id: int,
    discount_cents: int,
    used_by_user_id: int | None = None,
) -> CouponUsage:
    """
    Record one use of a coupon. Caller owns the transaction (checkout).

    Raises:
        InvalidCoupon: if single use or the usage limit is violated at commit time
    """
    normalized = normalize_code(code)
    coupon = lock_for_update(db.session.query(Coupon).filter_by(code=normalized)).first()
    if coupon is None:
        raise InvalidCoupon(
            f"Coupon {normalized!r} does not exist",
            [_violation(RULE_NOT_FOUND, "Coupon does not exist")],
        )

    if client_id is not None and not coupon.allow_multiple_use and _has_client_used(coupon.id, client_id):
        raise InvalidCoupon(
            "Client has already used this coupon",
            [_violation(RULE_ALREADY_USED, "Client has already used this coupon")],
            {"code": coupon.code},
        )

    db.session.flush()
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise InvalidCoupon(
            "Coupon usage limit reached",
            [_violation(RULE_USAGE_LIMIT_REACHED, "Coupon usage limit reached")],
            {"code": coupon.code},
        )
    db.session.refresh(coupon)

    usage = CouponUsage(
        coupon_id=coupon.id,
        client_id=client_id,
        sale_id=sale_id,
        discount_cents=discount_cents,
        used_by_user_id=used_by_user_id,
        created_at=utcnow(),
    )
    db.session.add(usage)
    db.session.flush()
    return usage


# =============================================================================
# MANAGEMENT
# =============================================================================

def _validate_discount(discount_type: str, discount_value) -> None:
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(
            f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}",
            {"discount_type": discount_type},
        )
    if isinstance(discount_value, bool) or not isinstance(discount_value, int):
        raise ValidationError("discount_value must be an integer")
    if discount_type == DISCOUNT_PERCENTAGE and not 1 <= discount_value <= 100:
        raise ValidationError("Percentage discount must be between 1 and 100")
    if discount_type == DISCOUNT_FIXED and not 0 < discount_value <= MAX_AMOUNT_CENTS:
        raise ValidationError("Fixed discount must be greater than 0")


def _validate_optional_non_negative(value, name: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer")


def create_coupon(
    *,
    code: str,
    name: str,
    discount_type: str,
    discount_value: int,
    description: str | None = None,
    min_purchase_cents: int = 0,
    max_discount_cents: int | None = None,
    usage_limit: int | None = None,
    expires_at: datetime | None = None,
    allow_multiple_use: bool = False,
    client_id: int | None = None,
    created_by_user_id: int | None = None,
) -> Coupon:
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError("code is required")
    if not name or not name.strip():
        raise ValidationError("name is required")
    _validate_discount(discount_type, discount_value)
    _validate_optional_non_negative(min_purchase_cents, "min_purchase_cents")
    _validate_optional_non_negative(max_discount_cents, "max_discount_cents")
    _validate_optional_non_negative(usage_limit, "usage_limit")

    def _op() -> Coupon:
        if db.session.query(Coupon.id).filter_by(code=normalized).first() is not None:
            raise CouponConflict(f"Coupon code {normalized} already exists", {"code": normalized})

        coupon = Coupon(
            code=normalized,
            name=name.strip(),
            description=description,
            discount_type=discount_type,
            discount_value=discount_value,
            min_purchase_cents=min_purchase_cents or 0,
            max_discount_cents=max_discount_cents,
            usage_limit=usage_limit,
            usage_count=0,
            expires_at=to_utc_naive(expires_at) if expires_at else None,
            is_active=True,
            allow_multiple_use=allow_multiple_use,
            client_id=client_id,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(coupon)
        return coupon

    return run_atomic(_op)


UPDATABLE_FIELDS = (
    "name",
    "description",
    "discount_type",
    "discount_value",
    "min_purchase_cents",
    "max_discount_cents",
    "usage_limit",
    "expires_at",
    "is_active",
    "allow_multiple_use",
    "client_id",
)


def get_coupon(coupon_id: int) -> Coupon:
    coupon = db.session.get(Coupon, coupon_id)
    if coupon is None:
        raise CouponNotFound(f"Coupon {coupon_id} not found", {"coupon_id": coupon_id})
    return coupon


def update_coupon(coupon_id: int, changes: dict) -> Coupon:
    """
    Update mutable coupon fields. code and usage_count are never editable here.
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

    def _op() -> Coupon:
        coupon = lock_for_update(db.session.query(Coupon).filter_by(id=coupon_id)).first()
        if coupon is None:
            raise CouponNotFound(f"Coupon {coupon_id} not found", {"coupon_id": coupon_id})

        discount_type = changes.get("discount_type", coupon.discount_type)
        discount_value = changes.get("discount_value", coupon.discount_value)
        _validate_discount(discount_type, discount_value)
        for name in ("min_purchase_cents", "max_discount_cents", "usage_limit"):
            if name in changes:
                _validate_optional_non_negative(changes[name], name)

        usage_limit = changes.get("usage_limit", coupon.usage_limit)
        if usage_limit is not None and usage_limit < coupon.usage_count:
            raise ValidationError(
                f"usage_limit cannot be below current usage ({coupon.usage_count})",
                {"usage_count": coupon.usage_count},
            )

        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("name cannot be blank")

        for key, value in changes.items():
            if key == "expires_at" and value is not None:
                value = to_utc_naive(value)
            if key == "min_purchase_cents" and value is None:
                value = 0
            setattr(coupon, key, value)
        return coupon

    return run_atomic(_op)


def deactivate_coupon(coupon_id: int) -> Coupon:
    """Soft delete. Usage history stays attached to the coupon row."""
    def _op() -> Coupon:
        coupon = get_coupon(coupon_id)
        coupon.is_active = False
        return coupon

    return run_atomic(_op)


def list_coupons(
    *,
    active_only: bool = False,
    expired: bool | None = None,
    client_id: int | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[Coupon], int]:
    query = db.session.query(Coupon)
    if active_only:
        query = query.filter(Coupon.is_active.is_(True))
    if client_id is not None:
        query = query.filter(Coupon.client_id == client_id)

    now = utcnow()
    if expired is True:
        query = query.filter(Coupon.expires_at.isnot(None), Coupon.expires_at < now)
    elif expired is False:
        query = query.filter(or_(Coupon.expires_at.is_(None), Coupon.expires_at >= now))

    page = max(page, 1)
    per_page = min(max(per_page, 1), 200)

    total = query.count()
    coupons = (
        query.order_by(Coupon.created_at.desc(), Coupon.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return coupons, total


def get_coupon_stats(coupon_id: int) -> dict:
    coupon = get_coupon(coupon_id)
    total_uses, total_discount = (
        db.session.query(func.count(CouponUsage.id), func.coalesce(func.sum(CouponUsage.discount_cents), 0))
        .filter(CouponUsage.coupon_id == coupon.id)
        .one()
    )
    usage_percentage = None
    if coupon.usage_limit:
        usage_percentage = round(coupon.usage_count / coupon.usage_limit * 100, 2)

    return {
        "coupon_id": coupon.id,
        "code": coupon.code,
        "total_uses": int(total_uses),
        "total_discount_cents": int(total_discount),
        "is_expired": coupon.is_expired,
        "usage_percentage": usage_percentage,
    }


def generate_coupon_code(prefix: str = "DESC", length: int = 8) -> str:
    """Random unused code: PREFIX + `length` upper-case alphanumerics."""
    if isinstance(length, bool) or not isinstance(length, int) or not 4 <= length <= 32:
        raise ValidationError("length must be between 4 and 32")
    prefix = normalize_code(prefix)

    for _ in range(CODE_GENERATION_ATTEMPTS):
        candidate = prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
        if db.session.query(Coupon.id).filter_by(code=candidate).first() is None:
            return candidate

    raise CouponConflict("Could not generate a unique coupon code", {"prefix": prefix})
