# Overview: Domain error types shared by services and routes.
"""
Domain errors for the sale engine.

Every error here is recoverable by the caller: it is raised before commit (or
the surrounding transaction is rolled back), so no partial state survives.
Storage failures are NOT wrapped; they propagate as SQLAlchemy exceptions.

Routes translate a DomainError to JSON with `to_dict()` and `http_status`.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for recoverable business rule failures."""
    code = "DOMAIN_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "details": self.details,
        }


class ValidationError(DomainError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


# =============================================================================
# CART / CATALOG
# =============================================================================

class ProductNotFound(DomainError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class ProductUnavailable(DomainError):
    code = "PRODUCT_UNAVAILABLE"
    http_status = 409


class InsufficientStock(DomainError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class CartLineNotFound(DomainError):
    code = "CART_LINE_NOT_FOUND"
    http_status = 404


class EmptyCart(DomainError):
    code = "EMPTY_CART"


class PriceChanged(DomainError):
    """Soft failure: the caller re-confirms and retries with the new prices."""
    code = "PRICE_CHANGED"
    http_status = 409


class InsufficientPayment(DomainError):
    code = "INSUFFICIENT_PAYMENT"


# =============================================================================
# COUPONS
# =============================================================================

class InvalidCoupon(DomainError):
    code = "INVALID_COUPON"

    def __init__(self, message: str, violations: list[dict] | None = None, details: dict | None = None):
        merged = dict(details or {})
        merged["violations"] = list(violations or [])
        super().__init__(message, merged)

    @property
    def violations(self) -> list[dict]:
        return self.details["violations"]


class CouponNotFound(DomainError):
    code = "COUPON_NOT_FOUND"
    http_status = 404


class CouponConflict(DomainError):
    code = "COUPON_CONFLICT"
    http_status = 409


# =============================================================================
# SALES / REFUNDS
# =============================================================================

class SaleNotFound(DomainError):
    code = "SALE_NOT_FOUND"
    http_status = 404


class AlreadyFullyRefunded(DomainError):
    code = "ALREADY_FULLY_REFUNDED"
    http_status = 409


class NothingToRefund(DomainError):
    code = "NOTHING_TO_REFUND"
    http_status = 409


class RefundExceedsAvailable(DomainError):
    code = "REFUND_EXCEEDS_AVAILABLE"
    http_status = 409


class LineNotInSale(DomainError):
    code = "LINE_NOT_IN_SALE"


class RefundNotFound(DomainError):
    code = "REFUND_NOT_FOUND"
    http_status = 404


# =============================================================================
# INVENTORY / LOYALTY
# =============================================================================

class AlertNotFound(DomainError):
    code = "ALERT_NOT_FOUND"
    http_status = 404


class InsufficientPoints(DomainError):
    code = "INSUFFICIENT_POINTS"
    http_status = 409
