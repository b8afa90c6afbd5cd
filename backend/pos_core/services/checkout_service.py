# Overview: Checkout orchestrator; turns an owner's cart into a committed sale.

"""
Checkout Orchestrator

    VALIDATING -> COMMITTING -> COMPLETED
    VALIDATING -> REJECTED

Validation runs INSIDE the commit transaction (cart rows locked, SQLite write
lock taken up front), so nothing observed during validation can change
before the sale is written. Everything below happens in that one transaction:

1. cart checks: EmptyCart, ProductUnavailable, InsufficientStock, PriceChanged
2. pricing: subtotal, coupon discount, tax hook, tendered vs total
3. commit: Sale + SaleLines, stock decrements, coupon redemption, loyalty
   accrual, cart lines marked CHECKED_OUT

Any DomainError or storage failure rolls the whole transaction back. Rejected
checkouts raise the first failing DomainError with the current cart attached
to its details.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import CartLine, Product, Sale, SaleLine
from ..models.cart import REMOVAL_CHECKED_OUT
from ..models.sales import PAYMENT_METHODS, SALE_COMPLETED
from pos_core.errors import (
    DomainError,
    EmptyCart,
    InsufficientPayment,
    InsufficientStock,
    InvalidCoupon,
    PriceChanged,
    ProductUnavailable,
    ValidationError,
)
from pos_core.time_utils import utcnow
from pos_core.validation import require_amount_cents
from .cart_service import deactivate_lines, get_active_lines, get_cart, summarize
from .concurrency import run_atomic
from .coupon_service import redeem_coupon, validate_coupon
from .document_service import DOC_TYPE_SALE, next_document_number
from .inventory_service import reserve_on_sale
from .loyalty_service import accrue_points
from .sales_service import build_receipt


STATE_VALIDATING = "VALIDATING"
STATE_COMMITTING = "COMMITTING"
STATE_COMPLETED = "COMPLETED"
STATE_REJECTED = "REJECTED"

SALE_PREFIX = "S"


@dataclass
class CheckoutRequest:
    owner_id: int
    cashier_id: int
    payment_method: str
    tendered_cents: int
    client_id: int | None = None
    coupon_code: str | None = None
    notes: str | None = None
    confirm_price_changes: bool = False
    store_id: int | None = None


@dataclass
class CheckoutResult:
    state: str
    sale: Sale
    lines: list[SaleLine]
    receipt: dict
    warnings: list[dict] = field(default_factory=list)
    points_earned: int = 0

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "sale": self.sale.to_dict(),
            "lines": [line.to_dict() for line in self.lines],
            "receipt": self.receipt,
            "warnings": self.warnings,
            "points_earned": self.points_earned,
        }


# =============================================================================
# HELPERS
# =============================================================================

def _load_products(lines: list[CartLine]) -> dict[int, Product]:
    product_ids = [line.product_id for line in lines]
    products = db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    return {product.id: product for product in products}


def _collect_issues(lines: list[CartLine], products: dict[int, Product]) -> list[dict]:
    """Every cart problem, in line order. Empty list means the cart can be sold."""
    issues: list[dict] = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None or not product.is_active:
            issues.append({
                "type": ProductUnavailable.code,
                "line_id": line.id,
                "product_id": line.product_id,
                "message": f"Product {line.product_id} is not available for sale",
            })
            continue
        if line.quantity > product.stock_quantity:
            issues.append({
                "type": InsufficientStock.code,
                "line_id": line.id,
                "product_id": product.id,
                "requested": line.quantity,
                "available": product.stock_quantity,
                "message": f"Insufficient stock for {product.name}",
            })
        if line.unit_price_cents != product.price_cents:
            issues.append({
                "type": PriceChanged.code,
                "line_id": line.id,
                "product_id": product.id,
                "old_price_cents": line.unit_price_cents,
                "new_price_cents": product.price_cents,
                "message": f"Price of {product.name} changed",
            })
    return issues


def _raise_first_blocking(issues: list[dict], confirm_price_changes: bool) -> list[dict]:
    """
    Raise for the first hard failure. Returns price changes that the caller
    confirmed (to be applied as warnings).
    """
    price_changes = [issue for issue in issues if issue["type"] == PriceChanged.code]
    for issue in issues:
        if issue["type"] == ProductUnavailable.code:
            raise ProductUnavailable(issue["message"], {"product_id": issue["product_id"]})
        if issue["type"] == InsufficientStock.code:
            raise InsufficientStock(
                issue["message"],
                {
                    "product_id": issue["product_id"],
                    "requested": issue["requested"],
                    "available": issue["available"],
                },
            )
    if price_changes and not confirm_price_changes:
        raise PriceChanged(
            "Prices changed since items were added; confirm to continue",
            {"changes": price_changes},
        )
    return price_changes


def _compute_tax(taxable_cents: int, lines: list[CartLine]) -> int:
    """Tax hook. Jurisdiction rules live outside the engine; default is no tax."""
    calculator = current_app.config.get("TAX_CALCULATOR")
    if calculator is None:
        return 0
    return require_amount_cents(calculator(taxable_cents, lines), "tax_cents")


def _normalize_payment_method(payment_method: str | None) -> str:
    method = (payment_method or "").strip().upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            {"payment_method": payment_method},
        )
    return method


# =============================================================================
# OPERATIONS
# =============================================================================

def validate_cart(owner_id: int) -> dict:
    """Non-raising pre-check: every issue at once, for display before checkout."""
    lines = get_active_lines(owner_id)
    if not lines:
        issues = [{"type": EmptyCart.code, "message": "Cart is empty"}]
    else:
        issues = _collect_issues(lines, _load_products(lines))
    return {
        "is_valid": not issues,
        "issues": issues,
        "cart_summary": summarize(lines),
    }


def checkout(request: CheckoutRequest) -> CheckoutResult:
    """
    Commit the owner's cart as a sale.

    Raises:
        EmptyCart, ProductUnavailable, InsufficientStock, PriceChanged,
        InvalidCoupon, InsufficientPayment, ValidationError
    """
    payment_method = _normalize_payment_method(request.payment_method)
    tendered_cents = require_amount_cents(request.tendered_cents, "tendered_cents")

    def _op() -> CheckoutResult:
        # VALIDATING
        lines = get_active_lines(request.owner_id, lock=True)
        if not lines:
            raise EmptyCart("Cart is empty", {"owner_id": request.owner_id})

        products = _load_products(lines)
        price_changes = _raise_first_blocking(
            _collect_issues(lines, products),
            request.confirm_price_changes,
        )

        warnings: list[dict] = []
        lines_by_id = {line.id: line for line in lines}
        for change in price_changes:
            line = lines_by_id[change["line_id"]]
            line.unit_price_cents = change["new_price_cents"]
            line.line_total_cents = line.quantity * line.unit_price_cents
            warnings.append(change)

        subtotal_cents = sum(line.line_total_cents for line in lines)

        discount_cents = 0
        coupon_code = None
        if request.coupon_code:
            validation = validate_coupon(request.coupon_code, request.client_id, subtotal_cents)
            if not validation.is_valid:
                raise InvalidCoupon(
                    "Coupon cannot be applied",
                    validation.violations,
                    {"code": request.coupon_code},
                )
            discount_cents = validation.discount_cents
            coupon_code = validation.coupon.code

        tax_cents = _compute_tax(subtotal_cents - discount_cents, lines)
        total_cents = subtotal_cents - discount_cents + tax_cents

        if tendered_cents < total_cents:
            raise InsufficientPayment(
                f"Payment of {tendered_cents} cents does not cover total of {total_cents} cents",
                {
                    "total_cents": total_cents,
                    "tendered_cents": tendered_cents,
                    "shortfall_cents": total_cents - tendered_cents,
                },
            )

        # COMMITTING
        now = utcnow()
        sale = Sale(
            document_number=next_document_number(document_type=DOC_TYPE_SALE, prefix=SALE_PREFIX),
            cashier_id=request.cashier_id,
            client_id=request.client_id,
            store_id=request.store_id,
            subtotal_cents=subtotal_cents,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            total_cents=total_cents,
            tendered_cents=tendered_cents,
            change_cents=tendered_cents - total_cents,
            payment_method=payment_method,
            coupon_code=coupon_code,
            notes=request.notes,
            status=SALE_COMPLETED,
            created_at=now,
            completed_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        sale_lines: list[SaleLine] = []
        for line in lines:
            sale_line = SaleLine(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            )
            db.session.add(sale_line)
            sale_lines.append(sale_line)
        db.session.flush()

        for sale_line in sale_lines:
            reserve_on_sale(sale_line.product_id, sale_line.quantity, sale.id, user_id=request.cashier_id)

        if coupon_code:
            redeem_coupon(coupon_code, request.client_id, sale.id, discount_cents, used_by_user_id=request.cashier_id)

        points_earned = 0
        if request.client_id is not None:
            points_earned = accrue_points(request.client_id, total_cents, sale.id, user_id=request.cashier_id)

        deactivate_lines(lines, REMOVAL_CHECKED_OUT, sale_id=sale.id)

        return CheckoutResult(
            state=STATE_COMPLETED,
            sale=sale,
            lines=sale_lines,
            receipt=build_receipt(sale, sale_lines),
            warnings=warnings,
            points_earned=points_earned,
        )

    try:
        return run_atomic(_op)
    except DomainError as exc:
        exc.details.setdefault("state", STATE_REJECTED)
        exc.details.setdefault("cart", get_cart(request.owner_id))
        raise
