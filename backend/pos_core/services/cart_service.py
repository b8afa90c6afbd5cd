# Overview: Cart aggregator; per-owner in-progress line items.

"""
Cart Aggregator

One active line per (owner, product). Adding an already-present product
merges into the existing line and re-checks stock against the combined
quantity. The unit price is snapshotted when the line is created and kept on
merge; a later catalog price change is surfaced at checkout, not applied
silently.

Lines are soft-removed with a reason (REMOVED, CLEARED, CHECKED_OUT).
"""

from __future__ import annotations

from ..extensions import db
from ..models import CartLine, Product
from ..models.cart import REMOVAL_CLEARED, REMOVAL_REMOVED
from pos_core.errors import CartLineNotFound, InsufficientStock, ProductUnavailable, ValidationError
from pos_core.time_utils import utcnow
from pos_core.validation import require_positive_quantity
from .concurrency import lock_for_update, run_atomic
from .inventory_service import get_product


# =============================================================================
# HELPERS
# =============================================================================

def _ensure_sellable(product: Product, quantity: int) -> None:
    if not product.is_active:
        raise ProductUnavailable(
            f"Product {product.id} is not available for sale",
            {"product_id": product.id},
        )
    if quantity > product.stock_quantity:
        raise InsufficientStock(
            f"Insufficient stock for {product.name}: requested {quantity}, "
            f"available {product.stock_quantity}",
            {
                "product_id": product.id,
                "requested": quantity,
                "available": product.stock_quantity,
            },
        )


def _get_owned_active_line(owner_id: int, line_id: int) -> CartLine:
    line = (
        db.session.query(CartLine)
        .filter_by(id=line_id, owner_id=owner_id, is_active=True)
        .first()
    )
    if line is None:
        raise CartLineNotFound(
            f"Cart line {line_id} not found",
            {"line_id": line_id, "owner_id": owner_id},
        )
    return line


def get_active_lines(owner_id: int, *, lock: bool = False) -> list[CartLine]:
    query = (
        db.session.query(CartLine)
        .filter_by(owner_id=owner_id, is_active=True)
        .order_by(CartLine.id.asc())
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def deactivate_lines(lines: list[CartLine], reason: str, sale_id: int | None = None) -> None:
    """Soft-remove lines in the caller's transaction."""
    now = utcnow()
    for line in lines:
        line.is_active = False
        line.removal_reason = reason
        line.removed_at = now
        if sale_id is not None:
            line.sale_id = sale_id


def summarize(lines: list[CartLine]) -> dict:
    return {
        "line_count": len(lines),
        "item_count": sum(line.quantity for line in lines),
        "subtotal_cents": sum(line.line_total_cents for line in lines),
    }


# =============================================================================
# OPERATIONS
# =============================================================================

def add_item(owner_id: int, product_id: int, quantity: int) -> CartLine:
    """
    Add a product to the owner's cart, merging with an existing active line.

    Raises:
        ProductNotFound, ProductUnavailable, InsufficientStock, ValidationError
    """
    require_positive_quantity(quantity)

    def _op() -> CartLine:
        product = get_product(product_id)

        existing = lock_for_update(
            db.session.query(CartLine).filter_by(owner_id=owner_id, product_id=product_id, is_active=True)
        ).first()

        if existing is not None:
            combined = existing.quantity + quantity
            _ensure_sellable(product, combined)
            existing.quantity = combined
            existing.line_total_cents = combined * existing.unit_price_cents
            return existing

        _ensure_sellable(product, quantity)
        line = CartLine(
            owner_id=owner_id,
            product_id=product.id,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            line_total_cents=quantity * product.price_cents,
            is_active=True,
        )
        db.session.add(line)
        return line

    return run_atomic(_op)


def update_quantity(owner_id: int, line_id: int, quantity: int) -> CartLine:
    """Set a line's quantity (>= 1). Use remove_item to drop a line."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity < 1:
        raise ValidationError("quantity must be at least 1; remove the line instead", {"line_id": line_id})

    def _op() -> CartLine:
        line = _get_owned_active_line(owner_id, line_id)
        product = get_product(line.product_id)
        _ensure_sellable(product, quantity)
        line.quantity = quantity
        line.line_total_cents = quantity * line.unit_price_cents
        return line

    return run_atomic(_op)


def remove_item(owner_id: int, line_id: int) -> CartLine:
    def _op() -> CartLine:
        line = _get_owned_active_line(owner_id, line_id)
        deactivate_lines([line], REMOVAL_REMOVED)
        return line

    return run_atomic(_op)


def clear_cart(owner_id: int) -> int:
    """Soft-remove every active line. Returns the number of lines cleared."""
    def _op() -> int:
        lines = get_active_lines(owner_id, lock=True)
        deactivate_lines(lines, REMOVAL_CLEARED)
        return len(lines)

    return run_atomic(_op)


def get_cart(owner_id: int) -> dict:
    """Current cart with summary. No side effects."""
    lines = get_active_lines(owner_id)
    return {
        "owner_id": owner_id,
        "items": [line.to_dict() for line in lines],
        "summary": summarize(lines),
    }
