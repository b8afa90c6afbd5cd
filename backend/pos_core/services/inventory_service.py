# Overview: Inventory ledger; the only writer of Product.stock_quantity.

"""
Inventory Ledger

Every stock change is one conditional UPDATE followed by an appended
StockMovement and a re-evaluation of the product's low-stock alert, all in
the caller's transaction:

    UPDATE products
       SET stock_quantity = stock_quantity + :delta
     WHERE id = :id AND stock_quantity + :delta >= 0

Zero rows updated means the change would drive stock negative
(InsufficientStock). Because the check and the write are one statement, two
concurrent sales of the last unit cannot both succeed.

reserve_on_sale / restore_on_refund never commit. adjust_stock commits its
own transaction unless told to join the caller's.
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockMovement, StockAlert
from ..models.inventory import (
    ALERT_LOW_STOCK,
    MOVEMENT_MANUAL,
    MOVEMENT_REFUND,
    MOVEMENT_SALE,
)
from pos_core.errors import AlertNotFound, InsufficientStock, ProductNotFound, ValidationError
from pos_core.time_utils import utcnow
from pos_core.validation import require_positive_quantity
from .concurrency import run_atomic


AUTO_RESOLVE_NOTE = "Stock replenished"


# =============================================================================
# PRODUCT LOOKUP
# =============================================================================

def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", {"product_id": product_id})
    return product


# =============================================================================
# CORE STOCK MUTATION
# =============================================================================

def _apply_stock_delta(
    *,
    product_id: int,
    delta: int,
    movement_type: str,
    reason: str | None,
    reference_id: int | None,
    user_id: int | None,
) -> StockMovement:
    # Pending ORM state must hit the database before the raw UPDATE
    db.session.flush()

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
        .values(stock_quantity=Product.stock_quantity + delta)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount != 1:
        product = get_product(product_id)
        raise InsufficientStock(
            f"Insufficient stock for product {product_id}: "
            f"requested {abs(delta)}, available {product.stock_quantity}",
            {
                "product_id": product_id,
                "requested": abs(delta),
                "available": product.stock_quantity,
            },
        )

    # Read back the committed-in-transaction value and refresh any cached instance
    product = db.session.get(Product, product_id, populate_existing=True)
    new_stock = product.stock_quantity

    movement = StockMovement(
        product_id=product_id,
        movement_type=movement_type,
        quantity_delta=delta,
        previous_stock=new_stock - delta,
        new_stock=new_stock,
        reason=reason,
        reference_id=reference_id,
        created_by_user_id=user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)

    _evaluate_low_stock_alert(product)
    db.session.flush()
    return movement


def _evaluate_low_stock_alert(product: Product) -> StockAlert | None:
    """
    Create or resolve the product's LOW_STOCK alert.

    - stock < min_stock and no open alert -> new alert
    - stock >= min_stock -> resolve the open alert, if any
    """
    open_alert = (
        db.session.query(StockAlert)
        .filter_by(product_id=product.id, alert_type=ALERT_LOW_STOCK, is_resolved=False)
        .first()
    )

    if product.stock_quantity < product.min_stock:
        if open_alert is not None:
            return open_alert
        alert = StockAlert(
            product_id=product.id,
            alert_type=ALERT_LOW_STOCK,
            message=(
                f"{product.name} is low on stock: {product.stock_quantity} left "
                f"(minimum {product.min_stock})"
            ),
            is_resolved=False,
            created_at=utcnow(),
        )
        db.session.add(alert)
        return alert

    if open_alert is not None:
        open_alert.is_resolved = True
        open_alert.resolved_at = utcnow()
        open_alert.resolution_note = AUTO_RESOLVE_NOTE
    return None


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def reserve_on_sale(product_id: int, quantity: int, sale_id: int, user_id: int | None = None) -> StockMovement:
    """Decrement stock for a sale line. Caller owns the transaction."""
    require_positive_quantity(quantity)
    return _apply_stock_delta(
        product_id=product_id,
        delta=-quantity,
        movement_type=MOVEMENT_SALE,
        reason=f"Sale {sale_id}",
        reference_id=sale_id,
        user_id=user_id,
    )


def restore_on_refund(product_id: int, quantity: int, refund_id: int, user_id: int | None = None) -> StockMovement:
    """Increment stock for a refund line. Caller owns the transaction."""
    require_positive_quantity(quantity)
    return _apply_stock_delta(
        product_id=product_id,
        delta=quantity,
        movement_type=MOVEMENT_REFUND,
        reason=f"Refund {refund_id}",
        reference_id=refund_id,
        user_id=user_id,
    )


def adjust_stock(
    product_id: int,
    quantity_delta: int,
    reason: str,
    user_id: int | None = None,
    *,
    commit: bool = True,
) -> StockMovement:
    """
    Manual stock correction (receiving, shrinkage, recount).

    Negative deltas obey the same never-below-zero rule as sales.
    """
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValidationError("quantity_delta must be an integer")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta cannot be zero")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op() -> StockMovement:
        get_product(product_id)
        return _apply_stock_delta(
            product_id=product_id,
            delta=quantity_delta,
            movement_type=MOVEMENT_MANUAL,
            reason=reason.strip(),
            reference_id=None,
            user_id=user_id,
        )

    if commit:
        return run_atomic(_op)
    return _op()


# =============================================================================
# ALERTS
# =============================================================================

def list_stock_alerts(
    *,
    resolved: bool | None = False,
    alert_type: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[StockAlert], int]:
    query = db.session.query(StockAlert)
    if resolved is not None:
        query = query.filter(StockAlert.is_resolved.is_(resolved))
    if alert_type:
        query = query.filter(StockAlert.alert_type == alert_type)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 200)

    total = query.count()
    alerts = (
        query.order_by(StockAlert.created_at.desc(), StockAlert.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return alerts, total


def resolve_alert(alert_id: int, user_id: int, note: str | None = None) -> StockAlert:
    """Manually acknowledge an alert. A later stock drop may open a new one."""
    def _op() -> StockAlert:
        alert = db.session.get(StockAlert, alert_id)
        if alert is None:
            raise AlertNotFound(f"Alert {alert_id} not found", {"alert_id": alert_id})
        if alert.is_resolved:
            raise ValidationError(f"Alert {alert_id} is already resolved", {"alert_id": alert_id})

        alert.is_resolved = True
        alert.resolved_at = utcnow()
        alert.resolved_by_user_id = user_id
        alert.resolution_note = note
        return alert

    return run_atomic(_op)


# =============================================================================
# READ-ONLY VIEWS
# =============================================================================

def list_low_stock_products(limit: int = 100) -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock_quantity < Product.min_stock)
        .order_by(Product.stock_quantity.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )


def list_out_of_stock_products(limit: int = 100) -> list[Product]:
    """Out-of-stock is derived from the counter; it never has its own alert row."""
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock_quantity == 0)
        .order_by(Product.id.asc())
        .limit(limit)
        .all()
    )


def list_stock_movements(product_id: int, limit: int = 100) -> list[StockMovement]:
    get_product(product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def get_alert_summary() -> dict:
    """Counts behind the stock alerts dashboard."""
    active = db.session.query(Product).filter(Product.is_active.is_(True))
    return {
        "low_stock_count": active.filter(Product.stock_quantity < Product.min_stock).count(),
        "out_of_stock_count": active.filter(Product.stock_quantity == 0).count(),
        "unresolved_alerts_count": (
            db.session.query(StockAlert).filter(StockAlert.is_resolved.is_(False)).count()
        ),
    }
