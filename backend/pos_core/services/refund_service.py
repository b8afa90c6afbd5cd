"""
Refund Orchestrator

    EVALUATING -> COMPLETED
    EVALUATING -> REJECTED

CRITICAL INVARIANT: for every sale line, the quantity refunded across all
COMPLETED refunds never exceeds the quantity sold. The already-refunded sums
are computed and the new refund is written inside ONE transaction with the
sale row locked (and the SQLite write lock taken up front), so two refunds
racing on the same sale cannot both see the same availability.

DESIGN DECISIONS:
- Refund amount is quantity x the sale line's unit price. A coupon discount
  on the original sale is not pro-rated back.
- Loyalty points earned on the sale are NOT reversed.
- Completed refunds are immutable; the sale moves to REFUNDED once every
  line is fully refunded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Refund, RefundLine, Sale, SaleLine
from ..models.refunds import REFUND_COMPLETED, REFUND_FULL, REFUND_PARTIAL, REFUND_TYPES
from ..models.sales import SALE_REFUNDED
from pos_core.errors import (
    AlreadyFullyRefunded,
    LineNotInSale,
    NothingToRefund,
    RefundExceedsAvailable,
    RefundNotFound,
    SaleNotFound,
    ValidationError,
)
from pos_core.time_utils import utcnow
from pos_core.validation import require_positive_quantity
from .concurrency import lock_for_update, run_atomic
from .document_service import DOC_TYPE_REFUND, next_document_number
from .inventory_service import restore_on_refund
from .sales_service import get_sale, get_sale_lines


REFUND_PREFIX = "RF"


@dataclass
class RefundItem:
    product_id: int
    quantity: int


# =============================================================================
# AVAILABILITY
# =============================================================================

def _refunded_by_line(sale_id: int) -> dict[int, int]:
    """sale_line_id -> quantity already refunded by COMPLETED refunds."""
    rows = (
        db.session.query(RefundLine.sale_line_id, func.sum(RefundLine.quantity))
        .join(Refund, Refund.id == RefundLine.refund_id)
        .filter(Refund.original_sale_id == sale_id, Refund.status == REFUND_COMPLETED)
        .group_by(RefundLine.sale_line_id)
        .all()
    )
    return {sale_line_id: int(quantity or 0) for sale_line_id, quantity in rows}


def get_refundable_quantities(sale_id: int) -> list[dict]:
    sale = get_sale(sale_id)
    refunded = _refunded_by_line(sale.id)
    result = []
    for line in get_sale_lines(sale.id):
        already = refunded.get(line.id, 0)
        result.append({
            "sale_line_id": line.id,
            "product_id": line.product_id,
            "product_name": line.product.name if line.product else None,
            "quantity_sold": line.quantity,
            "quantity_refunded": already,
            "quantity_available": line.quantity - already,
            "unit_price_cents": line.unit_price_cents,
        })
    return result


def _aggregate_items(items: list[RefundItem]) -> dict[int, int]:
    """Duplicate product ids in one request are summed."""
    totals: dict[int, int] = {}
    for item in items:
        require_positive_quantity(item.quantity)
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


# =============================================================================
# PROCESSING
# =============================================================================

def process_refund(
    sale_id: int,
    refund_type: str,
    reason: str,
    user_id: int,
    items: list[RefundItem] | None = None,
    notes: str | None = None,
) -> Refund:
    """
    Refund all remaining (FULL) or selected (PARTIAL) quantities of a sale.

    Raises:
        SaleNotFound, AlreadyFullyRefunded, NothingToRefund, LineNotInSale,
        RefundExceedsAvailable, ValidationError
    """
    refund_type = (refund_type or "").strip().upper()
    if refund_type not in REFUND_TYPES:
        raise ValidationError(f"refund_type must be one of {', '.join(REFUND_TYPES)}")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    requested: dict[int, int] = {}
    if refund_type == REFUND_PARTIAL:
        if not items:
            raise ValidationError("items are required for a PARTIAL refund")
        requested = _aggregate_items(items)

    def _op() -> Refund:
        # EVALUATING
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})
        if sale.status == SALE_REFUNDED:
            raise AlreadyFullyRefunded(
                f"Sale {sale.document_number} is already fully refunded",
                {"sale_id": sale.id},
            )

        sale_lines = get_sale_lines(sale.id)
        refunded = _refunded_by_line(sale.id)
        lines_by_product: dict[int, SaleLine] = {line.product_id: line for line in sale_lines}

        plan: list[tuple[SaleLine, int]] = []
        if refund_type == REFUND_FULL:
            for line in sale_lines:
                available = line.quantity - refunded.get(line.id, 0)
                if available > 0:
                    plan.append((line, available))
            if not plan:
                raise NothingToRefund(
                    f"Nothing left to refund on sale {sale.document_number}",
                    {"sale_id": sale.id},
                )
        else:
            for product_id, quantity in requested.items():
                line = lines_by_product.get(product_id)
                if line is None:
                    raise LineNotInSale(
                        f"Product {product_id} is not part of sale {sale.document_number}",
                        {"sale_id": sale.id, "product_id": product_id},
                    )
                available = line.quantity - refunded.get(line.id, 0)
                if quantity > available:
                    raise RefundExceedsAvailable(
                        f"Cannot refund {quantity} of product {product_id}; {available} available",
                        {
                            "sale_id": sale.id,
                            "product_id": product_id,
                            "requested": quantity,
                            "available": available,
                        },
                    )
                plan.append((line, quantity))

        # COMMITTING
        now = utcnow()
        refund = Refund(
            document_number=next_document_number(document_type=DOC_TYPE_REFUND, prefix=REFUND_PREFIX),
            original_sale_id=sale.id,
            refund_type=refund_type,
            reason=reason.strip(),
            notes=notes,
            total_cents=sum(line.unit_price_cents * quantity for line, quantity in plan),
            status=REFUND_COMPLETED,
            processed_by_user_id=user_id,
            created_at=now,
            completed_at=now,
        )
        db.session.add(refund)
        db.session.flush()

        for line, quantity in plan:
            db.session.add(RefundLine(
                refund_id=refund.id,
                sale_line_id=line.id,
                product_id=line.product_id,
                quantity=quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.unit_price_cents * quantity,
            ))
            restore_on_refund(line.product_id, quantity, refund.id, user_id=user_id)

        for line, quantity in plan:
            refunded[line.id] = refunded.get(line.id, 0) + quantity
        if all(refunded.get(line.id, 0) >= line.quantity for line in sale_lines):
            sale.status = SALE_REFUNDED
            sale.refunded_at = now

        db.session.flush()
        return refund

    return run_atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_refund(refund_id: int) -> Refund:
    refund = db.session.get(Refund, refund_id)
    if refund is None:
        raise RefundNotFound(f"Refund {refund_id} not found", {"refund_id": refund_id})
    return refund


def get_refund_detail(refund_id: int) -> dict:
    refund = get_refund(refund_id)
    return {
        "refund": refund.to_dict(),
        "lines": [line.to_dict() for line in refund.lines],
    }


def get_sale_refunds(sale_id: int) -> list[Refund]:
    get_sale(sale_id)
    return (
        db.session.query(Refund)
        .filter_by(original_sale_id=sale_id)
        .order_by(Refund.created_at.asc(), Refund.id.asc())
        .all()
    )


def list_refunds(
    *,
    refund_type: str | None = None,
    status: str | None = None,
    processed_by_user_id: int | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[Refund], int]:
    query = db.session.query(Refund)
    if refund_type:
        query = query.filter(Refund.refund_type == refund_type.upper())
    if status:
        query = query.filter(Refund.status == status.upper())
    if processed_by_user_id is not None:
        query = query.filter(Refund.processed_by_user_id == processed_by_user_id)
    if from_date:
        query = query.filter(Refund.created_at >= from_date)
    if to_date:
        query = query.filter(Refund.created_at <= to_date)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 200)

    total = query.count()
    refunds = (
        query.order_by(Refund.created_at.desc(), Refund.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return refunds, total
