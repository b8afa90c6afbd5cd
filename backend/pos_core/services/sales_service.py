# Overview: Read-only sale queries and receipt totals for downstream consumers.

from __future__ import annotations

from ..extensions import db
from ..models import Sale, SaleLine
from pos_core.errors import SaleNotFound
from pos_core.time_utils import to_utc_z


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})
    return sale


def get_sale_lines(sale_id: int) -> list[SaleLine]:
    return (
        db.session.query(SaleLine)
        .filter_by(sale_id=sale_id)
        .order_by(SaleLine.id.asc())
        .all()
    )


def build_receipt(sale: Sale, lines: list[SaleLine] | None = None) -> dict:
    """
    Receipt payload for the renderer: header, items and totals.
    Formatting (currency, layout, printing) is the renderer's job.
    """
    if lines is None:
        lines = get_sale_lines(sale.id)
    return {
        "sale_number": sale.document_number,
        "date": to_utc_z(sale.completed_at or sale.created_at),
        "cashier_id": sale.cashier_id,
        "client_id": sale.client_id,
        "payment_method": sale.payment_method,
        "coupon_code": sale.coupon_code,
        "items": [
            {
                "product_id": line.product_id,
                "product_name": line.product.name if line.product else None,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
                "line_total_cents": line.line_total_cents,
            }
            for line in lines
        ],
        "totals": {
            "subtotal_cents": sale.subtotal_cents,
            "discount_cents": sale.discount_cents,
            "tax_cents": sale.tax_cents,
            "total_cents": sale.total_cents,
            "tendered_cents": sale.tendered_cents,
            "change_cents": sale.change_cents,
        },
    }


def get_sale_detail(sale_id: int) -> dict:
    sale = get_sale(sale_id)
    lines = get_sale_lines(sale.id)
    return {
        "sale": sale.to_dict(),
        "lines": [line.to_dict() for line in lines],
        "receipt": build_receipt(sale, lines),
    }
