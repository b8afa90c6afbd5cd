# Overview: Flask API routes for checkout; parses input and returns JSON responses.

"""
Checkout API Routes

POST /api/checkout/ commits the principal's cart as a sale. Every rejection
is a DomainError translated to {"error", "code", "details"}; the details carry
the current cart so the client can re-render it.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import checkout_service, sales_service
from ..services.checkout_service import CheckoutRequest
from ..decorators import require_auth
from pos_core.errors import DomainError
from pos_core.validation import parse_bool, parse_int, parse_str


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("/")
@require_auth
def checkout_route():
    """
    Complete a sale from the current cart.

    Request body:
    {
        "payment_method": "CASH",
        "tendered_cents": 5000,
        "client_id": 7,                     (optional)
        "coupon_code": "SPRING10",          (optional)
        "notes": "...",                     (optional)
        "confirm_price_changes": false      (optional)
    }

    Returns:
        201: Sale completed (sale, lines, receipt, warnings, points_earned)
        400: Empty cart, invalid coupon, insufficient payment, invalid input
        409: Product unavailable, insufficient stock, price changed
    """
    try:
        data = request.get_json(silent=True) or {}

        checkout_request = CheckoutRequest(
            owner_id=g.current_user.id,
            cashier_id=g.current_user.id,
            payment_method=parse_str(data, "payment_method", max_length=16),
            tendered_cents=parse_int(data, "tendered_cents", minimum=0),
            client_id=parse_int(data, "client_id", required=False, minimum=1),
            coupon_code=parse_str(data, "coupon_code", required=False, max_length=64),
            notes=parse_str(data, "notes", required=False, max_length=2000),
            confirm_price_changes=parse_bool(data, "confirm_price_changes"),
            store_id=g.current_user.store_id,
        )

        result = checkout_service.checkout(checkout_request)

        current_app.logger.info(
            "Sale %s completed by user %s: total=%s cents",
            result.sale.document_number,
            g.current_user.id,
            result.sale.total_cents,
        )
        return jsonify(result.to_dict()), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/validate")
@require_auth
def validate_cart_route():
    """Every cart issue at once, without committing anything."""
    try:
        return jsonify(checkout_service.validate_cart(g.current_user.id)), 200
    except Exception:
        current_app.logger.exception("Failed to validate cart")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Sale with lines and receipt totals (for receipt rendering / reprint)."""
    try:
        return jsonify(sales_service.get_sale_detail(sale_id)), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500
