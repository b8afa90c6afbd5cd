# Overview: Flask API routes for the cart; parses input and returns JSON responses.

"""
Cart API Routes

The cart owner is always the authenticated principal; there is no way to
read or edit another owner's cart through this API.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cart_service
from ..decorators import require_auth
from pos_core.errors import DomainError
from pos_core.validation import parse_int


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("/")
@require_auth
def get_cart_route():
    try:
        return jsonify(cart_service.get_cart(g.current_user.id)), 200
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/items")
@require_auth
def add_item_route():
    """
    Add a product to the cart (merges with an existing line).

    Request body:
    {
        "product_id": 12,
        "quantity": 2
    }

    Returns:
        201: Line added or merged
        400: Invalid input
        404: Product not found
        409: Product inactive or insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = parse_int(data, "product_id", minimum=1)
        quantity = parse_int(data, "quantity", required=False, default=1, minimum=1)

        line = cart_service.add_item(g.current_user.id, product_id, quantity)

        return jsonify({
            "item": line.to_dict(),
            "cart": cart_service.get_cart(g.current_user.id),
        }), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/items/<int:line_id>")
@require_auth
def update_item_route(line_id: int):
    try:
        data = request.get_json(silent=True) or {}
        quantity = parse_int(data, "quantity")

        line = cart_service.update_quantity(g.current_user.id, line_id, quantity)

        return jsonify({
            "item": line.to_dict(),
            "cart": cart_service.get_cart(g.current_user.id),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:line_id>")
@require_auth
def remove_item_route(line_id: int):
    try:
        cart_service.remove_item(g.current_user.id, line_id)
        return jsonify({"cart": cart_service.get_cart(g.current_user.id)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/clear")
@require_auth
def clear_cart_route():
    try:
        cleared = cart_service.clear_cart(g.current_user.id)
        return jsonify({
            "cleared_lines": cleared,
            "cart": cart_service.get_cart(g.current_user.id),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500
