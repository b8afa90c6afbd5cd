# Overview: Flask API routes for the inventory ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import inventory_service
from ..services.principal_service import ROLE_ADMIN, ROLE_MANAGER
from ..decorators import require_auth, require_role
from pos_core.errors import DomainError
from pos_core.validation import parse_bool, parse_int, parse_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/products/<int:product_id>/adjust")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def adjust_stock_route(product_id: int):
    """
    Manual stock correction.

    Request body:
    {
        "quantity_delta": -3,
        "reason": "Damaged in storage"
    }

    Returns:
        201: Movement recorded
        404: Product not found
        409: Adjustment would make stock negative
    """
    try:
        data = request.get_json(silent=True) or {}

        movement = inventory_service.adjust_stock(
            product_id,
            parse_int(data, "quantity_delta"),
            parse_str(data, "reason", max_length=255),
            user_id=g.current_user.id,
        )

        current_app.logger.info(
            "Stock adjusted for product %s by user %s: %+d (now %s)",
            product_id,
            g.current_user.id,
            movement.quantity_delta,
            movement.new_stock,
        )
        return jsonify({
            "movement": movement.to_dict(),
            "product": inventory_service.get_product(product_id).to_dict(),
        }), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/movements")
@require_auth
def list_movements_route(product_id: int):
    try:
        limit = parse_int(request.args, "limit", required=False, default=100, minimum=1, maximum=500)
        movements = inventory_service.list_stock_movements(product_id, limit=limit)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/alerts")
@require_auth
def list_alerts_route():
    """
    Query params:
        resolved (default false; "all" for both), alert_type, page, per_page
    """
    try:
        args = request.args
        resolved = None if args.get("resolved") == "all" else parse_bool(args, "resolved")
        page = parse_int(args, "page", required=False, default=1, minimum=1)
        per_page = parse_int(args, "per_page", required=False, default=50, minimum=1, maximum=200)

        alerts, total = inventory_service.list_stock_alerts(
            resolved=resolved,
            alert_type=args.get("alert_type"),
            page=page,
            per_page=per_page,
        )

        return jsonify({
            "alerts": [alert.to_dict() for alert in alerts],
            "pagination": {"page": page, "per_page": per_page, "total": total},
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock alerts")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/alerts/summary")
@require_auth
def alert_summary_route():
    """Low-stock, out-of-stock and unresolved alert counts for the dashboard."""
    try:
        return jsonify({"summary": inventory_service.get_alert_summary()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load stock alert summary")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/alerts/<int:alert_id>/resolve")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def resolve_alert_route(alert_id: int):
    try:
        data = request.get_json(silent=True) or {}
        alert = inventory_service.resolve_alert(
            alert_id,
            g.current_user.id,
            parse_str(data, "note", required=False, max_length=255),
        )
        return jsonify({"alert": alert.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to resolve stock alert")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    try:
        limit = parse_int(request.args, "limit", required=False, default=100, minimum=1, maximum=500)
        products = inventory_service.list_low_stock_products(limit=limit)
        return jsonify({"products": [p.to_dict() for p in products]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list low stock products")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/out-of-stock")
@require_auth
def out_of_stock_route():
    try:
        limit = parse_int(request.args, "limit", required=False, default=100, minimum=1, maximum=500)
        products = inventory_service.list_out_of_stock_products(limit=limit)
        return jsonify({"products": [p.to_dict() for p in products]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list out of stock products")
        return jsonify({"error": "Internal server error"}), 500
