# Overview: Flask API routes for the loyalty ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import loyalty_service
from ..services.principal_service import ROLE_ADMIN, ROLE_MANAGER
from ..decorators import require_auth, require_role
from pos_core.errors import DomainError
from pos_core.validation import parse_int, parse_str


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/clients/<int:client_id>")
@require_auth
def get_account_route(client_id: int):
    try:
        return jsonify({"account": loyalty_service.get_account(client_id)}), 200
    except Exception:
        current_app.logger.exception("Failed to load loyalty account")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/clients/<int:client_id>/transactions")
@require_auth
def list_transactions_route(client_id: int):
    try:
        limit = parse_int(request.args, "limit", required=False, default=100, minimum=1, maximum=500)
        txns = loyalty_service.list_transactions(client_id, limit=limit)
        return jsonify({"transactions": [txn.to_dict() for txn in txns]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list loyalty transactions")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/clients/<int:client_id>/stats")
@require_auth
def reward_stats_route(client_id: int):
    try:
        return jsonify(loyalty_service.get_reward_stats(client_id)), 200
    except Exception:
        current_app.logger.exception("Failed to load loyalty stats")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/redeem")
@require_auth
def redeem_points_route():
    """
    Request body:
    {
        "client_id": 7,
        "points": 100,
        "reason": "Free coffee"
    }

    Returns:
        200: Updated account
        409: Insufficient points
    """
    try:
        data = request.get_json(silent=True) or {}
        account = loyalty_service.redeem_points(
            parse_int(data, "client_id", minimum=1),
            parse_int(data, "points", minimum=1),
            parse_str(data, "reason", max_length=255),
            user_id=g.current_user.id,
        )
        return jsonify({"account": account.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to redeem points")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/points")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def adjust_points_route():
    """Manager grant (positive) or deduction (negative)."""
    try:
        data = request.get_json(silent=True) or {}
        account = loyalty_service.adjust_points(
            parse_int(data, "client_id", minimum=1),
            parse_int(data, "points"),
            parse_str(data, "reason", max_length=255),
            user_id=g.current_user.id,
        )
        return jsonify({"account": account.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust points")
        return jsonify({"error": "Internal server error"}), 500
