# Overview: Flask API routes for coupons; parses input and returns JSON responses.

"""
Coupon API Routes

SECURITY:
- Any authenticated principal may validate a code (cashier pre-check)
- Coupon management (create/update/deactivate/list/generate) is admin/manager
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import coupon_service
from ..services.principal_service import ROLE_ADMIN, ROLE_MANAGER
from ..decorators import require_auth, require_role
from pos_core.errors import DomainError
from pos_core.validation import parse_bool, parse_datetime, parse_int, parse_str


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


# field -> minimum, matching create
_INT_FIELDS = {
    "discount_value": 1,
    "min_purchase_cents": 0,
    "max_discount_cents": 0,
    "usage_limit": 1,
    "client_id": 1,
}


def _parse_coupon_changes(data: dict) -> dict:
    """Only keys present in the body become changes; explicit null clears a field."""
    changes = {}
    for name, minimum in _INT_FIELDS.items():
        if name in data:
            changes[name] = parse_int(data, name, required=False, minimum=minimum)
    if "name" in data:
        changes["name"] = parse_str(data, "name", required=False, max_length=255)
    if "description" in data:
        changes["description"] = parse_str(data, "description", required=False)
    if "discount_type" in data:
        changes["discount_type"] = (parse_str(data, "discount_type", max_length=16) or "").upper()
    if "expires_at" in data:
        changes["expires_at"] = parse_datetime(data, "expires_at", required=False)
    if "is_active" in data:
        changes["is_active"] = parse_bool(data, "is_active", default=True)
    if "allow_multiple_use" in data:
        changes["allow_multiple_use"] = parse_bool(data, "allow_multiple_use")
    return changes


@coupons_bp.post("/")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_coupon_route():
    """
    Request body:
    {
        "code": "SPRING10",
        "name": "Spring sale",
        "discount_type": "PERCENTAGE",      (PERCENTAGE | FIXED)
        "discount_value": 10,               (percent, or cents for FIXED)
        "min_purchase_cents": 0,            (optional)
        "max_discount_cents": null,         (optional)
        "usage_limit": null,                (optional, null = unlimited)
        "expires_at": "2030-01-01T00:00Z",  (optional)
        "allow_multiple_use": false,        (optional)
        "client_id": null                   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        coupon = coupon_service.create_coupon(
            code=parse_str(data, "code", max_length=64),
            name=parse_str(data, "name", max_length=255),
            discount_type=parse_str(data, "discount_type", max_length=16).upper(),
            discount_value=parse_int(data, "discount_value", minimum=1),
            description=parse_str(data, "description", required=False),
            min_purchase_cents=parse_int(data, "min_purchase_cents", required=False, default=0, minimum=0),
            max_discount_cents=parse_int(data, "max_discount_cents", required=False, minimum=0),
            usage_limit=parse_int(data, "usage_limit", required=False, minimum=1),
            expires_at=parse_datetime(data, "expires_at", required=False),
            allow_multiple_use=parse_bool(data, "allow_multiple_use"),
            client_id=parse_int(data, "client_id", required=False, minimum=1),
            created_by_user_id=g.current_user.id,
        )

        return jsonify({"coupon": coupon.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("/")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_coupons_route():
    try:
        args = request.args
        page = parse_int(args, "page", required=False, default=1, minimum=1)
        per_page = parse_int(args, "per_page", required=False, default=50, minimum=1, maximum=200)
        expired = None
        if args.get("expired") not in (None, ""):
            expired = parse_bool(args, "expired")

        coupons, total = coupon_service.list_coupons(
            active_only=parse_bool(args, "active_only"),
            expired=expired,
            client_id=parse_int(args, "client_id", required=False),
            page=page,
            per_page=per_page,
        )

        return jsonify({
            "coupons": [coupon.to_dict() for coupon in coupons],
            "pagination": {"page": page, "per_page": per_page, "total": total},
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list coupons")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("/validate/<string:code>")
@require_auth
def validate_coupon_route(code: str):
    """
    Query params:
        purchase_cents (required), client_id (optional)

    Always 200; is_valid=false comes with the list of violated rules.
    """
    try:
        args = request.args
        validation = coupon_service.validate_coupon(
            code,
            parse_int(args, "client_id", required=False),
            parse_int(args, "purchase_cents", minimum=0),
        )
        return jsonify(validation.to_dict()), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to validate coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("/<int:coupon_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.get_coupon(coupon_id)
        return jsonify({
            "coupon": coupon.to_dict(),
            "statistics": coupon_service.get_coupon_stats(coupon_id),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.patch("/<int:coupon_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_coupon_route(coupon_id: int):
    try:
        data = request.get_json(silent=True) or {}
        coupon = coupon_service.update_coupon(coupon_id, _parse_coupon_changes(data))
        return jsonify({"coupon": coupon.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.delete("/<int:coupon_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def deactivate_coupon_route(coupon_id: int):
    """Soft delete; usage history is kept."""
    try:
        coupon = coupon_service.deactivate_coupon(coupon_id)
        return jsonify({"coupon": coupon.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to deactivate coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.post("/generate-code")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def generate_code_route():
    try:
        data = request.get_json(silent=True) or {}
        code = coupon_service.generate_coupon_code(
            prefix=parse_str(data, "prefix", required=False, max_length=16) or "DESC",
            length=parse_int(data, "length", required=False, default=8),
        )
        return jsonify({"generated_code": code}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to generate coupon code")
        return jsonify({"error": "Internal server error"}), 500
