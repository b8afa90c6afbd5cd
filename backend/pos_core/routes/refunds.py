# Overview: Flask API routes for refunds; parses input and returns JSON responses.

"""
Refund API Routes

SECURITY:
- admin/manager only, for processing AND for listing
- processed_by_user_id always comes from the principal, never the body
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import refund_service
from ..services.principal_service import ROLE_ADMIN, ROLE_MANAGER
from ..services.refund_service import RefundItem
from ..decorators import require_auth, require_role
from pos_core.errors import DomainError, ValidationError
from pos_core.validation import parse_datetime, parse_int, parse_str


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


def _parse_items(data: dict) -> list[RefundItem] | None:
    raw_items = data.get("items")
    if raw_items is None:
        return None
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        items.append(RefundItem(
            product_id=parse_int(raw, "product_id", minimum=1),
            quantity=parse_int(raw, "quantity", minimum=1),
        ))
    return items


@refunds_bp.post("/")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def process_refund_route():
    """
    Process a FULL or PARTIAL refund.

    Request body:
    {
        "sale_id": 123,
        "refund_type": "PARTIAL",
        "reason": "Damaged item",
        "items": [{"product_id": 5, "quantity": 1}],   (PARTIAL only)
        "notes": "..."                                 (optional)
    }

    Returns:
        201: Refund completed
        400: Invalid input / product not on sale
        404: Sale not found
        409: Already fully refunded, nothing to refund, exceeds available
    """
    try:
        data = request.get_json(silent=True) or {}

        refund = refund_service.process_refund(
            sale_id=parse_int(data, "sale_id", minimum=1),
            refund_type=parse_str(data, "refund_type", max_length=16),
            reason=parse_str(data, "reason", max_length=2000),
            user_id=g.current_user.id,
            items=_parse_items(data),
            notes=parse_str(data, "notes", required=False, max_length=2000),
        )

        current_app.logger.info(
            "Refund %s processed by user %s: total=%s cents",
            refund.document_number,
            g.current_user.id,
            refund.total_cents,
        )
        return jsonify(refund_service.get_refund_detail(refund.id)), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to process refund")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("/")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_refunds_route():
    try:
        args = request.args
        page = parse_int(args, "page", required=False, default=1, minimum=1)
        per_page = parse_int(args, "per_page", required=False, default=50, minimum=1, maximum=200)

        refunds, total = refund_service.list_refunds(
            refund_type=args.get("refund_type"),
            status=args.get("status"),
            processed_by_user_id=parse_int(args, "processed_by_user_id", required=False),
            from_date=parse_datetime(args, "from_date", required=False),
            to_date=parse_datetime(args, "to_date", required=False),
            page=page,
            per_page=per_page,
        )

        return jsonify({
            "refunds": [refund.to_dict() for refund in refunds],
            "pagination": {"page": page, "per_page": per_page, "total": total},
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list refunds")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("/<int:refund_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_refund_route(refund_id: int):
    try:
        return jsonify(refund_service.get_refund_detail(refund_id)), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load refund")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("/sale/<int:sale_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_sale_refunds_route(sale_id: int):
    try:
        refunds = refund_service.get_sale_refunds(sale_id)
        return jsonify({"refunds": [refund.to_dict() for refund in refunds]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale refunds")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("/sale/<int:sale_id>/refundable")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_refundable_route(sale_id: int):
    """Per-line sold / refunded / available quantities."""
    try:
        return jsonify({
            "sale_id": sale_id,
            "lines": refund_service.get_refundable_quantities(sale_id),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load refundable quantities")
        return jsonify({"error": "Internal server error"}), 500
