# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .services import principal_service
from .services.principal_service import PrincipalError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid principal token.

    Sets g.current_user (Principal) and g.store_id.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Bad signature or expired token
    - Malformed principal payload
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        try:
            principal = principal_service.resolve_principal(token)
        except PrincipalError as e:
            current_app.logger.warning("Rejected principal token on %s: %s", request.path, e)
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = principal
        g.store_id = principal.store_id

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated principal to hold one of the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not g.current_user.has_role(*roles):
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
