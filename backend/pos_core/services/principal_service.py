# Overview: Verification of principal tokens issued by the auth collaborator.

"""
The engine does not authenticate anyone. The auth service signs a principal
{id, role, level, store_id} with the shared SECRET_KEY; this module only
verifies the signature and age and hands back a Principal.

issue_principal_token() exists for the auth side, dev tooling and tests.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer


TOKEN_SALT = "pos-principal"

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER)


class PrincipalError(Exception):
    """Raised when a principal token cannot be trusted."""
    pass


@dataclass(frozen=True)
class Principal:
    id: int
    role: str
    level: int = 0
    store_id: int | None = None

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_principal_token(principal: Principal) -> str:
    return _serializer().dumps(asdict(principal))


def resolve_principal(token: str) -> Principal:
    """
    Verify a bearer token and return its principal.

    Raises:
        PrincipalError: bad signature, expired token or malformed payload
    """
    max_age = current_app.config.get("PRINCIPAL_TOKEN_MAX_AGE_SECONDS", 43200)
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise PrincipalError("Token expired")
    except BadSignature:
        raise PrincipalError("Invalid token")

    if not isinstance(payload, dict):
        raise PrincipalError("Malformed token payload")

    principal_id = payload.get("id")
    role = payload.get("role")
    if isinstance(principal_id, bool) or not isinstance(principal_id, int):
        raise PrincipalError("Token has no principal id")
    if role not in ROLES:
        raise PrincipalError(f"Unknown role: {role!r}")

    level = payload.get("level") or 0
    store_id = payload.get("store_id")
    return Principal(id=principal_id, role=role, level=int(level), store_id=store_id)
