from __future__ import annotations
from datetime import datetime
from typing import Any

from pos_core.errors import ValidationError
from pos_core.time_utils import parse_iso_datetime, to_utc_naive


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# Prevents integer overflow on backends with 32-bit INTEGER columns
MAX_AMOUNT_CENTS = 999_999_999

_MISSING = object()


def parse_int(
    payload: dict,
    field: str,
    *,
    required: bool = True,
    default: Any = None,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    """
    Strict integer extraction from a JSON payload.

    Rejects floats, booleans, blank strings and scientific notation; accepts
    ints and plain digit strings (with optional leading minus).
    """
    raw = payload.get(field, _MISSING) if payload else _MISSING
    if raw is _MISSING or raw is None:
        if required:
            raise ValidationError(f"{field} is required")
        return default

    # bool is a subclass of int
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            value = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(raw, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return value


def parse_bool(payload: dict, field: str, *, default: bool = False) -> bool:
    raw = payload.get(field) if payload else None
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
    raise ValidationError(f"{field} must be a boolean")


def parse_str(
    payload: dict,
    field: str,
    *,
    required: bool = True,
    max_length: int | None = None,
) -> str | None:
    raw = payload.get(field) if payload else None
    if raw is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    value = str(raw).strip()
    if not value:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value


def parse_datetime(payload: dict, field: str, *, required: bool = True) -> datetime | None:
    raw = payload.get(field) if payload else None
    if raw is None or raw == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(raw, datetime):
        return to_utc_naive(raw)
    if not isinstance(raw, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def require_positive_quantity(quantity: Any, field: str = "quantity") -> int:
    """Service-side guard for quantities handed in by Python callers."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"{field} must be an integer")
    if quantity <= 0:
        raise ValidationError(f"{field} must be positive")
    return quantity


def require_amount_cents(amount: Any, field: str) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return amount
