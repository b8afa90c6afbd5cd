# backend/pos_core/config.py
from __future__ import annotations
import os


class Config:
    # Shared with the auth collaborator: principal tokens are signed with it
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pos_core.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pos_core.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    PRINCIPAL_TOKEN_MAX_AGE_SECONDS = int(os.environ.get("PRINCIPAL_TOKEN_MAX_AGE_SECONDS", "43200"))

    # Callable(taxable_cents: int, cart_lines: list[CartLine]) -> int; None means no tax
    TAX_CALCULATOR = None

    CONCURRENCY_RETRY_ATTEMPTS = int(os.environ.get("CONCURRENCY_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
