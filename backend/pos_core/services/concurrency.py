# Overview: Transaction helpers shared by every mutating service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the writer lock comes from begin_immediate() instead.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    On SQLite, take the database write lock before the first read.

    Without this, two writers can both read the same stock/usage values under
    a SHARED lock and one of them fails on upgrade. No-op on other dialects and
    when the connection is already inside a transaction.
    """
    if db.session.get_bind().dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int | None = None):
    """
    Run func inside one transaction: commit on success, roll back on ANY
    exception and re-raise it.

    Domain errors raised by func are never retried; transient storage
    conflicts are retried by run_with_retry with a fresh transaction.
    """
    if attempts is None:
        attempts = current_app.config.get("CONCURRENCY_RETRY_ATTEMPTS", 3)

    def _op():
        try:
            begin_immediate()
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts)
