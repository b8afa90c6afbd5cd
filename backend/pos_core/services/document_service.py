# Overview: Human-readable document number allocation for sales and refunds.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOC_TYPE_SALE = "SALE"
DOC_TYPE_REFUND = "REFUND"


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a type (e.g. "S-000001").

    Must run inside the caller's transaction: the sequence row update is
    rolled back together with the document if the caller fails, so numbers
    are never handed out for documents that do not exist.
    """
    if not document_type:
        raise ValueError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    db.session.flush()
    if _increment(stmt):
        next_num = _current_number(document_type) - 1
    else:
        # First document of this type. The insert runs in a savepoint so that
        # losing the race to a concurrent first insert leaves the caller's
        # transaction usable; the increment is then re-run on the winner's row.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            if not _increment(stmt):
                raise
            next_num = _current_number(document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"


def _increment(stmt) -> int:
    return db.session.execute(stmt).rowcount


def _current_number(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
