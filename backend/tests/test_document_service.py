"""
Tests for document number allocation.
"""

import pytest

from pos_core.models import DocumentSequence
from pos_core.services import document_service
from pos_core.services.concurrency import run_atomic
from pos_core.services.document_service import DOC_TYPE_SALE, next_document_number


def _allocate():
    return run_atomic(lambda: next_document_number(document_type=DOC_TYPE_SALE, prefix="S"))


def test_numbers_are_sequential_per_type(db_session):
    assert _allocate() == "S-000001"
    assert _allocate() == "S-000002"
    assert run_atomic(
        lambda: next_document_number(document_type=document_service.DOC_TYPE_REFUND, prefix="RF")
    ) == "RF-000001"


def test_losing_first_insert_race_reuses_existing_row(db_session, monkeypatch):
    # Another writer created the sequence between our UPDATE and our INSERT
    db_session.add(DocumentSequence(document_type=DOC_TYPE_SALE, next_number=5))
    db_session.commit()

    real_increment = document_service._increment
    calls = []

    def increment_after_race(stmt):
        calls.append(stmt)
        if len(calls) == 1:
            return 0
        return real_increment(stmt)

    monkeypatch.setattr(document_service, "_increment", increment_after_race)

    assert _allocate() == "S-000005"
    assert len(calls) == 2
    db_session.expire_all()
    assert db_session.query(DocumentSequence).filter_by(document_type=DOC_TYPE_SALE).one().next_number == 6


def test_failed_caller_does_not_consume_a_number(db_session):
    def _op():
        next_document_number(document_type=DOC_TYPE_SALE, prefix="S")
        raise RuntimeError("caller failed")

    with pytest.raises(RuntimeError):
        run_atomic(_op)

    assert _allocate() == "S-000001"
