"""
Tests for the refund orchestrator.

CRITICAL: refunded quantity per sale line never exceeds sold quantity.
"""

import pytest

from pos_core.errors import (
    AlreadyFullyRefunded,
    LineNotInSale,
    RefundExceedsAvailable,
    RefundNotFound,
    SaleNotFound,
    ValidationError,
)
from pos_core.models import LoyaltyAccount, Product, Refund, Sale, StockMovement
from pos_core.services import refund_service
from pos_core.services.refund_service import RefundItem


def _reload(db_session, model, pk):
    db_session.expire_all()
    return db_session.get(model, pk)


@pytest.fixture
def sold(make_product, sell):
    """Sale of 5 x product A (1000) and 2 x product B (400)."""
    a = make_product(price_cents=1000, stock=10)
    b = make_product(price_cents=400, stock=10)
    result = sell([(a, 5), (b, 2)], client_id=7)
    return result.sale, a, b


class TestPartialRefund:

    def test_partial_refund_restores_stock(self, db_session, sold):
        sale, a, _ = sold

        refund = refund_service.process_refund(
            sale.id, "partial", "Damaged", user_id=2, items=[RefundItem(a.id, 2)]
        )

        assert refund.refund_type == "PARTIAL"
        assert refund.status == "COMPLETED"
        assert refund.total_cents == 2000
        assert refund.document_number == "RF-000001"
        assert _reload(db_session, Product, a.id).stock_quantity == 7
        movement = db_session.query(StockMovement).filter_by(movement_type="REFUND").one()
        assert movement.reference_id == refund.id
        assert _reload(db_session, Sale, sale.id).status == "COMPLETED"

    def test_second_partial_exceeding_remaining_rejected(self, db_session, sold):
        sale, a, _ = sold
        refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 2, items=[RefundItem(a.id, 2)])

        with pytest.raises(RefundExceedsAvailable) as exc_info:
            refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 2, items=[RefundItem(a.id, 4)])

        assert exc_info.value.details["available"] == 3
        assert exc_info.value.details["requested"] == 4
        assert db_session.query(Refund).count() == 1
        assert _reload(db_session, Product, a.id).stock_quantity == 7

    def test_duplicate_items_are_summed(self, db_session, sold):
        sale, a, _ = sold

        with pytest.raises(RefundExceedsAvailable):
            refund_service.process_refund(
                sale.id, "PARTIAL", "Damaged", 2, items=[RefundItem(a.id, 3), RefundItem(a.id, 3)]
            )

    def test_product_not_in_sale(self, db_session, sold, make_product):
        sale, _, _ = sold
        other = make_product()

        with pytest.raises(LineNotInSale):
            refund_service.process_refund(sale.id, "PARTIAL", "Wrong", 2, items=[RefundItem(other.id, 1)])

    def test_partial_requires_items(self, db_session, sold):
        sale, _, _ = sold
        with pytest.raises(ValidationError):
            refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 2, items=[])

    def test_refunding_every_line_partially_marks_sale_refunded(self, db_session, sold):
        sale, a, b = sold

        refund_service.process_refund(
            sale.id, "PARTIAL", "Returned", 2, items=[RefundItem(a.id, 5), RefundItem(b.id, 2)]
        )

        refreshed = _reload(db_session, Sale, sale.id)
        assert refreshed.status == "REFUNDED"
        assert refreshed.refunded_at is not None


class TestFullRefund:

    def test_full_refund_takes_only_remaining(self, db_session, sold):
        sale, a, b = sold
        refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 2, items=[RefundItem(a.id, 2)])

        refund = refund_service.process_refund(sale.id, "FULL", "Customer changed mind", 2)

        quantities = {line.product_id: line.quantity for line in refund.lines}
        assert quantities == {a.id: 3, b.id: 2}
        assert refund.total_cents == 3 * 1000 + 2 * 400
        assert _reload(db_session, Sale, sale.id).status == "REFUNDED"
        assert _reload(db_session, Product, a.id).stock_quantity == 10
        assert _reload(db_session, Product, b.id).stock_quantity == 10

    def test_refund_after_full_refund_rejected(self, db_session, sold):
        sale, a, _ = sold
        refund_service.process_refund(sale.id, "FULL", "Returned", 2)

        with pytest.raises(AlreadyFullyRefunded):
            refund_service.process_refund(sale.id, "FULL", "Again", 2)
        with pytest.raises(AlreadyFullyRefunded):
            refund_service.process_refund(sale.id, "PARTIAL", "Again", 2, items=[RefundItem(a.id, 1)])

    def test_loyalty_not_reversed(self, db_session, sold):
        sale, _, _ = sold
        before = db_session.query(LoyaltyAccount).filter_by(client_id=7).one().points_balance

        refund_service.process_refund(sale.id, "FULL", "Returned", 2)

        db_session.expire_all()
        after = db_session.query(LoyaltyAccount).filter_by(client_id=7).one().points_balance
        assert after == before == 5

    def test_unknown_sale(self, db_session):
        with pytest.raises(SaleNotFound):
            refund_service.process_refund(999, "FULL", "Returned", 2)

    @pytest.mark.parametrize("refund_type,reason", [("EXCHANGE", "x"), ("FULL", " ")])
    def test_invalid_input(self, db_session, sold, refund_type, reason):
        sale, _, _ = sold
        with pytest.raises(ValidationError):
            refund_service.process_refund(sale.id, refund_type, reason, 2)


class TestRefundQueries:

    def test_refundable_quantities(self, db_session, sold):
        sale, a, b = sold
        refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 2, items=[RefundItem(a.id, 2)])

        rows = {row["product_id"]: row for row in refund_service.get_refundable_quantities(sale.id)}

        assert rows[a.id]["quantity_sold"] == 5
        assert rows[a.id]["quantity_refunded"] == 2
        assert rows[a.id]["quantity_available"] == 3
        assert rows[b.id]["quantity_available"] == 2

    def test_detail_and_sale_refunds(self, db_session, sold):
        sale, a, _ = sold
        first = refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 2, items=[RefundItem(a.id, 1)])
        second = refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 3, items=[RefundItem(a.id, 1)])

        detail = refund_service.get_refund_detail(first.id)
        assert detail["refund"]["original_sale_number"] == sale.document_number
        assert detail["lines"][0]["quantity"] == 1

        assert [r.id for r in refund_service.get_sale_refunds(sale.id)] == [first.id, second.id]
        assert second.document_number == "RF-000002"

    def test_list_filters(self, db_session, sold):
        sale, a, _ = sold
        refund_service.process_refund(sale.id, "PARTIAL", "Damaged", 2, items=[RefundItem(a.id, 1)])
        refund_service.process_refund(sale.id, "FULL", "Returned", 3)

        _, total = refund_service.list_refunds()
        partials, _ = refund_service.list_refunds(refund_type="partial")
        by_user, _ = refund_service.list_refunds(processed_by_user_id=3)
        completed, _ = refund_service.list_refunds(status="completed")
        cancelled, cancelled_total = refund_service.list_refunds(status="CANCELLED")

        assert total == 2
        assert [r.refund_type for r in partials] == ["PARTIAL"]
        assert [r.refund_type for r in by_user] == ["FULL"]
        assert len(completed) == 2
        assert cancelled == [] and cancelled_total == 0

    def test_unknown_refund(self, db_session):
        with pytest.raises(RefundNotFound):
            refund_service.get_refund(404)

    def test_zero_priced_sale_refunds_by_quantity(self, db_session, make_product, sell):
        product = make_product(price_cents=0, stock=5)
        sale = sell([(product, 1)], tendered_cents=0).sale
        refund = refund_service.process_refund(sale.id, "FULL", "Returned", 2)

        assert refund.total_cents == 0
        with pytest.raises(AlreadyFullyRefunded):
            refund_service.process_refund(sale.id, "FULL", "Again", 2)
