"""
Tests for the checkout orchestrator.

Covers:
- happy path totals, receipt, stock, coupon and loyalty side effects
- money identity: total = subtotal - discount + tax, change = tendered - total
- every rejection leaves stock, coupons, loyalty and the cart untouched
- last-unit contention: only one sale can take it
- price-change confirmation, tax hook, sequential document numbers
"""

import pytest

from pos_core.errors import (
    EmptyCart,
    InsufficientPayment,
    InsufficientStock,
    InvalidCoupon,
    PriceChanged,
    ProductUnavailable,
    ValidationError,
)
from pos_core.models import CartLine, Coupon, CouponUsage, LoyaltyAccount, Product, Sale, StockMovement
from pos_core.services import cart_service, checkout_service
from pos_core.services.checkout_service import CheckoutRequest


def _reload(db_session, model, pk):
    db_session.expire_all()
    return db_session.get(model, pk)


def _request(owner_id=1, tendered_cents=0, **kwargs):
    return CheckoutRequest(
        owner_id=owner_id,
        cashier_id=kwargs.pop('cashier_id', owner_id),
        payment_method=kwargs.pop('payment_method', 'CASH'),
        tendered_cents=tendered_cents,
        **kwargs,
    )


# =============================================================================
# HAPPY PATH
# =============================================================================

class TestCheckoutCompletes:

    def test_coupon_sale_totals_and_side_effects(self, db_session, make_product, make_coupon, sell):
        product = make_product(price_cents=1000, stock=10)
        coupon = make_coupon(code="SAVE10", discount_type="PERCENTAGE", discount_value=10)

        result = sell([(product, 2)], tendered_cents=2000, coupon_code="SAVE10", client_id=9)

        sale = result.sale
        assert result.state == "COMPLETED"
        assert sale.subtotal_cents == 2000
        assert sale.discount_cents == 200
        assert sale.tax_cents == 0
        assert sale.total_cents == 1800
        assert sale.change_cents == 200
        assert sale.status == "COMPLETED"
        assert sale.coupon_code == "SAVE10"

        assert _reload(db_session, Product, product.id).stock_quantity == 8
        assert _reload(db_session, Coupon, coupon.id).usage_count == 1
        usage = db_session.query(CouponUsage).one()
        assert usage.sale_id == sale.id
        assert usage.client_id == 9
        assert usage.discount_cents == 200

    def test_lines_and_receipt(self, db_session, make_product, sell):
        a = make_product(price_cents=1000, stock=10)
        b = make_product(price_cents=350, stock=10)

        result = sell([(a, 1), (b, 3)], tendered_cents=5000, payment_method="cash")

        assert [(line.product_id, line.quantity, line.line_total_cents) for line in result.lines] == [
            (a.id, 1, 1000),
            (b.id, 3, 1050),
        ]
        receipt = result.receipt
        assert receipt["sale_number"] == result.sale.document_number
        assert receipt["payment_method"] == "CASH"
        assert receipt["totals"]["subtotal_cents"] == 2050
        assert receipt["totals"]["change_cents"] == 2950
        assert len(receipt["items"]) == 2

    def test_cart_lines_checked_out(self, db_session, make_product, sell):
        product = make_product(stock=10)

        result = sell([(product, 2)])

        line = db_session.query(CartLine).one()
        assert line.is_active is False
        assert line.removal_reason == "CHECKED_OUT"
        assert line.sale_id == result.sale.id
        assert cart_service.get_cart(1)["items"] == []

    def test_stock_movements_reference_sale(self, db_session, make_product, sell):
        product = make_product(stock=10)

        result = sell([(product, 4)], cashier_id=55)

        movement = db_session.query(StockMovement).one()
        assert movement.movement_type == "SALE"
        assert movement.quantity_delta == -4
        assert movement.reference_id == result.sale.id
        assert movement.created_by_user_id == 55

    def test_loyalty_points_accrued(self, db_session, make_product, sell):
        product = make_product(price_cents=2550, stock=10)

        result = sell([(product, 1)], client_id=3)

        assert result.points_earned == 2
        account = db_session.query(LoyaltyAccount).filter_by(client_id=3).one()
        assert account.points_balance == 2

    def test_anonymous_sale_has_no_loyalty(self, db_session, make_product, sell):
        product = make_product(price_cents=5000, stock=10)

        result = sell([(product, 1)])

        assert result.points_earned == 0
        assert db_session.query(LoyaltyAccount).count() == 0

    def test_document_numbers_are_sequential(self, db_session, make_product, sell):
        product = make_product(stock=10)

        first = sell([(product, 1)], owner_id=1)
        second = sell([(product, 1)], owner_id=2)

        assert first.sale.document_number == "S-000001"
        assert second.sale.document_number == "S-000002"

    def test_exact_payment_gives_zero_change(self, db_session, make_product, sell):
        product = make_product(price_cents=999, stock=10)
        result = sell([(product, 1)], tendered_cents=999)
        assert result.sale.change_cents == 0

    def test_tax_hook(self, app, db_session, make_product, sell):
        app.config['TAX_CALCULATOR'] = lambda taxable_cents, lines: taxable_cents * 16 // 100
        product = make_product(price_cents=1000, stock=10)

        result = sell([(product, 1)], tendered_cents=2000)

        sale = result.sale
        assert sale.tax_cents == 160
        assert sale.total_cents == 1160
        assert sale.total_cents == sale.subtotal_cents - sale.discount_cents + sale.tax_cents
        assert sale.change_cents == 840


# =============================================================================
# REJECTIONS
# =============================================================================

class TestCheckoutRejected:

    def test_empty_cart(self, db_session):
        with pytest.raises(EmptyCart) as exc_info:
            checkout_service.checkout(_request(tendered_cents=100))
        assert exc_info.value.details["state"] == "REJECTED"

    def test_insufficient_payment_changes_nothing(self, db_session, make_product):
        product = make_product(price_cents=1000, stock=10)
        cart_service.add_item(1, product.id, 2)

        with pytest.raises(InsufficientPayment) as exc_info:
            checkout_service.checkout(_request(tendered_cents=1500))

        details = exc_info.value.details
        assert details["total_cents"] == 2000
        assert details["shortfall_cents"] == 500
        assert details["cart"]["summary"]["item_count"] == 2
        assert db_session.query(Sale).count() == 0
        assert _reload(db_session, Product, product.id).stock_quantity == 10
        assert len(cart_service.get_cart(1)["items"]) == 1

    def test_invalid_coupon_lists_violations(self, db_session, make_product, make_coupon):
        product = make_product(price_cents=1000, stock=10)
        make_coupon(code="BIG", min_purchase_cents=5000, is_active=False)
        cart_service.add_item(1, product.id, 1)

        with pytest.raises(InvalidCoupon) as exc_info:
            checkout_service.checkout(_request(tendered_cents=1000, coupon_code="BIG"))

        rules = {v["rule"] for v in exc_info.value.violations}
        assert rules == {"INACTIVE", "BELOW_MIN_PURCHASE"}
        assert db_session.query(Sale).count() == 0

    def test_coupon_single_use_per_client(self, db_session, make_product, make_coupon, sell):
        product = make_product(price_cents=1000, stock=10)
        coupon = make_coupon(code="ONCE")
        sell([(product, 1)], coupon_code="ONCE", client_id=4)

        with pytest.raises(InvalidCoupon) as exc_info:
            sell([(product, 1)], coupon_code="ONCE", client_id=4)

        assert exc_info.value.violations[0]["rule"] == "ALREADY_USED"
        assert _reload(db_session, Coupon, coupon.id).usage_count == 1

    def test_coupon_usage_limit(self, db_session, make_product, make_coupon, sell):
        product = make_product(price_cents=1000, stock=10)
        make_coupon(code="LAST", usage_limit=1)
        sell([(product, 1)], owner_id=1, coupon_code="LAST", client_id=1)

        with pytest.raises(InvalidCoupon) as exc_info:
            sell([(product, 1)], owner_id=2, coupon_code="LAST", client_id=2)

        assert {v["rule"] for v in exc_info.value.violations} == {"USAGE_LIMIT_REACHED"}

    def test_product_deactivated_after_add(self, db_session, make_product):
        product = make_product(stock=10)
        cart_service.add_item(1, product.id, 1)
        product.is_active = False
        db_session.commit()

        with pytest.raises(ProductUnavailable):
            checkout_service.checkout(_request(tendered_cents=5000))

    def test_last_unit_only_sold_once(self, db_session, make_product):
        product = make_product(price_cents=1000, stock=1)
        cart_service.add_item(1, product.id, 1)
        cart_service.add_item(2, product.id, 1)

        checkout_service.checkout(_request(owner_id=1, tendered_cents=1000))
        with pytest.raises(InsufficientStock) as exc_info:
            checkout_service.checkout(_request(owner_id=2, tendered_cents=1000))

        assert exc_info.value.details["available"] == 0
        assert _reload(db_session, Product, product.id).stock_quantity == 0
        assert db_session.query(Sale).count() == 1

    def test_invalid_payment_method(self, db_session, make_product):
        product = make_product(stock=10)
        cart_service.add_item(1, product.id, 1)
        with pytest.raises(ValidationError):
            checkout_service.checkout(_request(tendered_cents=5000, payment_method="BITCOIN"))

    def test_negative_tender_rejected(self, db_session, make_product):
        product = make_product(stock=10)
        cart_service.add_item(1, product.id, 1)
        with pytest.raises(ValidationError):
            checkout_service.checkout(_request(tendered_cents=-1))

    def test_failure_after_writes_rolls_back_everything(self, db_session, make_product, make_coupon, monkeypatch):
        product = make_product(price_cents=1000, stock=10)
        coupon = make_coupon(code="SAVE10")
        cart_service.add_item(1, product.id, 2)

        def boom(*args, **kwargs):
            raise RuntimeError("loyalty store unavailable")

        monkeypatch.setattr(checkout_service, "accrue_points", boom)

        with pytest.raises(RuntimeError):
            checkout_service.checkout(
                _request(tendered_cents=5000, coupon_code="SAVE10", client_id=3)
            )

        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(CouponUsage).count() == 0
        assert _reload(db_session, Product, product.id).stock_quantity == 10
        assert _reload(db_session, Coupon, coupon.id).usage_count == 0
        assert len(cart_service.get_cart(1)["items"]) == 1


# =============================================================================
# PRICE CHANGES / PRE-VALIDATION
# =============================================================================

class TestPriceChanges:

    def _cart_with_stale_price(self, db_session, make_product):
        product = make_product(price_cents=1000, stock=10)
        cart_service.add_item(1, product.id, 2)
        product.price_cents = 1200
        db_session.commit()
        return product

    def test_unconfirmed_price_change_rejected(self, db_session, make_product):
        product = self._cart_with_stale_price(db_session, make_product)

        with pytest.raises(PriceChanged) as exc_info:
            checkout_service.checkout(_request(tendered_cents=5000))

        change = exc_info.value.details["changes"][0]
        assert change["product_id"] == product.id
        assert change["old_price_cents"] == 1000
        assert change["new_price_cents"] == 1200
        assert db_session.query(Sale).count() == 0

    def test_confirmed_price_change_uses_current_price(self, db_session, make_product):
        self._cart_with_stale_price(db_session, make_product)

        result = checkout_service.checkout(_request(tendered_cents=5000, confirm_price_changes=True))

        assert result.sale.subtotal_cents == 2400
        assert result.lines[0].unit_price_cents == 1200
        assert result.warnings[0]["type"] == "PRICE_CHANGED"

    def test_validate_cart_reports_all_issues(self, db_session, make_product):
        stale = self._cart_with_stale_price(db_session, make_product)
        short = make_product(stock=3)
        gone = make_product(stock=10)
        cart_service.add_item(1, short.id, 3)
        cart_service.add_item(1, gone.id, 1)
        short.stock_quantity = 1
        gone.is_active = False
        db_session.commit()

        report = checkout_service.validate_cart(1)

        assert report["is_valid"] is False
        by_product = {issue["product_id"]: issue["type"] for issue in report["issues"]}
        assert by_product == {
            stale.id: "PRICE_CHANGED",
            short.id: "INSUFFICIENT_STOCK",
            gone.id: "PRODUCT_UNAVAILABLE",
        }
        assert report["cart_summary"]["line_count"] == 3

    def test_validate_empty_cart(self, db_session):
        report = checkout_service.validate_cart(1)
        assert report["is_valid"] is False
        assert report["issues"][0]["type"] == "EMPTY_CART"

    def test_validate_clean_cart(self, db_session, make_product):
        product = make_product(stock=10)
        cart_service.add_item(1, product.id, 2)
        assert checkout_service.validate_cart(1)["is_valid"] is True
