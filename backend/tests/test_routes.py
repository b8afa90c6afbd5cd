"""
Tests for the HTTP surface.

Covers:
- principal token required on every /api route (401)
- role gates on refunds, coupon management and stock adjustment (403)
- error payloads carry {"error", "code", "details"}
- cart -> checkout -> refund end to end over HTTP
"""

import pytest

from pos_core.models import Coupon, Product


def _add(client, headers, product_id, quantity=1):
    return client.post('/api/cart/items', json={'product_id': product_id, 'quantity': quantity}, headers=headers)


# =============================================================================
# AUTHENTICATION / AUTHORIZATION
# =============================================================================

class TestAuth:

    def test_missing_token(self, client, db_session):
        response = client.get('/api/cart/')
        assert response.status_code == 401

    def test_bad_token(self, client, db_session):
        response = client.get('/api/cart/', headers={'Authorization': 'Bearer not-a-token'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Invalid or expired token'

    def test_cashier_cannot_refund(self, client, db_session, cashier_headers):
        response = client.post('/api/refunds/', json={'sale_id': 1}, headers=cashier_headers)
        assert response.status_code == 403
        assert set(response.get_json()['required_roles']) == {'admin', 'manager'}

    def test_cashier_cannot_adjust_stock(self, client, db_session, cashier_headers, make_product):
        product = make_product()
        response = client.post(
            f'/api/inventory/products/{product.id}/adjust',
            json={'quantity_delta': 5, 'reason': 'Delivery'},
            headers=cashier_headers,
        )
        assert response.status_code == 403

    def test_cashier_cannot_create_coupon(self, client, db_session, cashier_headers):
        response = client.post(
            '/api/coupons/',
            json={'code': 'X', 'name': 'X', 'discount_type': 'FIXED', 'discount_value': 100},
            headers=cashier_headers,
        )
        assert response.status_code == 403

    def test_health_is_public(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['checks']['database']['status'] == 'healthy'


# =============================================================================
# CART
# =============================================================================

class TestCartRoutes:

    def test_add_and_view(self, client, db_session, cashier_headers, make_product):
        product = make_product(price_cents=750, stock=5)

        response = _add(client, cashier_headers, product.id, 2)

        assert response.status_code == 201
        cart = response.get_json()['cart']
        assert cart['owner_id'] == 101
        assert cart['summary']['subtotal_cents'] == 1500

    def test_carts_are_per_principal(self, client, db_session, cashier_headers, headers_for, make_product):
        product = make_product()
        _add(client, cashier_headers, product.id)

        other = headers_for(102, 'cashier')
        response = client.get('/api/cart/', headers=other)

        assert response.get_json()['items'] == []

    def test_insufficient_stock_error_shape(self, client, db_session, cashier_headers, make_product):
        product = make_product(stock=1)

        response = _add(client, cashier_headers, product.id, 2)

        assert response.status_code == 409
        body = response.get_json()
        assert body['code'] == 'INSUFFICIENT_STOCK'
        assert body['details']['available'] == 1

    def test_invalid_quantity(self, client, db_session, cashier_headers, make_product):
        product = make_product()
        response = _add(client, cashier_headers, product.id, 1.5)
        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_update_remove_clear(self, client, db_session, cashier_headers, make_product):
        a = make_product()
        b = make_product()
        line_id = _add(client, cashier_headers, a.id).get_json()['item']['id']
        _add(client, cashier_headers, b.id)

        response = client.patch(f'/api/cart/items/{line_id}', json={'quantity': 3}, headers=cashier_headers)
        assert response.status_code == 200
        assert response.get_json()['item']['quantity'] == 3

        response = client.delete(f'/api/cart/items/{line_id}', headers=cashier_headers)
        assert response.status_code == 200

        response = client.delete('/api/cart/clear', headers=cashier_headers)
        assert response.status_code == 200
        assert client.get('/api/cart/', headers=cashier_headers).get_json()['items'] == []


# =============================================================================
# CHECKOUT / REFUND
# =============================================================================

class TestCheckoutRoutes:

    def test_checkout_and_receipt(self, client, db_session, cashier_headers, make_product, make_coupon):
        product = make_product(price_cents=1000, stock=10)
        make_coupon(code='SAVE10')
        _add(client, cashier_headers, product.id, 2)

        response = client.post(
            '/api/checkout/',
            json={'payment_method': 'CASH', 'tendered_cents': 2000, 'coupon_code': 'SAVE10'},
            headers=cashier_headers,
        )

        assert response.status_code == 201
        body = response.get_json()
        assert body['state'] == 'COMPLETED'
        assert body['receipt']['totals'] == {
            'subtotal_cents': 2000,
            'discount_cents': 200,
            'tax_cents': 0,
            'total_cents': 1800,
            'tendered_cents': 2000,
            'change_cents': 200,
        }
        assert body['sale']['cashier_id'] == 101
        assert body['sale']['store_id'] == 1

        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_quantity == 8
        assert db_session.query(Coupon).filter_by(code='SAVE10').one().usage_count == 1

        sale_id = body['sale']['id']
        detail = client.get(f'/api/checkout/{sale_id}', headers=cashier_headers)
        assert detail.status_code == 200
        assert detail.get_json()['receipt']['sale_number'] == body['sale']['document_number']

    def test_rejection_returns_cart(self, client, db_session, cashier_headers, make_product):
        product = make_product(price_cents=1000, stock=10)
        _add(client, cashier_headers, product.id, 1)

        response = client.post(
            '/api/checkout/',
            json={'payment_method': 'CASH', 'tendered_cents': 500},
            headers=cashier_headers,
        )

        assert response.status_code == 400
        body = response.get_json()
        assert body['code'] == 'INSUFFICIENT_PAYMENT'
        assert body['details']['state'] == 'REJECTED'
        assert body['details']['shortfall_cents'] == 500
        assert len(body['details']['cart']['items']) == 1

    def test_validate_endpoint(self, client, db_session, cashier_headers):
        response = client.post('/api/checkout/validate', headers=cashier_headers)
        assert response.status_code == 200
        assert response.get_json()['issues'][0]['type'] == 'EMPTY_CART'

    def test_unknown_sale(self, client, db_session, cashier_headers):
        response = client.get('/api/checkout/9999', headers=cashier_headers)
        assert response.status_code == 404
        assert response.get_json()['code'] == 'SALE_NOT_FOUND'

    def test_refund_flow(self, client, db_session, cashier_headers, manager_headers, make_product):
        product = make_product(price_cents=1000, stock=10)
        _add(client, cashier_headers, product.id, 5)
        sale_id = client.post(
            '/api/checkout/',
            json={'payment_method': 'CARD', 'tendered_cents': 5000},
            headers=cashier_headers,
        ).get_json()['sale']['id']

        response = client.post(
            '/api/refunds/',
            json={
                'sale_id': sale_id,
                'refund_type': 'PARTIAL',
                'reason': 'Damaged',
                'items': [{'product_id': product.id, 'quantity': 2}],
            },
            headers=manager_headers,
        )
        assert response.status_code == 201
        assert response.get_json()['refund']['total_cents'] == 2000

        response = client.post(
            '/api/refunds/',
            json={
                'sale_id': sale_id,
                'refund_type': 'PARTIAL',
                'reason': 'Damaged',
                'items': [{'product_id': product.id, 'quantity': 4}],
            },
            headers=manager_headers,
        )
        assert response.status_code == 409
        assert response.get_json()['code'] == 'REFUND_EXCEEDS_AVAILABLE'

        response = client.post(
            '/api/refunds/',
            json={'sale_id': sale_id, 'refund_type': 'FULL', 'reason': 'Returned'},
            headers=manager_headers,
        )
        assert response.status_code == 201
        assert response.get_json()['lines'][0]['quantity'] == 3

        refundable = client.get(f'/api/refunds/sale/{sale_id}/refundable', headers=manager_headers)
        assert refundable.get_json()['lines'][0]['quantity_available'] == 0

        listed = client.get('/api/refunds/?status=completed', headers=manager_headers).get_json()
        assert listed['pagination']['total'] == 2
        listed = client.get('/api/refunds/?status=CANCELLED', headers=manager_headers).get_json()
        assert listed['refunds'] == []


# =============================================================================
# COUPONS / INVENTORY / LOYALTY
# =============================================================================

class TestManagementRoutes:

    def test_coupon_lifecycle(self, client, db_session, manager_headers, cashier_headers):
        response = client.post(
            '/api/coupons/',
            json={'code': 'spring', 'name': 'Spring', 'discount_type': 'percentage', 'discount_value': 15},
            headers=manager_headers,
        )
        assert response.status_code == 201
        coupon_id = response.get_json()['coupon']['id']

        duplicate = client.post(
            '/api/coupons/',
            json={'code': 'SPRING', 'name': 'Again', 'discount_type': 'FIXED', 'discount_value': 100},
            headers=manager_headers,
        )
        assert duplicate.status_code == 409

        check = client.get('/api/coupons/validate/spring?purchase_cents=1000', headers=cashier_headers)
        assert check.status_code == 200
        assert check.get_json()['discount_cents'] == 150

        response = client.delete(f'/api/coupons/{coupon_id}', headers=manager_headers)
        assert response.status_code == 200

        check = client.get('/api/coupons/validate/SPRING?purchase_cents=1000', headers=cashier_headers)
        assert check.get_json()['is_valid'] is False

    @pytest.mark.parametrize('field', ['usage_limit', 'client_id', 'discount_value'])
    def test_coupon_update_rejects_zero(self, client, db_session, manager_headers, make_coupon, field):
        coupon = make_coupon(code='ZERO')

        response = client.patch(f'/api/coupons/{coupon.id}', json={field: 0}, headers=manager_headers)

        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'
        db_session.expire_all()
        assert getattr(db_session.get(Coupon, coupon.id), field) != 0

    def test_adjust_stock_and_alerts(self, client, db_session, manager_headers, make_product):
        product = make_product(stock=6, min_stock=5)

        response = client.post(
            f'/api/inventory/products/{product.id}/adjust',
            json={'quantity_delta': -3, 'reason': 'Shrinkage'},
            headers=manager_headers,
        )
        assert response.status_code == 201
        assert response.get_json()['product']['stock_quantity'] == 3

        alerts = client.get('/api/inventory/alerts', headers=manager_headers).get_json()
        assert alerts['pagination']['total'] == 1
        alert_id = alerts['alerts'][0]['id']

        summary = client.get('/api/inventory/alerts/summary', headers=manager_headers).get_json()['summary']
        assert summary == {'low_stock_count': 1, 'out_of_stock_count': 0, 'unresolved_alerts_count': 1}

        response = client.post(
            f'/api/inventory/alerts/{alert_id}/resolve',
            json={'note': 'Reorder placed'},
            headers=manager_headers,
        )
        assert response.status_code == 200

        response = client.post(
            f'/api/inventory/products/{product.id}/adjust',
            json={'quantity_delta': -4, 'reason': 'Shrinkage'},
            headers=manager_headers,
        )
        assert response.status_code == 409
        assert response.get_json()['code'] == 'INSUFFICIENT_STOCK'

    def test_loyalty_adjust_and_redeem(self, client, db_session, manager_headers, cashier_headers):
        response = client.post(
            '/api/loyalty/points',
            json={'client_id': 7, 'points': 10, 'reason': 'Welcome'},
            headers=manager_headers,
        )
        assert response.status_code == 200

        response = client.post(
            '/api/loyalty/redeem',
            json={'client_id': 7, 'points': 20, 'reason': 'Too much'},
            headers=cashier_headers,
        )
        assert response.status_code == 409
        assert response.get_json()['code'] == 'INSUFFICIENT_POINTS'

        account = client.get('/api/loyalty/clients/7', headers=cashier_headers).get_json()['account']
        assert account['points_balance'] == 10
