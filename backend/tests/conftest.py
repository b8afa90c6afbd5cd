"""
Pytest fixtures for the sale engine tests.

Provides the app with an in-memory database, a per-test table wipe, catalog
and coupon factories, and signed principal headers for route tests.
"""

from datetime import timedelta

import pytest
from pos_core import create_app
from pos_core.extensions import db
from pos_core.models import Coupon, Product
from pos_core.services import cart_service
from pos_core.services.checkout_service import CheckoutRequest, checkout
from pos_core.services.principal_service import Principal, issue_principal_token
from pos_core.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-secret-key',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.config['TAX_CALCULATOR'] = None

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Seed a catalog row the way the catalog service would."""
    counter = {'n': 0}

    def _make(price_cents=1000, stock=10, min_stock=0, is_active=True, name=None, sku=None):
        counter['n'] += 1
        product = Product(
            sku=sku or f"SKU-{counter['n']:04d}",
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            stock_quantity=stock,
            min_stock=min_stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_coupon(db_session):
    def _make(code="SAVE10", discount_type="PERCENTAGE", discount_value=10, **kwargs):
        coupon = Coupon(
            code=code,
            name=kwargs.pop('name', f"Coupon {code}"),
            discount_type=discount_type,
            discount_value=discount_value,
            min_purchase_cents=kwargs.pop('min_purchase_cents', 0),
            usage_count=kwargs.pop('usage_count', 0),
            is_active=kwargs.pop('is_active', True),
            allow_multiple_use=kwargs.pop('allow_multiple_use', False),
            **kwargs,
        )
        db_session.add(coupon)
        db_session.commit()
        return coupon

    return _make


@pytest.fixture(scope='function')
def sell(db_session):
    """Put items in an owner's cart and check out. items: [(product, qty), ...]."""
    def _sell(items, owner_id=1, tendered_cents=None, **kwargs):
        for product, quantity in items:
            cart_service.add_item(owner_id, product.id, quantity)
        if tendered_cents is None:
            tendered_cents = sum(product.price_cents * quantity for product, quantity in items)
        request = CheckoutRequest(
            owner_id=owner_id,
            cashier_id=kwargs.pop('cashier_id', owner_id),
            payment_method=kwargs.pop('payment_method', 'CASH'),
            tendered_cents=tendered_cents,
            **kwargs,
        )
        return checkout(request)

    return _sell


@pytest.fixture(scope='function')
def past():
    return utcnow() - timedelta(days=1)


@pytest.fixture(scope='function')
def future():
    return utcnow() + timedelta(days=30)


def token_for(principal_id: int, role: str, store_id: int | None = None) -> str:
    """Sign a principal the way the auth service does."""
    return issue_principal_token(Principal(id=principal_id, role=role, level=0, store_id=store_id))


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(app):
    """Authorization headers for an arbitrary principal."""
    def _headers(principal_id, role, store_id=None):
        return auth_headers(token_for(principal_id, role, store_id))

    return _headers


@pytest.fixture(scope='function')
def cashier_headers(app):
    return auth_headers(token_for(101, 'cashier', store_id=1))


@pytest.fixture(scope='function')
def manager_headers(app):
    return auth_headers(token_for(201, 'manager', store_id=1))
