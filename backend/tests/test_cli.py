"""
Tests for the Flask CLI groups.
"""

from pos_core.models import Product, StockMovement


def test_products_add_books_initial_stock(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        'products', 'add', '--sku', 'CLI-1', '--name', 'Widget',
        '--price-cents', '1500', '--stock', '4', '--min-stock', '2',
    ])

    assert result.exit_code == 0, result.output
    db_session.expire_all()
    product = db_session.query(Product).filter_by(sku='CLI-1').one()
    assert product.stock_quantity == 4
    movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
    assert movement.reason == 'Initial stock'


def test_products_add_duplicate_sku(app, db_session, make_product):
    make_product(sku='DUP-1')
    runner = app.test_cli_runner()

    result = runner.invoke(args=['products', 'add', '--sku', 'DUP-1', '--name', 'Again', '--price-cents', '1'])

    assert result.exit_code != 0
    assert 'already exists' in result.output


def test_inventory_adjust_rejects_negative_stock(app, db_session, make_product):
    product = make_product(stock=1)
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        'inventory', 'adjust', '--product-id', str(product.id), '--delta', '-2', '--reason', 'Shrinkage',
    ])

    assert result.exit_code != 0
    assert 'Insufficient stock' in result.output


def test_inventory_alerts_and_loyalty_balance(app, db_session, make_product):
    product = make_product(stock=6, min_stock=5)
    runner = app.test_cli_runner()
    runner.invoke(args=[
        'inventory', 'adjust', '--product-id', str(product.id), '--delta', '-3', '--reason', 'Shrinkage',
    ])

    alerts = runner.invoke(args=['inventory', 'alerts'])
    balance = runner.invoke(args=['loyalty', 'balance', '--client-id', '9'])

    assert '[OPEN]' in alerts.output
    assert 'Client 9: 0 points' in balance.output
