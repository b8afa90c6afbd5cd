# Overview: Flask CLI command groups for bootstrap, seeding and inspection.

# backend/pos_core/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog seeding (dev only; the catalog service owns products in production):
# - python -m flask products add --sku A-1 --name "Widget" --price-cents 1500 --stock 10 --min-stock 3
# - python -m flask products list
#
# Inventory:
# - python -m flask inventory adjust --product-id 1 --delta -2 --reason "Damaged"
# - python -m flask inventory alerts [--all]
#
# Loyalty:
# - python -m flask loyalty balance --client-id 7

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import Product
from .services import inventory_service, loyalty_service
from .errors import DomainError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('products')
def products_group():
    """Dev seeding of catalog rows."""


@products_group.command('add')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=click.IntRange(min=0), required=True)
@click.option('--stock', type=click.IntRange(min=0), default=0, show_default=True)
@click.option('--min-stock', type=click.IntRange(min=0), default=0, show_default=True)
@with_appcontext
def add_product(sku, name, price_cents, stock, min_stock):
    """Insert a product row. Initial stock is booked as a MANUAL movement."""
    product = Product(sku=sku, name=name, price_cents=price_cents, stock_quantity=0, min_stock=min_stock, is_active=True)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"SKU {sku} already exists")

    if stock:
        inventory_service.adjust_stock(product.id, stock, "Initial stock")
    click.echo(f"PASS Product {product.id} ({sku}) created with stock {stock}.")


@products_group.command('list')
@with_appcontext
def list_products():
    products = db.session.query(Product).order_by(Product.id.asc()).all()
    if not products:
        click.echo("No products.")
        return

    click.echo(f"{'ID':<6} {'SKU':<16} {'NAME':<30} {'PRICE':>10} {'STOCK':>7} {'MIN':>5} ACTIVE")
    click.echo("-" * 86)
    for p in products:
        click.echo(
            f"{p.id:<6} {p.sku:<16} {p.name[:30]:<30} {p.price_cents:>10} "
            f"{p.stock_quantity:>7} {p.min_stock:>5} {'yes' if p.is_active else 'no'}"
        )


@click.group('inventory')
def inventory_group():
    """Stock corrections and alert inspection."""


@inventory_group.command('adjust')
@click.option('--product-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--reason', required=True)
@click.option('--user-id', type=int, default=None)
@with_appcontext
def adjust(product_id, delta, reason, user_id):
    try:
        movement = inventory_service.adjust_stock(product_id, delta, reason, user_id=user_id)
    except DomainError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Stock {movement.previous_stock} -> {movement.new_stock} for product {product_id}.")


@inventory_group.command('alerts')
@click.option('--all', 'show_all', is_flag=True, help='Include resolved alerts')
@with_appcontext
def alerts(show_all):
    items, total = inventory_service.list_stock_alerts(resolved=None if show_all else False, per_page=200)
    if not items:
        click.echo("No alerts.")
        return

    click.echo(f"{total} alert(s)")
    for alert in items:
        state = "RESOLVED" if alert.is_resolved else "OPEN"
        click.echo(f"[{state}] #{alert.id} product={alert.product_id} {alert.alert_type}: {alert.message}")


@click.group('loyalty')
def loyalty_group():
    """Loyalty account inspection."""


@loyalty_group.command('balance')
@click.option('--client-id', type=int, required=True)
@with_appcontext
def balance(client_id):
    account = loyalty_service.get_account(client_id)
    click.echo(
        f"Client {client_id}: {account['points_balance']} points "
        f"(earned {account['lifetime_points_earned']}, redeemed {account['lifetime_points_redeemed']})"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(loyalty_group)
