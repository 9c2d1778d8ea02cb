# Overview: Flask CLI command groups for bootstrap, stock inspection and restocking.

# backend/ledgerpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create all tables (use `flask db upgrade` when running migrations instead).
# - python -m flask system seed-demo
#   Idempotent demo data: one store, a few products, stock at that store.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock:
# - python -m flask stock show --store-id 1 [--product-id 10]
#   Print quantity on hand.
# - python -m flask stock set --store-id 1 --product-id 10 --quantity 5
#   Overwrite quantity on hand (restock / count correction).
#
# Sales:
# - python -m flask sales summary 42
#   Print a sale with its refunds and refundable balance.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Product, Store
from .money import cents_to_amount
from .services import sales_service, stock_service
from .services.concurrency import run_in_transaction


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destroying all data')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@system_group.command('seed-demo')
@click.option('--quantity', default=5, show_default=True, help='Units of each product at the demo store')
@with_appcontext
def seed_demo(quantity):
    """Idempotently create a demo store, products and stock."""
    store = db.session.query(Store).filter_by(name="Main Store").first()
    if not store:
        store = Store(name="Main Store", address="1 Main Street")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    demo_products = [
        ("DEMO-001", "Coffee beans 1kg", 999),
        ("DEMO-002", "Paper filters", 349),
        ("DEMO-003", "Ceramic mug", 1250),
    ]
    for sku, name, price_cents in demo_products:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if not product:
            product = Product(sku=sku, name=name, price_cents=price_cents)
            db.session.add(product)
            db.session.commit()
            click.echo(f"PASS Created product: {sku} {name} (ID: {product.id})")
        store_id, product_id = store.id, product.id
        run_in_transaction(lambda: stock_service.set_quantity(store_id, product_id, quantity))
        click.echo(f"PASS Stock for {sku} at store {store_id}: {quantity}")


@click.group('stock')
def stock_group():
    """Stock inspection and restocking."""


@stock_group.command('show')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, default=None)
@with_appcontext
def show_stock(store_id, product_id):
    if product_id is not None:
        qty = stock_service.get_quantity(store_id, product_id)
        click.echo(f"store={store_id} product={product_id} quantity={qty}")
        return

    records = stock_service.list_store_stock(store_id)
    if not records:
        click.echo(f"No stock records for store {store_id}")
        return
    for rec in records:
        click.echo(f"store={rec.store_id} product={rec.product_id} quantity={rec.quantity}")


@stock_group.command('set')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@with_appcontext
def set_stock(store_id, product_id, quantity):
    try:
        record = run_in_transaction(lambda: stock_service.set_quantity(store_id, product_id, quantity))
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS store={record.store_id} product={record.product_id} quantity={record.quantity}")


@click.group('sales')
def sales_group():
    """Sale inspection."""


@sales_group.command('summary')
@click.argument('sale_id', type=int)
@with_appcontext
def sale_summary(sale_id):
    try:
        summary = sales_service.get_sale_summary(sale_id)
    except LedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    sale = summary["sale"]
    click.echo(f"Sale {sale['id']} store={sale['store_id']} customer={sale['customer_id']} "
               f"status={sale['status']} total={sale['total']:.2f}")
    for line in summary["refundable_lines"]:
        click.echo(f"  line {line['sale_line_id']}: product={line['product_id']} "
                   f"sold={line['quantity']} refundable={line['refundable_quantity']}")
    click.echo(f"Refunded: {cents_to_amount(summary['refunded_total_cents']):.2f} "
               f"Refundable: {cents_to_amount(summary['refundable_total_cents']):.2f}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sales_group)
