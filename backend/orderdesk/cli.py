# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/orderdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Products:
# - python -m flask products seed-demo
#   Idempotent demo catalogue (skips SKUs that already exist).
# - python -m flask products stock [--low 5]
#   Stock table with reserved and available quantities.
#
# Sales:
# - python -m flask sales show 12
#   Status, totals and payment summary of one sale.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import NotFoundError
from .models import Product
from .repositories import products
from .services import payment_service, sales_service


DEMO_PRODUCTS = [
    ("DEMO-001", "Polo shirt", 59.90, None, 40),
    ("DEMO-002", "Denim jacket", 189.00, 159.00, 12),
    ("DEMO-003", "Canvas sneakers", 129.50, None, 25),
    ("DEMO-004", "Leather belt", 45.00, 39.90, 30),
    ("DEMO-005", "Wool scarf", 35.00, None, 0),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema created")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('products')
def products_group():
    """Catalogue and stock inspection commands."""


@products_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo products (idempotent by SKU)."""
    created = 0
    for sku, name, price, offer_price, stock in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            click.echo(f"WARN  {sku} already exists, skipping...")
            continue
        db.session.add(Product(sku=sku, name=name, price=price, offer_price=offer_price, stock=stock))
        created += 1
    db.session.commit()
    click.echo(f"PASS Created {created} demo products")


@products_group.command('stock')
@click.option('--low', 'low', type=int, default=None, help='Only products with available <= N')
@with_appcontext
def stock_table(low):
    """Show stock, reserved and available quantities."""
    rows = products.list_stock(low_threshold=low)
    if not rows:
        click.echo("No products found")
        return

    click.echo(f"{'ID':>5}  {'SKU':<14} {'NAME':<28} {'STOCK':>6} {'RSVD':>6} {'AVAIL':>6}")
    for p in rows:
        click.echo(f"{p.id:>5}  {p.sku:<14} {p.name[:28]:<28} {p.stock:>6} {p.reserved_stock:>6} {p.available:>6}")


@click.group('sales')
def sales_group():
    """Sale inspection commands."""


@sales_group.command('show')
@click.argument('sale_id', type=int)
@with_appcontext
def show_sale(sale_id):
    """Print status, totals and payment summary of a sale."""
    try:
        sale = sales_service.get_sale(sale_id)
    except NotFoundError as e:
        raise click.ClickException(e.message)

    summary = payment_service.summarize(sale)
    click.echo(f"Sale {sale.sale_number} (ID: {sale.id})")
    click.echo(f"  Status:    {sale.status}")
    click.echo(f"  Customer:  {sale.customer_name or sale.customer_id}")
    if sale.parent_sale_id:
        click.echo(f"  Parent:    {sale.parent_sale_id}")
    click.echo("  Items:")
    for item in sale.items:
        click.echo(f"    {item.quantity:>4} x {item.sku:<14} {item.unit_price:>10.2f}  -{item.discount:g}%  = {item.subtotal:.2f}")
    click.echo(f"  Subtotal:  {sale.subtotal:.2f}")
    click.echo(f"  Discount:  {sale.discount:.2f}")
    click.echo(f"  Shipping:  {sale.shipping_cost:.2f}")
    click.echo(f"  Total:     {sale.total:.2f} (tax {sale.tax:.2f})")
    click.echo(f"  Net paid:  {summary.net_paid:.2f}")
    click.echo(f"  Balance:   {summary.balance:.2f}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(products_group)
    app.cli.add_command(sales_group)
