# Overview: Flask CLI command groups for bootstrap, demo data and order inspection.

# backend/supplydesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed-demo
#   Insert demo users, a category and products (idempotent by email / sku).
#
# Orders:
# - python -m flask orders show ECO26-0001
#   Print an order with its items, full status history and activity trail.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Category, Order, Product, User, UserRole, UserType
from .services.activity_service import list_activity
from .services.concurrency import run_in_transaction
from .services.order_number_service import parse_order_number
from .validation import ValidationError

DEMO_USERS = [
    ("admin@supplydesk.local", "Demo Admin", UserType.BUSINESS, UserRole.ADMIN),
    ("buyer@acme.local", "Acme Purchasing", UserType.BUSINESS, UserRole.CUSTOMER),
    ("jane@example.local", "Jane Doe", UserType.INDIVIDUAL, UserRole.CUSTOMER),
]

DEMO_PRODUCTS = [
    # sku, name, unit, base, wholesale, stock
    ("GLV-NIT-100", "Nitrile gloves (box of 100)", "box", 1_290_000, 1_050_000, 200),
    ("TAPE-DUCT-48", "Duct tape 48mm x 50m", "roll", 450_000, 380_000, 500),
    ("SAFE-GOG-01", "Safety goggles", "unit", 690_000, None, 75),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("OK  Tables created")


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

    click.echo("OK  Database reset complete")


@click.group('catalog')
def catalog_group():
    """Catalog data commands."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo users, category and products."""
    def _op():
        created = 0
        for email, name, user_type, role in DEMO_USERS:
            if db.session.query(User).filter_by(email=email).first():
                continue
            db.session.add(User(
                email=email,
                name=name,
                user_type=user_type.value,
                role=role.value,
                validated=True,
            ))
            created += 1

        category = db.session.query(Category).filter_by(slug="safety").first()
        if category is None:
            category = Category(name="Safety & consumables", slug="safety")
            db.session.add(category)
            db.session.flush()

        for sku, name, unit, base, wholesale, stock in DEMO_PRODUCTS:
            if db.session.query(Product).filter_by(sku=sku).first():
                continue
            db.session.add(Product(
                sku=sku,
                name=name,
                unit=unit,
                category_id=category.id,
                base_price_cents=base,
                wholesale_price_cents=wholesale,
                stock=stock,
            ))
            created += 1
        return created

    created = run_in_transaction(_op)
    click.echo(f"OK  Seeded {created} record(s)")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('show')
@click.argument('order_number')
@with_appcontext
def show_order(order_number):
    """Print an order with items, status history and activity trail."""
    try:
        parse_order_number(order_number)
    except ValidationError as e:
        raise click.BadParameter(str(e))

    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        click.echo(f"Order {order_number} not found")
        raise SystemExit(1)

    click.echo(f"{order.order_number}  [{order.status}]  {order.order_type}  v{order.version}")
    click.echo(f"  user={order.user_id}  shipping={order.shipping_method}  reserved={order.stock_reserved}")
    click.echo(
        f"  subtotal={order.subtotal_cents}  discount={order.discount_cents}  "
        f"shipping={order.shipping_cost_cents}  total={order.total_cents}"
    )
    click.echo("  Items:")
    for item in order.items:
        click.echo(
            f"    {item.product_sku:<16} x{item.quantity:<4} @ {item.unit_price_cents} "
            f"({item.price_source}, -{item.discount_percent}%) = {item.subtotal_cents}"
        )
    click.echo("  History:")
    for entry in order.status_history:
        reason = f"  reason={entry.reason}" if entry.reason else ""
        click.echo(
            f"    {entry.changed_at}  {entry.from_status or '-'} -> {entry.to_status}"
            f"  by={entry.changed_by_user_id}{reason}"
        )
    click.echo("  Activity:")
    for log in list_activity(entity_type="order", entity_id=order.id):
        click.echo(f"    {log.occurred_at}  {log.action:<22} user={log.user_id}  {log.description}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(orders_group)
