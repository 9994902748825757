# Overview: Flask CLI command groups for bootstrap, catalog setup and payment re-polling.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP=retailpos (PowerShell: $env:FLASK_APP="retailpos").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for migrated deployments.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username admin --role admin
# - python -m flask users list
# - python -m flask users issue-token admin --days 30
#   Print a bearer token for API access (shown once).
#
# Catalog:
# - python -m flask catalog add-product --name "Rice 5kg" --price-cents 650 --stock 20 --reorder-level 5
# - python -m flask catalog add-customer --name "Walk-in"
# - python -m flask catalog add-supplier --name "Acme Wholesale"
#
# Sales:
# - python -m flask sales pending [--older-than-minutes 5]
# - python -m flask sales reconcile-pending [--older-than-minutes 5]
#   Re-poll the gateway for pending QR sales; settles the confirmed ones.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Product, Supplier, User
from .models.auth import VALID_ROLES, ROLE_CASHIER
from .services import reconcile_service, session_service
from .services.errors import GatewayUnavailableError
from .services.sales_service import list_pending_sales
from .time_utils import utcnow


def _older_than(minutes):
    return utcnow() - timedelta(minutes=minutes) if minutes is not None else None


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """Staff user commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES), default=ROLE_CASHIER, show_default=True)
@with_appcontext
def create_user(username, role):
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"WARN  User '{username}' already exists, skipping...")
        return
    user = User(username=username, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} (ID: {user.id}) with role '{role}'")


@users_group.command('list')
@with_appcontext
def list_users():
    for user in db.session.query(User).order_by(User.id).all():
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} {status}")


@users_group.command('issue-token')
@click.argument('username')
@click.option('--days', default=30, show_default=True, type=int)
@with_appcontext
def issue_token(username, days):
    """Print a new bearer token for USERNAME."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL No user named '{username}'")
        raise SystemExit(1)
    try:
        token = session_service.issue_token(user.id, timedelta(days=days))
    except ValueError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(token)


@click.group('catalog')
def catalog_group():
    """Products, customers and suppliers."""


@catalog_group.command('add-product')
@click.option('--name', required=True)
@click.option('--price-cents', required=True, type=click.IntRange(min=0))
@click.option('--cost-cents', default=0, type=click.IntRange(min=0))
@click.option('--stock', default=0, type=click.IntRange(min=0))
@click.option('--reorder-level', default=0, type=click.IntRange(min=0))
@with_appcontext
def add_product(name, price_cents, cost_cents, stock, reorder_level):
    product = Product(
        name=name,
        unit_price_cents=price_cents,
        unit_cost_cents=cost_cents,
        stock_quantity=stock,
        reorder_level=reorder_level,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {name} (ID: {product.id})")


@catalog_group.command('add-customer')
@click.option('--name', required=True)
@click.option('--phone')
@click.option('--email')
@with_appcontext
def add_customer(name, phone, email):
    customer = Customer(name=name, phone=phone, email=email)
    db.session.add(customer)
    db.session.commit()
    click.echo(f"PASS Created customer: {name} (ID: {customer.id})")


@catalog_group.command('add-supplier')
@click.option('--name', required=True)
@click.option('--phone')
@click.option('--email')
@with_appcontext
def add_supplier(name, phone, email):
    supplier = Supplier(name=name, phone=phone, email=email)
    db.session.add(supplier)
    db.session.commit()
    click.echo(f"PASS Created supplier: {name} (ID: {supplier.id})")


@click.group('sales')
def sales_group():
    """Sale inspection and payment re-polling."""


@sales_group.command('pending')
@click.option('--older-than-minutes', type=int, default=None)
@with_appcontext
def pending_sales(older_than_minutes):
    sales = list_pending_sales(_older_than(older_than_minutes))
    if not sales:
        click.echo("No pending sales")
        return
    for sale in sales:
        click.echo(
            f"{sale.id:>6}  {sale.invoice_number:<16} {sale.total_amount_cents:>10}c  "
            f"{sale.created_at}  {sale.pending_payment_reference}"
        )


@sales_group.command('reconcile-pending')
@click.option('--older-than-minutes', type=int, default=None)
@with_appcontext
def reconcile_pending(older_than_minutes):
    """Ask the gateway about every pending QR sale and settle confirmed ones."""
    try:
        summary = reconcile_service.reconcile_pending(_older_than(older_than_minutes))
    except GatewayUnavailableError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Settled: {len(summary['settled'])} {summary['settled']}")
    click.echo(f"WAIT Unconfirmed: {len(summary['unconfirmed'])}")
    for sale_id, code in summary["failed"].items():
        click.echo(f"FAIL Sale {sale_id}: {code}")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(sales_group)
