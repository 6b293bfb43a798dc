# Overview: Flask CLI command groups for bootstrap, pricing, ledger audits and cylinder registration.

# backend/lpgledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Pricing:
# - python -m flask pricing init-categories [--customer-type B2B|B2C|ALL]
#   Create or refresh the default margin categories.
# - python -m flask pricing set-plant-price 275000 [--date 2024-01-15] [--notes "..."]
#   Set the 11.8kg plant price (cents) for a day.
# - python -m flask pricing quote --customer-id 1 [--customer-type B2B] [--date 2024-01-15]
#   Show per-size prices for a customer.
#
# Ledger:
# - python -m flask ledger reconcile --customer-id 1 [--as-of 2024-01-31]
#   Replay a customer's log and compare with the stored balance and dues.
# - python -m flask ledger reconcile --all
#   Reconcile every active B2B customer; exits non-zero on any mismatch.
#
# Cylinders:
# - python -m flask cylinders register CYL-0001 STANDARD_15KG --store-id 1 [--status FULL]
#   Add a cylinder to the fleet.

import sys

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer
from .services import pricing_service, reconciliation_service, cylinder_service
from .validation import ValidationError
from .time_utils import parse_iso_date


def _date_option(value):
    if not value:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a YYYY-MM-DD date")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Database tables created")


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
    click.echo("START Recreating tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('pricing')
def pricing_group():
    """Plant prices and margin categories."""


@pricing_group.command('init-categories')
@click.option('--customer-type', default='ALL', type=click.Choice(['ALL', 'B2B', 'B2C']))
@with_appcontext
def init_categories(customer_type):
    created, updated = pricing_service.initialize_default_categories(customer_type)
    click.echo(f"PASS Margin categories: {created} created, {updated} updated")


@pricing_group.command('set-plant-price')
@click.argument('price_cents', type=int)
@click.option('--date', 'on_date', default=None, help='YYYY-MM-DD (default: today)')
@click.option('--notes', default=None)
@with_appcontext
def set_plant_price(price_cents, on_date, notes):
    try:
        price, created = pricing_service.set_plant_price(
            price_cents,
            on_date=_date_option(on_date),
            notes=notes,
        )
    except ValidationError as e:
        raise click.ClickException(str(e))
    verb = "Set" if created else "Updated"
    click.echo(f"PASS {verb} plant price for {price.date.isoformat()}: {price.plant_price_118kg_cents} cents")


@pricing_group.command('quote')
@click.option('--customer-id', type=int, required=True)
@click.option('--customer-type', default='B2B', type=click.Choice(['B2B', 'B2C']))
@click.option('--date', 'on_date', default=None)
@with_appcontext
def quote(customer_id, customer_type, on_date):
    try:
        result = pricing_service.quote_customer_prices(customer_id, customer_type, on_date=_date_option(on_date))
    except ValidationError as e:
        raise click.ClickException(str(e))

    click.echo(f"{result['customer']['name']} ({result['category']['name']})")
    click.echo(f"  Plant price {result['plant_price']['date']}: {result['plant_price']['plant_price_118kg_cents']} cents")
    click.echo(f"  Unit price per kg: {result['calculation']['unit_price_per_kg']}")
    for code, cents in result["final_prices_cents"].items():
        click.echo(f"  {code:<20} {cents} cents")


@click.group('ledger')
def ledger_group():
    """Ledger audits."""


@ledger_group.command('reconcile')
@click.option('--customer-id', type=int, default=None)
@click.option('--all', 'all_customers', is_flag=True, help='Reconcile every active customer')
@click.option('--as-of', default=None, help='YYYY-MM-DD')
@with_appcontext
def reconcile(customer_id, all_customers, as_of):
    """Replay the log and compare with stored aggregates."""
    if not customer_id and not all_customers:
        raise click.UsageError("Provide --customer-id or --all")

    as_of_date = _date_option(as_of)
    if all_customers:
        ids = [c.id for c in db.session.query(Customer.id).filter_by(is_active=True).order_by(Customer.id).all()]
    else:
        ids = [customer_id]

    mismatches = 0
    for cid in ids:
        try:
            report = reconciliation_service.reconcile_customer(cid, as_of=as_of_date)
        except ValidationError as e:
            raise click.ClickException(str(e))
        status = "PASS" if report.is_balanced else "FAIL"
        click.echo(
            f"{status} {report.customer_name} (ID: {report.customer_id}) "
            f"stored={report.stored_balance_cents} calculated={report.calculated.balance_cents} "
            f"difference={report.difference_cents} dues={report.due_differences}"
        )
        if not report.is_balanced:
            mismatches += 1

    if mismatches:
        click.echo(f"WARN {mismatches} customer(s) out of balance")
        sys.exit(1)


@click.group('cylinders')
def cylinders_group():
    """Cylinder fleet management."""


@cylinders_group.command('register')
@click.argument('code')
@click.argument('cylinder_type')
@click.option('--store-id', type=int, default=None)
@click.option('--vehicle-id', type=int, default=None)
@click.option('--status', default='FULL', type=click.Choice(['FULL', 'EMPTY', 'MAINTENANCE']))
@with_appcontext
def register(code, cylinder_type, store_id, vehicle_id, status):
    try:
        cylinder = cylinder_service.register_cylinder(
            code,
            cylinder_type,
            store_id=store_id,
            vehicle_id=vehicle_id,
            status=status,
        )
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Registered {cylinder.code} ({cylinder.cylinder_type}, {cylinder.current_status}) at {cylinder.location()}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(pricing_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(cylinders_group)
