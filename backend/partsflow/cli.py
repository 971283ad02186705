# Overview: Flask CLI command groups for bootstrap and stock maintenance.

# backend/partsflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock:
# - python -m flask stock create --part-number BRK-001 --name "Brake pad" --qty 10 --purchase-price 45000
#   Register a part in a workshop, with optional opening quantity.
# - python -m flask stock adjust --note "Damaged in store" BRK-001 -- -2
#   Apply a manual quantity correction through the ledger.
# - python -m flask stock low --workshop MAIN
#   List active parts at or below their minimum level.
# - python -m flask stock alerts --workshop MAIN
#   Raise low-stock alerts, skipping parts that already have an open alert.

import click
from flask.cli import with_appcontext

from .errors import WorkflowError
from .extensions import db
from .services import ledger_service, stock_alert_service
from .services.concurrency import commit_with_retry


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


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


@click.group('stock')
def stock_group():
    """Stock master data and manual corrections."""


@stock_group.command('create')
@click.option('--part-number', required=True, help='Part number (unique per workshop)')
@click.option('--name', 'part_name', required=True, help='Part name')
@click.option('--workshop', default=None, help='Workshop code (defaults to DEFAULT_WORKSHOP)')
@click.option('--brand', default=None)
@click.option('--category', default=None)
@click.option('--location', default=None, help='Bin / rack location')
@click.option('--qty', type=int, default=0, help='Opening quantity')
@click.option('--purchase-price', type=int, default=0, help='Purchase price in cents')
@click.option('--selling-price', type=int, default=0, help='Selling price in cents')
@click.option('--tax-bps', type=int, default=0, help='Tax rate in basis points (1800 = 18%)')
@click.option('--min-level', type=int, default=0, help='Minimum stock level')
@with_appcontext
def create_stock(part_number, part_name, workshop, brand, category, location, qty,
                 purchase_price, selling_price, tax_bps, min_level):
    """Register a part in a workshop's stock."""
    try:
        item = ledger_service.create_stock_item(
            part_number=part_number,
            part_name=part_name,
            workshop_code=workshop,
            brand=brand,
            category=category,
            location=location,
            quantity_on_hand=qty,
            purchase_price_cents=purchase_price,
            selling_price_cents=selling_price,
            tax_rate_bps=tax_bps,
            min_stock_level=min_level,
            actor="cli",
        )
        commit_with_retry()
    except WorkflowError as e:
        db.session.rollback()
        raise click.ClickException(e.message)

    click.echo(f"PASS Created {item.part_number} in {item.workshop_code} (ID: {item.id}, qty: {item.quantity_on_hand})")


@stock_group.command('adjust')
@click.argument('part_number')
@click.argument('delta', type=int)
@click.option('--workshop', default=None, help='Workshop code (defaults to DEFAULT_WORKSHOP)')
@click.option('--note', default=None, help='Reason recorded on the movement')
@with_appcontext
def adjust_stock(part_number, delta, workshop, note):
    """Add DELTA (may be negative) to a part's quantity on hand."""
    try:
        item = ledger_service.get_stock_item_by_part_number(part_number, workshop)
        item = ledger_service.adjust_stock(item.id, delta, note=note or "Manual adjustment", actor="cli")
        commit_with_retry()
    except WorkflowError as e:
        db.session.rollback()
        raise click.ClickException(e.message)

    click.echo(f"PASS {item.part_number}: {delta:+d} -> {item.quantity_on_hand}")


@stock_group.command('low')
@click.option('--workshop', default=None, help='Workshop code (defaults to DEFAULT_WORKSHOP)')
@click.option('--limit', type=int, default=100)
@with_appcontext
def low_stock(workshop, limit):
    """List active parts at or below their minimum stock level."""
    items = ledger_service.list_low_stock(workshop, limit)
    if not items:
        click.echo("No low stock items.")
        return

    click.echo(f"{'Part':<20} {'Name':<30} {'On hand':>8} {'Min':>6}")
    click.echo("-" * 68)
    for item in items:
        click.echo(f"{item.part_number:<20} {item.part_name[:30]:<30} {item.quantity_on_hand:>8} {item.min_stock_level:>6}")


@stock_group.command('alerts')
@click.option('--workshop', default=None, help='Workshop code (defaults to DEFAULT_WORKSHOP)')
@with_appcontext
def generate_alerts(workshop):
    """Raise low-stock alerts for parts that do not already have an open one."""
    try:
        result = stock_alert_service.generate_low_stock_alerts(workshop, actor="cli")
        commit_with_retry()
    except WorkflowError as e:
        db.session.rollback()
        raise click.ClickException(e.message)

    for alert in result.created:
        click.echo(f"{alert.alert_number} {alert.priority:<8} {alert.part_number} (on hand {alert.current_qty})")
    click.echo(f"PASS {len(result.created)} created, {len(result.skipped)} skipped")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
