# Overview: Flask CLI command groups for bootstrap and stock ledger maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent; existing tables are left alone).
#
# Shop management:
# - python -m flask shops list
#   List all shops with product counts.
# - python -m flask shops create --name "Main Street" --code "MAIN"
#   Create a new shop.
#
# Stock ledger maintenance (all accept --shop-id to limit the pass to one shop):
# - python -m flask stock sync-initial
#   Seed each product's initial movement from its current stock_qty.
# - python -m flask stock recalculate
#   Replay every ledger from 0 and rewrite snapshots and stock_qty.
# - python -m flask stock full-sync
#   sync-initial followed by recalculate.
# - python -m flask stock recalculate-from-initial
#   Treat stock_qty as the starting point and add non-initial movements.
#   NOT idempotent: every run adds the movements again. Run it once.
# - python -m flask stock backfill
#   Emit sale movements for completed transactions that have none.
#
# Every maintenance command exits with status 1 when any product failed.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Shop
from .services import checkout_service, reconciliation_service
from .services.reconciliation_service import (
    OP_FULL_SYNC,
    OP_RECALCULATE,
    OP_RECALCULATE_FROM_INITIAL,
    OP_SYNC_INITIAL,
)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database ready.")


@click.group('shops')
def shops_group():
    """Shop (tenant) management commands."""


@shops_group.command('list')
@with_appcontext
def list_shops():
    """List all shops."""
    shops = db.session.query(Shop).order_by(Shop.id.asc()).all()

    if not shops:
        click.echo("No shops found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Products'}")
    click.echo("="*70)

    for shop in shops:
        product_count = db.session.query(Product).filter_by(shop_id=shop.id).count()
        active_str = "Yes" if shop.is_active else "No"
        click.echo(f"{shop.id:<5} {shop.name:<30} {shop.code or '-':<15} {active_str:<8} {product_count}")

    click.echo("="*70 + "\n")


@shops_group.command('create')
@click.option('--name', required=True, help='Shop name')
@click.option('--code', help='Short code (unique)')
@with_appcontext
def create_shop_cli(name, code):
    """Create a new shop."""
    if db.session.query(Shop).filter_by(name=name).first():
        click.echo(f"FAIL Shop named '{name}' already exists")
        return
    if code and db.session.query(Shop).filter_by(code=code).first():
        click.echo(f"FAIL Shop with code '{code}' already exists")
        return

    shop = Shop(name=name, code=code, is_active=True)
    db.session.add(shop)
    db.session.commit()

    click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id}, Code: {shop.code or '-'})")


@click.group('stock')
def stock_group():
    """Stock ledger maintenance commands."""


def _echo_errors(errors) -> None:
    for error in errors:
        parts = [f"{k}={v}" for k, v in error.to_dict().items() if k != "error"]
        click.echo(f"  - {error.error} ({', '.join(parts) or 'no context'})")


def _run_stock_operation(operation: str, shop_id):
    stats = reconciliation_service.run_operation(operation, shop_id=shop_id)

    click.echo(
        f"{operation}: {stats.total_processed}/{stats.total_products} processed, "
        f"{stats.total_errors} errors"
    )
    _echo_errors(stats.errors)

    if stats.total_errors:
        click.echo(f"FAIL {operation} finished with errors")
        click.get_current_context().exit(1)
    click.echo(f"PASS {operation} complete")


shop_id_option = click.option('--shop-id', type=int, default=None, help='Limit the pass to one shop')


@stock_group.command('sync-initial')
@shop_id_option
@with_appcontext
def sync_initial_cli(shop_id):
    """Seed initial movements from current stock_qty."""
    _run_stock_operation(OP_SYNC_INITIAL, shop_id)


@stock_group.command('recalculate')
@shop_id_option
@with_appcontext
def recalculate_cli(shop_id):
    """Replay every product's ledger from 0."""
    _run_stock_operation(OP_RECALCULATE, shop_id)


@stock_group.command('full-sync')
@shop_id_option
@with_appcontext
def full_sync_cli(shop_id):
    """sync-initial, then recalculate."""
    _run_stock_operation(OP_FULL_SYNC, shop_id)


@stock_group.command('recalculate-from-initial')
@shop_id_option
@with_appcontext
def recalculate_from_initial_cli(shop_id):
    """Add non-initial movements to stock_qty. NOT idempotent."""
    _run_stock_operation(OP_RECALCULATE_FROM_INITIAL, shop_id)


@stock_group.command('backfill')
@shop_id_option
@with_appcontext
def backfill_cli(shop_id):
    """Emit sale movements for completed transactions that have none."""
    results = checkout_service.backfill_stock_movements(shop_id=shop_id)

    click.echo(
        f"backfill: {results.processed} processed, {results.skipped} skipped, "
        f"{results.movements_created} movements created, {results.errors} errors"
    )
    _echo_errors(results.error_details)

    if results.errors:
        click.echo("FAIL backfill finished with errors")
        click.get_current_context().exit(1)
    click.echo("PASS backfill complete")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(stock_group)
