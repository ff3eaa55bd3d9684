# Overview: Flask CLI command groups for bootstrap, ledger audit, and profit summaries.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; existing data is kept).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger audit:
# - python -m flask stock verify [--product-id 3]
#   Compare stock_quantity with initial count + SUM(ledger deltas).
# - python -m flask stock repair --product-id 3 --yes
#   Reset stock_quantity to the ledger balance.
# - python -m flask stock low
#   List products at or below their low-stock threshold.
#
# Reports:
# - python -m flask reports profit --start 2026-01-01 --end 2026-01-31
#   Revenue, cost, profit and margin for non-returned sales in the range.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .services import inventory_service, products_service, reporting_service


def _money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema is up to date.")


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
    """Stock ledger audit commands."""


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Verify a single product')
@with_appcontext
def verify_stock(product_id):
    """Compare stock counters with the ledger. Exits 1 on drift."""
    try:
        if product_id is not None:
            results = [inventory_service.verify_product_stock(product_id)]
        else:
            results = inventory_service.verify_all_stock()
    except LedgerError as e:
        raise click.ClickException(e.message)

    drifted = [r for r in results if not r["consistent"]]
    for r in results:
        status = "OK   " if r["consistent"] else "DRIFT"
        click.echo(
            f"{status} #{r['product_id']} {r['name']}: "
            f"stock={r['stock_quantity']} ledger={r['ledger_quantity']} drift={r['drift']:+d}"
        )

    click.echo(f"{len(results)} product(s) checked, {len(drifted)} with drift.")
    if drifted:
        raise SystemExit(1)


@stock_group.command('repair')
@click.option('--product-id', type=int, required=True, help='Product to repair')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def repair_stock(product_id, yes):
    """Reset a product's stock_quantity to its ledger balance."""
    if not yes:
        click.confirm(f"Overwrite stock_quantity of product {product_id} with its ledger balance?", abort=True)

    try:
        result = inventory_service.repair_product_stock(product_id)
    except LedgerError as e:
        raise click.ClickException(e.message)

    if result["repaired"]:
        click.echo(
            f"PASS Product {product_id}: {result['previous_quantity']} -> {result['stock_quantity']}"
        )
    else:
        click.echo(f"PASS Product {product_id} already consistent ({result['stock_quantity']}).")


@stock_group.command('low')
@with_appcontext
def low_stock():
    """List products at or below their low-stock threshold."""
    products = products_service.list_low_stock()
    if not products:
        click.echo("No low-stock products.")
        return
    for p in products:
        click.echo(f"#{p.id} {p.name}: {p.stock_quantity} {p.unit} (threshold {p.min_stock_threshold})")


@click.group('reports')
def reports_group():
    """Profit reports."""


@reports_group.command('profit')
@click.option('--start', default=None, help='YYYY-MM-DD or ISO-8601 (inclusive)')
@click.option('--end', default=None, help='YYYY-MM-DD or ISO-8601 (inclusive)')
@with_appcontext
def profit_report(start, end):
    """Revenue, cost, profit and margin for the range."""
    try:
        report = reporting_service.get_revenue_and_profit(start, end)
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"Range:    {report['start'] or '-'} .. {report['end'] or '-'}")
    click.echo(f"Sales:    {report['sales_count']} ({report['quantity_sold']} units)")
    click.echo(f"Revenue:  {_money(report['revenue_cents'])}")
    click.echo(f"Cost:     {_money(report['cost_cents'])}")
    click.echo(f"Profit:   {_money(report['profit_cents'])}")
    click.echo(f"Margin:   {report['margin'] * 100:.2f}%")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(reports_group)
