# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/docsettle/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo --party-id 1
#   Create a small order -> delivery -> invoice chain plus a second invoice.
#
# Outstanding inspection:
# - python -m flask outstanding list --party-id 1 [--domain SALES]
#   List OPEN/PARTIAL settlement documents, oldest first.
# - python -m flask outstanding aging --party-id 1 [--as-of 2026-01-31]
#   Print aging buckets.
#
# Integrity:
# - python -m flask integrity check
#   Scan quantities and outstanding balances; exits 1 on any violation.

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .models.documents import (
    DOMAIN_PURCHASE,
    DOMAIN_SALES,
    KIND_INVOICE,
    KIND_SALES_ORDER,
    KIND_DELIVERY_ORDER,
)
from .services import document_service, invariant_service, outstanding_service, transfer_service
from .time_utils import parse_iso_date, today


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@click.option('--party-id', default=1, type=int, help='Customer id for the demo chain')
@with_appcontext
def seed_demo(party_id):
    """
    Seed a demo chain: sales order -> delivery order (partial) -> posted invoice,
    plus an older stand-alone invoice so auto-distribution has two targets.
    """
    start = today() - timedelta(days=45)

    older = document_service.create_document(
        kind=KIND_INVOICE,
        party_id=party_id,
        document_date=start,
        due_date=start + timedelta(days=30),
        lines=[{"description": "Consulting", "ordered_qty": 1, "unit_price_cents": 10000}],
        post=True,
    )
    click.echo(f"PASS Created {older.document_no} ({older.net_total_cents} cents)")

    order = document_service.create_document(
        kind=KIND_SALES_ORDER,
        party_id=party_id,
        document_date=start + timedelta(days=5),
        lines=[
            {"product_id": 1, "description": "Widget", "ordered_qty": 10, "unit_price_cents": 1500},
            {"product_id": 2, "description": "Gadget", "ordered_qty": 4, "unit_price_cents": 2500},
        ],
        post=True,
    )
    click.echo(f"PASS Created {order.document_no}")

    widget_line = order.lines[0]
    delivery = transfer_service.transfer(
        [{"document_id": order.id, "line_id": widget_line.id, "qty": 6}],
        KIND_DELIVERY_ORDER,
        document_date=start + timedelta(days=10),
        post=True,
    )
    click.echo(f"PASS Delivered 6 widgets on {delivery.document_no}; {order.document_no} is now PARTIAL")

    invoice = transfer_service.transfer(
        [{"document_id": delivery.id}],
        KIND_INVOICE,
        document_date=start + timedelta(days=12),
        due_date=start + timedelta(days=42),
        post=True,
    )
    click.echo(f"PASS Invoiced {invoice.document_no} ({invoice.net_total_cents} cents)")


@click.group('outstanding')
def outstanding_group():
    """Outstanding ledger inspection commands."""


@outstanding_group.command('list')
@click.option('--party-id', required=True, type=int, help='Customer or vendor id')
@click.option('--domain', type=click.Choice([DOMAIN_SALES, DOMAIN_PURCHASE]), help='Restrict to one domain')
@with_appcontext
def list_outstanding_cli(party_id, domain):
    """
    List outstanding settlement documents, oldest first.

    Example:
        flask outstanding list --party-id 1
    """
    docs = outstanding_service.list_outstanding(party_id, domain).all()
    if not docs:
        click.echo("No outstanding documents.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'Kind':<20} {'Number':<14} {'Date':<12} {'Net':>12} {'Outstanding':>12}")
    click.echo("=" * 80)
    for doc in docs:
        click.echo(
            f"{doc.id:<6} {doc.kind:<20} {doc.document_no:<14} {doc.document_date.isoformat():<12} "
            f"{doc.net_total_cents:>12} {doc.outstanding_cents:>12}"
        )
    click.echo("=" * 80 + "\n")


@outstanding_group.command('aging')
@click.option('--party-id', required=True, type=int, help='Customer or vendor id')
@click.option('--domain', type=click.Choice([DOMAIN_SALES, DOMAIN_PURCHASE]), help='Restrict to one domain')
@click.option('--as-of', 'as_of', default=None, help='Aging date (YYYY-MM-DD), default today')
@with_appcontext
def aging_cli(party_id, domain, as_of):
    """Print outstanding aging buckets for a party."""
    report = outstanding_service.aging(party_id, domain, parse_iso_date(as_of))
    click.echo(f"Aging for party {party_id} as of {report['as_of']}")
    for name, cents in report["buckets"].items():
        click.echo(f"  {name:<12} {cents:>12}")
    click.echo(f"  {'total':<12} {report['total_cents']:>12}")


@click.group('integrity')
def integrity_group():
    """Consistency checks."""


@integrity_group.command('check')
@with_appcontext
def check_integrity():
    """Scan all documents and payments for conservation violations."""
    violations = invariant_service.check_invariants()
    if not violations:
        click.echo("PASS No invariant violations found.")
        return

    for v in violations:
        click.echo(f"FAIL [{v['rule']}] {v['message']}")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(outstanding_group)
    app.cli.add_command(integrity_group)
