# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/tillcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use Flask-Migrate for real deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management:
# - python -m flask tenants list
# - python -m flask tenants create --name "Corner Shop" --code "CORNER" [--refund-day-limit 30]
#
# Stock integrity:
# - python -m flask stock verify [--tenant-id 1]
#   Replay every product's movements from zero and report drift.
#
# Product import:
# - python -m flask imports run --tenant-id 1 [--operator-id 7] products.json
#   FILE holds a JSON list of rows, or {"products": [...]}.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Tenant
from .services.import_service import ProductImportError, reconcile_import
from .services.inventory_service import find_stock_drift


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask tenants create' to add a tenant.")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Refund days':<12} {'Products'}")
    click.echo("="*80)

    for tenant in tenants:
        product_count = db.session.query(Product).filter_by(tenant_id=tenant.id).count()
        active_str = "Yes" if tenant.is_active else "No"
        limit_str = str(tenant.refund_day_limit) if tenant.refund_day_limit is not None else "-"

        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<15} {active_str:<8} {limit_str:<12} {product_count}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--refund-day-limit', type=int, default=None, help='Days after a sale that refunds are accepted')
@click.option('--tax-rate-bps', type=int, default=0, help='Current tax rate in basis points')
@with_appcontext
def create_tenant_cli(name, code, refund_day_limit, tax_rate_bps):
    """Create a new tenant."""
    existing = db.session.query(Tenant).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    tenant = Tenant(
        name=name,
        code=code,
        is_active=True,
        refund_day_limit=refund_day_limit,
        tax_rate_bps=tax_rate_bps,
    )
    db.session.add(tenant)
    db.session.commit()

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@click.group('stock')
def stock_group():
    """Stock integrity commands."""


@stock_group.command('verify')
@click.option('--tenant-id', type=int, default=None, help='Limit to one tenant')
@with_appcontext
def verify_stock(tenant_id):
    """Check that every product's stock level matches its movement history."""
    drift = find_stock_drift(tenant_id)
    if not drift:
        click.echo("PASS Stock levels match movement history.")
        return

    click.echo(f"FAIL {len(drift)} product(s) drifted from their movement history:")
    for row in drift:
        click.echo(
            f"  product={row['product_id']} tenant={row['tenant_id']} sku={row['sku']} "
            f"stock_level={row['stock_level']} replayed={row['replayed_stock']}"
        )
    raise SystemExit(1)


@click.group('imports')
def imports_group():
    """Product import commands."""


@imports_group.command('run')
@click.option('--tenant-id', type=int, required=True, help='Tenant to import into')
@click.option('--operator-id', type=int, default=None, help='Operator recorded on stock movements')
@click.argument('file', type=click.File('r', encoding='utf-8'))
@with_appcontext
def run_import(tenant_id, operator_id, file):
    """Import products from a JSON file."""
    if db.session.get(Tenant, tenant_id) is None:
        click.echo(f"FAIL Tenant ID {tenant_id} not found")
        raise SystemExit(1)

    try:
        payload = json.load(file)
    except json.JSONDecodeError as e:
        click.echo(f"FAIL Could not parse {file.name}: {e}")
        raise SystemExit(1)
    rows = payload.get("products") if isinstance(payload, dict) else payload

    try:
        result = reconcile_import(tenant_id=tenant_id, operator_id=operator_id, rows=rows)
    except ProductImportError as e:
        click.echo(f"FAIL {e} ({e.code})")
        if e.details:
            click.echo(json.dumps(e.details, indent=2))
        raise SystemExit(1)

    click.echo(
        f"PASS Imported {result['success_count']} row(s): "
        f"{result['created']} created, {result['merged']} merged, {result['reactivated']} reactivated; "
        f"{result['failed_count']} failed."
    )
    for error in result["errors"]:
        click.echo(f"  row {error['row']} ({error['sku'] or '-'}): {error['error']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(imports_group)
