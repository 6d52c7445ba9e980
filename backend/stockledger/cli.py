# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--tenant "Shop Name"] [--tax-rate 16]
#   Idempotent bootstrap: creates tables, the default tenant and its tax settings.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant settings:
# - python -m flask settings list --tenant-id 1
# - python -m flask settings set --tenant-id 1 tax_rate 16 --type number
#
# Inventory inspection:
# - python -m flask inventory stock --tenant-id 1 --product-id 5
#   Availability of one product (pool, presentation, or combo).
# - python -m flask inventory below-min --tenant-id 1
#
# Credits:
# - python -m flask credits accrue --tenant-id 1 [--as-of 2024-03-01]
#   Bring interest on every ACTIVE credit up to date.
# - python -m flask credits overdue --tenant-id 1

import click
from datetime import date
from flask.cli import with_appcontext

from .errors import StockLedgerError
from .extensions import db
from .models import Tenant
from .services import credit_service, inventory_service, settings_service
from .services.settings_service import KEY_TAX_ENABLED, KEY_TAX_RATE, VALUE_TYPES


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Default Tenant', help='Tenant name')
@click.option('--tenant-code', default='DEFAULT', help='Tenant code')
@click.option('--tax-rate', default='16', show_default=True, help='Tax rate percent for taxable lines')
@click.option('--no-tax', is_flag=True, help='Disable tax for the tenant')
@with_appcontext
def init_system(tenant_name, tenant_code, tax_rate, no_tax):
    """
    Initialize the database schema and a default tenant.

    Tax settings are only written when the tenant has none yet.
    """
    click.echo("START Initializing stock ledger...")
    db.create_all()

    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(name=tenant_name, code=tenant_code, is_active=True)
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    if settings_service.get_setting(tenant.id, KEY_TAX_ENABLED) is None:
        settings_service.set_setting(tenant.id, KEY_TAX_ENABLED, not no_tax, commit=False)
        settings_service.set_setting(tenant.id, KEY_TAX_RATE, tax_rate, value_type="number", commit=False)
        db.session.commit()
        click.echo(f"PASS Tax settings: enabled={not no_tax} rate={tax_rate}%")

    click.echo("DONE")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('settings')
def settings_group():
    """Tenant settings."""


@settings_group.command('list')
@click.option('--tenant-id', type=int, required=True)
@with_appcontext
def list_settings_cli(tenant_id):
    for setting in settings_service.list_settings(tenant_id):
        click.echo(f"{setting.key:<24} {setting.value_type:<8} {setting.value}")


@settings_group.command('set')
@click.option('--tenant-id', type=int, required=True)
@click.option('--type', 'value_type', type=click.Choice(sorted(VALUE_TYPES)), default=None)
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_setting_cli(tenant_id, value_type, key, value):
    try:
        setting = settings_service.set_setting(tenant_id, key, value, value_type=value_type)
    except StockLedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS {setting.key} = {setting.value} ({setting.value_type})")


@click.group('inventory')
def inventory_group():
    """Inventory inspection."""


@inventory_group.command('stock')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@with_appcontext
def stock_cli(tenant_id, product_id):
    try:
        availability = inventory_service.get_availability(tenant_id, product_id)
    except StockLedgerError as e:
        raise click.ClickException(e.message)
    for key, value in availability.items():
        if key == "components":
            continue
        click.echo(f"{key:<20} {value}")
    for component in availability.get("components") or []:
        marker = " *" if component.get("is_limiting") else ""
        click.echo(f"  - {component.get('name')}: max {component.get('max_combos')}{marker}")


@inventory_group.command('below-min')
@click.option('--tenant-id', type=int, required=True)
@with_appcontext
def below_min_cli(tenant_id):
    rows = inventory_service.list_below_min(tenant_id)
    if not rows:
        click.echo("No products below minimum.")
        return
    for row in rows:
        click.echo(f"{row['product_id']:>6} stock={row['current_stock']} min={row['stock_min']}")


@click.group('credits')
def credits_group():
    """Customer credit maintenance."""


@credits_group.command('accrue')
@click.option('--tenant-id', type=int, required=True)
@click.option('--as-of', type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@with_appcontext
def accrue_cli(tenant_id, as_of):
    as_of_date = as_of.date() if as_of else date.today()
    touched = credit_service.accrue_all(tenant_id, as_of_date)
    click.echo(f"Accrued interest on {touched} credits as of {as_of_date.isoformat()}.")


@credits_group.command('overdue')
@click.option('--tenant-id', type=int, required=True)
@with_appcontext
def overdue_cli(tenant_id):
    credits = credit_service.list_overdue_credits(tenant_id)
    if not credits:
        click.echo("No overdue credits.")
        return
    for credit in credits:
        click.echo(f"{credit.id:>6} customer={credit.customer_id} due={credit.due_date} balance={credit.current_balance}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(settings_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(credits_group)
