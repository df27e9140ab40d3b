# Overview: Flask CLI command groups for setup, inventory files, and invoice maintenance.

# backend/kasir/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to kasir (PowerShell: $env:FLASK_APP="kasir").
# - Use: python -m flask <group> <command> [options]
#
# Database:
# - python -m flask system init-db
#   Create missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory files:
# - python -m flask inventory template inventory_template.csv
#   Write the import template (header plus example rows).
# - python -m flask inventory import stock.csv [--update-duplicates]
#   Import products from CSV/XLSX; existing SKUs are skipped or restocked.
# - python -m flask inventory export [FILE]
#   Write all products in the import layout.
# - python -m flask inventory low-stock
#   List products at or below their minimum stock.
#
# Invoices:
# - python -m flask invoices list [--status PENDING] [--customer-id 3]
# - python -m flask invoices export [FILE] [--start 2026-01-01] [--end 2026-01-31] [--status PAID] [--no-items]
#   Transaction report CSV; days are business-timezone days, default start of month .. today.
# - python -m flask invoices settle 12 13 14
#   Mark pending invoices paid; bad ids are reported and skipped.
# - python -m flask invoices set-status 12 CANCELLED

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import InvoiceStatus
from .services import export_service, import_service, invoice_service, settlement_service
from .services.products_service import list_low_stock, list_products
from .time_utils import parse_iso_datetime, utcnow
from .validation import ValidationError


def _parse_date_option(value, name):
    if not value:
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter(f"{value!r} is not an ISO date", param_hint=name)


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """Database setup commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Products, customers and invoices are lost."""
    if not yes:
        click.confirm("WARN All products, customers and invoices will be deleted. Continue?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset; all tables recreated empty")


# =============================================================================
# INVENTORY
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory import/export commands."""


@inventory_group.command('template')
@click.argument('path', type=click.Path(dir_okay=False, writable=True), default='inventory_template.csv')
def inventory_template(path):
    """Write the inventory import template."""
    with open(path, 'w', newline='', encoding='utf-8') as fh:
        import_service.write_inventory_template(fh)
    click.echo(f"PASS Template written to {path}")


@inventory_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--update-duplicates', is_flag=True, help='Add stock to products whose SKU already exists')
@with_appcontext
def inventory_import(path, update_duplicates):
    """Import products from a CSV or Excel sheet."""
    try:
        rows = import_service.read_inventory_file(path)
    except import_service.ImportParseError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    reconciliation = import_service.reconcile(rows)
    click.echo(
        f"LIST Parsed {reconciliation.parsed_count} rows: "
        f"{len(reconciliation.new_products)} new, {len(reconciliation.duplicates)} existing SKUs, "
        f"{len(reconciliation.errors)} errors"
    )
    for dup in reconciliation.duplicates:
        action = f"+{dup.add_stock} stock" if update_duplicates else "skipped"
        click.echo(f"  SKU {dup.existing_product.sku}: {dup.existing_product.name} ({action})")

    total = len(reconciliation.new_products) + (len(reconciliation.duplicates) if update_duplicates else 0)
    with click.progressbar(length=total, label="Importing") as bar:
        result = import_service.confirm_import(
            reconciliation,
            update_duplicate_stock=update_duplicates,
            progress=lambda _progress: bar.update(1),
        )

    for err in result.errors:
        click.echo(f"  {err}")
    status = "WARN" if result.errors else "PASS"
    click.echo(f"{status} {result.message}")


@inventory_group.command('export')
@click.argument('path', type=click.Path(dir_okay=False, writable=True), required=False)
@with_appcontext
def inventory_export(path):
    """Export every product in the import layout."""
    path = path or export_service.export_filename("inventory")
    with open(path, 'w', newline='', encoding='utf-8') as fh:
        count = export_service.write_inventory_csv(list_products(), fh)
    click.echo(f"PASS Exported {count} products to {path}")


@inventory_group.command('low-stock')
@with_appcontext
def inventory_low_stock():
    """List products at or below their minimum stock."""
    products = list_low_stock()
    if not products:
        click.echo("No products are low on stock.")
        return

    click.echo(f"{'ID':<5} {'SKU':<15} {'Name':<30} {'Stock':>6} {'Min':>6}")
    for p in products:
        click.echo(f"{p.id:<5} {p.sku or '-':<15} {p.name:<30} {p.stock:>6} {p.min_stock:>6}")


# =============================================================================
# INVOICES
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Invoice listing, export and settlement commands."""


@invoices_group.command('list')
@click.option('--status', type=click.Choice(InvoiceStatus.ALL), help='Filter by status')
@click.option('--customer-id', type=int, help='Filter by customer')
@with_appcontext
def invoices_list(status, customer_id):
    """List invoices, newest first."""
    invoices = invoice_service.list_invoices(status=status, customer_id=customer_id)
    if not invoices:
        click.echo("No invoices found.")
        return

    for inv in invoices:
        click.echo(
            f"{inv.id:<5} {inv.invoice_number:<18} {inv.customer_name:<25} "
            f"{inv.total_amount:>12} {inv.status}"
        )


@invoices_group.command('export')
@click.argument('path', type=click.Path(dir_okay=False, writable=True), required=False)
@click.option('--start', help='First business day (ISO date); default start of this month')
@click.option('--end', help='Last business day (ISO date, inclusive); default today')
@click.option('--status', type=click.Choice(InvoiceStatus.ALL), help='Only this status')
@click.option('--no-items', is_flag=True, help='Leave out the item detail section')
@with_appcontext
def invoices_export(path, start, end, status, no_items):
    """Export a transaction report CSV."""
    default_start, default_end = export_service.default_range()
    start_dt = _parse_date_option(start, '--start') or default_start
    end_dt = _parse_date_option(end, '--end') or default_end

    try:
        invoices = export_service.query_invoices(start_dt, end_dt, status)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    summary = export_service.summarize(invoices)

    path = path or export_service.export_filename("transactions")
    with open(path, 'w', newline='', encoding='utf-8') as fh:
        export_service.write_transactions_csv(invoices, fh, include_items=not no_items)

    click.echo(
        f"PASS Exported {summary.invoice_count} invoices "
        f"(total {summary.total_amount}, {summary.total_items} items; "
        f"paid {summary.paid_count}, pending {summary.pending_count}, "
        f"cancelled {summary.cancelled_count}) to {path}"
    )


@invoices_group.command('settle')
@click.argument('invoice_ids', nargs=-1, type=int, required=True)
@with_appcontext
def invoices_settle(invoice_ids):
    """Mark invoices as paid."""
    click.echo(f"Settling {len(invoice_ids)} invoices, total {settlement_service.selected_total(invoice_ids)}")
    result = settlement_service.settle_bulk(invoice_ids)
    for err in result.errors:
        click.echo(f"  FAIL invoice {err.invoice_id}: {err.reason}")
    status = "WARN" if result.errors else "PASS"
    click.echo(f"{status} {result.success_count} settled, {result.error_count} failed")


@invoices_group.command('set-status')
@click.argument('invoice_id', type=int)
@click.argument('status', type=click.Choice(InvoiceStatus.ALL))
@with_appcontext
def invoices_set_status(invoice_id, status):
    """Change one invoice's status (PAID -> PENDING undoes a settlement)."""
    try:
        invoice = settlement_service.change_status(invoice_id, status, now=utcnow())
    except (settlement_service.InvoiceNotFound, settlement_service.InvalidStatusTransition) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Invoice {invoice.invoice_number} is {invoice.status}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(invoices_group)
