# Overview: Flask CLI command groups for bootstrap, inspection, and ledger posting.

# backend/feedledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Parties:
# - python -m flask parties create --type customer --name "Rahim" --phone 01700000000
# - python -m flask parties list [--type wholesale_buyer] [--search rahim]
# - python -m flask parties show 1
# - python -m flask parties reconcile 1
#   Compare the stored balance with the balance rebuilt from the ledger.
#
# Batches:
# - python -m flask batches start 1
#   Close the customer's active batch (if any) and open the next one.
# - python -m flask batches list 1
#
# Ledger postings (amounts in cents):
# - python -m flask ledger deposit 1 10000
# - python -m flask ledger withdraw 1 2500
# - python -m flask ledger history --party-id 1 [--page 2] [--start 2024-01-01]

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import PARTY_CUSTOMER, PARTY_WHOLESALE_BUYER
from .services import batch_service, ledger_service, party_service
from .services.context import CallerContext
from .time_utils import parse_iso_datetime
from .validation import format_cents


CLI_CONTEXT = CallerContext(user_id="cli", role="admin")

_PARTY_TYPE_CHOICES = {
    "customer": PARTY_CUSTOMER,
    "wholesale_buyer": PARTY_WHOLESALE_BUYER,
}


def _fail(exc: LedgerError) -> None:
    click.echo(f"FAIL {exc.kind}: {exc.message}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables. Safe to run repeatedly."""
    db.create_all()
    click.echo("PASS Database schema is up to date.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the transaction ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('parties')
def parties_group():
    """Customer and wholesale buyer commands."""


@parties_group.command('create')
@click.option('--type', 'party_type', type=click.Choice(sorted(_PARTY_TYPE_CHOICES)), default='customer', show_default=True)
@click.option('--name', required=True, help='Display name')
@click.option('--phone', required=True, help='Phone number (unique per party type)')
@click.option('--email', help='Email address')
@click.option('--address', help='Postal address')
@click.option('--business-name', help='Business name (wholesale buyers)')
@with_appcontext
def create_party_cli(party_type, name, phone, email, address, business_name):
    """Register a customer or wholesale buyer with a zero balance."""
    try:
        party = party_service.create_party(
            _PARTY_TYPE_CHOICES[party_type],
            name,
            phone,
            email=email,
            address=address,
            business_name=business_name,
        )
    except LedgerError as e:
        _fail(e)
        return

    click.echo(f"PASS Created {party_type}: {party.name} (ID: {party.id})")


@parties_group.command('list')
@click.option('--type', 'party_type', type=click.Choice(sorted(_PARTY_TYPE_CHOICES)), help='Filter by party type')
@click.option('--search', help='Match name, phone or business name')
@with_appcontext
def list_parties_cli(party_type, search):
    """List parties with their balances."""
    parties = party_service.list_parties(
        _PARTY_TYPE_CHOICES[party_type] if party_type else None,
        search,
    )
    if not parties:
        click.echo("No parties found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Type':<16} {'Name':<25} {'Phone':<16} {'Balance':>15}")
    click.echo("-" * 80)
    for party in parties:
        click.echo(
            f"{party.id:<5} {party.party_type:<16} {party.name:<25} {party.phone:<16} "
            f"{format_cents(party.balance_cents):>15}"
        )
    click.echo("=" * 80 + "\n")


@parties_group.command('show')
@click.argument('party_id', type=int)
@with_appcontext
def show_party_cli(party_id):
    """Show a party and its active batch."""
    try:
        party = party_service.get_party(party_id)
    except LedgerError as e:
        _fail(e)
        return

    click.echo(f"{party.name} ({party.party_type}, ID {party.id})")
    click.echo(f"   Phone:   {party.phone}")
    click.echo(f"   Balance: {format_cents(party.balance_cents)}")
    active = batch_service.get_active_batch(party.id)
    if active is not None:
        click.echo(
            f"   Active batch: #{active.batch_number} since {active.start_date:%Y-%m-%d}, "
            f"opened at {format_cents(active.starting_balance_cents)}"
        )
    else:
        click.echo("   Active batch: none")


@parties_group.command('reconcile')
@click.argument('party_id', type=int)
@with_appcontext
def reconcile_party_cli(party_id):
    """Rebuild a party's balance from the ledger and compare."""
    try:
        report = ledger_service.reconcile_party(party_id)
    except LedgerError as e:
        _fail(e)
        return

    status = "PASS" if report.is_consistent else "FAIL"
    click.echo(
        f"{status} Party {party_id}: stored {format_cents(report.stored_balance_cents)}, "
        f"ledger {format_cents(report.reconstructed_balance_cents)} "
        f"over {report.transaction_count} transaction(s)"
    )
    if report.continuity_breaks:
        click.echo(f"   Continuity breaks at transactions: {report.continuity_breaks}")
    if report.effect_mismatches:
        click.echo(f"   Snapshot mismatches at transactions: {report.effect_mismatches}")
    if report.from_earliest_batch_cents is not None:
        click.echo(
            f"   From earliest batch (id {report.earliest_batch_id}): "
            f"{format_cents(report.from_earliest_batch_cents)}"
        )


@click.group('batches')
def batches_group():
    """Batch lifecycle commands."""


@batches_group.command('start')
@click.argument('party_id', type=int)
@with_appcontext
def start_batch_cli(party_id):
    """Close the active batch (if any) and open the next one."""
    try:
        batch = batch_service.start_new_batch(party_id, actor=CLI_CONTEXT)
    except LedgerError as e:
        _fail(e)
        return

    click.echo(
        f"PASS Started batch #{batch.batch_number} for party {party_id} "
        f"at {format_cents(batch.starting_balance_cents)}"
    )


@batches_group.command('list')
@click.argument('party_id', type=int)
@with_appcontext
def list_batches_cli(party_id):
    """List a customer's batches, newest first."""
    batches = batch_service.list_batches_for_party(party_id)
    if not batches:
        click.echo("No batches found.")
        return

    for batch in batches:
        ending = format_cents(batch.ending_balance_cents) if batch.ending_balance_cents is not None else "-"
        click.echo(
            f"#{batch.batch_number:<4} {batch.status:<10} "
            f"start {format_cents(batch.starting_balance_cents):>14}  end {ending:>14}  "
            f"discounts {format_cents(batch.total_discount_cents)}"
        )


@click.group('ledger')
def ledger_group():
    """Balance postings and transaction history."""


@ledger_group.command('deposit')
@click.argument('party_id', type=int)
@click.argument('amount_cents', type=int)
@with_appcontext
def deposit_cli(party_id, amount_cents):
    """Credit AMOUNT_CENTS to a party."""
    try:
        txn = party_service.deposit(party_id, amount_cents, actor=CLI_CONTEXT)
    except LedgerError as e:
        _fail(e)
        return

    click.echo(
        f"PASS Deposit #{txn.id}: balance {format_cents(txn.balance_before_cents)} "
        f"-> {format_cents(txn.balance_after_cents)}"
    )


@ledger_group.command('withdraw')
@click.argument('party_id', type=int)
@click.argument('amount_cents', type=int)
@with_appcontext
def withdraw_cli(party_id, amount_cents):
    """Pay AMOUNT_CENTS out of a party's credit."""
    try:
        txn = party_service.withdraw(party_id, amount_cents, actor=CLI_CONTEXT)
    except LedgerError as e:
        _fail(e)
        return

    click.echo(
        f"PASS Withdrawal #{txn.id}: balance {format_cents(txn.balance_before_cents)} "
        f"-> {format_cents(txn.balance_after_cents)}"
    )


@ledger_group.command('history')
@click.option('--party-id', type=int, help='Only this party')
@click.option('--batch-id', type=int, help='Only this batch')
@click.option('--start', help='Earliest occurred_at (ISO-8601, UTC if naive)')
@click.option('--end', help='Latest occurred_at (ISO-8601, UTC if naive)')
@click.option('--page', type=int, default=1, show_default=True)
@click.option('--per-page', type=int, default=ledger_service.DEFAULT_PAGE_SIZE, show_default=True)
@with_appcontext
def history_cli(party_id, batch_id, start, end, page, per_page):
    """Newest-first transaction history."""
    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError:
        click.echo("FAIL INVALID_INPUT: --start and --end must be ISO-8601 datetimes")
        return

    result = ledger_service.list_transactions(
        party_id=party_id,
        batch_id=batch_id,
        start=start_dt,
        end=end_dt,
        page=page,
        per_page=per_page,
    )
    if not result.items:
        click.echo("No transactions found.")
        return

    for txn in result.items:
        amount = format_cents(txn.amount_cents) if txn.amount_cents is not None else "-"
        click.echo(f"{txn.id:<6} {txn.occurred_at:%Y-%m-%d %H:%M}  {txn.type:<17} {amount:>14}  {txn.notes or ''}")
    click.echo(f"Page {result.page} of {result.pages} ({result.total} transaction(s))")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(parties_group)
    app.cli.add_command(batches_group)
    app.cli.add_command(ledger_group)
