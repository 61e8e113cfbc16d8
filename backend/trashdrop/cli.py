# Overview: Flask CLI command groups for bootstrap, inspection, and sync maintenance.

# backend/trashdrop/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create backend and local-store tables (idempotent).
#
# Batch inspection:
# - python -m flask batches normalize "https://trashdrop.app/scan?code=BATCH-ABC123"
#   Print the canonical key for a raw scan.
# - python -m flask batches lookup BATCH-ABC123
#   Resolve an identifier and print the batch with its bags.
#
# Offline sync queue:
# - python -m flask sync status
#   Connectivity, pending count and the last drain report.
# - python -m flask sync queue
#   List pending entries oldest first.
# - python -m flask sync drain --limit 25
#   Replay pending activations now.
# - python -m flask sync clear-cache --yes
#   Forget which identifiers this device already scanned.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import batch_service, scan_cache_service, sync_queue_service
from .services.identifier_service import normalize_identifier
from .services.sync_service import get_sync_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables on every bind (backend + local store)."""
    db.create_all()
    click.echo("PASS Tables created")


@click.group('batches')
def batches_group():
    """Batch inspection commands."""


@batches_group.command('normalize')
@click.argument('raw')
def normalize_cmd(raw):
    """Print the normalized identifier for RAW."""
    normalized = normalize_identifier(raw)
    if not normalized:
        click.echo("FAIL Nothing to normalize")
        raise SystemExit(1)
    click.echo(normalized)


@batches_group.command('lookup')
@click.argument('identifier')
@with_appcontext
def lookup_cmd(identifier):
    """Resolve IDENTIFIER and print the batch."""
    sync = get_sync_service()
    result = batch_service.get_batch_details(sync.gateway, identifier, verifier=sync.verifier)
    if not result.ok:
        click.echo(f"FAIL {result.error.code}: {result.error.message}")
        raise SystemExit(1)

    batch = result.data
    click.echo(f"PASS {batch['code']} ({batch['status']}) matched by {batch['matched_by']}")
    click.echo(f"  id:      {batch['id']}")
    click.echo(f"  owner:   {batch['owner_id'] or '-'}")
    click.echo(f"  bags:    {batch['total_bags']}")
    for warning in result.warnings:
        click.echo(f"  WARN {warning}")


@click.group('sync')
def sync_group():
    """Offline sync queue commands."""


@sync_group.command('status')
@with_appcontext
def status_cmd():
    """Show connectivity and queue depth."""
    status = get_sync_service().status()
    click.echo(f"Backend:   {status['backend']}")
    click.echo(f"Online:    {'yes' if status['online'] else 'no'}")
    click.echo(f"Pending:   {status['pending']}")
    click.echo(f"Last sync: {status['last_drain_at'] or 'never'}")


@sync_group.command('queue')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def queue_cmd(limit):
    """List pending batch activations."""
    entries = sync_queue_service.list_pending(sync_queue_service.BATCH_ACTIVATION, limit)
    if not entries:
        click.echo("Queue is empty")
        return
    for entry in entries:
        payload = entry.payload or {}
        click.echo(
            f"#{entry.id} {payload.get('batch_identifier')} user={payload.get('user_id')} "
            f"attempts={entry.attempts} last_error={entry.last_error or '-'}"
        )


@sync_group.command('drain')
@click.option('--limit', type=click.IntRange(min=1), default=None, help='Max entries to replay')
@with_appcontext
def drain_cmd(limit):
    """Replay pending activations against the backend."""
    report = get_sync_service().drain(limit)
    if report.skipped:
        click.echo("WARN Another drain is running")
        return
    click.echo(
        f"PASS attempted={report.attempted} succeeded={report.succeeded} "
        f"failed={report.failed} remaining={report.remaining}"
    )
    for err in report.errors:
        click.echo(f"  FAIL #{err['entry_id']} {err['code']}: {err['message']}")


@sync_group.command('clear-cache')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def clear_cache_cmd(yes):
    """Clear the local scan cache. Pending queue entries are kept."""
    if not yes:
        click.confirm("WARN Previously scanned batches can be scanned again. Continue?", abort=True)
    count = scan_cache_service.clear_all()
    click.echo(f"PASS Cleared {count} cache entries")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(batches_group)
    app.cli.add_command(sync_group)
