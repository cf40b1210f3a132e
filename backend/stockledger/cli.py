# Overview: Flask CLI command groups for ledger repair, sync operations and the offline queue.

# backend/stockledger/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Point Flask at the factory: export FLASK_APP="stockledger:create_app"
# - Use: python -m flask <group> <command> [options]
#
# Ledger repair:
# - python -m flask ledger reconcile <color_id>
#   Recompute one color's stock from history and correct the stored counter.
# - python -m flask ledger reconcile-all
#   Same for every color.
#
# Delta sync:
# - python -m flask sync add-connection --url "sqlite:////srv/mirror.sqlite3" --label "Mirror"
#   Register a remote ledger.
# - python -m flask sync enqueue --connection-id <id> --type import|export|both [--dry-run]
#   Queue sync jobs (both = import then export).
# - python -m flask sync process [--limit 10]
#   Claim and run pending jobs.
# - python -m flask sync jobs [--status failed]
#   List recent jobs.
# - python -m flask sync retry <job_id>
#   Put a failed job back in the queue.
# - python -m flask sync cleanup [--days-old 30]
#   Delete finished jobs older than the retention window.
#
# Offline queue:
# - python -m flask offline list [--status pending]
#   List queued terminal sales.
# - python -m flask offline replay [offline_id ...]
#   Replay queued sales (all pending when no ids are given).

import click
from flask.cli import with_appcontext

from .services import offline_service, stock_service, sync_job_service
from .time_utils import to_utc_z
from .validation import LedgerError


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Stock ledger repair commands."""


@ledger_group.command('reconcile')
@click.argument('color_id')
@with_appcontext
def reconcile_cli(color_id):
    """Recompute one color's stock from its history."""
    try:
        result = stock_service.reconcile(color_id)
    except LedgerError as e:
        raise click.ClickException(str(e))

    if result["corrected"]:
        click.echo(f"FIXED {color_id}: stored {result['stored']} -> {result['calculated']}")
    else:
        click.echo(f"PASS {color_id}: stock {result['stored']} matches history")


@ledger_group.command('reconcile-all')
@with_appcontext
def reconcile_all_cli():
    """Recompute stock for every color and correct drifted counters."""
    result = stock_service.reconcile_all()
    for r in result["corrected"]:
        click.echo(f"FIXED {r['color_id']}: stored {r['stored']} -> {r['calculated']}")
    click.echo(f"Checked {result['checked']} colors, corrected {len(result['corrected'])}.")


# =============================================================================
# SYNC
# =============================================================================

@click.group('sync')
def sync_group():
    """Delta sync connections and jobs."""


@sync_group.command('add-connection')
@click.option('--url', 'database_url', required=True, help='SQLAlchemy URL of the remote ledger')
@click.option('--label', help='Display name')
@with_appcontext
def add_connection_cli(database_url, label):
    try:
        connection = sync_job_service.create_connection(database_url, label=label)
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created sync connection {connection.id} ({connection.label or connection.provider})")


@sync_group.command('enqueue')
@click.option('--connection-id', required=True, help='Sync connection ID')
@click.option('--type', 'job_type', type=click.Choice(['import', 'export', 'both']), default='both',
              show_default=True)
@click.option('--dry-run', is_flag=True, help='Count changes without writing')
@with_appcontext
def enqueue_cli(connection_id, job_type, dry_run):
    """Queue sync jobs. 'both' queues an import followed by an export."""
    job_types = ['import', 'export'] if job_type == 'both' else [job_type]
    try:
        for jt in job_types:
            job = sync_job_service.enqueue_job(jt, connection_id, dry_run=dry_run, initiated_by='cli')
            click.echo(f"Queued {jt} job {job.id}")
    except LedgerError as e:
        raise click.ClickException(str(e))


@sync_group.command('process')
@click.option('--limit', type=int, help='Max jobs to run')
@with_appcontext
def process_cli(limit):
    """Claim and run pending sync jobs."""
    jobs = sync_job_service.process_pending_jobs(limit=limit)
    if not jobs:
        click.echo("No pending jobs.")
        return
    for job in jobs:
        line = f"{job.id} {job.job_type:<7} {job.status}"
        if job.last_error:
            line += f" ({job.last_error})"
        click.echo(line)


@sync_group.command('jobs')
@click.option('--status', type=click.Choice(['pending', 'running', 'success', 'failed', 'cancelled']))
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_jobs_cli(status, limit):
    jobs = sync_job_service.list_jobs(status=status, limit=limit)
    if not jobs:
        click.echo("No jobs found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<38} {'Type':<8} {'Status':<10} {'Attempts':<9} {'Updated':<22} {'Error'}")
    click.echo("=" * 100)
    for job in jobs:
        error = (job.last_error or "-")[:30]
        click.echo(f"{job.id:<38} {job.job_type:<8} {job.status:<10} {job.attempts:<9} "
                   f"{to_utc_z(job.updated_at):<22} {error}")
    click.echo("=" * 100 + "\n")


@sync_group.command('retry')
@click.argument('job_id')
@with_appcontext
def retry_cli(job_id):
    try:
        job = sync_job_service.retry_job(job_id)
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Job {job.id} is {job.status} (attempts so far: {job.attempts})")


@sync_group.command('cleanup')
@click.option('--days-old', type=int, help='Retention window (default SYNC_JOB_RETENTION_DAYS)')
@with_appcontext
def cleanup_cli(days_old):
    """Delete finished sync jobs older than the retention window."""
    try:
        deleted = sync_job_service.cleanup_old_jobs(days_old)
    except LedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Deleted {deleted} finished sync jobs.")


# =============================================================================
# OFFLINE QUEUE
# =============================================================================

@click.group('offline')
def offline_group():
    """Sales queued by offline terminals."""


@offline_group.command('list')
@click.option('--status', type=click.Choice(['pending', 'synced', 'failed']))
@with_appcontext
def list_offline_cli(status):
    entries = offline_service.list_pending_sales(status)
    if not entries:
        click.echo("No queued sales.")
        return
    for entry in entries:
        error = f" - {entry.last_error}" if entry.last_error else ""
        click.echo(f"{entry.offline_id:<36} {entry.status:<8} attempts={entry.attempts}{error}")


@offline_group.command('replay')
@click.argument('offline_ids', nargs=-1)
@with_appcontext
def replay_offline_cli(offline_ids):
    """Replay queued sales; with no ids, every pending entry is replayed."""
    results = offline_service.sync_pending(list(offline_ids) if offline_ids else None)
    if not results:
        click.echo("Nothing to replay.")
        return
    for result in results:
        sale = f" -> sale {result['sale_id']}" if result["sale_id"] else ""
        error = f" ({result['error']})" if result["error"] else ""
        click.echo(f"{result['offline_id']}: {result['status']}{sale}{error}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(offline_group)
