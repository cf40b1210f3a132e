# Overview: Delta synchronization of ledger tables between this store and a remote ledger.

"""
Delta Sync Service

WHY: Stores want an off-site copy of the ledger (and to pick up edits made on
the mirror) without shipping every row each time. Each direction keeps its
own watermark and moves only rows whose updated_at is past it.

DESIGN PRINCIPLES:
- Import (remote -> local) runs before export (local -> remote)
- Tables go in dependency order, rows ascending by updated_at
- Upsert by primary key; rows are never deleted by sync
- A direction's watermark advances to the pass start time only when every
  row of that direction went through; a failed pass resumes from the old one
  and the direction raises SyncError carrying the per-table report
- Sync never takes part in local ledger invariants and never holds the local
  write lock while talking to the remote

CONFLICT POLICIES (SYNC_CONFLICT_POLICY):
- last_write_wins: the copy with the later updated_at wins on either side
- keep_local: an imported row is skipped when the local copy changed since the
  last import; export still overwrites the remote
Skipped rows are reported per table as "conflicts".
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import select

from ..extensions import db
from ..models import (
    Color,
    CustomerAccount,
    PaymentHistory,
    Product,
    Return,
    ReturnItem,
    Sale,
    SaleItem,
    StockInHistory,
    StockMovementSummary,
    StockOutHistory,
    SyncConnection,
    Variant,
)
from stockledger.time_utils import to_utc_z, utcnow
from .concurrency import begin_immediate, run_with_retry
from .sync_remote import RemoteLedger, open_remote, upsert_rows_on


class SyncError(Exception):
    """Raised when a sync pass cannot run or cannot complete."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details


# =============================================================================
# CONSTANTS
# =============================================================================

SYNC_MODELS = [
    Product,
    Variant,
    Color,
    Sale,
    SaleItem,
    StockInHistory,
    StockOutHistory,
    StockMovementSummary,
    PaymentHistory,
    Return,
    ReturnItem,
    CustomerAccount,
]

SYNC_TABLE_NAMES = [m.__tablename__ for m in SYNC_MODELS]

DIRECTION_IMPORT = "import"
DIRECTION_EXPORT = "export"

POLICY_LAST_WRITE_WINS = "last_write_wins"
POLICY_KEEP_LOCAL = "keep_local"

VALID_CONFLICT_POLICIES = [POLICY_LAST_WRITE_WINS, POLICY_KEEP_LOCAL]


def sync_tables():
    return [m.__table__ for m in SYNC_MODELS]


def _policy(policy: str | None) -> str:
    policy = policy or current_app.config.get("SYNC_CONFLICT_POLICY", POLICY_LAST_WRITE_WINS)
    if policy not in VALID_CONFLICT_POLICIES:
        raise SyncError(f"Invalid conflict policy: {policy}. Must be one of {VALID_CONFLICT_POLICIES}")
    return policy


def _table_report(selected: int) -> dict:
    return {"selected": selected, "written": 0, "conflicts": 0, "errors": []}


def _error_count(tables: dict) -> int:
    return sum(len(t["errors"]) for t in tables.values())


def _phase_result(connection_id: str, direction: str, since: datetime | None, started_at: datetime,
                  policy: str, tables: dict, *, dry_run: bool) -> dict:
    """Advance the direction's watermark unless this was a dry run or a row failed."""
    complete = not dry_run and _error_count(tables) == 0
    if complete:
        _advance_watermark(connection_id, direction, started_at)
    return {
        "direction": direction,
        "since": to_utc_z(since),
        "watermark": to_utc_z(started_at) if complete else to_utc_z(since),
        "policy": policy,
        "tables": tables,
    }


# =============================================================================
# LOCAL SIDE
# =============================================================================

def fetch_local_changes(table, since: datetime | None) -> list[dict]:
    stmt = select(table)
    if since is not None:
        stmt = stmt.where(table.c.updated_at > since)
    stmt = stmt.order_by(table.c.updated_at.asc())
    return [dict(row._mapping) for row in db.session.execute(stmt)]


def _split_local_conflicts(table, rows: list[dict], since: datetime | None) -> tuple[list[dict], int]:
    """keep_local: drop incoming rows whose local copy changed after `since`."""
    if since is None or not rows:
        return rows, 0
    pk = list(table.primary_key.columns)[0]
    changed = {
        r[0]
        for r in db.session.execute(
            select(pk).where(pk.in_([row[pk.name] for row in rows]), table.c.updated_at > since)
        )
    }
    kept = [row for row in rows if row[pk.name] not in changed]
    return kept, len(rows) - len(kept)


def _apply_import(table, rows: list[dict], policy: str, since: datetime | None) -> dict:
    report = _table_report(len(rows))
    if policy == POLICY_KEEP_LOCAL:
        rows, report["conflicts"] = _split_local_conflicts(table, rows, since)

    def _op():
        begin_immediate()
        result = upsert_rows_on(
            db.session, db.engine.dialect.name, table, rows,
            keep_newer=(policy == POLICY_LAST_WRITE_WINS),
        )
        db.session.commit()
        return result

    result = run_with_retry(_op)
    report["written"] = result["written"]
    report["conflicts"] += result["skipped"]
    report["errors"] = result["errors"]
    return report


# =============================================================================
# PHASES
# =============================================================================

def import_changes(connection: SyncConnection, remote: RemoteLedger, *,
                   dry_run: bool = False, policy: str | None = None) -> dict:
    """Remote -> local for every sync table, then advance last_import_at."""
    policy = _policy(policy)
    started_at = utcnow()
    since = connection.last_import_at
    tables = {}
    for table in sync_tables():
        rows = remote.fetch_changes(table, since)
        if dry_run:
            tables[table.name] = _table_report(len(rows))
            continue
        tables[table.name] = _apply_import(table, rows, policy, since)

    return _phase_result(connection.id, DIRECTION_IMPORT, since, started_at, policy, tables, dry_run=dry_run)


def export_changes(connection: SyncConnection, remote: RemoteLedger, *,
                   dry_run: bool = False, policy: str | None = None) -> dict:
    """Local -> remote for every sync table, then advance last_export_at."""
    policy = _policy(policy)
    started_at = utcnow()
    since = connection.last_export_at
    tables = {}
    for table in sync_tables():
        rows = fetch_local_changes(table, since)
        # Release the local read transaction before talking to the remote
        db.session.commit()
        report = _table_report(len(rows))
        if not dry_run and rows:
            result = remote.upsert_rows(
                table, rows, keep_newer=(policy == POLICY_LAST_WRITE_WINS)
            )
            report["written"] = result["written"]
            report["conflicts"] = result["skipped"]
            report["errors"] = result["errors"]
        tables[table.name] = report

    return _phase_result(connection.id, DIRECTION_EXPORT, since, started_at, policy, tables, dry_run=dry_run)


def _advance_watermark(connection_id: str, direction: str, value: datetime) -> None:
    def _op():
        connection = db.session.get(SyncConnection, connection_id)
        if direction == DIRECTION_IMPORT:
            connection.last_import_at = value
        else:
            connection.last_export_at = value
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# ENTRY POINTS
# =============================================================================

def run_direction(connection_id: str, direction: str, *, dry_run: bool = False,
                  policy: str | None = None, remote: RemoteLedger | None = None) -> dict:
    """
    Run one direction against a connection's remote. The remote lock is held
    for the whole direction; failing to get it is a (retryable) SyncError.
    """
    connection = db.session.get(SyncConnection, connection_id)
    if not connection:
        raise SyncError(f"Sync connection {connection_id} not found")
    if direction not in (DIRECTION_IMPORT, DIRECTION_EXPORT):
        raise SyncError(f"Invalid sync direction: {direction}")

    owns_remote = remote is None
    if remote is None:
        remote = open_remote(connection, timeout_seconds=current_app.config.get("SYNC_TIMEOUT_SECONDS", 60))
    try:
        remote.ensure_schema(sync_tables())
        if not remote.acquire_lock():
            raise SyncError("Remote ledger is locked by another sync")
        try:
            if direction == DIRECTION_IMPORT:
                details = import_changes(connection, remote, dry_run=dry_run, policy=policy)
            else:
                details = export_changes(connection, remote, dry_run=dry_run, policy=policy)
        finally:
            remote.release_lock()
    finally:
        if owns_remote:
            remote.close()

    errors = _error_count(details["tables"])
    if errors:
        # Watermark was left in place, so the failed rows are selected again next pass
        current_app.logger.warning("Sync %s for %s finished with %s row errors", direction, connection_id, errors)
        raise SyncError(f"{errors} row(s) failed to sync {direction}", details=details)
    return details


def trigger_sync(connection_id: str, *, dry_run: bool = False, policy: str | None = None,
                 remote: RemoteLedger | None = None) -> dict:
    """Full pass: import, then export."""
    imported = run_direction(connection_id, DIRECTION_IMPORT, dry_run=dry_run, policy=policy, remote=remote)
    exported = run_direction(connection_id, DIRECTION_EXPORT, dry_run=dry_run, policy=policy, remote=remote)
    return {"import": imported, "export": exported}
