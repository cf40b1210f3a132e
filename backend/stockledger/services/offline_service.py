# Overview: Server-side offline sale queue; accepts terminal payloads and replays them exactly once.

"""
Offline Queue Service

WHY: A terminal that lost its connection keeps selling. When it comes back it
uploads each queued sale with its offline_id, then asks the server to replay
them. A sale must land exactly once no matter how often the upload or the
replay is repeated.

DESIGN PRINCIPLES:
- Enqueue is idempotent by offline_id and does no ledger work
- Replay goes through sales_service.create_sale with the same offline_id, so a
  replay after a crash finds the existing sale instead of selling twice
- Ledger rejections (validation, unknown color, insufficient stock) mark the
  entry failed; anything else keeps it pending with attempts + 1
- Entries are never deleted automatically
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import PendingSale
from ..validation import NotFoundError, ValidationError, is_retryable, require_text
from .concurrency import run_with_retry
from .offline_schemas import CURRENT_SCHEMA_VERSION, upgrade_payload
from . import sales_service


# =============================================================================
# PENDING STATUS (CONSTANTS)
# =============================================================================

PENDING_STATUS_PENDING = "pending"
PENDING_STATUS_SYNCED = "synced"
PENDING_STATUS_FAILED = "failed"

VALID_PENDING_STATUSES = [
    PENDING_STATUS_PENDING,
    PENDING_STATUS_SYNCED,
    PENDING_STATUS_FAILED,
]


# =============================================================================
# ENQUEUE
# =============================================================================

def enqueue_pending_sale(
    offline_id: str,
    sale_data: dict,
    items: list[dict],
    schema_version: int = CURRENT_SCHEMA_VERSION,
) -> tuple[PendingSale, bool]:
    """
    Store a queued sale. Returns (entry, created); re-sending a known
    offline_id returns the stored entry unchanged.
    """
    offline_id = require_text(offline_id, "offline_id", max_length=64)
    # Reject payloads that could never be replayed
    upgrade_payload(schema_version, sale_data, items)

    def _op():
        existing = db.session.get(PendingSale, offline_id)
        if existing:
            return existing, False
        entry = PendingSale(
            offline_id=offline_id,
            schema_version=schema_version,
            sale_data=sale_data,
            items=items,
            status=PENDING_STATUS_PENDING,
            attempts=0,
        )
        db.session.add(entry)
        db.session.commit()
        return entry, True

    return run_with_retry(_op)


# =============================================================================
# REPLAY
# =============================================================================

def _result(entry: PendingSale) -> dict:
    return {
        "offline_id": entry.offline_id,
        "status": entry.status,
        "attempts": entry.attempts,
        "sale_id": entry.synced_sale_id,
        "error": entry.last_error,
    }


def replay_pending_sale(offline_id: str, *, include_failed: bool = False) -> dict:
    """Apply one queued sale to the ledger and record the outcome on the entry."""
    entry = db.session.get(PendingSale, offline_id)
    if not entry:
        return {"offline_id": offline_id, "status": "missing", "attempts": 0,
                "sale_id": None, "error": "Unknown offline_id"}
    if entry.status == PENDING_STATUS_SYNCED:
        return _result(entry)
    if entry.status == PENDING_STATUS_FAILED and not include_failed:
        return _result(entry)

    try:
        _, sale_data, items = upgrade_payload(entry.schema_version, entry.sale_data, entry.items)
        sale = sales_service.create_sale(sale_data, items, offline_id=offline_id)
    except Exception as exc:
        db.session.rollback()
        retryable = is_retryable(exc)
        if retryable:
            current_app.logger.warning("Replay of %s failed (will retry): %s", offline_id, exc)
        else:
            current_app.logger.info("Replay of %s rejected: %s", offline_id, exc)

        def _mark_failed():
            row = db.session.get(PendingSale, offline_id)
            row.attempts += 1
            row.last_error = str(exc)
            row.status = PENDING_STATUS_PENDING if retryable else PENDING_STATUS_FAILED
            if retryable and row.attempts >= current_app.config.get("OFFLINE_MAX_ATTEMPTS", 10):
                current_app.logger.error(
                    "Pending sale %s still failing after %s attempts", offline_id, row.attempts
                )
            db.session.commit()
            return row

        return _result(run_with_retry(_mark_failed))

    def _mark_synced():
        row = db.session.get(PendingSale, offline_id)
        row.attempts += 1
        row.status = PENDING_STATUS_SYNCED
        row.synced_sale_id = sale.id
        row.last_error = None
        db.session.commit()
        return row

    return _result(run_with_retry(_mark_synced))


def sync_pending(offline_ids: list[str] | None = None) -> list[dict]:
    """
    Replay queued sales.

    With explicit ids, failed entries are retried too (an operator may have
    fixed the cause). Without ids, every pending entry is replayed oldest first.
    """
    if offline_ids is None:
        offline_ids = [
            row.offline_id
            for row in db.session.query(PendingSale)
            .filter_by(status=PENDING_STATUS_PENDING)
            .order_by(PendingSale.created_at.asc())
            .all()
        ]
        include_failed = False
    else:
        if not isinstance(offline_ids, list):
            raise ValidationError("offline_ids must be a list")
        include_failed = True

    results = []
    for offline_id in offline_ids:
        results.append(replay_pending_sale(offline_id, include_failed=include_failed))
    return results


# =============================================================================
# QUERIES / ADMIN
# =============================================================================

def get_pending_sale(offline_id: str) -> PendingSale:
    entry = db.session.get(PendingSale, offline_id)
    if not entry:
        raise NotFoundError(f"Pending sale {offline_id} not found")
    return entry


def list_pending_sales(status: str | None = None) -> list[PendingSale]:
    q = db.session.query(PendingSale)
    if status:
        if status not in VALID_PENDING_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_PENDING_STATUSES}")
        q = q.filter(PendingSale.status == status)
    return q.order_by(PendingSale.created_at.asc()).all()


def delete_pending_sale(offline_id: str) -> None:
    """Explicit removal; the only way a queue entry goes away."""
    def _op():
        entry = get_pending_sale(offline_id)
        db.session.delete(entry)
        db.session.commit()

    run_with_retry(_op)
