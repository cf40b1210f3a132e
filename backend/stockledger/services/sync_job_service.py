# Overview: Durable sync job queue (enqueue, claim, process, cancel, retry, cleanup) and sync connections.

"""
Sync Job Service

WHY: Sync talks to a remote that can be slow or down. Work is queued as
SyncJob rows so every attempt is visible, failures can be retried by an
operator, and nothing depends on the request that asked for it.

STATE MACHINE:
- pending -> running (claimed by process_next_job, attempts + 1)
- running -> success | failed
- pending | running -> cancelled (a running job still finishes its in-flight
  remote write; only the final status is dropped)
- failed -> pending (retry_job; attempts kept, refused at SYNC_MAX_ATTEMPTS)

CONCURRENCY:
- Claiming is a conditional UPDATE ... WHERE status = 'pending' AND no other
  job of the same connection is running, so two workers never run the same
  job or two jobs against one connection
- Finishing is conditional on status = 'running', so a cancel wins
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import and_, exists, select, update

from ..extensions import db
from ..models import SyncConnection, SyncJob
from ..validation import InvariantViolation, NotFoundError, ValidationError, optional_text, require_text
from stockledger.time_utils import utcnow
from .concurrency import begin_immediate, run_with_retry
from . import delta_sync_service


# =============================================================================
# JOB STATUS (CONSTANTS)
# =============================================================================

JOB_STATUS_PENDING = "pending"
JOB_STATUS_RUNNING = "running"
JOB_STATUS_SUCCESS = "success"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_CANCELLED = "cancelled"

TERMINAL_JOB_STATUSES = [JOB_STATUS_SUCCESS, JOB_STATUS_FAILED, JOB_STATUS_CANCELLED]

JOB_TYPE_EXPORT = "export"
JOB_TYPE_IMPORT = "import"

VALID_JOB_TYPES = [JOB_TYPE_EXPORT, JOB_TYPE_IMPORT]


# =============================================================================
# CONNECTIONS
# =============================================================================

def create_connection(database_url: str, label: str | None = None, provider: str = "sqlalchemy") -> SyncConnection:
    database_url = require_text(database_url, "database_url", max_length=2000)

    def _op():
        connection = SyncConnection(
            provider=provider,
            label=optional_text(label, "label", max_length=120),
            database_url=database_url,
        )
        db.session.add(connection)
        db.session.commit()
        return connection

    return run_with_retry(_op)


def get_connection(connection_id: str) -> SyncConnection:
    connection = db.session.get(SyncConnection, connection_id)
    if not connection:
        raise NotFoundError(f"Sync connection {connection_id} not found")
    return connection


def list_connections() -> list[SyncConnection]:
    return db.session.query(SyncConnection).order_by(SyncConnection.created_at.asc()).all()


# =============================================================================
# ENQUEUE / QUERIES
# =============================================================================

def enqueue_job(job_type: str, connection_id: str, *, dry_run: bool = False,
                initiated_by: str | None = None) -> SyncJob:
    if job_type not in VALID_JOB_TYPES:
        raise ValidationError(f"Invalid job type: {job_type}. Must be one of {VALID_JOB_TYPES}")

    def _op():
        get_connection(connection_id)
        job = SyncJob(
            job_type=job_type,
            connection_id=connection_id,
            status=JOB_STATUS_PENDING,
            attempts=0,
            dry_run=bool(dry_run),
            initiated_by=optional_text(initiated_by, "initiated_by", max_length=64),
            details={},
        )
        db.session.add(job)
        db.session.commit()
        return job

    return run_with_retry(_op)


def get_job(job_id: str) -> SyncJob:
    job = db.session.get(SyncJob, job_id)
    if not job:
        raise NotFoundError(f"Sync job {job_id} not found")
    return job


def list_jobs(status: str | None = None, connection_id: str | None = None, limit: int = 100) -> list[SyncJob]:
    q = db.session.query(SyncJob)
    if status:
        q = q.filter(SyncJob.status == status)
    if connection_id:
        q = q.filter(SyncJob.connection_id == connection_id)
    return q.order_by(SyncJob.created_at.desc()).limit(limit).all()


# =============================================================================
# CLAIM / PROCESS
# =============================================================================

def claim_next_job() -> str | None:
    """Atomically move the oldest claimable pending job to running; return its id."""
    jobs = SyncJob.__table__
    other = jobs.alias("other_jobs")

    def _op():
        begin_immediate()
        candidates = db.session.execute(
            select(jobs.c.id, jobs.c.connection_id)
            .where(jobs.c.status == JOB_STATUS_PENDING)
            .order_by(jobs.c.created_at.asc())
        ).all()
        for job_id, connection_id in candidates:
            running_for_connection = exists().where(and_(
                other.c.connection_id == connection_id,
                other.c.status == JOB_STATUS_RUNNING,
            ))
            result = db.session.execute(
                update(jobs)
                .where(jobs.c.id == job_id, jobs.c.status == JOB_STATUS_PENDING, ~running_for_connection)
                .values(status=JOB_STATUS_RUNNING, attempts=jobs.c.attempts + 1, updated_at=utcnow())
            )
            if result.rowcount == 1:
                db.session.commit()
                return job_id
        db.session.commit()
        return None

    return run_with_retry(_op)


def _finish_job(job_id: str, status: str, *, details: dict | None, last_error: str | None) -> None:
    jobs = SyncJob.__table__

    def _op():
        begin_immediate()
        result = db.session.execute(
            update(jobs)
            .where(jobs.c.id == job_id, jobs.c.status == JOB_STATUS_RUNNING)
            .values(status=status, details=details, last_error=last_error, updated_at=utcnow())
        )
        if result.rowcount == 0:
            # Cancelled while running: keep the cancel, still record what happened
            db.session.execute(
                update(jobs).where(jobs.c.id == job_id).values(details=details, updated_at=utcnow())
            )
        db.session.commit()

    run_with_retry(_op)


def run_job(job_id: str) -> SyncJob:
    """Execute an already-claimed (running) job."""
    job = get_job(job_id)
    try:
        details = delta_sync_service.run_direction(job.connection_id, job.job_type, dry_run=job.dry_run)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("Sync job %s (%s) failed: %s", job_id, job.job_type, exc, exc_info=True)
        details = dict(getattr(exc, "details", None) or {})
        details["error_type"] = type(exc).__name__
        _finish_job(job_id, JOB_STATUS_FAILED, details=details, last_error=str(exc))
    else:
        _finish_job(job_id, JOB_STATUS_SUCCESS, details=details, last_error=None)

    db.session.expire_all()
    return get_job(job_id)


def process_next_job() -> SyncJob | None:
    job_id = claim_next_job()
    if job_id is None:
        return None
    return run_job(job_id)


def process_pending_jobs(limit: int | None = None) -> list[SyncJob]:
    processed = []
    while limit is None or len(processed) < limit:
        job = process_next_job()
        if job is None:
            break
        processed.append(job)
    return processed


# =============================================================================
# OPERATOR ACTIONS
# =============================================================================

def cancel_job(job_id: str) -> SyncJob:
    def _op():
        begin_immediate()
        job = get_job(job_id)
        if job.status not in (JOB_STATUS_PENDING, JOB_STATUS_RUNNING):
            raise InvariantViolation(f"Cannot cancel a job with status {job.status}")
        job.status = JOB_STATUS_CANCELLED
        db.session.commit()
        return job

    return run_with_retry(_op)


def retry_job(job_id: str) -> SyncJob:
    max_attempts = current_app.config.get("SYNC_MAX_ATTEMPTS", 5)

    def _op():
        begin_immediate()
        job = get_job(job_id)
        if job.status != JOB_STATUS_FAILED:
            raise InvariantViolation(f"Only failed jobs can be retried (status is {job.status})")
        if job.attempts >= max_attempts:
            raise InvariantViolation(
                f"Job has reached the maximum of {max_attempts} attempts",
                details={"attempts": job.attempts},
            )
        job.status = JOB_STATUS_PENDING
        job.last_error = None
        db.session.commit()
        return job

    return run_with_retry(_op)


def cleanup_old_jobs(days_old: int | None = None) -> int:
    """Delete finished jobs (success, failed, cancelled) not touched for days_old days."""
    if days_old is None:
        days_old = current_app.config.get("SYNC_JOB_RETENTION_DAYS", 30)
    if isinstance(days_old, bool) or not isinstance(days_old, int) or days_old < 0:
        raise ValidationError("days_old must be a non-negative integer")
    cutoff = utcnow() - timedelta(days=days_old)

    def _op():
        deleted = db.session.query(SyncJob).filter(
            SyncJob.status.in_(TERMINAL_JOB_STATUSES),
            SyncJob.updated_at < cutoff,
        ).delete(synchronize_session=False)
        db.session.commit()
        return deleted

    return run_with_retry(_op)
