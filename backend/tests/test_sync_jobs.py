"""
Sync job queue: claiming, cancel, retry limits, cleanup and the commit hooks
that feed the auto-sync scheduler.
"""

from datetime import timedelta

import pytest
from sqlalchemy import event, update

from stockledger.extensions import db
from stockledger.models import SyncJob
from stockledger.services import stock_service, sync_job_service
from stockledger.services.sync_scheduler import (
    _collect_dirty_tables,
    _discard_after_rollback,
    _notify_after_commit,
    init_auto_sync,
)
from stockledger.time_utils import utcnow
from stockledger.validation import InvariantViolation, NotFoundError, ValidationError


@pytest.fixture
def connection(db_session, tmp_path):
    return sync_job_service.create_connection(f"sqlite:///{tmp_path / 'mirror.sqlite3'}", label="mirror")


@pytest.fixture
def broken_connection(db_session, tmp_path):
    return sync_job_service.create_connection(f"sqlite:///{tmp_path / 'missing' / 'mirror.sqlite3'}")


def _set_job(job_id, **values):
    db.session.execute(update(SyncJob.__table__).where(SyncJob.__table__.c.id == job_id).values(**values))
    db.session.commit()


def test_enqueue_validation(connection):
    with pytest.raises(ValidationError):
        sync_job_service.enqueue_job("both", connection.id)
    with pytest.raises(NotFoundError):
        sync_job_service.enqueue_job("export", "missing")


def test_process_runs_job_to_success(color, connection):
    job = sync_job_service.enqueue_job("export", connection.id, initiated_by="cli")

    processed = sync_job_service.process_pending_jobs()

    assert [j.id for j in processed] == [job.id]
    finished = sync_job_service.get_job(job.id)
    assert finished.status == sync_job_service.JOB_STATUS_SUCCESS
    assert finished.attempts == 1
    assert finished.details["tables"]["colors"]["written"] == 1
    assert sync_job_service.process_next_job() is None


def test_one_running_job_per_connection(connection):
    first = sync_job_service.enqueue_job("import", connection.id)
    second = sync_job_service.enqueue_job("export", connection.id)

    assert sync_job_service.claim_next_job() == first.id
    assert sync_job_service.claim_next_job() is None

    sync_job_service.cancel_job(first.id)
    assert sync_job_service.claim_next_job() == second.id


def test_cancel_while_running_keeps_cancel(color, connection):
    job = sync_job_service.enqueue_job("export", connection.id)
    assert sync_job_service.claim_next_job() == job.id
    sync_job_service.cancel_job(job.id)

    finished = sync_job_service.run_job(job.id)

    assert finished.status == sync_job_service.JOB_STATUS_CANCELLED
    assert finished.details["direction"] == "export"


def test_cancel_finished_job_is_rejected(connection):
    job = sync_job_service.enqueue_job("export", connection.id)
    sync_job_service.process_pending_jobs()

    with pytest.raises(InvariantViolation):
        sync_job_service.cancel_job(job.id)


def test_failed_job_retry_and_cleanup(broken_connection):
    job = sync_job_service.enqueue_job("export", broken_connection.id)

    sync_job_service.process_pending_jobs()
    failed = sync_job_service.get_job(job.id)
    assert failed.status == sync_job_service.JOB_STATUS_FAILED
    assert failed.last_error
    assert failed.details["error_type"]

    retried = sync_job_service.retry_job(job.id)
    assert retried.status == sync_job_service.JOB_STATUS_PENDING
    assert retried.attempts == 1
    assert retried.last_error is None

    sync_job_service.process_pending_jobs()
    assert sync_job_service.get_job(job.id).attempts == 2

    # Recently finished jobs are kept
    assert sync_job_service.cleanup_old_jobs(30) == 0
    _set_job(job.id, updated_at=utcnow() - timedelta(days=31))
    assert sync_job_service.cleanup_old_jobs(30) == 1
    assert sync_job_service.list_jobs() == []


def test_retry_refused_at_max_attempts(app, connection):
    job = sync_job_service.enqueue_job("export", connection.id)
    _set_job(job.id, status="failed", attempts=app.config["SYNC_MAX_ATTEMPTS"])

    with pytest.raises(InvariantViolation):
        sync_job_service.retry_job(job.id)


def test_retry_only_from_failed(connection):
    job = sync_job_service.enqueue_job("export", connection.id)
    with pytest.raises(InvariantViolation):
        sync_job_service.retry_job(job.id)


def test_cleanup_keeps_pending_jobs(connection):
    job = sync_job_service.enqueue_job("export", connection.id)
    _set_job(job.id, updated_at=utcnow() - timedelta(days=90))

    assert sync_job_service.cleanup_old_jobs(30) == 0
    with pytest.raises(ValidationError):
        sync_job_service.cleanup_old_jobs(-1)


def test_commits_notify_auto_sync(app, color):
    scheduler = init_auto_sync(app)
    notified = []
    scheduler.notify = lambda tables: notified.append(set(tables))
    try:
        stock_service.stock_in(color.id, 5)
    finally:
        event.remove(db.session, "after_flush", _collect_dirty_tables)
        event.remove(db.session, "after_commit", _notify_after_commit)
        event.remove(db.session, "after_rollback", _discard_after_rollback)
        app.extensions.pop("stockledger_sync_scheduler", None)

    assert notified
    assert {"colors", "stock_in_history"} <= set().union(*notified)
