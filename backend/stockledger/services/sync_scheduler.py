# Overview: Debounced, mutually exclusive auto-sync driven by ledger commits.

from __future__ import annotations

import threading
from typing import Callable, Iterable

from flask import Flask, current_app, has_app_context
from sqlalchemy import event

from ..extensions import db
from stockledger.time_utils import utcnow


_DIRTY_KEY = "stockledger_dirty_tables"


class AutoSyncScheduler:
    """
    Coalesce ledger changes into one sync pass.

    - notify() (re)starts a debounce timer; changes inside the window share a pass
    - only one pass runs at a time; a notify() while a pass runs is a no-op
    - the pass runs on a timer thread inside an app context, never on the
      request that committed the change
    """

    def __init__(
        self,
        app: Flask,
        *,
        debounce_seconds: float | None = None,
        run_pass: Callable[[set[str]], object] | None = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.app = app
        self.debounce_seconds = (
            app.config.get("SYNC_DEBOUNCE_SECONDS", 30) if debounce_seconds is None else debounce_seconds
        )
        self._run_pass = run_pass or self._default_pass
        self._timer_factory = timer_factory
        self._timer: threading.Timer | None = None
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._dirty: set[str] = set()
        self.last_sync_at = None
        self.last_error: str | None = None
        self.passes = 0

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def notify(self, tables: Iterable[str] = ()) -> bool:
        """Record changed tables and schedule a pass. Returns False when ignored."""
        if self.running:
            return False
        with self._state_lock:
            self._dirty.update(tables)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(self.debounce_seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()
        return True

    def _fire(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            return
        try:
            with self._state_lock:
                tables, self._dirty = self._dirty, set()
                self._timer = None
            with self.app.app_context():
                try:
                    self._run_pass(tables)
                    self.last_error = None
                except Exception as exc:
                    self.last_error = str(exc)
                    current_app.logger.exception("Auto-sync pass failed")
                finally:
                    self.last_sync_at = utcnow()
                    self.passes += 1
        finally:
            self._run_lock.release()

    def run_now(self) -> None:
        """Cancel any pending timer and run a pass on the calling thread."""
        with self._state_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._fire()

    def shutdown(self) -> None:
        with self._state_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _default_pass(self, tables: set[str]) -> None:
        from . import sync_job_service

        connection_id = current_app.config.get("AUTO_SYNC_CONNECTION_ID")
        if not connection_id:
            current_app.logger.warning("Auto-sync enabled but AUTO_SYNC_CONNECTION_ID is not set")
            return
        current_app.logger.info("Auto-sync pass for %s (changed: %s)", connection_id, sorted(tables))
        sync_job_service.enqueue_job(sync_job_service.JOB_TYPE_IMPORT, connection_id, initiated_by="auto-sync")
        sync_job_service.enqueue_job(sync_job_service.JOB_TYPE_EXPORT, connection_id, initiated_by="auto-sync")
        sync_job_service.process_pending_jobs()


# =============================================================================
# SESSION HOOKS
# =============================================================================

def _collect_dirty_tables(session, flush_context) -> None:
    from .delta_sync_service import SYNC_TABLE_NAMES

    dirty = session.info.setdefault(_DIRTY_KEY, set())
    for obj in list(session.new) + list(session.dirty) + list(session.deleted):
        name = getattr(obj, "__tablename__", None)
        if name in SYNC_TABLE_NAMES:
            dirty.add(name)


def _notify_after_commit(session) -> None:
    tables = session.info.pop(_DIRTY_KEY, None)
    if not tables:
        return
    if not has_app_context():
        return
    scheduler = current_app.extensions.get("stockledger_sync_scheduler")
    if scheduler is not None:
        scheduler.notify(tables)


def _discard_after_rollback(session) -> None:
    session.info.pop(_DIRTY_KEY, None)


def init_auto_sync(app: Flask) -> AutoSyncScheduler:
    scheduler = AutoSyncScheduler(app)
    app.extensions["stockledger_sync_scheduler"] = scheduler
    if not event.contains(db.session, "after_flush", _collect_dirty_tables):
        event.listen(db.session, "after_flush", _collect_dirty_tables)
        event.listen(db.session, "after_commit", _notify_after_commit)
        event.listen(db.session, "after_rollback", _discard_after_rollback)
    return scheduler
