# Overview: Transaction helpers shared by every ledger write (locking, immediate begin, retry).

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate() covers it there.
    """
    return query.with_for_update()


def begin_immediate():
    """
    Take the SQLite write lock up front so read-check-write sequences
    (outstanding balance, remaining returnable quantity) cannot interleave.

    No-op on other dialects and when a transaction is already open on the
    connection (nested helper calls).
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if getattr(raw, "in_transaction", False):
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (database is locked, deadlocks) and
    StaleDataError (optimistic locking conflicts). Any other exception rolls
    the session back and propagates unchanged.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
