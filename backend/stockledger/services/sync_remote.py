# Overview: Remote ledger adapters used by delta sync (abstract interface + SQLAlchemy implementation).

"""
Remote Ledger

WHY: Delta sync only needs four things from the other side: make sure the
tables exist, hand over rows changed since a watermark, accept upserts, and
provide a lock so two stores do not push the same mirror at once. Keeping
that behind RemoteLedger lets tests (and other transports) plug in.

UPSERT SEMANTICS:
- insert-or-update by primary key, never delete-then-insert
- with keep_newer=True an existing row is only overwritten when the incoming
  updated_at is not older than the stored one (last write wins)
- each row runs in its own SAVEPOINT; a row that violates another constraint
  is reported and skipped, the rest of the batch continues
"""

from __future__ import annotations

import zlib
from datetime import datetime
from typing import Any

from sqlalchemy import Table, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError


class RemoteLedger:
    """Interface every remote implementation provides."""

    def ensure_schema(self, tables: list[Table]) -> None:
        raise NotImplementedError

    def fetch_changes(self, table: Table, since: datetime | None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def upsert_rows(self, table: Table, rows: list[dict[str, Any]], *, keep_newer: bool = True) -> dict:
        raise NotImplementedError

    def acquire_lock(self) -> bool:
        raise NotImplementedError

    def release_lock(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


def build_upsert(dialect_name: str, table: Table, row: dict[str, Any], *, keep_newer: bool = True):
    """INSERT ... ON CONFLICT (pk) DO UPDATE for one row."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ValueError(f"Upsert not supported for dialect {dialect_name}")

    stmt = insert(table).values(**row)
    pk_names = [c.name for c in table.primary_key.columns]
    update_cols = {
        c.name: stmt.excluded[c.name]
        for c in table.columns
        if not c.primary_key and c.name in row
    }
    where = None
    if keep_newer and "updated_at" in table.c:
        where = table.c.updated_at <= stmt.excluded.updated_at
    return stmt.on_conflict_do_update(index_elements=pk_names, set_=update_cols, where=where)


def upsert_rows_on(conn_or_session, dialect_name: str, table: Table, rows: list[dict[str, Any]],
                   *, keep_newer: bool = True) -> dict:
    """
    Upsert row by row inside SAVEPOINTs on an open transaction.

    Works with a Core Connection or an ORM Session (both expose
    begin_nested()/execute()). Returns written/skipped counts and row errors.
    """
    written = 0
    skipped = 0
    errors: list[dict] = []
    pk_names = [c.name for c in table.primary_key.columns]
    for row in rows:
        stmt = build_upsert(dialect_name, table, row, keep_newer=keep_newer)
        try:
            with conn_or_session.begin_nested():
                result = conn_or_session.execute(stmt)
        except SQLAlchemyError as exc:
            errors.append({
                "pk": {name: row.get(name) for name in pk_names},
                "error": str(getattr(exc, "orig", exc)),
            })
            continue
        if result.rowcount == 0:
            # Existing row is newer
            skipped += 1
        else:
            written += 1
    return {"written": written, "skipped": skipped, "errors": errors}


def _engine_options(database_url: str, timeout_seconds: int) -> dict:
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        return {"connect_args": {"timeout": timeout_seconds}}
    if backend == "postgresql":
        return {
            "pool_pre_ping": True,
            "connect_args": {
                "connect_timeout": timeout_seconds,
                "options": f"-c statement_timeout={timeout_seconds * 1000}",
            },
        }
    return {"pool_pre_ping": True}


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite's implicit BEGIN breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class SqlRemoteLedger(RemoteLedger):
    """Remote ledger reachable through any SQLAlchemy URL (Postgres mirror in production)."""

    LOCK_NAME = "stockledger_delta_sync"

    def __init__(self, database_url: str, *, timeout_seconds: int = 60):
        self.database_url = database_url
        self.engine: Engine = create_engine(database_url, **_engine_options(database_url, timeout_seconds))
        self.dialect_name = self.engine.dialect.name
        if self.dialect_name == "sqlite":
            _enable_sqlite_savepoints(self.engine)
        self._lock_conn: Connection | None = None

    @classmethod
    def from_connection(cls, connection, *, timeout_seconds: int = 60) -> "SqlRemoteLedger":
        return cls(connection.database_url, timeout_seconds=timeout_seconds)

    def ensure_schema(self, tables: list[Table]) -> None:
        for table in tables:
            table.create(self.engine, checkfirst=True)

    def fetch_changes(self, table: Table, since: datetime | None) -> list[dict[str, Any]]:
        stmt = select(table)
        if since is not None:
            stmt = stmt.where(table.c.updated_at > since)
        stmt = stmt.order_by(table.c.updated_at.asc())
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    def upsert_rows(self, table: Table, rows: list[dict[str, Any]], *, keep_newer: bool = True) -> dict:
        with self.engine.begin() as conn:
            return upsert_rows_on(conn, self.dialect_name, table, rows, keep_newer=keep_newer)

    def acquire_lock(self) -> bool:
        if self.dialect_name != "postgresql":
            return True
        key = zlib.crc32(self.LOCK_NAME.encode("utf-8"))
        self._lock_conn = self.engine.connect()
        acquired = bool(self._lock_conn.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": key}
        ).scalar())
        if not acquired:
            self._lock_conn.close()
            self._lock_conn = None
        return acquired

    def release_lock(self) -> None:
        if self._lock_conn is None:
            return
        key = zlib.crc32(self.LOCK_NAME.encode("utf-8"))
        try:
            self._lock_conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
        finally:
            self._lock_conn.close()
            self._lock_conn = None

    def close(self) -> None:
        self.release_lock()
        self.engine.dispose()


REMOTE_FACTORIES = {
    "sqlalchemy": SqlRemoteLedger.from_connection,
}


def open_remote(connection, *, timeout_seconds: int = 60) -> RemoteLedger:
    factory = REMOTE_FACTORIES.get(connection.provider)
    if factory is None:
        raise ValueError(f"Unknown sync provider: {connection.provider}")
    return factory(connection, timeout_seconds=timeout_seconds)
