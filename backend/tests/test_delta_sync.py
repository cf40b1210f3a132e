"""
Delta sync against a mirror ledger kept in a temporary SQLite file.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, select, update

from conftest import sale_payload
from stockledger.extensions import db
from stockledger.models import Color, Sale, SyncConnection
from stockledger.services import delta_sync_service, sales_service, stock_service, sync_job_service
from stockledger.services.delta_sync_service import SyncError
from stockledger.time_utils import utcnow


@pytest.fixture
def mirror_url(tmp_path):
    return f"sqlite:///{tmp_path / 'mirror.sqlite3'}"


@pytest.fixture
def connection(db_session, mirror_url):
    return sync_job_service.create_connection(mirror_url, label="Head office mirror")


def _mirror_rows(url, table):
    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(select(table))]
    finally:
        engine.dispose()


def _edit_mirror(url, table, row_id, **values):
    engine = create_engine(url)
    try:
        with engine.begin() as conn:
            conn.execute(update(table).where(table.c.id == row_id).values(**values))
    finally:
        engine.dispose()


def test_export_copies_ledger_rows(color, connection, mirror_url):
    sale_data, items = sale_payload(color.id, quantity=2)
    sales_service.create_sale(sale_data, items)

    report = delta_sync_service.run_direction(connection.id, "export")

    assert report["direction"] == "export"
    assert report["since"] is None
    assert report["tables"]["colors"]["written"] == 1
    assert report["tables"]["sales"]["written"] == 1
    assert report["tables"]["stock_out_history"]["written"] == 1

    colors = _mirror_rows(mirror_url, Color.__table__)
    assert [(c["id"], c["stock_quantity"]) for c in colors] == [(color.id, 48)]
    assert db.session.get(SyncConnection, connection.id).last_export_at is not None


def test_second_export_moves_only_new_rows(color, connection, mirror_url):
    delta_sync_service.run_direction(connection.id, "export")

    quiet = delta_sync_service.run_direction(connection.id, "export")
    assert all(t["selected"] == 0 for t in quiet["tables"].values())

    sale_data, items = sale_payload(color.id, quantity=1)
    sales_service.create_sale(sale_data, items)
    delta = delta_sync_service.run_direction(connection.id, "export")

    assert delta["tables"]["sales"]["selected"] == 1
    assert delta["tables"]["colors"]["selected"] == 1
    assert delta["tables"]["products"]["selected"] == 0
    assert len(_mirror_rows(mirror_url, Sale.__table__)) == 1


def test_import_picks_up_newer_mirror_edits(color, connection, mirror_url):
    delta_sync_service.run_direction(connection.id, "export")
    _edit_mirror(
        mirror_url, Color.__table__, color.id,
        color_name="Ivory Mist", updated_at=utcnow() + timedelta(minutes=5),
    )

    report = delta_sync_service.run_direction(connection.id, "import")

    assert report["tables"]["colors"]["written"] == 1
    assert db.session.get(Color, color.id).color_name == "Ivory Mist"


def test_import_last_write_wins_keeps_newer_local_row(color, connection, mirror_url):
    delta_sync_service.run_direction(connection.id, "export")
    _edit_mirror(mirror_url, Color.__table__, color.id, color_name="Stale", updated_at=datetime(2000, 1, 1))

    report = delta_sync_service.run_direction(connection.id, "import", policy="last_write_wins")

    assert report["tables"]["colors"]["conflicts"] == 1
    assert db.session.get(Color, color.id).color_name == "Ivory"


def test_import_keep_local_skips_locally_changed_rows(color, connection, mirror_url):
    delta_sync_service.run_direction(connection.id, "export")
    delta_sync_service.run_direction(connection.id, "import")

    stock_service.stock_in(color.id, 5)
    _edit_mirror(
        mirror_url, Color.__table__, color.id,
        color_name="Mirror Name", updated_at=utcnow() + timedelta(minutes=5),
    )

    report = delta_sync_service.run_direction(connection.id, "import", policy="keep_local")

    assert report["policy"] == "keep_local"
    assert report["tables"]["colors"]["conflicts"] == 1
    assert report["tables"]["colors"]["written"] == 0
    color_row = db.session.get(Color, color.id)
    assert color_row.color_name == "Ivory"
    assert color_row.stock_quantity == 55


def test_dry_run_reports_without_writing(color, connection, mirror_url):
    report = delta_sync_service.run_direction(connection.id, "export", dry_run=True)

    assert report["tables"]["colors"]["selected"] == 1
    assert report["tables"]["colors"]["written"] == 0
    assert _mirror_rows(mirror_url, Color.__table__) == []
    assert db.session.get(SyncConnection, connection.id).last_export_at is None


def test_trigger_sync_imports_then_exports(color, connection, mirror_url):
    result = delta_sync_service.trigger_sync(connection.id)

    assert set(result) == {"import", "export"}
    assert result["import"]["tables"]["colors"]["selected"] == 0
    assert result["export"]["tables"]["colors"]["written"] == 1
    refreshed = db.session.get(SyncConnection, connection.id)
    assert refreshed.last_import_at is not None
    assert refreshed.last_export_at is not None


def test_sync_errors(connection):
    with pytest.raises(SyncError):
        delta_sync_service.run_direction("missing", "export")
    with pytest.raises(SyncError):
        delta_sync_service.run_direction(connection.id, "sideways")
    with pytest.raises(SyncError):
        delta_sync_service.run_direction(connection.id, "export", policy="newest_guess")


def test_row_error_keeps_watermark_and_retries_the_row(color, connection, mirror_url):
    sale_data, items = sale_payload(color.id, quantity=1)
    first = sales_service.create_sale(sale_data, items, offline_id="offline_1718000000000_aaaaaaaaa")
    delta_sync_service.run_direction(connection.id, "export")
    db.session.expire_all()
    watermark = db.session.get(SyncConnection, connection.id).last_export_at

    # Mirror holds a different sale under the offline_id the next sale uses
    _edit_mirror(mirror_url, Sale.__table__, first.id, offline_id="offline_1718000000000_bbbbbbbbb")
    sale_data, items = sale_payload(color.id, quantity=1)
    second = sales_service.create_sale(sale_data, items, offline_id="offline_1718000000000_bbbbbbbbb")

    with pytest.raises(SyncError) as exc:
        delta_sync_service.run_direction(connection.id, "export")

    sales_report = exc.value.details["tables"]["sales"]
    assert [e["pk"] for e in sales_report["errors"]] == [{"id": second.id}]
    assert exc.value.details["watermark"] == exc.value.details["since"]
    db.session.expire_all()
    assert db.session.get(SyncConnection, connection.id).last_export_at == watermark

    job = sync_job_service.enqueue_job("export", connection.id)
    sync_job_service.process_pending_jobs()
    failed = sync_job_service.get_job(job.id)
    assert failed.status == sync_job_service.JOB_STATUS_FAILED
    assert failed.details["error_type"] == "SyncError"
    assert len(failed.details["tables"]["sales"]["errors"]) == 1

    _edit_mirror(mirror_url, Sale.__table__, first.id, offline_id="offline_1718000000000_aaaaaaaaa")
    retried = delta_sync_service.run_direction(connection.id, "export")

    assert retried["tables"]["sales"]["selected"] == 1
    assert retried["tables"]["sales"]["written"] == 1
    assert {s["id"] for s in _mirror_rows(mirror_url, Sale.__table__)} == {first.id, second.id}
