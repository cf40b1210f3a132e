"""
Stock ledger: counter moves, history rows and reconcile.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from stockledger.extensions import db
from stockledger.models import Color, StockInHistory, StockMovementSummary, StockOutHistory
from stockledger.services import stock_service
from stockledger.time_utils import format_ledger_date
from stockledger.validation import InvariantViolation, NotFoundError, ValidationError


def test_opening_stock_is_booked_as_stock_in(color):
    rows = db.session.query(StockInHistory).filter_by(color_id=color.id).all()

    assert color.stock_quantity == 50
    assert len(rows) == 1
    assert rows[0].previous_stock == 0
    assert rows[0].new_stock == 50
    assert rows[0].notes == "Opening stock"
    assert stock_service.calculate_stock(color.id) == 50


def test_stock_in_appends_history_with_snapshots(color):
    stock_service.stock_in(color.id, 10, notes="Supplier delivery", stock_in_date="15-03-2025")

    entry = (
        db.session.query(StockInHistory)
        .filter_by(color_id=color.id, stock_in_date="15-03-2025")
        .one()
    )
    assert db.session.get(Color, color.id).stock_quantity == 60
    assert (entry.previous_stock, entry.new_stock) == (50, 60)
    assert entry.type == stock_service.STOCK_IN_TYPE_STOCK_IN


def test_stock_in_default_note_and_date(color):
    stock_service.stock_in(color.id, 5)

    entry = db.session.query(StockInHistory).filter_by(color_id=color.id, quantity=5).one()
    assert entry.notes == stock_service.DEFAULT_STOCK_IN_NOTE
    assert entry.stock_in_date == format_ledger_date()


@pytest.mark.parametrize("quantity", [0, -3, "1e3", 2.5, True])
def test_stock_in_rejects_bad_quantity(color, quantity):
    with pytest.raises(ValidationError):
        stock_service.stock_in(color.id, quantity)
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_stock_in_rejects_bad_date(color):
    with pytest.raises(ValidationError):
        stock_service.stock_in(color.id, 5, stock_in_date="2025-03-15")
    with pytest.raises(ValidationError):
        stock_service.stock_in(color.id, 5, stock_in_date="31-02-2025")


def test_stock_in_unknown_color(db_session):
    with pytest.raises(NotFoundError):
        stock_service.stock_in("missing", 5)


def test_stock_out_is_clamped_at_zero(color):
    entry = stock_service.record_stock_out(color.id, 80, stock_service.MOVEMENT_DAMAGE, reason="Water damage")

    assert db.session.get(Color, color.id).stock_quantity == 0
    assert entry.quantity == 50
    assert entry.requested_quantity == 80
    assert (entry.previous_stock, entry.new_stock) == (50, 0)
    assert stock_service.reconcile(color.id)["corrected"] is False


def test_stock_out_rejects_unknown_movement_type(color):
    with pytest.raises(ValidationError):
        stock_service.record_stock_out(color.id, 1, "theft")
    assert db.session.query(StockOutHistory).count() == 0


def test_movement_summary_tracks_day_totals(color):
    day = format_ledger_date()
    stock_service.stock_in(color.id, 10)
    stock_service.record_stock_out(color.id, 4, stock_service.MOVEMENT_ADJUSTMENT)

    summary = db.session.query(StockMovementSummary).filter_by(color_id=color.id, summary_date=day).one()
    assert summary.opening_stock == 0
    assert summary.total_inward == 60
    assert summary.total_outward == 4
    assert summary.closing_stock == 56


def test_reconcile_repairs_drifted_counter(color):
    db.session.get(Color, color.id).stock_quantity = 7
    db.session.commit()

    first = stock_service.reconcile(color.id)
    second = stock_service.reconcile(color.id)

    assert first == {"color_id": color.id, "stored": 7, "calculated": 50, "corrected": True}
    assert second["corrected"] is False
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_reconcile_all_reports_only_corrected(color, second_color):
    db.session.get(Color, second_color.id).stock_quantity = 3
    db.session.commit()

    result = stock_service.reconcile_all()

    assert result["checked"] == 2
    assert [r["color_id"] for r in result["corrected"]] == [second_color.id]


def test_failed_history_insert_keeps_quantity(color, monkeypatch):
    """A stock-in whose history row cannot be written still moves the counter."""
    original_add = db.session.add

    def failing_add(obj, *args, **kwargs):
        if isinstance(obj, StockInHistory):
            raise SQLAlchemyError("history table unavailable")
        return original_add(obj, *args, **kwargs)

    monkeypatch.setattr(db.session, "add", failing_add)
    stock_service.stock_in(color.id, 5)
    monkeypatch.undo()

    assert db.session.get(Color, color.id).stock_quantity == 55
    assert stock_service.calculate_stock(color.id) == 50
    assert stock_service.reconcile(color.id)["corrected"] is True
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_update_stock_in_history_moves_counter_by_delta(color):
    stock_service.stock_in(color.id, 10)
    entry = db.session.query(StockInHistory).filter_by(color_id=color.id, quantity=10).one()

    stock_service.update_stock_in_history(entry.id, quantity=4, notes="Miscounted")

    assert db.session.get(Color, color.id).stock_quantity == 54
    assert stock_service.reconcile(color.id)["corrected"] is False


def test_delete_stock_in_history(color):
    stock_service.stock_in(color.id, 10)
    entry = db.session.query(StockInHistory).filter_by(color_id=color.id, quantity=10).one()

    result = stock_service.delete_stock_in_history(entry.id)

    assert result["previous_stock"] == 60
    assert result["new_stock"] == 50
    assert stock_service.reconcile(color.id)["corrected"] is False


def test_corrections_cannot_drive_stock_below_sold_quantity(color):
    opening = db.session.query(StockInHistory).filter_by(color_id=color.id).one()
    stock_service.record_stock_out(color.id, 45, "damage")

    with pytest.raises(InvariantViolation):
        stock_service.delete_stock_in_history(opening.id)
    with pytest.raises(InvariantViolation) as exc:
        stock_service.update_stock_in_history(opening.id, quantity=40)
    assert exc.value.details == {"stock_quantity": 5, "change": -10}

    assert db.session.get(StockInHistory, opening.id).quantity == 50
    assert db.session.get(Color, color.id).stock_quantity == 5
    assert stock_service.reconcile(color.id)["corrected"] is False

    stock_service.update_stock_in_history(opening.id, quantity=46)
    assert db.session.get(Color, color.id).stock_quantity == 1
    assert stock_service.reconcile(color.id)["calculated"] == 1


def test_history_queries_filter_by_date(color):
    stock_service.stock_in(color.id, 1, stock_in_date="01-01-2025")
    stock_service.stock_in(color.id, 2, stock_in_date="10-01-2025")
    stock_service.stock_in(color.id, 3, stock_in_date="20-02-2025")

    rows = stock_service.list_stock_in_history(color.id, start_date="05-01-2025", end_date="31-01-2025")

    assert [r.quantity for r in rows] == [2]
