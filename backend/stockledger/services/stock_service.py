# Overview: Service-layer operations for the stock ledger; every change to a color's quantity goes through here.

"""
Stock Ledger Service

Invariants & semantics (authoritative):
- StockInHistory / StockOutHistory are the source of truth. Color.stock_quantity
  is a materialized counter equal to SUM(stock-in) - SUM(stock-out).
- Every counter move appends one history row in the same DB transaction, with
  previous_stock/new_stock snapshots.
- Stock-out never drives the counter below zero. The history row records the
  quantity actually removed and the quantity requested.
- A failed stock-in history insert is logged and does not undo the counter
  update (it runs in a SAVEPOINT). reconcile() repairs the counter afterwards.
- reconcile() is idempotent: running it twice changes nothing the second time.
- Business dates are DD-MM-YYYY strings; created_at/updated_at are UTC-naive.

The *_locked helpers expect an open write transaction and never commit, so
sales and returns can fold several stock moves into one commit.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Color, StockInHistory, StockOutHistory, StockMovementSummary
from ..validation import (
    InvariantViolation,
    NotFoundError,
    ValidationError,
    optional_text,
    require_positive_int,
)
from stockledger.time_utils import format_ledger_date, is_valid_ledger_date, parse_ledger_date
from .concurrency import begin_immediate, lock_for_update, run_with_retry


# =============================================================================
# MOVEMENT TYPES (CONSTANTS)
# =============================================================================

STOCK_IN_TYPE_STOCK_IN = "stock_in"
STOCK_IN_TYPE_RETURN = "return"
STOCK_IN_TYPE_ADJUSTMENT = "adjustment"

VALID_STOCK_IN_TYPES = [
    STOCK_IN_TYPE_STOCK_IN,
    STOCK_IN_TYPE_RETURN,
    STOCK_IN_TYPE_ADJUSTMENT,
]

MOVEMENT_SALE = "sale"
MOVEMENT_RETURN = "return"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_DAMAGE = "damage"

VALID_MOVEMENT_TYPES = [
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_DAMAGE,
]

DEFAULT_STOCK_IN_NOTE = "Stock added via stock management"


# =============================================================================
# HELPERS
# =============================================================================

def _ledger_date(value: str | None, field: str) -> str:
    if value is None or value == "":
        return format_ledger_date()
    if not is_valid_ledger_date(value):
        raise ValidationError(f"{field} must be a valid date in DD-MM-YYYY format")
    return value


def _get_color_locked(color_id: str) -> Color:
    color = lock_for_update(db.session.query(Color).filter_by(id=color_id)).first()
    if not color:
        raise NotFoundError(f"Color {color_id} not found")
    return color


def _touch_summary(color: Color, day: str, *, inward: int = 0, outward: int = 0) -> None:
    """Fold one movement into the color's per-day summary row."""
    summary = db.session.query(StockMovementSummary).filter_by(
        color_id=color.id, summary_date=day
    ).first()
    if summary is None:
        summary = StockMovementSummary(
            color_id=color.id,
            summary_date=day,
            opening_stock=color.stock_quantity - inward + outward,
            total_inward=0,
            total_outward=0,
        )
        db.session.add(summary)
    summary.total_inward = (summary.total_inward or 0) + inward
    summary.total_outward = (summary.total_outward or 0) + outward
    summary.closing_stock = color.stock_quantity


def _in_date_range(value: str, start: str | None, end: str | None) -> bool:
    day = parse_ledger_date(value)
    if start and day < parse_ledger_date(start):
        return False
    if end and day > parse_ledger_date(end):
        return False
    return True


# =============================================================================
# LOCKED PRIMITIVES (no commit)
# =============================================================================

def apply_stock_in_locked(
    color: Color,
    quantity: int,
    *,
    notes: str | None = None,
    stock_in_date: str | None = None,
    entry_type: str = STOCK_IN_TYPE_STOCK_IN,
    sale_id: str | None = None,
    return_id: str | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
) -> StockInHistory | None:
    """
    Increment a color's counter and append the history row.

    Returns the history row, or None when the history insert failed (the
    counter update stands; the failure is logged).
    """
    quantity = require_positive_int(quantity, "quantity")
    if entry_type not in VALID_STOCK_IN_TYPES:
        raise ValidationError(f"Invalid stock-in type: {entry_type}. Must be one of {VALID_STOCK_IN_TYPES}")
    day = _ledger_date(stock_in_date, "stock_in_date")

    previous = color.stock_quantity
    color.stock_quantity = previous + quantity
    db.session.flush()

    entry = StockInHistory(
        color_id=color.id,
        quantity=quantity,
        previous_stock=previous,
        new_stock=color.stock_quantity,
        stock_in_date=day,
        notes=notes if notes is not None else DEFAULT_STOCK_IN_NOTE,
        type=entry_type,
        sale_id=sale_id,
        return_id=return_id,
        customer_name=customer_name,
        customer_phone=customer_phone,
    )
    try:
        with db.session.begin_nested():
            db.session.add(entry)
    except SQLAlchemyError:
        current_app.logger.warning(
            "Stock-in history insert failed for color %s (+%s); quantity update kept",
            color.id, quantity, exc_info=True,
        )
        entry = None

    _touch_summary(color, day, inward=quantity)
    return entry


def apply_stock_out_locked(
    color: Color,
    quantity: int,
    movement_type: str,
    *,
    reference_id: str | None = None,
    reference_type: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
    stock_out_date: str | None = None,
) -> StockOutHistory:
    quantity = require_positive_int(quantity, "quantity")
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}. Must be one of {VALID_MOVEMENT_TYPES}")
    day = _ledger_date(stock_out_date, "stock_out_date")

    previous = color.stock_quantity
    applied = min(quantity, previous)
    if applied < quantity:
        current_app.logger.warning(
            "Stock-out for color %s clamped: requested %s, available %s",
            color.id, quantity, previous,
        )
    color.stock_quantity = previous - applied

    entry = StockOutHistory(
        color_id=color.id,
        quantity=applied,
        requested_quantity=quantity,
        previous_stock=previous,
        new_stock=color.stock_quantity,
        movement_type=movement_type,
        reference_id=reference_id,
        reference_type=reference_type,
        reason=optional_text(reason, "reason"),
        notes=notes,
        stock_out_date=day,
    )
    db.session.add(entry)
    _touch_summary(color, day, outward=applied)
    return entry


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def stock_in(
    color_id: str,
    quantity: int,
    notes: str | None = None,
    stock_in_date: str | None = None,
) -> Color:
    """Add stock to a color (manual receipt)."""
    quantity = require_positive_int(quantity, "quantity")
    _ledger_date(stock_in_date, "stock_in_date")

    def _op():
        begin_immediate()
        color = _get_color_locked(color_id)
        apply_stock_in_locked(color, quantity, notes=notes, stock_in_date=stock_in_date)
        db.session.commit()
        return color

    return run_with_retry(_op)


def record_stock_out(
    color_id: str,
    quantity: int,
    movement_type: str,
    reference_id: str | None = None,
    reference_type: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
    stock_out_date: str | None = None,
) -> StockOutHistory:
    """Remove stock from a color (damage, adjustment, supplier return...)."""
    quantity = require_positive_int(quantity, "quantity")

    def _op():
        begin_immediate()
        color = _get_color_locked(color_id)
        entry = apply_stock_out_locked(
            color,
            quantity,
            movement_type,
            reference_id=reference_id,
            reference_type=reference_type,
            reason=reason,
            notes=notes,
            stock_out_date=stock_out_date,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def calculate_stock(color_id: str) -> int:
    """SUM(stock-in) - SUM(stock-out) for one color, straight from history."""
    total_in = db.session.query(func.coalesce(func.sum(StockInHistory.quantity), 0)).filter(
        StockInHistory.color_id == color_id
    ).scalar()
    total_out = db.session.query(func.coalesce(func.sum(StockOutHistory.quantity), 0)).filter(
        StockOutHistory.color_id == color_id
    ).scalar()
    return int(total_in) - int(total_out)


def reconcile(color_id: str) -> dict:
    """
    Compare the stored counter with the history ledger and correct it.

    Ledger rows are never rewritten; only Color.stock_quantity moves.
    """
    def _op():
        begin_immediate()
        color = _get_color_locked(color_id)
        stored = color.stock_quantity
        calculated = calculate_stock(color_id)
        corrected = False
        if stored != calculated:
            color.stock_quantity = max(0, calculated)
            corrected = color.stock_quantity != stored
            current_app.logger.warning(
                "Stock reconcile corrected color %s: stored=%s calculated=%s",
                color_id, stored, calculated,
            )
        db.session.commit()
        return {
            "color_id": color_id,
            "stored": stored,
            "calculated": calculated,
            "corrected": corrected,
        }

    return run_with_retry(_op)


def reconcile_all() -> dict:
    color_ids = [row[0] for row in db.session.query(Color.id).order_by(Color.id).all()]
    results = [reconcile(color_id) for color_id in color_ids]
    corrected = [r for r in results if r["corrected"]]
    if corrected:
        current_app.logger.info("Stock reconcile corrected %s of %s colors", len(corrected), len(results))
    return {"checked": len(results), "corrected": corrected}


# =============================================================================
# HISTORY CORRECTIONS
# =============================================================================

def update_stock_in_history(
    history_id: str,
    quantity: int | None = None,
    notes: str | None = None,
    stock_in_date: str | None = None,
) -> StockInHistory:
    """
    Correct a stock-in row. A quantity change is propagated to the color as
    the difference between the new and old quantity.
    """
    if quantity is not None:
        quantity = require_positive_int(quantity, "quantity")
    if stock_in_date is not None:
        _ledger_date(stock_in_date, "stock_in_date")

    def _op():
        begin_immediate()
        entry = db.session.get(StockInHistory, history_id)
        if not entry:
            raise NotFoundError(f"Stock-in record {history_id} not found")

        if quantity is not None and quantity != entry.quantity:
            color = _get_color_locked(entry.color_id)
            delta = quantity - entry.quantity
            if color.stock_quantity + delta < 0:
                raise InvariantViolation(
                    "Correction would take stock below zero; the stock has already been sold",
                    details={"stock_quantity": color.stock_quantity, "change": delta},
                )
            entry.quantity = quantity
            entry.new_stock = entry.previous_stock + quantity
            color.stock_quantity += delta
        if notes is not None:
            entry.notes = notes
        if stock_in_date is not None:
            entry.stock_in_date = stock_in_date

        db.session.commit()
        return entry

    return run_with_retry(_op)


def delete_stock_in_history(history_id: str) -> dict:
    def _op():
        begin_immediate()
        entry = db.session.get(StockInHistory, history_id)
        if not entry:
            raise NotFoundError(f"Stock-in record {history_id} not found")
        color = _get_color_locked(entry.color_id)
        previous = color.stock_quantity
        if previous < entry.quantity:
            raise InvariantViolation(
                "Deleting this stock-in would take stock below zero; the stock has already been sold",
                details={"stock_quantity": previous, "change": -entry.quantity},
            )
        color.stock_quantity = previous - entry.quantity
        db.session.delete(entry)
        db.session.commit()
        return {
            "deleted_id": history_id,
            "color_id": color.id,
            "previous_stock": previous,
            "new_stock": color.stock_quantity,
        }

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_stock_in_history(
    color_id: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    entry_type: str | None = None,
    limit: int = 500,
) -> list[StockInHistory]:
    for value, field in ((start_date, "start_date"), (end_date, "end_date")):
        if value is not None:
            _ledger_date(value, field)
    q = db.session.query(StockInHistory)
    if color_id:
        q = q.filter(StockInHistory.color_id == color_id)
    if entry_type:
        q = q.filter(StockInHistory.type == entry_type)
    rows = q.order_by(StockInHistory.created_at.desc()).limit(limit).all()
    return [r for r in rows if _in_date_range(r.stock_in_date, start_date, end_date)]


def list_stock_out_history(
    color_id: str | None = None,
    movement_type: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 500,
) -> list[StockOutHistory]:
    for value, field in ((start_date, "start_date"), (end_date, "end_date")):
        if value is not None:
            _ledger_date(value, field)
    q = db.session.query(StockOutHistory)
    if color_id:
        q = q.filter(StockOutHistory.color_id == color_id)
    if movement_type:
        q = q.filter(StockOutHistory.movement_type == movement_type)
    rows = q.order_by(StockOutHistory.created_at.desc()).limit(limit).all()
    return [r for r in rows if _in_date_range(r.stock_out_date, start_date, end_date)]


def get_movement_summary(
    color_id: str,
    start_date: str | None = None,
    end_date: str | None = None,
) -> list[StockMovementSummary]:
    rows = db.session.query(StockMovementSummary).filter_by(color_id=color_id).all()
    rows = [r for r in rows if _in_date_range(r.summary_date, start_date, end_date)]
    return sorted(rows, key=lambda r: parse_ledger_date(r.summary_date))
