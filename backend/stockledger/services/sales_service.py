# Overview: Service-layer operations for sales; bills, items and their stock movements.

"""
Sale Ledger Service

WHY: A sale is the only place where stock leaves for a customer, so creating
or editing one must move stock, totals and payment status together in one
transaction.

DESIGN PRINCIPLES:
- payment_status is a pure function of (total_cents, amount_paid_cents),
  except full_return which is sticky once a whole-bill return lands
- Sale total = SUM((quantity - quantity_returned) * rate) for item sales;
  manual balances carry their total directly and have no items
- Every stock change goes through stock_service (history row + counter)
- offline_id is an idempotency key: creating a sale with a known offline_id
  returns the existing sale and touches nothing
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Color, PaymentHistory, Return, ReturnItem, Sale, SaleItem
from ..validation import (
    InsufficientStock,
    InvariantViolation,
    NotFoundError,
    OutstandingExceeded,
    ValidationError,
    optional_text,
    require_amount_cents,
    require_positive_int,
    require_text,
)
from stockledger.time_utils import is_valid_ledger_date
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .customer_service import refresh_customer_account_locked
from . import stock_service


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FULL_RETURN = "full_return"

VALID_PAYMENT_STATUSES = [
    PAYMENT_STATUS_UNPAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FULL_RETURN,
]

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_BANK_TRANSFER = "bank_transfer"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_BANK_TRANSFER,
]


# =============================================================================
# DERIVED VALUES
# =============================================================================

def derive_payment_status(total_cents: int, amount_paid_cents: int) -> str:
    """paid iff paid >= total, partial iff 0 < paid < total, else unpaid."""
    if amount_paid_cents >= total_cents:
        return PAYMENT_STATUS_PAID
    if amount_paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_UNPAID


def outstanding_cents(total_cents: int, amount_paid_cents: int) -> int:
    return max(0, total_cents - amount_paid_cents)


def refresh_payment_status(sale: Sale) -> str:
    if sale.payment_status != PAYMENT_STATUS_FULL_RETURN:
        sale.payment_status = derive_payment_status(sale.total_cents, sale.amount_paid_cents)
    return sale.payment_status


def recompute_sale_total(sale: Sale) -> int:
    """
    Re-derive total from items and status from the existing amount_paid.

    amount_paid is left alone even when it now exceeds the total; it only moves
    with a PaymentHistory row, and outstanding is already floored at 0.
    """
    if not sale.is_manual_balance:
        items = db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
        sale.total_cents = sum((i.quantity - i.quantity_returned) * i.rate_cents for i in items)
    refresh_payment_status(sale)
    return sale.total_cents


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_items(items: list[dict]) -> list[dict]:
    from .catalog_service import get_effective_rate_cents

    if not items:
        raise ValidationError("A sale needs at least one item")
    normalized = []
    for index, raw in enumerate(items):
        color_id = raw.get("color_id")
        if not color_id:
            raise ValidationError(f"items[{index}].color_id is required")
        if not db.session.get(Color, color_id):
            raise NotFoundError(f"Color {color_id} not found")
        quantity = require_positive_int(raw.get("quantity"), f"items[{index}].quantity")
        rate = raw.get("rate_cents")
        if rate is None:
            rate = get_effective_rate_cents(color_id)
        rate = require_amount_cents(rate, f"items[{index}].rate_cents", allow_zero=True)
        normalized.append({"color_id": color_id, "quantity": quantity, "rate_cents": rate})
    return normalized


def _due_date(value: str | None) -> str | None:
    if value in (None, ""):
        return None
    if not is_valid_ledger_date(value):
        raise ValidationError("due_date must be a valid date in DD-MM-YYYY format")
    return value


def _get_sale_locked(sale_id: str) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def _require_editable(sale: Sale) -> None:
    if sale.is_manual_balance:
        raise InvariantViolation("Manual balance sales have no items")
    if sale.payment_status == PAYMENT_STATUS_FULL_RETURN:
        raise InvariantViolation("Sale has been fully returned")


# =============================================================================
# SALE CREATION
# =============================================================================

def create_sale(sale_data: dict, items: list[dict], offline_id: str | None = None) -> Sale:
    """
    Create a sale with its items and stock-outs in one transaction.

    sale_data: customer_name, customer_phone, amount_paid_cents (optional),
    payment_method (optional), due_date (optional), notes (optional).

    Raises:
        ValidationError: bad customer, quantity or amount
        NotFoundError: unknown color
        InsufficientStock: any item exceeds the color's stock
        OutstandingExceeded: initial payment larger than the total
    """
    customer_name = require_text(sale_data.get("customer_name"), "customer_name", max_length=120)
    customer_phone = require_text(sale_data.get("customer_phone"), "customer_phone", max_length=32)
    amount_paid = require_amount_cents(sale_data.get("amount_paid_cents", 0), "amount_paid_cents", allow_zero=True)
    payment_method = sale_data.get("payment_method") or PAYMENT_METHOD_CASH
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}")
    due_date = _due_date(sale_data.get("due_date"))
    notes = optional_text(sale_data.get("notes"), "notes", max_length=2000)

    def _op():
        begin_immediate()
        if offline_id:
            existing = db.session.query(Sale).filter_by(offline_id=offline_id).first()
            if existing:
                current_app.logger.info("Sale for offline_id %s already exists (%s)", offline_id, existing.id)
                db.session.rollback()
                return existing

        normalized = _normalize_items(items)

        # Check stock for the whole sale before writing anything
        requested = defaultdict(int)
        for item in normalized:
            requested[item["color_id"]] += item["quantity"]
        colors = {}
        for color_id in sorted(requested):
            color = lock_for_update(db.session.query(Color).filter_by(id=color_id)).first()
            if color.stock_quantity < requested[color_id]:
                raise InsufficientStock(
                    f"Insufficient stock for color {color.color_code}: "
                    f"requested {requested[color_id]}, available {color.stock_quantity}",
                    details={
                        "color_id": color_id,
                        "requested": requested[color_id],
                        "available": color.stock_quantity,
                    },
                )
            colors[color_id] = color

        total = sum(i["quantity"] * i["rate_cents"] for i in normalized)
        if amount_paid > total:
            raise OutstandingExceeded(
                "Initial payment exceeds sale total",
                details={"total_cents": total, "amount_paid_cents": amount_paid},
            )

        sale = Sale(
            customer_name=customer_name,
            customer_phone=customer_phone,
            total_cents=total,
            amount_paid_cents=amount_paid,
            payment_status=derive_payment_status(total, amount_paid),
            is_manual_balance=False,
            due_date=due_date,
            notes=notes,
            offline_id=offline_id,
        )
        db.session.add(sale)
        db.session.flush()

        for item in normalized:
            db.session.add(SaleItem(
                sale_id=sale.id,
                color_id=item["color_id"],
                quantity=item["quantity"],
                rate_cents=item["rate_cents"],
                subtotal_cents=item["quantity"] * item["rate_cents"],
                quantity_returned=0,
            ))
            stock_service.apply_stock_out_locked(
                colors[item["color_id"]],
                item["quantity"],
                stock_service.MOVEMENT_SALE,
                reference_id=sale.id,
                reference_type="sale",
                notes=f"Sale to {customer_name}",
            )

        if amount_paid > 0:
            db.session.add(PaymentHistory(
                sale_id=sale.id,
                customer_phone=customer_phone,
                amount_cents=amount_paid,
                previous_balance_cents=total,
                new_balance_cents=outstanding_cents(total, amount_paid),
                payment_method=payment_method,
                notes="Paid at sale",
            ))

        refresh_customer_account_locked(customer_phone, customer_name)
        db.session.commit()
        return sale

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # Lost a race on the offline_id unique constraint; the winner's sale stands
        db.session.rollback()
        if offline_id:
            existing = db.session.query(Sale).filter_by(offline_id=offline_id).first()
            if existing:
                return existing
        raise


def create_manual_balance(
    customer_name: str,
    customer_phone: str,
    total_cents: int,
    due_date: str | None = None,
    notes: str | None = None,
) -> Sale:
    """Record a balance owed that is not tied to inventory (no items, no stock moves)."""
    customer_name = require_text(customer_name, "customer_name", max_length=120)
    customer_phone = require_text(customer_phone, "customer_phone", max_length=32)
    total_cents = require_amount_cents(total_cents, "total_cents")
    due_date = _due_date(due_date)

    def _op():
        sale = Sale(
            customer_name=customer_name,
            customer_phone=customer_phone,
            total_cents=total_cents,
            amount_paid_cents=0,
            payment_status=PAYMENT_STATUS_UNPAID,
            is_manual_balance=True,
            due_date=due_date,
            notes=optional_text(notes, "notes", max_length=2000) or "Manual balance",
        )
        db.session.add(sale)
        db.session.flush()
        refresh_customer_account_locked(customer_phone, customer_name)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def update_due_date(sale_id: str, due_date: str | None, notes: str | None = None) -> Sale:
    due_date = _due_date(due_date)

    def _op():
        sale = _get_sale_locked(sale_id)
        sale.due_date = due_date
        if notes is not None:
            sale.notes = optional_text(notes, "notes", max_length=2000)
        db.session.commit()
        return sale

    return run_with_retry(_op)


# =============================================================================
# ITEM EDITING
# =============================================================================

def add_sale_item(sale_id: str, color_id: str, quantity: int, rate_cents: int | None = None) -> SaleItem:
    def _op():
        begin_immediate()
        sale = _get_sale_locked(sale_id)
        _require_editable(sale)
        item_data = _normalize_items([{"color_id": color_id, "quantity": quantity, "rate_cents": rate_cents}])[0]

        color = lock_for_update(db.session.query(Color).filter_by(id=color_id)).first()
        if color.stock_quantity < item_data["quantity"]:
            raise InsufficientStock(
                f"Insufficient stock for color {color.color_code}",
                details={"color_id": color_id, "requested": item_data["quantity"], "available": color.stock_quantity},
            )

        item = SaleItem(
            sale_id=sale.id,
            color_id=color_id,
            quantity=item_data["quantity"],
            rate_cents=item_data["rate_cents"],
            subtotal_cents=item_data["quantity"] * item_data["rate_cents"],
            quantity_returned=0,
        )
        db.session.add(item)
        stock_service.apply_stock_out_locked(
            color,
            item.quantity,
            stock_service.MOVEMENT_SALE,
            reference_id=sale.id,
            reference_type="sale",
            notes="Item added to sale",
        )
        db.session.flush()
        recompute_sale_total(sale)
        refresh_customer_account_locked(sale.customer_phone)
        db.session.commit()
        return item

    return run_with_retry(_op)


def edit_sale_item(item_id: str, quantity: int | None = None, rate_cents: int | None = None) -> SaleItem:
    """
    Change quantity and/or rate of an item. The stock difference is booked
    as a sale stock-out (more) or an adjustment stock-in (less).
    """
    if quantity is not None:
        quantity = require_positive_int(quantity, "quantity")
    if rate_cents is not None:
        rate_cents = require_amount_cents(rate_cents, "rate_cents", allow_zero=True)

    def _op():
        begin_immediate()
        item = db.session.get(SaleItem, item_id)
        if not item:
            raise NotFoundError(f"Sale item {item_id} not found")
        sale = _get_sale_locked(item.sale_id)
        _require_editable(sale)

        if quantity is not None and quantity != item.quantity:
            if quantity < item.quantity_returned:
                raise InvariantViolation(
                    "Quantity cannot go below the quantity already returned",
                    details={"quantity": quantity, "quantity_returned": item.quantity_returned},
                )
            color = lock_for_update(db.session.query(Color).filter_by(id=item.color_id)).first()
            diff = quantity - item.quantity
            if diff > 0:
                if color.stock_quantity < diff:
                    raise InsufficientStock(
                        f"Insufficient stock for color {color.color_code}",
                        details={"color_id": color.id, "requested": diff, "available": color.stock_quantity},
                    )
                stock_service.apply_stock_out_locked(
                    color,
                    diff,
                    stock_service.MOVEMENT_SALE,
                    reference_id=sale.id,
                    reference_type="sale",
                    notes="Sale item quantity increased",
                )
            else:
                stock_service.apply_stock_in_locked(
                    color,
                    -diff,
                    entry_type=stock_service.STOCK_IN_TYPE_ADJUSTMENT,
                    notes="Sale item quantity reduced",
                    sale_id=sale.id,
                    customer_name=sale.customer_name,
                    customer_phone=sale.customer_phone,
                )
            item.quantity = quantity

        if rate_cents is not None:
            item.rate_cents = rate_cents
        item.subtotal_cents = item.quantity * item.rate_cents

        db.session.flush()
        recompute_sale_total(sale)
        refresh_customer_account_locked(sale.customer_phone)
        db.session.commit()
        return item

    return run_with_retry(_op)


def delete_sale_item(item_id: str) -> Sale:
    """Remove an item and put its stock back."""
    def _op():
        begin_immediate()
        item = db.session.get(SaleItem, item_id)
        if not item:
            raise NotFoundError(f"Sale item {item_id} not found")
        sale = _get_sale_locked(item.sale_id)
        _require_editable(sale)
        if item.quantity_returned > 0:
            raise InvariantViolation("Items with recorded returns cannot be deleted")

        color = lock_for_update(db.session.query(Color).filter_by(id=item.color_id)).first()
        stock_service.apply_stock_in_locked(
            color,
            item.quantity,
            entry_type=stock_service.STOCK_IN_TYPE_ADJUSTMENT,
            notes="Sale item removed",
            sale_id=sale.id,
            customer_name=sale.customer_name,
            customer_phone=sale.customer_phone,
        )
        db.session.delete(item)
        db.session.flush()
        recompute_sale_total(sale)
        refresh_customer_account_locked(sale.customer_phone)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def delete_sale(sale_id: str) -> dict:
    """
    Explicit admin delete: restore stock for un-returned quantities, drop
    items and payments, detach returns (kept for audit), delete the sale.
    """
    def _op():
        begin_immediate()
        sale = _get_sale_locked(sale_id)
        phone = sale.customer_phone
        items = db.session.query(SaleItem).filter_by(sale_id=sale.id).all()

        restored = 0
        for item in items:
            remaining = item.quantity - item.quantity_returned
            if remaining > 0:
                color = lock_for_update(db.session.query(Color).filter_by(id=item.color_id)).first()
                stock_service.apply_stock_in_locked(
                    color,
                    remaining,
                    entry_type=stock_service.STOCK_IN_TYPE_ADJUSTMENT,
                    notes="Sale deleted",
                    sale_id=sale.id,
                    customer_name=sale.customer_name,
                    customer_phone=sale.customer_phone,
                )
                restored += remaining

        item_ids = [i.id for i in items]
        if item_ids:
            db.session.query(ReturnItem).filter(ReturnItem.sale_item_id.in_(item_ids)).update(
                {ReturnItem.sale_item_id: None}, synchronize_session=False
            )
        db.session.query(Return).filter_by(sale_id=sale.id).update(
            {Return.sale_id: None}, synchronize_session=False
        )
        payments_deleted = db.session.query(PaymentHistory).filter_by(sale_id=sale.id).delete()
        for item in items:
            db.session.delete(item)
        db.session.delete(sale)
        db.session.flush()

        refresh_customer_account_locked(phone)
        db.session.commit()
        return {
            "deleted_sale_id": sale_id,
            "items_deleted": len(items),
            "payments_deleted": payments_deleted,
            "stock_restored": restored,
        }

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: str) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def get_sale_by_offline_id(offline_id: str) -> Sale | None:
    return db.session.query(Sale).filter_by(offline_id=offline_id).first()


def list_unpaid_sales() -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter(Sale.payment_status.in_([PAYMENT_STATUS_UNPAID, PAYMENT_STATUS_PARTIAL]))
        .order_by(Sale.created_at.asc())
        .all()
    )


def list_sales_by_customer(customer_phone: str) -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter_by(customer_phone=customer_phone)
        .order_by(Sale.created_at.desc())
        .all()
    )
