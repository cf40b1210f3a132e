# Overview: Service-layer operations for payments; encapsulates balance checks and the payment-history ledger.

"""
Payment Ledger Service

WHY: Customers pay bills in instalments. Each payment is a PaymentHistory row
and moves Sale.amount_paid_cents by exactly its amount.

DESIGN PRINCIPLES:
- The outstanding balance is read and amount_paid updated under the same
  write lock, so two concurrent payments cannot both pass the check
- amount_paid never exceeds total; a payment above outstanding is rejected
- Corrections (edit/delete of a history row) adjust amount_paid by the delta,
  never by re-summing history, so manual balances and paid-at-sale amounts
  stay intact
- previous/new balance on a history row is an audit snapshot only
"""

from __future__ import annotations

from ..extensions import db
from ..models import PaymentHistory, Sale
from ..validation import (
    InvariantViolation,
    NotFoundError,
    OutstandingExceeded,
    ValidationError,
    optional_text,
    require_amount_cents,
)
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .customer_service import refresh_customer_account_locked
from .sales_service import (
    PAYMENT_METHOD_CASH,
    PAYMENT_STATUS_FULL_RETURN,
    VALID_PAYMENT_METHODS,
    outstanding_cents,
    refresh_payment_status,
)


def _validate_method(payment_method: str) -> str:
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}")
    return payment_method


def _get_sale_locked(sale_id: str) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_payment(
    sale_id: str,
    amount_cents: int,
    payment_method: str = PAYMENT_METHOD_CASH,
    notes: str | None = None,
) -> PaymentHistory:
    """
    Apply a payment to a sale.

    Raises:
        ValidationError: amount <= 0 or unknown method
        NotFoundError: unknown sale
        OutstandingExceeded: amount larger than the outstanding balance
        InvariantViolation: sale has been fully returned
    """
    amount_cents = require_amount_cents(amount_cents, "amount_cents")
    _validate_method(payment_method)
    notes = optional_text(notes, "notes", max_length=2000)

    def _op():
        begin_immediate()
        sale = _get_sale_locked(sale_id)
        if sale.payment_status == PAYMENT_STATUS_FULL_RETURN:
            raise InvariantViolation("Cannot record a payment on a fully returned sale")

        previous_balance = outstanding_cents(sale.total_cents, sale.amount_paid_cents)
        if amount_cents > previous_balance:
            raise OutstandingExceeded(
                "Payment amount exceeds outstanding balance",
                details={"amount_cents": amount_cents, "outstanding_cents": previous_balance},
            )

        sale.amount_paid_cents += amount_cents
        refresh_payment_status(sale)

        payment = PaymentHistory(
            sale_id=sale.id,
            customer_phone=sale.customer_phone,
            amount_cents=amount_cents,
            previous_balance_cents=previous_balance,
            new_balance_cents=outstanding_cents(sale.total_cents, sale.amount_paid_cents),
            payment_method=payment_method,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()

        refresh_customer_account_locked(sale.customer_phone)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# PAYMENT CORRECTIONS
# =============================================================================

def update_payment_history(
    payment_id: str,
    amount_cents: int | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
) -> PaymentHistory:
    """Edit a payment row; the sale moves by (new amount - old amount)."""
    if amount_cents is not None:
        amount_cents = require_amount_cents(amount_cents, "amount_cents")
    if payment_method is not None:
        _validate_method(payment_method)

    def _op():
        begin_immediate()
        payment = db.session.get(PaymentHistory, payment_id)
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")
        sale = _get_sale_locked(payment.sale_id)

        if amount_cents is not None and amount_cents != payment.amount_cents:
            delta = amount_cents - payment.amount_cents
            new_paid = max(0, sale.amount_paid_cents + delta)
            # A sale shrunk by item edits can sit above its total; lowering a payment stays allowed
            if delta > 0 and new_paid > sale.total_cents:
                raise OutstandingExceeded(
                    "Edited payment would exceed the sale total",
                    details={"amount_paid_cents": new_paid, "total_cents": sale.total_cents},
                )
            sale.amount_paid_cents = new_paid
            payment.amount_cents = amount_cents
            payment.new_balance_cents = max(0, payment.previous_balance_cents - amount_cents)
            refresh_payment_status(sale)

        if payment_method is not None:
            payment.payment_method = payment_method
        if notes is not None:
            payment.notes = optional_text(notes, "notes", max_length=2000)

        db.session.flush()
        refresh_customer_account_locked(sale.customer_phone)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def delete_payment_history(payment_id: str) -> Sale:
    """Remove a payment row and take its amount back off the sale."""
    def _op():
        begin_immediate()
        payment = db.session.get(PaymentHistory, payment_id)
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")
        sale = _get_sale_locked(payment.sale_id)

        sale.amount_paid_cents = max(0, sale.amount_paid_cents - payment.amount_cents)
        refresh_payment_status(sale)
        db.session.delete(payment)
        db.session.flush()

        refresh_customer_account_locked(sale.customer_phone)
        db.session.commit()
        return sale

    return run_with_retry(_op)


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

def get_payment_history(sale_id: str | None = None, customer_phone: str | None = None) -> list[PaymentHistory]:
    q = db.session.query(PaymentHistory)
    if sale_id:
        q = q.filter(PaymentHistory.sale_id == sale_id)
    if customer_phone:
        q = q.filter(PaymentHistory.customer_phone == customer_phone)
    return q.order_by(PaymentHistory.created_at.asc()).all()


def get_payment_summary(sale_id: str) -> dict:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return {
        "sale_id": sale.id,
        "total_cents": sale.total_cents,
        "amount_paid_cents": sale.amount_paid_cents,
        "outstanding_cents": outstanding_cents(sale.total_cents, sale.amount_paid_cents),
        "payment_status": sale.payment_status,
        "payment_count": db.session.query(PaymentHistory).filter_by(sale_id=sale.id).count(),
    }
