# Overview: Customer account roll-ups and statements derived from sales, payments and returns.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import CustomerAccount, PaymentHistory, Return, Sale
from ..validation import NotFoundError, require_text
from .concurrency import run_with_retry


def refresh_customer_account_locked(customer_phone: str, customer_name: str | None = None) -> CustomerAccount | None:
    """
    Recompute the roll-up for one phone number inside the caller's transaction.

    Returns None (and removes any stale account) when the customer has no sales left.
    """
    account = db.session.query(CustomerAccount).filter_by(customer_phone=customer_phone).first()
    sales = db.session.query(Sale).filter_by(customer_phone=customer_phone).all()
    if not sales:
        if account is not None:
            db.session.delete(account)
        return None

    if account is None:
        account = CustomerAccount(
            customer_phone=customer_phone,
            customer_name=customer_name or sales[-1].customer_name,
        )
        db.session.add(account)
    elif customer_name:
        account.customer_name = customer_name

    account.total_purchased_cents = sum(s.total_cents for s in sales)
    account.total_paid_cents = sum(s.amount_paid_cents for s in sales)
    account.current_balance_cents = sum(s.outstanding_cents for s in sales)

    last_payment = db.session.query(func.max(PaymentHistory.created_at)).filter(
        PaymentHistory.customer_phone == customer_phone
    ).scalar()
    last_sale = max(s.updated_at or s.created_at for s in sales)
    account.last_transaction_at = max(d for d in (last_sale, last_payment) if d is not None)
    return account


def sync_customer_account(customer_phone: str, customer_name: str | None = None) -> CustomerAccount | None:
    customer_phone = require_text(customer_phone, "customer_phone", max_length=32)

    def _op():
        account = refresh_customer_account_locked(customer_phone, customer_name)
        db.session.commit()
        return account

    return run_with_retry(_op)


def get_customer_account(customer_phone: str) -> CustomerAccount:
    account = db.session.query(CustomerAccount).filter_by(customer_phone=customer_phone).first()
    if not account:
        raise NotFoundError(f"No account for customer {customer_phone}")
    return account


def get_customer_statement(customer_phone: str) -> dict:
    """Consolidated view of every bill, payment and return for one customer."""
    sales = (
        db.session.query(Sale)
        .filter_by(customer_phone=customer_phone)
        .order_by(Sale.created_at.asc())
        .all()
    )
    if not sales:
        raise NotFoundError(f"No sales for customer {customer_phone}")
    payments = (
        db.session.query(PaymentHistory)
        .filter_by(customer_phone=customer_phone)
        .order_by(PaymentHistory.created_at.asc())
        .all()
    )
    returns = (
        db.session.query(Return)
        .filter_by(customer_phone=customer_phone)
        .order_by(Return.created_at.asc())
        .all()
    )
    return {
        "customer_phone": customer_phone,
        "customer_name": sales[-1].customer_name,
        "total_purchased_cents": sum(s.total_cents for s in sales),
        "total_paid_cents": sum(s.amount_paid_cents for s in sales),
        "outstanding_cents": sum(s.outstanding_cents for s in sales),
        "sales": [s.to_dict(include_items=True) for s in sales],
        "payments": [p.to_dict() for p in payments],
        "returns": [r.to_dict(include_items=True) for r in returns],
    }
