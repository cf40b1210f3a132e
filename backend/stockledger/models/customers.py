from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from stockledger.time_utils import to_utc_z, utcnow


class CustomerAccount(db.Model):
    """
    Per-customer roll-up of sales and payments, keyed by phone number.

    WHY: Customer balance screens need totals without summing every bill.
    These are denormalized aggregates refreshed by
    customer_service.sync_customer_account() after each sale, payment and
    return; the sales/payment_history rows stay authoritative.
    """
    __tablename__ = "customer_accounts"
    __table_args__ = (
        db.UniqueConstraint("customer_phone", name="uq_customer_accounts_phone"),
        db.Index("ix_customer_accounts_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    customer_phone = db.Column(db.String(32), nullable=False)
    customer_name = db.Column(db.String(120), nullable=False)

    # Denormalized aggregates (cents)
    total_purchased_cents = db.Column(db.Integer, nullable=False, default=0)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    last_transaction_at = db.Column(db.DateTime, nullable=True)
    account_status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_phone": self.customer_phone,
            "customer_name": self.customer_name,
            "total_purchased_cents": self.total_purchased_cents,
            "total_paid_cents": self.total_paid_cents,
            "current_balance_cents": self.current_balance_cents,
            "last_transaction_at": to_utc_z(self.last_transaction_at),
            "account_status": self.account_status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
