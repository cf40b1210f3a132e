from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from stockledger.time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    A customer bill.

    WHY: payment_status is persisted for cheap listing, but it is always
    re-derived from (total_cents, amount_paid_cents) by the services that
    touch either column. full_return is sticky once a whole-bill return lands.

    offline_id is the idempotency key for sales captured on a disconnected
    terminal; replaying the same offline_id returns the existing sale.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("offline_id", name="uq_sales_offline_id"),
        db.Index("ix_sales_customer_phone", "customer_phone"),
        db.Index("ix_sales_status_created", "payment_status", "created_at"),
        db.Index("ix_sales_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    customer_name = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)

    # All amounts in cents
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")  # unpaid, partial, paid, full_return

    is_manual_balance = db.Column(db.Boolean, nullable=False, default=False)
    due_date = db.Column(db.String(10), nullable=True)  # DD-MM-YYYY
    notes = db.Column(db.Text, nullable=True)
    offline_id = db.Column(db.String(64), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def outstanding_cents(self) -> int:
        return max(0, (self.total_cents or 0) - (self.amount_paid_cents or 0))

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "outstanding_cents": self.outstanding_cents,
            "payment_status": self.payment_status,
            "is_manual_balance": self.is_manual_balance,
            "due_date": self.due_date,
            "notes": self.notes,
            "offline_id": self.offline_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Line item on a sale. quantity_returned never exceeds quantity."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity_returned <= quantity", name="ck_sale_items_returned_le_quantity"),
        db.Index("ix_sale_items_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=False, index=True)
    color_id = db.Column(db.String(36), db.ForeignKey("colors.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    rate_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    quantity_returned = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    sale = db.relationship(
        "Sale",
        backref=db.backref("items", lazy=True, order_by="SaleItem.created_at"),
    )
    color = db.relationship("Color")

    @property
    def returnable_quantity(self) -> int:
        return self.quantity - (self.quantity_returned or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "color_id": self.color_id,
            "quantity": self.quantity,
            "rate_cents": self.rate_cents,
            "subtotal_cents": self.subtotal_cents,
            "quantity_returned": self.quantity_returned,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentHistory(db.Model):
    """
    One payment against a sale.

    previous_balance_cents/new_balance_cents are an audit snapshot of the
    outstanding balance around this payment. They are never used to recompute
    amount_paid_cents.
    """
    __tablename__ = "payment_history"
    __table_args__ = (
        db.Index("ix_payment_history_sale_created", "sale_id", "created_at"),
        db.Index("ix_payment_history_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=False, index=True)
    customer_phone = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    previous_balance_cents = db.Column(db.Integer, nullable=False)
    new_balance_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")  # cash, card, bank_transfer
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "customer_phone": self.customer_phone,
            "amount_cents": self.amount_cents,
            "previous_balance_cents": self.previous_balance_cents,
            "new_balance_cents": self.new_balance_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
