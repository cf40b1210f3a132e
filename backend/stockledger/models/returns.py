from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from stockledger.time_utils import to_utc_z, utcnow


class Return(db.Model):
    """
    Customer return document.

    RETURN TYPES:
    - full_bill: the whole sale comes back; the sale becomes full_return
    - item: selected items come back; the sale total shrinks accordingly

    sale_id is empty for a quick return (goods back without a bill).
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_customer_phone", "customer_phone"),
        db.Index("ix_returns_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)
    return_type = db.Column(db.String(16), nullable=False)
    total_refund_cents = db.Column(db.Integer, nullable=False, default=0)
    reason = db.Column(db.Text, nullable=True)
    refund_method = db.Column(db.String(16), nullable=False, default="cash")  # cash, credit, bank_transfer
    status = db.Column(db.String(16), nullable=False, default="completed")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    sale = db.relationship("Sale")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "return_type": self.return_type,
            "total_refund_cents": self.total_refund_cents,
            "reason": self.reason,
            "refund_method": self.refund_method,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = (
        db.Index("ix_return_items_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    return_id = db.Column(db.String(36), db.ForeignKey("returns.id"), nullable=False, index=True)
    color_id = db.Column(db.String(36), db.ForeignKey("colors.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.String(36), db.ForeignKey("sale_items.id"), nullable=True, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    rate_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    stock_restored = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    return_doc = db.relationship("Return", backref=db.backref("items", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "color_id": self.color_id,
            "sale_item_id": self.sale_item_id,
            "quantity": self.quantity,
            "rate_cents": self.rate_cents,
            "subtotal_cents": self.subtotal_cents,
            "stock_restored": self.stock_restored,
            "created_at": to_utc_z(self.created_at),
        }
