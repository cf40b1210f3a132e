from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from stockledger.time_utils import to_utc_z, utcnow


class StockInHistory(db.Model):
    """
    Append-only record of stock added to a color.

    TYPES:
    - stock_in: manual receipt (also used for opening stock)
    - return: goods restored by a customer return (sale_id/return_id set)
    - adjustment: correction entered by an operator

    previous_stock/new_stock are snapshots taken in the same transaction that
    moved the color's counter.
    """
    __tablename__ = "stock_in_history"
    __table_args__ = (
        db.Index("ix_stock_in_color_created", "color_id", "created_at"),
        db.Index("ix_stock_in_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    color_id = db.Column(db.String(36), db.ForeignKey("colors.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    stock_in_date = db.Column(db.String(10), nullable=False)  # DD-MM-YYYY
    notes = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(16), nullable=False, default="stock_in")
    sale_id = db.Column(db.String(36), nullable=True, index=True)
    return_id = db.Column(db.String(36), nullable=True, index=True)
    customer_name = db.Column(db.String(120), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    color = db.relationship("Color")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "color_id": self.color_id,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "stock_in_date": self.stock_in_date,
            "notes": self.notes,
            "type": self.type,
            "sale_id": self.sale_id,
            "return_id": self.return_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockOutHistory(db.Model):
    """
    Append-only record of stock removed from a color.

    quantity is what was actually removed (the counter never goes below zero);
    requested_quantity keeps what the caller asked for so a clamp is visible.
    """
    __tablename__ = "stock_out_history"
    __table_args__ = (
        db.Index("ix_stock_out_color_created", "color_id", "created_at"),
        db.Index("ix_stock_out_reference", "reference_type", "reference_id"),
        db.Index("ix_stock_out_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    color_id = db.Column(db.String(36), db.ForeignKey("colors.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    requested_quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(16), nullable=False)  # sale, return, adjustment, damage
    reference_id = db.Column(db.String(36), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    stock_out_date = db.Column(db.String(10), nullable=False)  # DD-MM-YYYY

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    color = db.relationship("Color")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "color_id": self.color_id,
            "quantity": self.quantity,
            "requested_quantity": self.requested_quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "movement_type": self.movement_type,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "reason": self.reason,
            "notes": self.notes,
            "stock_out_date": self.stock_out_date,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovementSummary(db.Model):
    """Per color, per day inward/outward totals with opening and closing stock."""
    __tablename__ = "stock_movement_summary"
    __table_args__ = (
        db.UniqueConstraint("color_id", "summary_date", name="uq_stock_summary_color_date"),
        db.Index("ix_stock_summary_updated_at", "updated_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    color_id = db.Column(db.String(36), db.ForeignKey("colors.id"), nullable=False, index=True)
    summary_date = db.Column(db.String(10), nullable=False)  # DD-MM-YYYY
    opening_stock = db.Column(db.Integer, nullable=False, default=0)
    total_inward = db.Column(db.Integer, nullable=False, default=0)
    total_outward = db.Column(db.Integer, nullable=False, default=0)
    closing_stock = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "color_id": self.color_id,
            "summary_date": self.summary_date,
            "opening_stock": self.opening_stock,
            "total_inward": self.total_inward,
            "total_outward": self.total_outward,
            "closing_stock": self.closing_stock,
            "updated_at": to_utc_z(self.updated_at),
        }
