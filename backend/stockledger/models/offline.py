from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, utcnow


class PendingSale(db.Model):
    """
    Server-side copy of a sale captured while a terminal was offline.

    LIFECYCLE:
    - pending: accepted, not yet applied to the ledger (or last try was transient)
    - synced: applied exactly once; synced_sale_id points at the Sale
    - failed: rejected by a ledger rule and will not be retried automatically

    Rows are kept after success for audit; only an explicit delete removes them.
    """
    __tablename__ = "pending_sales"
    __table_args__ = (
        db.Index("ix_pending_sales_status_created", "status", "created_at"),
    )

    offline_id = db.Column(db.String(64), primary_key=True)
    schema_version = db.Column(db.Integer, nullable=False, default=1)
    sale_data = db.Column(db.JSON, nullable=False)
    items = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    synced_sale_id = db.Column(db.String(36), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "offline_id": self.offline_id,
            "schema_version": self.schema_version,
            "sale_data": self.sale_data,
            "items": self.items,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "synced_sale_id": self.synced_sale_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
