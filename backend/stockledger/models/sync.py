from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from stockledger.time_utils import to_utc_z, utcnow


class SyncConnection(db.Model):
    """
    A remote ledger this store mirrors to, with one watermark per direction.

    last_import_at / last_export_at only advance after every table of that
    direction has been applied, so a failed pass is retried from the same point.
    """
    __tablename__ = "sync_connections"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    provider = db.Column(db.String(32), nullable=False, default="sqlalchemy")
    label = db.Column(db.String(120), nullable=True)
    database_url = db.Column(db.Text, nullable=False)
    last_import_at = db.Column(db.DateTime, nullable=True)
    last_export_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        # database_url can carry credentials; never serialize it
        return {
            "id": self.id,
            "provider": self.provider,
            "label": self.label,
            "last_import_at": to_utc_z(self.last_import_at),
            "last_export_at": to_utc_z(self.last_export_at),
            "created_at": to_utc_z(self.created_at),
        }


class SyncJob(db.Model):
    """
    Durable, auditable unit of sync work.

    STATES:
    pending -> running -> success | failed
    pending | running -> cancelled
    failed -> pending (retry, attempts preserved)
    """
    __tablename__ = "sync_jobs"
    __table_args__ = (
        db.Index("ix_sync_jobs_status_created", "status", "created_at"),
        db.Index("ix_sync_jobs_connection_status", "connection_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    job_type = db.Column(db.String(16), nullable=False)  # export, import
    connection_id = db.Column(db.String(36), db.ForeignKey("sync_connections.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    dry_run = db.Column(db.Boolean, nullable=False, default=False)
    initiated_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    connection = db.relationship("SyncConnection")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_type": self.job_type,
            "connection_id": self.connection_id,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "details": self.details,
            "dry_run": self.dry_run,
            "initiated_by": self.initiated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
