# Overview: Health endpoint covering the ledger database, the offline queue and the sync queue.

"""
System health endpoint.

Reports whether the ledger database answers, and how much offline and sync
work is waiting, so an operator can tell a stuck queue from an idle one.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Color, PendingSale, Sale, SyncJob
from stockledger.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        color_count = db.session.query(Color).count()
        sale_count = db.session.query(Sale).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"colors": color_count, "sales": sale_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_queue_health() -> dict:
    """Pending offline sales and failed sync jobs degrade health but do not fail it."""
    try:
        pending_sales = db.session.query(PendingSale).filter_by(status="pending").count()
        failed_sales = db.session.query(PendingSale).filter_by(status="failed").count()
        failed_jobs = db.session.query(SyncJob).filter_by(status="failed").count()
        details = {
            "pending_offline_sales": pending_sales,
            "failed_offline_sales": failed_sales,
            "failed_sync_jobs": failed_jobs,
        }
        status = "degraded" if failed_sales or failed_jobs else "healthy"
        return {"status": status, "details": details}
    except Exception:
        current_app.logger.exception("Queue health check failed")
        return {"status": "unhealthy", "error": "Queue check error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    queue_health = check_queue_health()

    all_checks = [database_health, queue_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "queues": queue_health,
        },
    }, http_status
