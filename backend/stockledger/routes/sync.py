# Overview: Flask API routes for sync connections and the sync job queue.

from flask import Blueprint, current_app, jsonify, request

from ..services import sync_job_service
from ..services.delta_sync_service import SyncError
from ..time_utils import to_utc_z
from ..validation import LedgerError
from .errors import internal_error_response, ledger_error_response


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


# =============================================================================
# CONNECTIONS
# =============================================================================

@sync_bp.post("/connections")
def create_connection_route():
    try:
        data = request.get_json() or {}
        connection = sync_job_service.create_connection(
            data.get("database_url"),
            label=data.get("label"),
        )
        return jsonify({"connection": connection.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sync connection")
        return internal_error_response()


@sync_bp.get("/connections")
def list_connections_route():
    return jsonify({"connections": [c.to_dict() for c in sync_job_service.list_connections()]}), 200


# =============================================================================
# JOBS
# =============================================================================

@sync_bp.post("/jobs")
def enqueue_job_route():
    """
    Queue a sync job.

    Request body:
    {
        "job_type": "import" | "export",
        "connection_id": "...",
        "dry_run": false,  (optional)
        "process": false   (optional; run queued jobs before responding)
    }
    """
    try:
        data = request.get_json() or {}
        job = sync_job_service.enqueue_job(
            data.get("job_type"),
            data.get("connection_id"),
            dry_run=bool(data.get("dry_run", False)),
            initiated_by=data.get("initiated_by") or "api",
        )
        if data.get("process"):
            sync_job_service.process_pending_jobs()
            job = sync_job_service.get_job(job.id)
        return jsonify({"job": job.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except SyncError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to enqueue sync job")
        return internal_error_response()


@sync_bp.get("/jobs")
def list_jobs_route():
    jobs = sync_job_service.list_jobs(
        status=request.args.get("status"),
        connection_id=request.args.get("connection_id"),
    )
    return jsonify({"jobs": [j.to_dict() for j in jobs]}), 200


@sync_bp.get("/jobs/<job_id>")
def get_job_route(job_id: str):
    try:
        return jsonify({"job": sync_job_service.get_job(job_id).to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@sync_bp.post("/jobs/<job_id>/cancel")
def cancel_job_route(job_id: str):
    try:
        return jsonify({"job": sync_job_service.cancel_job(job_id).to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sync job")
        return internal_error_response()


@sync_bp.post("/jobs/<job_id>/retry")
def retry_job_route(job_id: str):
    try:
        return jsonify({"job": sync_job_service.retry_job(job_id).to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to retry sync job")
        return internal_error_response()


@sync_bp.post("/jobs/cleanup")
def cleanup_jobs_route():
    """Delete finished jobs older than days_old (default SYNC_JOB_RETENTION_DAYS)."""
    try:
        data = request.get_json(silent=True) or {}
        deleted = sync_job_service.cleanup_old_jobs(data.get("days_old"))
        return jsonify({"deleted": deleted}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clean up sync jobs")
        return internal_error_response()


@sync_bp.get("/status")
def sync_status_route():
    scheduler = current_app.extensions.get("stockledger_sync_scheduler")
    if scheduler is None:
        return jsonify({"auto_sync": False}), 200
    return jsonify({
        "auto_sync": True,
        "running": scheduler.running,
        "passes": scheduler.passes,
        "last_sync_at": to_utc_z(scheduler.last_sync_at),
        "last_error": scheduler.last_error,
    }), 200
