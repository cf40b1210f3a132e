# Overview: Flask API routes terminals use to upload and replay sales queued while offline.

"""
POS Offline Queue API Routes

WHY: A terminal that sold while offline uploads each queued sale, then asks
for a replay. Uploads and replays are both idempotent by offline_id, so a
terminal can safely repeat either after a timeout.
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import offline_service
from ..services.offline_schemas import CURRENT_SCHEMA_VERSION
from ..validation import LedgerError
from .errors import internal_error_response, ledger_error_response


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


@pos_bp.post("/pending")
def upload_pending_route():
    """
    Store one queued sale.

    Request body:
    {
        "offline_id": "offline_1718000000000_k3j9x0a1b",
        "schema_version": 2,
        "sale_data": {...},
        "items": [...]
    }

    Returns:
        201: Newly stored
        200: Already known (entry returned unchanged)
    """
    try:
        data = request.get_json() or {}
        entry, created = offline_service.enqueue_pending_sale(
            data.get("offline_id"),
            data.get("sale_data") or {},
            data.get("items") or [],
            schema_version=data.get("schema_version", CURRENT_SCHEMA_VERSION),
        )
        return jsonify({"pending_sale": entry.to_dict(), "created": created}), 201 if created else 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to store pending sale")
        return internal_error_response()


@pos_bp.post("/sync-pending")
def sync_pending_route():
    """
    Replay queued sales.

    Request body: {"offline_ids": [...]} (offlineIds is accepted too).
    Without ids every pending entry is replayed.
    """
    try:
        data = request.get_json(silent=True) or {}
        offline_ids = data.get("offline_ids", data.get("offlineIds"))
        results = offline_service.sync_pending(offline_ids)
        return jsonify({"results": results}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to replay pending sales")
        return internal_error_response()


@pos_bp.get("/pending")
def list_pending_route():
    try:
        entries = offline_service.list_pending_sales(request.args.get("status"))
        return jsonify({"pending_sales": [e.to_dict() for e in entries]}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@pos_bp.delete("/pending/<offline_id>")
def delete_pending_route(offline_id: str):
    try:
        offline_service.delete_pending_sale(offline_id)
        return jsonify({"deleted": offline_id}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete pending sale")
        return internal_error_response()
