# Overview: Shared mapping from ledger errors to JSON error responses.

from flask import jsonify

from ..validation import InvariantViolation, LedgerError, NotFoundError


def ledger_error_response(exc: LedgerError):
    """ValidationError -> 400, NotFoundError -> 404, InvariantViolation -> 409."""
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, InvariantViolation):
        status = 409
    else:
        status = 400
    body = {"error": str(exc)}
    if exc.details:
        body["details"] = exc.details
    return jsonify(body), status


def internal_error_response():
    return jsonify({"error": "Internal server error"}), 500
