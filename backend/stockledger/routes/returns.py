# Overview: Flask API routes for returns (bill returns, item returns and quick returns).

from flask import Blueprint, current_app, jsonify, request

from ..services import return_service
from ..validation import LedgerError
from .errors import internal_error_response, ledger_error_response


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
def create_return_route():
    """
    Record a return.

    Request body:
    {
        "return_data": {"sale_id", "customer_name", "customer_phone",
                        "return_type": "full_bill" | "item", "reason", "refund_method"},
        "items": [{"color_id", "sale_item_id", "quantity", "rate_cents",
                   "stock_restored"}]  (optional for full_bill)
    }

    Returns:
        201: Return with items
        409: Quantity exceeds what is left to return on the sale item
    """
    try:
        data = request.get_json() or {}
        return_doc = return_service.apply_return(data.get("return_data") or {}, data.get("items"))
        return jsonify({"return": return_doc.to_dict(include_items=True)}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return internal_error_response()


@returns_bp.post("/quick")
def quick_return_route():
    """Goods back without a bill; stock is restored unless restore_stock is false."""
    try:
        data = request.get_json() or {}
        return_doc = return_service.create_quick_return(
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            color_id=data.get("color_id"),
            quantity=data.get("quantity"),
            rate_cents=data.get("rate_cents"),
            reason=data.get("reason"),
            restore_stock=data.get("restore_stock", True),
        )
        return jsonify({"return": return_doc.to_dict(include_items=True)}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create quick return")
        return internal_error_response()


@returns_bp.get("")
def list_returns_route():
    returns = return_service.list_returns(
        customer_phone=request.args.get("customer_phone"),
        sale_id=request.args.get("sale_id"),
    )
    return jsonify({"returns": [r.to_dict() for r in returns]}), 200


@returns_bp.get("/<return_id>")
def get_return_route(return_id: str):
    try:
        return jsonify({"return": return_service.get_return(return_id).to_dict(include_items=True)}), 200
    except LedgerError as e:
        return ledger_error_response(e)
