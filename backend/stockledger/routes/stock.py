# Overview: Flask API routes for the catalog and the stock ledger (stock-in, stock-out, reconcile, history).

"""
Stock Ledger API Routes

WHY: Receiving goods, writing off damage and reconciling counters are back
office actions; each one maps onto a single stock_service operation.
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import catalog_service, stock_service
from ..validation import LedgerError
from .errors import internal_error_response, ledger_error_response


stock_bp = Blueprint("stock", __name__, url_prefix="/api")


# =============================================================================
# CATALOG
# =============================================================================

@stock_bp.post("/products")
def create_product_route():
    try:
        data = request.get_json() or {}
        product = catalog_service.create_product(data.get("company"), data.get("product_name"))
        return jsonify({"product": product.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return internal_error_response()


@stock_bp.post("/products/<product_id>/variants")
def create_variant_route(product_id: str):
    try:
        data = request.get_json() or {}
        variant = catalog_service.create_variant(product_id, data.get("packing_size"), data.get("rate_cents"))
        return jsonify({"variant": variant.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create variant")
        return internal_error_response()


@stock_bp.post("/variants/<variant_id>/colors")
def create_color_route(variant_id: str):
    """
    Create a color under a variant.

    Request body:
    {
        "color_name": "Ivory",
        "color_code": "IV-01",
        "stock_quantity": 50,  (optional opening stock, booked as a stock-in)
        "rate_override_cents": 15500  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        color = catalog_service.create_color(
            variant_id,
            data.get("color_name"),
            data.get("color_code"),
            stock_quantity=data.get("stock_quantity", 0),
            rate_override_cents=data.get("rate_override_cents"),
        )
        return jsonify({"color": color.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create color")
        return internal_error_response()


@stock_bp.get("/colors")
def search_colors_route():
    try:
        limit = int(request.args.get("limit", 50))
        colors = catalog_service.search_colors(request.args.get("q"), limit=limit)
        return jsonify({"colors": [c.to_dict() for c in colors]}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@stock_bp.get("/colors/<color_id>")
def get_color_route(color_id: str):
    try:
        color = catalog_service.get_color(color_id)
        return jsonify({
            "color": color.to_dict(),
            "effective_rate_cents": catalog_service.get_effective_rate_cents(color_id),
        }), 200
    except LedgerError as e:
        return ledger_error_response(e)


# =============================================================================
# STOCK MOVEMENTS
# =============================================================================

@stock_bp.post("/colors/<color_id>/stock-in")
def stock_in_route(color_id: str):
    """
    Add stock to a color.

    Request body:
    {
        "quantity": 10,
        "notes": "Supplier delivery",  (optional)
        "stock_in_date": "15-03-2025"  (optional, DD-MM-YYYY)
    }
    """
    try:
        data = request.get_json() or {}
        color = stock_service.stock_in(
            color_id,
            data.get("quantity"),
            notes=data.get("notes"),
            stock_in_date=data.get("stock_in_date"),
        )
        return jsonify({"color": color.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add stock")
        return internal_error_response()


@stock_bp.post("/colors/<color_id>/stock-out")
def stock_out_route(color_id: str):
    try:
        data = request.get_json() or {}
        entry = stock_service.record_stock_out(
            color_id,
            data.get("quantity"),
            data.get("movement_type") or stock_service.MOVEMENT_ADJUSTMENT,
            reference_id=data.get("reference_id"),
            reference_type=data.get("reference_type"),
            reason=data.get("reason"),
            notes=data.get("notes"),
            stock_out_date=data.get("stock_out_date"),
        )
        return jsonify({"stock_out": entry.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record stock out")
        return internal_error_response()


@stock_bp.get("/colors/<color_id>/history")
def color_history_route(color_id: str):
    try:
        start_date = request.args.get("start_date")
        end_date = request.args.get("end_date")
        return jsonify({
            "stock_in": [
                e.to_dict()
                for e in stock_service.list_stock_in_history(color_id, start_date=start_date, end_date=end_date)
            ],
            "stock_out": [
                e.to_dict()
                for e in stock_service.list_stock_out_history(color_id, start_date=start_date, end_date=end_date)
            ],
            "summary": [
                s.to_dict()
                for s in stock_service.get_movement_summary(color_id, start_date=start_date, end_date=end_date)
            ],
        }), 200
    except LedgerError as e:
        return ledger_error_response(e)


@stock_bp.patch("/stock-in-history/<history_id>")
def update_stock_in_route(history_id: str):
    try:
        data = request.get_json() or {}
        entry = stock_service.update_stock_in_history(
            history_id,
            quantity=data.get("quantity"),
            notes=data.get("notes"),
            stock_in_date=data.get("stock_in_date"),
        )
        return jsonify({"stock_in": entry.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock-in record")
        return internal_error_response()


@stock_bp.delete("/stock-in-history/<history_id>")
def delete_stock_in_route(history_id: str):
    try:
        return jsonify(stock_service.delete_stock_in_history(history_id)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete stock-in record")
        return internal_error_response()


@stock_bp.post("/stock/reconcile")
def reconcile_route():
    """
    Recompute stock from history and correct stored counters.

    Request body (optional): {"color_id": "..."}; without it every color is checked.
    """
    try:
        data = request.get_json(silent=True) or {}
        color_id = data.get("color_id")
        if color_id:
            return jsonify(stock_service.reconcile(color_id)), 200
        return jsonify(stock_service.reconcile_all()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile stock")
        return internal_error_response()
