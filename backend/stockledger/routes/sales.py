# Overview: Flask API routes for sales, sale items, payments and customer statements.

"""
Sale Ledger API Routes

WHY: Terminals and the back office create bills, take payments and correct
mistakes over HTTP. Every route is a thin wrapper around sales_service or
payment_service; the services own validation and transactions.

ERRORS:
- 400 ValidationError, 404 NotFoundError, 409 InvariantViolation
  (payment above outstanding, insufficient stock, fully returned sale)
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import customer_service, payment_service, sales_service
from ..validation import LedgerError
from .errors import internal_error_response, ledger_error_response


sales_bp = Blueprint("sales", __name__, url_prefix="/api")


# =============================================================================
# SALES
# =============================================================================

@sales_bp.post("/sales")
def create_sale_route():
    """
    Create a sale.

    Request body:
    {
        "sale_data": {"customer_name", "customer_phone", "amount_paid_cents",
                      "payment_method", "due_date", "notes"},
        "items": [{"color_id", "quantity", "rate_cents" (optional)}],
        "offline_id": "offline_..."  (optional idempotency key)
    }

    Returns:
        201: Sale with items (also for a repeated offline_id)
    """
    try:
        data = request.get_json() or {}
        sale = sales_service.create_sale(
            data.get("sale_data") or {},
            data.get("items") or [],
            offline_id=data.get("offline_id"),
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return internal_error_response()


@sales_bp.post("/sales/manual-balance")
def create_manual_balance_route():
    try:
        data = request.get_json() or {}
        sale = sales_service.create_manual_balance(
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            total_cents=data.get("total_cents"),
            due_date=data.get("due_date"),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create manual balance")
        return internal_error_response()


@sales_bp.get("/sales/<sale_id>")
def get_sale_route(sale_id: str):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "sale": sale.to_dict(include_items=True),
            "payments": [p.to_dict() for p in payment_service.get_payment_history(sale_id=sale_id)],
        }), 200
    except LedgerError as e:
        return ledger_error_response(e)


@sales_bp.get("/sales/unpaid")
def list_unpaid_sales_route():
    sales = sales_service.list_unpaid_sales()
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.patch("/sales/<sale_id>/due-date")
def update_due_date_route(sale_id: str):
    try:
        data = request.get_json() or {}
        sale = sales_service.update_due_date(sale_id, data.get("due_date"), notes=data.get("notes"))
        return jsonify({"sale": sale.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update due date")
        return internal_error_response()


@sales_bp.delete("/sales/<sale_id>")
def delete_sale_route(sale_id: str):
    """Delete a sale; un-returned stock goes back to each color."""
    try:
        result = sales_service.delete_sale(sale_id)
        return jsonify(result), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return internal_error_response()


# =============================================================================
# PAYMENTS
# =============================================================================

@sales_bp.post("/sales/<sale_id>/payment")
def record_payment_route(sale_id: str):
    """
    Record a payment against a sale.

    Request body:
    {
        "amount_cents": 60000,
        "payment_method": "cash" | "card" | "bank_transfer",
        "notes": "..."  (optional)
    }

    Returns:
        201: Payment row and the sale's payment summary
        409: Amount exceeds the outstanding balance
    """
    try:
        data = request.get_json() or {}
        payment = payment_service.record_payment(
            sale_id,
            data.get("amount_cents"),
            payment_method=data.get("payment_method") or "cash",
            notes=data.get("notes"),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(sale_id),
        }), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return internal_error_response()


@sales_bp.patch("/payment-history/<payment_id>")
def update_payment_route(payment_id: str):
    try:
        data = request.get_json() or {}
        payment = payment_service.update_payment_history(
            payment_id,
            amount_cents=data.get("amount_cents"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return internal_error_response()


@sales_bp.delete("/payment-history/<payment_id>")
def delete_payment_route(payment_id: str):
    try:
        sale = payment_service.delete_payment_history(payment_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return internal_error_response()


# =============================================================================
# SALE ITEMS
# =============================================================================

@sales_bp.post("/sales/<sale_id>/items")
def add_sale_item_route(sale_id: str):
    try:
        data = request.get_json() or {}
        item = sales_service.add_sale_item(
            sale_id,
            data.get("color_id"),
            data.get("quantity"),
            rate_cents=data.get("rate_cents"),
        )
        return jsonify({"item": item.to_dict(), "sale": sales_service.get_sale(sale_id).to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add sale item")
        return internal_error_response()


@sales_bp.patch("/sale-items/<item_id>")
def edit_sale_item_route(item_id: str):
    try:
        data = request.get_json() or {}
        item = sales_service.edit_sale_item(
            item_id,
            quantity=data.get("quantity"),
            rate_cents=data.get("rate_cents"),
        )
        return jsonify({"item": item.to_dict(), "sale": sales_service.get_sale(item.sale_id).to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to edit sale item")
        return internal_error_response()


@sales_bp.delete("/sale-items/<item_id>")
def delete_sale_item_route(item_id: str):
    try:
        sale = sales_service.delete_sale_item(item_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale item")
        return internal_error_response()


# =============================================================================
# CUSTOMERS
# =============================================================================

@sales_bp.get("/customers/<customer_phone>/statement")
def customer_statement_route(customer_phone: str):
    try:
        return jsonify(customer_service.get_customer_statement(customer_phone)), 200
    except LedgerError as e:
        return ledger_error_response(e)
