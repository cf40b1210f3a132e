"""
Return Processing Service

WHY: Customers bring goods back, either a whole bill or selected items, and
sometimes without a bill at all. A return must restore stock through the
ledger and shrink what the customer owes, without ever returning more than
was sold.

DESIGN PRINCIPLES:
- quantity_returned on a sale item never exceeds quantity; an over-return
  rolls back the whole call
- Restocking is a stock-in of type "return" that points back at the sale and
  return, so reconcile() accounts for it
- full_bill: the sale becomes full_return and amount_paid drops to zero
- item: the sale total shrinks by the returned quantity; any amount paid
  above the new total counts as refunded
- A return without sale_id is a quick return: stock and refund record only

RETURN TYPES:
- full_bill (alias "bill")
- item
"""

from __future__ import annotations

from ..extensions import db
from ..models import Color, Return, ReturnItem, Sale, SaleItem
from ..validation import (
    InvariantViolation,
    NotFoundError,
    ReturnExceedsSold,
    ValidationError,
    optional_text,
    require_amount_cents,
    require_positive_int,
    require_text,
)
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .customer_service import refresh_customer_account_locked
from .sales_service import PAYMENT_STATUS_FULL_RETURN, recompute_sale_total
from . import stock_service


# =============================================================================
# RETURN CONSTANTS
# =============================================================================

RETURN_TYPE_FULL_BILL = "full_bill"
RETURN_TYPE_ITEM = "item"

VALID_RETURN_TYPES = [RETURN_TYPE_FULL_BILL, RETURN_TYPE_ITEM]

RETURN_STATUS_COMPLETED = "completed"

REFUND_METHOD_CASH = "cash"
REFUND_METHOD_CREDIT = "credit"
REFUND_METHOD_BANK_TRANSFER = "bank_transfer"

VALID_REFUND_METHODS = [REFUND_METHOD_CASH, REFUND_METHOD_CREDIT, REFUND_METHOD_BANK_TRANSFER]


def _normalize_return_type(value: str | None) -> str:
    value = (value or RETURN_TYPE_ITEM).strip().lower()
    if value == "bill":
        value = RETURN_TYPE_FULL_BILL
    if value not in VALID_RETURN_TYPES:
        raise ValidationError(f"Invalid return type: {value}. Must be one of {VALID_RETURN_TYPES}")
    return value


def _items_for_full_bill(sale: Sale) -> list[dict]:
    """Every still-returnable quantity of the sale, restocked."""
    return [
        {
            "sale_item_id": item.id,
            "color_id": item.color_id,
            "quantity": item.returnable_quantity,
            "rate_cents": item.rate_cents,
            "stock_restored": True,
        }
        for item in db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
        if item.returnable_quantity > 0
    ]


# =============================================================================
# RETURN CREATION
# =============================================================================

def apply_return(return_data: dict, items: list[dict] | None = None) -> Return:
    """
    Record a return and apply its effects in one transaction.

    return_data: sale_id (optional), customer_name, customer_phone,
    return_type, reason, refund_method, status.
    items: color_id, sale_item_id (optional), quantity, rate_cents,
    stock_restored (default True). A full_bill return with no items returns
    everything still returnable on the sale.

    Raises:
        ValidationError: bad quantity or type, item not on this sale
        NotFoundError: unknown sale, sale item or color
        ReturnExceedsSold: quantity above sold minus already returned
        InvariantViolation: sale already fully returned
    """
    return_type = _normalize_return_type(return_data.get("return_type"))
    refund_method = return_data.get("refund_method") or REFUND_METHOD_CASH
    if refund_method not in VALID_REFUND_METHODS:
        raise ValidationError(f"Invalid refund method: {refund_method}. Must be one of {VALID_REFUND_METHODS}")
    sale_id = return_data.get("sale_id")
    items = list(items or [])

    if return_type == RETURN_TYPE_FULL_BILL and not sale_id:
        raise ValidationError("A full bill return needs a sale_id")
    if not items and return_type != RETURN_TYPE_FULL_BILL:
        raise ValidationError("A return needs at least one item")

    def _op():
        begin_immediate()
        sale = None
        if sale_id:
            sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
            if not sale:
                raise NotFoundError(f"Sale {sale_id} not found")
            if sale.payment_status == PAYMENT_STATUS_FULL_RETURN:
                raise InvariantViolation("Sale has already been fully returned")

        customer_name = require_text(
            return_data.get("customer_name") or (sale.customer_name if sale else None),
            "customer_name", max_length=120,
        )
        customer_phone = require_text(
            return_data.get("customer_phone") or (sale.customer_phone if sale else None),
            "customer_phone", max_length=32,
        )

        return_items = items
        if not return_items and sale is not None:
            return_items = _items_for_full_bill(sale)
            if not return_items:
                raise InvariantViolation("Nothing left to return on this sale")

        return_doc = Return(
            sale_id=sale.id if sale else None,
            customer_name=customer_name,
            customer_phone=customer_phone,
            return_type=return_type,
            reason=optional_text(return_data.get("reason"), "reason", max_length=2000),
            refund_method=refund_method,
            status=return_data.get("status") or RETURN_STATUS_COMPLETED,
            total_refund_cents=0,
        )
        db.session.add(return_doc)
        db.session.flush()

        total_refund = 0
        for index, raw in enumerate(return_items):
            quantity = require_positive_int(raw.get("quantity"), f"items[{index}].quantity")
            sale_item = None
            if raw.get("sale_item_id"):
                sale_item = db.session.get(SaleItem, raw["sale_item_id"])
                if not sale_item:
                    raise NotFoundError(f"Sale item {raw['sale_item_id']} not found")
                if sale is None or sale_item.sale_id != sale.id:
                    raise ValidationError(f"Sale item {sale_item.id} does not belong to this sale")
                if quantity > sale_item.returnable_quantity:
                    raise ReturnExceedsSold(
                        "Return quantity exceeds quantity sold minus already returned",
                        details={
                            "sale_item_id": sale_item.id,
                            "requested": quantity,
                            "returnable": sale_item.returnable_quantity,
                        },
                    )
                sale_item.quantity_returned += quantity

            color_id = raw.get("color_id") or (sale_item.color_id if sale_item else None)
            if not color_id:
                raise ValidationError(f"items[{index}].color_id is required")
            rate = raw.get("rate_cents")
            if rate is None:
                if sale_item is None:
                    raise ValidationError(f"items[{index}].rate_cents is required")
                rate = sale_item.rate_cents
            rate = require_amount_cents(rate, f"items[{index}].rate_cents", allow_zero=True)
            stock_restored = raw.get("stock_restored", True) is not False

            color = lock_for_update(db.session.query(Color).filter_by(id=color_id)).first()
            if not color:
                raise NotFoundError(f"Color {color_id} not found")

            subtotal = quantity * rate
            db.session.add(ReturnItem(
                return_id=return_doc.id,
                color_id=color_id,
                sale_item_id=sale_item.id if sale_item else None,
                quantity=quantity,
                rate_cents=rate,
                subtotal_cents=subtotal,
                stock_restored=stock_restored,
            ))
            total_refund += subtotal

            if stock_restored:
                stock_service.apply_stock_in_locked(
                    color,
                    quantity,
                    entry_type=stock_service.STOCK_IN_TYPE_RETURN,
                    notes=f"Returned by {customer_name}",
                    sale_id=sale.id if sale else None,
                    return_id=return_doc.id,
                    customer_name=customer_name,
                    customer_phone=customer_phone,
                )

        return_doc.total_refund_cents = total_refund
        db.session.flush()

        if sale is not None:
            recompute_sale_total(sale)
            if return_type == RETURN_TYPE_FULL_BILL:
                sale.payment_status = PAYMENT_STATUS_FULL_RETURN
                sale.amount_paid_cents = 0
            db.session.flush()
            refresh_customer_account_locked(sale.customer_phone)

        db.session.commit()
        return return_doc

    return run_with_retry(_op)


def create_quick_return(
    customer_name: str,
    customer_phone: str,
    color_id: str,
    quantity: int,
    rate_cents: int,
    reason: str | None = None,
    restore_stock: bool = True,
) -> Return:
    """Goods back without a bill: one item, stock restored by default."""
    return apply_return(
        {
            "customer_name": customer_name,
            "customer_phone": customer_phone,
            "return_type": RETURN_TYPE_ITEM,
            "reason": reason or "Quick return",
        },
        [
            {
                "color_id": color_id,
                "quantity": quantity,
                "rate_cents": rate_cents,
                "stock_restored": restore_stock,
            }
        ],
    )


# =============================================================================
# RETURN QUERIES
# =============================================================================

def get_return(return_id: str) -> Return:
    return_doc = db.session.get(Return, return_id)
    if not return_doc:
        raise NotFoundError(f"Return {return_id} not found")
    return return_doc


def list_returns(customer_phone: str | None = None, sale_id: str | None = None) -> list[Return]:
    q = db.session.query(Return)
    if customer_phone:
        q = q.filter(Return.customer_phone == customer_phone)
    if sale_id:
        q = q.filter(Return.sale_id == sale_id)
    return q.order_by(Return.created_at.desc()).all()
