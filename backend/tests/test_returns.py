"""
Returns: whole-bill and item returns against a sale, and quick returns.
"""

import pytest

from conftest import sale_payload
from stockledger.extensions import db
from stockledger.models import Color, Return, ReturnItem, SaleItem, StockInHistory, StockOutHistory
from stockledger.services import payment_service, return_service, sales_service, stock_service
from stockledger.validation import InvariantViolation, ReturnExceedsSold, ValidationError


def test_full_bill_return_restores_stock(color):
    sale_data, items = sale_payload(color.id, quantity=5)
    sale = sales_service.create_sale(sale_data, items)

    assert db.session.get(Color, color.id).stock_quantity == 45
    out = db.session.query(StockOutHistory).filter_by(reference_id=sale.id).one()
    assert (out.previous_stock, out.new_stock) == (50, 45)

    return_doc = return_service.apply_return({"sale_id": sale.id, "return_type": "full_bill"})

    assert db.session.get(Color, color.id).stock_quantity == 50
    restock = db.session.query(StockInHistory).filter_by(return_id=return_doc.id).one()
    assert restock.type == stock_service.STOCK_IN_TYPE_RETURN
    assert (restock.previous_stock, restock.new_stock) == (45, 50)
    assert restock.sale_id == sale.id

    item = db.session.query(SaleItem).filter_by(sale_id=sale.id).one()
    assert item.quantity_returned == 5

    sale = sales_service.get_sale(sale.id)
    assert sale.payment_status == sales_service.PAYMENT_STATUS_FULL_RETURN
    assert sale.amount_paid_cents == 0
    assert return_doc.total_refund_cents == 5 * 15000
    assert stock_service.reconcile(color.id)["corrected"] is False


def test_bill_alias_and_second_full_return_rejected(color):
    sale_data, items = sale_payload(color.id, quantity=2)
    sale = sales_service.create_sale(sale_data, items)

    return_service.apply_return({"sale_id": sale.id, "return_type": "bill"})

    with pytest.raises(InvariantViolation):
        return_service.apply_return({"sale_id": sale.id, "return_type": "full_bill"})
    with pytest.raises(InvariantViolation):
        payment_service.record_payment(sale.id, 100)


def test_full_return_status_is_sticky(color):
    """full_return is sticky: later recomputes never derive a different status."""
    sale_data, items = sale_payload(color.id, quantity=2)
    sale = sales_service.create_sale(sale_data, items)
    return_service.apply_return({"sale_id": sale.id, "return_type": "full_bill"})

    sale = sales_service.get_sale(sale.id)
    sales_service.refresh_payment_status(sale)
    assert sale.payment_status == sales_service.PAYMENT_STATUS_FULL_RETURN


def test_item_return_shrinks_total_and_keeps_paid(color):
    sale_data, items = sale_payload(color.id, quantity=4, rate_cents=1000, amount_paid_cents=4000)
    sale = sales_service.create_sale(sale_data, items)
    item = db.session.query(SaleItem).filter_by(sale_id=sale.id).one()

    return_doc = return_service.apply_return(
        {"sale_id": sale.id, "return_type": "item", "reason": "Wrong shade"},
        [{"sale_item_id": item.id, "quantity": 1}],
    )

    sale = sales_service.get_sale(sale.id)
    assert sale.total_cents == 3000
    assert sale.amount_paid_cents == 4000
    assert sale.outstanding_cents == 0
    assert sale.payment_status == "paid"
    history = payment_service.get_payment_history(sale_id=sale.id)
    assert sum(p.amount_cents for p in history) == sale.amount_paid_cents
    assert return_doc.total_refund_cents == 1000
    assert db.session.get(Color, color.id).stock_quantity == 47


def test_over_return_rolls_back_everything(color):
    sale_data, items = sale_payload(color.id, quantity=3)
    sale = sales_service.create_sale(sale_data, items)
    item = db.session.query(SaleItem).filter_by(sale_id=sale.id).one()
    return_service.apply_return({"sale_id": sale.id}, [{"sale_item_id": item.id, "quantity": 2}])

    with pytest.raises(ReturnExceedsSold) as exc:
        return_service.apply_return({"sale_id": sale.id}, [{"sale_item_id": item.id, "quantity": 2}])

    assert exc.value.details["returnable"] == 1
    assert db.session.get(SaleItem, item.id).quantity_returned == 2
    assert db.session.get(Color, color.id).stock_quantity == 49
    assert db.session.query(Return).count() == 1


def test_returned_item_cannot_be_deleted_or_shrunk(color):
    sale_data, items = sale_payload(color.id, quantity=3)
    sale = sales_service.create_sale(sale_data, items)
    item = db.session.query(SaleItem).filter_by(sale_id=sale.id).one()
    return_service.apply_return({"sale_id": sale.id}, [{"sale_item_id": item.id, "quantity": 2}])

    with pytest.raises(InvariantViolation):
        sales_service.delete_sale_item(item.id)
    with pytest.raises(InvariantViolation):
        sales_service.edit_sale_item(item.id, quantity=1)


def test_return_without_stock_restore(color):
    sale_data, items = sale_payload(color.id, quantity=3)
    sale = sales_service.create_sale(sale_data, items)
    item = db.session.query(SaleItem).filter_by(sale_id=sale.id).one()

    return_service.apply_return(
        {"sale_id": sale.id},
        [{"sale_item_id": item.id, "quantity": 1, "stock_restored": False}],
    )

    assert db.session.get(Color, color.id).stock_quantity == 47
    assert db.session.query(ReturnItem).one().stock_restored is False


def test_delete_sale_keeps_returns_for_audit(color):
    sale_data, items = sale_payload(color.id, quantity=3)
    sale = sales_service.create_sale(sale_data, items)
    item = db.session.query(SaleItem).filter_by(sale_id=sale.id).one()
    return_doc = return_service.apply_return({"sale_id": sale.id}, [{"sale_item_id": item.id, "quantity": 1}])

    result = sales_service.delete_sale(sale.id)

    assert result["stock_restored"] == 2
    kept = db.session.get(Return, return_doc.id)
    assert kept is not None
    assert kept.sale_id is None
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_quick_return_without_bill(color):
    return_doc = return_service.create_quick_return("Walk-in", "0333-0000000", color.id, 2, 15000)

    assert return_doc.sale_id is None
    assert return_doc.total_refund_cents == 30000
    assert db.session.get(Color, color.id).stock_quantity == 52
    assert return_service.list_returns(customer_phone="0333-0000000")[0].id == return_doc.id


def test_return_validation(color):
    with pytest.raises(ValidationError):
        return_service.apply_return({"return_type": "full_bill", "customer_name": "A", "customer_phone": "1"})
    with pytest.raises(ValidationError):
        return_service.apply_return({"return_type": "exchange", "customer_name": "A", "customer_phone": "1"}, [{}])
    with pytest.raises(ValidationError):
        return_service.apply_return({"customer_name": "A", "customer_phone": "1"}, [])
    with pytest.raises(ValidationError):
        return_service.create_quick_return("A", "1", color.id, 0, 100)
