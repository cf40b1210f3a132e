"""
Sale and payment ledger: creation, payment status, corrections and customer roll-ups.
"""

import pytest

from conftest import sale_payload
from stockledger.extensions import db
from stockledger.models import (
    Color,
    CustomerAccount,
    PaymentHistory,
    Sale,
    SaleItem,
    StockInHistory,
    StockOutHistory,
)
from stockledger.services import payment_service, sales_service, stock_service
from stockledger.services.sales_service import derive_payment_status
from stockledger.validation import (
    InsufficientStock,
    InvariantViolation,
    NotFoundError,
    OutstandingExceeded,
    ValidationError,
)


@pytest.mark.parametrize("total, paid, expected", [
    (1000, 0, "unpaid"),
    (1000, 1, "partial"),
    (1000, 999, "partial"),
    (1000, 1000, "paid"),
    (0, 0, "paid"),
])
def test_derive_payment_status(total, paid, expected):
    assert derive_payment_status(total, paid) == expected


def test_create_sale_moves_stock_and_totals(color, second_color):
    sale = sales_service.create_sale(
        {"customer_name": "Ayesha Khan", "customer_phone": "0300-1111111"},
        [
            {"color_id": color.id, "quantity": 5},
            {"color_id": second_color.id, "quantity": 2},
        ],
    )

    # Variant rate for Ivory, override for Slate
    assert sale.total_cents == 5 * 15000 + 2 * 16000
    assert sale.payment_status == "unpaid"
    assert db.session.get(Color, color.id).stock_quantity == 45
    assert db.session.get(Color, second_color.id).stock_quantity == 18

    outs = db.session.query(StockOutHistory).filter_by(reference_id=sale.id).all()
    assert sorted(o.quantity for o in outs) == [2, 5]
    assert all(o.movement_type == "sale" for o in outs)


def test_create_sale_with_initial_payment_records_history(color):
    sale_data, items = sale_payload(color.id, quantity=2, rate_cents=500, amount_paid_cents=400)

    sale = sales_service.create_sale(sale_data, items)

    assert sale.payment_status == "partial"
    payment = db.session.query(PaymentHistory).filter_by(sale_id=sale.id).one()
    assert payment.amount_cents == 400
    assert payment.previous_balance_cents == 1000
    assert payment.new_balance_cents == 600


def test_create_sale_rejects_insufficient_stock_without_writing(color):
    sale_data, items = sale_payload(color.id, quantity=51)

    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale(sale_data, items)

    assert exc.value.details["available"] == 50
    assert db.session.query(Sale).count() == 0
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_create_sale_rejects_overpayment(color):
    sale_data, items = sale_payload(color.id, quantity=1, rate_cents=1000, amount_paid_cents=1001)

    with pytest.raises(OutstandingExceeded):
        sales_service.create_sale(sale_data, items)
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_create_sale_validation(color):
    with pytest.raises(ValidationError):
        sales_service.create_sale({"customer_name": "A", "customer_phone": "1"}, [])
    with pytest.raises(ValidationError):
        sales_service.create_sale({"customer_phone": "1"}, [{"color_id": color.id, "quantity": 1}])
    with pytest.raises(NotFoundError):
        sales_service.create_sale({"customer_name": "A", "customer_phone": "1"}, [{"color_id": "nope", "quantity": 1}])
    with pytest.raises(ValidationError):
        sales_service.create_sale(
            {"customer_name": "A", "customer_phone": "1", "due_date": "2025-01-31"},
            [{"color_id": color.id, "quantity": 1}],
        )


def test_create_sale_is_idempotent_by_offline_id(color):
    sale_data, items = sale_payload(color.id, quantity=3)

    first = sales_service.create_sale(sale_data, items, offline_id="offline_1_abc")
    second = sales_service.create_sale(sale_data, items, offline_id="offline_1_abc")

    assert first.id == second.id
    assert db.session.query(Sale).count() == 1
    assert db.session.get(Color, color.id).stock_quantity == 47


def test_payment_scenario_partial_then_paid_then_rejected(color):
    sale_data, items = sale_payload(color.id, quantity=2, rate_cents=500)
    sale = sales_service.create_sale(sale_data, items)
    assert sale.total_cents == 1000

    payment_service.record_payment(sale.id, 400)
    assert sales_service.get_sale(sale.id).payment_status == "partial"

    payment_service.record_payment(sale.id, 600, payment_method="card")
    sale = sales_service.get_sale(sale.id)
    assert sale.payment_status == "paid"
    assert sale.outstanding_cents == 0

    with pytest.raises(OutstandingExceeded):
        payment_service.record_payment(sale.id, 1)
    assert sales_service.get_sale(sale.id).amount_paid_cents == 1000
    assert db.session.query(PaymentHistory).filter_by(sale_id=sale.id).count() == 2


def test_record_payment_validation(color):
    sale_data, items = sale_payload(color.id, quantity=1, rate_cents=500)
    sale = sales_service.create_sale(sale_data, items)

    with pytest.raises(ValidationError):
        payment_service.record_payment(sale.id, 0)
    with pytest.raises(ValidationError):
        payment_service.record_payment(sale.id, 100, payment_method="cheque")
    with pytest.raises(NotFoundError):
        payment_service.record_payment("missing", 100)


def test_update_payment_moves_sale_by_delta(color):
    sale_data, items = sale_payload(color.id, quantity=2, rate_cents=500)
    sale = sales_service.create_sale(sale_data, items)
    payment = payment_service.record_payment(sale.id, 400)

    payment_service.update_payment_history(payment.id, amount_cents=700)
    sale = sales_service.get_sale(sale.id)
    assert sale.amount_paid_cents == 700
    assert sale.payment_status == "partial"

    with pytest.raises(OutstandingExceeded):
        payment_service.update_payment_history(payment.id, amount_cents=1200)
    assert sales_service.get_sale(sale.id).amount_paid_cents == 700


def test_delete_payment_restores_balance(color):
    sale_data, items = sale_payload(color.id, quantity=2, rate_cents=500)
    sale = sales_service.create_sale(sale_data, items)
    payment = payment_service.record_payment(sale.id, 1000)

    sale = payment_service.delete_payment_history(payment.id)

    assert sale.amount_paid_cents == 0
    assert sale.payment_status == "unpaid"


def test_add_and_edit_sale_items(color, second_color):
    sale_data, items = sale_payload(color.id, quantity=2, rate_cents=1000)
    sale = sales_service.create_sale(sale_data, items)

    sales_service.add_sale_item(sale.id, second_color.id, 3)
    assert sales_service.get_sale(sale.id).total_cents == 2000 + 3 * 16000
    assert db.session.get(Color, second_color.id).stock_quantity == 17

    item = db.session.query(SaleItem).filter_by(sale_id=sale.id, color_id=color.id).one()
    sales_service.edit_sale_item(item.id, quantity=5)
    assert db.session.get(Color, color.id).stock_quantity == 45

    sales_service.edit_sale_item(item.id, quantity=1, rate_cents=1200)
    assert db.session.get(Color, color.id).stock_quantity == 49
    adjustment = db.session.query(StockInHistory).filter_by(color_id=color.id, type="adjustment").one()
    assert adjustment.quantity == 4

    assert sales_service.get_sale(sale.id).total_cents == 1200 + 3 * 16000
    assert stock_service.reconcile(color.id)["corrected"] is False
    assert stock_service.reconcile(second_color.id)["corrected"] is False


def test_edit_sale_item_keeps_amount_paid_and_history(color):
    sale_data, items = sale_payload(color.id, quantity=4, rate_cents=1000, amount_paid_cents=4000)
    sale = sales_service.create_sale(sale_data, items)
    item = sale.items[0]

    sales_service.edit_sale_item(item.id, quantity=2)

    sale = sales_service.get_sale(sale.id)
    assert sale.total_cents == 2000
    assert sale.amount_paid_cents == 4000
    assert sale.outstanding_cents == 0
    assert sale.payment_status == "paid"
    history = payment_service.get_payment_history(sale_id=sale.id)
    assert sum(p.amount_cents for p in history) == sale.amount_paid_cents

    # Correcting the over-payment down is still allowed
    payment_service.update_payment_history(history[0].id, amount_cents=2000)
    sale = sales_service.get_sale(sale.id)
    assert sale.amount_paid_cents == 2000
    assert sale.payment_status == "paid"


def test_delete_sale_item_restores_stock(color, second_color):
    sale = sales_service.create_sale(
        {"customer_name": "Ayesha Khan", "customer_phone": "0300-1111111"},
        [{"color_id": color.id, "quantity": 5}, {"color_id": second_color.id, "quantity": 2}],
    )
    item = next(i for i in sale.items if i.color_id == color.id)

    sale = sales_service.delete_sale_item(item.id)

    assert sale.total_cents == 2 * 16000
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_delete_sale_restores_stock_and_payments(color):
    sale_data, items = sale_payload(color.id, quantity=5, rate_cents=1000, amount_paid_cents=2000)
    sale = sales_service.create_sale(sale_data, items)

    result = sales_service.delete_sale(sale.id)

    assert result["stock_restored"] == 5
    assert result["payments_deleted"] == 1
    assert db.session.get(Sale, sale.id) is None
    assert db.session.get(Color, color.id).stock_quantity == 50
    assert db.session.query(CustomerAccount).count() == 0
    assert stock_service.reconcile(color.id)["corrected"] is False


def test_manual_balance_has_no_items(db_session):
    sale = sales_service.create_manual_balance("Bilal", "0311-2222222", 25000, due_date="31-12-2025")

    assert sale.is_manual_balance is True
    assert sale.total_cents == 25000
    assert sale.items == []
    with pytest.raises(InvariantViolation):
        sales_service.add_sale_item(sale.id, "any", 1)

    payment_service.record_payment(sale.id, 25000)
    assert sales_service.get_sale(sale.id).payment_status == "paid"


def test_customer_account_rolls_up_sales(color):
    sale_data, items = sale_payload(color.id, quantity=1, rate_cents=1000, amount_paid_cents=300)
    sales_service.create_sale(sale_data, items)
    sale_data, items = sale_payload(color.id, quantity=2, rate_cents=1000)
    second = sales_service.create_sale(sale_data, items)
    payment_service.record_payment(second.id, 500)

    account = db.session.query(CustomerAccount).filter_by(customer_phone="0300-1111111").one()
    assert account.total_purchased_cents == 3000
    assert account.total_paid_cents == 800
    assert account.current_balance_cents == 2200

    unpaid = sales_service.list_unpaid_sales()
    assert len(unpaid) == 2
