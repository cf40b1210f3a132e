"""
Server-side offline queue: idempotent enqueue, exactly-once replay and
schema upgrades for payloads written by older terminals.
"""

import pytest
from sqlalchemy.exc import OperationalError

from conftest import sale_payload
from stockledger.extensions import db
from stockledger.models import Color, PendingSale, Sale
from stockledger.services import offline_service, sales_service, stock_service
from stockledger.services.offline_schemas import CURRENT_SCHEMA_VERSION, upgrade_payload
from stockledger.validation import ValidationError


def test_enqueue_is_idempotent(color):
    sale_data, items = sale_payload(color.id, quantity=2)

    entry, created = offline_service.enqueue_pending_sale("offline_1700000000000_abc123xyz", sale_data, items)
    again, created_again = offline_service.enqueue_pending_sale("offline_1700000000000_abc123xyz", sale_data, items)

    assert created is True
    assert created_again is False
    assert again.offline_id == entry.offline_id
    assert db.session.query(PendingSale).count() == 1
    # Enqueue never touches the ledger
    assert db.session.get(Color, color.id).stock_quantity == 50


def test_replay_applies_sale_exactly_once(color):
    sale_data, items = sale_payload(color.id, quantity=2)
    offline_service.enqueue_pending_sale("offline_1_a", sale_data, items)

    first = offline_service.sync_pending(["offline_1_a"])
    second = offline_service.sync_pending(["offline_1_a"])

    assert first[0]["status"] == offline_service.PENDING_STATUS_SYNCED
    assert second[0]["sale_id"] == first[0]["sale_id"]
    assert db.session.query(Sale).count() == 1
    assert db.session.get(Color, color.id).stock_quantity == 48
    assert db.session.get(PendingSale, "offline_1_a").attempts == 1


def test_replay_after_crash_finds_existing_sale(color):
    """The sale landed but the queue entry was never marked; replay must not sell twice."""
    sale_data, items = sale_payload(color.id, quantity=2)
    offline_service.enqueue_pending_sale("offline_2_b", sale_data, items)
    sale = sales_service.create_sale(sale_data, items, offline_id="offline_2_b")

    result = offline_service.sync_pending()

    assert result[0]["sale_id"] == sale.id
    assert db.session.get(Color, color.id).stock_quantity == 48


def test_transient_error_keeps_entry_pending(color, monkeypatch):
    sale_data, items = sale_payload(color.id, quantity=2)
    offline_service.enqueue_pending_sale("offline_3_c", sale_data, items)

    def locked(*args, **kwargs):
        raise OperationalError("INSERT INTO sales", {}, Exception("database is locked"))

    monkeypatch.setattr(sales_service, "create_sale", locked)
    result = offline_service.sync_pending()

    assert result[0]["status"] == offline_service.PENDING_STATUS_PENDING
    assert result[0]["attempts"] == 1
    assert "database is locked" in result[0]["error"]

    monkeypatch.undo()
    result = offline_service.sync_pending()
    assert result[0]["status"] == offline_service.PENDING_STATUS_SYNCED
    assert result[0]["attempts"] == 2


def test_ledger_rejection_marks_entry_failed(color):
    sale_data, items = sale_payload(color.id, quantity=500)
    offline_service.enqueue_pending_sale("offline_4_d", sale_data, items)

    result = offline_service.sync_pending()

    assert result[0]["status"] == offline_service.PENDING_STATUS_FAILED
    assert "Insufficient stock" in result[0]["error"]
    # Failed entries are skipped by the default sweep
    assert offline_service.sync_pending() == []


def test_explicit_ids_retry_failed_entries(color):
    sale_data, items = sale_payload(color.id, quantity=60)
    offline_service.enqueue_pending_sale("offline_5_e", sale_data, items)
    offline_service.sync_pending()

    stock_service.stock_in(color.id, 20)

    result = offline_service.sync_pending(["offline_5_e"])

    assert result[0]["status"] == offline_service.PENDING_STATUS_SYNCED
    assert db.session.get(Color, color.id).stock_quantity == 10


def test_unknown_offline_id_is_reported_missing(db_session):
    result = offline_service.sync_pending(["offline_missing"])
    assert result == [{
        "offline_id": "offline_missing",
        "status": "missing",
        "attempts": 0,
        "sale_id": None,
        "error": "Unknown offline_id",
    }]


def test_v1_payload_is_upgraded_before_replay(color):
    sale_data = {"customerName": "Old Terminal", "customerPhone": "0300-9999999", "amountPaid": "100.50"}
    items = [{"colorId": color.id, "quantity": "2", "rate": "150.00"}]
    offline_service.enqueue_pending_sale("offline_6_f", sale_data, items, schema_version=1)

    result = offline_service.sync_pending()

    sale = sales_service.get_sale(result[0]["sale_id"])
    assert sale.customer_name == "Old Terminal"
    assert sale.total_cents == 30000
    assert sale.amount_paid_cents == 10050
    assert sale.payment_status == "partial"


def test_upgrade_payload_rejects_unknown_versions():
    with pytest.raises(ValidationError):
        upgrade_payload(CURRENT_SCHEMA_VERSION + 1, {}, [])
    with pytest.raises(ValidationError):
        upgrade_payload(0, {}, [])
    with pytest.raises(ValidationError):
        upgrade_payload(1, {"amountPaid": "abc"}, [])


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-inf", "sNaN"])
def test_upgrade_payload_rejects_non_finite_money(amount):
    with pytest.raises(ValidationError):
        upgrade_payload(1, {"amountPaid": amount}, [])
    with pytest.raises(ValidationError):
        upgrade_payload(1, {}, [{"colorId": "c", "quantity": 1, "rate": amount}])


def test_list_and_delete_pending(color):
    sale_data, items = sale_payload(color.id)
    offline_service.enqueue_pending_sale("offline_7_g", sale_data, items)

    assert [p.offline_id for p in offline_service.list_pending_sales("pending")] == ["offline_7_g"]
    with pytest.raises(ValidationError):
        offline_service.list_pending_sales("lost")

    offline_service.delete_pending_sale("offline_7_g")
    assert offline_service.list_pending_sales() == []
