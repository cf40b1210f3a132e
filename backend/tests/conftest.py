"""
Pytest fixtures for stockledger backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, and a small
catalog (one product, one variant, one color with opening stock).
"""

import pytest

from stockledger import create_app
from stockledger.cache import get_cache
from stockledger.config import TestConfig
from stockledger.extensions import db
from stockledger.services import catalog_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.rollback()
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_cache().clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def variant(db_session):
    """Emulsion 4L at 150.00."""
    product = catalog_service.create_product("Acme Paints", "Emulsion")
    return catalog_service.create_variant(product.id, "4L", 15000)


@pytest.fixture(scope='function')
def color(variant):
    """Ivory with 50 units of opening stock."""
    return catalog_service.create_color(variant.id, "Ivory", "IV-01", stock_quantity=50)


@pytest.fixture(scope='function')
def second_color(variant):
    """Slate with 20 units of opening stock and a rate override of 160.00."""
    return catalog_service.create_color(
        variant.id, "Slate", "SL-02", stock_quantity=20, rate_override_cents=16000,
    )


def sale_payload(color_id, quantity=1, rate_cents=None, amount_paid_cents=0, phone="0300-1111111"):
    """Helper to build create_sale arguments."""
    item = {"color_id": color_id, "quantity": quantity}
    if rate_cents is not None:
        item["rate_cents"] = rate_cents
    sale_data = {
        "customer_name": "Ayesha Khan",
        "customer_phone": phone,
        "amount_paid_cents": amount_paid_cents,
    }
    return sale_data, [item]
