"""
Pytest fixtures for PartsFlow backend tests.

Provides an in-memory database, a fresh schema per test, a test client and
stock item factories.
"""

import pytest

from partsflow import create_app
from partsflow.extensions import db
from partsflow.services import ledger_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_WORKSHOP': 'MAIN',
        'DB_RETRY_ATTEMPTS': 1,
    })

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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory for committed stock items."""
    def _make(part_number="BRK-001", qty=10, **kwargs):
        kwargs.setdefault("part_name", f"Part {part_number}")
        kwargs.setdefault("purchase_price_cents", 1000)
        kwargs.setdefault("selling_price_cents", 1500)
        item = ledger_service.create_stock_item(
            part_number=part_number,
            quantity_on_hand=qty,
            **kwargs,
        )
        db_session.commit()
        return item

    return _make


@pytest.fixture(scope='function')
def brake_pad(make_item):
    return make_item("BRK-001", 10, part_name="Brake Pad Set", tax_rate_bps=1800)


@pytest.fixture(scope='function')
def oil_filter(make_item):
    return make_item("OIL-100", 5, part_name="Oil Filter", purchase_price_cents=300, selling_price_cents=450)
