"""
Pytest fixtures for stockledger backend tests.

Provides test database setup, catalog fixtures, and test client.
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.services import products_service, sales_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
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
def make_product(db_session):
    """Factory: create a product through the catalog service."""
    counter = {"n": 0}

    def _make(name=None, stock=10, cost_cents=500, selling_cents=800, **extra):
        counter["n"] += 1
        patch = {
            "name": name or f"Product {counter['n']}",
            "stock_quantity": stock,
            "cost_price_cents": cost_cents,
            "selling_price_cents": selling_cents,
        }
        patch.update(extra)
        return products_service.create_product(patch=patch)

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Stock 10, cost 5.00, selling 8.00."""
    return make_product(name="Widget", stock=10, cost_cents=500, selling_cents=800)


@pytest.fixture(scope='function')
def sell():
    """Helper: record a sale of [(product_id, quantity), ...] at selling price."""
    counter = {"n": 0}

    def _sell(lines, receipt_number=None, **header):
        counter["n"] += 1
        header.setdefault("receipt_number", receipt_number or f"R-{counter['n']:04d}")
        items = [{"product_id": pid, "quantity": qty} for pid, qty in lines]
        return sales_service.create_sale(header, items)

    return _sell
