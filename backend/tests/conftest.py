"""
Pytest fixtures for LedgerPOS backend tests.

Provides an in-memory application, a per-test clean database and
store/product/stock fixtures.
"""

import pytest

from ledgerpos import create_app
from ledgerpos.extensions import cache_invalidator, db
from ledgerpos.models import Product, Store
from ledgerpos.services import stock_service
from ledgerpos.services.cache_service import NullCacheSink
from ledgerpos.services.concurrency import run_in_transaction


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CACHE_INVALIDATION_ASYNC': False,
        'TX_RETRY_BACKOFF_SECONDS': 0,
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
        cache_invalidator.set_sink(NullCacheSink())

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def store(db_session):
    """Tax-free store (keeps sale totals equal to the sum of lines)."""
    store = Store(name="Main Store", address="1 Main Street", tax_rate_bps=0)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def taxed_store(db_session):
    """Store charging 8.25% tax."""
    store = Store(name="Taxed Store", tax_rate_bps=825)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Second Store", tax_rate_bps=0)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(sku="PROD-010", name="Coffee beans", price_cents=999)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session):
    product = Product(sku="PROD-020", name="Paper filters", price_cents=349)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def set_stock(db_session):
    """Factory: set_stock(store_id, product_id, quantity)."""
    def _set(store_id, product_id, quantity):
        return run_in_transaction(lambda: stock_service.set_quantity(store_id, product_id, quantity))
    return _set


@pytest.fixture(scope='function')
def stocked(store, product, set_stock):
    """Scenario baseline: 5 units of `product` at `store`."""
    set_stock(store.id, product.id, 5)
    return store, product
