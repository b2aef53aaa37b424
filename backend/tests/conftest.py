"""
Pytest fixtures for stock ledger backend tests.

Provides test database setup, shop/product fixtures, and test client.
"""

from datetime import datetime, timedelta

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Shop, Product, StockMovement, Transaction


# Fixed clock so movement ordering is deterministic
BASE_TIME = datetime(2026, 1, 1, 9, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_RETRY_BACKOFF': 0,
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
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


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
def shop(db_session):
    """Create the default shop."""
    shop = Shop(name="Shop A", code="A")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def other_shop(db_session):
    """Create a second shop (another tenant)."""
    shop = Shop(name="Shop B", code="B")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def make_product(db_session, shop):
    """Factory: create a product in the default shop (or the given one)."""
    def _make(name="Widget", stock_qty=0, price_cents=1000, shop_id=None, sku=None):
        product = Product(
            shop_id=shop_id or shop.id,
            name=name,
            sku=sku,
            price_cents=price_cents,
            stock_qty=stock_qty,
            created_at=BASE_TIME,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def add_movement(db_session):
    """
    Factory: append a movement row directly, bypassing the ledger services.

    minutes is the offset from BASE_TIME used as created_at, so tests control
    chronological order explicitly.
    """
    def _add(product, quantity, *, type="adjustment", minutes=1, stock_before=0, stock_after=0,
             reference_type=None, reference_id=None, reference_line=None):
        movement = StockMovement(
            product_id=product.id,
            shop_id=product.shop_id,
            type=type,
            quantity=quantity,
            stock_before=stock_before,
            stock_after=stock_after,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_line=reference_line,
            created_at=BASE_TIME + timedelta(minutes=minutes),
        )
        db_session.add(movement)
        db_session.commit()
        return movement
    return _add


@pytest.fixture(scope='function')
def add_transaction(db_session, shop):
    """Factory: record a transaction row without emitting stock movements."""
    def _add(items, *, status="completed", minutes=10, shop_id=None):
        transaction = Transaction(
            shop_id=shop_id or shop.id,
            items=items,
            total_amount=sum(i.get("price", 0) * i.get("quantity", 1) for i in items),
            status=status,
            created_at=BASE_TIME + timedelta(minutes=minutes),
        )
        db_session.add(transaction)
        db_session.commit()
        return transaction
    return _add
