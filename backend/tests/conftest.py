"""
Pytest fixtures for kasir backend tests.

Provides the in-memory test database, per-test cleanup, a file-backed app
for multi-threaded tests, and small catalog fixtures.
"""

from datetime import datetime

import pytest

from kasir import create_app
from kasir.extensions import db
from kasir.models import Customer, Product


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BUSINESS_TIMEZONE': 'UTC',
    'LOG_LEVEL': 'DEBUG',
}

# 2026-01-13 10:00 UTC; the business day used throughout the tests
SALE_TIME = datetime(2026, 1, 13, 10, 0, 0)


@pytest.fixture(scope='session')
def app():
    """One in-memory kasir app for the whole test session."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before the test; schema stays."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # drop anything the test left uncommitted
        db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """App on a SQLite file so worker threads get their own connections."""
    app = create_app({**TEST_CONFIG, 'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'kasir.db'}"})
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def make_product(name="Kopi Susu", sku="KOPI-01", price=10000, stock=10, min_stock=5, category="Minuman"):
    product = Product(name=name, sku=sku, price=price, stock=stock, min_stock=min_stock, category=category)
    db.session.add(product)
    db.session.commit()
    return product


def make_customer(name="Jane"):
    customer = Customer(name=name, phone="0812000000")
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture(scope='function')
def product_x(db_session):
    """Product X: price 10000, stock 10."""
    return make_product(name="Product X", sku="X-001", price=10000, stock=10)


@pytest.fixture(scope='function')
def product_y(db_session):
    """Product Y: price 2500, stock 3."""
    return make_product(name="Product Y", sku="Y-001", price=2500, stock=3)


@pytest.fixture(scope='function')
def customer_jane(db_session):
    return make_customer("Jane")
