"""
Pytest fixtures for feedledger backend tests.

Provides the application on in-memory SQLite, a per-test clean database,
and party/product fixtures.
"""

import pytest

from feedledger import create_app
from feedledger.extensions import db
from feedledger.models import Party, Product, PARTY_CUSTOMER, PARTY_WHOLESALE_BUYER
from feedledger.services.context import CallerContext


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_ATTEMPTS': 3,
        'LEDGER_RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def actor():
    return CallerContext(user_id="user-123", role="manager")


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer with a zero balance."""
    party = Party(party_type=PARTY_CUSTOMER, name="Rahim Uddin", phone="01700000001", balance_cents=0)
    db_session.add(party)
    db_session.commit()
    return party


@pytest.fixture(scope='function')
def other_customer(db_session):
    party = Party(party_type=PARTY_CUSTOMER, name="Karim Mia", phone="01700000002", balance_cents=0)
    db_session.add(party)
    db_session.commit()
    return party


@pytest.fixture(scope='function')
def wholesale_buyer(db_session):
    party = Party(
        party_type=PARTY_WHOLESALE_BUYER,
        name="Jamal Traders",
        phone="01800000001",
        business_name="Jamal Poultry Wholesale",
        balance_cents=0,
    )
    db_session.add(party)
    db_session.commit()
    return party


@pytest.fixture(scope='function')
def feed(db_session):
    """Starter feed at 10.00 per bag, 50 bags on hand."""
    product = Product(sku="FEED-STARTER", name="Starter Feed 50kg", price_cents=1000, stock_quantity=50)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def grower_feed(db_session):
    """Grower feed at 12.50 per bag, 5 bags on hand."""
    product = Product(sku="FEED-GROWER", name="Grower Feed 50kg", price_cents=1250, stock_quantity=5)
    db_session.add(product)
    db_session.commit()
    return product
