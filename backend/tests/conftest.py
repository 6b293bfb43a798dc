"""
Pytest fixtures for ledger engine tests.

Provides the test database, a client, and the customers, locations and
prices most tests start from.
"""

from datetime import date

import pytest

from lpgledger import create_app
from lpgledger.extensions import db
from lpgledger.models import Store, Vehicle, MarginCategory, Customer, B2CCustomer, PlantPrice
from lpgledger.services import cylinder_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Most ledger tests exercise balances only; cylinder tests opt in
        'TRACK_CYLINDER_INVENTORY': False,
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
def tracking(app, monkeypatch):
    """Move tracked cylinders when transactions post."""
    monkeypatch.setitem(app.config, 'TRACK_CYLINDER_INVENTORY', True)


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Main Depot", code="MAIN")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def vehicle(db_session):
    vehicle = Vehicle(registration_number="LEA-1234", driver_name="Driver One")
    db_session.add(vehicle)
    db_session.commit()
    return vehicle


@pytest.fixture(scope='function')
def category(db_session):
    """B2B category with a 23.00 per kg margin."""
    category = MarginCategory(
        name="4C & above demand weekly",
        customer_type="B2B",
        margin_per_kg_cents=2300,
        sort_order=3,
        is_active=True,
    )
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def customer(db_session, category):
    customer = Customer(name="Hotel Bright Star", margin_category_id=category.id)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def b2c_customer(db_session):
    customer = B2CCustomer(name="House 12, Street 4")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def plant_price(db_session):
    price = PlantPrice(date=date(2024, 1, 15), plant_price_118kg_cents=275000)
    db_session.add(price)
    db_session.commit()
    return price


@pytest.fixture(scope='function')
def make_cylinders(db_session, store):
    """Register `count` cylinders of a type at the main store."""
    def _make(cylinder_type="STANDARD_15KG", count=1, status="FULL", prefix="CYL"):
        return [
            cylinder_service.register_cylinder(
                f"{prefix}-{cylinder_type[:3]}-{n:04d}",
                cylinder_type,
                store_id=store.id,
                status=status,
            )
            for n in range(1, count + 1)
        ]
    return _make
