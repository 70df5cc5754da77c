# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The application reads its database URL at import time, so the environment is
pointed at a throwaway SQLite file before anything from ``storefront`` is
imported. Set TEST_DATABASE_URL to run the suite against PostgreSQL instead.
"""

import os
import sys
import tempfile
from decimal import Decimal

import pytest

_TEST_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = os.getenv(
    "TEST_DATABASE_URL",
    f"sqlite:///{os.path.join(_TEST_DB_DIR, 'storefront_test.db')}",
)
os.environ.setdefault("STRUCTURED_LOGS_ENABLED", "false")

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from storefront.database import Base, SessionLocal, engine
from storefront.models import Order, Product, ProductStatus
from storefront.observability.metrics import reset_metrics


@pytest.fixture(scope="session")
def test_db():
    """Create the schema once for the entire test session"""
    Base.metadata.create_all(bind=engine)
    return engine, SessionLocal


@pytest.fixture(autouse=True)
def clean_state(test_db):
    """Every test starts from empty tables and zeroed metrics"""
    reset_metrics()
    yield
    engine, _ = test_db
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())
    reset_metrics()


@pytest.fixture
def db_session(test_db):
    """Create a fresh database session for each test"""
    _, session_factory = test_db
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_product(db_session):
    """Factory for stored products; tiers are given as plain dicts like the JSON column holds them"""

    def _make(title="Test Product", current_price="4.90", pricing_tiers=None, status=ProductStatus.ACTIVE):
        product = Product(
            title=title,
            description="Test description",
            current_price=Decimal(str(current_price)),
            original_price=Decimal(str(current_price)),
            pricing_tiers=[] if pricing_tiers is None else pricing_tiers,
            status=status,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def make_order(db_session):
    """Insert an order directly under a chosen ID, bypassing allocation"""

    def _make(order_id, customer="Existing Customer", phone="90000000"):
        order = Order(
            id=order_id,
            customer=customer,
            phone=phone,
            city="Muscat",
            address="Way 1",
            total=Decimal("0.00"),
        )
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture
def client():
    from storefront.main import app

    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def admin_client(client):
    with client.session_transaction() as sess:
        sess["is_admin"] = True
    return client


@pytest.fixture
def sample_checkout():
    """Abandoned-capture payload as the product page posts it"""
    return {
        "name": "Ahmed",
        "phone": "9123",
        "city": "Muscat",
        "address": "X",
        "quantity": "2",
        "product_id": "",
    }

