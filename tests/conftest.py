import os
import tempfile
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

# Point the test configuration at a throwaway SQLite file before config is imported
if 'TEST_DATABASE_URL' not in os.environ:
    _db_path = os.path.join(tempfile.gettempdir(), f'orderdesk_test_{os.getpid()}.db')
    os.environ['TEST_DATABASE_URL'] = f'sqlite:///{_db_path}'

from orderdesk import create_app
from orderdesk import database
from orderdesk.models import (
    Category, Product, Customer, Supplier, Promotion, PromotionType, CustomerEligibility
)
from orderdesk.services.sales_service import CreateSaleRequest, LineRequest


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    return app


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema per test; yields the scoped session."""
    database.drop_all()
    database.create_all()
    session = database.get_session()
    yield session
    session.rollback()
    database.db_session.remove()
    database.drop_all()


@pytest.fixture(scope='function')
def category(session):
    category = Category(name='Hardware')
    session.add(category)
    session.commit()
    return category


@pytest.fixture(scope='function')
def product(session, category):
    """Active product: price 100.00, 10 units on hand."""
    product = Product(
        sku=f'SKU-{uuid.uuid4().hex[:8]}',
        name='Cordless Drill',
        category_id=category.id,
        price=Decimal('100.00'),
        cost_price=Decimal('60.00'),
        stock_quantity=10,
        is_active=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(session, category):
    """Second product: price 25.50, 5 units on hand."""
    product = Product(
        sku=f'SKU-{uuid.uuid4().hex[:8]}',
        name='Drill Bit Set',
        category_id=category.id,
        price=Decimal('25.50'),
        stock_quantity=5,
        is_active=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def customer(session):
    """Customer without purchase history."""
    customer = Customer(
        name='Ada Buyer',
        email=f'ada-{uuid.uuid4().hex[:8]}@example.com',
        address='12 Harbour St, Springfield, NY',
        total_purchases=Decimal('0'),
        order_count=0,
        loyalty_points=0
    )
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier(session):
    supplier = Supplier(name='Acme Wholesale', email='orders@acme.test')
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def make_promotion(session):
    """Factory for promotions valid from yesterday until tomorrow."""
    def _make(**overrides):
        now = datetime.now()
        values = dict(
            name=f'Promo {uuid.uuid4().hex[:6]}',
            type=PromotionType.PERCENTAGE,
            discount_value=Decimal('10'),
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=1),
            is_active=True,
            customer_eligibility=CustomerEligibility.ALL,
            auto_apply=True,
            stackable=False,
            usage_count=0,
        )
        values.update(overrides)
        promotion = Promotion(**values)
        session.add(promotion)
        session.commit()
        return promotion
    return _make


def sale_request(*lines, customer_id=None, **kwargs) -> CreateSaleRequest:
    """Build a CreateSaleRequest from (product_id, quantity) pairs."""
    return CreateSaleRequest(
        lines=[LineRequest(product_id=pid, quantity=qty) for pid, qty in lines],
        customer_id=customer_id,
        **kwargs
    )


@pytest.fixture
def build_request():
    return sale_request
