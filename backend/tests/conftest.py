"""
Pytest fixtures for SupplyDesk backend tests.

Provides an in-memory database, a test client and small model factories.
"""

from datetime import datetime

import pytest
from supplydesk import create_app
from supplydesk.extensions import db
from supplydesk.models import Category, Product, User, UserRole, UserType
from supplydesk.services.commands import Actor, CreateOrderCommand

NOW = datetime(2026, 3, 14, 12, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def make_user(db_session):
    def _make(email="buyer@example.com", *, user_type=UserType.INDIVIDUAL, role=UserRole.CUSTOMER, validated=True):
        user = User(
            email=email,
            name=email.split("@")[0].title(),
            user_type=user_type.value,
            role=role.value,
            validated=validated,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def category(db_session):
    cat = Category(name="Fasteners", slug="fasteners")
    db_session.add(cat)
    db_session.commit()
    return cat


@pytest.fixture(scope='function')
def make_product(db_session, category):
    counter = {"n": 0}

    def _make(*, stock=10, base_price_cents=10_000, wholesale_price_cents=None, is_active=True, **fields):
        counter["n"] += 1
        product = Product(
            sku=fields.pop("sku", f"SKU-{counter['n']:03d}"),
            name=fields.pop("name", f"Product {counter['n']}"),
            unit=fields.pop("unit", "unit"),
            category_id=fields.pop("category_id", category.id),
            base_price_cents=base_price_cents,
            wholesale_price_cents=wholesale_price_cents,
            stock=stock,
            is_active=is_active,
            **fields,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def customer(make_user):
    return make_user("customer@example.com")


@pytest.fixture(scope='function')
def staff(make_user):
    return make_user("staff@supplydesk.local", user_type=UserType.BUSINESS, role=UserRole.STAFF)


@pytest.fixture(scope='function')
def customer_actor(customer):
    return Actor.from_user(customer)


@pytest.fixture(scope='function')
def staff_actor(staff):
    return Actor.from_user(staff)


def order_payload(*items, shipping_method="SCHEDULED_ROUTE", **extra):
    """items: (product_id, quantity) or (product_id, quantity, discount_percent)."""
    lines = []
    for item in items:
        line = {"product_id": item[0], "quantity": item[1]}
        if len(item) > 2:
            line["discount_percent"] = item[2]
        lines.append(line)
    payload = {
        "items": lines,
        "shipping_method": shipping_method,
        "shipping_address": "Av. Industrial 1234, Bodega 5",
    }
    payload.update(extra)
    return payload


def order_command(*items, **kwargs):
    return CreateOrderCommand.from_payload(order_payload(*items, **kwargs))


def actor_headers(user):
    return {
        "X-User-Id": str(user.id),
        "X-User-Type": user.user_type,
        "X-User-Role": user.role,
        "X-User-Validated": "true" if user.validated else "false",
    }
