"""Shared fixtures: an in-memory app per test, plus a customer and catalog rows."""

from decimal import Decimal

import pytest

from bizdocs import create_app
from bizdocs.extensions import db
from bizdocs.models import Customer, Product, Service
from config import TestConfig


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def customer(app):
    c = Customer(name="Adaeze Okafor", email="adaeze@example.com", phone="+2348030000000")
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def product(app):
    p = Product(name="Solar panel 300W", price=Decimal("10000.00"), unit="pcs")
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def service(app):
    s = Service(name="Installation", base_price=Decimal("250.00"), unit="job")
    db.session.add(s)
    db.session.commit()
    return s


@pytest.fixture
def scenario_items():
    """Two line items: 2 x 10000 and 1 x 250."""
    return [
        {"description": "Solar panel 300W", "quantity": 2, "unitPrice": 10000},
        {"description": "Installation", "quantity": 1, "unitPrice": 250},
    ]
