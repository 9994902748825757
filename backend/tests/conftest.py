"""
Pytest fixtures for RetailPOS backend tests.

Provides an in-memory database per test, a scripted payment gateway, seeded
catalog/staff rows and bearer-token headers.
"""

import os
import tempfile
import threading
from types import SimpleNamespace

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Customer, Product, Supplier, User
from retailpos.services import session_service
from retailpos.services.errors import GatewayUnavailableError
from retailpos.services.gateway import (
    ConfirmationStatus,
    PaymentGateway,
    QRCharge,
    build_khqr_payload,
    confirmation_key_for,
)


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "PAYMENT_GATEWAY": "none",
    "PAYMENT_CALLBACK_SECRET": "",
    "BAKONG_ACCOUNT_ID": "shop@test",
    "MERCHANT_NAME": "Test Shop",
    "MERCHANT_CITY": "Phnom Penh",
}


class FakeGateway(PaymentGateway):
    """
    Scripted gateway: builds real KHQR payloads, confirms only the keys a test
    marks as paid, and can be switched to "unavailable".
    """

    def __init__(self):
        self.confirmed = {}
        self.unavailable = False
        self.check_calls = 0
        self._seq = 0
        self._lock = threading.Lock()

    def confirm(self, key, amount_cents=None, external_ref="bakong-txn-hash"):
        self.confirmed[key] = ConfirmationStatus(
            acknowledged=True, external_ref=external_ref, amount_cents=amount_cents
        )

    def generate_qr(self, amount_cents, merchant, bill_reference):
        if self.unavailable:
            raise GatewayUnavailableError("Unable to connect to payment gateway")
        with self._lock:
            self._seq += 1
            created_at_ms = 1700000000000 + self._seq
        payload = build_khqr_payload(merchant, amount_cents, bill_reference, created_at_ms=created_at_ms)
        return QRCharge(qr_payload=payload, confirmation_key=confirmation_key_for(payload))

    def check_confirmation(self, confirmation_key):
        with self._lock:
            self.check_calls += 1
        if self.unavailable:
            raise GatewayUnavailableError("Unable to connect to payment gateway")
        return self.confirmed.get(confirmation_key, ConfirmationStatus(acknowledged=False))


def seed_rows():
    """Insert the standard fixture rows and return their ids."""
    customer = Customer(name="Sokha Chan", phone="012345678")
    supplier = Supplier(name="Mekong Wholesale")
    cashier = User(username="cashier", role="cashier", is_active=True)
    manager = User(username="manager", role="manager", is_active=True)
    admin = User(username="admin", role="admin", is_active=True)
    rice = Product(name="Rice 5kg", unit_price_cents=650, unit_cost_cents=500, stock_quantity=10, reorder_level=2)
    soap = Product(name="Soap", unit_price_cents=199, unit_cost_cents=120, stock_quantity=5, reorder_level=5)
    db.session.add_all([customer, supplier, cashier, manager, admin, rice, soap])
    db.session.commit()
    return SimpleNamespace(
        customer_id=customer.id,
        supplier_id=supplier.id,
        cashier_id=cashier.id,
        manager_id=manager.id,
        admin_id=admin.id,
        rice_id=rice.id,
        soap_id=soap.id,
    )


@pytest.fixture(scope='function')
def app():
    """Application with a fresh in-memory database."""
    app = create_app(dict(TEST_CONFIG))

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def file_app():
    """
    Application on a temp-file SQLite database for tests that run real threads.

    Each thread opens its own connection, so writers contend for the database
    lock the way separate processes would.
    """
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "retailpos.db")
    app = create_app({
        **TEST_CONFIG,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 15}},
    })
    app.extensions["payment_gateway"] = FakeGateway()

    with app.app_context():
        db.create_all()
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
    tmpdir.cleanup()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def gateway(app):
    """Install a FakeGateway as the app's payment gateway."""
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake


@pytest.fixture(scope='function')
def seed(app):
    return seed_rows()


def stock_of(product_id: int) -> int:
    return db.session.get(Product, product_id, populate_existing=True).stock_quantity


def auth_headers(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def cashier_headers(seed):
    return auth_headers(session_service.issue_token(seed.cashier_id))


@pytest.fixture
def manager_headers(seed):
    return auth_headers(session_service.issue_token(seed.manager_id))
