"""Shared test fixtures for the HaloSitek payments test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: admin user, an UNPAID architect and its PENDING transaction
- make_notification: builds a correctly signed Midtrans notification
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import requests
from werkzeug.security import generate_password_hash

from halositek import create_app
from halositek.extensions import db as _db
from halositek.models.architect import Architect
from halositek.models.transaction import Transaction
from halositek.models.user import User

SERVER_KEY = "SB-Mid-server-test"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def no_gateway_http():
    """Fail any Midtrans HTTP call a test did not mock explicitly."""
    with patch(
        "halositek.services.midtrans_service.requests.request",
        side_effect=requests.ConnectionError("network disabled in tests"),
    ) as mock_request:
        yield mock_request


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed an admin, an UNPAID architect and its open PENDING transaction.

    Returns a dict of plain IDs plus the created objects.
    """
    now = datetime.now(timezone.utc)

    admin = User(
        email="admin@halositek.local",
        password_hash=generate_password_hash("admin123"),
        full_name="Admin User",
        is_admin=True,
    )
    _db.session.add(admin)

    architect = Architect(
        email="budi@arsitek.id",
        password_hash=generate_password_hash("rahasia123"),
        name="Budi Santoso",
        phone="081234567890",
        status=Architect.UNPAID,
    )
    _db.session.add(architect)
    _db.session.flush()

    transaction = Transaction(
        architect_id=architect.id,
        order_id="ARCH-1704067200000-A5B9C3",
        payment_token="4f9d3c1e-2b7a-4e59-9a8c-0d1e2f3a4b5c",
        gateway_token="snap-token-seed",
        amount=500000,
        status=Transaction.PENDING,
        expired_at=now + timedelta(hours=24),
    )
    _db.session.add(transaction)
    _db.session.commit()

    return {
        "admin": admin,
        "admin_id": admin.id,
        "architect": architect,
        "architect_id": architect.id,
        "transaction": transaction,
        "transaction_id": transaction.id,
        "order_id": transaction.order_id,
        "payment_token": transaction.payment_token,
    }


def _add_transaction(architect_id, order_id, status=Transaction.PENDING,
                    expired_at=None, gateway_token=None, **extra):
    """Insert and commit one more transaction for an architect."""
    transaction = Transaction(
        architect_id=architect_id,
        order_id=order_id,
        payment_token=extra.pop("payment_token", None) or _token_for(order_id),
        gateway_token=gateway_token,
        amount=extra.pop("amount", 500000),
        status=status,
        expired_at=expired_at or datetime.now(timezone.utc) + timedelta(hours=24),
        **extra,
    )
    _db.session.add(transaction)
    _db.session.commit()
    return transaction


def _token_for(order_id):
    return str(uuid.uuid5(uuid.NAMESPACE_URL, order_id))


def sign(order_id, status_code, gross_amount, server_key=SERVER_KEY):
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


@pytest.fixture
def make_notification():
    """Factory for signed Midtrans notification bodies."""

    def _make(order_id, transaction_status, fraud_status=None,
              payment_type="bank_transfer", status_code="200",
              gross_amount="500000.00", signature_key=None):
        body = {
            "order_id": order_id,
            "transaction_status": transaction_status,
            "payment_type": payment_type,
            "status_code": status_code,
            "gross_amount": gross_amount,
            "signature_key": signature_key or sign(order_id, status_code, gross_amount),
        }
        if fraud_status is not None:
            body["fraud_status"] = fraud_status
        return body

    return _make


@pytest.fixture
def add_transaction(db_session):
    """Factory inserting extra transactions (see _add_transaction)."""
    return _add_transaction


@pytest.fixture
def admin_client(client, seed_data):
    """Test client logged in as the seeded admin user."""
    resp = client.post(
        "/api/auth/login",
        json={"email": "admin@halositek.local", "password": "admin123"},
    )
    assert resp.status_code == 200
    return client
