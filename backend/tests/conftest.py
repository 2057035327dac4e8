"""
Pytest fixtures for StockZen backend tests.

Provides an in-memory application, per-test table cleanup, two tenants with
members, bearer tokens, and product factories. The rate limiter runs on a
fake clock and notifications are captured instead of delivered.
"""

import uuid

import pytest

from stockzen import create_app
from stockzen.extensions import db
from stockzen.models.tenancy import ROLE_ADMIN, ROLE_MANAGER, ROLE_OPERATOR
from stockzen.services import products_service, session_service, tenant_service
from stockzen.services.rate_limit_service import SlidingWindowRateLimiter


class FakeClock:
    """Monotonic stand-in the tests can move forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingDispatcher:
    """Captures webhook payloads instead of posting them."""

    webhook_url = "https://hooks.test/critical-alert"

    def __init__(self):
        self.payloads = []

    def enqueue(self, payload: dict) -> None:
        self.payloads.append(payload)

    def reset(self) -> None:
        self.payloads.clear()


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "APP_BASE_URL": "https://app.stockzen.test",
    "LOG_LEVEL": "INFO",
}


@pytest.fixture(scope="session")
def rate_clock():
    return FakeClock()


@pytest.fixture(scope="session")
def app(rate_clock):
    """Create application for testing."""
    limiter = SlidingWindowRateLimiter(limit=30, window_seconds=60, clock=rate_clock)
    app = create_app(TEST_CONFIG, rate_limiter=limiter, notification_dispatcher=RecordingDispatcher())

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope="function")
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope="function")
def notifications(app):
    return app.extensions["stockzen.notifications"]


@pytest.fixture(scope="function")
def rate_limiter(app):
    return app.extensions["stockzen.sync_rate_limiter"]


@pytest.fixture(scope="function")
def db_session(app, notifications, rate_limiter):
    """Fresh database, limiter and notification log for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        notifications.reset()
        rate_limiter.reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope="function")
def tenant_a(db_session):
    """Tenant A with the stock defaults (critical 50, attention 100)."""
    return tenant_service.create_tenant("Acme Hardware")


@pytest.fixture(scope="function")
def tenant_b(db_session):
    return tenant_service.create_tenant("Beta Supplies")


@pytest.fixture(scope="function")
def admin_a(tenant_a):
    return tenant_service.add_member(tenant_a.id, "admin@acme.test", name="Acme Admin", role=ROLE_ADMIN)


@pytest.fixture(scope="function")
def manager_a(tenant_a):
    return tenant_service.add_member(tenant_a.id, "manager@acme.test", role=ROLE_MANAGER)


@pytest.fixture(scope="function")
def operator_a(tenant_a):
    return tenant_service.add_member(tenant_a.id, "operator@acme.test", role=ROLE_OPERATOR)


@pytest.fixture(scope="function")
def admin_b(tenant_b):
    return tenant_service.add_member(tenant_b.id, "admin@beta.test", role=ROLE_ADMIN)


@pytest.fixture(scope="function")
def token_for(db_session):
    """Factory: bearer token for (user, tenant)."""
    def _token(user, tenant) -> str:
        _session, token = session_service.create_session(user.id, tenant_id=tenant.id)
        return token
    return _token


@pytest.fixture(scope="function")
def admin_token(admin_a, tenant_a, token_for):
    return token_for(admin_a, tenant_a)


@pytest.fixture(scope="function")
def admin_headers(admin_token):
    return auth_headers(admin_token)


@pytest.fixture(scope="function")
def make_product(db_session):
    """
    Factory: create a product through products_service so opening stock
    goes through the ledger and the alert lifecycle like a synced create.
    """
    def _make(tenant, quantity: int = 0, name: str = "Widget", user=None, **fields):
        payload = {"name": name, "quantity": quantity}
        payload.update(fields)
        change = products_service.create_product(
            tenant.id,
            user.id if user is not None else None,
            str(uuid.uuid4()),
            payload,
            operation_id=str(uuid.uuid4()),
        )
        return change.product
    return _make


@pytest.fixture(scope="function")
def sync_op():
    """Factory: one wire-format sync operation."""
    def _op(tenant_id, entity_type, operation_type, entity_id, payload=None, operation_id=None):
        operation_id = operation_id or str(uuid.uuid4())
        return {
            "operationId": operation_id,
            "idempotencyKey": operation_id,
            "entityId": entity_id,
            "entityType": entity_type,
            "operationType": operation_type,
            "tenantId": tenant_id,
            "payload": dict(payload or {}),
        }
    return _op


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {"Authorization": f"Bearer {token}"}
