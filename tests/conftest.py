import hashlib
import hmac
import time

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from orderflow.auth import create_access_token
from orderflow.config import settings
from orderflow.database import Base, get_db
from orderflow.main import app as fastapi_app
from orderflow.models import User, Role
from orderflow.realtime import ConnectionRegistry, get_registry

# Setup test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


class FakeChannel:
    """Stands in for a WebSocket; records every frame pushed to it."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)


@pytest.fixture(autouse=True)
def setup_db(monkeypatch):
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setattr(settings, "GATEWAY_RETRY_BACKOFF_SECONDS", 0)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def client(registry):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def users(db):
    customer = User(id="user-1", email="jane@example.com", name="Jane", role=Role.USER)
    other = User(id="user-2", email="omar@example.com", name="Omar", role=Role.USER)
    admin = User(id="admin-1", email="admin@example.com", name="Admin", role=Role.ADMIN)
    db.add_all([customer, other, admin])
    db.commit()
    return {"customer": "user-1", "other": "user-2", "admin": "admin-1"}


def bearer(user_id, email, role="USER"):
    return {"Authorization": f"Bearer {create_access_token(user_id, email, role)}"}


@pytest.fixture
def customer_headers(users):
    return bearer("user-1", "jane@example.com")


@pytest.fixture
def other_headers(users):
    return bearer("user-2", "omar@example.com")


@pytest.fixture
def admin_headers(users):
    return bearer("admin-1", "admin@example.com", "ADMIN")


@pytest.fixture
def mock_intent(mocker):
    intent = mocker.Mock()
    intent.id = "pi_123"
    intent.client_secret = "secret_123"
    return mocker.patch("stripe.PaymentIntent.create", return_value=intent)


def stripe_event(event_type, intent_id, event_id="evt_test"):
    """Build the stripe.Event that Webhook.construct_event would return."""
    return stripe.Event.construct_from({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent"}},
    }, "sk_test")


def sign_payload(payload, secret="whsec_test", timestamp=None):
    """Stripe-Signature header for ``payload``, as Stripe computes it."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def make_event():
    return stripe_event


@pytest.fixture
def make_channel():
    return FakeChannel


@pytest.fixture
def fetch_order():
    """Read an order through a fresh session so no cached state leaks in."""
    from orderflow.models import Order

    def _fetch(order_id):
        session = TestingSessionLocal()
        try:
            return session.get(Order, order_id)
        finally:
            session.close()
    return _fetch


@pytest.fixture
def seed_order(db):
    """Insert an order directly, bypassing the gateway."""
    from decimal import Decimal
    from orderflow.models import Order, OrderStatus, PaymentStatus

    def _seed(order_id="order-1", user_id="user-1", intent_id="pi_123", total="20.00",
              payment_status=PaymentStatus.PENDING, order_status=OrderStatus.PENDING,
              created_at=None):
        order = Order(
            id=order_id,
            user_id=user_id,
            items=[{"title": "A", "price": float(total), "quantity": 1}],
            total_amount=Decimal(total),
            payment_status=payment_status,
            order_status=order_status,
            stripe_payment_intent_id=intent_id,
        )
        if created_at is not None:
            order.created_at = created_at
        db.add(order)
        db.commit()
        return order_id
    return _seed


@pytest.fixture
def sign():
    return sign_payload
