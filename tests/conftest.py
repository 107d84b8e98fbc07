import dataclasses
import time
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from travel_booking.config import Settings
from travel_booking.errors import GatewayUnavailableError
from travel_booking.gateway import Intent
from travel_booking.main import create_app
from travel_booking.reconciliation import ReconciliationEngine
from travel_booking.schemas import BookingRequest
from travel_booking.store import BookingStore
from travel_booking.webhooks import compute_signature

WEBHOOK_SECRET = "whsec_test"
JWT_SECRET = "jwt_test_secret"


class FakeGateway:
    """In-memory payment provider handing out pi_1, pi_2, ... in order."""

    def __init__(self):
        self.intents = {}
        self.create_calls = []
        self.fail_create = False
        self.fail_get = False

    def create_intent(self, amount, currency, metadata, idempotency_key):
        self.create_calls.append(
            {"amount": amount, "currency": currency, "metadata": metadata, "idempotency_key": idempotency_key}
        )
        if self.fail_create:
            raise GatewayUnavailableError("Unable to connect to payment provider.", code="api_connection_error")
        intent_id = f"pi_{len(self.intents) + 1}"
        intent = Intent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret_test",
            created_at=datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
        )
        self.intents[intent_id] = intent
        return intent

    def get_intent(self, intent_id):
        if self.fail_get or intent_id not in self.intents:
            raise GatewayUnavailableError("Unable to verify payment status.")
        return self.intents[intent_id]

    def set_status(self, intent_id, status, failure_message=None):
        self.intents[intent_id] = dataclasses.replace(
            self.intents[intent_id], status=status, failure_message=failure_message
        )


def make_request(**overrides) -> BookingRequest:
    fields = {
        "package_id": 17,
        "customer_name": "Aiko Tan",
        "customer_email": "aiko@example.com",
        "customer_phone": "+65 8123 4567",
        "travel_date": date(2026, 12, 20),
        "adults": 2,
        "children": 1,
        "total_amount": Decimal("250.00"),
        "passenger_details": [{"name": "Aiko Tan"}, {"name": "Ren Tan"}],
        "contact_details": {"email": "aiko@example.com"},
    }
    fields.update(overrides)
    return BookingRequest(**fields)


@pytest.fixture
def store(tmp_path):
    booking_store = BookingStore(f"sqlite:///{tmp_path / 'bookings.db'}").open()
    yield booking_store
    booking_store.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier(mocker):
    return mocker.Mock()


@pytest.fixture
def engine(store, notifier):
    return ReconciliationEngine(store, notifier)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'bookings.db'}",
        jwt_secret=JWT_SECRET,
        log_json=False,
    )


@pytest.fixture
def client(settings, store, gateway):
    app = create_app(settings, store=store, gateway=gateway)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def signed_client(settings, store, gateway):
    app = create_app(dataclasses.replace(settings, webhook_secret=WEBHOOK_SECRET), store=store, gateway=gateway)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def booking_request():
    return make_request


@pytest.fixture
def sign():
    """Headers for a body signed with the test webhook secret."""
    def _sign(raw_body: bytes, timestamp: str = None) -> dict:
        timestamp = timestamp or str(int(time.time()))
        return {"x-timestamp": timestamp, "x-signature": compute_signature(WEBHOOK_SECRET, timestamp, raw_body)}
    return _sign


@pytest.fixture
def auth_headers():
    def _auth(user_id: int) -> dict:
        token = jwt.encode({"sub": str(user_id)}, JWT_SECRET, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return _auth
