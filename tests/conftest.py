"""Shared fixtures: isolated SQLite database, fixed clinic clock, fake payment gateway."""

import os

# Configure before any healthbook import reads config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import date, datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from healthbook.auth import Principal, get_current_principal  # noqa: E402
from healthbook.constants import Role  # noqa: E402
from healthbook.database import Base, get_db  # noqa: E402
from healthbook.domain.booking.payment_gateway import get_payment_gateway  # noqa: E402
from healthbook.domain.booking.saga import BookingSaga  # noqa: E402
from healthbook.errors import PaymentGatewayError  # noqa: E402
from healthbook.models import Provider, ProviderAvailability  # noqa: E402
from healthbook.payment_security import (  # noqa: E402
    compute_checkout_signature,
    verify_checkout_signature,
)
from healthbook.services.notification_bridge import (  # noqa: E402
    NotificationBridge,
    get_notification_bridge,
)
from healthbook.shared.clock import get_clock  # noqa: E402

# Monday; the fixture provider works Monday to Saturday, 09:00-17:00
SESSION_DAY = date(2024, 6, 10)
NEXT_DAY = date(2024, 6, 11)
GATEWAY_SECRET = "test_secret"


class FakeGateway:
    """In-memory stand-in for the payment gateway with switchable failures."""

    def __init__(self):
        self.key_id = "rzp_test_key"
        self.key_secret = GATEWAY_SECRET
        self.fail_orders = False
        self.fail_verify = False
        self.declined_payments = set()
        self.orders = []

    async def create_order(self, amount, currency, receipt, notes=None):
        if self.fail_orders:
            raise PaymentGatewayError("gateway down", status_code=503)
        order = {
            "id": f"order_{len(self.orders) + 1}",
            "amount": int(round(amount * 100)),
            "currency": currency,
            "receipt": receipt,
        }
        self.orders.append(order)
        return order

    async def verify_payment(self, order_id, payment_id, signature):
        if self.fail_verify:
            raise PaymentGatewayError("gateway timeout")
        if payment_id in self.declined_payments:
            return False
        return verify_checkout_signature(self.key_secret, order_id, payment_id, signature)


class FixedClock:
    """Clinic clock pinned to a settable moment."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def sign(order_id, payment_id):
    return compute_checkout_signature(GATEWAY_SECRET, order_id, payment_id)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so separate connections (threads) share one database."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'healthbook.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def provider(db):
    """Doctor working Mon-Sat 09:00-17:00, 20 minute consultations, fee 500."""
    doctor = Provider(
        name="Dr. Asha Rao",
        specialization="General Medicine",
        consultation_fee=500,
        avg_consultation_minutes=20,
    )
    db.add(doctor)
    db.flush()
    for weekday in range(6):
        db.add(
            ProviderAvailability(
                provider_id=doctor.id, weekday=weekday, start_minute=540, end_minute=1020
            )
        )
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def clock():
    """08:00 on the session day, before the window opens."""
    return FixedClock(datetime(2024, 6, 10, 8, 0))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def events():
    return []


@pytest.fixture
def bridge(events):
    bridge = NotificationBridge(channel="test.events", enabled=True, redis_factory=None)
    bridge.subscribe(events.append)
    return bridge


@pytest.fixture
def patient():
    return Principal(user_id="patient-1", role=Role.PATIENT)


@pytest.fixture
def other_patient():
    return Principal(user_id="patient-2", role=Role.PATIENT)


@pytest.fixture
def doctor(provider):
    return Principal(user_id="doctor-1", role=Role.DOCTOR, provider_id=provider.id)


@pytest.fixture
def saga(db, gateway, bridge, clock):
    return BookingSaga(db, gateway, bridge=bridge, clock=clock)


@pytest.fixture
def auth(patient):
    """Mutable holder for the principal the test client authenticates as."""
    return {"principal": patient}


@pytest.fixture
def client(session_factory, gateway, bridge, clock, auth):
    """TestClient with database, auth, gateway, bridge and clock overridden."""
    from healthbook.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = lambda: auth["principal"]
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_bridge] = lambda: bridge
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()
