"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
# Inject sys.path so the suite also runs without an editable install
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from unitlock_api.audit.sinks import InMemoryAccessLogSink
from unitlock_api.billing.invoicing import InvoiceRequest, IssuedInvoice
from unitlock_api.billing.reconciler import EventReconciler
from unitlock_api.billing.signature import build_signature_header
from unitlock_api.billing.stripe_client import ProcessorCustomer, ProcessorSubscription
from unitlock_api.db.models import (
    SUBSCRIPTION_ACTIVE,
    UNIT_VACANT,
    Base,
    Profile,
    Subscription,
    Unit,
)
from unitlock_api.db.repository import SqlSubscriptionStore
from unitlock_api.db.session import get_db
from unitlock_api.errors import HardwareUnavailableError, InvoicingError, TransientDependencyError
from unitlock_api.gate.actuator import ActuationResult
from unitlock_api.gate.authorizer import AccessAuthorizer

TEST_DATABASE_URL = "sqlite:///:memory:"
WEBHOOK_SECRET = "whsec_test_secret"


# ============================================================================
# Database
# ============================================================================


@pytest.fixture(scope="function")
def db_session() -> Session:
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    try:
        yield session
        session.rollback()
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


class Seeder:
    """Inserts committed fixture rows."""

    def __init__(self, session: Session):
        self.session = session

    def profile(self, profile_id: str = "user-42", **kwargs) -> Profile:
        row = Profile(id=profile_id, email=kwargs.pop("email", f"{profile_id}@example.com"), **kwargs)
        self.session.add(row)
        self.session.commit()
        return row

    def unit(self, unit_id: int = 7, name: str = "A-07", price_monthly: int = 29900) -> Unit:
        row = Unit(id=unit_id, name=name, price_monthly=price_monthly, status=UNIT_VACANT)
        self.session.add(row)
        self.session.commit()
        return row

    def subscription(
        self,
        *,
        user_id: str = "user-42",
        unit_id: int = 7,
        external_id: str = "sub_existing",
        status: str = SUBSCRIPTION_ACTIVE,
        period_end: Optional[datetime] = None,
    ) -> Subscription:
        row = Subscription(
            user_id=user_id,
            unit_id=unit_id,
            stripe_subscription_id=external_id,
            status=status,
            current_period_end=period_end or datetime.now(timezone.utc) + timedelta(days=30),
        )
        self.session.add(row)
        self.session.commit()
        return row


@pytest.fixture
def seed(db_session: Session) -> Seeder:
    return Seeder(db_session)


@pytest.fixture
def store(db_session: Session) -> SqlSubscriptionStore:
    return SqlSubscriptionStore(db_session)


# ============================================================================
# Collaborator fakes
# ============================================================================


class FakeGateActuator:
    """Records open() calls; fails on demand."""

    def __init__(self, result: ActuationResult = ActuationResult.OPENED):
        self.result = result
        self.fail = False
        self.calls: list[dict] = []

    async def open(self, *, unit_id: int, user_id: str) -> ActuationResult:
        self.calls.append({"unit_id": unit_id, "user_id": user_id})
        if self.fail:
            raise HardwareUnavailableError("controller offline")
        return self.result


class FakePaymentProcessor:
    """In-memory stand-in for the Stripe REST client."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, datetime] = {}
        self.customers: dict[str, ProcessorCustomer] = {}
        self.fail = False
        self.subscription_calls: list[str] = []
        self.customer_calls: list[str] = []

    async def get_subscription(self, subscription_id: str) -> ProcessorSubscription:
        self.subscription_calls.append(subscription_id)
        if self.fail or subscription_id not in self.subscriptions:
            raise TransientDependencyError(f"processor unavailable for {subscription_id}")
        return ProcessorSubscription(
            id=subscription_id,
            status="active",
            current_period_end=self.subscriptions[subscription_id],
        )

    async def get_customer(self, customer_id: str) -> ProcessorCustomer:
        self.customer_calls.append(customer_id)
        if self.fail or customer_id not in self.customers:
            raise TransientDependencyError(f"processor unavailable for {customer_id}")
        return self.customers[customer_id]


class FakeInvoicingClient:
    def __init__(self) -> None:
        self.fail = False
        self.requests: list[InvoiceRequest] = []

    async def create_invoice(self, request: InvoiceRequest) -> IssuedInvoice:
        self.requests.append(request)
        if self.fail:
            raise InvoicingError("Fakturownia returned HTTP 503")
        return IssuedInvoice(id=len(self.requests), number=f"FV/{len(self.requests)}/2026")


@pytest.fixture
def actuator() -> FakeGateActuator:
    return FakeGateActuator()


@pytest.fixture
def processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def invoicing() -> FakeInvoicingClient:
    return FakeInvoicingClient()


@pytest.fixture
def access_log() -> InMemoryAccessLogSink:
    return InMemoryAccessLogSink()


# ============================================================================
# Engines
# ============================================================================


@pytest.fixture
def authorizer(store, access_log, actuator) -> AccessAuthorizer:
    return AccessAuthorizer(store=store, access_log=access_log, actuator=actuator)


@pytest.fixture
def reconciler(store, processor, invoicing) -> EventReconciler:
    return EventReconciler(
        store=store,
        processor=processor,
        invoicing=invoicing,
        webhook_secret=WEBHOOK_SECRET,
    )


# ============================================================================
# Webhook payload helpers
# ============================================================================


def make_event(event_type: str, obj: dict, event_id: str = "evt_test_001") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def checkout_event(
    *,
    subscription: str = "sub_123",
    customer: str = "cus_123",
    unit_id="7",
    user_id="user-42",
    event_id: str = "evt_checkout_001",
) -> dict:
    return make_event(
        "checkout.session.completed",
        {
            "id": "cs_test_1",
            "customer": customer,
            "subscription": subscription,
            "metadata": {"unitId": unit_id, "userId": user_id},
        },
        event_id=event_id,
    )


def sign(body: dict | bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> tuple[bytes, str]:
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    return raw, build_signature_header(raw, secret, timestamp)


@pytest.fixture
def signed():
    """Return (raw_body, Stripe-Signature header) for a payload."""
    return sign


@pytest.fixture
def events():
    """Payload builders: events.checkout(...), events.make(type, obj)."""

    class _Events:
        checkout = staticmethod(checkout_event)
        make = staticmethod(make_event)

    return _Events


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
def app():
    from unitlock_api.main import app as fastapi_app

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def test_client(app, db_session: Session):
    """TestClient with db_session dependency override."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # conftest owns the session

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app, raise_server_exceptions=False)
    yield client
    app.dependency_overrides.clear()
