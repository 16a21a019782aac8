"""Shared pytest fixtures: in-memory database, fake payment gateway, seeded catalog."""

import os

# Settings are read at import time; point them at test values before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FORMAT", "text")

import hashlib
import hmac
import json
import time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api import deps
from app.config import settings
from app.core.security import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models.academic import Course, Group
from app.models.billing import Enrollment
from app.models.enums import EnrollmentStatus, UserRole
from app.models.user import StudentProfile, User
from app.schemas.gateway import CheckoutSessionResult, SubscriptionSnapshot
from app.services.payment_gateway import StripeGateway

# 2026-01-01 and 2026-02-01, 00:00 UTC
PERIOD_START = 1767225600
PERIOD_END = 1769904000


class FakeGateway(StripeGateway):
    """
    Records every call and answers from in-memory subscriptions.
    Webhook signature verification is inherited unchanged.
    """

    def __init__(self):
        super().__init__(api_key="sk_test_fake", client=MagicMock())
        self.calls = []
        self.subscriptions = {}
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_test_{self._seq}"

    def calls_to(self, name: str) -> list:
        return [call for call in self.calls if call[0] == name]

    def add_subscription(self, subscription_id: str, **fields) -> dict:
        payload = {
            "id": subscription_id,
            "object": "subscription",
            "status": "active",
            "customer": "cus_test",
            "cancel_at_period_end": False,
            "canceled_at": None,
            "items": {
                "data": [{"current_period_start": PERIOD_START, "current_period_end": PERIOD_END}]
            },
        }
        payload.update(fields)
        self.subscriptions[subscription_id] = payload
        return payload

    async def create_customer(self, email, name, metadata=None):
        self.calls.append(("create_customer", email))
        return self._next_id("cus")

    async def create_price_for_group(self, group):
        self.calls.append(("create_price_for_group", group.id, group.price))
        if not group.stripe_product_id:
            group.stripe_product_id = self._next_id("prod")
        return self._next_id("price")

    async def create_checkout_session(self, customer_id, price_id, success_url, cancel_url, metadata):
        self.calls.append(("create_checkout_session", customer_id, price_id, metadata))
        session_id = self._next_id("cs")
        return CheckoutSessionResult(session_id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    async def retrieve_subscription(self, subscription_id, expand=None):
        self.calls.append(("retrieve_subscription", subscription_id, expand))
        return SubscriptionSnapshot.model_validate(self.subscriptions[subscription_id])

    async def update_subscription(self, subscription_id, cancel_at_period_end):
        self.calls.append(("update_subscription", subscription_id, cancel_at_period_end))
        payload = self.subscriptions.get(subscription_id) or self.add_subscription(subscription_id)
        payload["cancel_at_period_end"] = cancel_at_period_end
        return SubscriptionSnapshot.model_validate(payload)


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def catalog(db):
    """
    A parent with one linked student, a teacher with a course and a paid
    group (100.00/month, two seats), an admin, and an unrelated parent.
    """
    parent = User(email="parent@example.com", first_name="Pat", last_name="Parent", role=UserRole.PARENT)
    other_parent = User(email="other@example.com", first_name="Olly", last_name="Other", role=UserRole.PARENT)
    student = User(email="student@example.com", first_name="Sam", last_name="Student", role=UserRole.STUDENT)
    teacher = User(email="teacher@example.com", first_name="Tess", last_name="Teacher", role=UserRole.TEACHER)
    admin = User(email="admin@example.com", first_name="Ada", last_name="Admin", role=UserRole.ADMIN)
    db.add_all([parent, other_parent, student, teacher, admin])
    await db.flush()

    db.add(StudentProfile(user_id=student.id, parent_id=parent.id, grade="7"))
    course = Course(title="Algebra I", teacher_id=teacher.id)
    db.add(course)
    await db.flush()

    group = Group(
        title="Algebra I - Evening",
        course_id=course.id,
        teacher_id=teacher.id,
        capacity=2,
        price=Decimal("100.00"),
        currency="usd",
    )
    db.add(group)
    await db.commit()

    return SimpleNamespace(
        parent=parent,
        other_parent=other_parent,
        student=student,
        teacher=teacher,
        admin=admin,
        course=course,
        group=group,
    )


@pytest.fixture
def make_enrollment(db, catalog):
    """Insert an enrollment for the catalog's student and group."""
    async def _make(**fields) -> Enrollment:
        values = {
            "parent_id": catalog.parent.id,
            "student_id": catalog.student.id,
            "teacher_id": catalog.teacher.id,
            "group_id": catalog.group.id,
            "course_id": catalog.course.id,
            "amount": Decimal("100.00"),
            "currency": "usd",
            "status": EnrollmentStatus.INCOMPLETE,
        }
        values.update(fields)
        enrollment = Enrollment(**values)
        db.add(enrollment)
        await db.commit()
        return enrollment

    return _make


@pytest.fixture
def api_base() -> str:
    """Base URL for API requests."""
    return f"http://test{settings.API_V1_PREFIX}"


@pytest.fixture
async def async_client(db, gateway):
    """Async HTTP client bound to the test session and the fake gateway."""
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test", timeout=30.0) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def sign_payload():
    """Build a Stripe-Signature header for a payload with the test webhook secret."""
    def _sign(payload: bytes, secret: str = "whsec_test_secret", timestamp: int = None) -> str:
        timestamp = timestamp or int(time.time())
        signed = f"{timestamp}.".encode() + payload
        signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture
def event_payload():
    """Raw webhook envelope as Stripe sends it."""
    def _payload(event_type: str, obj: dict, event_id: str = "evt_test_1") -> dict:
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": PERIOD_START,
            "livemode": False,
            "data": {"object": obj},
        }

    return _payload


def to_json(payload: dict) -> bytes:
    return json.dumps(payload).encode()


@pytest.fixture
def encode():
    return to_json
