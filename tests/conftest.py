"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, recreated for each test
- Dependency overrides for the FastAPI app (db, current user, Stripe, invoice storage)
- Factories for users and Clerk user payloads
"""

import os

# Configure the app for tests before anything imports app.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["INVOICE_STORAGE"] = "local"
for _key in (
    "REDIS_URL",
    "CLERK_SECRET_KEY",
    "CLERK_WEBHOOK_SECRET",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "RESEND_API_KEY",
):
    os.environ.pop(_key, None)

from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.auth import get_current_user
from app.database import Base, SessionLocal, engine, get_db
from app.domain.billing.invoice_service import InvoiceService
from app.domain.billing.router import get_invoice_service, get_stripe_gateway
from app.main import app
from app.models import User
from app.storage import LocalInvoiceStore


# =============================================================================
# Fakes
# =============================================================================


class FakeStripeGateway:
    """Records calls instead of talking to Stripe"""

    def __init__(self, available: bool = True):
        self.available = available
        self.calls = []
        self.subscription_response = {
            "id": "sub_test_1",
            "status": "active",
            "current_period_start": 1767225600,  # 2026-01-01
            "current_period_end": 1769904000,  # 2026-02-01
        }

    def is_available(self) -> bool:
        return self.available

    async def get_or_create_customer(self, user) -> str:
        self.calls.append(("get_or_create_customer", user.id))
        return user.stripe_customer_id or f"cus_{user.id}"

    async def create_payment_intent(
        self, amount, currency, customer_id, description=None, metadata=None
    ):
        self.calls.append(("create_payment_intent", amount, currency, metadata))
        intent_number = sum(1 for call in self.calls if call[0] == "create_payment_intent")
        return {"id": f"pi_test_{intent_number}", "client_secret": f"pi_test_{intent_number}_secret"}

    async def confirm_payment_intent(self, intent_id, payment_method_id=None):
        self.calls.append(("confirm_payment_intent", intent_id, payment_method_id))
        return {"id": intent_id, "status": "processing"}

    async def refund_payment_intent(self, intent_id, amount=None, reason=None):
        self.calls.append(("refund_payment_intent", intent_id, amount, reason))
        return {"id": "re_test_1", "amount": amount}

    async def create_subscription(self, customer_id, price_id, trial_days=None, metadata=None):
        self.calls.append(("create_subscription", customer_id, price_id, trial_days))
        return dict(self.subscription_response)

    async def cancel_subscription(self, subscription_id, immediately=False):
        self.calls.append(("cancel_subscription", subscription_id, immediately))
        return {"id": subscription_id}


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; app code may commit freely"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db: Session):
    """Insert a user row directly (bypassing reconciliation)"""

    def _make_user(
        user_id: str = "user_patient",
        role: str = "patient",
        email: Optional[str] = None,
        **fields,
    ) -> User:
        user = User(
            id=user_id,
            email=email or f"{user_id}@example.com",
            name=fields.pop("name", "Ana García"),
            role=role,
            status=fields.pop("status", "active"),
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def clerk_user():
    """Build a Clerk user object as delivered in webhook `data`"""

    def _clerk_user(
        user_id: str = "user_2abc",
        email: str = "ana@example.com",
        role: Optional[str] = None,
        first_name: Optional[str] = "Ana",
        last_name: Optional[str] = "García",
        verified: bool = True,
        **metadata,
    ) -> dict:
        public_metadata = dict(metadata)
        if role:
            public_metadata["role"] = role
        return {
            "id": user_id,
            "object": "user",
            "first_name": first_name,
            "last_name": last_name,
            "image_url": "https://img.clerk.com/avatar.png",
            "primary_email_address_id": "idn_primary",
            "email_addresses": [
                {
                    "id": "idn_primary",
                    "email_address": email,
                    "verification": {"status": "verified" if verified else "unverified"},
                }
            ],
            "phone_numbers": [],
            "public_metadata": public_metadata,
            "last_sign_in_at": 1767225600000,
        }

    return _clerk_user


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def invoice_store(tmp_path) -> LocalInvoiceStore:
    return LocalInvoiceStore(base_dir=str(tmp_path), base_url="http://testserver")


@pytest.fixture
def invoice_service(db: Session, invoice_store: LocalInvoiceStore) -> InvoiceService:
    return InvoiceService(db, storage=invoice_store)


@pytest.fixture
def stripe_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture invoice emails instead of calling Resend"""
    sent = []

    async def fake_send_invoice_email(**kwargs):
        sent.append(kwargs)
        return {"id": f"email_{len(sent)}"}

    monkeypatch.setattr(
        "app.domain.billing.invoice_service.send_invoice_email", fake_send_invoice_email
    )
    return sent


# =============================================================================
# API Client
# =============================================================================


@pytest.fixture
def client(db: Session, invoice_service: InvoiceService, stripe_gateway: FakeStripeGateway):
    """TestClient sharing the test session; call login(user) to authenticate"""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_invoice_service] = lambda: invoice_service
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Authenticate subsequent requests as the given user"""

    def _login(user: User) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _login
