import hashlib
import hmac
import json
import time

import pytest

from app.domain.billing.router import get_stripe_gateway
from app.domain.billing.stripe_service import StripeGateway
from app.main import app
from app.models_invoice import Payment

STRIPE_WEBHOOK_SECRET = "whsec_stripe_test_secret"

ITEMS = [{"description": "Consulta general", "quantity": 1, "unit_price": 80000}]


def stripe_signature(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def webhook_gateway(client):
    gateway = StripeGateway(api_key=None, webhook_secret=STRIPE_WEBHOOK_SECRET)
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    return gateway


# =============================================================================
# Envelope
# =============================================================================


def test_health_uses_envelope(client):
    payload = client.get("/health").json()

    assert payload["success"] is True
    assert payload["data"] == {"status": "healthy"}
    assert payload["timestamp"]


# =============================================================================
# Payments
# =============================================================================


def test_create_payment_intent(client, login, make_user):
    login(make_user())

    response = client.post("/payments/intent", json={"amount": 50000, "currency": "mxn"})

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["message"] == "Payment intent created"
    assert payload["data"]["currency"] == "MXN"
    assert payload["data"]["client_secret"] == "pi_test_1_secret"


@pytest.mark.parametrize(
    "body",
    [
        {"amount": 0},
        {"amount": 1000, "currency": "GBP"},
        {"amount": 1000, "payment_type": "donation"},
    ],
)
def test_invalid_payment_intents_are_rejected(client, login, make_user, body):
    login(make_user())

    response = client.post("/payments/intent", json=body)

    assert response.status_code == 422
    assert response.json()["success"] is False


def test_payment_history_is_paginated(client, login, make_user):
    login(make_user())
    for _ in range(3):
        client.post("/payments/intent", json={"amount": 1000})

    data = client.get("/payments/history", params={"page": 1, "limit": 2}).json()["data"]

    assert len(data["items"]) == 2
    assert data["pagination"] == {
        "page": 1,
        "limit": 2,
        "total": 3,
        "total_pages": 2,
        "has_next": True,
        "has_prev": False,
    }


def test_confirm_without_body(client, login, make_user):
    login(make_user())
    payment_id = client.post("/payments/intent", json={"amount": 1000}).json()["data"]["payment_id"]

    response = client.post(f"/payments/intent/{payment_id}/confirm")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "processing"


# =============================================================================
# Subscriptions
# =============================================================================


def test_subscription_lifecycle(client, login, make_user):
    login(make_user())

    assert client.get("/payments/subscriptions/current").json()["data"] is None

    response = client.post(
        "/payments/subscriptions", json={"plan": "basic", "interval": "monthly", "price_id": "price_basic"}
    )
    assert response.status_code == 201
    subscription_id = response.json()["data"]["id"]

    current = client.get("/payments/subscriptions/current").json()["data"]
    assert current["id"] == subscription_id

    response = client.post(f"/payments/subscriptions/{subscription_id}/cancel", json={"immediately": True})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"


def test_unknown_plan_is_rejected(client, login, make_user):
    login(make_user())

    response = client.post("/payments/subscriptions", json={"plan": "platinum", "price_id": "p"})

    assert response.status_code == 422


# =============================================================================
# Invoices
# =============================================================================


def test_invoice_list_detail_and_pdf(client, login, make_user, invoice_service):
    user = make_user()
    invoice = invoice_service.create_invoice(user.id, ITEMS)
    login(user)

    listing = client.get("/payments/invoices").json()["data"]
    assert [item["invoice_number"] for item in listing["items"]] == [invoice.invoice_number]

    detail = client.get(f"/payments/invoices/{invoice.id}").json()["data"]
    assert detail["total_amount"] == 92800
    assert detail["items"][0]["description"] == "Consulta general"

    response = client.get(f"/payments/invoices/{invoice.id}/pdf")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_other_users_invoice_is_forbidden(client, login, make_user, invoice_service):
    owner = make_user()
    invoice = invoice_service.create_invoice(owner.id, ITEMS)
    login(make_user(user_id="user_other"))

    assert client.get(f"/payments/invoices/{invoice.id}").status_code == 403
    assert client.get(f"/payments/invoices/{invoice.id}/pdf").status_code == 403
    assert client.get("/payments/invoices/9999").status_code == 404


def test_resend_invoice(client, login, make_user, invoice_service, sent_emails):
    user = make_user()
    invoice = invoice_service.create_invoice(user.id, ITEMS)
    login(user)

    response = client.post(f"/payments/invoices/{invoice.id}/resend")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "sent"
    assert len(sent_emails) == 1


# =============================================================================
# Admin
# =============================================================================


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/payments/admin/payments"),
        ("get", "/payments/admin/statistics"),
        ("post", "/payments/admin/invoices/send-pending"),
        ("post", "/payments/admin/payments/1/refund"),
    ],
)
def test_admin_endpoints_require_admin(client, login, make_user, method, path):
    login(make_user())

    response = getattr(client, method)(path)

    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "message": "Admin access required",
        "timestamp": response.json()["timestamp"],
    }


def test_admin_statistics_and_send_pending(client, login, make_user, invoice_service):
    user = make_user()
    invoice_service.create_invoice(user.id, ITEMS)
    login(make_user(user_id="user_admin", role="admin"))

    stats = client.get("/payments/admin/statistics").json()["data"]
    assert stats["total_invoices"] == 1
    assert stats["by_status"]["draft"]["total_amount"] == 92800

    result = client.post("/payments/admin/invoices/send-pending").json()["data"]
    assert result == {
        "invoicesSent": 0,
        "succeeded": 0,
        "failed": 0,
        "message": "Processed 0 subscription invoices",
    }


def test_admin_lists_all_payments(client, login, make_user):
    login(make_user())
    client.post("/payments/intent", json={"amount": 1000})
    login(make_user(user_id="user_other"))
    client.post("/payments/intent", json={"amount": 2000})
    login(make_user(user_id="user_admin", role="admin"))

    data = client.get("/payments/admin/payments").json()["data"]

    assert data["pagination"]["total"] == 2


# =============================================================================
# Stripe webhook
# =============================================================================


def test_signed_stripe_event_is_processed(client, db, make_user, login, webhook_gateway, stripe_gateway):
    user = make_user()
    login(user)
    # Create the payment through the fake gateway, then switch to signature checks
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    client.post("/payments/intent", json={"amount": 1000})
    app.dependency_overrides[get_stripe_gateway] = lambda: webhook_gateway

    payload = json.dumps(
        {
            "id": "evt_signed_1",
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_test_1", "object": "payment_intent", "metadata": {}}},
        }
    ).encode()

    response = client.post(
        "/payments/webhooks/stripe",
        content=payload,
        headers={"stripe-signature": stripe_signature(payload), "content-type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "completed"
    db.expire_all()
    assert db.query(Payment).one().status == "completed"


def test_stripe_event_with_bad_signature_is_rejected(client, webhook_gateway):
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "charge.captured", "data": {"object": {}}}).encode()

    response = client.post(
        "/payments/webhooks/stripe",
        content=payload,
        headers={"stripe-signature": stripe_signature(payload, secret="whsec_wrong")},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_stripe_event_without_signature_header_is_rejected(client, webhook_gateway):
    response = client.post("/payments/webhooks/stripe", content=b"{}")

    assert response.status_code == 400


def test_stripe_webhook_without_secret_is_unavailable(client):
    app.dependency_overrides[get_stripe_gateway] = lambda: StripeGateway(api_key=None, webhook_secret=None)

    response = client.post("/payments/webhooks/stripe", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})

    assert response.status_code == 503
