from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from conftest import (
    RAZORPAY_KEY_SECRET,
    T0,
    auth_headers,
    catalog_document,
)
from marketplace.config.settings import Settings
from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.main import create_app
from marketplace.models.connection import UserProviderConnection
from marketplace.payments.razorpay_client import compute_payment_signature


def _use_catalog(app, **options):
    app.state.catalog_loader.save(AccessCatalogLoader.parse_catalog(catalog_document(**options)))


def _connection_count(app):
    session = app.state.session_factory()
    try:
        return session.execute(select(func.count()).select_from(UserProviderConnection)).scalar()
    finally:
        session.close()


def _start_and_pay(client, gateway_payments, tier_id="sevenDays", amount=25000, user_id="user-1"):
    started = client.post(
        "/api/connections/provider-1/checkout",
        json={"tier_id": tier_id},
        headers=auth_headers(user_id),
    )
    assert started.status_code == 200
    order_id = started.json()["order_id"]
    gateway_payments["pay_1"] = {"order_id": order_id, "amount": amount, "currency": "INR", "status": "captured"}
    return order_id


# =============================================================================
# Catalog and state
# =============================================================================

def test_list_tiers(client):
    response = client.get("/api/connections/tiers")

    assert response.status_code == 200
    body = response.json()
    assert [t["id"] for t in body] == ["oneTime", "sevenDays"]
    assert body[1]["price"] == 250
    assert body[1]["amount_minor"] == 25000


def test_anonymous_viewer_sees_no_access_and_no_contact(client):
    response = client.get("/api/connections/provider-1")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "no_access"
    assert body["call_to_action"] == "connect"
    assert body["contact"] is None


def test_unknown_provider_is_404(client):
    response = client.get("/api/connections/nobody", headers=auth_headers())

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_missing_catalog_is_service_unavailable(settings, razorpay_client, notifier, clock, tmp_path):
    broken = Settings(
        database_url="sqlite://",
        jwt_secret=settings.jwt_secret,
        access_tiers_path=str(tmp_path / "missing.json"),
    )
    app = create_app(broken, connection_notifier=notifier, clock=clock)

    response = TestClient(app).get("/api/connections/tiers")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "CONFIG_UNAVAILABLE"


# =============================================================================
# Connect
# =============================================================================

def test_connect_requires_sign_in_and_keeps_intent(client, app):
    response = client.post("/api/connections/provider-1/connect")

    assert response.status_code == 401
    details = response.json()["error"]["details"]
    assert details["intent"] == "/provider/provider-1?connect=true"
    assert details["sign_in_url"] == "/login?redirect=/provider/provider-1%3Fconnect%3Dtrue"
    assert _connection_count(app) == 0


def test_connect_with_paid_tiers_offers_selection(client, app, notifier):
    response = client.post("/api/connections/provider-1/connect", headers=auth_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["offer"]["kind"] == "paid"
    assert [t["id"] for t in body["offer"]["tiers"]] == ["oneTime", "sevenDays"]
    assert body["access"] is None
    assert _connection_count(app) == 0
    notifier.notify.assert_not_called()


def test_connect_free_fallback_grants_immediately(client, app, notifier):
    _use_catalog(app, one_time=False, seven_days=False)

    response = client.post("/api/connections/provider-1/connect", headers=auth_headers())

    assert response.status_code == 200
    access = response.json()["access"]
    assert access["status"] == "active_timed"
    assert access["access_type"] == "free"
    assert access["remaining_seconds"] == 30 * 60
    assert access["remaining_label"] == "00:30:00"
    assert access["contact"]["whatsapp_url"] == "https://wa.me/919123456780"

    record = notifier.notify.call_args.args[0]
    assert record.payment_id is None
    assert record.expires_at == T0 + timedelta(minutes=30)
    assert notifier.notify.call_args.args[1] == "Free Access"


def test_connect_while_active_does_not_regrant(client, app, notifier, clock):
    _use_catalog(app, one_time=False, seven_days=False)
    client.post("/api/connections/provider-1/connect", headers=auth_headers())
    clock.advance(minutes=10)

    response = client.post("/api/connections/provider-1/connect", headers=auth_headers())

    assert response.json()["access"]["remaining_seconds"] == 20 * 60
    assert notifier.notify.call_count == 1


def test_connect_when_feature_disabled(client, app):
    _use_catalog(app, one_time=False, seven_days=False, free_fallback=False)

    response = client.post("/api/connections/provider-1/connect", headers=auth_headers())

    body = response.json()
    assert body["offer"]["kind"] == "unavailable"
    assert body["offer"]["message"] == "This feature is not currently enabled. Please check back later."
    assert _connection_count(app) == 0


def test_free_access_expiry_prompts_review(client, app, clock):
    _use_catalog(app, one_time=False, seven_days=False)
    client.post("/api/connections/provider-1/connect", headers=auth_headers())
    clock.advance(minutes=31)

    state = client.get("/api/connections/provider-1", headers=auth_headers()).json()
    pending = client.get("/api/reviews/pending", headers=auth_headers()).json()["pending"]

    assert state["status"] == "expired"
    assert state["call_to_action"] == "connect"
    assert state["contact"] is None
    assert pending["provider_id"] == "provider-1"
    assert pending["service_name"] == "Interaction with Provider provider-1"


# =============================================================================
# Checkout
# =============================================================================

def test_checkout_start_returns_gateway_parameters(client):
    response = client.post(
        "/api/connections/provider-1/checkout",
        json={"tier_id": "oneTime"},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == 5000
    assert body["currency"] == "INR"
    assert body["key_id"] == "rzp_test_key"
    assert body["description"] == "Access to Provider provider-1 - One-time Access"


def test_checkout_disabled_tier_is_conflict(client, app):
    response = client.post(
        "/api/connections/provider-1/checkout",
        json={"tier_id": "thirtyDays"},
        headers=auth_headers(),
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_TIER"


def test_confirm_unlocks_contact_and_notifies(client, app, notifier, gateway_payments):
    order_id = _start_and_pay(client, gateway_payments)
    signature = compute_payment_signature(order_id, "pay_1", RAZORPAY_KEY_SECRET)

    response = client.post(
        "/api/connections/provider-1/checkout/confirm",
        json={"order_id": order_id, "payment_id": "pay_1", "signature": signature},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "active_timed"
    assert body["access_type"] == "sevenDays"
    assert body["remaining_label"] == "7d 0h left"
    assert body["contact"]["mobile_number"] == "9123456780"
    assert notifier.notify.call_args.args[1] == "7 Days Access"
    assert _connection_count(app) == 1


def test_confirm_with_bad_signature_is_payment_required(client, app, gateway_payments):
    order_id = _start_and_pay(client, gateway_payments)

    response = client.post(
        "/api/connections/provider-1/checkout/confirm",
        json={"order_id": order_id, "payment_id": "pay_1", "signature": "nope"},
        headers=auth_headers(),
    )

    assert response.status_code == 402
    assert response.json()["error"]["code"] == "PAYMENT_FAILED"
    assert _connection_count(app) == 0


def test_cancel_returns_to_tier_selection_without_error(client, app, gateway_payments):
    order_id = _start_and_pay(client, gateway_payments)

    response = client.post(
        "/api/connections/provider-1/checkout/cancel",
        json={"order_id": order_id},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    assert response.json()["kind"] == "paid"
    assert _connection_count(app) == 0


def test_gateway_failure_reports_reason(client, app, gateway_payments):
    order_id = _start_and_pay(client, gateway_payments)

    response = client.post(
        "/api/connections/provider-1/checkout/failure",
        json={"order_id": order_id, "reason": "Your card was declined"},
        headers=auth_headers(),
    )

    assert response.status_code == 402
    error = response.json()["error"]
    assert error["message"] == "Your card was declined"
    assert error["details"]["order_id"] == order_id
    assert _connection_count(app) == 0


@pytest.mark.parametrize("path", ["checkout", "checkout/cancel", "checkout/failure"])
def test_checkout_routes_require_sign_in(client, path):
    response = client.post(f"/api/connections/provider-1/{path}", json={"tier_id": "oneTime", "order_id": "o"})

    assert response.status_code == 401
    assert response.json()["error"]["details"]["intent"] == "/provider/provider-1?connect=true"


def test_invalid_token_keeps_provider_page_intent(client):
    response = client.post(
        "/api/connections/provider-2/connect",
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401
    assert response.json()["error"]["details"]["intent"] == "/provider/provider-2?connect=true"


def test_failure_route_documents_only_the_402(app):
    responses = app.openapi()["paths"]["/api/connections/{provider_id}/checkout/failure"]["post"]["responses"]

    assert "200" not in responses
    assert "ErrorResponse" in str(responses["402"]["content"])
