from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import text

from marketplace.entitlements.events import ConnectionEventBus
from marketplace.main import create_app


def test_liveness(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_readiness_reports_connection_tables(client):
    body = client.get("/api/health/readiness").json()

    assert body["status"] == "ready"
    assert body["checks"]["connection_tables"]["missing"] == []


def test_readiness_lists_missing_tables(client, app):
    with app.state.engine.begin() as conn:
        conn.execute(text("DROP TABLE review_requests"))

    body = client.get("/api/health/readiness").json()

    assert body["status"] == "not_ready"
    assert body["checks"]["connection_tables"]["missing"] == ["review_requests"]


def test_readiness_fails_without_access_catalog(client, catalog_path):
    catalog_path.unlink()

    response = client.get("/api/health/readiness")

    assert response.status_code == 503
    assert response.json()["checks"]["access_catalog"]["status"] == "unavailable"


def test_shutdown_closes_factory_created_razorpay_client(settings, notifier):
    app = create_app(settings, event_bus=ConnectionEventBus(), connection_notifier=notifier)

    with TestClient(app):
        assert app.state.owns_razorpay_client
        assert not app.state.razorpay_client._client.is_closed

    assert app.state.razorpay_client._client.is_closed


def test_shutdown_leaves_injected_razorpay_client_open(app, razorpay_client):
    with TestClient(app):
        pass

    assert not razorpay_client._client.is_closed
