from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from marketplace.config.settings import Settings
from marketplace.database.session import build_engine, build_session_factory, init_db
from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.events import ConnectionEventBus
from marketplace.entitlements.service import EntitlementService
from marketplace.main import create_app
from marketplace.models.provider import Provider
from marketplace.models.user import User
from marketplace.payments.razorpay_client import RazorpayClient
from marketplace.platform.auth import create_access_token
from marketplace.services.connection_notifier import ConnectionNotifier

JWT_SECRET = "test-jwt-secret"
RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_KEY_SECRET = "rzp_test_secret"

T0 = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)

DISCLAIMER = (
    "The platform only facilitates connection between users and providers. "
    "Any agreement is strictly between both parties."
)


def catalog_document(
    one_time=True,
    seven_days=True,
    thirty_days=False,
    lifetime=False,
    free_fallback=True,
    free_minutes=30,
) -> dict:
    return {
        "connectionAccessOptions": [
            {"id": "oneTime", "label": "One-time Access", "price": 50, "durationDays": 1, "enabled": one_time},
            {"id": "sevenDays", "label": "7 Days Access", "price": 250, "durationDays": 7, "enabled": seven_days},
            {"id": "thirtyDays", "label": "30 Days Access", "price": 800, "durationDays": 30, "enabled": thirty_days},
            {"id": "lifetime", "label": "Lifetime Access", "price": 2000, "enabled": lifetime},
        ],
        "isFreeAccessFallbackEnabled": free_fallback,
        "freeAccessDurationMinutes": free_minutes,
        "disclaimerEmailContent": DISCLAIMER,
    }


def write_catalog(path, **options):
    path.write_text(json.dumps(catalog_document(**options)), encoding="utf-8")
    return path


class FakeClock:
    """Settable clock shared by the app and the test."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def seed_people(session, user_ids=("user-1",), provider_ids=("provider-1",)):
    for user_id in user_ids:
        session.add(User(
            id=user_id,
            display_name=f"Customer {user_id}",
            email=f"{user_id}@example.com",
            mobile_number="9876543210",
        ))
    for provider_id in provider_ids:
        session.add(Provider(
            id=provider_id,
            full_name=f"Provider {provider_id}",
            email=f"{provider_id}@example.com",
            mobile_number="9123456780",
            work_category_name="Plumber",
            city="Pune",
            is_approved=True,
        ))
    session.commit()


# =============================================================================
# Core fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog_path(tmp_path):
    return write_catalog(tmp_path / "access_tiers.json")


@pytest.fixture
def catalog_loader(catalog_path):
    return AccessCatalogLoader(str(catalog_path))


@pytest.fixture
def free_only_loader(tmp_path):
    path = write_catalog(tmp_path / "free_only.json", one_time=False, seven_days=False)
    return AccessCatalogLoader(str(path))


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    seed_people(session, user_ids=("user-1", "user-2"), provider_ids=("provider-1", "provider-2"))
    yield session
    session.close()


@pytest.fixture
def event_bus():
    return ConnectionEventBus()


@pytest.fixture
def entitlements(db_session, catalog_loader, event_bus, clock):
    return EntitlementService(db_session, catalog_loader, event_bus=event_bus, clock=clock)


# =============================================================================
# API fixtures
# =============================================================================

def razorpay_handler_factory(payments: dict, orders: list):
    """Mock Razorpay API: POST /orders and GET /payments/{id}."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path.endswith("/orders"):
            body = json.loads(request.content)
            order_id = f"order_{len(orders) + 1}"
            orders.append({"id": order_id, **body})
            return httpx.Response(200, json={
                "id": order_id,
                "amount": body["amount"],
                "currency": body["currency"],
                "status": "created",
                "receipt": body.get("receipt"),
            })
        if request.method == "GET" and "/payments/" in request.url.path:
            payment_id = request.url.path.rsplit("/", 1)[-1]
            payment = payments.get(payment_id)
            if payment is None:
                return httpx.Response(404, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "not found"}})
            return httpx.Response(200, json={"id": payment_id, **payment})
        return httpx.Response(404, json={})

    return handler


@pytest.fixture
def gateway_payments():
    return {}


@pytest.fixture
def gateway_orders():
    return []


@pytest.fixture
def razorpay_client(gateway_payments, gateway_orders):
    return RazorpayClient(
        RAZORPAY_KEY_ID,
        RAZORPAY_KEY_SECRET,
        transport=httpx.MockTransport(razorpay_handler_factory(gateway_payments, gateway_orders)),
    )


@pytest.fixture
def settings(catalog_path):
    return Settings(
        database_url="sqlite://",
        jwt_secret=JWT_SECRET,
        razorpay_key_id=RAZORPAY_KEY_ID,
        razorpay_key_secret=RAZORPAY_KEY_SECRET,
        enable_online_payment=True,
        access_tiers_path=str(catalog_path),
    )


@pytest.fixture
def notifier():
    return MagicMock(spec=ConnectionNotifier)


@pytest.fixture
def app(settings, razorpay_client, notifier, clock):
    app = create_app(
        settings,
        razorpay_client=razorpay_client,
        event_bus=ConnectionEventBus(),
        connection_notifier=notifier,
        clock=clock,
    )
    session = app.state.session_factory()
    seed_people(session, user_ids=("user-1", "user-2"), provider_ids=("provider-1", "provider-2"))
    session.close()
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def token_for(user_id: str, roles=(), name=None) -> str:
    return create_access_token(JWT_SECRET, user_id, roles=roles, name=name)


def auth_headers(user_id: str = "user-1", roles=(), name=None) -> dict:
    return {"Authorization": f"Bearer {token_for(user_id, roles=roles, name=name)}"}
