"""
FastAPI dependencies that assemble per-request services from app.state.

app.state carries the process-wide pieces built by the app factory:
settings, session_factory, catalog_loader, event_bus, razorpay_client,
connection_notifier and an optional clock override for tests.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from marketplace.config.settings import Settings
from marketplace.database.session import get_db_session
from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.events import ConnectionEventBus
from marketplace.entitlements.review_trigger import ReviewSolicitationPolicy
from marketplace.entitlements.service import EntitlementService
from marketplace.payments.razorpay_client import RazorpayClient
from marketplace.services.connection_checkout_service import ConnectionCheckoutService
from marketplace.services.connection_notifier import ConnectionNotifier


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_catalog_loader(request: Request) -> AccessCatalogLoader:
    return request.app.state.catalog_loader


def get_event_bus(request: Request) -> Optional[ConnectionEventBus]:
    return getattr(request.app.state, "event_bus", None)


def get_clock(request: Request) -> Callable[[], datetime]:
    return getattr(request.app.state, "clock", None) or _utcnow


def get_connection_notifier(request: Request) -> ConnectionNotifier:
    return request.app.state.connection_notifier


def build_entitlement_service(app, db_session: Session) -> EntitlementService:
    """Same wiring as get_entitlement_service, for callers outside a request."""
    settings: Settings = app.state.settings
    return EntitlementService(
        db_session,
        app.state.catalog_loader,
        event_bus=getattr(app.state, "event_bus", None),
        policy=ReviewSolicitationPolicy(
            mark_when_pending_elsewhere=settings.review_mark_when_pending_elsewhere,
        ),
        clock=getattr(app.state, "clock", None) or _utcnow,
    )


def get_entitlement_service(
    request: Request,
    db_session: Session = Depends(get_db_session),
) -> EntitlementService:
    return build_entitlement_service(request.app, db_session)


def get_checkout_service(
    request: Request,
    db_session: Session = Depends(get_db_session),
    entitlements: EntitlementService = Depends(get_entitlement_service),
) -> ConnectionCheckoutService:
    gateway: Optional[RazorpayClient] = getattr(request.app.state, "razorpay_client", None)
    return ConnectionCheckoutService(
        db_session,
        request.app.state.settings,
        entitlements,
        gateway=gateway,
    )
