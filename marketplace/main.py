"""
Application factory for the marketplace connection service.

Run locally with:
    uvicorn marketplace.main:build_default_app --factory --reload
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI

from marketplace import __version__
from marketplace.api.routes import (
    access_settings,
    admin_connections,
    connections,
    health,
    notifications,
    realtime,
    reviews,
)
from marketplace.config.settings import Settings
from marketplace.database.session import build_engine, build_session_factory, init_db
from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.events import ConnectionEventBus
from marketplace.payments.razorpay_client import RazorpayClient
from marketplace.platform.errors import ErrorHandlerMiddleware, register_exception_handlers
from marketplace.services.connection_notifier import ConnectionNotifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if app.state.owns_razorpay_client:
        await app.state.razorpay_client.close()
        logger.info("Razorpay client closed")


def create_app(
    settings: Optional[Settings] = None,
    *,
    razorpay_client: Optional[RazorpayClient] = None,
    event_bus: Optional[ConnectionEventBus] = None,
    connection_notifier: Optional[ConnectionNotifier] = None,
    clock: Optional[Callable[[], datetime]] = None,
    create_tables: bool = True,
) -> FastAPI:
    """
    Build the FastAPI app with all process-wide services on app.state.

    Keyword overrides exist for tests; production passes only settings
    (or nothing, to read the environment).
    """
    settings = settings or Settings.from_env()

    app = FastAPI(title=f"{settings.site_name} API", version=__version__, lifespan=lifespan)

    engine = build_engine(settings.database_url)
    if create_tables:
        init_db(engine)
    session_factory = build_session_factory(engine)

    owns_razorpay_client = razorpay_client is None and settings.payments_configured
    if owns_razorpay_client:
        razorpay_client = RazorpayClient(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
        )
    if razorpay_client is None:
        logger.info("Online payments disabled; paid checkout is unavailable")

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.catalog_loader = AccessCatalogLoader(settings.access_tiers_path)
    app.state.event_bus = event_bus or ConnectionEventBus(redis_url=settings.redis_url)
    app.state.razorpay_client = razorpay_client
    app.state.owns_razorpay_client = owns_razorpay_client
    app.state.connection_notifier = connection_notifier or ConnectionNotifier(settings, session_factory)
    app.state.clock = clock

    register_exception_handlers(app)
    app.add_middleware(ErrorHandlerMiddleware)

    app.include_router(health.router)
    app.include_router(connections.router)
    app.include_router(reviews.router)
    app.include_router(notifications.router)
    app.include_router(admin_connections.router)
    app.include_router(access_settings.router)
    app.include_router(realtime.router)

    logger.info(
        "Marketplace app created",
        extra={
            "payments_enabled": razorpay_client is not None,
            "redis_events": bool(settings.redis_url),
            "smtp_configured": settings.smtp.is_configured,
        },
    )
    return app


def build_default_app() -> FastAPI:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return create_app()

