"""
Liveness and readiness probes.

Readiness fails when a connection flow table is missing or the access
catalog cannot be loaded; both make every connect attempt fail.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from marketplace.api.dependencies.services import get_catalog_loader
from marketplace.database.session import get_db_session
from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.errors import ConfigUnavailableError
from marketplace.platform.db_readiness import (
    REQUIRED_CONNECTION_TABLES,
    check_required_tables,
)

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/readiness")
async def readiness(
    db_session: Session = Depends(get_db_session),
    loader: AccessCatalogLoader = Depends(get_catalog_loader),
):
    tables = check_required_tables(db_session, REQUIRED_CONNECTION_TABLES)
    try:
        enabled = [tier.id.value for tier in loader.list_enabled_tiers()]
        catalog_check = {"status": "ok", "enabled_tiers": enabled}
    except ConfigUnavailableError as e:
        catalog_check = {"status": "unavailable", "error": e.message}

    ready = tables.ready and catalog_check["status"] == "ok"
    body = {
        "status": "ready" if ready else "not_ready",
        "checks": {
            "connection_tables": {
                "required": tables.checked_tables,
                "missing": tables.missing_tables,
            },
            "access_catalog": catalog_check,
        },
    }
    return JSONResponse(body, status_code=200 if ready else 503)
