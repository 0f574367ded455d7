"""
Connection access settings API routes (admin).

- GET /api/admin/connection-access-settings: current catalog document
- PUT /api/admin/connection-access-settings: replace it

Saved settings apply to the next connect attempt in every worker; existing
grants keep the expiry they were issued with.
"""

import logging

from fastapi import APIRouter, Depends

from marketplace.api.dependencies.services import get_catalog_loader
from marketplace.api.schemas.admin import AccessSettingsPayload
from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.models import AccessCatalog, AccessTier
from marketplace.platform.auth import CurrentUser, require_admin
from marketplace.platform.errors import ServiceUnavailableError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/connection-access-settings", tags=["admin"])


def catalog_to_payload(catalog: AccessCatalog) -> AccessSettingsPayload:
    return AccessSettingsPayload.model_validate(catalog.to_dict())


def payload_to_catalog(payload: AccessSettingsPayload) -> AccessCatalog:
    tiers = tuple(
        AccessTier(
            id=option.id,
            label=option.label,
            price=option.price,
            enabled=option.enabled,
            duration_days=option.duration_days,
        )
        for option in payload.connection_access_options
    )
    return AccessCatalog(
        tiers=tiers,
        free_access_fallback_enabled=payload.is_free_access_fallback_enabled,
        free_access_duration_minutes=payload.free_access_duration_minutes,
        disclaimer_email_content=payload.disclaimer_email_content.strip(),
    )


@router.get("", response_model=AccessSettingsPayload, response_model_by_alias=True)
async def get_access_settings(
    loader: AccessCatalogLoader = Depends(get_catalog_loader),
    admin: CurrentUser = Depends(require_admin),
):
    return catalog_to_payload(loader.get_catalog())


@router.put("", response_model=AccessSettingsPayload, response_model_by_alias=True)
async def update_access_settings(
    body: AccessSettingsPayload,
    loader: AccessCatalogLoader = Depends(get_catalog_loader),
    admin: CurrentUser = Depends(require_admin),
):
    try:
        catalog = payload_to_catalog(body)
    except ValueError as e:
        raise ValidationError(str(e))

    try:
        saved = loader.save(catalog)
    except OSError:
        logger.exception("Failed to save access catalog", extra={"admin_id": admin.user_id})
        raise ServiceUnavailableError("Connection access settings could not be saved")
    logger.info(
        "Connection access settings updated",
        extra={
            "admin_id": admin.user_id,
            "enabled_tiers": [t.id.value for t in saved.list_enabled_tiers()],
            "free_fallback": saved.free_access_fallback_enabled,
        },
    )
    return catalog_to_payload(saved)
