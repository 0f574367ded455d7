"""
Admin connections API routes.

- GET /api/admin/connections: every entitlement record with user and
  provider names resolved, newest grant first
- DELETE /api/admin/connections/{user_id}/{provider_id}: hard-delete a record

SECURITY: admin role required. Listing never triggers review prompts;
the status column is evaluated read-only.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.api.dependencies.services import get_entitlement_service
from marketplace.api.routes.connections import access_label_for
from marketplace.api.schemas.admin import (
    AdminConnectionListResponse,
    AdminConnectionResponse,
    DeleteConnectionResponse,
)
from marketplace.database.session import get_db_session
from marketplace.entitlements.evaluator import evaluate_access
from marketplace.entitlements.service import EntitlementService
from marketplace.models.provider import Provider
from marketplace.models.user import User
from marketplace.platform.auth import CurrentUser, require_admin
from marketplace.platform.errors import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/connections", tags=["admin"])

UNKNOWN_USER = "Unknown User"
UNKNOWN_PROVIDER = "Unknown Provider"


def _load_by_id(db_session: Session, model, ids) -> Dict[str, object]:
    if not ids:
        return {}
    rows = db_session.execute(select(model).where(model.id.in_(list(ids)))).scalars().all()
    return {row.id: row for row in rows}


@router.get("", response_model=AdminConnectionListResponse)
async def list_connections(
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db_session: Session = Depends(get_db_session),
    entitlements: EntitlementService = Depends(get_entitlement_service),
    admin: CurrentUser = Depends(require_admin),
):
    records = entitlements.store.list_records(limit=limit, offset=offset)
    users = _load_by_id(db_session, User, {r.user_id for r in records})
    providers = _load_by_id(db_session, Provider, {r.provider_id for r in records})
    now = entitlements.clock()

    connections = []
    for record in records:
        user = users.get(record.user_id)
        provider = providers.get(record.provider_id)
        state = evaluate_access(record, now)
        connections.append(
            AdminConnectionResponse(
                record_id=record.record_id,
                user_id=record.user_id,
                provider_id=record.provider_id,
                user_name=(user.display_name if user and user.display_name else UNKNOWN_USER),
                user_email=user.email if user else None,
                provider_name=(provider.full_name if provider and provider.full_name else UNKNOWN_PROVIDER),
                access_type=record.access_type.value,
                access_label=access_label_for(entitlements, record),
                granted_at=record.granted_at,
                expires_at=record.expires_at,
                payment_id=record.payment_id,
                review_requested=record.review_requested,
                status=state.status.value,
            )
        )
    return AdminConnectionListResponse(connections=connections, total=entitlements.store.count_records())


@router.delete("/{user_id}/{provider_id}", response_model=DeleteConnectionResponse)
async def delete_connection(
    user_id: str,
    provider_id: str,
    entitlements: EntitlementService = Depends(get_entitlement_service),
    admin: CurrentUser = Depends(require_admin),
):
    deleted = entitlements.store.delete(user_id, provider_id)
    if not deleted:
        raise NotFoundError("Connection", f"{user_id}_{provider_id}")
    logger.info(
        "Admin deleted connection",
        extra={"admin_id": admin.user_id, "user_id": user_id, "provider_id": provider_id},
    )
    return DeleteConnectionResponse(deleted=True)
