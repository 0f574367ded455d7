"""
Provider inbox API routes.

Provides endpoints for:
- Listing inbox notifications (new connections, reviews)
- Getting unread count
- Marking a notification as read

SECURITY:
- All routes require a signed-in caller
- Callers only ever see notifications addressed to their own id
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.api.schemas.notifications import (
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from marketplace.database.session import get_db_session
from marketplace.models.notification import Notification, NotificationStatus
from marketplace.platform.auth import CurrentUser, require_user
from marketplace.platform.errors import NotFoundError, ValidationError
from marketplace.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _notification_to_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        event_type=notification.event_type.value if notification.event_type else "",
        title=notification.title,
        message=notification.message,
        action_url=notification.action_url,
        entity_type=notification.entity_type,
        entity_id=notification.entity_id,
        status=notification.status.value if notification.status else "",
        created_at=notification.created_at,
        read_at=notification.read_at,
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    status_filter: Optional[str] = Query(None, alias="status", description="unread or read"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db_session: Session = Depends(get_db_session),
    user: CurrentUser = Depends(require_user),
):
    """Inbox for the caller, newest first."""
    parsed_status = None
    if status_filter:
        try:
            parsed_status = NotificationStatus(status_filter)
        except ValueError:
            raise ValidationError(f"Invalid status: {status_filter}")

    service = NotificationService(db_session)
    notifications, total = service.get_notifications(
        user.user_id,
        status=parsed_status,
        limit=limit,
        offset=offset,
    )
    return NotificationListResponse(
        notifications=[_notification_to_response(n) for n in notifications],
        total=total,
        unread_count=service.get_unread_count(user.user_id),
    )


@router.get("/unread/count", response_model=UnreadCountResponse)
async def get_unread_count(
    db_session: Session = Depends(get_db_session),
    user: CurrentUser = Depends(require_user),
):
    return UnreadCountResponse(count=NotificationService(db_session).get_unread_count(user.user_id))


@router.patch("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_as_read(
    notification_id: str,
    db_session: Session = Depends(get_db_session),
    user: CurrentUser = Depends(require_user),
):
    """Only notifications addressed to the caller can be marked."""
    if not NotificationService(db_session).mark_as_read(notification_id, user.user_id):
        raise NotFoundError("Notification", notification_id)
    db_session.commit()
    return MarkReadResponse(success=True)
