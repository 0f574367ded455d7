"""
In-app notification service for provider inboxes.

Writes are idempotent per event: the same connection grant never produces
two inbox entries, even if its confirmation is replayed.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.entitlements.models import ConnectionRecord
from marketplace.models.notification import (
    Notification,
    NotificationEventType,
    NotificationStatus,
)

logger = logging.getLogger(__name__)


def connection_idempotency_key(record: ConnectionRecord) -> str:
    return f"connection:{record.record_id}:{record.granted_at.isoformat()}"


class NotificationService:
    """Create and query inbox notifications for one database session."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def notify_connection_created(
        self,
        record: ConnectionRecord,
        user_name: str,
        access_label: str,
    ) -> Optional[Notification]:
        """
        Add a "new connection" entry to the provider's inbox.

        Returns None when the entry already exists.
        """
        idempotency_key = connection_idempotency_key(record)
        existing = self.db.execute(
            select(Notification).where(Notification.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if existing is not None:
            return None

        notification = Notification(
            recipient_id=record.provider_id,
            event_type=NotificationEventType.CONNECTION_CREATED,
            title="New customer connection",
            message=f"{user_name} unlocked your contact details ({access_label}).",
            entity_type="connection",
            entity_id=record.record_id,
            idempotency_key=idempotency_key,
            status=NotificationStatus.UNREAD,
        )
        self.db.add(notification)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return None

        logger.info(
            "Connection notification created",
            extra={"recipient_id": record.provider_id, "record_id": record.record_id},
        )
        return notification

    def get_notifications(
        self,
        recipient_id: str,
        status: Optional[NotificationStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Notification], int]:
        stmt = select(Notification).where(Notification.recipient_id == recipient_id)
        count_stmt = select(func.count()).select_from(Notification).where(
            Notification.recipient_id == recipient_id
        )
        if status is not None:
            stmt = stmt.where(Notification.status == status)
            count_stmt = count_stmt.where(Notification.status == status)

        total = self.db.execute(count_stmt).scalar() or 0
        rows = self.db.execute(
            stmt.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
        ).scalars().all()
        return list(rows), total

    def get_unread_count(self, recipient_id: str) -> int:
        return self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.recipient_id == recipient_id)
            .where(Notification.status == NotificationStatus.UNREAD)
        ).scalar() or 0

    def mark_as_read(self, notification_id: str, recipient_id: str) -> bool:
        result = self.db.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .where(Notification.recipient_id == recipient_id)
            .values(status=NotificationStatus.READ, read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
