"""
In-app notification model.

Backs the provider's inbox. Rows are written best-effort after a connection
is granted; a missing row never affects the connection itself.
"""

import enum
import uuid

from sqlalchemy import Column, String, Text, Index, Enum as SAEnum

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin, UTCDateTime


class NotificationEventType(str, enum.Enum):
    """What produced the notification."""
    CONNECTION_CREATED = "connection_created"


class NotificationStatus(str, enum.Enum):
    UNREAD = "unread"
    READ = "read"


class Notification(Base, TimestampMixin):
    """A single inbox entry for a recipient (provider or user id)."""

    __tablename__ = "notifications"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_id = Column(String(255), nullable=False)

    event_type = Column(
        SAEnum(
            NotificationEventType,
            name="notification_event_type",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
    )
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(512), nullable=True)

    entity_type = Column(String(64), nullable=True)
    entity_id = Column(String(255), nullable=True)

    # Same event never notifies twice (e.g. a replayed payment confirmation)
    idempotency_key = Column(String(255), nullable=True, unique=True)

    status = Column(
        SAEnum(
            NotificationStatus,
            name="notification_status",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
        default=NotificationStatus.UNREAD,
    )
    read_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_notifications_recipient_status", "recipient_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, recipient_id={self.recipient_id}, "
            f"event_type={self.event_type.value if self.event_type else None})>"
        )
