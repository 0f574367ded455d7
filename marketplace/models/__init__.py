"""
Database models for the marketplace connection flow.

Importing this package registers every table on Base.metadata.
"""

from marketplace.models.base import TimestampMixin, UTCDateTime, utcnow
from marketplace.models.user import User
from marketplace.models.provider import Provider
from marketplace.models.connection import UserProviderConnection
from marketplace.models.payment_order import PaymentOrder, PaymentOrderStatus
from marketplace.models.review_request import ReviewRequest, build_booking_ref
from marketplace.models.review import ProviderReview
from marketplace.models.notification import (
    Notification,
    NotificationEventType,
    NotificationStatus,
)

__all__ = [
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    "User",
    "Provider",
    "UserProviderConnection",
    "PaymentOrder",
    "PaymentOrderStatus",
    "ReviewRequest",
    "build_booking_ref",
    "ProviderReview",
    "Notification",
    "NotificationEventType",
    "NotificationStatus",
]
