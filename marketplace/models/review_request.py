"""
ReviewRequest model: the pending-review placeholder.

Shaped like a minimal completed booking so the existing review prompt can
pick it up. A user has at most one pending (unreviewed) placeholder at a time;
the partial unique index enforces that even when two expiries are observed
concurrently.
"""

import uuid

from sqlalchemy import Column, String, Boolean, Index, text

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin, UTCDateTime

PROVIDER_REVIEW_SERVICE_ID = "provider_review"


def build_booking_ref(provider_id: str, user_id: str) -> str:
    return f"REVIEW-{provider_id[:5]}-{user_id[:5]}"


class ReviewRequest(Base, TimestampMixin):
    """Prompts a user to rate a provider after their access lapsed."""

    __tablename__ = "review_requests"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_ref = Column(String(64), nullable=False)

    user_id = Column(String(255), nullable=False, index=True)
    provider_id = Column(String(255), nullable=False, index=True)

    customer_name = Column(String(255), nullable=False, default="Valued Customer")
    customer_email = Column(String(255), nullable=False, default="")
    customer_phone = Column(String(32), nullable=False, default="")

    service_id = Column(String(64), nullable=False, default=PROVIDER_REVIEW_SERVICE_ID)
    service_name = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default="Completed")

    is_reviewed_by_customer = Column(Boolean, nullable=False, default=False)
    reviewed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_review_requests_one_pending_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_reviewed_by_customer = 0"),
            postgresql_where=text("NOT is_reviewed_by_customer"),
        ),
    )

    @property
    def is_pending(self) -> bool:
        return not self.is_reviewed_by_customer

    def __repr__(self) -> str:
        return (
            f"<ReviewRequest(id={self.id}, user_id={self.user_id}, "
            f"provider_id={self.provider_id}, pending={self.is_pending})>"
        )
