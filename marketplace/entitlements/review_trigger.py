"""
Review solicitation on first-observed expiry.

When a reader sees a record in EXPIRED with review_requested == False, the
trigger asks the user for a review of that provider, unless the user already
has a pending review placeholder for any provider. A user never has more than
one pending placeholder.

Behaviour when a placeholder is already pending elsewhere is governed by
ReviewSolicitationPolicy.mark_when_pending_elsewhere:
- False (default): leave review_requested unset. Later observations retry,
  and the prompt for this provider appears once the other one is answered.
- True: set review_requested anyway; this grant instance is never prompted.

Creating the placeholder and flipping the flag commit together. Failures are
logged and reported as TriggerOutcome.FAILED; they never reach the read path.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from marketplace.entitlements.events import EVENT_REVIEW_REQUESTED
from marketplace.entitlements.models import ConnectionRecord
from marketplace.entitlements.store import ConnectionStore
from marketplace.models.provider import Provider
from marketplace.models.review_request import ReviewRequest, build_booking_ref
from marketplace.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_NAME = "Valued Customer"
DEFAULT_PROVIDER_NAME = "Provider"


class TriggerOutcome(str, Enum):
    PLACEHOLDER_CREATED = "placeholder_created"
    PENDING_ELSEWHERE = "pending_elsewhere"
    ALREADY_REQUESTED = "already_requested"
    FAILED = "failed"


@dataclass(frozen=True)
class ReviewSolicitationPolicy:
    mark_when_pending_elsewhere: bool = False


class ReviewSolicitationTrigger:
    """Creates at most one pending review placeholder per user."""

    def __init__(
        self,
        store: ConnectionStore,
        policy: Optional[ReviewSolicitationPolicy] = None,
    ):
        self.store = store
        self.db = store.db
        self.policy = policy or ReviewSolicitationPolicy()

    def on_expired(self, record: ConnectionRecord) -> TriggerOutcome:
        if record.review_requested:
            return TriggerOutcome.ALREADY_REQUESTED

        try:
            if self.has_pending_placeholder(record.user_id):
                return self._pending_elsewhere(record)
            return self._create_placeholder(record)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Review solicitation failed",
                extra={"user_id": record.user_id, "provider_id": record.provider_id},
                exc_info=True,
            )
            return TriggerOutcome.FAILED

    def has_pending_placeholder(self, user_id: str) -> bool:
        """Existence check against current rows, across all providers."""
        stmt = (
            select(ReviewRequest.id)
            .where(ReviewRequest.user_id == user_id)
            .where(ReviewRequest.is_reviewed_by_customer.is_(False))
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    def _create_placeholder(self, record: ConnectionRecord) -> TriggerOutcome:
        # The conditional flip decides which concurrent reader owns this grant
        if not self.store.flag_review_requested(
            record.user_id, record.provider_id, granted_at=record.granted_at
        ):
            self.db.rollback()
            return TriggerOutcome.ALREADY_REQUESTED

        self.db.add(self._build_placeholder(record))
        try:
            self.db.commit()
        except IntegrityError:
            # Another provider's placeholder for this user won the race
            self.db.rollback()
            return self._pending_elsewhere(record)

        logger.info(
            "Review placeholder created",
            extra={
                "user_id": record.user_id,
                "provider_id": record.provider_id,
                "record_id": record.record_id,
            },
        )
        self.store.publish_event(
            EVENT_REVIEW_REQUESTED,
            record.user_id,
            record.provider_id,
            self.store.read(record.user_id, record.provider_id),
        )
        return TriggerOutcome.PLACEHOLDER_CREATED

    def _pending_elsewhere(self, record: ConnectionRecord) -> TriggerOutcome:
        if self.policy.mark_when_pending_elsewhere:
            flipped = self.store.flag_review_requested(
                record.user_id, record.provider_id, granted_at=record.granted_at
            )
            self.db.commit()
            if flipped:
                self.store.publish_event(
                    EVENT_REVIEW_REQUESTED,
                    record.user_id,
                    record.provider_id,
                    self.store.read(record.user_id, record.provider_id),
                )
        logger.info(
            "Review already pending for user; no new placeholder",
            extra={
                "user_id": record.user_id,
                "provider_id": record.provider_id,
                "flag_set": self.policy.mark_when_pending_elsewhere,
            },
        )
        return TriggerOutcome.PENDING_ELSEWHERE

    def _build_placeholder(self, record: ConnectionRecord) -> ReviewRequest:
        user = self.db.get(User, record.user_id)
        provider = self.db.get(Provider, record.provider_id)
        provider_name = (provider.full_name if provider else None) or DEFAULT_PROVIDER_NAME
        return ReviewRequest(
            booking_ref=build_booking_ref(record.provider_id, record.user_id),
            user_id=record.user_id,
            provider_id=record.provider_id,
            customer_name=(user.display_name if user else None) or DEFAULT_CUSTOMER_NAME,
            customer_email=(user.email if user else None) or "",
            customer_phone=(user.mobile_number if user else None) or "",
            service_name=f"Interaction with {provider_name}",
            is_reviewed_by_customer=False,
        )
