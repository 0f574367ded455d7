"""
Review prompt service.

Answers the pending review placeholder a lapsed connection created. Once
answered, the placeholder stops being pending, which unblocks review prompts
for the user's other expired connections.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from marketplace.models.review import ProviderReview, REVIEW_STATUS_APPROVED
from marketplace.models.review_request import ReviewRequest

logger = logging.getLogger(__name__)


class ReviewServiceError(Exception):
    """Base class for review service errors."""


class ReviewRequestNotFoundError(ReviewServiceError):
    """Placeholder missing or not owned by the caller."""


class ReviewAlreadySubmittedError(ReviewServiceError):
    """Placeholder was already answered."""


class ReviewService:
    """Pending review lookup and submission."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_pending(self, user_id: str) -> Optional[ReviewRequest]:
        return self.db.execute(
            select(ReviewRequest)
            .where(ReviewRequest.user_id == user_id)
            .where(ReviewRequest.is_reviewed_by_customer.is_(False))
            .order_by(ReviewRequest.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def submit(
        self,
        user_id: str,
        review_request_id: str,
        rating: int,
        comment: str,
        user_name: Optional[str] = None,
    ) -> ProviderReview:
        """
        Record the review and close the placeholder in one transaction.

        Raises:
            ReviewRequestNotFoundError: unknown id, or another user's placeholder
            ReviewAlreadySubmittedError: placeholder already answered
        """
        if not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")

        placeholder = self.db.get(ReviewRequest, review_request_id, populate_existing=True)
        if placeholder is None or placeholder.user_id != user_id:
            raise ReviewRequestNotFoundError(review_request_id)
        if placeholder.is_reviewed_by_customer:
            raise ReviewAlreadySubmittedError(review_request_id)

        now = datetime.now(timezone.utc)
        # Guarded flip so two concurrent submissions cannot both succeed
        result = self.db.execute(
            update(ReviewRequest)
            .where(ReviewRequest.id == review_request_id)
            .where(ReviewRequest.is_reviewed_by_customer.is_(False))
            .values(is_reviewed_by_customer=True, reviewed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ReviewAlreadySubmittedError(review_request_id)

        review = ProviderReview(
            provider_id=placeholder.provider_id,
            user_id=user_id,
            review_request_id=review_request_id,
            user_name=user_name or placeholder.customer_name or "Anonymous",
            rating=rating,
            comment=comment,
            status=REVIEW_STATUS_APPROVED,
        )
        self.db.add(review)
        self.db.commit()

        logger.info(
            "Provider review submitted",
            extra={
                "user_id": user_id,
                "provider_id": placeholder.provider_id,
                "review_request_id": review_request_id,
                "rating": rating,
            },
        )
        return review
