"""
Review prompt API routes.

- GET /api/reviews/pending: the caller's pending review placeholder, if any
- POST /api/reviews/{review_request_id}: answer it with a rating and comment

SECURITY: callers only ever see and answer their own placeholders.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace.api.schemas.reviews import (
    PendingReviewEnvelope,
    PendingReviewResponse,
    ReviewResponse,
    SubmitReviewRequest,
)
from marketplace.database.session import get_db_session
from marketplace.platform.auth import CurrentUser, require_user
from marketplace.platform.errors import ConflictError, NotFoundError
from marketplace.services.review_service import (
    ReviewAlreadySubmittedError,
    ReviewRequestNotFoundError,
    ReviewService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.get("/pending", response_model=PendingReviewEnvelope)
async def get_pending_review(
    db_session: Session = Depends(get_db_session),
    user: CurrentUser = Depends(require_user),
):
    pending = ReviewService(db_session).get_pending(user.user_id)
    if pending is None:
        return PendingReviewEnvelope(pending=None)
    return PendingReviewEnvelope(pending=PendingReviewResponse.model_validate(pending))


@router.post(
    "/{review_request_id}",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_review(
    review_request_id: str,
    body: SubmitReviewRequest,
    db_session: Session = Depends(get_db_session),
    user: CurrentUser = Depends(require_user),
):
    service = ReviewService(db_session)
    try:
        review = service.submit(
            user.user_id,
            review_request_id,
            rating=body.rating,
            comment=body.comment,
            user_name=user.name,
        )
    except ReviewRequestNotFoundError:
        raise NotFoundError("Review request", review_request_id)
    except ReviewAlreadySubmittedError:
        raise ConflictError("This review has already been submitted")
    return ReviewResponse.model_validate(review)
