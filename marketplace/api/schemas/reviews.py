"""Pydantic schemas for the review prompt and submission endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_COMMENT_LENGTH = 10
MAX_COMMENT_LENGTH = 1000


class PendingReviewResponse(BaseModel):
    """A pending review placeholder."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_ref: str
    provider_id: str
    service_name: str
    created_at: datetime


class PendingReviewEnvelope(BaseModel):
    pending: Optional[PendingReviewResponse] = None


class SubmitReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="Star rating 1..5")
    comment: str = Field(..., description="10 to 1000 characters")

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, v: str) -> str:
        v = v.strip()
        if len(v) < MIN_COMMENT_LENGTH:
            raise ValueError(f"Comment must be at least {MIN_COMMENT_LENGTH} characters.")
        if len(v) > MAX_COMMENT_LENGTH:
            raise ValueError(f"Comment must be at most {MAX_COMMENT_LENGTH} characters.")
        return v


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_id: str
    user_name: str
    rating: int
    comment: str
    status: str
    created_at: datetime
