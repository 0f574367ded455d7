"""
ProviderReview model: a customer's rating of a provider.

Written when the customer answers a pending review placeholder. Reviews from
this path are published straight away (status Approved).
"""

import uuid

from sqlalchemy import Column, String, Integer, Text, CheckConstraint

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin

REVIEW_STATUS_APPROVED = "Approved"


class ProviderReview(Base, TimestampMixin):
    """A 1..5 star rating with a short comment."""

    __tablename__ = "provider_reviews"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    review_request_id = Column(String(255), nullable=True, unique=True)

    user_name = Column(String(255), nullable=False, default="Anonymous")
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default=REVIEW_STATUS_APPROVED)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_provider_reviews_rating_range"),
    )

    def __repr__(self) -> str:
        return f"<ProviderReview(id={self.id}, provider_id={self.provider_id}, rating={self.rating})>"
