"""
UserProviderConnection model: the persisted contact-unlock entitlement.

One row per (user_id, provider_id). A repurchase overwrites the row in place,
so the composite primary key doubles as the entitlement key.

Lifecycle:
1. Row written after payment verification (or an allowed free grant)
2. Read on every provider page view; expiry is computed at read time
3. review_requested flips to true once, when expiry is first observed
4. Never deleted by the customer flow; admins may hard-delete for moderation
"""

from sqlalchemy import Column, String, Boolean, Numeric, Index

from marketplace.db_base import Base
from marketplace.entitlements.models import AccessTierId, ConnectionRecord
from marketplace.models.base import UTCDateTime


class UserProviderConnection(Base):
    """Time-boxed access of one user to one provider's contact details."""

    __tablename__ = "user_provider_connections"

    user_id = Column(String(255), primary_key=True)
    provider_id = Column(String(255), primary_key=True)

    access_type = Column(String(32), nullable=False)
    granted_at = Column(UTCDateTime, nullable=False)
    # NULL only for lifetime access
    expires_at = Column(UTCDateTime, nullable=True)

    # Gateway payment reference; absent for free grants. One payment backs one grant.
    payment_id = Column(String(255), nullable=True, unique=True)
    amount_paid = Column(Numeric(10, 2), nullable=True)

    review_requested = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_user_provider_connections_granted_at", "granted_at"),
        Index("ix_user_provider_connections_expires_at", "expires_at"),
    )

    @property
    def record_id(self) -> str:
        return f"{self.user_id}_{self.provider_id}"

    def to_record(self) -> ConnectionRecord:
        return ConnectionRecord(
            user_id=self.user_id,
            provider_id=self.provider_id,
            access_type=AccessTierId(self.access_type),
            granted_at=self.granted_at,
            expires_at=self.expires_at,
            payment_id=self.payment_id,
            review_requested=bool(self.review_requested),
        )

    def __repr__(self) -> str:
        return (
            f"<UserProviderConnection(user_id={self.user_id}, provider_id={self.provider_id}, "
            f"access_type={self.access_type}, expires_at={self.expires_at})>"
        )
