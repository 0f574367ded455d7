"""
PaymentOrder model for hosted-checkout attempts.

Each "Proceed to Pay" click opens a gateway order and records it here, so the
confirmation callback is checked against what the server priced rather than
what the client claims.

Lifecycle:
- CREATED: order opened, checkout dialog shown
- CAPTURED: payment verified and entitlement granted
- FAILED: gateway reported a failure or verification failed
- CANCELLED: user closed the checkout dialog
- ABANDONED: superseded by a newer order for the same user and provider
"""

import enum
import uuid

from sqlalchemy import Column, String, Integer, Numeric, Text, Index, Enum as SAEnum

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class PaymentOrderStatus(str, enum.Enum):
    """Checkout attempt status."""
    CREATED = "created"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"


class PaymentOrder(Base, TimestampMixin):
    """A gateway order opened for one access tier purchase."""

    __tablename__ = "payment_orders"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    gateway_order_id = Column(String(255), nullable=False, unique=True)

    user_id = Column(String(255), nullable=False, index=True)
    provider_id = Column(String(255), nullable=False)
    tier_id = Column(String(32), nullable=False)

    amount = Column(Numeric(10, 2), nullable=False)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="INR")

    status = Column(
        SAEnum(
            PaymentOrderStatus,
            name="payment_order_status",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
        default=PaymentOrderStatus.CREATED,
    )
    payment_id = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_payment_orders_user_provider", "user_id", "provider_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentOrder(gateway_order_id={self.gateway_order_id}, tier_id={self.tier_id}, "
            f"status={self.status.value if self.status else None})>"
        )
