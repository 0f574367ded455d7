"""
Pydantic schemas for the connection access API.

Request and response models for tier listing, connect, checkout and access
state endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer


class AccessTierResponse(BaseModel):
    """A purchasable (or free) access option."""

    id: str = Field(..., description="Tier id: oneTime, sevenDays, thirtyDays, lifetime or free")
    label: str = Field(..., description="Display label")
    price: Decimal = Field(..., description="Price in INR")
    amount_minor: int = Field(..., description="Price in paise")
    duration_days: Optional[int] = Field(None, description="Access length in days (timed tiers)")
    duration_minutes: Optional[int] = Field(None, description="Access length in minutes (free tier)")
    enabled: bool = Field(..., description="Whether the tier is offered")

    @field_serializer("price")
    def serialize_price(self, price: Decimal) -> float:
        return float(price)


class ConnectOfferResponse(BaseModel):
    """What the connect button leads to."""

    kind: str = Field(..., description="paid, free or unavailable")
    tiers: List[AccessTierResponse] = Field(default_factory=list)
    message: Optional[str] = Field(None, description="Shown when the feature is unavailable")


class ProviderContactResponse(BaseModel):
    """Private contact details, only returned while access is active."""

    mobile_number: Optional[str] = None
    email: Optional[str] = None
    whatsapp_url: Optional[str] = None


class AccessStateResponse(BaseModel):
    """Evaluated access of the caller to one provider."""

    provider_id: str
    status: str = Field(..., description="no_access, active_lifetime, active_timed or expired")
    badge: Optional[str] = Field(None, description="'lifetime' for lifetime access")
    remaining_seconds: Optional[int] = None
    remaining_label: Optional[str] = Field(None, description="'2d 5h left' or 'HH:MM:SS'")
    call_to_action: Optional[str] = Field(None, description="'connect' when access is missing or expired")
    access_type: Optional[str] = None
    granted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    contact: Optional[ProviderContactResponse] = None


class ConnectResponse(BaseModel):
    """Outcome of clicking connect."""

    offer: ConnectOfferResponse
    access: Optional[AccessStateResponse] = Field(
        None, description="Present when access is already active or was granted for free"
    )


class CheckoutRequest(BaseModel):
    tier_id: str = Field(..., min_length=1, description="Selected tier id")


class CheckoutResponse(BaseModel):
    """Parameters for opening hosted checkout."""

    order_id: str
    amount: int = Field(..., description="Amount in paise")
    currency: str
    key_id: str = Field(..., description="Public gateway key id")
    tier: AccessTierResponse
    description: str


class ConfirmPaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class CancelCheckoutRequest(BaseModel):
    order_id: str = Field(..., min_length=1)


class PaymentFailureRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000, description="Gateway error description")


class ErrorDetail(BaseModel):
    code: str = Field(..., description="Machine-readable error code, e.g. PAYMENT_FAILED")
    message: str
    details: dict = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error envelope written by the error handler middleware."""

    error: ErrorDetail
