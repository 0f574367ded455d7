"""
Pydantic schemas for the admin back-office endpoints.

Covers the connections list and the connection access settings editor.
Settings use the same camelCase keys as the stored catalog file.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator


class AdminConnectionResponse(BaseModel):
    """One entitlement record, enriched for the admin table."""

    record_id: str
    user_id: str
    provider_id: str
    user_name: str
    user_email: Optional[str] = None
    provider_name: str
    access_type: str
    access_label: str
    granted_at: datetime
    expires_at: Optional[datetime] = None
    payment_id: Optional[str] = None
    review_requested: bool
    status: str


class AdminConnectionListResponse(BaseModel):
    connections: List[AdminConnectionResponse]
    total: int = Field(..., description="All connection records, regardless of paging")


class DeleteConnectionResponse(BaseModel):
    deleted: bool


class AccessTierPayload(BaseModel):
    """A tier row in the settings editor (the free tier is not listed)."""

    model_config = ConfigDict(populate_by_name=True)

    id: Literal["oneTime", "sevenDays", "thirtyDays", "lifetime"]
    label: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0, description="Price must be non-negative.")
    duration_days: Optional[int] = Field(None, alias="durationDays")
    enabled: bool

    @field_serializer("price")
    def serialize_price(self, price: Decimal) -> float:
        return float(price)

    @model_validator(mode="after")
    def check_duration(self) -> "AccessTierPayload":
        if self.id == "lifetime":
            self.duration_days = None
        elif self.duration_days is None or self.duration_days < 1:
            raise ValueError(f"{self.id}: duration must be a positive number of days.")
        return self


class AccessSettingsPayload(BaseModel):
    """Full replacement of the connection access settings."""

    model_config = ConfigDict(populate_by_name=True)

    connection_access_options: List[AccessTierPayload] = Field(..., alias="connectionAccessOptions")
    is_free_access_fallback_enabled: bool = Field(False, alias="isFreeAccessFallbackEnabled")
    free_access_duration_minutes: int = Field(
        ..., ge=1, alias="freeAccessDurationMinutes", description="Duration must be at least 1 minute."
    )
    disclaimer_email_content: str = Field(..., alias="disclaimerEmailContent")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator("disclaimer_email_content")
    @classmethod
    def validate_disclaimer(cls, v: str) -> str:
        if len(v.strip()) < 20:
            raise ValueError("Disclaimer content is too short.")
        return v

    @field_validator("connection_access_options")
    @classmethod
    def validate_unique_ids(cls, v: List[AccessTierPayload]) -> List[AccessTierPayload]:
        ids = [tier.id for tier in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Each access tier may appear only once.")
        return v
