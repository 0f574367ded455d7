from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Optional, Tuple

FREE_TIER_LABEL = "Free Access"
ADMIN_ACCESS_LABELS = {
    "oneTime": "One-Time",
    "sevenDays": "7 Days",
    "thirtyDays": "30 Days",
    "lifetime": "Lifetime",
    "free": "Free",
}


class AccessTierId(str, Enum):
    """Persisted tier identifiers."""

    ONE_TIME = "oneTime"
    SEVEN_DAYS = "sevenDays"
    THIRTY_DAYS = "thirtyDays"
    LIFETIME = "lifetime"
    FREE = "free"

    @property
    def admin_label(self) -> str:
        return ADMIN_ACCESS_LABELS[self.value]


PAID_TIER_IDS: Tuple[AccessTierId, ...] = (
    AccessTierId.ONE_TIME,
    AccessTierId.SEVEN_DAYS,
    AccessTierId.THIRTY_DAYS,
    AccessTierId.LIFETIME,
)
TIMED_PAID_TIER_IDS = frozenset(
    {AccessTierId.ONE_TIME, AccessTierId.SEVEN_DAYS, AccessTierId.THIRTY_DAYS}
)


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware")


@dataclass(frozen=True)
class AccessTier:
    """A purchasable (or free fallback) access option."""

    id: AccessTierId
    label: str
    price: Decimal
    enabled: bool = True
    duration_days: Optional[int] = None
    # Only the synthesized free tier is measured in minutes
    duration_minutes: Optional[int] = None

    def __post_init__(self) -> None:
        tier_id = AccessTierId(self.id)
        object.__setattr__(self, "id", tier_id)
        price = self.price if isinstance(self.price, Decimal) else Decimal(str(self.price))
        if not price.is_finite() or price < 0:
            raise ValueError(f"tier {tier_id.value} price must be a non-negative amount")
        object.__setattr__(self, "price", price)
        label = str(self.label).strip()
        if not label:
            raise ValueError(f"tier {tier_id.value} label is required")
        object.__setattr__(self, "label", label)

        if tier_id == AccessTierId.LIFETIME:
            # durationDays carries no meaning for lifetime access
            object.__setattr__(self, "duration_days", None)
            object.__setattr__(self, "duration_minutes", None)
        elif tier_id == AccessTierId.FREE:
            if price != 0:
                raise ValueError("free tier price must be zero")
            if not _is_positive_int(self.duration_minutes):
                raise ValueError("free tier duration_minutes must be a positive integer")
            object.__setattr__(self, "duration_days", None)
        else:
            if not _is_positive_int(self.duration_days):
                raise ValueError(f"tier {tier_id.value} duration_days must be a positive integer")
            object.__setattr__(self, "duration_minutes", None)

    @property
    def is_lifetime(self) -> bool:
        return self.id == AccessTierId.LIFETIME

    @property
    def is_free(self) -> bool:
        return self.id == AccessTierId.FREE

    @property
    def duration(self) -> Optional[timedelta]:
        if self.is_lifetime:
            return None
        if self.is_free:
            return timedelta(minutes=self.duration_minutes)
        return timedelta(days=self.duration_days)

    def expires_at_for(self, granted_at: datetime) -> Optional[datetime]:
        _require_aware(granted_at, "granted_at")
        duration = self.duration
        if duration is None:
            return None
        return granted_at + duration

    @property
    def amount_minor(self) -> int:
        """Price in paise, as the payment gateway expects."""
        return int((self.price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def to_dict(self) -> dict:
        d: dict = {
            "id": self.id.value,
            "label": self.label,
            "price": _price_to_json(self.price),
            "enabled": self.enabled,
        }
        if self.duration_days is not None:
            d["durationDays"] = self.duration_days
        if self.duration_minutes is not None:
            d["durationMinutes"] = self.duration_minutes
        return d


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _price_to_json(price: Decimal):
    if price == price.to_integral_value():
        return int(price)
    return float(price)


class OfferKind(str, Enum):
    PAID = "paid"
    FREE = "free"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ConnectOffer:
    """What the connect call-to-action leads to right now."""

    kind: OfferKind
    tiers: Tuple[AccessTier, ...] = ()
    message: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict = {"kind": self.kind.value, "tiers": [t.to_dict() for t in self.tiers]}
        if self.message:
            d["message"] = self.message
        return d


@dataclass(frozen=True)
class AccessCatalog:
    """Tier list plus the global free-fallback flags."""

    tiers: Tuple[AccessTier, ...]
    free_access_fallback_enabled: bool = True
    free_access_duration_minutes: int = 30
    disclaimer_email_content: str = ""
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        tiers = tuple(self.tiers)
        seen = set()
        for tier in tiers:
            if tier.id == AccessTierId.FREE:
                raise ValueError("the free tier is derived from the fallback flags, not listed")
            if tier.id in seen:
                raise ValueError(f"duplicate tier id: {tier.id.value}")
            seen.add(tier.id)
        object.__setattr__(self, "tiers", tiers)
        if not _is_positive_int(self.free_access_duration_minutes):
            raise ValueError("free_access_duration_minutes must be a positive integer")

    def list_enabled_tiers(self) -> list[AccessTier]:
        return [tier for tier in self.tiers if tier.enabled]

    @property
    def has_enabled_paid_tier(self) -> bool:
        return any(tier.enabled for tier in self.tiers)

    @property
    def free_tier(self) -> AccessTier:
        return AccessTier(
            id=AccessTierId.FREE,
            label=FREE_TIER_LABEL,
            price=Decimal("0"),
            enabled=self.free_grant_allowed,
            duration_minutes=self.free_access_duration_minutes,
        )

    @property
    def free_grant_allowed(self) -> bool:
        """Free access is only offered when no paid tier is."""
        return self.free_access_fallback_enabled and not self.has_enabled_paid_tier

    def get_tier(self, tier_id) -> Optional[AccessTier]:
        try:
            normalized = AccessTierId(tier_id)
        except ValueError:
            return None
        if normalized == AccessTierId.FREE:
            return self.free_tier
        for tier in self.tiers:
            if tier.id == normalized:
                return tier
        return None

    def resolve_offer(self) -> ConnectOffer:
        enabled = self.list_enabled_tiers()
        if enabled:
            return ConnectOffer(kind=OfferKind.PAID, tiers=tuple(enabled))
        if self.free_access_fallback_enabled:
            return ConnectOffer(kind=OfferKind.FREE, tiers=(self.free_tier,))
        return ConnectOffer(
            kind=OfferKind.UNAVAILABLE,
            message="This feature is not currently enabled. Please check back later.",
        )

    def to_dict(self) -> dict:
        d: dict = {
            "connectionAccessOptions": [t.to_dict() for t in self.tiers],
            "isFreeAccessFallbackEnabled": self.free_access_fallback_enabled,
            "freeAccessDurationMinutes": self.free_access_duration_minutes,
            "disclaimerEmailContent": self.disclaimer_email_content,
        }
        if self.updated_at is not None:
            d["updatedAt"] = self.updated_at.isoformat()
        return d


@dataclass(frozen=True)
class ConnectionRecord:
    """Snapshot of a stored entitlement for one (user, provider) pair."""

    user_id: str
    provider_id: str
    access_type: AccessTierId
    granted_at: datetime
    expires_at: Optional[datetime] = None
    payment_id: Optional[str] = None
    review_requested: bool = False

    def __post_init__(self) -> None:
        user_id = str(self.user_id).strip()
        provider_id = str(self.provider_id).strip()
        if not user_id:
            raise ValueError("user_id is required")
        if not provider_id:
            raise ValueError("provider_id is required")
        object.__setattr__(self, "user_id", user_id)
        object.__setattr__(self, "provider_id", provider_id)
        object.__setattr__(self, "access_type", AccessTierId(self.access_type))
        _require_aware(self.granted_at, "granted_at")
        if self.expires_at is not None:
            _require_aware(self.expires_at, "expires_at")
        if (self.expires_at is None) != (self.access_type == AccessTierId.LIFETIME):
            raise ValueError("expires_at is null if and only if access_type is lifetime")

    @property
    def record_id(self) -> str:
        return f"{self.user_id}_{self.provider_id}"

    @property
    def key(self) -> Tuple[str, str]:
        return (self.user_id, self.provider_id)

    def to_dict(self) -> dict:
        d: dict = {
            "userId": self.user_id,
            "providerId": self.provider_id,
            "accessType": self.access_type.value,
            "grantedAt": self.granted_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "reviewRequested": self.review_requested,
        }
        if self.payment_id:
            d["paymentId"] = self.payment_id
        return d


class AccessStatus(str, Enum):
    NO_ACCESS = "no_access"
    ACTIVE_LIFETIME = "active_lifetime"
    ACTIVE_TIMED = "active_timed"
    EXPIRED = "expired"


def format_remaining(remaining: timedelta) -> str:
    """Countdown label: '2d 5h left' from one day up, 'HH:MM:SS' below."""
    total_seconds = max(0, int(remaining.total_seconds()))
    days, rest = divmod(total_seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    if days > 0:
        return f"{days}d {hours}h left"
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class AccessState:
    """Evaluated access for a (user, provider) pair at an instant."""

    status: AccessStatus
    evaluated_at: datetime
    record: Optional[ConnectionRecord] = None
    remaining: Optional[timedelta] = None

    def __post_init__(self) -> None:
        if self.status == AccessStatus.ACTIVE_TIMED:
            if self.remaining is None or self.remaining <= timedelta(0):
                raise ValueError("ACTIVE_TIMED requires a positive remaining duration")
        elif self.remaining is not None:
            raise ValueError(f"{self.status.value} carries no remaining duration")
        if (self.record is None) != (self.status == AccessStatus.NO_ACCESS):
            raise ValueError("only NO_ACCESS has no record")

    @property
    def is_active(self) -> bool:
        return self.status in (AccessStatus.ACTIVE_LIFETIME, AccessStatus.ACTIVE_TIMED)

    @property
    def needs_review_trigger(self) -> bool:
        return (
            self.status == AccessStatus.EXPIRED
            and self.record is not None
            and not self.record.review_requested
        )

    def to_display(self) -> Dict[str, object]:
        display: Dict[str, object] = {
            "status": self.status.value,
            "badge": None,
            "remaining_seconds": None,
            "remaining_label": None,
            "call_to_action": None,
        }
        if self.status == AccessStatus.ACTIVE_LIFETIME:
            display["badge"] = "lifetime"
        elif self.status == AccessStatus.ACTIVE_TIMED:
            display["remaining_seconds"] = int(self.remaining.total_seconds())
            display["remaining_label"] = format_remaining(self.remaining)
        else:
            display["call_to_action"] = "connect"
        return display


@dataclass(frozen=True)
class ConnectionEvent:
    """A write to the entitlement store, as seen by subscribers."""

    kind: str
    user_id: str
    provider_id: str
    record: Optional[ConnectionRecord] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.user_id, self.provider_id)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "userId": self.user_id,
            "providerId": self.provider_id,
            "record": self.record.to_dict() if self.record else None,
            "occurredAt": self.occurred_at.isoformat(),
        }
