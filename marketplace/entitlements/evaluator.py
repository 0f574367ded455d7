"""
Access evaluation for stored connection records.

evaluate_access is a pure function of (record, now). Expiry is lazy: nothing
runs when a record's time passes, the next reader simply sees EXPIRED.

    NO_ACCESS --grant(lifetime)--> ACTIVE_LIFETIME
    NO_ACCESS --grant(timed)-----> ACTIVE_TIMED --time passes--> EXPIRED
    EXPIRED   --grant-----------> ACTIVE_TIMED | ACTIVE_LIFETIME
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .models import AccessState, AccessStatus, ConnectionRecord, format_remaining

__all__ = ["evaluate_access", "format_remaining"]


def evaluate_access(
    record: Optional[ConnectionRecord],
    now: Optional[datetime] = None,
) -> AccessState:
    """Classify a record as exactly one of the four access states."""
    compare_at = now or datetime.now(timezone.utc)
    if compare_at.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    if record is None:
        return AccessState(status=AccessStatus.NO_ACCESS, evaluated_at=compare_at)

    if record.expires_at is None:
        return AccessState(
            status=AccessStatus.ACTIVE_LIFETIME,
            evaluated_at=compare_at,
            record=record,
        )

    if record.expires_at > compare_at:
        return AccessState(
            status=AccessStatus.ACTIVE_TIMED,
            evaluated_at=compare_at,
            record=record,
            remaining=record.expires_at - compare_at,
        )

    return AccessState(status=AccessStatus.EXPIRED, evaluated_at=compare_at, record=record)
