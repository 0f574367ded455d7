"""
Entitlement store: one connection record per (user, provider).

grant() overwrites whatever sits at the key, which restarts the access
period and clears review_requested. Grants are last-write-wins; each write
is independently valid because payment verification happens before it.

A payment id backs at most one record. Replaying the same payment id at the
same key returns the stored record unchanged; using it at another key raises
DuplicatePaymentError.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.entitlements.errors import (
    DuplicatePaymentError,
    InvalidTierError,
    NotAuthenticatedError,
    PaymentNotVerifiedError,
    WriteFailedError,
)
from marketplace.entitlements.events import (
    ConnectionEventBus,
    EVENT_DELETED,
    EVENT_GRANTED,
    EVENT_REVIEW_REQUESTED,
)
from marketplace.entitlements.models import (
    AccessCatalog,
    AccessTier,
    AccessTierId,
    ConnectionEvent,
    ConnectionRecord,
)
from marketplace.models.connection import UserProviderConnection

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionStore:
    """SQLAlchemy-backed entitlement store that emits change events."""

    def __init__(
        self,
        db_session: Session,
        event_bus: Optional[ConnectionEventBus] = None,
        clock: Clock = _utcnow,
    ):
        self.db = db_session
        self.event_bus = event_bus
        self._clock = clock

    # =========================================================================
    # Writes
    # =========================================================================

    def grant(
        self,
        user_id: Optional[str],
        provider_id: str,
        tier_id,
        payment_id: Optional[str] = None,
        *,
        catalog: AccessCatalog,
        amount_paid: Optional[Decimal] = None,
        granted_at: Optional[datetime] = None,
    ) -> ConnectionRecord:
        """
        Write a fresh entitlement for (user_id, provider_id).

        The tier is resolved against the live catalog at write time, so a tier
        disabled after the user picked it is refused here.

        Raises:
            NotAuthenticatedError: no user context
            InvalidTierError: tier unknown, disabled, or free grant not allowed
            PaymentNotVerifiedError: paid tier without a payment id
            DuplicatePaymentError: payment id already backs another record
            WriteFailedError: the database write failed
        """
        if not user_id or not str(user_id).strip():
            raise NotAuthenticatedError()
        if not provider_id or not str(provider_id).strip():
            raise ValueError("provider_id is required")

        tier = self._resolve_tier(catalog, tier_id)
        if tier.is_free:
            if payment_id:
                raise ValueError("free grants carry no payment id")
        elif not payment_id:
            raise PaymentNotVerifiedError(tier.id.value)

        if payment_id:
            replay = self._check_payment_reuse(payment_id, user_id, provider_id)
            if replay is not None:
                return replay

        now = granted_at or self._clock()
        expires_at = tier.expires_at_for(now)
        values = {
            "access_type": tier.id.value,
            "granted_at": now,
            "expires_at": expires_at,
            "payment_id": payment_id,
            "amount_paid": amount_paid if amount_paid is not None else tier.price,
            "review_requested": False,
        }

        try:
            try:
                self._write_row(user_id, provider_id, values)
            except IntegrityError:
                # Another session inserted this key after our read; overwrite it.
                self.db.rollback()
                logger.info(
                    "Concurrent first grant; overwriting",
                    extra={"user_id": user_id, "provider_id": provider_id, "payment_id": payment_id},
                )
                if payment_id:
                    replay = self._check_payment_reuse(payment_id, user_id, provider_id)
                    if replay is not None:
                        return replay
                self._write_row(user_id, provider_id, values)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise WriteFailedError(user_id, provider_id, payment_id=payment_id, cause=exc) from exc

        record = ConnectionRecord(
            user_id=user_id,
            provider_id=provider_id,
            access_type=tier.id,
            granted_at=now,
            expires_at=expires_at,
            payment_id=payment_id,
            review_requested=False,
        )

        logger.info(
            "Connection access granted",
            extra={
                "user_id": user_id,
                "provider_id": provider_id,
                "access_type": tier.id.value,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "payment_id": payment_id,
            },
        )
        self.publish_event(EVENT_GRANTED, user_id, provider_id, record)
        return record

    def mark_review_requested(self, user_id: str, provider_id: str) -> bool:
        """
        Set review_requested on the record. Idempotent.

        Returns True only if this call flipped the flag.
        """
        try:
            flipped = self.flag_review_requested(user_id, provider_id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise WriteFailedError(user_id, provider_id, cause=exc) from exc
        if flipped:
            self.publish_event(EVENT_REVIEW_REQUESTED, user_id, provider_id, self.read(user_id, provider_id))
        return flipped

    def flag_review_requested(
        self,
        user_id: str,
        provider_id: str,
        granted_at: Optional[datetime] = None,
    ) -> bool:
        """
        Conditional flag flip inside the caller's transaction (no commit).

        When granted_at is given, only that grant instance is flagged, so a
        re-grant that landed meanwhile keeps its fresh, unflagged state.
        """
        stmt = (
            update(UserProviderConnection)
            .where(UserProviderConnection.user_id == user_id)
            .where(UserProviderConnection.provider_id == provider_id)
            .where(UserProviderConnection.review_requested.is_(False))
        )
        if granted_at is not None:
            stmt = stmt.where(UserProviderConnection.granted_at == granted_at)
        result = self.db.execute(
            stmt.values(review_requested=True).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete(self, user_id: str, provider_id: str) -> bool:
        """Hard-delete a record (admin moderation only)."""
        try:
            result = self.db.execute(
                delete(UserProviderConnection)
                .where(UserProviderConnection.user_id == user_id)
                .where(UserProviderConnection.provider_id == provider_id)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise WriteFailedError(user_id, provider_id, cause=exc) from exc

        deleted = result.rowcount == 1
        if deleted:
            logger.info(
                "Connection record deleted",
                extra={"user_id": user_id, "provider_id": provider_id},
            )
            self.publish_event(EVENT_DELETED, user_id, provider_id, None)
        return deleted

    # =========================================================================
    # Reads
    # =========================================================================

    def read(self, user_id: str, provider_id: str) -> Optional[ConnectionRecord]:
        """Current record for the key, bypassing any stale identity-map copy."""
        row = self.db.get(
            UserProviderConnection,
            (user_id, provider_id),
            populate_existing=True,
        )
        if row is None:
            return None
        return row.to_record()

    def list_records(self, limit: Optional[int] = None, offset: int = 0) -> List[ConnectionRecord]:
        """All records, newest grant first."""
        stmt = select(UserProviderConnection).order_by(UserProviderConnection.granted_at.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [row.to_record() for row in self.db.execute(stmt).scalars().all()]

    def count_records(self) -> int:
        return self.db.execute(
            select(func.count()).select_from(UserProviderConnection)
        ).scalar_one()

    def find_by_payment_id(self, payment_id: str) -> Optional[ConnectionRecord]:
        row = self.db.execute(
            select(UserProviderConnection).where(UserProviderConnection.payment_id == payment_id)
        ).scalar_one_or_none()
        return row.to_record() if row else None

    # =========================================================================
    # Internals
    # =========================================================================

    def _write_row(self, user_id: str, provider_id: str, values: dict) -> None:
        row = self.db.get(
            UserProviderConnection,
            (user_id, provider_id),
            populate_existing=True,
        )
        if row is None:
            row = UserProviderConnection(user_id=user_id, provider_id=provider_id)
            self.db.add(row)
        for name, value in values.items():
            setattr(row, name, value)
        self.db.commit()

    @staticmethod
    def _resolve_tier(catalog: AccessCatalog, tier_id) -> AccessTier:
        raw_id = tier_id.id.value if isinstance(tier_id, AccessTier) else tier_id
        raw_id = raw_id.value if isinstance(raw_id, AccessTierId) else raw_id
        tier = catalog.get_tier(raw_id)
        if tier is None:
            raise InvalidTierError(str(raw_id), "unknown")
        if tier.is_free and not catalog.free_grant_allowed:
            raise InvalidTierError(tier.id.value, "not offered while paid access is available or the fallback is off")
        if not tier.enabled:
            raise InvalidTierError(tier.id.value, "disabled")
        return tier

    def _check_payment_reuse(
        self,
        payment_id: str,
        user_id: str,
        provider_id: str,
    ) -> Optional[ConnectionRecord]:
        existing = self.find_by_payment_id(payment_id)
        if existing is None:
            return None
        if existing.key != (user_id, provider_id):
            logger.warning(
                "Payment id reuse rejected",
                extra={
                    "payment_id": payment_id,
                    "existing_record_id": existing.record_id,
                    "user_id": user_id,
                    "provider_id": provider_id,
                },
            )
            raise DuplicatePaymentError(payment_id, existing.record_id)
        logger.info(
            "Payment already granted; returning existing record",
            extra={"payment_id": payment_id, "record_id": existing.record_id},
        )
        return existing

    def publish_event(
        self,
        kind: str,
        user_id: str,
        provider_id: str,
        record: Optional[ConnectionRecord],
    ) -> None:
        if self.event_bus is None:
            return
        self.event_bus.publish(
            ConnectionEvent(kind=kind, user_id=user_id, provider_id=provider_id, record=record)
        )
