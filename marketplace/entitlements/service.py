"""
Connection access service: read → evaluate → (lazy) review trigger, and grants.

Every provider-page view goes through observe(). There is no background
timer; the first reader after expires_at runs the review trigger. Trigger
problems are logged and never change the state returned to the caller.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.errors import InvalidTierError
from marketplace.entitlements.evaluator import evaluate_access
from marketplace.entitlements.events import ConnectionEventBus
from marketplace.entitlements.models import (
    AccessState,
    AccessTier,
    AccessTierId,
    ConnectOffer,
    ConnectionRecord,
    OfferKind,
)
from marketplace.entitlements.review_trigger import (
    ReviewSolicitationPolicy,
    ReviewSolicitationTrigger,
    TriggerOutcome,
)
from marketplace.entitlements.store import ConnectionStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementService:
    """Per-request facade over the store, evaluator and review trigger."""

    def __init__(
        self,
        db_session: Session,
        catalog_loader: AccessCatalogLoader,
        event_bus: Optional[ConnectionEventBus] = None,
        policy: Optional[ReviewSolicitationPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.catalog_loader = catalog_loader
        self.clock = clock
        self.store = ConnectionStore(db_session, event_bus=event_bus, clock=clock)
        self.trigger = ReviewSolicitationTrigger(self.store, policy=policy)

    # =========================================================================
    # Catalog
    # =========================================================================

    def list_enabled_tiers(self) -> List[AccessTier]:
        return self.catalog_loader.list_enabled_tiers()

    def get_offer(self) -> ConnectOffer:
        return self.catalog_loader.get_catalog().resolve_offer()

    # =========================================================================
    # Observation
    # =========================================================================

    def observe(
        self,
        user_id: str,
        provider_id: str,
        now: Optional[datetime] = None,
    ) -> AccessState:
        state = evaluate_access(self.store.read(user_id, provider_id), now or self.clock())
        if state.needs_review_trigger:
            self._run_trigger(state.record)
        return state

    def _run_trigger(self, record: ConnectionRecord) -> Optional[TriggerOutcome]:
        try:
            outcome = self.trigger.on_expired(record)
        except Exception:
            logger.error(
                "Review trigger raised; access state unaffected",
                extra={"user_id": record.user_id, "provider_id": record.provider_id},
                exc_info=True,
            )
            return None
        if outcome == TriggerOutcome.FAILED:
            logger.error(
                "Review trigger failed; will retry on next observation",
                extra={"user_id": record.user_id, "provider_id": record.provider_id},
            )
        return outcome

    # =========================================================================
    # Grants
    # =========================================================================

    def grant_tier(
        self,
        user_id: Optional[str],
        provider_id: str,
        tier_id,
        payment_id: str,
        amount_paid: Optional[Decimal] = None,
    ) -> ConnectionRecord:
        """Grant a paid tier after payment verification succeeded."""
        catalog = self.catalog_loader.get_catalog()
        return self.store.grant(
            user_id,
            provider_id,
            tier_id,
            payment_id,
            catalog=catalog,
            amount_paid=amount_paid,
        )

    def grant_free(self, user_id: Optional[str], provider_id: str) -> ConnectionRecord:
        """Take the free-fallback path. Only legal when no paid tier is offered."""
        catalog = self.catalog_loader.get_catalog()
        offer = catalog.resolve_offer()
        if offer.kind != OfferKind.FREE:
            raise InvalidTierError(AccessTierId.FREE.value, "not currently offered")
        return self.store.grant(user_id, provider_id, AccessTierId.FREE, catalog=catalog)
