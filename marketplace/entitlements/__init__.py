"""
Time-boxed contact-unlock entitlements.

This package provides:
- AccessCatalogLoader: access tiers and free-fallback flags from JSON
- evaluate_access: pure (record, now) -> AccessState classification
- ConnectionEventBus: per-(user, provider) change notifications
- Error taxonomy shared by the payment flow and the HTTP layer

Database-backed pieces live in submodules and are imported directly:
- marketplace.entitlements.store.ConnectionStore
- marketplace.entitlements.review_trigger.ReviewSolicitationTrigger
- marketplace.entitlements.service.EntitlementService
"""

from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.errors import (
    ConfigUnavailableError,
    DuplicatePaymentError,
    EntitlementError,
    InvalidTierError,
    NotAuthenticatedError,
    PaymentCancelledError,
    PaymentFailedError,
    PaymentNotVerifiedError,
    WriteFailedError,
)
from marketplace.entitlements.evaluator import evaluate_access, format_remaining
from marketplace.entitlements.events import ConnectionEventBus
from marketplace.entitlements.models import (
    AccessCatalog,
    AccessState,
    AccessStatus,
    AccessTier,
    AccessTierId,
    ConnectOffer,
    ConnectionEvent,
    ConnectionRecord,
    OfferKind,
)

__all__ = [
    # Catalog
    "AccessCatalogLoader",
    "AccessCatalog",
    "AccessTier",
    "AccessTierId",
    "ConnectOffer",
    "OfferKind",
    # Evaluation
    "evaluate_access",
    "format_remaining",
    "AccessState",
    "AccessStatus",
    "ConnectionRecord",
    # Events
    "ConnectionEventBus",
    "ConnectionEvent",
    # Errors
    "EntitlementError",
    "ConfigUnavailableError",
    "NotAuthenticatedError",
    "InvalidTierError",
    "PaymentFailedError",
    "PaymentCancelledError",
    "PaymentNotVerifiedError",
    "DuplicatePaymentError",
    "WriteFailedError",
]
