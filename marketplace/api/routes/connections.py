"""
Connection access API routes.

Provides endpoints for:
- Listing enabled access tiers and the current connect offer
- Reading the caller's access state for a provider (runs lazy expiry)
- Connecting (free fallback grant, or the paid tier selection)
- Hosted checkout: start, confirm, cancel, report failure

SECURITY:
- Writes require a signed-in user; NotAuthenticated carries a sign-in URL
  that returns the user to the provider page
- Contact details are only returned while access is active
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from marketplace.api.dependencies.services import (
    get_checkout_service,
    get_connection_notifier,
    get_entitlement_service,
)
from marketplace.api.schemas.connections import (
    AccessStateResponse,
    AccessTierResponse,
    CancelCheckoutRequest,
    CheckoutRequest,
    CheckoutResponse,
    ConfirmPaymentRequest,
    ConnectOfferResponse,
    ConnectResponse,
    ErrorResponse,
    PaymentFailureRequest,
    ProviderContactResponse,
)
from marketplace.database.session import get_db_session
from marketplace.entitlements.errors import ConfigUnavailableError, NotAuthenticatedError
from marketplace.entitlements.evaluator import evaluate_access
from marketplace.entitlements.models import (
    AccessState,
    AccessTier,
    ConnectOffer,
    ConnectionRecord,
    OfferKind,
)
from marketplace.entitlements.service import EntitlementService
from marketplace.models.provider import Provider
from marketplace.platform.auth import CurrentUser, get_optional_user, require_user
from marketplace.platform.errors import NotFoundError
from marketplace.services.connection_checkout_service import ConnectionCheckoutService
from marketplace.services.connection_notifier import ConnectionNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/connections", tags=["connections"])


# =============================================================================
# Response builders
# =============================================================================

def tier_to_response(tier: AccessTier) -> AccessTierResponse:
    return AccessTierResponse(
        id=tier.id.value,
        label=tier.label,
        price=tier.price,
        amount_minor=tier.amount_minor,
        duration_days=tier.duration_days,
        duration_minutes=tier.duration_minutes,
        enabled=tier.enabled,
    )


def offer_to_response(offer: ConnectOffer) -> ConnectOfferResponse:
    return ConnectOfferResponse(
        kind=offer.kind.value,
        tiers=[tier_to_response(t) for t in offer.tiers],
        message=offer.message,
    )


def build_access_response(
    state: AccessState,
    provider_id: str,
    provider: Optional[Provider] = None,
) -> AccessStateResponse:
    display = state.to_display()
    record = state.record
    contact = None
    if state.is_active and provider is not None:
        whatsapp = provider.whatsapp_number
        contact = ProviderContactResponse(
            mobile_number=provider.mobile_number,
            email=provider.email,
            whatsapp_url=f"https://wa.me/{whatsapp}" if whatsapp else None,
        )
    return AccessStateResponse(
        provider_id=provider_id,
        status=display["status"],
        badge=display["badge"],
        remaining_seconds=display["remaining_seconds"],
        remaining_label=display["remaining_label"],
        call_to_action=display["call_to_action"],
        access_type=record.access_type.value if record else None,
        granted_at=record.granted_at if record else None,
        expires_at=record.expires_at if record else None,
        contact=contact,
    )


def access_label_for(entitlements: EntitlementService, record: ConnectionRecord) -> str:
    try:
        tier = entitlements.catalog_loader.get_catalog().get_tier(record.access_type)
    except ConfigUnavailableError:
        tier = None
    return tier.label if tier else record.access_type.admin_label


def schedule_connection_notifications(
    background_tasks: BackgroundTasks,
    notifier: ConnectionNotifier,
    entitlements: EntitlementService,
    record: ConnectionRecord,
) -> None:
    try:
        disclaimer = entitlements.catalog_loader.get_catalog().disclaimer_email_content
    except ConfigUnavailableError:
        disclaimer = ""
    background_tasks.add_task(
        notifier.notify,
        record,
        access_label_for(entitlements, record),
        disclaimer,
    )


def provider_page_intent(provider_id: str) -> str:
    """Where sign-in sends the user back to: the provider page, connect resumed."""
    return f"/provider/{provider_id}?connect=true"


def require_connecting_user(provider_id: str, request: Request) -> CurrentUser:
    try:
        return require_user(request)
    except NotAuthenticatedError:
        raise NotAuthenticatedError(intent=provider_page_intent(provider_id))


def _get_provider(db_session: Session, provider_id: str) -> Provider:
    provider = db_session.get(Provider, provider_id)
    if provider is None:
        raise NotFoundError("Provider", provider_id)
    return provider


# =============================================================================
# Catalog
# =============================================================================

@router.get("/tiers", response_model=list[AccessTierResponse])
async def list_tiers(entitlements: EntitlementService = Depends(get_entitlement_service)):
    """Enabled paid tiers, in catalog order."""
    return [tier_to_response(t) for t in entitlements.list_enabled_tiers()]


@router.get("/offer", response_model=ConnectOfferResponse)
async def get_offer(entitlements: EntitlementService = Depends(get_entitlement_service)):
    return offer_to_response(entitlements.get_offer())


# =============================================================================
# Access state
# =============================================================================

@router.get("/{provider_id}", response_model=AccessStateResponse)
async def get_access_state(
    provider_id: str,
    db_session: Session = Depends(get_db_session),
    entitlements: EntitlementService = Depends(get_entitlement_service),
    user: Optional[CurrentUser] = Depends(get_optional_user),
):
    """
    Caller's access to a provider's contact details.

    Anonymous callers always see NO_ACCESS. Observing an expired record may
    create a review prompt as a side effect.
    """
    provider = _get_provider(db_session, provider_id)
    if user is None:
        state = evaluate_access(None, entitlements.clock())
    else:
        state = entitlements.observe(user.user_id, provider_id)
    return build_access_response(state, provider_id, provider)


@router.post("/{provider_id}/connect", response_model=ConnectResponse)
async def connect(
    provider_id: str,
    background_tasks: BackgroundTasks,
    db_session: Session = Depends(get_db_session),
    entitlements: EntitlementService = Depends(get_entitlement_service),
    notifier: ConnectionNotifier = Depends(get_connection_notifier),
    user: CurrentUser = Depends(require_connecting_user),
):
    """
    Connect button.

    - Access already active: returns it, nothing is granted
    - Paid tiers enabled: returns them for selection
    - Only the free fallback: grants free access right away
    - Nothing enabled: returns an unavailable offer
    """
    provider = _get_provider(db_session, provider_id)

    current = entitlements.observe(user.user_id, provider_id)
    offer = entitlements.get_offer()
    if current.is_active:
        return ConnectResponse(
            offer=offer_to_response(offer),
            access=build_access_response(current, provider_id, provider),
        )

    if offer.kind != OfferKind.FREE:
        return ConnectResponse(offer=offer_to_response(offer))

    record = entitlements.grant_free(user.user_id, provider_id)
    schedule_connection_notifications(background_tasks, notifier, entitlements, record)

    state = evaluate_access(record, entitlements.clock())
    return ConnectResponse(
        offer=offer_to_response(offer),
        access=build_access_response(state, provider_id, provider),
    )


# =============================================================================
# Checkout
# =============================================================================

@router.post("/{provider_id}/checkout", response_model=CheckoutResponse)
async def start_checkout(
    provider_id: str,
    body: CheckoutRequest,
    db_session: Session = Depends(get_db_session),
    checkout: ConnectionCheckoutService = Depends(get_checkout_service),
    user: CurrentUser = Depends(require_connecting_user),
):
    provider = _get_provider(db_session, provider_id)
    session = await checkout.start_checkout(user.user_id, provider_id, body.tier_id)
    return CheckoutResponse(
        order_id=session.order_id,
        amount=session.amount_minor,
        currency=session.currency,
        key_id=session.key_id,
        tier=tier_to_response(session.tier),
        description=f"Access to {provider.full_name} - {session.tier.label}",
    )


@router.post("/{provider_id}/checkout/confirm", response_model=AccessStateResponse)
async def confirm_checkout(
    provider_id: str,
    body: ConfirmPaymentRequest,
    background_tasks: BackgroundTasks,
    db_session: Session = Depends(get_db_session),
    checkout: ConnectionCheckoutService = Depends(get_checkout_service),
    entitlements: EntitlementService = Depends(get_entitlement_service),
    notifier: ConnectionNotifier = Depends(get_connection_notifier),
    user: CurrentUser = Depends(require_connecting_user),
):
    """Verify the Checkout completion and unlock the provider."""
    provider = _get_provider(db_session, provider_id)
    record = await checkout.confirm_payment(
        user.user_id,
        provider_id,
        body.order_id,
        body.payment_id,
        body.signature,
    )
    schedule_connection_notifications(background_tasks, notifier, entitlements, record)
    state = evaluate_access(record, entitlements.clock())
    return build_access_response(state, provider_id, provider)


@router.post("/{provider_id}/checkout/cancel", response_model=ConnectOfferResponse)
async def cancel_checkout(
    provider_id: str,
    body: CancelCheckoutRequest,
    checkout: ConnectionCheckoutService = Depends(get_checkout_service),
    user: CurrentUser = Depends(require_connecting_user),
):
    """User closed the checkout dialog: no error, back to tier selection."""
    offer = checkout.cancel_checkout(user.user_id, provider_id, body.order_id)
    return offer_to_response(offer)


@router.post(
    "/{provider_id}/checkout/failure",
    status_code=402,
    responses={402: {"model": ErrorResponse, "description": "Payment failed; the reason is in the error message"}},
)
async def report_checkout_failure(
    provider_id: str,
    body: PaymentFailureRequest,
    checkout: ConnectionCheckoutService = Depends(get_checkout_service),
    user: CurrentUser = Depends(require_connecting_user),
):
    """Gateway reported a failed payment; responds 402 with the reason."""
    raise checkout.record_payment_failure(user.user_id, provider_id, body.order_id, body.reason)
