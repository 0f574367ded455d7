"""
Checkout flow for unlocking a provider's contact details.

Steps:
1. start_checkout: price the tier from the live catalog, open a gateway
   order, record it server-side (earlier open orders for the same user and
   provider are marked abandoned)
2. confirm_payment: check the Checkout signature, confirm the payment is
   captured for this order and amount, then grant the entitlement
3. cancel_checkout / record_payment_failure: close the order without
   writing any entitlement

No entitlement is ever written before step 2 succeeds. If the grant fails
after the money was captured, the failure is logged at CRITICAL with every
identifier needed for manual reconciliation.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config.settings import Settings
from marketplace.entitlements.errors import (
    ConfigUnavailableError,
    DuplicatePaymentError,
    InvalidTierError,
    NotAuthenticatedError,
    PaymentFailedError,
    WriteFailedError,
)
from marketplace.entitlements.models import AccessTier, ConnectOffer, ConnectionRecord
from marketplace.entitlements.service import EntitlementService
from marketplace.models.payment_order import PaymentOrder, PaymentOrderStatus
from marketplace.payments.razorpay_client import RazorpayClient, RazorpayError

logger = logging.getLogger(__name__)

CURRENCY = "INR"


@dataclass(frozen=True)
class CheckoutSession:
    """What the browser needs to open hosted checkout."""
    order_id: str
    amount_minor: int
    currency: str
    key_id: str
    tier: AccessTier

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "amount": self.amount_minor,
            "currency": self.currency,
            "key_id": self.key_id,
            "tier": self.tier.to_dict(),
        }


class ConnectionCheckoutService:
    """Payment order bridge between the gateway and the entitlement store."""

    def __init__(
        self,
        db_session: Session,
        settings: Settings,
        entitlements: EntitlementService,
        gateway: Optional[RazorpayClient] = None,
    ):
        self.db = db_session
        self.settings = settings
        self.entitlements = entitlements
        self.gateway = gateway

    # =========================================================================
    # Start
    # =========================================================================

    async def start_checkout(
        self,
        user_id: Optional[str],
        provider_id: str,
        tier_id: str,
    ) -> CheckoutSession:
        if not user_id:
            raise NotAuthenticatedError()
        gateway = self._require_gateway()

        catalog = self.entitlements.catalog_loader.get_catalog()
        tier = catalog.get_tier(tier_id)
        if tier is None:
            raise InvalidTierError(str(tier_id), "unknown")
        if tier.is_free:
            raise InvalidTierError(tier.id.value, "not purchasable")
        if not tier.enabled:
            raise InvalidTierError(tier.id.value, "disabled")

        try:
            order = await gateway.create_order(
                tier.amount_minor,
                currency=CURRENCY,
                receipt=f"conn_{provider_id[:12]}_{user_id[:12]}",
                notes={"user_id": user_id, "provider_id": provider_id, "tier_id": tier.id.value},
            )
        except RazorpayError as e:
            logger.warning(
                "Payment order creation failed",
                extra={"user_id": user_id, "provider_id": provider_id, "error": str(e)},
            )
            raise PaymentFailedError(f"Failed to create payment order: {e}") from e

        try:
            self._supersede_open_orders(user_id, provider_id)
            self.db.add(PaymentOrder(
                gateway_order_id=order.order_id,
                user_id=user_id,
                provider_id=provider_id,
                tier_id=tier.id.value,
                amount=tier.price,
                amount_minor=order.amount,
                currency=order.currency,
                status=PaymentOrderStatus.CREATED,
            ))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise WriteFailedError(user_id, provider_id, cause=exc) from exc

        logger.info(
            "Checkout started",
            extra={
                "user_id": user_id,
                "provider_id": provider_id,
                "tier_id": tier.id.value,
                "order_id": order.order_id,
                "amount_minor": order.amount,
            },
        )
        return CheckoutSession(
            order_id=order.order_id,
            amount_minor=order.amount,
            currency=order.currency,
            key_id=gateway.key_id,
            tier=tier,
        )

    # =========================================================================
    # Confirm
    # =========================================================================

    async def confirm_payment(
        self,
        user_id: Optional[str],
        provider_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> ConnectionRecord:
        """
        Verify a Checkout completion and grant the entitlement.

        Replaying an already-captured confirmation returns the existing grant.
        """
        if not user_id:
            raise NotAuthenticatedError()
        gateway = self._require_gateway()

        order = self._get_owned_order(user_id, provider_id, order_id)

        if order.status == PaymentOrderStatus.CAPTURED:
            if order.payment_id == payment_id:
                existing = self.entitlements.store.find_by_payment_id(payment_id)
                if existing is not None:
                    return existing
            raise PaymentFailedError("This payment order has already been completed", order_id=order_id)
        if order.status != PaymentOrderStatus.CREATED:
            raise PaymentFailedError(f"This payment order is {order.status.value}", order_id=order_id)

        if not gateway.verify_payment_signature(order_id, payment_id, signature):
            self._close_order(order, PaymentOrderStatus.FAILED, "signature mismatch", payment_id)
            logger.warning(
                "Payment signature mismatch",
                extra={"user_id": user_id, "order_id": order_id, "payment_id": payment_id},
            )
            raise PaymentFailedError("Payment verification failed", order_id=order_id)

        try:
            payment = await gateway.fetch_payment(payment_id)
        except RazorpayError as e:
            # Order stays open so the confirmation can be retried
            raise PaymentFailedError(f"Could not verify payment: {e}", order_id=order_id) from e

        reason = None
        if payment.order_id != order_id:
            reason = "Payment does not belong to this order"
        elif payment.amount != order.amount_minor or payment.currency != order.currency:
            reason = "Payment amount does not match the order"
        elif not payment.is_captured:
            reason = payment.error_description or f"Payment not captured (status: {payment.status})"
        if reason is not None:
            self._close_order(order, PaymentOrderStatus.FAILED, reason, payment_id)
            logger.warning(
                "Payment rejected",
                extra={"order_id": order_id, "payment_id": payment_id, "reason": reason},
            )
            raise PaymentFailedError(reason, order_id=order_id)

        record = self._grant_captured(order, payment_id)
        self._close_order(order, PaymentOrderStatus.CAPTURED, None, payment_id)
        logger.info(
            "Payment captured and connection granted",
            extra={
                "user_id": user_id,
                "provider_id": provider_id,
                "order_id": order_id,
                "payment_id": payment_id,
                "tier_id": order.tier_id,
            },
        )
        return record

    def _grant_captured(self, order: PaymentOrder, payment_id: str) -> ConnectionRecord:
        reconciliation = {
            "user_id": order.user_id,
            "provider_id": order.provider_id,
            "order_id": order.gateway_order_id,
            "payment_id": payment_id,
            "tier_id": order.tier_id,
            "amount": str(order.amount),
        }
        try:
            return self.entitlements.grant_tier(
                order.user_id,
                order.provider_id,
                order.tier_id,
                payment_id,
                amount_paid=Decimal(order.amount),
            )
        except (InvalidTierError, ConfigUnavailableError) as e:
            logger.critical(
                "Payment captured but tier could not be granted; reconcile manually",
                extra={**reconciliation, "error": str(e)},
            )
            self._close_order(order, PaymentOrderStatus.FAILED, f"captured, not granted: {e}", payment_id)
            raise
        except DuplicatePaymentError as e:
            logger.critical(
                "Captured payment id already backs another connection",
                extra={**reconciliation, "existing_record_id": e.existing_record_id},
            )
            raise
        except WriteFailedError:
            logger.critical(
                "Payment captured but connection write failed; reconcile manually",
                extra=reconciliation,
                exc_info=True,
            )
            raise

    # =========================================================================
    # Cancel / fail
    # =========================================================================

    def cancel_checkout(
        self,
        user_id: Optional[str],
        provider_id: str,
        order_id: str,
    ) -> ConnectOffer:
        """Close the order and return the offer so tier selection can be re-shown."""
        if not user_id:
            raise NotAuthenticatedError()
        order = self._find_owned_order(user_id, provider_id, order_id)
        if order is not None and order.status == PaymentOrderStatus.CREATED:
            self._close_order(order, PaymentOrderStatus.CANCELLED, None, None)
        logger.warning(
            "Checkout cancelled by user",
            extra={"user_id": user_id, "provider_id": provider_id, "order_id": order_id},
        )
        return self.entitlements.get_offer()

    def record_payment_failure(
        self,
        user_id: Optional[str],
        provider_id: str,
        order_id: str,
        reason: Optional[str],
    ) -> PaymentFailedError:
        """Close the order as failed and return the error to surface."""
        if not user_id:
            raise NotAuthenticatedError()
        reason = (reason or "").strip() or "An error occurred during payment."
        order = self._find_owned_order(user_id, provider_id, order_id)
        if order is not None and order.status == PaymentOrderStatus.CREATED:
            self._close_order(order, PaymentOrderStatus.FAILED, reason, None)
        logger.warning(
            "Payment failed at gateway",
            extra={"user_id": user_id, "provider_id": provider_id, "order_id": order_id, "reason": reason},
        )
        return PaymentFailedError(reason, order_id=order_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_gateway(self) -> RazorpayClient:
        if not self.settings.payments_configured or self.gateway is None:
            raise ConfigUnavailableError("Online payments are not available at this moment")
        return self.gateway

    def _find_owned_order(self, user_id: str, provider_id: str, order_id: str) -> Optional[PaymentOrder]:
        order = self.db.execute(
            select(PaymentOrder)
            .where(PaymentOrder.gateway_order_id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None or order.user_id != user_id or order.provider_id != provider_id:
            return None
        return order

    def _get_owned_order(self, user_id: str, provider_id: str, order_id: str) -> PaymentOrder:
        order = self._find_owned_order(user_id, provider_id, order_id)
        if order is None:
            raise PaymentFailedError("Unknown payment order", order_id=order_id)
        return order

    def _supersede_open_orders(self, user_id: str, provider_id: str) -> None:
        self.db.execute(
            update(PaymentOrder)
            .where(PaymentOrder.user_id == user_id)
            .where(PaymentOrder.provider_id == provider_id)
            .where(PaymentOrder.status == PaymentOrderStatus.CREATED)
            .values(status=PaymentOrderStatus.ABANDONED)
            .execution_options(synchronize_session=False)
        )

    def _close_order(
        self,
        order: PaymentOrder,
        status: PaymentOrderStatus,
        reason: Optional[str],
        payment_id: Optional[str],
    ) -> None:
        try:
            order.status = status
            if reason is not None:
                order.failure_reason = reason
            if payment_id is not None:
                order.payment_id = payment_id
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Failed to update payment order status",
                extra={"order_id": order.gateway_order_id, "status": status.value},
                exc_info=True,
            )
