"""
Connection entitlement error hierarchy.

Provides:
- EntitlementError: base for all connection-access failures
- ConfigUnavailableError: access catalog could not be read
- NotAuthenticatedError: no signed-in user (carries the intent to resume)
- InvalidTierError: tier unknown, disabled or not offered right now
- PaymentFailedError: gateway or verification rejected the payment
- PaymentCancelledError: user closed checkout (not shown as an error)
- PaymentNotVerifiedError: a grant was attempted without verified payment
- DuplicatePaymentError: payment id already backs another entitlement
- WriteFailedError: entitlement write failed (payment may be captured)
"""

from typing import Optional


class EntitlementError(Exception):
    """Base exception for connection entitlement failures."""

    error_code = "ENTITLEMENT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class ConfigUnavailableError(EntitlementError):
    """Raised when the access catalog or its flags cannot be loaded."""

    error_code = "CONFIG_UNAVAILABLE"

    def __init__(self, detail: str, cause: Optional[Exception] = None):
        self.detail = detail
        self.cause = cause
        super().__init__(f"Connection access configuration unavailable: {detail}")


class NotAuthenticatedError(EntitlementError):
    """
    Raised when an entitlement operation has no user context.

    `intent` is the path the user was trying to reach, so sign-in can
    send them back to finish the connection.
    """

    error_code = "NOT_AUTHENTICATED"

    def __init__(self, intent: Optional[str] = None):
        self.intent = intent
        super().__init__("Sign in to connect with providers")

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.intent:
            d["intent"] = self.intent
        return d


class InvalidTierError(EntitlementError):
    """Raised when the selected tier is unknown or disabled at write time."""

    error_code = "INVALID_TIER"

    def __init__(self, tier_id: str, reason: str = "not available"):
        self.tier_id = tier_id
        self.reason = reason
        super().__init__(f"Access tier {tier_id!r} is {reason}")

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["tier_id"] = self.tier_id
        return d


class PaymentFailedError(EntitlementError):
    """Raised when the gateway reports failure or verification does not pass."""

    error_code = "PAYMENT_FAILED"

    def __init__(self, reason: str, order_id: Optional[str] = None):
        self.reason = reason
        self.order_id = order_id
        super().__init__(reason)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.order_id:
            d["order_id"] = self.order_id
        return d


class PaymentCancelledError(EntitlementError):
    """The user abandoned checkout. Callers return to tier selection silently."""

    error_code = "PAYMENT_CANCELLED"

    def __init__(self, order_id: Optional[str] = None):
        self.order_id = order_id
        super().__init__("Payment was cancelled")


class PaymentNotVerifiedError(EntitlementError):
    """Raised when a paid tier is granted without a verified payment id."""

    error_code = "PAYMENT_NOT_VERIFIED"

    def __init__(self, tier_id: str):
        self.tier_id = tier_id
        super().__init__(f"Tier {tier_id!r} requires a verified payment")


class DuplicatePaymentError(EntitlementError):
    """Raised when a payment id is already bound to a different entitlement."""

    error_code = "DUPLICATE_PAYMENT"

    def __init__(self, payment_id: str, existing_record_id: str):
        self.payment_id = payment_id
        self.existing_record_id = existing_record_id
        super().__init__(f"Payment {payment_id} already backs connection {existing_record_id}")

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["payment_id"] = self.payment_id
        return d


class WriteFailedError(EntitlementError):
    """
    Raised when an entitlement or placeholder write fails.

    When payment_id is set the money is already captured; callers must log
    this for manual reconciliation.
    """

    error_code = "WRITE_FAILED"

    def __init__(
        self,
        user_id: str,
        provider_id: str,
        payment_id: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        self.user_id = user_id
        self.provider_id = provider_id
        self.payment_id = payment_id
        self.cause = cause
        super().__init__(f"Failed to record connection {user_id}_{provider_id}")

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": "Something went wrong. Please try again."}
