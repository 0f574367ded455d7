"""Payment gateway integration."""

from marketplace.payments.razorpay_client import (
    RazorpayClient,
    RazorpayError,
    RazorpayOrder,
    RazorpayPayment,
    compute_payment_signature,
    verify_payment_signature,
)

__all__ = [
    "RazorpayClient",
    "RazorpayError",
    "RazorpayOrder",
    "RazorpayPayment",
    "compute_payment_signature",
    "verify_payment_signature",
]
