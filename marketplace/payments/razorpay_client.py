"""
Razorpay Orders/Payments API client for hosted checkout.

The browser opens Razorpay Checkout with an order id created here. On
completion Checkout hands back (payment_id, order_id, signature); the
signature is an HMAC-SHA256 of "order_id|payment_id" keyed with the key
secret. A payment only counts once the Payments API reports it captured.
"""

import hmac
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.razorpay.com/v1"
PAYMENT_STATUS_CAPTURED = "captured"


@dataclass
class RazorpayOrder:
    """Order created for a checkout attempt."""
    order_id: str
    amount: int  # paise
    currency: str
    status: Optional[str] = None
    receipt: Optional[str] = None


@dataclass
class RazorpayPayment:
    """Payment as reported by the Payments API."""
    payment_id: str
    order_id: Optional[str]
    amount: int  # paise
    currency: str
    status: str
    error_description: Optional[str] = None

    @property
    def is_captured(self) -> bool:
        return self.status == PAYMENT_STATUS_CAPTURED


class RazorpayError(Exception):
    """Error from the Razorpay API."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class RazorpayClient:
    """
    Async client for the Razorpay REST API.

    Handles:
    - Creating orders for a tier price
    - Fetching payments to confirm capture status
    - Verifying checkout signatures (offline)
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        if not key_id or not key_secret:
            raise ValueError("Razorpay key id and key secret are required")
        self.key_id = key_id
        self._key_secret = key_secret
        self.base_url = base_url.rstrip("/")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=(key_id, key_secret),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            logger.error("Razorpay request failed", extra={"path": path, "error": str(e)})
            raise RazorpayError(f"Payment gateway unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("error") or {}
            message = error.get("description") or f"Payment gateway error ({response.status_code})"
            logger.error(
                "Razorpay API error",
                extra={
                    "path": path,
                    "status_code": response.status_code,
                    "code": error.get("code"),
                },
            )
            raise RazorpayError(message, code=error.get("code"), details=error)

        return data

    async def create_order(
        self,
        amount: int,
        currency: str = "INR",
        receipt: Optional[str] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> RazorpayOrder:
        """
        Create an order for `amount` paise.

        Raises:
            ValueError: amount is not a positive integer
            RazorpayError: the gateway refused or could not be reached
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValueError("amount must be a positive integer number of paise")

        payload: Dict[str, Any] = {"amount": amount, "currency": currency}
        if receipt:
            payload["receipt"] = receipt[:40]
        if notes:
            payload["notes"] = notes

        data = await self._request("POST", "/orders", payload)
        order = RazorpayOrder(
            order_id=data["id"],
            amount=int(data.get("amount", amount)),
            currency=data.get("currency", currency),
            status=data.get("status"),
            receipt=data.get("receipt"),
        )
        logger.info(
            "Razorpay order created",
            extra={"order_id": order.order_id, "amount": order.amount, "currency": order.currency},
        )
        return order

    async def fetch_payment(self, payment_id: str) -> RazorpayPayment:
        data = await self._request("GET", f"/payments/{payment_id}")
        return RazorpayPayment(
            payment_id=data.get("id", payment_id),
            order_id=data.get("order_id"),
            amount=int(data.get("amount") or 0),
            currency=data.get("currency", "INR"),
            status=data.get("status", ""),
            error_description=data.get("error_description"),
        )

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_payment_signature(order_id, payment_id, signature, self._key_secret)


def compute_payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Constant-time check of a Checkout completion signature."""
    if not (order_id and payment_id and signature and secret):
        return False
    expected = compute_payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)
