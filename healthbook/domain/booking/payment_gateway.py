"""Payment gateway client - Razorpay-style orders API over httpx"""

import logging
from typing import Optional

import httpx

from ...config import (
    PAYMENT_GATEWAY_TIMEOUT,
    RAZORPAY_API_BASE,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
)
from ...errors import PaymentGatewayError
from ...payment_security import verify_checkout_signature

logger = logging.getLogger(__name__)

# Gateway payment states that mean the money is secured
SETTLED_PAYMENT_STATES = ("authorized", "captured")


def to_minor_units(amount: float) -> int:
    """Rupees to paise (the gateway takes integer minor units)"""
    return int(round(amount * 100))


class RazorpayGateway:
    """Service for payment gateway API operations"""

    def __init__(
        self,
        key_id: Optional[str] = RAZORPAY_KEY_ID,
        key_secret: Optional[str] = RAZORPAY_KEY_SECRET,
        api_base: str = RAZORPAY_API_BASE,
        timeout: float = PAYMENT_GATEWAY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        if not self.key_id or not self.key_secret:
            logger.warning(
                "RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET not set; payment endpoints will fail until configured"
            )

    def is_available(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            auth=(self.key_id or "", self.key_secret or ""),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_order(
        self, amount: float, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> dict:
        """
        Create a gateway order.

        Returns:
            The gateway's order object (``id``, ``amount`` in minor units, ``currency``)

        Raises:
            PaymentGatewayError: Gateway unreachable, misconfigured or rejecting the order
        """
        if not self.is_available():
            raise PaymentGatewayError("Payment gateway not configured")

        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            async with self._client() as client:
                response = await client.post("/orders", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"❌ Payment gateway unreachable creating order {receipt}: {e}")
            raise PaymentGatewayError(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(
                f"❌ Order creation rejected for {receipt}: HTTP {response.status_code} {response.text[:200]}"
            )
            raise PaymentGatewayError(
                "Payment gateway rejected the order", status_code=response.status_code
            )

        order = response.json()
        if not order.get("id"):
            raise PaymentGatewayError("Payment gateway returned an order without an id")
        logger.info(f"💳 Created gateway order {order['id']} for {receipt}")
        return order

    async def fetch_payment(self, payment_id: str) -> dict:
        try:
            async with self._client() as client:
                response = await client.get(f"/payments/{payment_id}")
        except httpx.HTTPError as e:
            logger.error(f"❌ Payment gateway unreachable fetching {payment_id}: {e}")
            raise PaymentGatewayError(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 400:
            raise PaymentGatewayError(
                f"Could not fetch payment {payment_id}", status_code=response.status_code
            )
        return response.json()

    async def verify_payment(self, order_id: str, payment_id: str, signature: str) -> bool:
        """
        Verify a checkout result: the signature must match and the gateway must
        report the payment as authorized or captured against this order.

        Raises:
            PaymentGatewayError: The gateway could not be asked
        """
        if not verify_checkout_signature(self.key_secret, order_id, payment_id, signature):
            return False

        payment = await self.fetch_payment(payment_id)
        if payment.get("order_id") != order_id:
            logger.warning(f"🚫 Payment {payment_id} belongs to a different order")
            return False
        if payment.get("status") not in SETTLED_PAYMENT_STATES:
            logger.warning(f"🚫 Payment {payment_id} is {payment.get('status')}, not settled")
            return False
        return True


# Singleton instance
payment_gateway = RazorpayGateway()


def get_payment_gateway() -> RazorpayGateway:
    """Dependency injection for the payment gateway"""
    return payment_gateway
