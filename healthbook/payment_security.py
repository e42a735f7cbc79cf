"""
Payment signature verification

Checkout callbacks and gateway webhooks are both signed with HMAC-SHA256
using the gateway key secret. Signatures are compared in constant time.
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def compute_checkout_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Signature the checkout returns for a completed payment: HMAC(order_id|payment_id)"""
    return compute_hmac_sha256(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def verify_checkout_signature(
    secret: Optional[str], order_id: str, payment_id: str, signature: Optional[str]
) -> bool:
    """
    Verify the signature handed back by the checkout widget.

    Returns:
        True if the signature matches, False otherwise
    """
    if not secret:
        logger.error("❌ Payment key secret not configured - rejecting signature")
        return False
    if not order_id or not payment_id:
        logger.warning("🚫 Signature check without order or payment id")
        return False

    expected = compute_checkout_signature(secret, order_id, payment_id)
    if not constant_time_compare(expected, signature):
        logger.warning(f"🚫 Invalid checkout signature for order {order_id}")
        return False
    return True


def verify_webhook_signature(secret: Optional[str], body: bytes, signature: Optional[str]) -> bool:
    """Verify a gateway webhook: HMAC-SHA256 over the raw request body"""
    if not secret:
        logger.error("❌ Webhook secret not configured - rejecting webhook")
        return False
    if not signature:
        logger.warning("🚫 Webhook missing signature header")
        return False

    expected = compute_hmac_sha256(secret, body)
    if not constant_time_compare(expected, signature):
        logger.warning("🚫 Invalid webhook signature")
        return False
    return True
