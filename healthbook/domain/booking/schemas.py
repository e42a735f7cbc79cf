"""Booking saga schemas - payment order, verification and failure signals"""

from typing import Optional

from pydantic import BaseModel, field_validator

from ...constants import CancelReason

# Client-reported failure kinds accepted on the failure endpoint
FAILURE_REASONS = {
    "gateway_error": CancelReason.PAYMENT_GATEWAY_ERROR,
    "declined": CancelReason.PAYMENT_DECLINED,
    "dismissed": CancelReason.PAYMENT_ABANDONED,
    "abandoned": CancelReason.PAYMENT_ABANDONED,
    "timeout": CancelReason.PAYMENT_TIMEOUT,
    "verification_failed": CancelReason.PAYMENT_VERIFICATION_FAILED,
}


class PaymentOrderResponse(BaseModel):
    orderId: str
    amount: float
    currency: str
    gatewayKeyId: Optional[str] = None
    appointmentId: int


class PaymentVerifyRequest(BaseModel):
    paymentId: str
    orderId: str
    signature: str
    paymentMethod: Optional[str] = None

    @field_validator("paymentId", "orderId", "signature")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class PaymentFailureRequest(BaseModel):
    reason: str
    detail: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        key = (v or "").strip().lower()
        if key.startswith("payment_"):
            key = key[len("payment_"):]
        if key not in FAILURE_REASONS:
            raise ValueError(f"reason must be one of: {', '.join(sorted(FAILURE_REASONS))}")
        return FAILURE_REASONS[key]
