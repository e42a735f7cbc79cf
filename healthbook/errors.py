"""
Booking error taxonomy

Every error raised by the booking core derives from BookingError so the
FastAPI layer can render it uniformly. Errors raised after a slot was
reserved are only raised once the compensating cancellation has finished.
"""

from typing import Optional


class BookingError(Exception):
    """Base class for domain errors surfaced to API callers"""

    status_code = 400
    code = "booking_error"
    retryable = False

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        payload = {"detail": self.message, "code": self.code, "retryable": self.retryable}
        payload.update(self.extra)
        return payload


class ValidationError(BookingError):
    """Malformed input rejected before any mutation"""

    code = "validation_error"


class PermissionDenied(BookingError):
    status_code = 403
    code = "permission_denied"


class NotFound(BookingError):
    status_code = 404
    code = "not_found"


class ProviderNotFound(NotFound):
    code = "provider_not_found"


class SessionNotFound(NotFound):
    code = "session_not_found"


class AppointmentNotFound(NotFound):
    code = "appointment_not_found"


class SlotUnavailable(BookingError):
    """Session full, cancelled, ended, or not defined for the date"""

    status_code = 409
    code = "slot_unavailable"

    def __init__(self, message: str, reason: str, **extra):
        super().__init__(message, reason=reason, **extra)
        self.reason = reason


class PaymentOrderFailed(BookingError):
    status_code = 502
    code = "payment_order_failed"
    retryable = True


class PaymentVerificationFailed(BookingError):
    status_code = 402
    code = "payment_verification_failed"
    retryable = True


class PaymentAbandoned(BookingError):
    """Checkout closed by the user; informational rather than a failure"""

    status_code = 200
    code = "payment_abandoned"


class ReservationTimeout(BookingError):
    """The reservation was released before payment confirmation arrived"""

    status_code = 410
    code = "reservation_timeout"


class RescheduleBlocked(BookingError):
    """Target date is the date of the session that was cancelled"""

    status_code = 422
    code = "reschedule_blocked"

    def __init__(self, message: str, cancelled_session_date: Optional[str] = None, **extra):
        super().__init__(message, cancelledSessionDate=cancelled_session_date, **extra)


class PaymentGatewayError(Exception):
    """Raised by gateway clients; translated into saga errors by the booking saga"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
