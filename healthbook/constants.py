"""Status vocabularies shared by the models, services and schemas"""


class SessionStatus:
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    ALL = (ACTIVE, CANCELLED, COMPLETED)


class AppointmentStatus:
    PAYMENT_PENDING = "payment_pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    ALL = (PAYMENT_PENDING, SCHEDULED, CONFIRMED, COMPLETED, CANCELLED, NO_SHOW)
    TERMINAL = (COMPLETED, CANCELLED, NO_SHOW)
    # Still waiting to be seen; blocks a session from auto-completing
    OPEN = (PAYMENT_PENDING, SCHEDULED, CONFIRMED)
    # Paid and waiting in the doctor's queue
    QUEUED = (SCHEDULED, CONFIRMED)
    # What a doctor can record for a queued patient
    QUEUE_OUTCOMES = (COMPLETED, NO_SHOW)


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class SagaState:
    INITIATED = "initiated"
    SLOT_RESERVED = "slot_reserved"
    ORDER_CREATED = "order_created"
    PAYMENT_AWAITED = "payment_awaited"
    COMPENSATING_CANCEL = "compensating_cancel"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ConsultationMode:
    IN_PERSON = "in_person"
    CALL = "call"

    ALL = (IN_PERSON, CALL)


class CancelledBy:
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    SYSTEM = "system"


class CancelReason:
    """Reason tags written on appointments cancelled by the booking saga"""

    PAYMENT_ORDER_FAILED = "payment_order_failed"
    PAYMENT_VERIFICATION_FAILED = "payment_verification_failed"
    PAYMENT_GATEWAY_ERROR = "payment_gateway_error"
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_ABANDONED = "payment_abandoned"
    PAYMENT_TIMEOUT = "payment_timeout"
    RESERVATION_TIMEOUT = "reservation_timeout"
    SESSION_CANCELLED = "session_cancelled"


class AvailabilityReason:
    AVAILABLE = "available"
    NO_SESSION = "no_session"
    SESSION_CANCELLED = "session_cancelled"
    SESSION_ENDED = "session_ended"
    FULLY_BOOKED = "fully_booked"


class Role:
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class AppointmentEvent:
    BOOKED = "appointment.booked"
    RESCHEDULED = "appointment.rescheduled"
    CANCELLED = "appointment.cancelled"
    COMPLETED = "appointment.completed"
    NO_SHOW = "appointment.no_show"
