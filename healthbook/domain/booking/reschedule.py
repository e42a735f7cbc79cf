"""
Reschedule engine

Moves a paid appointment that was cancelled (typically by a doctor
cancelling the whole session) onto another date without taking payment
again. The original appointment stays cancelled; a new one is created that
points back at it.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import Principal
from ...cache import invalidate_availability_cache
from ...constants import (
    AppointmentEvent,
    AppointmentStatus,
    PaymentStatus,
    SagaState,
    SessionStatus,
)
from ...errors import RescheduleBlocked, ValidationError
from ...models import Appointment
from ...services.notification_bridge import NotificationBridge, notification_bridge
from ...shared.clock import Clock, clinic_now
from ..appointments.repository import AppointmentRepository
from ..appointments.service import AppointmentService
from ..availability.service import AvailabilityService

logger = logging.getLogger(__name__)


class RescheduleEngine:
    def __init__(
        self,
        db: Session,
        bridge: Optional[NotificationBridge] = None,
        clock: Clock = clinic_now,
    ):
        self.db = db
        self.bridge = bridge or notification_bridge
        self.repo = AppointmentRepository()
        self.appointments = AppointmentService(db)
        self.availability = AvailabilityService(db, clock=clock)

    def reschedule(self, appointment_id: int, new_date: date, principal: Principal) -> Appointment:
        """
        Book a replacement appointment on ``new_date``.

        Raises:
            ValidationError: Source is not a cancelled, paid, not-yet-rescheduled appointment
                (also raised when a concurrent reschedule claims the source first)
            RescheduleBlocked: ``new_date`` is the date of the cancelled session
            SlotUnavailable: No bookable token on ``new_date`` (source untouched)
        """
        source = self.appointments.get_for(appointment_id, principal)

        if source.status != AppointmentStatus.CANCELLED:
            raise ValidationError("Only cancelled appointments can be rescheduled")
        if source.payment_status != PaymentStatus.PAID:
            raise ValidationError("Only paid appointments can be rescheduled")
        if source.rescheduled_to is not None:
            raise ValidationError("This appointment has already been rescheduled")

        original_session = source.session
        if original_session.status == SessionStatus.CANCELLED and new_date == original_session.date:
            raise RescheduleBlocked(
                "Cannot reschedule to the same date as the cancelled session. "
                "Please select a different date.",
                cancelled_session_date=original_session.date.isoformat(),
            )

        _, session = self.availability.ensure_bookable(
            source.provider_id, new_date, source.consultation_mode
        )
        replacement = self.repo.reserve_next_token(
            self.db,
            session,
            patient_id=source.patient_id,
            consultation_mode=source.consultation_mode,
            fee=source.fee,
            reason=source.reason,
            status=AppointmentStatus.SCHEDULED,
            payment_status=PaymentStatus.PAID,
            saga_state=SagaState.CONFIRMED,
            rescheduled_from=source.id,
        )
        invalidate_availability_cache(replacement.provider_id, replacement.appointment_date)

        logger.info(
            f"🔁 Appointment {source.id} rescheduled to {new_date} as {replacement.id} "
            f"(token {replacement.token_number})"
        )
        self.bridge.publish(
            AppointmentEvent.RESCHEDULED,
            replacement,
            previousAppointmentId=source.id,
            previousDate=source.appointment_date.isoformat(),
        )
        return replacement
