"""Session service - Business logic for clinic sessions"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...cache import invalidate_availability_cache
from ...config import DEFAULT_AVG_CONSULTATION_MINUTES
from ...constants import (
    AppointmentEvent,
    AppointmentStatus,
    CancelledBy,
    CancelReason,
    PaymentStatus,
    SessionStatus,
)
from ...errors import AppointmentNotFound, ProviderNotFound, SessionNotFound, ValidationError
from ...models import Appointment, ClinicSession, Provider
from ...services.notification_bridge import NotificationBridge, notification_bridge
from ...shared.clock import Clock, clinic_now
from ...shared.validators import parse_time_of_day
from ..appointments.repository import AppointmentRepository
from .repository import SessionRepository
from .schemas import SessionUpsert

logger = logging.getLogger(__name__)


class SessionService:
    """Service layer for clinic session lifecycle"""

    def __init__(
        self,
        db: Session,
        bridge: Optional[NotificationBridge] = None,
        clock: Clock = clinic_now,
    ):
        self.db = db
        self.repo = SessionRepository()
        self.appointments = AppointmentRepository()
        self.bridge = bridge or notification_bridge
        self.clock = clock

    def get_provider(self, provider_id: int) -> Provider:
        provider = self.repo.get_provider(self.db, provider_id)
        if not provider or not provider.is_active:
            raise ProviderNotFound("Doctor not found")
        return provider

    def get_session(self, provider_id: int, day: date) -> ClinicSession:
        session = self.repo.get_session(self.db, provider_id, day)
        if not session:
            raise SessionNotFound("No session defined for this date")
        return session

    def get_or_create_session(self, provider_id: int, day: date) -> Optional[ClinicSession]:
        """
        Return the provider's session for a date, materialising it from the
        weekly schedule on first use.

        Returns None when the provider does not work that day (no weekly
        window, or the date is blocked).
        """
        session = self.repo.get_session(self.db, provider_id, day)
        if session:
            return session

        provider = self.get_provider(provider_id)
        if self.repo.is_date_blocked(self.db, provider_id, day):
            logger.debug(f"Provider {provider_id} blocked on {day}")
            return None

        weekly = self.repo.get_weekly_availability(self.db, provider_id, day.weekday())
        if not weekly:
            return None

        try:
            session = self.repo.add_session(
                self.db,
                provider_id=provider_id,
                date=day,
                start_minute=weekly.start_minute,
                end_minute=weekly.end_minute,
                avg_consultation_minutes=provider.avg_consultation_minutes
                or DEFAULT_AVG_CONSULTATION_MINUTES,
                status=SessionStatus.ACTIVE,
            )
            self.db.commit()
            self.db.refresh(session)
            logger.info(f"✅ Materialised session {session.id} for provider {provider_id} on {day}")
            return session
        except IntegrityError:
            # Another request created it first
            self.db.rollback()
            return self.repo.get_session(self.db, provider_id, day)

    def upsert_session(self, provider_id: int, day: date, data: SessionUpsert) -> ClinicSession:
        """Define or adjust the session window for one date"""
        provider = self.get_provider(provider_id)
        start_minute = parse_time_of_day(data.sessionStartTime)
        end_minute = parse_time_of_day(data.sessionEndTime)
        avg = (
            data.avgConsultationMinutes
            or provider.avg_consultation_minutes
            or DEFAULT_AVG_CONSULTATION_MINUTES
        )

        session = self.repo.get_session(self.db, provider_id, day)
        if session is None:
            session = self.repo.add_session(
                self.db,
                provider_id=provider_id,
                date=day,
                start_minute=start_minute,
                end_minute=end_minute,
                avg_consultation_minutes=avg,
                status=SessionStatus.ACTIVE,
            )
            self.db.commit()
            self.db.refresh(session)
            logger.info(f"✅ Created session {session.id} for provider {provider_id} on {day}")
            invalidate_availability_cache(provider_id, day)
            return session

        if session.status != SessionStatus.ACTIVE:
            raise ValidationError(f"Cannot modify a {session.status} session")

        new_capacity = (end_minute - start_minute) // avg
        booked = self.appointments.count_booked(self.db, session.id)
        if new_capacity < booked:
            raise ValidationError(
                f"New session window holds {new_capacity} slots but {booked} are already booked",
                capacity=new_capacity,
                bookedSlots=booked,
            )

        session.start_minute = start_minute
        session.end_minute = end_minute
        session.avg_consultation_minutes = avg
        session.version = session.version + 1
        self.db.commit()
        self.db.refresh(session)
        invalidate_availability_cache(provider_id, day)
        logger.info(f"✅ Updated session {session.id} ({session.start_time}-{session.end_time})")
        return session

    def cancel_session(
        self,
        provider_id: int,
        day: date,
        reason: Optional[str] = None,
        cancelled_by: str = CancelledBy.DOCTOR,
    ) -> tuple[ClinicSession, int]:
        """
        Cancel a session and every appointment still open in it.

        Returns the session and how many appointments were cancelled.
        Cancelling an already-cancelled session is a no-op.
        """
        session = self.get_or_create_session(provider_id, day)
        if session is None:
            raise SessionNotFound("No session defined for this date")
        if session.status == SessionStatus.CANCELLED:
            return session, 0
        if session.status == SessionStatus.COMPLETED:
            raise ValidationError("Cannot cancel a completed session")

        # Flip the session first so no new reservation can land while we cascade
        session.status = SessionStatus.CANCELLED
        session.cancel_reason = reason
        session.cancelled_at = datetime.utcnow()
        session.version = session.version + 1
        self.db.commit()
        self.db.refresh(session)
        logger.info(f"🚫 Session {session.id} cancelled for provider {provider_id} on {day}")

        cancelled = 0
        for appointment in self.appointments.list_open_in_session(self.db, session.id):
            was_paid = appointment.payment_status == PaymentStatus.PAID
            changed = self.appointments.cancel_if_status(
                self.db,
                appointment,
                AppointmentStatus.OPEN,
                cancelled_by=cancelled_by,
                reason=CancelReason.SESSION_CANCELLED,
                payment_status=None if was_paid else PaymentStatus.FAILED,
            )
            if not changed:
                continue
            cancelled += 1
            self.bridge.publish(
                AppointmentEvent.CANCELLED,
                appointment,
                cancelledBy=cancelled_by,
                reason=CancelReason.SESSION_CANCELLED,
                sessionCancelReason=reason,
                canReschedule=was_paid,
            )

        invalidate_availability_cache(provider_id, day)
        logger.info(f"📤 Cancelled {cancelled} appointment(s) in session {session.id}")
        return session, cancelled

    def complete_session(self, provider_id: int, day: date) -> ClinicSession:
        session = self.get_session(provider_id, day)
        if session.status == SessionStatus.COMPLETED:
            return session
        if session.status != SessionStatus.ACTIVE:
            raise ValidationError(f"Cannot complete a {session.status} session")
        self._mark_completed(session)
        return session

    def auto_complete_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Complete today's active sessions whose window has passed and which
        have nobody left waiting. Returns how many were completed.
        """
        now = now or self.clock()
        completed = 0
        for session in self.repo.list_sessions_for_day(self.db, now.date(), SessionStatus.ACTIVE):
            if not _window_passed(session, now):
                continue
            if self.appointments.list_open_in_session(self.db, session.id):
                continue
            self._mark_completed(session)
            completed += 1
        if completed:
            logger.info(f"✅ Auto-completed {completed} session(s) for {now.date()}")
        return completed

    def record_queue_outcome(self, provider_id: int, appointment_id: int, status: str) -> Appointment:
        """
        Mark a queued (paid, waiting) appointment completed or no_show.

        Recording the same outcome twice is a no-op. Once the session window
        has passed and nobody is left waiting, the session is completed too.

        Raises:
            AppointmentNotFound: No such appointment for this provider
            ValidationError: Unknown outcome, or the appointment is not queued
        """
        if status not in AppointmentStatus.QUEUE_OUTCOMES:
            raise ValidationError(f"Unknown queue outcome: {status}")
        appointment = self.appointments.get(self.db, appointment_id)
        if not appointment or appointment.provider_id != provider_id:
            raise AppointmentNotFound("Appointment not found")
        if appointment.status == status:
            return appointment

        changed = self.appointments.transition_status(
            self.db, appointment, AppointmentStatus.QUEUED, status=status
        )
        if not changed:
            raise ValidationError(f"Cannot mark a {appointment.status} appointment as {status}")

        logger.info(
            f"🩺 Appointment {appointment.id} (token {appointment.token_number}) marked {status}"
        )
        event = (
            AppointmentEvent.COMPLETED
            if status == AppointmentStatus.COMPLETED
            else AppointmentEvent.NO_SHOW
        )
        self.bridge.publish(event, appointment)

        session = appointment.session
        if (
            session.status == SessionStatus.ACTIVE
            and _window_passed(session, self.clock())
            and not self.appointments.list_open_in_session(self.db, session.id)
        ):
            self._mark_completed(session)
        return appointment

    def _mark_completed(self, session: ClinicSession) -> None:
        session.status = SessionStatus.COMPLETED
        session.completed_at = datetime.utcnow()
        session.version = session.version + 1
        self.db.commit()
        self.db.refresh(session)
        invalidate_availability_cache(session.provider_id, session.date)
        logger.info(f"🏁 Session {session.id} completed")


def _window_passed(session: ClinicSession, now: datetime) -> bool:
    if session.date != now.date():
        return session.date < now.date()
    return session.end_minute <= now.hour * 60 + now.minute
