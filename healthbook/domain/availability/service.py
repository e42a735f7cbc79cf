"""
Availability service

Answers "can a patient book provider P on date D in mode M right now", and
if so which token they would receive. The answer is advisory; the booking
saga re-checks it inside the reservation transaction.
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...cache import Cache, build_availability_key, cache
from ...config import AVAILABILITY_CACHE_TTL
from ...constants import AvailabilityReason, ConsultationMode, SessionStatus
from ...errors import SlotUnavailable, ValidationError
from ...models import ClinicSession, Provider
from ...shared.clock import Clock, clinic_now
from ..appointments.repository import AppointmentRepository
from ..sessions.service import SessionService
from ..slots.allocator import compute_slots, session_capacity
from .schemas import Availability

logger = logging.getLogger(__name__)

_UNAVAILABLE_MESSAGES = {
    AvailabilityReason.NO_SESSION: "No session available for this date",
    AvailabilityReason.SESSION_CANCELLED: (
        "Session was cancelled for this date. Please select a different date."
    ),
    AvailabilityReason.SESSION_ENDED: (
        "Session has ended for this date. No new appointments can be booked."
    ),
    AvailabilityReason.FULLY_BOOKED: "No available slots for this session. All slots are booked.",
}


def session_has_ended(session: ClinicSession, now: datetime) -> bool:
    """Completed, on a past date, or past the end time on its own date (clinic clock)"""
    if session.status == SessionStatus.COMPLETED:
        return True
    today = now.date()
    if session.date < today:
        return True
    if session.date > today:
        return False
    return now.hour * 60 + now.minute >= session.end_minute


class AvailabilityService:
    """Service layer for availability queries"""

    def __init__(
        self,
        db: Session,
        clock: Clock = clinic_now,
        cache_store: Optional[Cache] = None,
        sessions: Optional[SessionService] = None,
    ):
        self.db = db
        self.clock = clock
        self.cache = cache_store or cache
        self.sessions = sessions or SessionService(db, clock=clock)
        self.appointments = AppointmentRepository()

    def get_availability(
        self,
        provider_id: int,
        day: date,
        consultation_mode: str = ConsultationMode.IN_PERSON,
    ) -> Availability:
        if day is None:
            raise ValidationError("Appointment date is required", field="date")
        if consultation_mode not in ConsultationMode.ALL:
            raise ValidationError(
                f"Invalid consultation mode: {consultation_mode}", field="mode"
            )

        provider = self.sessions.get_provider(provider_id)
        session = self.sessions.get_or_create_session(provider_id, day)

        result = Availability(
            provider_id=provider_id,
            date=day,
            consultation_mode=consultation_mode,
            available=False,
            reason=AvailabilityReason.NO_SESSION,
        )
        if session is None or session_capacity(session) == 0:
            return result

        result.session_id = session.id
        result.session_version = session.version
        result.session_status = session.status
        result.session_start = session.start_time
        result.session_end = session.end_time
        result.avg_consultation_minutes = session.avg_consultation_minutes
        result.capacity = session_capacity(session)

        if session.status == SessionStatus.CANCELLED:
            result.reason = AvailabilityReason.SESSION_CANCELLED
            return result

        if self._is_closed_for_mode(session, provider, consultation_mode):
            result.reason = AvailabilityReason.SESSION_ENDED
            return result

        booked_count, max_token = self._load_counts(session)
        result.booked_count = booked_count
        result.slots = compute_slots(session, booked_count).slots

        if booked_count >= result.capacity:
            result.reason = AvailabilityReason.FULLY_BOOKED
            return result

        result.available = True
        result.reason = AvailabilityReason.AVAILABLE
        result.next_token = max_token + 1
        return result

    def ensure_bookable(
        self, provider_id: int, day: date, consultation_mode: str
    ) -> tuple[Availability, ClinicSession]:
        """
        Availability pre-check used before a reservation. Counts may come
        from the cache; the reservation transaction re-checks them.

        Raises:
            SlotUnavailable: With the availability reason attached
        """
        availability = self.get_availability(provider_id, day, consultation_mode)
        if not availability.available:
            raise SlotUnavailable(
                _UNAVAILABLE_MESSAGES[availability.reason],
                reason=availability.reason,
                totalSlots=availability.capacity,
                bookedSlots=availability.booked_count,
            )
        session = self.sessions.repo.get_session_by_id(self.db, availability.session_id)
        return availability, session

    def _is_closed_for_mode(self, session: ClinicSession, provider: Provider, mode: str) -> bool:
        if session.status == SessionStatus.COMPLETED:
            return True
        if not session_has_ended(session, self.clock()):
            return False
        # After-hours calls are allowed on the session's own date only
        if (
            mode == ConsultationMode.CALL
            and provider.allow_after_hours_calls
            and session.date == self.clock().date()
        ):
            return False
        return True

    def _load_counts(self, session: ClinicSession) -> tuple[int, int]:
        """(booked_count, max_token), served from cache while the session version matches"""
        key = build_availability_key(session.provider_id, session.date, "counts")
        cached = self.cache.get(key)
        if cached and cached.get("sessionVersion") == session.version:
            return cached["bookedCount"], cached["maxToken"]

        booked_count = self.appointments.count_booked(self.db, session.id)
        max_token = self.appointments.max_token(self.db, session.id)
        self.cache.set(
            key,
            {"sessionVersion": session.version, "bookedCount": booked_count, "maxToken": max_token},
            ttl=AVAILABILITY_CACHE_TTL,
        )
        return booked_count, max_token
