"""Tests for the availability query service."""

from datetime import date, datetime

import pytest

from healthbook.constants import AvailabilityReason, ConsultationMode, SessionStatus
from healthbook.domain.appointments.schemas import AppointmentCreate
from healthbook.domain.availability.service import AvailabilityService
from healthbook.domain.sessions.service import SessionService
from healthbook.errors import ProviderNotFound, SlotUnavailable, ValidationError
from healthbook.models import BlockedDate, ClinicSession

from .conftest import SESSION_DAY, FixedClock


class DictCache:
    """Cache double keeping values in a dict."""

    def __init__(self):
        self.store = {}
        self.sets = 0

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ttl=3600):
        self.sets += 1
        self.store[key] = value
        return True


def book(saga, principal, provider, day=SESSION_DAY, mode=ConsultationMode.IN_PERSON):
    return saga.reserve(
        principal,
        AppointmentCreate(doctorId=provider.id, appointmentDate=day, consultationMode=mode),
    )


@pytest.fixture
def service(db, clock):
    return AvailabilityService(db, clock=clock)


class TestAvailability:
    """Reason resolution for get_availability."""

    def test_open_session(self, service, provider):
        """A fresh session is available with token 1 next."""
        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.available is True
        assert result.reason == AvailabilityReason.AVAILABLE
        assert result.capacity == 24
        assert result.booked_count == 0
        assert result.next_token == 1
        assert result.session_start == "09:00"
        assert result.session_end == "17:00"
        assert len(result.slots) == 24

    def test_no_weekly_window(self, service, provider):
        """Sunday has no weekly window, so there is no session."""
        result = service.get_availability(provider.id, date(2024, 6, 16))

        assert result.available is False
        assert result.reason == AvailabilityReason.NO_SESSION
        assert result.next_token is None

    def test_blocked_date(self, db, service, provider):
        """Blocked dates never materialise a session."""
        db.add(BlockedDate(provider_id=provider.id, date=SESSION_DAY, reason="Conference"))
        db.commit()

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.reason == AvailabilityReason.NO_SESSION

    def test_zero_capacity_is_no_session(self, db, service, provider):
        """A window shorter than one consultation reads as no session."""
        db.add(
            ClinicSession(
                provider_id=provider.id,
                date=SESSION_DAY,
                start_minute=540,
                end_minute=550,
                avg_consultation_minutes=20,
            )
        )
        db.commit()

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.reason == AvailabilityReason.NO_SESSION
        assert result.available is False

    def test_cancelled_session(self, db, service, provider, bridge):
        SessionService(db, bridge=bridge).get_or_create_session(provider.id, SESSION_DAY)
        SessionService(db, bridge=bridge).cancel_session(provider.id, SESSION_DAY, "Emergency")

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.reason == AvailabilityReason.SESSION_CANCELLED
        assert result.to_dict()["isCancelled"] is True

    def test_completed_session(self, db, service, provider):
        session = SessionService(db).get_or_create_session(provider.id, SESSION_DAY)
        session.status = SessionStatus.COMPLETED
        db.commit()

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.reason == AvailabilityReason.SESSION_ENDED
        assert result.to_dict()["isCompleted"] is True

    def test_session_ended_by_clock(self, db, provider):
        """After 17:00 on the day, in-person booking is closed."""
        service = AvailabilityService(db, clock=FixedClock(datetime(2024, 6, 10, 17, 5)))

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.reason == AvailabilityReason.SESSION_ENDED
        assert result.to_dict()["isSessionEnded"] is True

    def test_after_hours_call_allowed(self, db, provider):
        """Call mode stays open after hours when the provider allows it."""
        provider.allow_after_hours_calls = True
        db.commit()
        service = AvailabilityService(db, clock=FixedClock(datetime(2024, 6, 10, 17, 5)))

        in_person = service.get_availability(provider.id, SESSION_DAY, ConsultationMode.IN_PERSON)
        call = service.get_availability(provider.id, SESSION_DAY, ConsultationMode.CALL)

        assert in_person.reason == AvailabilityReason.SESSION_ENDED
        assert call.available is True

    def test_after_hours_call_not_allowed(self, db, provider):
        service = AvailabilityService(db, clock=FixedClock(datetime(2024, 6, 10, 17, 5)))

        call = service.get_availability(provider.id, SESSION_DAY, ConsultationMode.CALL)

        assert call.reason == AvailabilityReason.SESSION_ENDED

    def test_past_date(self, db, provider):
        """Dates before today are closed."""
        service = AvailabilityService(db, clock=FixedClock(datetime(2024, 6, 12, 8, 0)))

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.reason == AvailabilityReason.SESSION_ENDED

    def test_fully_booked(self, db, service, provider, saga, patient):
        """Once every token is held the session reports fully_booked."""
        SessionService(db).upsert_session(
            provider.id,
            SESSION_DAY,
            _window("09:00", "09:40"),
        )
        book(saga, patient, provider)
        book(saga, patient, provider)

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.reason == AvailabilityReason.FULLY_BOOKED
        assert result.booked_count == 2
        assert result.next_token is None

    def test_booked_count_excludes_cancelled(self, saga, service, provider, patient):
        """Cancelled appointments free capacity; their tokens are not reissued."""
        first = book(saga, patient, provider)
        book(saga, patient, provider)
        saga.cancel(first.id, patient, "changed plans")

        result = service.get_availability(provider.id, SESSION_DAY)

        assert result.booked_count == 1
        assert result.next_token == 3

    def test_unknown_provider(self, service):
        with pytest.raises(ProviderNotFound):
            service.get_availability(9999, SESSION_DAY)

    def test_invalid_mode(self, service, provider):
        with pytest.raises(ValidationError):
            service.get_availability(provider.id, SESSION_DAY, "video")

    def test_ensure_bookable_raises_with_reason(self, service, provider):
        with pytest.raises(SlotUnavailable) as exc:
            service.ensure_bookable(provider.id, date(2024, 6, 16), ConsultationMode.IN_PERSON)
        assert exc.value.reason == AvailabilityReason.NO_SESSION
        assert exc.value.status_code == 409


class TestAvailabilityCache:
    """Cached counts are only trusted for the session version they were built from."""

    def test_cache_hit_for_same_version(self, db, clock, provider):
        cache = DictCache()
        service = AvailabilityService(db, clock=clock, cache_store=cache)

        service.get_availability(provider.id, SESSION_DAY)
        service.get_availability(provider.id, SESSION_DAY)

        assert cache.sets == 1

    def test_version_change_forces_recompute(self, db, clock, provider, saga, patient):
        """A reservation bumps the version, so stale cached counts are ignored."""
        cache = DictCache()
        service = AvailabilityService(db, clock=clock, cache_store=cache)
        before = service.get_availability(provider.id, SESSION_DAY)

        book(saga, patient, provider)
        db.expire_all()
        after = service.get_availability(provider.id, SESSION_DAY)

        assert before.booked_count == 0
        assert after.booked_count == 1
        assert after.next_token == 2
        assert after.session_version > before.session_version
        assert cache.sets == 2


def _window(start, end):
    from healthbook.domain.sessions.schemas import SessionUpsert

    return SessionUpsert(sessionStartTime=start, sessionEndTime=end)
