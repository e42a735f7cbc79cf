"""Tests for session materialisation, edits, cancellation cascade and auto-complete."""

import asyncio
from datetime import date, datetime

import pytest

from healthbook.constants import (
    AppointmentEvent,
    AppointmentStatus,
    CancelledBy,
    CancelReason,
    SessionStatus,
)
from healthbook.domain.appointments.schemas import AppointmentCreate
from healthbook.domain.booking.schemas import PaymentVerifyRequest
from healthbook.domain.sessions.schemas import SessionUpsert
from healthbook.domain.sessions.service import SessionService
from healthbook.errors import (
    AppointmentNotFound,
    ProviderNotFound,
    SessionNotFound,
    ValidationError,
)
from healthbook.models import ClinicSession

from .conftest import SESSION_DAY, sign


@pytest.fixture
def sessions(db, bridge, clock):
    return SessionService(db, bridge=bridge, clock=clock)


def book_and_pay(saga, principal, provider, payment_id="pay_1"):
    appointment = saga.reserve(
        principal, AppointmentCreate(doctorId=provider.id, appointmentDate=SESSION_DAY)
    )
    order = asyncio.run(saga.create_order(appointment.id, principal))
    return asyncio.run(
        saga.verify_payment(
            appointment.id,
            principal,
            PaymentVerifyRequest(
                paymentId=payment_id,
                orderId=order["orderId"],
                signature=sign(order["orderId"], payment_id),
            ),
        )
    )


class TestGetOrCreateSession:
    def test_materialised_from_weekly_window(self, sessions, provider):
        session = sessions.get_or_create_session(provider.id, SESSION_DAY)

        assert session.start_time == "09:00"
        assert session.end_time == "17:00"
        assert session.avg_consultation_minutes == 20
        assert session.status == SessionStatus.ACTIVE
        assert session.capacity == 24

    def test_existing_session_returned(self, db, sessions, provider):
        first = sessions.get_or_create_session(provider.id, SESSION_DAY)
        second = sessions.get_or_create_session(provider.id, SESSION_DAY)

        assert first.id == second.id
        assert db.query(ClinicSession).count() == 1

    def test_day_off(self, sessions, provider):
        assert sessions.get_or_create_session(provider.id, date(2024, 6, 16)) is None

    def test_unknown_provider(self, sessions):
        with pytest.raises(ProviderNotFound):
            sessions.get_or_create_session(4242, SESSION_DAY)


class TestUpsertSession:
    def test_accepts_twelve_hour_times(self, sessions, provider):
        session = sessions.upsert_session(
            provider.id,
            SESSION_DAY,
            SessionUpsert(sessionStartTime="10:00 AM", sessionEndTime="1:00 PM"),
        )

        assert session.start_minute == 600
        assert session.end_minute == 780
        assert session.capacity == 9

    def test_edit_bumps_version(self, sessions, provider):
        session = sessions.get_or_create_session(provider.id, SESSION_DAY)
        version = session.version

        updated = sessions.upsert_session(
            provider.id,
            SESSION_DAY,
            SessionUpsert(sessionStartTime="09:00", sessionEndTime="12:00", avgConsultationMinutes=15),
        )

        assert updated.id == session.id
        assert updated.capacity == 12
        assert updated.version == version + 1

    def test_cannot_shrink_below_bookings(self, sessions, saga, provider, patient, other_patient):
        for principal in (patient, other_patient):
            saga.reserve(
                principal, AppointmentCreate(doctorId=provider.id, appointmentDate=SESSION_DAY)
            )

        with pytest.raises(ValidationError):
            sessions.upsert_session(
                provider.id,
                SESSION_DAY,
                SessionUpsert(sessionStartTime="09:00", sessionEndTime="09:20"),
            )

    def test_window_must_be_ordered(self):
        with pytest.raises(ValueError):
            SessionUpsert(sessionStartTime="17:00", sessionEndTime="09:00")

    def test_cancelled_session_is_frozen(self, sessions, provider):
        sessions.get_or_create_session(provider.id, SESSION_DAY)
        sessions.cancel_session(provider.id, SESSION_DAY)

        with pytest.raises(ValidationError):
            sessions.upsert_session(
                provider.id,
                SESSION_DAY,
                SessionUpsert(sessionStartTime="09:00", sessionEndTime="12:00"),
            )


class TestCancelSession:
    def test_cascade_cancels_appointments(self, sessions, saga, provider, patient, other_patient, events):
        """Every open appointment is cancelled by the doctor and patients are notified."""
        paid = book_and_pay(saga, patient, provider)
        pending = saga.reserve(
            other_patient, AppointmentCreate(doctorId=provider.id, appointmentDate=SESSION_DAY)
        )

        session, cancelled = sessions.cancel_session(provider.id, SESSION_DAY, "Doctor unwell")

        assert session.status == SessionStatus.CANCELLED
        assert session.cancel_reason == "Doctor unwell"
        assert cancelled == 2
        for appointment in (paid, pending):
            assert appointment.status == AppointmentStatus.CANCELLED
            assert appointment.cancelled_by == CancelledBy.DOCTOR
            assert appointment.cancel_reason == CancelReason.SESSION_CANCELLED

        cancel_events = [e for e in events if e["type"] == AppointmentEvent.CANCELLED]
        assert len(cancel_events) == 2
        by_id = {e["appointmentId"]: e for e in cancel_events}
        assert by_id[paid.id]["canReschedule"] is True
        assert by_id[paid.id]["sessionCancelReason"] == "Doctor unwell"

    def test_completed_appointments_untouched(self, db, sessions, saga, provider, patient):
        appointment = book_and_pay(saga, patient, provider)
        sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)

        _, cancelled = sessions.cancel_session(provider.id, SESSION_DAY)

        assert cancelled == 0
        assert appointment.status == AppointmentStatus.COMPLETED

    def test_cancel_twice_is_noop(self, sessions, provider, events):
        sessions.get_or_create_session(provider.id, SESSION_DAY)
        sessions.cancel_session(provider.id, SESSION_DAY)

        session, cancelled = sessions.cancel_session(provider.id, SESSION_DAY)

        assert session.status == SessionStatus.CANCELLED
        assert cancelled == 0

    def test_day_off_has_nothing_to_cancel(self, sessions, provider):
        with pytest.raises(SessionNotFound):
            sessions.cancel_session(provider.id, date(2024, 6, 16))

    def test_cancel_materialises_weekly_session(self, sessions, provider):
        """A scheduled working day can be cancelled before anyone has booked."""
        session, cancelled = sessions.cancel_session(provider.id, SESSION_DAY)

        assert session.status == SessionStatus.CANCELLED
        assert cancelled == 0


class TestCompleteSession:
    def test_complete(self, sessions, provider):
        sessions.get_or_create_session(provider.id, SESSION_DAY)

        session = sessions.complete_session(provider.id, SESSION_DAY)

        assert session.status == SessionStatus.COMPLETED
        assert session.completed_at is not None

    def test_auto_complete_after_end(self, sessions, provider):
        """Today's session past its end with nobody waiting is completed."""
        sessions.get_or_create_session(provider.id, SESSION_DAY)

        completed = sessions.auto_complete_sessions(now=datetime(2024, 6, 10, 17, 30))

        assert completed == 1
        assert sessions.get_session(provider.id, SESSION_DAY).status == SessionStatus.COMPLETED

    def test_auto_complete_waits_for_open_appointments(self, sessions, saga, provider, patient):
        book_and_pay(saga, patient, provider)

        completed = sessions.auto_complete_sessions(now=datetime(2024, 6, 10, 17, 30))

        assert completed == 0

    def test_auto_complete_before_end(self, sessions, provider):
        sessions.get_or_create_session(provider.id, SESSION_DAY)

        assert sessions.auto_complete_sessions(now=datetime(2024, 6, 10, 16, 0)) == 0


class TestQueueOutcomes:
    """Doctors close out queued patients so finished sessions can complete."""

    def test_mark_completed(self, sessions, saga, provider, patient, events):
        appointment = book_and_pay(saga, patient, provider)

        result = sessions.record_queue_outcome(
            provider.id, appointment.id, AppointmentStatus.COMPLETED
        )

        assert result.status == AppointmentStatus.COMPLETED
        assert events[-1]["type"] == AppointmentEvent.COMPLETED

    def test_mark_no_show(self, sessions, saga, provider, patient, events):
        appointment = book_and_pay(saga, patient, provider)

        result = sessions.record_queue_outcome(
            provider.id, appointment.id, AppointmentStatus.NO_SHOW
        )

        assert result.status == AppointmentStatus.NO_SHOW
        assert result.token_number == 1
        assert events[-1]["type"] == AppointmentEvent.NO_SHOW

    def test_repeat_outcome_is_noop(self, sessions, saga, provider, patient, events):
        appointment = book_and_pay(saga, patient, provider)
        sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)
        published = len(events)

        sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)

        assert len(events) == published

    def test_pending_payment_cannot_be_completed(self, sessions, saga, provider, patient):
        appointment = saga.reserve(
            patient, AppointmentCreate(doctorId=provider.id, appointmentDate=SESSION_DAY)
        )

        with pytest.raises(ValidationError):
            sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)

        assert appointment.status == AppointmentStatus.PAYMENT_PENDING

    def test_completed_cannot_become_no_show(self, sessions, saga, provider, patient):
        appointment = book_and_pay(saga, patient, provider)
        sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)

        with pytest.raises(ValidationError):
            sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.NO_SHOW)

    def test_cancelled_cannot_be_completed(self, sessions, saga, provider, patient):
        appointment = book_and_pay(saga, patient, provider)
        saga.cancel(appointment.id, patient)

        with pytest.raises(ValidationError):
            sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)

    def test_unknown_outcome(self, sessions, saga, provider, patient):
        appointment = book_and_pay(saga, patient, provider)

        with pytest.raises(ValidationError):
            sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.CANCELLED)

    def test_other_providers_appointment(self, sessions, saga, provider, patient):
        appointment = book_and_pay(saga, patient, provider)

        with pytest.raises(AppointmentNotFound):
            sessions.record_queue_outcome(
                provider.id + 1, appointment.id, AppointmentStatus.COMPLETED
            )

    def test_auto_complete_after_patients_seen(self, sessions, saga, provider, patient, other_patient):
        """A session that had bookings completes once every patient has an outcome."""
        seen = book_and_pay(saga, patient, provider)
        absent = book_and_pay(saga, other_patient, provider, payment_id="pay_2")
        sessions.record_queue_outcome(provider.id, seen.id, AppointmentStatus.COMPLETED)
        sessions.record_queue_outcome(provider.id, absent.id, AppointmentStatus.NO_SHOW)

        completed = sessions.auto_complete_sessions(now=datetime(2024, 6, 10, 23, 59))

        assert completed == 1
        assert sessions.get_session(provider.id, SESSION_DAY).status == SessionStatus.COMPLETED

    def test_last_outcome_after_hours_completes_session(self, db, saga, bridge, provider, patient):
        """Closing out the last patient after the window ends completes the session at once."""
        appointment = book_and_pay(saga, patient, provider)
        late = SessionService(db, bridge=bridge, clock=lambda: datetime(2024, 6, 10, 17, 15))

        late.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)

        assert late.get_session(provider.id, SESSION_DAY).status == SessionStatus.COMPLETED

    def test_outcome_during_session_keeps_it_open(self, sessions, saga, provider, patient):
        appointment = book_and_pay(saga, patient, provider)

        sessions.record_queue_outcome(provider.id, appointment.id, AppointmentStatus.COMPLETED)

        assert sessions.get_session(provider.id, SESSION_DAY).status == SessionStatus.ACTIVE
