"""
Appointment repository - Database operations for appointments

This is the only place that changes how many tokens a session has handed
out. Reservation and release both run in a single transaction that first
bumps the owning session's version, which serialises writers per session
(row lock on PostgreSQL, write lock on SQLite) without blocking other
sessions.
"""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...constants import (
    AppointmentStatus,
    AvailabilityReason,
    PaymentStatus,
    SagaState,
    SessionStatus,
)
from ...errors import SlotUnavailable, ValidationError
from ...models import Appointment, ClinicSession, PaymentOrder
from ..sessions.repository import SessionRepository
from ..slots.allocator import session_capacity, token_start_minute

logger = logging.getLogger(__name__)

# Retries when the (session_id, token_number) constraint rejects an insert
MAX_RESERVE_ATTEMPTS = 3


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def count_booked(db: Session, session_id: int) -> int:
        """Appointments holding a token: everything except cancelled (pending included)"""
        return (
            db.query(func.count(Appointment.id))
            .filter(
                Appointment.session_id == session_id,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
            .scalar()
        )

    @staticmethod
    def max_token(db: Session, session_id: int) -> int:
        """Highest token ever issued in the session, cancelled ones included"""
        return (
            db.query(func.max(Appointment.token_number))
            .filter(Appointment.session_id == session_id)
            .scalar()
            or 0
        )

    @classmethod
    def reserve_next_token(
        cls,
        db: Session,
        session: ClinicSession,
        *,
        patient_id: str,
        consultation_mode: str,
        fee: float,
        reason: Optional[str] = None,
        status: str = AppointmentStatus.PAYMENT_PENDING,
        payment_status: str = PaymentStatus.PENDING,
        saga_state: str = SagaState.SLOT_RESERVED,
        rescheduled_from: Optional[int] = None,
    ) -> Appointment:
        """
        Atomically check capacity and insert an appointment holding the next token.

        With ``rescheduled_from`` the source appointment is claimed in the
        same transaction, so one source yields at most one replacement.

        Raises:
            SlotUnavailable: Session no longer active, or every token is taken
            ValidationError: The reschedule source was already claimed
        """
        for attempt in range(1, MAX_RESERVE_ATTEMPTS + 1):
            try:
                if not SessionRepository.bump_version(db, session.id):
                    db.rollback()
                    raise SlotUnavailable(
                        "No session available for this date", reason=AvailabilityReason.NO_SESSION
                    )
                db.refresh(session)

                if session.status == SessionStatus.CANCELLED:
                    db.rollback()
                    raise SlotUnavailable(
                        "Session was cancelled for this date. Please select a different date.",
                        reason=AvailabilityReason.SESSION_CANCELLED,
                    )
                if session.status != SessionStatus.ACTIVE:
                    db.rollback()
                    raise SlotUnavailable(
                        "Session has ended for this date. No new appointments can be booked.",
                        reason=AvailabilityReason.SESSION_ENDED,
                    )

                capacity = session_capacity(session)
                booked = cls.count_booked(db, session.id)
                if capacity == 0:
                    db.rollback()
                    raise SlotUnavailable(
                        "No session available for this date", reason=AvailabilityReason.NO_SESSION
                    )
                if booked >= capacity:
                    db.rollback()
                    raise SlotUnavailable(
                        "No available slots for this session. All slots are booked.",
                        reason=AvailabilityReason.FULLY_BOOKED,
                        totalSlots=capacity,
                        bookedSlots=booked,
                    )

                token = cls.max_token(db, session.id) + 1
                appointment = Appointment(
                    patient_id=patient_id,
                    provider_id=session.provider_id,
                    session_id=session.id,
                    appointment_date=session.date,
                    token_number=token,
                    scheduled_minute=token_start_minute(session, token),
                    consultation_mode=consultation_mode,
                    fee=fee,
                    reason=reason,
                    status=status,
                    payment_status=payment_status,
                    saga_state=saga_state,
                    rescheduled_from=rescheduled_from,
                )
                db.add(appointment)
                if rescheduled_from is not None:
                    db.flush()
                    if not cls._claim_reschedule_source(db, rescheduled_from, appointment.id):
                        db.rollback()
                        raise ValidationError("This appointment has already been rescheduled")
                db.commit()
                db.refresh(appointment)
                logger.info(
                    f"🎟️ Reserved token {token}/{capacity} in session {session.id} "
                    f"for patient {patient_id} (appointment {appointment.id})"
                )
                return appointment
            except IntegrityError:
                db.rollback()
                logger.warning(
                    f"⚠️ Token collision in session {session.id} (attempt {attempt}/{MAX_RESERVE_ATTEMPTS})"
                )

        raise SlotUnavailable(
            "Could not reserve a slot, please try again", reason=AvailabilityReason.FULLY_BOOKED
        )

    @staticmethod
    def cancel_if_status(
        db: Session,
        appointment: Appointment,
        allowed_statuses: Iterable[str],
        *,
        cancelled_by: str,
        reason: Optional[str],
        payment_status: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Cancel the appointment only if it is still in one of ``allowed_statuses``.

        The status guard lives in the UPDATE itself, so racing callers cannot
        both cancel: the loser touches zero rows and gets False back. The
        token number stays on the record.
        """
        values = {
            "status": AppointmentStatus.CANCELLED,
            "saga_state": SagaState.CANCELLED,
            "cancelled_by": cancelled_by,
            "cancel_reason": reason,
            "cancelled_at": now or datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        if payment_status is not None:
            values["payment_status"] = payment_status

        result = db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status.in_(list(allowed_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        changed = result.rowcount > 0
        if changed:
            SessionRepository.bump_version(db, appointment.session_id)
        db.commit()
        db.refresh(appointment)
        return changed

    @staticmethod
    def transition_pending(db: Session, appointment: Appointment, **values) -> bool:
        """Update a payment_pending appointment; False if it already left that state"""
        values.setdefault("updated_at", datetime.utcnow())
        result = db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.status == AppointmentStatus.PAYMENT_PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(appointment)
        return result.rowcount > 0

    @staticmethod
    def find_stale_pending(db: Session, cutoff: datetime) -> list[Appointment]:
        """payment_pending appointments created before the cutoff"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.status == AppointmentStatus.PAYMENT_PENDING,
                Appointment.created_at < cutoff,
            )
            .order_by(Appointment.created_at.asc())
            .all()
        )

    @staticmethod
    def list_open_in_session(db: Session, session_id: int) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.session_id == session_id,
                Appointment.status.in_(AppointmentStatus.OPEN),
            )
            .all()
        )

    @staticmethod
    def _claim_reschedule_source(db: Session, source_id: int, replacement_id: int) -> bool:
        """Point the source at its replacement; False if another reschedule got there first"""
        result = db.execute(
            update(Appointment)
            .where(
                Appointment.id == source_id,
                Appointment.status == AppointmentStatus.CANCELLED,
                Appointment.rescheduled_to.is_(None),
            )
            .values(rescheduled_to=replacement_id, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @staticmethod
    def transition_status(
        db: Session, appointment: Appointment, allowed_statuses: Iterable[str], **values
    ) -> bool:
        """Update the appointment only while it is in one of ``allowed_statuses``"""
        values.setdefault("updated_at", datetime.utcnow())
        result = db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status.in_(list(allowed_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        changed = result.rowcount > 0
        if changed:
            SessionRepository.bump_version(db, appointment.session_id)
        db.commit()
        db.refresh(appointment)
        return changed

    @staticmethod
    def list_for_patient(
        db: Session,
        patient_id: str,
        status: Optional[str] = None,
        day: Optional[date] = None,
    ) -> list[Appointment]:
        """Patient listing; payment-pending bookings are never shown as confirmed"""
        query = db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.payment_status != PaymentStatus.PENDING,
        )
        if status:
            query = query.filter(Appointment.status == status)
        if day:
            query = query.filter(Appointment.appointment_date == day)
        return query.order_by(Appointment.appointment_date.desc(), Appointment.token_number).all()

    @staticmethod
    def list_queue(db: Session, session_id: int) -> list[Appointment]:
        """Doctor queue: paid, not cancelled, in token order"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.session_id == session_id,
                Appointment.payment_status == PaymentStatus.PAID,
                Appointment.status.in_(AppointmentStatus.QUEUED),
            )
            .order_by(Appointment.token_number.asc())
            .all()
        )

    @staticmethod
    def add_payment_order(db: Session, **order_data) -> PaymentOrder:
        order = PaymentOrder(**order_data)
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    @staticmethod
    def get_payment_order(db: Session, appointment_id: int, order_id: str) -> Optional[PaymentOrder]:
        return (
            db.query(PaymentOrder)
            .filter(PaymentOrder.appointment_id == appointment_id, PaymentOrder.order_id == order_id)
            .first()
        )

    @staticmethod
    def get_payment_order_by_order_id(db: Session, order_id: str) -> Optional[PaymentOrder]:
        return db.query(PaymentOrder).filter(PaymentOrder.order_id == order_id).first()
