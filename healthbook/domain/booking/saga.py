"""
Booking saga

Drives one appointment from reservation to confirmed payment:

    slot_reserved -> order_created -> payment_awaited -> confirmed
                                         |
                                         +-> compensating_cancel -> cancelled

The saga state is persisted on the appointment. Every failure after the
slot was reserved releases the slot (the appointment is cancelled with a
reason tag) before the error is raised. Compensation only ever touches
payment_pending appointments, so a late or duplicate failure signal cannot
undo a confirmed booking.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import Principal
from ...cache import invalidate_availability_cache
from ...config import PAYMENT_CURRENCY, RESERVATION_TIMEOUT_MINUTES
from ...constants import (
    AppointmentEvent,
    AppointmentStatus,
    CancelledBy,
    CancelReason,
    PaymentStatus,
    Role,
    SagaState,
)
from ...errors import (
    PaymentAbandoned,
    PaymentGatewayError,
    PaymentOrderFailed,
    PaymentVerificationFailed,
    PermissionDenied,
    ReservationTimeout,
    ValidationError,
)
from ...models import Appointment
from ...services.notification_bridge import NotificationBridge, notification_bridge
from ...shared.clock import Clock, clinic_now, utc_now
from ..appointments.repository import AppointmentRepository
from ..appointments.schemas import AppointmentCreate
from ..appointments.service import AppointmentService
from ..availability.service import AvailabilityService
from .payment_gateway import RazorpayGateway
from .schemas import PaymentVerifyRequest

logger = logging.getLogger(__name__)

# Rupee tolerance when comparing the fee the patient saw with the provider's fee
FEE_TOLERANCE = 0.01


class BookingSaga:
    """Orchestrates reserve -> order -> verify, with compensation"""

    def __init__(
        self,
        db: Session,
        gateway: RazorpayGateway,
        bridge: Optional[NotificationBridge] = None,
        clock: Clock = clinic_now,
    ):
        self.db = db
        self.gateway = gateway
        self.bridge = bridge or notification_bridge
        self.clock = clock
        self.repo = AppointmentRepository()
        self.appointments = AppointmentService(db)
        self.availability = AvailabilityService(db, clock=clock)

    # ------------------------------------------------------------------
    # Step 1: reserve
    # ------------------------------------------------------------------

    def reserve(self, principal: Principal, data: AppointmentCreate) -> Appointment:
        """
        Reserve the next token in the provider's session for the date.

        Raises:
            SlotUnavailable: No session, session cancelled/ended, or fully booked
            ValidationError: The fee the patient saw no longer matches
            PermissionDenied: Caller is not a patient
        """
        if principal.role != Role.PATIENT:
            raise PermissionDenied("Only patients can book appointments")

        availability, session = self.availability.ensure_bookable(
            data.doctorId, data.appointmentDate, data.consultationMode
        )
        provider = session.provider
        fee = provider.consultation_fee or 0
        if data.fee is not None and abs(data.fee - fee) > FEE_TOLERANCE:
            raise ValidationError(
                "Consultation fee has changed, please review and try again",
                expectedFee=fee,
            )

        # Free consultations have nothing to pay for and are confirmed immediately
        free = fee <= 0
        appointment = self.repo.reserve_next_token(
            self.db,
            session,
            patient_id=principal.user_id,
            consultation_mode=data.consultationMode,
            fee=fee,
            reason=data.reason,
            status=AppointmentStatus.SCHEDULED if free else AppointmentStatus.PAYMENT_PENDING,
            payment_status=PaymentStatus.PAID if free else PaymentStatus.PENDING,
            saga_state=SagaState.CONFIRMED if free else SagaState.SLOT_RESERVED,
        )
        invalidate_availability_cache(appointment.provider_id, appointment.appointment_date)
        if free:
            self.bridge.publish(AppointmentEvent.BOOKED, appointment)
        return appointment

    # ------------------------------------------------------------------
    # Step 2: payment order
    # ------------------------------------------------------------------

    async def create_order(self, appointment_id: int, principal: Principal) -> dict:
        """
        Request a gateway order for a reserved appointment.

        Raises:
            PaymentOrderFailed: Gateway failure; the reservation is already released
            ReservationTimeout: The reservation was released before the order was stored
        """
        appointment = self.appointments.get_for(appointment_id, principal)
        self._require_pending(appointment)

        try:
            order = await self.gateway.create_order(
                appointment.fee,
                PAYMENT_CURRENCY,
                receipt=f"appointment_{appointment.id}",
                notes={
                    "appointmentId": str(appointment.id),
                    "patientId": appointment.patient_id,
                    "tokenNumber": str(appointment.token_number),
                },
            )
            self.repo.add_payment_order(
                self.db,
                order_id=order["id"],
                appointment_id=appointment.id,
                amount=appointment.fee,
                currency=order.get("currency", PAYMENT_CURRENCY),
                gateway_key=self.gateway.key_id,
            )
        except PaymentGatewayError as e:
            self.compensate(appointment, CancelReason.PAYMENT_ORDER_FAILED)
            raise PaymentOrderFailed(
                "Could not create a payment order. Your slot has been released, please try again."
            ) from e
        except Exception:
            self.db.rollback()
            self.compensate(appointment, CancelReason.PAYMENT_ORDER_FAILED)
            raise

        self.repo.transition_pending(self.db, appointment, saga_state=SagaState.ORDER_CREATED)
        # The order is handed to the checkout UI; the saga now waits for a signal
        if not self.repo.transition_pending(
            self.db, appointment, saga_state=SagaState.PAYMENT_AWAITED
        ):
            raise ReservationTimeout("Reservation expired before checkout could start")

        logger.info(f"💳 Appointment {appointment.id} awaiting payment on order {order['id']}")
        return {
            "orderId": order["id"],
            "amount": appointment.fee,
            "currency": order.get("currency", PAYMENT_CURRENCY),
            "gatewayKeyId": self.gateway.key_id,
            "appointmentId": appointment.id,
        }

    # ------------------------------------------------------------------
    # Step 4: verification
    # ------------------------------------------------------------------

    async def verify_payment(
        self, appointment_id: int, principal: Principal, data: PaymentVerifyRequest
    ) -> Appointment:
        """
        Confirm the appointment once the gateway vouches for the payment.

        Repeating a successful verification returns the confirmed appointment.

        Raises:
            PaymentVerificationFailed: Signature or gateway check failed (slot released)
            ReservationTimeout: The reservation was released before confirmation
        """
        appointment = self.appointments.get_for(appointment_id, principal)
        if appointment.payment_status == PaymentStatus.PAID:
            return appointment
        self._require_pending(appointment)

        if not self.repo.get_payment_order(self.db, appointment.id, data.orderId):
            self.compensate(appointment, CancelReason.PAYMENT_VERIFICATION_FAILED)
            raise PaymentVerificationFailed("Payment does not match this appointment's order")

        try:
            verified = await self.gateway.verify_payment(
                data.orderId, data.paymentId, data.signature
            )
        except PaymentGatewayError as e:
            self.compensate(appointment, CancelReason.PAYMENT_GATEWAY_ERROR)
            raise PaymentVerificationFailed(
                "Could not verify payment with the gateway. Your slot has been released."
            ) from e

        if not verified:
            self.compensate(appointment, CancelReason.PAYMENT_VERIFICATION_FAILED)
            raise PaymentVerificationFailed("Payment verification failed. Your slot has been released.")

        confirmed = self.repo.transition_pending(
            self.db,
            appointment,
            status=AppointmentStatus.SCHEDULED,
            payment_status=PaymentStatus.PAID,
            saga_state=SagaState.CONFIRMED,
        )
        if not confirmed:
            if appointment.payment_status == PaymentStatus.PAID:
                # A concurrent verify got there first
                return appointment
            logger.warning(
                f"⚠️ Payment {data.paymentId} verified for released appointment {appointment.id}"
            )
            raise ReservationTimeout(
                "Reservation expired before payment was confirmed",
                paymentId=data.paymentId,
            )

        invalidate_availability_cache(appointment.provider_id, appointment.appointment_date)
        logger.info(
            f"✅ Appointment {appointment.id} confirmed (token {appointment.token_number}, "
            f"payment {data.paymentId} via {data.paymentMethod or 'unknown'})"
        )
        self.bridge.publish(AppointmentEvent.BOOKED, appointment, paymentId=data.paymentId)
        return appointment

    # ------------------------------------------------------------------
    # Step 5: failure signals and compensation
    # ------------------------------------------------------------------

    def fail_payment(
        self,
        appointment_id: int,
        principal: Principal,
        reason: str,
        detail: Optional[str] = None,
    ) -> Appointment:
        """
        Handle a client-reported payment failure.

        Raises:
            PaymentAbandoned: The patient closed the checkout (after compensation)
        """
        appointment = self.appointments.get_for(appointment_id, principal)
        released = self.compensate(appointment, reason, detail=detail)
        if released and reason == CancelReason.PAYMENT_ABANDONED:
            raise PaymentAbandoned("Checkout was closed; the slot has been released")
        return appointment

    def compensate(
        self,
        appointment: Appointment,
        reason: str,
        cancelled_by: str = CancelledBy.SYSTEM,
        detail: Optional[str] = None,
    ) -> bool:
        """
        Release a reserved slot. Returns True if this call cancelled it.

        No-op for anything no longer payment_pending (already cancelled by
        another signal or the sweep, or already confirmed).
        """
        self.repo.transition_pending(self.db, appointment, saga_state=SagaState.COMPENSATING_CANCEL)
        released = self.repo.cancel_if_status(
            self.db,
            appointment,
            [AppointmentStatus.PAYMENT_PENDING],
            cancelled_by=cancelled_by,
            reason=reason,
            payment_status=PaymentStatus.FAILED,
        )
        if released:
            invalidate_availability_cache(appointment.provider_id, appointment.appointment_date)
            logger.info(
                f"↩️ Released token {appointment.token_number} of appointment {appointment.id} "
                f"({reason}{': ' + detail if detail else ''})"
            )
        else:
            logger.debug(f"Compensation for appointment {appointment.id} was a no-op ({reason})")
        return released

    # ------------------------------------------------------------------
    # Explicit cancellation
    # ------------------------------------------------------------------

    def cancel(
        self, appointment_id: int, principal: Principal, reason: Optional[str] = None
    ) -> Appointment:
        """Cancel an appointment on request; cancelling twice is a no-op"""
        appointment = self.appointments.get_for(appointment_id, principal)
        if appointment.status == AppointmentStatus.CANCELLED:
            return appointment
        if appointment.status not in AppointmentStatus.OPEN:
            raise ValidationError(f"Cannot cancel a {appointment.status} appointment")

        cancelled_by = {
            Role.PATIENT: CancelledBy.PATIENT,
            Role.DOCTOR: CancelledBy.DOCTOR,
            Role.ADMIN: CancelledBy.ADMIN,
        }[principal.role]
        was_paid = appointment.payment_status == PaymentStatus.PAID

        if appointment.status == AppointmentStatus.PAYMENT_PENDING:
            self.compensate(appointment, reason or CancelReason.PAYMENT_ABANDONED, cancelled_by)
            return appointment

        released = self.repo.cancel_if_status(
            self.db,
            appointment,
            AppointmentStatus.OPEN,
            cancelled_by=cancelled_by,
            reason=reason,
        )
        if released:
            invalidate_availability_cache(appointment.provider_id, appointment.appointment_date)
            logger.info(f"🚫 Appointment {appointment.id} cancelled by {cancelled_by}")
            self.bridge.publish(
                AppointmentEvent.CANCELLED,
                appointment,
                cancelledBy=cancelled_by,
                reason=reason,
                canReschedule=was_paid,
            )
        return appointment

    # ------------------------------------------------------------------
    # Reservation timeout
    # ------------------------------------------------------------------

    def expire_stale_reservations(self, now: Optional[datetime] = None) -> int:
        """
        Release payment_pending appointments older than the reservation timeout.

        ``now`` is UTC, matching ``Appointment.created_at``.
        """
        now = now or utc_now()
        cutoff = now - timedelta(minutes=RESERVATION_TIMEOUT_MINUTES)
        released = 0
        for appointment in self.repo.find_stale_pending(self.db, cutoff):
            if self.compensate(appointment, CancelReason.RESERVATION_TIMEOUT):
                released += 1
        if released:
            logger.info(f"⏰ Released {released} stale reservation(s) older than {cutoff}")
        return released

    def handle_gateway_event(self, event: dict) -> str:
        """
        Apply a signed gateway webhook to the appointment behind its order.

        Captured or authorized payments confirm a pending appointment; failed
        payments release it. Returns what was done, for the webhook response.
        """
        event_type = event.get("event", "")
        payload = event.get("payload") or {}
        payment = (payload.get("payment") or {}).get("entity") or {}
        order_id = payment.get("order_id")
        payment_id = payment.get("id")
        if not order_id:
            return "ignored"

        order = self.repo.get_payment_order_by_order_id(self.db, order_id)
        if not order:
            logger.warning(f"⚠️ Webhook {event_type} for unknown order {order_id}")
            return "ignored"
        appointment = self.repo.get(self.db, order.appointment_id)

        if event_type in ("payment.captured", "payment.authorized"):
            confirmed = self.repo.transition_pending(
                self.db,
                appointment,
                status=AppointmentStatus.SCHEDULED,
                payment_status=PaymentStatus.PAID,
                saga_state=SagaState.CONFIRMED,
            )
            if not confirmed:
                return "noop"
            invalidate_availability_cache(appointment.provider_id, appointment.appointment_date)
            logger.info(f"✅ Appointment {appointment.id} confirmed by webhook ({payment_id})")
            self.bridge.publish(AppointmentEvent.BOOKED, appointment, paymentId=payment_id)
            return "confirmed"

        if event_type == "payment.failed":
            released = self.compensate(
                appointment,
                CancelReason.PAYMENT_DECLINED,
                detail=payment.get("error_description"),
            )
            return "cancelled" if released else "noop"

        return "ignored"

    def _require_pending(self, appointment: Appointment) -> None:
        if appointment.status == AppointmentStatus.PAYMENT_PENDING:
            return
        if appointment.status == AppointmentStatus.CANCELLED:
            raise ReservationTimeout(
                "This reservation has been released. Please book again.",
                cancelReason=appointment.cancel_reason,
            )
        raise ValidationError(f"Appointment is {appointment.status}, not awaiting payment")
