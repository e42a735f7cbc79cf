"""Booking router - reserve, pay, cancel and reschedule appointments"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal
from ...config import RAZORPAY_WEBHOOK_SECRET
from ...database import get_db
from ...errors import PaymentAbandoned
from ...payment_security import verify_webhook_signature
from ...services.notification_bridge import NotificationBridge, get_notification_bridge
from ...shared.clock import get_clock
from ..appointments.schemas import (
    AppointmentCreate,
    AppointmentResponse,
    CancelRequest,
    RescheduleRequest,
)
from .payment_gateway import RazorpayGateway, get_payment_gateway
from .reschedule import RescheduleEngine
from .saga import BookingSaga
from .schemas import PaymentFailureRequest, PaymentOrderResponse, PaymentVerifyRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Booking"])
webhooks_router = APIRouter(prefix="/payments", tags=["Payment Webhooks"])


def get_booking_saga(
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    bridge: NotificationBridge = Depends(get_notification_bridge),
    clock=Depends(get_clock),
) -> BookingSaga:
    """Dependency injection for BookingSaga"""
    return BookingSaga(db, gateway, bridge=bridge, clock=clock)


def get_reschedule_engine(
    db: Session = Depends(get_db),
    bridge: NotificationBridge = Depends(get_notification_bridge),
    clock=Depends(get_clock),
) -> RescheduleEngine:
    return RescheduleEngine(db, bridge=bridge, clock=clock)


@router.post("", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    data: AppointmentCreate,
    principal: Principal = Depends(get_current_principal),
    saga: BookingSaga = Depends(get_booking_saga),
):
    """Reserve the next token; the appointment stays payment_pending until verified"""
    logger.info(
        f"📥 Booking request from {principal.user_id} for doctor {data.doctorId} on {data.appointmentDate}"
    )
    appointment = saga.reserve(principal, data)
    return AppointmentResponse.from_model(appointment)


@router.post("/{appointment_id}/payment/order", response_model=PaymentOrderResponse)
async def create_payment_order(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    saga: BookingSaga = Depends(get_booking_saga),
):
    return await saga.create_order(appointment_id, principal)


@router.post("/{appointment_id}/payment/verify", response_model=AppointmentResponse)
async def verify_payment(
    appointment_id: int,
    data: PaymentVerifyRequest,
    principal: Principal = Depends(get_current_principal),
    saga: BookingSaga = Depends(get_booking_saga),
):
    appointment = await saga.verify_payment(appointment_id, principal, data)
    return AppointmentResponse.from_model(appointment)


@router.post("/{appointment_id}/payment/failure")
async def report_payment_failure(
    appointment_id: int,
    data: PaymentFailureRequest,
    principal: Principal = Depends(get_current_principal),
    saga: BookingSaga = Depends(get_booking_saga),
):
    """Checkout reported an error, decline, dismissal or timeout; the slot is released"""
    try:
        appointment = saga.fail_payment(appointment_id, principal, data.reason, data.detail)
    except PaymentAbandoned as e:
        return {"status": "abandoned", "appointmentId": appointment_id, "detail": e.message}
    return {
        "status": appointment.status,
        "appointmentId": appointment.id,
        "cancelReason": appointment.cancel_reason,
    }


@router.delete("/{appointment_id}", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    data: Optional[CancelRequest] = None,
    principal: Principal = Depends(get_current_principal),
    saga: BookingSaga = Depends(get_booking_saga),
):
    reason = data.reason if data else None
    appointment = saga.cancel(appointment_id, principal, reason)
    return AppointmentResponse.from_model(appointment)


@router.patch("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    principal: Principal = Depends(get_current_principal),
    engine: RescheduleEngine = Depends(get_reschedule_engine),
):
    """Rebook a paid appointment from a cancelled session onto another date"""
    appointment = engine.reschedule(appointment_id, data.appointmentDate, principal)
    return AppointmentResponse.from_model(appointment)


@webhooks_router.post("/webhook")
async def payment_webhook(request: Request, saga: BookingSaga = Depends(get_booking_saga)):
    """Gateway webhook (payment.captured / payment.authorized / payment.failed)"""
    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature")
    if not verify_webhook_signature(RAZORPAY_WEBHOOK_SECRET, body, signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    outcome = saga.handle_gateway_event(event)
    logger.info(f"📨 Webhook {event.get('event')} -> {outcome}")
    return {"status": outcome}
