"""Session router - Doctor/admin endpoints for managing clinic sessions"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal, require_provider_access
from ...constants import AppointmentStatus, CancelledBy
from ...database import get_db
from ...services.notification_bridge import NotificationBridge, get_notification_bridge
from ...shared.clock import get_clock
from ...shared.validators import require_calendar_date
from ..appointments.repository import AppointmentRepository
from ..appointments.schemas import AppointmentResponse
from .schemas import (
    QueueStatusUpdate,
    SessionCancelRequest,
    SessionCancelResponse,
    SessionResponse,
    SessionUpsert,
)
from .service import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doctors", tags=["Sessions"])


def get_session_service(
    db: Session = Depends(get_db),
    bridge: NotificationBridge = Depends(get_notification_bridge),
    clock=Depends(get_clock),
) -> SessionService:
    """Dependency injection for SessionService"""
    return SessionService(db, bridge=bridge, clock=clock)


@router.put("/{provider_id}/sessions/{session_date}", response_model=SessionResponse)
async def upsert_session(
    provider_id: int,
    session_date: str,
    data: SessionUpsert,
    principal: Principal = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
):
    """Create or adjust the session window for a date"""
    require_provider_access(principal, provider_id)
    session = service.upsert_session(provider_id, require_calendar_date(session_date), data)
    return SessionResponse.from_model(session)


@router.get("/{provider_id}/sessions/{session_date}", response_model=SessionResponse)
async def get_session(
    provider_id: int,
    session_date: str,
    principal: Principal = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
):
    day = require_calendar_date(session_date)
    session = service.get_or_create_session(provider_id, day)
    if session is None:
        session = service.get_session(provider_id, day)
    return SessionResponse.from_model(session)


@router.get(
    "/{provider_id}/sessions/{session_date}/queue", response_model=list[AppointmentResponse]
)
async def get_session_queue(
    provider_id: int,
    session_date: str,
    principal: Principal = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
):
    """Paid appointments for the session in token order"""
    require_provider_access(principal, provider_id)
    session = service.get_session(provider_id, require_calendar_date(session_date))
    queue = AppointmentRepository.list_queue(service.db, session.id)
    return [AppointmentResponse.from_model(a) for a in queue]


@router.post("/{provider_id}/sessions/{session_date}/cancel", response_model=SessionCancelResponse)
async def cancel_session(
    provider_id: int,
    session_date: str,
    data: SessionCancelRequest,
    principal: Principal = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
):
    """Cancel the session; open appointments are cancelled and patients notified"""
    require_provider_access(principal, provider_id)
    cancelled_by = CancelledBy.ADMIN if principal.is_admin else CancelledBy.DOCTOR
    session, cancelled = service.cancel_session(
        provider_id, require_calendar_date(session_date), data.reason, cancelled_by=cancelled_by
    )
    return SessionCancelResponse(
        session=SessionResponse.from_model(session), cancelledAppointments=cancelled
    )


@router.post("/{provider_id}/sessions/{session_date}/complete", response_model=SessionResponse)
async def complete_session(
    provider_id: int,
    session_date: str,
    principal: Principal = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
):
    require_provider_access(principal, provider_id)
    session = service.complete_session(provider_id, require_calendar_date(session_date))
    return SessionResponse.from_model(session)


@router.patch(
    "/{provider_id}/appointments/{appointment_id}/status", response_model=AppointmentResponse
)
async def update_queue_status(
    provider_id: int,
    appointment_id: int,
    data: QueueStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
):
    """Record a queued patient as completed or no_show"""
    require_provider_access(principal, provider_id)
    appointment = service.record_queue_outcome(provider_id, appointment_id, data.status)
    return AppointmentResponse.from_model(appointment)


@router.patch(
    "/{provider_id}/appointments/{appointment_id}/no-show", response_model=AppointmentResponse
)
async def mark_no_show(
    provider_id: int,
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    service: SessionService = Depends(get_session_service),
):
    require_provider_access(principal, provider_id)
    appointment = service.record_queue_outcome(
        provider_id, appointment_id, AppointmentStatus.NO_SHOW
    )
    return AppointmentResponse.from_model(appointment)
