"""Appointment router - read endpoints for appointments"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import Principal, get_current_principal
from ...database import get_db
from ...shared.validators import require_calendar_date
from .schemas import AppointmentResponse
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


@router.get("", response_model=list[AppointmentResponse])
async def list_appointments(
    status: Optional[str] = Query(None),
    date: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    """The caller's appointments; bookings still awaiting payment are not listed"""
    day = require_calendar_date(date) if date else None
    appointments = service.list_for_patient(principal, status=status, day=day)
    return [AppointmentResponse.from_model(a) for a in appointments]


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
):
    return AppointmentResponse.from_model(service.get_for(appointment_id, principal))
