"""Availability router - public slot lookup for a provider's date"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...constants import ConsultationMode
from ...database import get_db
from ...shared.clock import get_clock
from ...shared.validators import require_calendar_date
from .schemas import AvailabilityResponse
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doctors", tags=["Availability"])


def get_availability_service(
    db: Session = Depends(get_db), clock=Depends(get_clock)
) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db, clock=clock)


@router.get("/{provider_id}/slots", response_model=AvailabilityResponse)
async def get_slots(
    provider_id: int,
    date: str = Query(...),
    mode: str = Query(ConsultationMode.IN_PERSON),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Token slots and booking availability for a provider on a date"""
    day = require_calendar_date(date)
    availability = service.get_availability(provider_id, day, mode)
    return availability.to_dict()
