"""Appointment service - Lookups, listings and access control for appointments"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...auth import Principal
from ...constants import Role
from ...errors import AppointmentNotFound, PermissionDenied
from ...models import Appointment
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)


class AppointmentService:
    """Service layer for appointment reads"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()

    def get_for(self, appointment_id: int, principal: Principal) -> Appointment:
        """
        Load an appointment the caller is allowed to act on.

        Patients see their own appointments, doctors the ones in their own
        sessions, admins everything.
        """
        appointment = self.repo.get(self.db, appointment_id)
        if not appointment:
            raise AppointmentNotFound("Appointment not found")

        if principal.is_admin:
            return appointment
        if principal.role == Role.PATIENT and appointment.patient_id == principal.user_id:
            return appointment
        if principal.role == Role.DOCTOR and principal.provider_id == appointment.provider_id:
            return appointment

        logger.warning(f"⚠️ User {principal.user_id} denied access to appointment {appointment_id}")
        raise PermissionDenied("Not allowed to access this appointment")

    def list_for_patient(
        self,
        principal: Principal,
        status: Optional[str] = None,
        day: Optional[date] = None,
    ) -> list[Appointment]:
        return self.repo.list_for_patient(self.db, principal.user_id, status=status, day=day)
