"""Appointment domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...constants import ConsultationMode
from ...shared.validators import parse_calendar_date


class AppointmentCreate(BaseModel):
    """Patient request to book the next token in a provider's session"""

    doctorId: int
    appointmentDate: date
    consultationMode: str = ConsultationMode.IN_PERSON
    reason: Optional[str] = None
    # Fee shown to the patient at checkout; must match the provider's fee
    fee: Optional[float] = None

    @field_validator("appointmentDate", mode="before")
    @classmethod
    def validate_date(cls, v):
        return parse_calendar_date(v)

    @field_validator("consultationMode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        mode = (v or ConsultationMode.IN_PERSON).strip().lower().replace("-", "_")
        if mode not in ConsultationMode.ALL:
            raise ValueError(f"consultationMode must be one of: {', '.join(ConsultationMode.ALL)}")
        return mode

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) > 2000:
            raise ValueError("reason must be 2000 characters or fewer")
        return v


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    appointmentDate: date

    @field_validator("appointmentDate", mode="before")
    @classmethod
    def validate_date(cls, v):
        return parse_calendar_date(v)


class AppointmentResponse(BaseModel):
    id: int
    patientId: str
    doctorId: int
    sessionId: int
    appointmentDate: date
    tokenNumber: int
    scheduledTime: str
    consultationMode: str
    fee: float
    reason: Optional[str] = None
    status: str
    paymentStatus: str
    sagaState: str
    cancelledBy: Optional[str] = None
    cancelReason: Optional[str] = None
    cancelledAt: Optional[datetime] = None
    rescheduledFrom: Optional[int] = None
    rescheduledTo: Optional[int] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            patientId=appointment.patient_id,
            doctorId=appointment.provider_id,
            sessionId=appointment.session_id,
            appointmentDate=appointment.appointment_date,
            tokenNumber=appointment.token_number,
            scheduledTime=appointment.scheduled_time,
            consultationMode=appointment.consultation_mode,
            fee=appointment.fee,
            reason=appointment.reason,
            status=appointment.status,
            paymentStatus=appointment.payment_status,
            sagaState=appointment.saga_state,
            cancelledBy=appointment.cancelled_by,
            cancelReason=appointment.cancel_reason,
            cancelledAt=appointment.cancelled_at,
            rescheduledFrom=appointment.rescheduled_from,
            rescheduledTo=appointment.rescheduled_to,
            createdAt=appointment.created_at,
        )
