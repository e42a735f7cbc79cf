"""Session domain schemas - Pydantic models for validation"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...constants import AppointmentStatus
from ...shared.validators import format_minute_of_day, parse_time_of_day


class SessionUpsert(BaseModel):
    """Define (or redefine) a provider's clinic window for one date"""

    sessionStartTime: str
    sessionEndTime: str
    avgConsultationMinutes: Optional[int] = None

    @field_validator("sessionStartTime", "sessionEndTime")
    @classmethod
    def validate_time(cls, v: str) -> str:
        # Normalise 12h/24h input to HH:MM
        return format_minute_of_day(parse_time_of_day(v))

    @field_validator("avgConsultationMinutes")
    @classmethod
    def validate_avg(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("avgConsultationMinutes must be a positive integer")
        return v

    @model_validator(mode="after")
    def validate_window(self):
        if parse_time_of_day(self.sessionEndTime) <= parse_time_of_day(self.sessionStartTime):
            raise ValueError("sessionEndTime must be after sessionStartTime")
        return self


class SessionCancelRequest(BaseModel):
    reason: Optional[str] = None


class QueueStatusUpdate(BaseModel):
    """Outcome a doctor records for a patient in the queue"""

    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        status = v.strip().lower().replace("-", "_")
        if status not in AppointmentStatus.QUEUE_OUTCOMES:
            raise ValueError(f"status must be one of: {', '.join(AppointmentStatus.QUEUE_OUTCOMES)}")
        return status


class SessionResponse(BaseModel):
    id: int
    providerId: int
    date: date
    sessionStartTime: str
    sessionEndTime: str
    avgConsultationMinutes: int
    capacity: int
    status: str
    version: int
    cancelReason: Optional[str] = None

    @classmethod
    def from_model(cls, session) -> "SessionResponse":
        return cls(
            id=session.id,
            providerId=session.provider_id,
            date=session.date,
            sessionStartTime=session.start_time,
            sessionEndTime=session.end_time,
            avgConsultationMinutes=session.avg_consultation_minutes,
            capacity=session.capacity,
            status=session.status,
            version=session.version,
            cancelReason=session.cancel_reason,
        )


class SessionCancelResponse(BaseModel):
    session: SessionResponse
    cancelledAppointments: int
