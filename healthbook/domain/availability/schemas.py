"""Availability domain schemas"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from pydantic import BaseModel

from ...constants import AvailabilityReason, SessionStatus
from ..slots.allocator import TokenSlot


@dataclass
class Availability:
    provider_id: int
    date: date
    consultation_mode: str
    available: bool
    reason: str
    capacity: int = 0
    booked_count: int = 0
    next_token: Optional[int] = None
    session_id: Optional[int] = None
    session_version: Optional[int] = None
    session_status: Optional[str] = None
    session_start: Optional[str] = None
    session_end: Optional[str] = None
    avg_consultation_minutes: Optional[int] = None
    slots: list[TokenSlot] = field(default_factory=list)

    @property
    def is_cancelled(self) -> bool:
        return self.reason == AvailabilityReason.SESSION_CANCELLED

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "reason": self.reason,
            "totalSlots": self.capacity,
            "bookedSlots": self.booked_count,
            "nextToken": self.next_token,
            "sessionId": self.session_id,
            "sessionStartTime": self.session_start,
            "sessionEndTime": self.session_end,
            "avgConsultationMinutes": self.avg_consultation_minutes,
            "isCancelled": self.is_cancelled,
            "isCompleted": self.session_status == SessionStatus.COMPLETED,
            "isSessionEnded": self.reason == AvailabilityReason.SESSION_ENDED,
            "slots": [slot.to_dict() for slot in self.slots],
        }


class SlotResponse(BaseModel):
    slotNumber: int
    scheduledTime: str
    state: str


class AvailabilityResponse(BaseModel):
    available: bool
    reason: str
    totalSlots: int
    bookedSlots: int
    nextToken: Optional[int] = None
    sessionId: Optional[int] = None
    sessionStartTime: Optional[str] = None
    sessionEndTime: Optional[str] = None
    avgConsultationMinutes: Optional[int] = None
    isCancelled: bool
    isCompleted: bool
    isSessionEnded: bool
    slots: list[SlotResponse] = []
