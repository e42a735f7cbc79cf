"""
Slot allocator

Turns a session window into its ordered list of numbered token slots. Works on
any object exposing ``start_minute``, ``end_minute``,
``avg_consultation_minutes`` and ``status`` (the ORM ClinicSession or a plain
SessionWindow), and never touches the database.
"""

from dataclasses import dataclass, field

from ...constants import SessionStatus
from ...shared.validators import format_minute_of_day


@dataclass(frozen=True)
class SessionWindow:
    start_minute: int
    end_minute: int
    avg_consultation_minutes: int
    status: str = SessionStatus.ACTIVE


@dataclass(frozen=True)
class TokenSlot:
    slot_number: int
    scheduled_minute: int
    state: str  # "available" | "booked"

    @property
    def scheduled_time(self) -> str:
        return format_minute_of_day(self.scheduled_minute)

    def to_dict(self) -> dict:
        return {
            "slotNumber": self.slot_number,
            "scheduledTime": self.scheduled_time,
            "state": self.state,
        }


@dataclass(frozen=True)
class SlotPlan:
    capacity: int
    booked_count: int
    slots: list[TokenSlot] = field(default_factory=list)

    @property
    def accepts_bookings(self) -> bool:
        return self.capacity > 0 and self.booked_count < self.capacity

    @property
    def available_count(self) -> int:
        return max(0, self.capacity - self.booked_count)


def session_capacity(session) -> int:
    """floor((end - start) / avg), never negative"""
    avg = session.avg_consultation_minutes
    if not avg or avg <= 0:
        return 0
    return max(0, (session.end_minute - session.start_minute) // avg)


def token_start_minute(session, token_number: int) -> int:
    """Scheduled minute of day for a token: start + (n - 1) * avg"""
    return session.start_minute + (token_number - 1) * session.avg_consultation_minutes


def compute_slots(session, booked_count: int = 0) -> SlotPlan:
    """
    Derive the token slots of a session.

    Only active sessions yield slots. Slots are emitted every
    ``avg_consultation_minutes`` from the start for as long as a whole
    consultation still fits before the end, so the slot count always equals
    the session capacity. The first ``booked_count`` slots are marked booked.
    """
    if session is None or session.status != SessionStatus.ACTIVE:
        return SlotPlan(capacity=0, booked_count=booked_count)

    capacity = session_capacity(session)
    slots = []
    current = session.start_minute
    number = 1
    while number <= capacity and current + session.avg_consultation_minutes <= session.end_minute:
        state = "booked" if number <= booked_count else "available"
        slots.append(TokenSlot(slot_number=number, scheduled_minute=current, state=state))
        current += session.avg_consultation_minutes
        number += 1

    return SlotPlan(capacity=capacity, booked_count=booked_count, slots=slots)
