"""Wall-clock helpers; services take a clock callable so tests can pin time"""

from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from ..config import CLINIC_TIMEZONE

Clock = Callable[[], datetime]


def clinic_now() -> datetime:
    """Current naive local time at the clinic"""
    return datetime.now(ZoneInfo(CLINIC_TIMEZONE)).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.utcnow()


def get_clock() -> Clock:
    """Dependency for the clinic clock (overridden in tests)"""
    return clinic_now
