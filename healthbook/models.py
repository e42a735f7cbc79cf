from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .constants import (
    AppointmentStatus,
    ConsultationMode,
    PaymentStatus,
    SagaState,
    SessionStatus,
)
from .database import Base
from .shared.validators import format_minute_of_day


class Provider(Base):
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    specialization = Column(String(255), nullable=True)
    consultation_fee = Column(Float, nullable=False, default=0)
    avg_consultation_minutes = Column(Integer, nullable=False, default=20)
    # Call-mode bookings stay open after the in-person window has ended
    allow_after_hours_calls = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    weekly_availability = relationship(
        "ProviderAvailability", back_populates="provider", cascade="all, delete-orphan"
    )
    blocked_dates = relationship(
        "BlockedDate", back_populates="provider", cascade="all, delete-orphan"
    )
    sessions = relationship("ClinicSession", back_populates="provider")


class ProviderAvailability(Base):
    """Recurring weekly clinic window used to materialise sessions"""

    __tablename__ = "provider_availability"
    __table_args__ = (
        UniqueConstraint("provider_id", "weekday", name="uq_provider_weekday"),
        CheckConstraint("end_minute > start_minute", name="ck_availability_window"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    weekday = Column(Integer, nullable=False)  # 0 = Monday ... 6 = Sunday
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)

    provider = relationship("Provider", back_populates="weekly_availability")


class BlockedDate(Base):
    __tablename__ = "provider_blocked_dates"
    __table_args__ = (UniqueConstraint("provider_id", "date", name="uq_provider_blocked_date"),)

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    reason = Column(String(255), nullable=True)

    provider = relationship("Provider", back_populates="blocked_dates")


class ClinicSession(Base):
    __tablename__ = "clinic_sessions"
    __table_args__ = (
        UniqueConstraint("provider_id", "date", name="uq_session_provider_date"),
        CheckConstraint("end_minute > start_minute", name="ck_session_window"),
        CheckConstraint("avg_consultation_minutes > 0", name="ck_session_avg_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(
        Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date = Column(Date, nullable=False, index=True)  # Calendar day, timezone-naive
    start_minute = Column(Integer, nullable=False)  # Minute of day (09:00 -> 540)
    end_minute = Column(Integer, nullable=False)
    avg_consultation_minutes = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.ACTIVE, index=True)
    # Bumped on status changes and on every reservation/release in this session
    version = Column(Integer, nullable=False, default=1)
    cancel_reason = Column(String(500), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    provider = relationship("Provider", back_populates="sessions")
    appointments = relationship("Appointment", back_populates="session")

    @property
    def start_time(self) -> str:
        return format_minute_of_day(self.start_minute)

    @property
    def end_time(self) -> str:
        return format_minute_of_day(self.end_minute)

    @property
    def capacity(self) -> int:
        if not self.avg_consultation_minutes or self.avg_consultation_minutes <= 0:
            return 0
        return max(0, (self.end_minute - self.start_minute) // self.avg_consultation_minutes)

    def __repr__(self):
        return (
            f"<ClinicSession provider={self.provider_id} {self.date} "
            f"{self.start_time}-{self.end_time} status={self.status}>"
        )


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Two reservations can never hold the same token in one session
        UniqueConstraint("session_id", "token_number", name="uq_appointment_session_token"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String(255), nullable=False, index=True)  # Opaque id from auth service
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("clinic_sessions.id"), nullable=False, index=True)
    appointment_date = Column(Date, nullable=False)
    token_number = Column(Integer, nullable=False)
    scheduled_minute = Column(Integer, nullable=False)
    consultation_mode = Column(String(20), nullable=False, default=ConsultationMode.IN_PERSON)
    fee = Column(Float, nullable=False, default=0)
    reason = Column(Text, nullable=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    status = Column(
        String(30), nullable=False, default=AppointmentStatus.PAYMENT_PENDING, index=True
    )
    saga_state = Column(String(30), nullable=False, default=SagaState.SLOT_RESERVED)
    cancelled_by = Column(String(20), nullable=True)  # patient, doctor, admin, system
    cancel_reason = Column(String(500), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    rescheduled_from = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    # Set once, in the same transaction that creates the replacement
    rescheduled_to = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    session = relationship("ClinicSession", back_populates="appointments")
    provider = relationship("Provider")
    payment_orders = relationship("PaymentOrder", back_populates="appointment")

    @property
    def scheduled_time(self) -> str:
        return format_minute_of_day(self.scheduled_minute)

    def __repr__(self):
        return f"<Appointment {self.id} token={self.token_number} status={self.status}>"


class PaymentOrder(Base):
    """Gateway order handle; written once by the booking saga and never mutated"""

    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(255), unique=True, nullable=False, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    gateway_key = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    appointment = relationship("Appointment", back_populates="payment_orders")
