from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_CANCELLED = "cancelled"
BOOKING_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED, BOOKING_CANCELLED)
# Statuses that occupy their interval
ACTIVE_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED)

SYNC_NOT_ATTEMPTED = "not_attempted"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"
SYNC_STATUSES = (SYNC_NOT_ATTEMPTED, SYNC_SYNCED, SYNC_FAILED)


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    category = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    bookings = relationship("Booking", back_populates="service")

    __table_args__ = (CheckConstraint("duration_minutes > 0", name="ck_service_duration_positive"),)
    # server-side timestamps are fetched back so detached instances stay readable
    __mapper_args__ = {"eager_defaults": True}


class ScheduleRule(Base):
    """Opening window for a weekday (0=Sunday) or for one specific date."""

    __tablename__ = "schedule_rules"

    id = Column(Integer, primary_key=True, index=True)
    weekday = Column(Integer, nullable=True, index=True)
    specific_date = Column(Date, nullable=True, index=True)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)
    is_closed = Column(Boolean, nullable=False, default=False)
    slot_interval_minutes = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(40), unique=True, index=True, nullable=False)

    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    service = relationship("Service", back_populates="bookings")

    booking_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    patient_email = Column(String(255), nullable=False, index=True)
    patient_first_name = Column(String(100), nullable=False)
    patient_last_name = Column(String(100), nullable=False)
    patient_phone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default=BOOKING_PENDING)

    payment_method = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), nullable=True)

    # External calendar link; never the source of truth for occupancy
    calendar_sync_status = Column(String(20), nullable=False, default=SYNC_NOT_ATTEMPTED)
    calendar_event_id = Column(String(255), nullable=True)
    meeting_link = Column(String(500), nullable=True)
    calendar_sync_attempts = Column(Integer, nullable=False, default=0)
    calendar_sync_error = Column(Text, nullable=True)

    reschedule_count = Column(Integer, nullable=False, default=0)
    original_booking_date = Column(Date, nullable=True)
    original_start_time = Column(Time, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_bookings_date_status", "booking_date", "status"),
        CheckConstraint("start_time < end_time", name="ck_booking_interval"),
    )
    __mapper_args__ = {"eager_defaults": True}

    @property
    def patient_name(self) -> str:
        return f"{self.patient_first_name} {self.patient_last_name}".strip()

    @property
    def service_name(self):
        return self.service.name if self.service else None
