from datetime import date, datetime, time
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # JSON uses camelCase; Python code may use either name
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TimeSlot(CamelModel):
    start: str
    end: str


class SlotsResponse(CamelModel):
    success: bool = True
    date: str
    service_id: int
    service_name: str
    duration_minutes: int
    available_slots: List[TimeSlot]


class PatientInfo(CamelModel):
    email: str
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None

    @field_validator("email")
    @classmethod
    def email_must_look_valid(cls, value: str) -> str:
        value = value.strip()
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("Valid email is required")
        return value


class BookingRequest(CamelModel):
    service_id: int
    booking_date: date
    booking_time: time
    patient_info: PatientInfo
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None


class RescheduleRequest(CamelModel):
    booking_date: date
    booking_time: time


class BookingStatusUpdate(CamelModel):
    status: Literal["confirmed", "cancelled"]


class BookingOut(CamelModel):
    """Patient-facing view of a booking; calendar sync state is staff-only."""

    id: int
    reference: str
    service_id: int
    service_name: Optional[str] = None
    booking_date: date
    start_time: time
    end_time: time
    patient_email: str
    patient_first_name: str
    patient_last_name: str
    patient_phone: Optional[str] = None
    notes: Optional[str] = None
    status: str
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    amount: Optional[float] = None
    meeting_link: Optional[str] = None
    reschedule_count: int = 0
    created_at: Optional[datetime] = None

    @field_serializer("start_time", "end_time")
    def format_time(self, value: time) -> str:
        return value.strftime("%H:%M")


class AdminBookingOut(BookingOut):
    calendar_sync_status: str
    calendar_event_id: Optional[str] = None
    calendar_sync_attempts: int = 0
    calendar_sync_error: Optional[str] = None
    original_booking_date: Optional[date] = None
    original_start_time: Optional[time] = None


class BookingResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    booking: BookingOut


class BookingListResponse(CamelModel):
    success: bool = True
    bookings: List[BookingOut]


class AdminBookingResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    booking: AdminBookingOut


class AdminBookingListResponse(CamelModel):
    success: bool = True
    bookings: List[AdminBookingOut]


class SuccessResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None


class ServiceOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    duration_minutes: int
    price: float
    category: Optional[str] = None
    is_active: bool


class ServiceCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: int = Field(gt=0)
    price: float = Field(default=0, ge=0)
    category: Optional[str] = None


class ServiceUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    is_active: Optional[bool] = None


class ServiceResponse(CamelModel):
    success: bool = True
    service: ServiceOut


class ServiceListResponse(CamelModel):
    success: bool = True
    services: List[ServiceOut]


class ScheduleRuleIn(CamelModel):
    weekday: Optional[int] = Field(default=None, ge=0, le=6)
    specific_date: Optional[date] = None
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    is_closed: bool = False
    slot_interval_minutes: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_window(self):
        if not self.is_closed and self.open_time and self.close_time and self.open_time >= self.close_time:
            raise ValueError("Open time must be before close time")
        return self


class ScheduleRuleUpdate(CamelModel):
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    slot_interval_minutes: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


class ScheduleRuleOut(CamelModel):
    id: int
    weekday: Optional[int] = None
    specific_date: Optional[date] = None
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    is_closed: bool
    slot_interval_minutes: Optional[int] = None
    is_active: bool

    @field_serializer("open_time", "close_time")
    def format_time(self, value: Optional[time]) -> Optional[str]:
        return value.strftime("%H:%M") if value else None


class ScheduleRuleResponse(CamelModel):
    success: bool = True
    rule: ScheduleRuleOut


class ScheduleRuleListResponse(CamelModel):
    success: bool = True
    rules: List[ScheduleRuleOut]
