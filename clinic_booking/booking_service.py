"""
Booking admission controller

The only place bookings are created, moved or released. Every write runs
under the per-date lock and inside one transaction, so the overlap check
and the insert are indivisible for a given clinic date. Calendar side
effects are handed to the sync worker after commit.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from .booking_store import BookingStore, locked_booking
from .calendar_sync import CalendarSyncWorker
from .config import SchedulingPolicy
from .errors import NotFound, ScheduleClosed, SlotUnavailable, ValidationError
from .locks import DateLockRegistry
from .models import (
    ACTIVE_STATUSES,
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_PENDING,
    SYNC_FAILED,
    SYNC_NOT_ATTEMPTED,
    SYNC_SYNCED,
    Booking,
    Service,
)
from .schedule_store import ScheduleStore
from .scheduler import Slot, offerable_slots
from .schemas import PatientInfo
from .service_catalog import ServiceCatalog

logger = logging.getLogger(__name__)


def new_reference() -> str:
    return f"BK-{uuid.uuid4().hex[:12].upper()}"


def slot_for(day: date, start: time, duration_minutes: int) -> Slot:
    start = start.replace(tzinfo=None)
    start_full = datetime.combine(day, start)
    end_full = start_full + timedelta(minutes=duration_minutes)
    if end_full.date() != day:
        raise SlotUnavailable("Appointments cannot run past midnight")
    return Slot(start, end_full.time())


class BookingAdmissionController:
    def __init__(
        self,
        session_factory: sessionmaker,
        policy: SchedulingPolicy,
        locks: Optional[DateLockRegistry] = None,
        calendar_sync: Optional[CalendarSyncWorker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.policy = policy
        self.locks = locks or DateLockRegistry()
        self.calendar_sync = calendar_sync
        self._clock = clock or policy.now

    def now(self) -> datetime:
        return self._clock()

    def _check_admissible(
        self,
        db: Session,
        service: Service,
        day: date,
        slot: Slot,
        exclude_booking_id: Optional[int] = None,
    ) -> None:
        """Re-derive slot validity at commit time; raises SlotUnavailable."""
        if BookingStore(db).find_overlap(day, slot.start, slot.end, exclude_booking_id):
            raise SlotUnavailable("This time slot is no longer available")
        if not ScheduleStore(db).effective_windows(day):
            raise ScheduleClosed(f"The clinic is closed on {day.isoformat()}")
        offered = offerable_slots(db, day, service, self.policy, self.now(), exclude_booking_id)
        if slot not in offered:
            raise SlotUnavailable(
                f"{slot.start:%H:%M} on {day.isoformat()} is not an available slot"
            )

    def create_booking(
        self,
        service_id: int,
        booking_date: date,
        start_time: time,
        patient: PatientInfo,
        payment_method: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> Booking:
        with self.session_factory() as db:
            duration = ServiceCatalog(db).get_active(service_id).duration_minutes
        slot = slot_for(booking_date, start_time, duration)

        with self.locks.hold(booking_date):
            with self.session_factory() as db, db.begin():
                service = ServiceCatalog(db).get_active(service_id)
                if service.duration_minutes != duration:
                    slot = slot_for(booking_date, start_time, service.duration_minutes)
                try:
                    self._check_admissible(db, service, booking_date, slot)
                except SlotUnavailable as e:
                    logger.warning(
                        f"🚫 Booking rejected for service {service_id} at "
                        f"{booking_date.isoformat()} {slot.start:%H:%M}: {e.message}"
                    )
                    raise

                booking = BookingStore(db).add(
                    Booking(
                        reference=new_reference(),
                        service=service,
                        booking_date=booking_date,
                        start_time=slot.start,
                        end_time=slot.end,
                        patient_email=patient.email.strip().lower(),
                        patient_first_name=patient.first_name.strip(),
                        patient_last_name=patient.last_name.strip(),
                        patient_phone=patient.phone_number,
                        notes=patient.notes,
                        status=BOOKING_PENDING,
                        payment_method=payment_method,
                        payment_reference=payment_reference,
                        amount=service.price,
                        calendar_sync_status=SYNC_NOT_ATTEMPTED,
                        calendar_sync_attempts=0,
                        reschedule_count=0,
                    )
                )

        logger.info(
            f"✅ Booking {booking.reference} (id={booking.id}) admitted for "
            f"{booking_date.isoformat()} {slot.start:%H:%M}-{slot.end:%H:%M}"
        )
        if self.calendar_sync is not None:
            self.calendar_sync.schedule_create(booking.id)
        return booking

    def get_booking(self, booking_id: int) -> Booking:
        with self.session_factory() as db:
            return BookingStore(db).get(booking_id)

    def get_booking_by_reference(self, reference: str) -> Booking:
        with self.session_factory() as db:
            return BookingStore(db).get_by_reference(reference)

    def cancel_booking(self, booking_id: int) -> Booking:
        """Release a booking's interval. Cancelling twice is NotFound."""
        with locked_booking(self.session_factory, self.locks, booking_id) as (db, booking):
            if booking.status == BOOKING_CANCELLED:
                raise NotFound("Booking not found or already cancelled")
            booking.status = BOOKING_CANCELLED
            event_id = booking.calendar_event_id if booking.calendar_sync_status == SYNC_SYNCED else None

        logger.info(f"🗑️ Booking {booking.reference} (id={booking_id}) cancelled")
        if event_id and self.calendar_sync is not None:
            self.calendar_sync.schedule_delete(event_id, booking_id)
        return booking

    def confirm_booking(self, booking_id: int) -> Booking:
        with locked_booking(self.session_factory, self.locks, booking_id) as (db, booking):
            if booking.status != BOOKING_PENDING:
                raise ValidationError(f"Only pending bookings can be confirmed (booking is {booking.status})")
            booking.status = BOOKING_CONFIRMED

        logger.info(f"✅ Booking {booking.reference} (id={booking_id}) confirmed")
        return booking

    def update_status(self, booking_id: int, status: str) -> Booking:
        if status == BOOKING_CONFIRMED:
            return self.confirm_booking(booking_id)
        if status == BOOKING_CANCELLED:
            return self.cancel_booking(booking_id)
        raise ValidationError(f"Unsupported booking status: {status}")

    def reschedule_booking(self, booking_id: int, new_date: date, new_time: time) -> Booking:
        """Move a booking to another slot, possibly on another date.

        Both dates stay locked for the duration, so the old interval is
        released and the new one claimed in a single step.
        """
        with locked_booking(self.session_factory, self.locks, booking_id, new_date) as (db, booking):
            if booking.status not in ACTIVE_STATUSES:
                raise ValidationError("Only pending or confirmed bookings can be rescheduled")
            if booking.reschedule_count >= self.policy.max_reschedules:
                raise ValidationError(
                    f"Maximum reschedules ({self.policy.max_reschedules}) reached"
                )
            starts_at = datetime.combine(booking.booking_date, booking.start_time)
            min_notice = timedelta(hours=self.policy.reschedule_min_hours_before)
            if starts_at - self.now() < min_notice:
                raise ValidationError(
                    f"Cannot reschedule within {self.policy.reschedule_min_hours_before:g} hour(s) of the appointment"
                )

            slot = slot_for(new_date, new_time, booking.service.duration_minutes)
            self._check_admissible(db, booking.service, new_date, slot, exclude_booking_id=booking.id)

            if booking.original_booking_date is None:
                booking.original_booking_date = booking.booking_date
                booking.original_start_time = booking.start_time
            old_event_id = booking.calendar_event_id

            booking.booking_date = new_date
            booking.start_time = slot.start
            booking.end_time = slot.end
            booking.reschedule_count += 1
            booking.calendar_sync_status = SYNC_NOT_ATTEMPTED
            booking.calendar_event_id = None
            booking.meeting_link = None
            booking.calendar_sync_error = None

        logger.info(
            f"🔁 Booking {booking.reference} (id={booking_id}) moved to "
            f"{new_date.isoformat()} {slot.start:%H:%M}"
        )
        if self.calendar_sync is not None:
            if old_event_id:
                self.calendar_sync.schedule_delete(old_event_id)
            self.calendar_sync.schedule_create(booking_id)
        return booking

    def resync_calendar(self, booking_id: int) -> Booking:
        """Staff-triggered retry for a booking whose calendar sync gave up."""
        if self.calendar_sync is None:
            raise ValidationError("Calendar sync is not configured")

        with locked_booking(self.session_factory, self.locks, booking_id) as (db, booking):
            if booking.status not in ACTIVE_STATUSES:
                raise ValidationError("Cancelled bookings are not synced")
            if booking.calendar_sync_status == SYNC_SYNCED:
                raise ValidationError("Booking is already synced")
            if booking.calendar_sync_status != SYNC_FAILED:
                raise ValidationError("Calendar sync for this booking is still in progress")
            # Back in the queue; a second resync is refused until this one finishes
            booking.calendar_sync_status = SYNC_NOT_ATTEMPTED

        self.calendar_sync.schedule_create(booking_id)
        return booking
