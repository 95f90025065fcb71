import logging
from datetime import date, datetime, time, timedelta
from typing import List, NamedTuple, Optional

from sqlalchemy.orm import Session

from .booking_store import BookingStore
from .config import SchedulingPolicy
from .models import Booking, Service
from .schedule_store import ScheduleStore, ScheduleWindow
from .service_catalog import ServiceCatalog

logger = logging.getLogger(__name__)


class Slot(NamedTuple):
    start: time
    end: time

    def as_dict(self) -> dict:
        return {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")}


def candidate_slots(window: ScheduleWindow, duration: int, interval: int) -> List[Slot]:
    """Partition a window into ``duration``-long slots stepping by ``interval``.

    The last slot ends at or before the close time; a duration longer than
    the window gives no slots.
    """
    anchor = date.min
    current = datetime.combine(anchor, window.open_time)
    close = datetime.combine(anchor, window.close_time)
    length = timedelta(minutes=duration)
    step = timedelta(minutes=interval)

    slots = []
    while current + length <= close:
        slots.append(Slot(current.time(), (current + length).time()))
        current += step
    return slots


def overlaps(slot: Slot, booking: Booking) -> bool:
    return slot.start < booking.end_time and booking.start_time < slot.end


def offerable_slots(
    db: Session,
    day: date,
    service: Service,
    policy: SchedulingPolicy,
    now: datetime,
    exclude_booking_id: Optional[int] = None,
) -> List[Slot]:
    """Slots for ``service`` on ``day`` that are free and outside the lead time."""
    if day < now.date():
        return []

    windows = ScheduleStore(db).effective_windows(day)
    if not windows:
        return []

    booked: List[Booking] = [
        b for b in BookingStore(db).active_on(day) if b.id != exclude_booking_id
    ]
    earliest = now + timedelta(minutes=policy.lead_time_minutes)

    slots = []
    for window in windows:
        interval = window.slot_interval_minutes or policy.slot_interval_minutes or service.duration_minutes
        for slot in candidate_slots(window, service.duration_minutes, interval):
            if any(overlaps(slot, b) for b in booked):
                continue
            # inclusive: a slot starting exactly at now + lead time is offered
            if datetime.combine(day, slot.start) < earliest:
                continue
            slots.append(slot)

    slots.sort()
    return slots


def generate_slots(
    db: Session,
    day: date,
    service_id: int,
    policy: SchedulingPolicy,
    now: Optional[datetime] = None,
) -> List[Slot]:
    """Bookable slots for a date. Unknown services raise NotFound; a closed
    or fully booked day is just an empty list."""
    service = ServiceCatalog(db).get_active(service_id)
    if now is None:
        now = policy.now()

    slots = offerable_slots(db, day, service, policy, now)
    logger.debug(f"{len(slots)} slots for service {service_id} on {day.isoformat()}")
    return slots
