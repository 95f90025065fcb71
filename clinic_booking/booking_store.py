import logging
from contextlib import contextmanager
from datetime import date, time
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload, sessionmaker

from .errors import NotFound
from .locks import DateLockRegistry
from .models import ACTIVE_STATUSES, Booking

logger = logging.getLogger(__name__)


class BookingStore:
    """Single source of truth for interval occupancy."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: int) -> Booking:
        booking = (
            self.db.query(Booking)
            .options(joinedload(Booking.service))
            .filter(Booking.id == booking_id)
            .first()
        )
        if booking is None:
            raise NotFound("Booking not found")
        return booking

    def get_by_reference(self, reference: str) -> Booking:
        booking = (
            self.db.query(Booking)
            .options(joinedload(Booking.service))
            .filter(Booking.reference == reference.strip().upper())
            .first()
        )
        if booking is None:
            raise NotFound(f"No booking with reference {reference}")
        return booking

    def active_on(self, day: date) -> List[Booking]:
        """Pending and confirmed bookings for ``day`` in start order."""
        return (
            self.db.query(Booking)
            .filter(Booking.booking_date == day, Booking.status.in_(ACTIVE_STATUSES))
            .order_by(Booking.start_time)
            .all()
        )

    def find_overlap(
        self, day: date, start: time, end: time, exclude_id: Optional[int] = None
    ) -> Optional[Booking]:
        """First active booking whose [start, end) intersects [start, end)."""
        query = self.db.query(Booking).filter(
            Booking.booking_date == day,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.first()

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def search(
        self,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        sync_status: Optional[str] = None,
        email: Optional[str] = None,
    ) -> List[Booking]:
        query = self.db.query(Booking).options(joinedload(Booking.service))
        if status:
            query = query.filter(Booking.status == status)
        if date_from:
            query = query.filter(Booking.booking_date >= date_from)
        if date_to:
            query = query.filter(Booking.booking_date <= date_to)
        if sync_status:
            query = query.filter(Booking.calendar_sync_status == sync_status)
        if email:
            query = query.filter(Booking.patient_email == email.strip().lower())
        return query.order_by(Booking.booking_date, Booking.start_time).all()

    def for_patient(self, email: str) -> List[Booking]:
        return (
            self.db.query(Booking)
            .options(joinedload(Booking.service))
            .filter(Booking.patient_email == email.strip().lower())
            .order_by(Booking.booking_date.desc(), Booking.start_time.desc())
            .all()
        )


@contextmanager
def locked_booking(session_factory: sessionmaker, locks: DateLockRegistry, booking_id: int, *extra_days: date):
    """Open a transaction on a booking while holding the lock for its date.

    A concurrent reschedule can move the booking between reading its date and
    acquiring the lock, so the date is re-checked under the lock and the
    acquisition repeated if it changed. Yields ``(db, booking)``; the
    transaction commits when the block exits cleanly.
    """
    with session_factory() as db:
        day = BookingStore(db).get(booking_id).booking_date

    while True:
        with locks.hold(day, *extra_days):
            with session_factory() as db, db.begin():
                booking = BookingStore(db).get(booking_id)
                if booking.booking_date == day:
                    yield db, booking
                    return
                day = booking.booking_date
