"""Shared test fixtures for the clinic booking tests."""

from datetime import date, datetime, time
from decimal import Decimal

import pytest

from clinic_booking.booking_service import BookingAdmissionController
from clinic_booking.calendar_bridge import CalendarBridge, CalendarBridgeError, CalendarEvent
from clinic_booking.calendar_sync import CalendarSyncWorker
from clinic_booking.config import SchedulingPolicy
from clinic_booking.database import init_db, make_engine, make_session_factory
from clinic_booking.locks import DateLockRegistry
from clinic_booking.schedule_store import ScheduleStore
from clinic_booking.schemas import PatientInfo
from clinic_booking.service_catalog import ServiceCatalog

# Monday 14 January 2030, 09:00 clinic time
TODAY = date(2030, 1, 14)
TOMORROW = date(2030, 1, 15)
NOW = datetime(2030, 1, 14, 9, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeCalendarBridge(CalendarBridge):
    """Records calls; ``fail_creates`` failures before succeeding (-1 = always)."""

    def __init__(self, fail_creates: int = 0, fail_deletes: int = 0):
        self.fail_creates = fail_creates
        self.fail_deletes = fail_deletes
        self.create_calls = []
        self.deleted = []
        self.on_create = None
        self.closed = False

    def create_event(self, booking):
        self.create_calls.append(booking.id)
        n = len(self.create_calls)
        if self.on_create is not None:
            self.on_create(booking)
        if self.fail_creates != 0:
            self.fail_creates -= 1
            raise CalendarBridgeError("calendar unavailable")
        return CalendarEvent(event_id=f"evt-{booking.id}-{n}", meeting_link=f"https://meet.google.com/abc-{n}")

    def delete_event(self, event_id):
        if self.fail_deletes != 0:
            self.fail_deletes -= 1
            raise CalendarBridgeError("calendar unavailable")
        self.deleted.append(event_id)

    def close(self):
        self.closed = True


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def policy() -> SchedulingPolicy:
    return SchedulingPolicy(
        timezone="UTC",
        lead_time_minutes=60,
        slot_interval_minutes=None,
        max_reschedules=2,
        reschedule_min_hours_before=24,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def clinic(session_factory):
    """Consultation (30 min) and check-up (60 min), open 09:00-12:00 every day."""
    with session_factory() as db:
        catalog = ServiceCatalog(db)
        consultation = catalog.create("Consultation", 30, price=Decimal("500.00"), category="General")
        checkup = catalog.create("Full check-up", 60, price=Decimal("1200.00"), category="General")
        schedule = ScheduleStore(db)
        for weekday in range(7):
            schedule.add_rule(weekday=weekday, open_time=time(9, 0), close_time=time(12, 0))
        db.commit()
        return {"consultation": consultation.id, "checkup": checkup.id}


@pytest.fixture
def patient() -> PatientInfo:
    return PatientInfo(
        email="Ana.Reyes@Example.com",
        first_name="Ana",
        last_name="Reyes",
        phone_number="+63 917 555 0101",
    )


@pytest.fixture
def locks() -> DateLockRegistry:
    return DateLockRegistry()


@pytest.fixture
def controller(session_factory, policy, clock, locks) -> BookingAdmissionController:
    return BookingAdmissionController(session_factory, policy, locks=locks, clock=clock)


@pytest.fixture
def bridge() -> FakeCalendarBridge:
    return FakeCalendarBridge()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def sync_worker(session_factory, bridge, locks, sleeps):
    worker = CalendarSyncWorker(
        session_factory,
        bridge,
        locks=locks,
        max_retries=2,
        backoff_seconds=0.5,
        sleep=sleeps.append,
    )
    yield worker
    worker.shutdown()


@pytest.fixture
def synced_controller(session_factory, policy, clock, locks, sync_worker) -> BookingAdmissionController:
    return BookingAdmissionController(
        session_factory, policy, locks=locks, calendar_sync=sync_worker, clock=clock
    )
