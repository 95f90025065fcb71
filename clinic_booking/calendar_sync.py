"""
Calendar sync worker

Runs Google Calendar side effects for committed bookings on a small thread
pool, outside the admission transaction. Each job has a fixed retry budget
with exponential backoff; once it is spent the booking stays in sync status
"failed" for staff follow-up.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Set

from sqlalchemy.orm import sessionmaker

from .booking_store import BookingStore, locked_booking
from .calendar_bridge import CalendarBridge, CalendarEvent
from .errors import ExternalSyncFailed, NotFound
from .locks import DateLockRegistry
from .models import BOOKING_CANCELLED, SYNC_FAILED, SYNC_SYNCED

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


class CalendarSyncWorker:
    def __init__(
        self,
        session_factory: sessionmaker,
        bridge: CalendarBridge,
        locks: Optional[DateLockRegistry] = None,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = 2,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.session_factory = session_factory
        self.bridge = bridge
        self.locks = locks or DateLockRegistry()
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="calendar-sync")
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    # Job submission

    def schedule_create(self, booking_id: int) -> Future:
        logger.info(f"📅 Calendar sync queued for booking {booking_id}")
        return self._submit(self.sync_booking, booking_id)

    def schedule_delete(self, event_id: str, booking_id: Optional[int] = None) -> Future:
        logger.info(f"📅 Calendar event {event_id} queued for deletion")
        return self._submit(self.remove_event, event_id, booking_id)

    def _submit(self, fn, *args) -> Future:
        future = self._executor.submit(self._run_job, fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    @staticmethod
    def _run_job(fn, *args):
        try:
            return fn(*args)
        except Exception as e:
            # Background boundary: nothing above us to report to
            logger.exception(f"❌ Calendar sync job {fn.__name__}{args} crashed: {e}")
            return None

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every queued job has finished."""
        while True:
            with self._pending_lock:
                pending = set(self._pending)
            if not pending:
                return
            done, not_done = wait(pending, timeout=timeout)
            if not_done:
                return

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs)
        self.bridge.close()

    # Jobs

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** attempt)

    def sync_booking(self, booking_id: int) -> Optional[str]:
        """Create the external event for a booking, retrying with backoff.

        Returns the final sync status, or None when the booking no longer
        needs an event (deleted, cancelled or already synced).
        """
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            with self.session_factory() as db:
                try:
                    booking = BookingStore(db).get(booking_id)
                except NotFound:
                    logger.warning(f"⚠️ Booking {booking_id} vanished before calendar sync")
                    return None
                if booking.status == BOOKING_CANCELLED:
                    logger.info(f"ℹ️ Booking {booking_id} cancelled, skipping calendar sync")
                    return None
                if booking.calendar_sync_status == SYNC_SYNCED and booking.calendar_event_id:
                    return SYNC_SYNCED
                generation = booking.reschedule_count

            try:
                event = self.bridge.create_event(booking)
            except Exception as e:
                final = attempt + 1 == attempts
                self._record_failure(booking_id, e, final)
                if not final:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"⚠️ Calendar sync attempt {attempt + 1}/{attempts} for booking {booking_id} "
                        f"failed: {e}; retrying in {delay:.1f}s"
                    )
                    self._sleep(delay)
                    continue
                failure = ExternalSyncFailed(
                    f"Calendar sync for booking {booking_id} failed after {attempts} attempts: {e}"
                )
                logger.error(f"❌ {failure.message}")
                return SYNC_FAILED

            return self._record_success(booking_id, event, generation)
        return SYNC_FAILED

    def _record_failure(self, booking_id: int, error: Exception, final: bool) -> None:
        """Count a failed attempt; the status only turns "failed" on the last one."""
        try:
            with locked_booking(self.session_factory, self.locks, booking_id) as (db, booking):
                booking.calendar_sync_attempts = (booking.calendar_sync_attempts or 0) + 1
                if final and booking.calendar_sync_status != SYNC_SYNCED:
                    booking.calendar_sync_status = SYNC_FAILED
                booking.calendar_sync_error = str(error)[:MAX_ERROR_LENGTH]
        except NotFound:
            pass

    def _record_success(self, booking_id: int, event: CalendarEvent, generation: int) -> Optional[str]:
        stale = False
        try:
            with locked_booking(self.session_factory, self.locks, booking_id) as (db, booking):
                # Stale once the booking has moved on or another job recorded its event
                if (
                    booking.status == BOOKING_CANCELLED
                    or booking.reschedule_count != generation
                    or (booking.calendar_event_id and booking.calendar_event_id != event.event_id)
                ):
                    stale = True
                else:
                    booking.calendar_sync_status = SYNC_SYNCED
                    booking.calendar_event_id = event.event_id
                    booking.meeting_link = event.meeting_link
                    booking.calendar_sync_attempts = (booking.calendar_sync_attempts or 0) + 1
                    booking.calendar_sync_error = None
        except NotFound:
            stale = True

        if stale:
            logger.info(f"ℹ️ Booking {booking_id} changed during sync, discarding event {event.event_id}")
            self.remove_event(event.event_id)
            return None

        logger.info(f"✅ Booking {booking_id} synced to calendar event {event.event_id}")
        return SYNC_SYNCED

    def remove_event(self, event_id: str, booking_id: Optional[int] = None) -> bool:
        """Delete an external event, best-effort with the same retry budget."""
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                self.bridge.delete_event(event_id)
                break
            except Exception as e:
                if attempt + 1 < attempts:
                    self._sleep(self._backoff(attempt))
                    continue
                logger.error(f"❌ Could not delete calendar event {event_id} after {attempts} attempts: {e}")
                return False

        if booking_id is not None:
            try:
                with locked_booking(self.session_factory, self.locks, booking_id) as (db, booking):
                    if booking.calendar_event_id == event_id:
                        booking.calendar_event_id = None
                        booking.meeting_link = None
            except NotFound:
                pass
        return True
