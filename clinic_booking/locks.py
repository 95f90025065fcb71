import threading
import weakref
from contextlib import contextmanager
from datetime import date
from typing import Iterator


class DateLockRegistry:
    """One mutex per clinic date.

    Admissions, cancellations and reschedules that touch the same date run
    one at a time; different dates never wait on each other. Multi-date
    operations acquire in ascending date order.

    Locks are held weakly: a date's entry lives only while some caller holds
    or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[date, threading.Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def _lock_for(self, day: date) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(day)
            if lock is None:
                lock = threading.Lock()
                self._locks[day] = lock
            return lock

    @contextmanager
    def hold(self, *days: date) -> Iterator[None]:
        locks = [self._lock_for(d) for d in sorted(set(days))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
