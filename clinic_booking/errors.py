"""
Booking error taxonomy.

Raised by the stores, the slot generator and the admission controller; the
HTTP layer maps each class to a status code.
"""


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(BookingError):
    status_code = 404


class SlotUnavailable(BookingError):
    status_code = 409


class ScheduleClosed(SlotUnavailable):
    """No opening window covers the requested date."""


class ValidationError(BookingError):
    status_code = 422


class ServiceLocked(ValidationError):
    """Service is referenced by bookings and can no longer be edited."""

    status_code = 409


class ExternalSyncFailed(BookingError):
    """Calendar bridge exhausted its retry budget. Recorded, never surfaced to patients."""

    status_code = 502
