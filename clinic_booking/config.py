import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_booking.db")

# Single clinic timezone; all dates and times are wall-clock in this zone
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Manila")

# Minimum gap between "now" and the start of an offered slot
BOOKING_LEAD_TIME_MINUTES = int(os.getenv("BOOKING_LEAD_TIME_MINUTES", "60"))

# Global slot step; unset means "advance by the service duration"
_slot_interval = os.getenv("SLOT_INTERVAL_MINUTES")
SLOT_INTERVAL_MINUTES = int(_slot_interval) if _slot_interval else None

MAX_RESCHEDULES_PER_BOOKING = int(os.getenv("MAX_RESCHEDULES_PER_BOOKING", "2"))

# Patients cannot move an appointment that starts sooner than this
RESCHEDULE_MIN_HOURS_BEFORE = float(os.getenv("RESCHEDULE_MIN_HOURS_BEFORE", "24"))

# Google Calendar / Meet sync
CALENDAR_SYNC_ENABLED = os.getenv("CALENDAR_SYNC_ENABLED", "true").lower() == "true"
CALENDAR_SYNC_MAX_RETRIES = int(os.getenv("CALENDAR_SYNC_MAX_RETRIES", "3"))
CALENDAR_SYNC_BACKOFF_SECONDS = float(os.getenv("CALENDAR_SYNC_BACKOFF_SECONDS", "2.0"))
CALENDAR_SYNC_TIMEOUT_SECONDS = float(os.getenv("CALENDAR_SYNC_TIMEOUT_SECONDS", "5.0"))

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")


@dataclass(frozen=True)
class SchedulingPolicy:
    """Knobs shared by slot generation and admission."""

    timezone: str = CLINIC_TIMEZONE
    lead_time_minutes: int = BOOKING_LEAD_TIME_MINUTES
    slot_interval_minutes: Optional[int] = SLOT_INTERVAL_MINUTES
    max_reschedules: int = MAX_RESCHEDULES_PER_BOOKING
    reschedule_min_hours_before: float = RESCHEDULE_MIN_HOURS_BEFORE

    def __post_init__(self):
        if self.lead_time_minutes < 0:
            raise ValueError("lead_time_minutes must not be negative")
        if self.slot_interval_minutes is not None and self.slot_interval_minutes <= 0:
            raise ValueError("slot_interval_minutes must be positive")
        if self.max_reschedules < 0:
            raise ValueError("max_reschedules must not be negative")
        if self.reschedule_min_hours_before < 0:
            raise ValueError("reschedule_min_hours_before must not be negative")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown clinic timezone: {self.timezone}") from exc

    @classmethod
    def from_env(cls) -> "SchedulingPolicy":
        return cls(
            timezone=CLINIC_TIMEZONE,
            lead_time_minutes=BOOKING_LEAD_TIME_MINUTES,
            slot_interval_minutes=SLOT_INTERVAL_MINUTES,
            max_reschedules=MAX_RESCHEDULES_PER_BOOKING,
            reschedule_min_hours_before=RESCHEDULE_MIN_HOURS_BEFORE,
        )

    def now(self) -> datetime:
        """Current wall-clock time in the clinic timezone (naive)."""
        return datetime.now(ZoneInfo(self.timezone)).replace(tzinfo=None)


def google_calendar_configured() -> bool:
    return bool(
        CALENDAR_SYNC_ENABLED and GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN
    )
