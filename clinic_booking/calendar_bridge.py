"""
Google Calendar Bridge
Creates and deletes calendar events (with a Google Meet link) for bookings.

The bridge is best-effort: every failure is raised as CalendarBridgeError and
handled by the calendar sync worker, never by the admission path.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

import httpx

from .models import Booking

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
UTC = timezone.utc


class CalendarEvent(NamedTuple):
    event_id: str
    meeting_link: Optional[str] = None


class CalendarBridgeError(Exception):
    pass


class CalendarBridge:
    """Interface consumed by the calendar sync worker."""

    def create_event(self, booking: Booking) -> CalendarEvent:
        raise NotImplementedError

    def delete_event(self, event_id: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class GoogleCalendarBridge(CalendarBridge):
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        calendar_id: str = "primary",
        timezone: str = "UTC",
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.calendar_id = calendar_id
        self.timezone = timezone
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._token_lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._token_expires_at = datetime.min.replace(tzinfo=UTC)

    def _get_access_token(self) -> str:
        """Cached access token, refreshed when within 5 minutes of expiry."""
        with self._token_lock:
            if self._access_token and self._token_expires_at > datetime.now(UTC) + timedelta(minutes=5):
                return self._access_token

            logger.info("🔄 Refreshing Google Calendar access token")
            response = self._request(
                "POST",
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            if response.status_code != 200:
                raise CalendarBridgeError(f"Token refresh failed ({response.status_code}): {response.text}")

            tokens = response.json()
            access_token = tokens.get("access_token")
            if not access_token:
                raise CalendarBridgeError("No access token in refresh response")

            self._access_token = access_token
            self._token_expires_at = datetime.now(UTC) + timedelta(seconds=tokens.get("expires_in", 3600))
            return access_token

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise CalendarBridgeError(f"{method} {url} failed: {exc}") from exc

    def _event_body(self, booking: Booking) -> dict:
        start = datetime.combine(booking.booking_date, booking.start_time)
        end = datetime.combine(booking.booking_date, booking.end_time)
        service_name = booking.service.name if booking.service else "Clinic consultation"

        description = f"{service_name} with {booking.patient_name}"
        if booking.notes:
            description += f"\n\nNotes: {booking.notes}"

        return {
            "summary": f"{service_name} - {booking.patient_name}",
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.timezone},
            "attendees": [{"email": booking.patient_email}],
            "conferenceData": {
                "createRequest": {
                    # Stable per booking so a retried insert does not spawn a second Meet room
                    "requestId": f"{booking.reference}-{booking.reschedule_count}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }

    def create_event(self, booking: Booking) -> CalendarEvent:
        access_token = self._get_access_token()
        response = self._request(
            "POST",
            f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}/events",
            params={"conferenceDataVersion": 1, "sendUpdates": "all"},
            headers={"Authorization": f"Bearer {access_token}"},
            json=self._event_body(booking),
        )
        if response.status_code not in (200, 201):
            raise CalendarBridgeError(f"Event insert failed ({response.status_code}): {response.text}")

        event = response.json()
        event_id = event.get("id")
        if not event_id:
            raise CalendarBridgeError("Event insert response carried no id")

        entry_points = (event.get("conferenceData") or {}).get("entryPoints") or []
        meeting_link = next(
            (e.get("uri") for e in entry_points if e.get("entryPointType") == "video"),
            event.get("hangoutLink"),
        )
        logger.info(f"✅ Google Calendar event created: {event_id}")
        return CalendarEvent(event_id=event_id, meeting_link=meeting_link)

    def delete_event(self, event_id: str) -> None:
        access_token = self._get_access_token()
        response = self._request(
            "DELETE",
            f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}/events/{event_id}",
            params={"sendUpdates": "all"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        # Already gone on Google's side counts as deleted
        if response.status_code in (404, 410):
            logger.info(f"ℹ️ Google Calendar event {event_id} already deleted")
            return
        if response.status_code not in (200, 204):
            raise CalendarBridgeError(f"Event delete failed ({response.status_code}): {response.text}")
        logger.info(f"🗑️ Google Calendar event deleted: {event_id}")

    def close(self) -> None:
        self._client.close()
