"""
Google Calendar v3 REST client.

API Documentation: https://developers.google.com/calendar/api/v3/reference/events
Every request carries a bearer token from a TokenSource, which refreshes
service account tokens before they expire.
"""

from datetime import datetime
from typing import Any
from urllib.parse import quote

from dateutil.parser import isoparse
from loguru import logger

from booking_engine.integrations.base import CalendarEvent, CalendarProvider, EventData
from booking_engine.integrations.google_auth import TokenSource
from booking_engine.services.client import ServiceClient, ServiceConfig
from booking_engine.services.errors import ProviderError


class GoogleCalendarClient(CalendarProvider):
    """Calendar provider backed by the Google Calendar events API."""

    BASE_URL = "https://www.googleapis.com/calendar/v3"
    SERVICE_ID = "google_calendar"
    service_id = SERVICE_ID

    def __init__(
        self,
        client: ServiceClient,
        calendar_id: str,
        token_source: TokenSource,
        default_timezone: str = "Europe/London",
        base_url: str | None = None,
    ):
        self.client = client
        self.calendar_id = calendar_id
        self.token_source = token_source
        self.default_timezone = default_timezone
        self.base_url = base_url or self.BASE_URL
        self._initialized = False

    async def initialize(self) -> None:
        if not self.calendar_id:
            raise ProviderError("Google Calendar id missing", service_id=self.SERVICE_ID)
        # Fails fast on bad credentials
        await self.token_source.get_token()
        self.client.register_service(
            ServiceConfig(
                service_id=self.SERVICE_ID,
                base_url=self.base_url,
                timeout=15.0,
            )
        )
        self._initialized = True
        logger.info(f"Google Calendar client initialized for '{self.calendar_id}'")

    async def close(self) -> None:
        self._initialized = False

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self.calendar_id, safe='')}/events"

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise ProviderError(
                "Calendar client not initialized", service_id=self.SERVICE_ID
            )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        token = await self.token_source.get_token()
        return await self.client.request(
            self.SERVICE_ID,
            method,
            path,
            headers={"Authorization": f"Bearer {token}"},
            **kwargs,
        )

    async def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        self._ensure_initialized()

        params: dict[str, Any] = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": 250,
        }
        events: list[CalendarEvent] = []
        while True:
            data = await self._request("GET", self._events_path, params=params)
            for item in (data or {}).get("items", []):
                event = self._parse_event(item)
                if event is not None:
                    events.append(event)

            page_token = (data or {}).get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.info(f"Fetched {len(events)} calendar events")
        return events

    async def create_event(self, data: EventData) -> CalendarEvent:
        self._ensure_initialized()
        item = await self._request(
            "POST",
            self._events_path,
            params={"sendUpdates": "all"},
            json_data=self._event_body(data),
        )
        event = self._parse_event(item)
        if event is None:
            raise ProviderError("Calendar returned an unreadable event", self.SERVICE_ID)
        return event

    async def update_event(self, event_id: str, data: EventData) -> CalendarEvent:
        self._ensure_initialized()
        item = await self._request(
            "PUT",
            f"{self._events_path}/{quote(event_id, safe='')}",
            params={"sendUpdates": "all"},
            json_data=self._event_body(data),
        )
        event = self._parse_event(item)
        if event is None:
            raise ProviderError("Calendar returned an unreadable event", self.SERVICE_ID)
        return event

    async def delete_event(self, event_id: str) -> None:
        self._ensure_initialized()
        try:
            await self._request(
                "DELETE",
                f"{self._events_path}/{quote(event_id, safe='')}",
                params={"sendUpdates": "all"},
            )
        except ProviderError as e:
            if e.status_code in (404, 410):
                logger.warning(f"Calendar event {event_id} already gone")
                return
            raise

    @staticmethod
    def _event_body(data: EventData) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": data.summary,
            "description": data.description,
            "start": {"dateTime": data.start.isoformat(), "timeZone": data.timezone},
            "end": {"dateTime": data.end.isoformat(), "timeZone": data.timezone},
            "attendees": [{"email": email} for email in data.attendees],
        }
        if data.location:
            body["location"] = data.location
        return body

    def _parse_event(self, item: dict[str, Any] | None) -> CalendarEvent | None:
        """Map an API event; all-day events (no dateTime) are skipped."""
        if not item:
            return None
        start = item.get("start") or {}
        end = item.get("end") or {}
        if not start.get("dateTime") or not end.get("dateTime"):
            return None

        return CalendarEvent(
            id=item["id"],
            summary=item.get("summary") or "Untitled Event",
            description=item.get("description"),
            start=isoparse(start["dateTime"]),
            end=isoparse(end["dateTime"]),
            status=item.get("status", "confirmed"),
            start_timezone=start.get("timeZone") or self.default_timezone,
            end_timezone=end.get("timeZone") or self.default_timezone,
        )
