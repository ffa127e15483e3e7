# booklink/services/google_calendar.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from booklink.core.config import get_settings
from booklink.core.errors import ProviderError
from booklink.schemas.availability import BusyInterval
from booklink.services.calendar_provider import (
    CalendarEventDraft,
    CalendarProvider,
    parse_provider_datetime,
    to_rfc3339,
)
from booklink.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class GoogleCalendarProvider(CalendarProvider):
    """
    Google Calendar API v3 adapter.

    Person calendars are read through the events list (default) so that
    per-event rules can be applied:
    - cancelled events are ignored
    - all-day events (date without dateTime) are ignored
    - transparent events ("show as free") are ignored
    - tentative events count as busy

    Room resources are read through the FreeBusy API, which only needs
    free/busy visibility on the resource.
    """

    PROVIDER_NAME = "google"
    PAGE_SIZE = 250

    def __init__(
        self,
        credential_store: CredentialStore,
        timeout_seconds: Optional[float] = None,
        base_url: Optional[str] = None,
        busy_source: Optional[str] = None,
    ) -> None:
        super().__init__(credential_store, timeout_seconds)
        settings = get_settings()
        self._base_url = (base_url or settings.GOOGLE_API_BASE_URL).rstrip("/")
        self._busy_source = (busy_source or settings.GOOGLE_BUSY_SOURCE).lower()

    async def _query_busy(
        self,
        access_token: str,
        calendar_ids: List[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        if self._busy_source == "freebusy":
            return await self._free_busy(access_token, calendar_ids, window_start, window_end)

        busy: List[BusyInterval] = []
        for calendar_id in calendar_ids:
            busy.extend(
                await self._events_busy(access_token, calendar_id, window_start, window_end)
            )
        return busy

    async def _query_resource_busy(
        self,
        access_token: str,
        resource_ids: List[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        return await self._free_busy(access_token, resource_ids, window_start, window_end)

    async def _events_busy(
        self,
        access_token: str,
        calendar_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        url = f"{self._base_url}/calendars/{quote(calendar_id, safe='')}/events"
        busy: List[BusyInterval] = []
        page_token: Optional[str] = None
        events_seen = 0

        while True:
            params: Dict[str, Any] = {
                "singleEvents": "true",
                "orderBy": "startTime",
                "timeMin": to_rfc3339(window_start),
                "timeMax": to_rfc3339(window_end),
                "maxResults": self.PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token

            payload = await self._request_json("GET", url, access_token, params=params)

            for event in payload.get("items", []):
                events_seen += 1
                interval = self._event_to_busy(event)
                if interval is not None:
                    busy.append(interval)

            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        logger.debug(
            "Google events for calendar %s: %d events, %d busy intervals",
            calendar_id,
            events_seen,
            len(busy),
        )
        return busy

    @staticmethod
    def _event_to_busy(event: Dict[str, Any]) -> Optional[BusyInterval]:
        """
        Apply the inclusion rules to a single Google event.
        """
        if event.get("status") == "cancelled":
            return None
        if event.get("transparency") == "transparent":
            return None

        start = event.get("start") or {}
        end = event.get("end") or {}
        if "dateTime" not in start or "dateTime" not in end:
            # All-day events carry only `date`.
            return None

        start_at = parse_provider_datetime(start["dateTime"])
        end_at = parse_provider_datetime(end["dateTime"])
        if end_at <= start_at:
            return None
        return BusyInterval(start=start_at, end=end_at)

    async def _free_busy(
        self,
        access_token: str,
        calendar_ids: List[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        body = {
            "timeMin": to_rfc3339(window_start),
            "timeMax": to_rfc3339(window_end),
            "items": [{"id": calendar_id} for calendar_id in calendar_ids],
        }
        payload = await self._request_json(
            "POST", f"{self._base_url}/freeBusy", access_token, json=body
        )

        busy: List[BusyInterval] = []
        calendars = payload.get("calendars") or {}
        for calendar_id, calendar in calendars.items():
            errors = calendar.get("errors")
            if errors:
                # A calendar we cannot read must not be mistaken for an empty one.
                raise ProviderError(f"Google FreeBusy errors for calendar {calendar_id}: {errors}")
            for block in calendar.get("busy", []):
                busy.append(
                    BusyInterval(
                        start=parse_provider_datetime(block["start"]),
                        end=parse_provider_datetime(block["end"]),
                    )
                )
        return busy

    def _events_url(self, calendar_id: str) -> str:
        return f"{self._base_url}/calendars/{quote(calendar_id or 'primary', safe='')}/events"

    async def _insert_event(
        self,
        access_token: str,
        calendar_id: str,
        draft: CalendarEventDraft,
    ) -> str:
        body: Dict[str, Any] = {
            "summary": draft.summary,
            "description": draft.description,
            "start": {"dateTime": draft.start.isoformat(), "timeZone": draft.timezone_name},
            "end": {"dateTime": draft.end.isoformat(), "timeZone": draft.timezone_name},
        }
        if draft.resource_emails:
            body["attendees"] = [{"email": email, "resource": True} for email in draft.resource_emails]

        payload = await self._request_json(
            "POST",
            self._events_url(calendar_id),
            access_token,
            params={"sendUpdates": "none"},
            json=body,
        )
        return str(payload["id"])

    async def _remove_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        await self._delete(
            f"{self._events_url(calendar_id)}/{quote(event_id, safe='')}",
            access_token,
        )
