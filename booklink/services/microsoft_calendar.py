# booklink/services/microsoft_calendar.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from booklink.core.config import get_settings
from booklink.schemas.availability import BusyInterval
from booklink.services.calendar_provider import (
    CalendarEventDraft,
    CalendarProvider,
    parse_provider_datetime,
    to_rfc3339,
)
from booklink.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

# showAs values that do not block time.
_FREE_STATUSES = {"free"}


class MicrosoftCalendarProvider(CalendarProvider):
    """
    Microsoft Graph calendar adapter.

    Person calendars are read through calendarView, which expands recurring
    series into single occurrences. Inclusion rules:
    - isCancelled events are ignored
    - isAllDay events are ignored
    - showAs == "free" is ignored; tentative, busy, oof, workingElsewhere and
      unknown all count as busy

    Room resources are read through getSchedule.
    """

    PROVIDER_NAME = "microsoft"
    PAGE_SIZE = 250

    def __init__(
        self,
        credential_store: CredentialStore,
        timeout_seconds: Optional[float] = None,
        base_url: Optional[str] = None,
    ) -> None:
        super().__init__(credential_store, timeout_seconds)
        self._base_url = (base_url or get_settings().MICROSOFT_GRAPH_BASE_URL).rstrip("/")

    def _calendar_view_url(self, calendar_id: str) -> str:
        if not calendar_id or calendar_id == "primary":
            return f"{self._base_url}/me/calendarView"
        return f"{self._base_url}/me/calendars/{quote(calendar_id, safe='')}/calendarView"

    async def _query_busy(
        self,
        access_token: str,
        calendar_ids: List[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        busy: List[BusyInterval] = []
        for calendar_id in calendar_ids:
            busy.extend(
                await self._calendar_view_busy(access_token, calendar_id, window_start, window_end)
            )
        return busy

    async def _calendar_view_busy(
        self,
        access_token: str,
        calendar_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        url: Optional[str] = self._calendar_view_url(calendar_id)
        params: Optional[Dict[str, Any]] = {
            "startDateTime": to_rfc3339(window_start),
            "endDateTime": to_rfc3339(window_end),
            "$top": self.PAGE_SIZE,
            "$orderby": "start/dateTime",
            "$select": "id,start,end,showAs,isCancelled,isAllDay",
        }
        headers = {"Prefer": 'outlook.timezone="UTC"'}
        busy: List[BusyInterval] = []

        while url:
            payload = await self._request_json("GET", url, access_token, params=params, headers=headers)
            for event in payload.get("value", []):
                interval = self._event_to_busy(event)
                if interval is not None:
                    busy.append(interval)
            # nextLink already carries every query parameter.
            url = payload.get("@odata.nextLink")
            params = None

        return busy

    @staticmethod
    def _event_to_busy(event: Dict[str, Any]) -> Optional[BusyInterval]:
        if event.get("isCancelled"):
            return None
        if event.get("isAllDay"):
            return None
        if (event.get("showAs") or "").lower() in _FREE_STATUSES:
            return None

        start = (event.get("start") or {}).get("dateTime")
        end = (event.get("end") or {}).get("dateTime")
        if not start or not end:
            return None

        start_at = parse_provider_datetime(start)
        end_at = parse_provider_datetime(end)
        if end_at <= start_at:
            return None
        return BusyInterval(start=start_at, end=end_at)

    async def _query_resource_busy(
        self,
        access_token: str,
        resource_ids: List[str],
        window_start: datetime,
        window_end: datetime,
    ) -> List[BusyInterval]:
        body = {
            "schedules": resource_ids,
            "startTime": {"dateTime": to_rfc3339(window_start)[:-1], "timeZone": "UTC"},
            "endTime": {"dateTime": to_rfc3339(window_end)[:-1], "timeZone": "UTC"},
            "availabilityViewInterval": 15,
        }
        payload = await self._request_json(
            "POST",
            f"{self._base_url}/me/calendar/getSchedule",
            access_token,
            json=body,
            headers={"Prefer": 'outlook.timezone="UTC"'},
        )

        busy: List[BusyInterval] = []
        for schedule in payload.get("value", []):
            for item in schedule.get("scheduleItems", []) or []:
                if (item.get("status") or "").lower() in _FREE_STATUSES:
                    continue
                start = (item.get("start") or {}).get("dateTime")
                end = (item.get("end") or {}).get("dateTime")
                if not start or not end:
                    continue
                busy.append(
                    BusyInterval(
                        start=parse_provider_datetime(start),
                        end=parse_provider_datetime(end),
                    )
                )
        logger.debug("Microsoft getSchedule returned %d busy items", len(busy))
        return busy

    def _events_url(self, calendar_id: str) -> str:
        if not calendar_id or calendar_id == "primary":
            return f"{self._base_url}/me/events"
        return f"{self._base_url}/me/calendars/{quote(calendar_id, safe='')}/events"

    async def _insert_event(
        self,
        access_token: str,
        calendar_id: str,
        draft: CalendarEventDraft,
    ) -> str:
        body: Dict[str, Any] = {
            "subject": draft.summary,
            "body": {"contentType": "text", "content": draft.description},
            "start": {"dateTime": to_rfc3339(draft.start)[:-1], "timeZone": "UTC"},
            "end": {"dateTime": to_rfc3339(draft.end)[:-1], "timeZone": "UTC"},
        }
        if draft.resource_emails:
            body["attendees"] = [
                {"emailAddress": {"address": email}, "type": "resource"} for email in draft.resource_emails
            ]

        payload = await self._request_json("POST", self._events_url(calendar_id), access_token, json=body)
        return str(payload["id"])

    async def _remove_event(self, access_token: str, calendar_id: str, event_id: str) -> None:
        # Graph addresses events by id alone, whatever calendar holds them.
        await self._delete(f"{self._base_url}/me/events/{quote(event_id, safe='')}", access_token)
