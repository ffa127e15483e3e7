# booklink/services/downstream_recorder.py
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from booklink.core.config import Settings, get_settings
from booklink.core.errors import CalendarProviderError
from booklink.db.session import AsyncSessionLocal
from booklink.models.calendar_connection import CalendarConnection
from booklink.models.meeting import Meeting
from booklink.schemas.booking import LocationMode
from booklink.services.calendar_provider import (
    CalendarEventDraft,
    CalendarProvider,
    get_calendar_provider,
)
from booklink.services.credential_store import CredentialStore, DatabaseCredentialStore

logger = logging.getLogger(__name__)


@dataclass
class RecorderOutcome:
    """
    Result of one best-effort downstream call.

    `warning` is shown to the caller next to an otherwise successful booking.
    """

    ok: bool = True
    warning: Optional[str] = None
    external_ref: Optional[str] = None


class DownstreamRecorder(abc.ABC):
    """
    Side-record of confirmed and cancelled bookings in an external system.

    Implementations report problems through RecorderOutcome; the confirmation
    flow also tolerates them raising, and never undoes a committed booking.
    """

    @abc.abstractmethod
    async def record_booking(self, meeting: Meeting) -> RecorderOutcome:
        ...

    @abc.abstractmethod
    async def record_cancellation(
        self,
        meeting: Meeting,
        external_ref: Optional[str],
    ) -> RecorderOutcome:
        ...


class NullRecorder(DownstreamRecorder):
    """
    Used when no downstream system is configured.
    """

    async def record_booking(self, meeting: Meeting) -> RecorderOutcome:
        logger.debug("No downstream recorder configured, skipping booking of meeting %s", meeting.id)
        return RecorderOutcome()

    async def record_cancellation(
        self,
        meeting: Meeting,
        external_ref: Optional[str],
    ) -> RecorderOutcome:
        return RecorderOutcome()


class HttpEventRecorder(DownstreamRecorder):
    """
    Records bookings as events in a practice-management style REST API.

    - booking:      POST {events_url}            -> external id from data.id / id
    - cancellation: PATCH {events_url}/{ref}     status=cancelled, name prefixed,
                    retried once with the name only when the status is refused
    """

    def __init__(
        self,
        events_url: str,
        api_token: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._events_url = events_url.rstrip("/")
        self._api_token = api_token
        self._timeout_seconds = timeout_seconds

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def _send(self, method: str, url: str, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            return await client.request(method, url, headers=self._headers(), json=payload)

    @staticmethod
    def event_name(meeting: Meeting) -> str:
        return f"{meeting.meeting_type_name or 'Meeting'} - Meeting {meeting.id}"

    @staticmethod
    def build_event_payload(meeting: Meeting) -> Dict[str, Any]:
        if meeting.location_mode == LocationMode.IN_PERSON.value:
            location = meeting.room.name if meeting.room is not None else "In Person"
        else:
            location = "Remote"

        description = "\n".join(
            [
                f"Meeting Type: {meeting.meeting_type_name or 'Meeting'}",
                f"Duration: {meeting.duration_minutes} minutes",
                f"Location: {location}",
            ]
        )
        return {
            "name": HttpEventRecorder.event_name(meeting),
            "starts_at": meeting.start_time.isoformat() if meeting.start_time else None,
            "ends_at": meeting.end_time.isoformat() if meeting.end_time else None,
            "description": description,
        }

    async def record_booking(self, meeting: Meeting) -> RecorderOutcome:
        payload = self.build_event_payload(meeting)
        try:
            resp = await self._send("POST", self._events_url, payload)
        except httpx.HTTPError as exc:
            logger.warning("Downstream event for meeting %s failed: %s", meeting.id, exc)
            return RecorderOutcome(
                ok=False,
                warning=f"Booking saved, but the downstream event could not be created: {exc}",
            )

        if resp.status_code // 100 != 2:
            logger.warning(
                "Downstream event for meeting %s rejected (status=%s): %s",
                meeting.id,
                resp.status_code,
                resp.text,
            )
            return RecorderOutcome(
                ok=False,
                warning=(
                    "Booking saved, but the downstream event could not be created "
                    f"(status={resp.status_code})."
                ),
            )

        external_ref = None
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if isinstance(body, dict):
            data = body.get("data") if isinstance(body.get("data"), dict) else {}
            external_ref = data.get("id") or body.get("id")

        logger.info("Downstream event %s created for meeting %s", external_ref, meeting.id)
        return RecorderOutcome(ok=True, external_ref=str(external_ref) if external_ref else None)

    async def record_cancellation(
        self,
        meeting: Meeting,
        external_ref: Optional[str],
    ) -> RecorderOutcome:
        if not external_ref:
            return RecorderOutcome()

        url = f"{self._events_url}/{external_ref}"
        cancelled_name = f"Cancelled - {self.event_name(meeting)}"
        try:
            resp = await self._send("PATCH", url, {"status": "cancelled", "name": cancelled_name})
            if resp.status_code // 100 != 2 and resp.status_code != 404:
                # Some accounts reject the status field; renaming still flags it.
                resp = await self._send("PATCH", url, {"name": cancelled_name})
        except httpx.HTTPError as exc:
            logger.warning("Downstream cancellation of %s failed: %s", external_ref, exc)
            return RecorderOutcome(
                ok=False,
                warning=f"Downstream update failed for appointment {external_ref}.",
            )

        if resp.status_code == 404:
            logger.info("Downstream event %s already gone", external_ref)
            return RecorderOutcome()
        if resp.status_code // 100 != 2:
            logger.warning(
                "Downstream cancellation of %s rejected (status=%s)",
                external_ref,
                resp.status_code,
            )
            return RecorderOutcome(
                ok=False,
                warning=f"Downstream update failed for appointment {external_ref}.",
            )
        return RecorderOutcome()


class CompositeRecorder(DownstreamRecorder):
    """
    Fans one booking change out to several recorders, in order.

    The first external reference returned wins.
    """

    def __init__(self, recorders: Sequence[DownstreamRecorder]) -> None:
        self._recorders = list(recorders)

    @staticmethod
    def _combine(outcomes: Sequence[RecorderOutcome]) -> RecorderOutcome:
        warnings = [o.warning for o in outcomes if o.warning]
        external_ref = next((o.external_ref for o in outcomes if o.external_ref), None)
        return RecorderOutcome(
            ok=all(o.ok for o in outcomes),
            warning="; ".join(warnings) if warnings else None,
            external_ref=external_ref,
        )

    async def record_booking(self, meeting: Meeting) -> RecorderOutcome:
        return self._combine([await r.record_booking(meeting) for r in self._recorders])

    async def record_cancellation(
        self,
        meeting: Meeting,
        external_ref: Optional[str],
    ) -> RecorderOutcome:
        return self._combine(
            [await r.record_cancellation(meeting, external_ref) for r in self._recorders]
        )

class CalendarEventRecorder(DownstreamRecorder):
    """
    Mirrors bookings into the host's own connected calendar.

    - booking:      create an event through the first participant (in meeting
                    order) that has a calendar connection, in that connection's
                    first selected calendar; the room is invited as a resource
    - cancellation: delete that event again; an event already gone is fine

    Where the event lives is kept on Meeting.calendar_event_ref. The row is
    written in a short session of its own, like token refreshes, because the
    booking has already been committed when recorders run.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        credential_store: CredentialStore,
        provider_factory: Callable[[str, CredentialStore], CalendarProvider] = get_calendar_provider,
    ) -> None:
        self._session_factory = session_factory
        self._credentials = credential_store
        self._provider_factory = provider_factory

    @staticmethod
    def build_draft(meeting: Meeting) -> CalendarEventDraft:
        payload = HttpEventRecorder.build_event_payload(meeting)
        resources = []
        if (
            meeting.location_mode == LocationMode.IN_PERSON.value
            and meeting.room is not None
            and meeting.room.resource_email
        ):
            resources.append(meeting.room.resource_email)
        return CalendarEventDraft(
            summary=payload["name"],
            description=payload["description"],
            start=meeting.start_time,
            end=meeting.end_time,
            timezone_name=meeting.timezone or "UTC",
            resource_emails=resources,
        )

    async def _host_connection(self, meeting: Meeting) -> Optional[CalendarConnection]:
        participant_ids = [str(pid) for pid in (meeting.participant_ids or [])]
        if not participant_ids:
            return None
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(CalendarConnection).where(CalendarConnection.user_id.in_(participant_ids))
                )
            ).scalars().all()
        order = {user_id: index for index, user_id in enumerate(participant_ids)}
        rows = sorted(rows, key=lambda c: (order.get(c.user_id, len(order)), c.id))
        return rows[0] if rows else None

    async def _store_ref(self, meeting: Meeting, ref: Optional[Dict[str, Any]]) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Meeting).where(Meeting.id == meeting.id).values(calendar_event_ref=ref)
            )
            await session.commit()
        # Keep the caller's copy current without marking it dirty.
        set_committed_value(meeting, "calendar_event_ref", ref)

    async def record_booking(self, meeting: Meeting) -> RecorderOutcome:
        if meeting.start_time is None or meeting.end_time is None:
            return RecorderOutcome()

        connection = await self._host_connection(meeting)
        if connection is None:
            logger.info("Meeting %s: no connected calendar to write the booking to", meeting.id)
            return RecorderOutcome()

        calendar_id = connection.calendar_ids[0]
        try:
            provider = self._provider_factory(connection.provider, self._credentials)
            event_id = await provider.create_event(connection, calendar_id, self.build_draft(meeting))
        except CalendarProviderError as exc:
            logger.warning(
                "Calendar event for meeting %s could not be created via connection %s: %s",
                meeting.id,
                connection.id,
                exc,
            )
            return RecorderOutcome(
                ok=False,
                warning="Booking saved, but it could not be added to the host's calendar.",
            )

        await self._store_ref(
            meeting,
            {"connectionId": connection.id, "calendarId": calendar_id, "eventId": event_id},
        )
        logger.info("Calendar event %s created for meeting %s", event_id, meeting.id)
        return RecorderOutcome()

    async def record_cancellation(
        self,
        meeting: Meeting,
        external_ref: Optional[str],
    ) -> RecorderOutcome:
        ref = meeting.calendar_event_ref
        if not isinstance(ref, dict) or not ref.get("eventId"):
            return RecorderOutcome()

        connection = None
        if ref.get("connectionId") is not None:
            async with self._session_factory() as session:
                connection = await session.get(CalendarConnection, ref["connectionId"])
        if connection is None:
            logger.warning(
                "Meeting %s: connection %s is gone, leaving calendar event %s in place",
                meeting.id,
                ref.get("connectionId"),
                ref["eventId"],
            )
            await self._store_ref(meeting, None)
            return RecorderOutcome(
                ok=False,
                warning="The calendar event for the previous time could not be removed.",
            )

        try:
            provider = self._provider_factory(connection.provider, self._credentials)
            await provider.delete_event(connection, ref.get("calendarId") or "primary", ref["eventId"])
        except CalendarProviderError as exc:
            logger.warning(
                "Calendar event %s for meeting %s could not be deleted: %s",
                ref["eventId"],
                meeting.id,
                exc,
            )
            return RecorderOutcome(
                ok=False,
                warning="The calendar event for the previous time could not be removed.",
            )

        await self._store_ref(meeting, None)
        logger.info("Calendar event %s removed for meeting %s", ref["eventId"], meeting.id)
        return RecorderOutcome()


def build_downstream_recorder(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> DownstreamRecorder:
    """
    Recorders enabled by configuration, in the order they run: the host's
    calendar first, then the events API, whose id becomes the meeting's
    external reference.
    """
    settings = settings or get_settings()
    recorders: List[DownstreamRecorder] = []

    if settings.NATIVE_CALENDAR_EVENTS:
        factory = session_factory or AsyncSessionLocal
        recorders.append(CalendarEventRecorder(factory, DatabaseCredentialStore(factory)))
    if settings.DOWNSTREAM_EVENTS_URL:
        recorders.append(
            HttpEventRecorder(
                events_url=settings.DOWNSTREAM_EVENTS_URL,
                api_token=settings.DOWNSTREAM_API_TOKEN,
                timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
            )
        )

    if not recorders:
        return NullRecorder()
    if len(recorders) == 1:
        return recorders[0]
    return CompositeRecorder(recorders)


def get_downstream_recorder() -> DownstreamRecorder:
    """
    FastAPI dependency; overridden in tests.
    """
    return build_downstream_recorder()
