# booklink/services/busy_aggregator.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booklink.core.config import get_settings
from booklink.core.errors import CalendarProviderError
from booklink.models.calendar_connection import CalendarConnection
from booklink.models.meeting import Meeting
from booklink.models.room import Room
from booklink.schemas.availability import BusyInterval
from booklink.schemas.booking import LocationMode
from booklink.services.calendar_provider import CalendarProvider, get_calendar_provider
from booklink.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, CredentialStore], CalendarProvider]


@dataclass
class AggregatedBusy:
    """
    Union of busy time for one meeting plus bookkeeping about who was checked.
    """

    intervals: List[BusyInterval] = field(default_factory=list)
    participants_checked: List[str] = field(default_factory=list)
    participants_failed: List[str] = field(default_factory=list)
    participants_without_connection: List[str] = field(default_factory=list)
    room_checked: bool = False
    attempts: int = 0
    successes: int = 0

    @property
    def total_failure(self) -> bool:
        """
        At least one provider call was attempted and none of them succeeded.
        """
        return self.attempts > 0 and self.successes == 0


@dataclass
class _CallResult:
    user_id: Optional[str]
    intervals: List[BusyInterval]
    ok: bool


class BusyAggregator:
    """
    Fans out to every participant's calendar connection (and the room, for
    in-person meetings) and collects the union of busy time.

    A failing connection is logged and skipped: the slots offered are then
    computed from the calendars that did answer. Whether an all-failed round
    is shown to the external party is decided by the caller.
    """

    def __init__(
        self,
        db: AsyncSession,
        credential_store: CredentialStore,
        provider_factory: ProviderFactory = get_calendar_provider,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._db = db
        self._credentials = credential_store
        self._provider_factory = provider_factory
        self._timeout_seconds = timeout_seconds or get_settings().PROVIDER_TIMEOUT_SECONDS

    async def collect(
        self,
        meeting: Meeting,
        room: Optional[Room],
        window_start: datetime,
        window_end: datetime,
    ) -> AggregatedBusy:
        participant_ids = [str(pid) for pid in (meeting.participant_ids or [])]
        connections = await self._load_connections(participant_ids)

        result = AggregatedBusy()
        connected_users = {c.user_id for c in connections}
        for user_id in participant_ids:
            if user_id not in connected_users:
                logger.warning(
                    "Meeting %s: participant %s has no calendar connection, skipping",
                    meeting.id,
                    user_id,
                )
                result.participants_without_connection.append(user_id)

        calls = [
            self._person_busy(connection, window_start, window_end)
            for connection in connections
        ]

        room_connection = None
        if (
            meeting.location_mode == LocationMode.IN_PERSON.value
            and room is not None
            and room.resource_email
        ):
            room_connection = _pick_room_connection(connections, participant_ids)
            if room_connection is None:
                logger.warning(
                    "Meeting %s: no connection available to check room %s",
                    meeting.id,
                    room.id,
                )
            else:
                calls.append(
                    self._room_busy(room_connection, room.resource_email, window_start, window_end)
                )

        outcomes: Sequence[_CallResult] = await asyncio.gather(*calls) if calls else []

        succeeded_users = set()
        failed_users = set()
        for index, outcome in enumerate(outcomes):
            result.attempts += 1
            is_room_call = room_connection is not None and index == len(outcomes) - 1
            if outcome.ok:
                result.successes += 1
                result.intervals.extend(outcome.intervals)
                if is_room_call:
                    result.room_checked = True
                elif outcome.user_id is not None:
                    succeeded_users.add(outcome.user_id)
            elif not is_room_call and outcome.user_id is not None:
                failed_users.add(outcome.user_id)

        # A participant with one working connection out of two still counts as checked.
        result.participants_checked = [u for u in participant_ids if u in succeeded_users]
        result.participants_failed = [
            u for u in participant_ids if u in failed_users and u not in succeeded_users
        ]

        logger.info(
            "Meeting %s: busy collected from %d/%d calls (%d intervals, room_checked=%s)",
            meeting.id,
            result.successes,
            result.attempts,
            len(result.intervals),
            result.room_checked,
        )
        return result

    async def _load_connections(self, participant_ids: List[str]) -> List[CalendarConnection]:
        if not participant_ids:
            return []
        stmt = select(CalendarConnection).where(CalendarConnection.user_id.in_(participant_ids))
        rows = list((await self._db.execute(stmt)).scalars().all())
        order = {user_id: index for index, user_id in enumerate(participant_ids)}
        rows.sort(key=lambda c: (order.get(c.user_id, len(order)), c.id))
        return rows

    async def _person_busy(
        self,
        connection: CalendarConnection,
        window_start: datetime,
        window_end: datetime,
    ) -> _CallResult:
        return await self._guarded(
            connection,
            "calendars",
            lambda provider: provider.fetch_busy(
                connection, connection.calendar_ids, window_start, window_end
            ),
        )

    async def _room_busy(
        self,
        connection: CalendarConnection,
        resource_email: str,
        window_start: datetime,
        window_end: datetime,
    ) -> _CallResult:
        return await self._guarded(
            connection,
            f"room {resource_email}",
            lambda provider: provider.fetch_resource_busy(
                connection, [resource_email], window_start, window_end
            ),
        )

    async def _guarded(self, connection, what, fetch) -> _CallResult:
        try:
            provider = self._provider_factory(connection.provider, self._credentials)
            intervals = await asyncio.wait_for(fetch(provider), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out reading %s via %s connection %s",
                what,
                connection.provider,
                connection.id,
            )
            return _CallResult(user_id=connection.user_id, intervals=[], ok=False)
        except CalendarProviderError as exc:
            logger.warning(
                "Failed reading %s via %s connection %s: %s",
                what,
                connection.provider,
                connection.id,
                exc,
            )
            return _CallResult(user_id=connection.user_id, intervals=[], ok=False)
        return _CallResult(user_id=connection.user_id, intervals=intervals, ok=True)


def _pick_room_connection(
    connections: Sequence[CalendarConnection],
    participant_ids: Sequence[str],
) -> Optional[CalendarConnection]:
    """
    The host's connection when there is one, else the first available.
    """
    if not connections:
        return None
    host_id = participant_ids[0] if participant_ids else None
    for connection in connections:
        if connection.user_id == host_id:
            return connection
    return connections[0]
