# booklink/services/availability.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from booklink.core.config import Settings, get_settings
from booklink.core.logging_config import mask_token
from booklink.db.types import utcnow
from booklink.schemas.availability import TimeSlot
from booklink.services.booking_lifecycle import BookingLifecycle
from booklink.services.busy_aggregator import BusyAggregator, ProviderFactory
from booklink.services.calendar_provider import get_calendar_provider
from booklink.services.credential_store import CredentialStore
from booklink.services.scheduling_policy import resolve_policy
from booklink.services.slot_generator import SlotGenerator
from booklink.services.timezone_resolver import TimezoneResolver

logger = logging.getLogger(__name__)

CALENDARS_UNREACHABLE = "calendars_unreachable"


@dataclass
class AvailabilityResult:
    slots: List[TimeSlot] = field(default_factory=list)
    diagnostic: Optional[str] = None


class AvailabilityService:
    """
    Read path of a booking link: guard the link, collect busy time for the
    search window and turn it into bookable slots.
    """

    def __init__(
        self,
        db: AsyncSession,
        credential_store: CredentialStore,
        provider_factory: ProviderFactory = get_calendar_provider,
        settings: Optional[Settings] = None,
    ) -> None:
        self._db = db
        self._credentials = credential_store
        self._provider_factory = provider_factory
        self._settings = settings or get_settings()

    async def fetch_slots(
        self,
        token: str,
        client_timezone: Optional[str] = None,
        date_cursor: Optional[date_type] = None,
        now: Optional[datetime] = None,
    ) -> AvailabilityResult:
        """
        Raises the lifecycle errors when the link is not open and
        InvalidTimezoneError for an unknown meeting or client zone.
        """
        now = now or utcnow()
        _, meeting = await BookingLifecycle(self._db).require_open(token, now)

        meeting_tz = meeting.timezone or self._settings.DEFAULT_TIMEZONE
        TimezoneResolver.get_zone(meeting_tz)
        label_tz = client_timezone or meeting_tz
        TimezoneResolver.get_zone(label_tz)

        window_start = now
        if date_cursor is not None:
            window_start = max(now, TimezoneResolver.to_instant(date_cursor, 0, 0, meeting_tz))
        window_days = meeting.search_window_days or self._settings.DEFAULT_SEARCH_WINDOW_DAYS
        window_end = window_start + timedelta(days=window_days)

        policy = resolve_policy(meeting.preferences, self._settings)

        aggregator = BusyAggregator(
            self._db,
            self._credentials,
            provider_factory=self._provider_factory,
            timeout_seconds=self._settings.PROVIDER_TIMEOUT_SECONDS,
        )
        busy = await aggregator.collect(meeting, meeting.room, window_start, window_end)

        if busy.total_failure and self._settings.FAIL_CLOSED_ON_TOTAL_PROVIDER_FAILURE:
            logger.error(
                "Meeting %s: no calendar could be read for link %s; returning no slots",
                meeting.id,
                mask_token(token),
            )
            return AvailabilityResult(slots=[], diagnostic=CALENDARS_UNREACHABLE)

        slots = SlotGenerator.suggest_slots(
            busy.intervals,
            window_start,
            window_end,
            meeting.duration_minutes,
            policy.business_hours,
            policy.break_window,
            policy.minimum_notice_minutes,
            meeting_tz,
            now=now,
            increment_minutes=policy.slot_increment_minutes,
            max_slots=policy.max_slots,
            merge_tolerance=policy.merge_tolerance,
            label_timezone=label_tz,
        )
        logger.info(
            "Meeting %s: %d slot(s) offered between %s and %s",
            meeting.id,
            len(slots),
            window_start.isoformat(),
            window_end.isoformat(),
        )
        return AvailabilityResult(slots=slots)
