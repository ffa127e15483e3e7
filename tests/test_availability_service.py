# tests/test_availability_service.py
from datetime import date, datetime, timedelta, timezone

import pytest

from booklink.core.config import Settings
from booklink.core.errors import BookingExpiredError, InvalidTimezoneError, ProviderError
from booklink.db.session import AsyncSessionLocal
from booklink.schemas.availability import BusyInterval
from booklink.services.availability import CALENDARS_UNREACHABLE, AvailabilityService

# Monday 2026-01-12 00:00 in New York (EST, UTC-5).
MONDAY = datetime(2026, 1, 12, 5, 0, tzinfo=timezone.utc)
TOKEN = "link-token-0001"


def _ny(day_offset: int, hour: int, minute: int = 0) -> datetime:
    return MONDAY + timedelta(days=day_offset, hours=hour, minutes=minute)


class _FakeProvider:
    def __init__(self, by_user):
        self.by_user = by_user
        self.calls = 0

    async def fetch_busy(self, connection, calendar_ids, window_start, window_end):
        self.calls += 1
        outcome = self.by_user.get(connection.user_id, [])
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_resource_busy(self, connection, resource_ids, window_start, window_end):
        return []


async def _fetch(provider, now=MONDAY, settings=None, **kwargs):
    async with AsyncSessionLocal() as session:
        service = AvailabilityService(
            session,
            credential_store=None,
            provider_factory=lambda tag, store: provider,
            settings=settings,
        )
        return await service.fetch_slots(TOKEN, now=now, **kwargs)


@pytest.mark.asyncio
async def test_participant_without_calendar_does_not_block_slots(make_booking, make_connection):
    make_booking(participant_ids=("host-1", "guest-2"))
    make_connection("host-1")
    provider = _FakeProvider({"host-1": [BusyInterval(start=_ny(0, 9), end=_ny(0, 10, 30))]})

    result = await _fetch(provider)

    assert result.diagnostic is None
    assert result.slots
    assert result.slots[0].start == _ny(0, 10, 30)
    assert result.slots[0].label == "Monday, Jan 12 at 10:30 AM"


@pytest.mark.asyncio
async def test_slots_are_capped_and_ordered(make_booking, make_connection):
    make_booking()
    make_connection("host-1")

    result = await _fetch(_FakeProvider({}))

    starts = [slot.start for slot in result.slots]
    assert len(starts) == 30
    assert starts == sorted(starts)
    assert starts[0] == _ny(0, 9)


@pytest.mark.asyncio
async def test_labels_follow_client_timezone(make_booking, make_connection):
    make_booking()
    make_connection("host-1")

    result = await _fetch(_FakeProvider({}), client_timezone="America/Chicago")

    assert result.slots[0].start == _ny(0, 9)
    assert result.slots[0].label == "Monday, Jan 12 at 8:00 AM"


@pytest.mark.asyncio
async def test_every_calendar_failing_returns_diagnostic(make_booking, make_connection):
    make_booking(participant_ids=("host-1", "attorney-2"))
    make_connection("host-1")
    make_connection("attorney-2", provider="microsoft")
    provider = _FakeProvider({"host-1": ProviderError("boom"), "attorney-2": ProviderError("boom")})

    result = await _fetch(provider)

    assert result.slots == []
    assert result.diagnostic == CALENDARS_UNREACHABLE


@pytest.mark.asyncio
async def test_fail_open_offers_unchecked_times_when_configured(make_booking, make_connection):
    make_booking()
    make_connection("host-1")
    settings = Settings(FAIL_CLOSED_ON_TOTAL_PROVIDER_FAILURE=False)

    result = await _fetch(_FakeProvider({"host-1": ProviderError("boom")}), settings=settings)

    assert result.diagnostic is None
    assert result.slots


@pytest.mark.asyncio
async def test_fetching_twice_gives_the_same_slots(make_booking, make_connection):
    make_booking()
    make_connection("host-1")
    provider = _FakeProvider({"host-1": [BusyInterval(start=_ny(1, 13), end=_ny(1, 15))]})

    first = await _fetch(provider)
    second = await _fetch(provider)

    assert first.slots == second.slots


@pytest.mark.asyncio
async def test_date_cursor_moves_window_start(make_booking, make_connection):
    make_booking()
    make_connection("host-1")

    result = await _fetch(_FakeProvider({}), date_cursor=date(2026, 1, 14))

    assert result.slots[0].start == _ny(2, 9)


@pytest.mark.asyncio
async def test_meeting_preferences_override_business_hours(make_booking, make_connection):
    make_booking(preferences={"businessHoursStart": "10:00", "minimumNoticeMinutes": 0})
    make_connection("host-1")

    result = await _fetch(_FakeProvider({}))

    assert result.slots[0].start == _ny(0, 10)


@pytest.mark.asyncio
async def test_expired_link_has_no_slots(make_booking):
    make_booking(expires_at=MONDAY - timedelta(hours=1))

    with pytest.raises(BookingExpiredError):
        await _fetch(_FakeProvider({}))


@pytest.mark.asyncio
async def test_unknown_client_timezone_is_rejected(make_booking, make_connection):
    make_booking()
    make_connection("host-1")
    provider = _FakeProvider({})

    with pytest.raises(InvalidTimezoneError):
        await _fetch(provider, client_timezone="Mars/Olympus_Mons")
    assert provider.calls == 0
