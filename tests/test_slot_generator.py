# tests/test_slot_generator.py
from datetime import datetime, timedelta, timezone

import pytest

from booklink.core.errors import InvalidTimezoneError
from booklink.schemas.availability import BusyInterval
from booklink.services.slot_generator import SlotGenerator

NY = "America/New_York"
BUSINESS_HOURS = ((9, 0), (17, 0))
LUNCH = ((12, 0), (13, 0))

# Monday 2026-01-12, local midnight in New York (UTC-5).
MONDAY = datetime(2026, 1, 12, 5, 0, tzinfo=timezone.utc)
LONG_AGO = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _local(day_offset: int, hour: int, minute: int = 0) -> datetime:
    """
    UTC instant of a New York wall clock in the week of MONDAY (EST, UTC-5).
    """
    return MONDAY + timedelta(days=day_offset, hours=hour, minutes=minute)


def _suggest(busy, window_start=MONDAY, window_end=None, duration=60, notice=0, now=LONG_AGO, **kwargs):
    return SlotGenerator.suggest_slots(
        busy,
        window_start,
        window_end or window_start + timedelta(days=1),
        duration,
        kwargs.pop("business_hours", BUSINESS_HOURS),
        kwargs.pop("break_window", LUNCH),
        notice,
        kwargs.pop("timezone_name", NY),
        now=now,
        **kwargs,
    )


def test_first_slot_follows_morning_busy_block():
    """
    Busy 09:00-10:30 with 09:00-17:00 business hours and a 60 minute meeting:
    the earliest offer is 10:30.
    """
    busy = [BusyInterval(start=_local(0, 9), end=_local(0, 10, 30))]

    slots = _suggest(busy)

    assert slots[0].start == _local(0, 10, 30)
    assert slots[0].end == _local(0, 11, 30)
    assert slots[0].label == "Monday, Jan 12 at 10:30 AM"


def test_gaps_are_walked_in_increments_around_the_break():
    busy = [BusyInterval(start=_local(0, 9), end=_local(0, 10, 30))]

    starts = [s.start for s in _suggest(busy)]

    expected = [_local(0, 10, 30), _local(0, 11)] + [
        _local(0, 13) + timedelta(minutes=30 * k) for k in range(7)
    ]
    assert starts == expected


def test_minimum_notice_drops_early_slots():
    now = _local(0, 9, 10)

    slots = _suggest([], notice=60, now=now)

    assert slots[0].start == _local(0, 10, 30)
    assert all(s.start >= now + timedelta(minutes=60) for s in slots)


def test_weekends_are_skipped():
    saturday = MONDAY - timedelta(days=2)
    assert _suggest([], window_start=saturday, window_end=saturday + timedelta(days=2)) == []

    slots = _suggest([], window_start=saturday, window_end=saturday + timedelta(days=3))
    assert slots
    assert all(s.start.astimezone(timezone.utc) >= MONDAY for s in slots)


def test_slots_never_overlap_busy_or_break_and_respect_duration():
    busy = [
        BusyInterval(start=_local(0, 9, 30), end=_local(0, 10)),
        BusyInterval(start=_local(1, 14), end=_local(1, 16, 45)),
        BusyInterval(start=_local(2, 8), end=_local(2, 11, 15)),
        BusyInterval(start=_local(3, 16, 30), end=_local(3, 18)),
    ]

    slots = _suggest(busy, window_end=MONDAY + timedelta(days=5), duration=45, max_slots=200)

    assert slots
    for slot in slots:
        assert slot.end - slot.start == timedelta(minutes=45)
        assert not any(b.overlaps(slot.start, slot.end) for b in busy)
        local_start = slot.start - timedelta(hours=5)
        local_end = slot.end - timedelta(hours=5)
        assert local_start.weekday() < 5
        assert local_start.hour >= 9
        assert (local_end.hour, local_end.minute) <= (17, 0)
        # lunch break
        assert not (
            (local_start.hour, local_start.minute) < (13, 0)
            and (local_end.hour, local_end.minute) > (12, 0)
        )
    assert [s.start for s in slots] == sorted(s.start for s in slots)


def test_max_slots_keeps_the_earliest():
    all_slots = _suggest([], window_end=MONDAY + timedelta(days=5), max_slots=500)
    capped = _suggest([], window_end=MONDAY + timedelta(days=5), max_slots=5)

    assert capped == all_slots[:5]


def test_default_cap_is_thirty():
    slots = _suggest([], window_end=MONDAY + timedelta(days=14))
    assert len(slots) == 30


def test_duration_longer_than_business_day_yields_nothing():
    assert _suggest([], duration=9 * 60) == []


def test_non_positive_duration_is_rejected():
    with pytest.raises(ValueError):
        _suggest([], duration=0)


def test_fully_booked_day_yields_nothing():
    busy = [BusyInterval(start=_local(0, 8), end=_local(0, 18))]
    assert _suggest(busy) == []


def test_labels_follow_client_timezone():
    slots = _suggest([], label_timezone="America/Chicago")
    assert slots[0].label == "Monday, Jan 12 at 8:00 AM"


def test_unknown_timezone_raises():
    with pytest.raises(InvalidTimezoneError):
        _suggest([], timezone_name="Nowhere/Special")


def test_business_hours_follow_dst():
    """
    First Monday after the US switch to EDT: 09:00 local is 13:00 UTC.
    """
    monday_after_switch = datetime(2026, 3, 9, 4, 0, tzinfo=timezone.utc)
    slots = _suggest([], window_start=monday_after_switch)
    assert slots[0].start == datetime(2026, 3, 9, 13, 0, tzinfo=timezone.utc)


def test_same_input_gives_same_slots():
    busy = [BusyInterval(start=_local(0, 9), end=_local(0, 10, 30))]
    assert _suggest(busy) == _suggest(busy)
