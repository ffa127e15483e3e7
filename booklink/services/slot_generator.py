# booklink/services/slot_generator.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from booklink.schemas.availability import BusyInterval, TimeSlot
from booklink.services.interval_normalizer import DEFAULT_MERGE_TOLERANCE, IntervalNormalizer
from booklink.services.timezone_resolver import TimezoneResolver, format_slot_label

HourMinute = Tuple[int, int]

DEFAULT_INCREMENT_MINUTES = 30
DEFAULT_MAX_SLOTS = 30


class SlotGenerator:
    """
    Derives bookable slots from the union of busy time.

    Rules
    -----
    1) Days are walked chronologically in the business timezone; Saturdays
       and Sundays are skipped entirely.
    2) Business hours and the break window are resolved to instants per day,
       so days on which the zone changes offset are handled correctly.
    3) The break is treated as one more busy interval.
    4) Inside every free gap, slot starts step by a fixed increment from the
       gap start while the whole slot still fits in the gap.
    5) Slots starting before now + minimum notice are dropped.
    6) Generation stops at `max_slots`; the walk is chronological, so the
       earliest slots are the ones kept.
    """

    @staticmethod
    def suggest_slots(
        busy: Iterable[BusyInterval],
        window_start: datetime,
        window_end: datetime,
        duration_minutes: int,
        business_hours: Tuple[HourMinute, HourMinute],
        break_window: Optional[Tuple[HourMinute, HourMinute]],
        minimum_notice_minutes: int,
        timezone_name: str,
        *,
        now: Optional[datetime] = None,
        increment_minutes: int = DEFAULT_INCREMENT_MINUTES,
        max_slots: int = DEFAULT_MAX_SLOTS,
        merge_tolerance: timedelta = DEFAULT_MERGE_TOLERANCE,
        label_timezone: Optional[str] = None,
    ) -> List[TimeSlot]:
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        if increment_minutes <= 0:
            raise ValueError("increment_minutes must be positive")
        if max_slots <= 0 or window_end <= window_start:
            return []

        # Fail fast on bad zone names before walking any day.
        TimezoneResolver.get_zone(timezone_name)
        label_zone = label_timezone or timezone_name
        TimezoneResolver.get_zone(label_zone)

        now = now or datetime.now(tz=timezone.utc)
        notice_floor = now + timedelta(minutes=max(minimum_notice_minutes, 0))
        duration = timedelta(minutes=duration_minutes)
        increment = timedelta(minutes=increment_minutes)

        merged_busy = IntervalNormalizer.merge(busy, merge_tolerance)

        slots: List[TimeSlot] = []
        day = TimezoneResolver.local_date(window_start, timezone_name)
        last_day = TimezoneResolver.local_date(window_end, timezone_name)

        while day <= last_day and len(slots) < max_slots:
            if day.weekday() >= 5:
                day += timedelta(days=1)
                continue

            (open_h, open_m), (close_h, close_m) = business_hours
            day_start = TimezoneResolver.to_instant(day, open_h, open_m, timezone_name)
            day_end = TimezoneResolver.to_instant(day, close_h, close_m, timezone_name)

            if day_end - day_start >= duration:
                day_busy = [b for b in merged_busy if b.overlaps(day_start, day_end)]
                if break_window is not None:
                    (break_h, break_m), (resume_h, resume_m) = break_window
                    break_start = TimezoneResolver.to_instant(day, break_h, break_m, timezone_name)
                    break_end = TimezoneResolver.to_instant(day, resume_h, resume_m, timezone_name)
                    if break_end > break_start:
                        day_busy.append(BusyInterval(start=break_start, end=break_end))
                day_busy = IntervalNormalizer.merge(day_busy, merge_tolerance)

                for gap_start, gap_end in _free_gaps(day_busy, day_start, day_end):
                    slot_start = gap_start
                    while slot_start + duration <= gap_end:
                        slot_end = slot_start + duration
                        if (
                            slot_start >= notice_floor
                            and slot_start >= window_start
                            and slot_end <= window_end
                        ):
                            slots.append(
                                TimeSlot(
                                    start=slot_start,
                                    end=slot_end,
                                    label=format_slot_label(slot_start, label_zone),
                                )
                            )
                            if len(slots) >= max_slots:
                                return slots
                        slot_start += increment

            day += timedelta(days=1)

        return slots


def _free_gaps(
    day_busy: Sequence[BusyInterval],
    day_start: datetime,
    day_end: datetime,
) -> List[Tuple[datetime, datetime]]:
    """
    Gaps between sorted, merged busy intervals, clipped to business hours.
    """
    gaps: List[Tuple[datetime, datetime]] = []
    cursor = day_start
    for interval in day_busy:
        if interval.start > cursor:
            gap_end = min(interval.start, day_end)
            if gap_end > cursor:
                gaps.append((cursor, gap_end))
        if interval.end > cursor:
            cursor = interval.end
        if cursor >= day_end:
            break
    if cursor < day_end:
        gaps.append((cursor, day_end))
    return gaps
