# booklink/services/scheduling_policy.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Mapping, Optional, Tuple

from booklink.core.config import Settings
from booklink.services.timezone_resolver import parse_hhmm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulingPolicy:
    """
    Constraints applied when turning busy time into bookable slots.
    """

    business_hours: Tuple[Tuple[int, int], Tuple[int, int]]
    break_window: Optional[Tuple[Tuple[int, int], Tuple[int, int]]]
    minimum_notice_minutes: int
    slot_increment_minutes: int
    max_slots: int
    merge_tolerance: timedelta


# meeting.preferences key -> override slot
_PREFERENCE_KEYS = {
    "businessHoursStart": "business_start",
    "businessHoursEnd": "business_end",
    "breakStart": "break_start",
    "breakEnd": "break_end",
    "minimumNoticeMinutes": "minimum_notice_minutes",
}


def default_policy(settings: Settings) -> SchedulingPolicy:
    return SchedulingPolicy(
        business_hours=(parse_hhmm(settings.BUSINESS_HOURS_START), parse_hhmm(settings.BUSINESS_HOURS_END)),
        break_window=(parse_hhmm(settings.BREAK_START), parse_hhmm(settings.BREAK_END)),
        minimum_notice_minutes=settings.MINIMUM_NOTICE_MINUTES,
        slot_increment_minutes=settings.SLOT_INCREMENT_MINUTES,
        max_slots=settings.MAX_SLOTS,
        merge_tolerance=timedelta(minutes=settings.BUSY_MERGE_TOLERANCE_MINUTES),
    )


def resolve_policy(preferences: Optional[Mapping[str, Any]], settings: Settings) -> SchedulingPolicy:
    """
    Application defaults overridden by a meeting's `preferences`.

    Unknown keys are ignored; malformed values are logged and ignored so a bad
    override never blocks the public link.
    """
    policy = default_policy(settings)
    if not preferences:
        return policy

    (b_start, b_end) = policy.business_hours
    break_start, break_end = policy.break_window or (None, None)
    notice = policy.minimum_notice_minutes

    for key, field_name in _PREFERENCE_KEYS.items():
        if key not in preferences or preferences[key] is None:
            continue
        raw = preferences[key]
        try:
            if field_name == "minimum_notice_minutes":
                notice = int(raw)
                if notice < 0:
                    raise ValueError("negative notice")
            elif field_name == "business_start":
                b_start = parse_hhmm(str(raw))
            elif field_name == "business_end":
                b_end = parse_hhmm(str(raw))
            elif field_name == "break_start":
                break_start = parse_hhmm(str(raw))
            elif field_name == "break_end":
                break_end = parse_hhmm(str(raw))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid scheduling preference %s=%r", key, raw)

    if b_end <= b_start:
        logger.warning("Ignoring business hours override %s-%s (end before start)", b_start, b_end)
        b_start, b_end = policy.business_hours

    # An explicit empty break ("breakStart" == "breakEnd") disables it.
    break_window = None
    if break_start is not None and break_end is not None and break_end > break_start:
        break_window = (break_start, break_end)

    return replace(
        policy,
        business_hours=(b_start, b_end),
        break_window=break_window,
        minimum_notice_minutes=notice,
    )


def change_cutoff_hours(preferences: Optional[Mapping[str, Any]], settings: Settings) -> float:
    """
    Hours before the booked start after which reschedule/cancel is refused.

    A meeting's `minNoticeHours` preference wins over CHANGE_CUTOFF_HOURS.
    """
    raw = (preferences or {}).get("minNoticeHours")
    if raw is None or isinstance(raw, bool):
        return float(settings.CHANGE_CUTOFF_HOURS)
    try:
        hours = float(raw)
        if hours < 0 or hours != hours:
            raise ValueError("negative or NaN notice")
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid scheduling preference minNoticeHours=%r", raw)
        return float(settings.CHANGE_CUTOFF_HOURS)
    return hours
