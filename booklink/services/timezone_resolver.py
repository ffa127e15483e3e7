# booklink/services/timezone_resolver.py
from __future__ import annotations

from datetime import date as date_type, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booklink.core.errors import InvalidTimezoneError


class TimezoneResolver:
    """
    Converts wall-clock times in named IANA zones into absolute UTC instants.

    The conversion formats a trial UTC instant into the target zone and
    corrects by the observed wall-clock delta, so it stays correct on days
    where the zone's offset changes. Callers only see instants in and out;
    the zone database behind `get_zone` can be swapped without touching them.
    """

    @staticmethod
    def get_zone(tz_name: str | None) -> ZoneInfo:
        """
        Resolve an IANA zone name or raise InvalidTimezoneError.
        """
        if not tz_name or not isinstance(tz_name, str):
            raise InvalidTimezoneError("Timezone name is required")
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise InvalidTimezoneError(f"Unknown timezone: {tz_name!r}") from exc

    @staticmethod
    def to_instant(day: date_type, hour: int, minute: int, tz_name: str) -> datetime:
        """
        Return the UTC instant at which the wall clock in `tz_name` reads
        `hour:minute` on `day`.

        Algorithm
        ---------
        1) Treat the desired wall clock as if it were UTC (the trial instant).
        2) Format the trial instant into the target zone.
        3) Delta = desired minus observed wall clock; a day-boundary crossing
           between the two contributes +/-24h.
        4) Shift the trial instant by that delta, then measure once more.
        """
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"Invalid wall-clock time {hour:02d}:{minute:02d}")

        zone = TimezoneResolver.get_zone(tz_name)
        instant = datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)

        # A second pass fixes the case where the trial instant and the answer
        # sit on opposite sides of an offset change.
        for _ in range(2):
            observed = instant.astimezone(zone)
            day_shift = (day - observed.date()).days
            delta = timedelta(
                hours=(hour - observed.hour) + 24 * day_shift,
                minutes=minute - observed.minute,
            )
            if not delta:
                break
            instant = instant + delta
        return instant

    @staticmethod
    def local_date(instant: datetime, tz_name: str) -> date_type:
        """
        Calendar date of `instant` as seen in `tz_name`.
        """
        zone = TimezoneResolver.get_zone(tz_name)
        return instant.astimezone(zone).date()

    @staticmethod
    def to_local(instant: datetime, tz_name: str) -> datetime:
        return instant.astimezone(TimezoneResolver.get_zone(tz_name))


def parse_hhmm(value: str) -> tuple[int, int]:
    """
    Parse an "HH:MM" string into (hour, minute).
    """
    try:
        hour_str, minute_str = value.strip().split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Expected HH:MM, got {value!r}") from exc
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Out-of-range time {value!r}")
    return hour, minute


def format_slot_label(instant: datetime, tz_name: str) -> str:
    """
    Human label for a slot start, e.g. "Monday, Jan 12 at 9:00 AM".
    """
    local = TimezoneResolver.to_local(instant, tz_name)
    hour12 = local.hour % 12 or 12
    meridiem = "PM" if local.hour >= 12 else "AM"
    return f"{local:%A}, {local:%b} {local.day} at {hour12}:{local:%M} {meridiem}"
