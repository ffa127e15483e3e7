# booklink/services/interval_normalizer.py
from __future__ import annotations

from datetime import timedelta
from typing import Iterable, List

from booklink.schemas.availability import BusyInterval

DEFAULT_MERGE_TOLERANCE = timedelta(minutes=1)


class IntervalNormalizer:
    """
    Collapses provider busy intervals into a minimal sorted set.

    Blocks separated by less than the merge tolerance are combined, so
    back-to-back events never leave a micro-gap that looks bookable.
    """

    @staticmethod
    def merge(
        intervals: Iterable[BusyInterval],
        tolerance: timedelta = DEFAULT_MERGE_TOLERANCE,
    ) -> List[BusyInterval]:
        """
        Return a sorted, non-overlapping list covering every input interval.
        """
        if tolerance < timedelta(0):
            raise ValueError("merge tolerance must not be negative")

        ordered = sorted(intervals, key=lambda interval: (interval.start, interval.end))
        if not ordered:
            return []

        merged: List[BusyInterval] = []
        current_start = ordered[0].start
        current_end = ordered[0].end

        for interval in ordered[1:]:
            if interval.start <= current_end + tolerance:
                if interval.end > current_end:
                    current_end = interval.end
                continue
            merged.append(BusyInterval(start=current_start, end=current_end))
            current_start, current_end = interval.start, interval.end

        merged.append(BusyInterval(start=current_start, end=current_end))
        return merged

    @staticmethod
    def total_duration(intervals: Iterable[BusyInterval]) -> timedelta:
        return sum((i.end - i.start for i in intervals), timedelta(0))
