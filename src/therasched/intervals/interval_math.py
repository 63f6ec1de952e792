# src/therasched/intervals/interval_math.py
"""
@brief
Pure interval arithmetic on same-day half-open time ranges.

@details
All ranges are [start, end) in minutes since midnight; touching endpoints
do not overlap. Functions never mutate their inputs and return fresh
TimeSlot instances.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable

from therasched.errors import DataError
from therasched.schemas.models import TimeSlot

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_MINUTES_PER_DAY = 24 * 60


# ----------------------------
# CONVERSIONS
# ----------------------------
def to_minutes(time: str) -> int:
    """
    @brief
    Convert "HH:MM" into minutes since midnight.

    @raises
        DataError
            If the string is not a valid 24h clock time ("24:00" allowed).
    """
    try:
        hours_str, minutes_str = time.split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError) as e:
        raise DataError(
            f"Invalid time value: {time!r}",
            source="intervals.to_minutes",
            suggested_action="Use 24h 'HH:MM' strings, e.g. '09:30'.",
        ) from e

    total = hours * 60 + minutes
    if not (0 <= minutes < 60) or not (0 <= total <= _MINUTES_PER_DAY):
        raise DataError(
            f"Time out of range: {time!r}",
            source="intervals.to_minutes",
            suggested_action="Use values between 00:00 and 24:00.",
        )
    return total


def minutes_to_time(minutes: int) -> str:
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


def slot_minutes(slot: TimeSlot) -> tuple[int, int]:
    return to_minutes(slot.start_time), to_minutes(slot.end_time)


def make_slot(start: int, end: int) -> TimeSlot:
    return TimeSlot(start_time=minutes_to_time(start), end_time=minutes_to_time(end))


# ----------------------------
# PREDICATES
# ----------------------------
def overlaps(a_start: str, a_end: str, b_start: str, b_end: str) -> bool:
    """Half-open overlap test: aStart < bEnd and bStart < aEnd."""
    return to_minutes(a_start) < to_minutes(b_end) and to_minutes(b_start) < to_minutes(a_end)


def slots_overlap(a: TimeSlot, b: TimeSlot) -> bool:
    return overlaps(a.start_time, a.end_time, b.start_time, b.end_time)


def contains(outer: TimeSlot, inner: TimeSlot) -> bool:
    """True if inner lies entirely within outer."""
    o_start, o_end = slot_minutes(outer)
    i_start, i_end = slot_minutes(inner)
    return o_start <= i_start and i_end <= o_end


def intersect(a: TimeSlot, b: TimeSlot) -> TimeSlot | None:
    """
    @brief
    Intersection of two ranges (max of starts, min of ends).

    @returns
        The common range, or None if it is empty or inverted.
    """
    a_start, a_end = slot_minutes(a)
    b_start, b_end = slot_minutes(b)
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    if start >= end:
        return None
    return make_slot(start, end)


# ----------------------------
# SET OPERATIONS
# ----------------------------
def merge_overlapping(slots: Iterable[TimeSlot]) -> list[TimeSlot]:
    """
    @brief
    Fold overlapping or touching ranges into the widest covering ranges.

    @details
    Sorts by start ascending, then extends the last merged range while the
    next range starts at or before its end. O(n log n). The output is sorted
    and no two elements overlap or touch, so merging twice is a no-op.

    @params
        slots : Iterable[TimeSlot]
            Ranges in any order; inverted ranges are ignored.

    @returns
        Sorted list of disjoint, non-adjacent ranges.
    """
    # (1) Convert to minute pairs and drop empty/inverted ranges
    pairs = sorted(
        (start, end) for start, end in (slot_minutes(s) for s in slots) if start < end
    )
    if not pairs:
        return []

    # (2) Fold neighbours
    merged: list[list[int]] = [list(pairs[0])]
    for start, end in pairs[1:]:
        last = merged[-1]
        if start <= last[1]:
            last[1] = max(last[1], end)
        else:
            merged.append([start, end])

    return [make_slot(start, end) for start, end in merged]


def subtract_blocked(available: TimeSlot, blocked: Iterable[TimeSlot]) -> list[TimeSlot]:
    """
    @brief
    Remove blocked ranges from an available range.

    @details
    Blocked ranges are merged first, then scanned left to right: the gap
    before each blocked range is emitted and the cursor advances to
    max(cursor, blocked_end). A trailing free range is emitted if the cursor
    ends before the range end. Blocked ranges outside the available range
    are clipped away naturally.

    @params
        available : TimeSlot
            Working window for one day.
        blocked : Iterable[TimeSlot]
            Sessions, holds and other busy ranges for that day.

    @returns
        Free ranges, sorted, disjoint.
    """
    cursor, range_end = slot_minutes(available)
    free: list[TimeSlot] = []

    for slot in merge_overlapping(blocked):
        blocked_start, blocked_end = slot_minutes(slot)

        # (1) Free time before this blocked range
        if blocked_start > cursor and cursor < range_end:
            free.append(make_slot(cursor, min(blocked_start, range_end)))

        # (2) Skip past the blocked range
        cursor = max(cursor, blocked_end)

    # (3) Remaining time after all blocked ranges
    if cursor < range_end:
        free.append(make_slot(cursor, range_end))

    return free


def slice_into_slots(
    free_ranges: Iterable[TimeSlot], duration: int, step_interval: int
) -> list[TimeSlot]:
    """
    @brief
    Cut free ranges into fixed-duration candidate slots.

    @details
    Within each free range a slot of `duration` minutes starts every
    `step_interval` minutes while it still fits. With step < duration the
    candidates overlap each other, which gives the caller maximal choice.

    @raises
        DataError
            If duration or step_interval is not positive.
    """
    if duration <= 0 or step_interval <= 0:
        raise DataError(
            f"duration and step_interval must be positive (got {duration}, {step_interval})",
            source="intervals.slice_into_slots",
            suggested_action="Check default_session_duration and slot_interval settings.",
        )

    slots: list[TimeSlot] = []
    for free in free_ranges:
        range_start, range_end = slot_minutes(free)
        start = range_start
        while start + duration <= range_end:
            slots.append(make_slot(start, start + duration))
            start += step_interval
    return slots


# ----------------------------
# CALENDAR HELPERS
# ----------------------------
def day_of_week(day: dt.date) -> str:
    """Lowercase English weekday name, e.g. 'monday'."""
    return DAY_NAMES[day.weekday()]


def date_range(date_from: dt.date, date_to: dt.date) -> list[dt.date]:
    """All dates from date_from to date_to inclusive (empty if inverted)."""
    days = (date_to - date_from).days
    return [date_from + dt.timedelta(days=i) for i in range(days + 1)]


def week_dates(week_start: dt.date, days: int = 5) -> list[dt.date]:
    return [week_start + dt.timedelta(days=i) for i in range(days)]


__all__ = [
    "DAY_NAMES",
    "contains",
    "date_range",
    "day_of_week",
    "intersect",
    "make_slot",
    "merge_overlapping",
    "minutes_to_time",
    "overlaps",
    "slice_into_slots",
    "slot_minutes",
    "slots_overlap",
    "subtract_blocked",
    "to_minutes",
    "week_dates",
]
