from therasched.intervals.interval_math import (
    DAY_NAMES,
    contains,
    date_range,
    day_of_week,
    intersect,
    merge_overlapping,
    minutes_to_time,
    overlaps,
    slice_into_slots,
    slots_overlap,
    subtract_blocked,
    to_minutes,
    week_dates,
)

__all__ = [
    "DAY_NAMES",
    "contains",
    "date_range",
    "day_of_week",
    "intersect",
    "merge_overlapping",
    "minutes_to_time",
    "overlaps",
    "slice_into_slots",
    "slots_overlap",
    "subtract_blocked",
    "to_minutes",
    "week_dates",
]
