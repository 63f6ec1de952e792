# src/therasched/availability/types.py
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field

from therasched.schemas.models import TimeSlot


@dataclass(slots=True)
class AvailabilityQuery:
    """
    Parameters of a multi-day availability lookup.

    Fields:
        date_from / date_to: Inclusive date range.
        staff_ids: Restrict to these staff members (None = all active staff).
        patient_id: If set, that patient's sessions also block time.
        room_id: Echoed back only; rooms are not part of staff availability.
        duration: Slot length in minutes (None = organization default).
    """

    date_from: dt.date
    date_to: dt.date
    staff_ids: list[str] | None = None
    patient_id: str | None = None
    room_id: str | None = None
    duration: int | None = None


@dataclass(slots=True)
class AvailableSlot:
    date: dt.date
    staff_id: str
    staff_name: str
    start_time: str
    end_time: str


@dataclass(slots=True)
class AvailabilityEcho:
    """Effective query parameters, returned alongside the slots."""

    date_from: dt.date
    date_to: dt.date
    duration: int
    slot_interval: int
    staff_ids: list[str] | None = None
    patient_id: str | None = None
    room_id: str | None = None


@dataclass(slots=True)
class AvailabilityResult:
    slots: list[AvailableSlot]
    query: AvailabilityEcho


@dataclass(slots=True)
class StaffDayAvailability:
    """
    Single-day view of one staff member.

    Fields:
        is_available: False when closed, blocked by override, or no hours.
        working_hours: Business hours intersected with resolved staff hours.
        blocked_slots: Merged sessions + active holds (diagnostics).
        available_slots: Free ranges left inside working_hours.
    """

    date: dt.date
    staff_id: str
    is_available: bool
    working_hours: TimeSlot | None = None
    blocked_slots: list[TimeSlot] = field(default_factory=list)
    available_slots: list[TimeSlot] = field(default_factory=list)


@dataclass(slots=True)
class SlotCheck:
    available: bool
    reason: str | None = None
