# src/therasched/availability/calculator.py
"""
@brief
Ground-truth staff availability.

@details
Combines organization business hours, staff default weekly hours,
day-specific overrides, booked sessions and active holds into free ranges
and bookable slots. All inputs are snapshots passed at construction; the
calculator never mutates them and holds no other state.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from collections.abc import Iterable

from therasched.availability.types import (
    AvailabilityEcho,
    AvailabilityQuery,
    AvailabilityResult,
    AvailableSlot,
    SlotCheck,
    StaffDayAvailability,
)
from therasched.intervals import (
    contains,
    date_range,
    day_of_week,
    intersect,
    merge_overlapping,
    slice_into_slots,
    slots_overlap,
    subtract_blocked,
    to_minutes,
)
from therasched.schemas.models import (
    AppointmentHold,
    BookedSession,
    OrganizationSettings,
    StaffForScheduling,
    TimeSlot,
    UnavailabilityRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_NON_BLOCKING_STATUSES = ("cancelled", "late_cancel")


# ----------------------------
# SHARED RESOLUTION HELPERS
# ----------------------------
def find_override(
    records: Iterable[UnavailabilityRecord], staff_id: str, day: dt.date
) -> UnavailabilityRecord | None:
    """First approved override for staff+date, if any."""
    for record in records:
        if record.staff_id == staff_id and record.date == day and record.status == "approved":
            return record
    return None


def resolve_staff_hours(
    staff: StaffForScheduling, day: dt.date, override: UnavailabilityRecord | None
) -> TimeSlot | None:
    """
    @brief
    Staff hours for a date after applying an override.

    @details
    A full-day block yields None. An available override with both bounds
    replaces the default hours for that date; otherwise the default hours
    for the weekday apply.
    """
    if override is not None:
        if not override.available:
            return None
        if override.window is not None:
            return override.window
    return staff.hours_for(day_of_week(day))


def business_window(settings: OrganizationSettings, day: dt.date) -> TimeSlot | None:
    """Business hours for the weekday, or None if the organization is closed."""
    hours = settings.business_hours.get(day_of_week(day))  # type: ignore[call-overload]
    if hours is None or not hours.open:
        return None
    return TimeSlot(start_time=hours.start, end_time=hours.end)


def effective_working_hours(
    settings: OrganizationSettings,
    staff: StaffForScheduling,
    day: dt.date,
    override: UnavailabilityRecord | None,
) -> TimeSlot | None:
    """
    @brief
    Business hours intersected with resolved staff hours.

    @returns
        The working window, or None if closed, blocked, without hours, or if
        the intersection is empty.
    """
    business = business_window(settings, day)
    if business is None:
        return None

    staff_hours = resolve_staff_hours(staff, day, override)
    if staff_hours is None:
        return None

    return intersect(business, staff_hours)


# ----------------------------
# CALCULATOR
# ----------------------------
class AvailabilityCalculator:
    """
    @brief
    Availability queries over one entity snapshot.

    @details
    Provides three views:
        - compute_availability : bookable slots across staff and dates
        - day_availability     : single staff/day diagnostics
        - is_slot_available    : point check with a human-readable reason
    """

    def __init__(
        self,
        settings: OrganizationSettings,
        staff: list[StaffForScheduling],
        unavailability: list[UnavailabilityRecord] | None = None,
        sessions: list[BookedSession] | None = None,
        holds: list[AppointmentHold] | None = None,
        *,
        now: dt.datetime | None = None,
        non_blocking_statuses: Iterable[str] = DEFAULT_NON_BLOCKING_STATUSES,
    ) -> None:
        self.settings = settings
        self.staff = staff
        self.unavailability = list(unavailability or [])
        self.now = now or dt.datetime.now(dt.timezone.utc)
        self.non_blocking_statuses = frozenset(non_blocking_statuses)

        self.staff_by_id: dict[str, StaffForScheduling] = {s.id: s for s in staff}

        # (1) Index blocking sessions by (staff_id, date) and (patient_id, date)
        self._sessions_by_staff_day: dict[tuple[str, dt.date], list[BookedSession]] = defaultdict(
            list
        )
        self._sessions_by_patient_day: dict[tuple[str, dt.date], list[BookedSession]] = (
            defaultdict(list)
        )
        for session in sessions or []:
            if session.status in self.non_blocking_statuses:
                continue
            self._sessions_by_staff_day[(session.therapist_id, session.date)].append(session)
            self._sessions_by_patient_day[(session.patient_id, session.date)].append(session)

        # (2) Index active holds by (staff_id, date)
        self._holds_by_staff_day: dict[tuple[str, dt.date], list[AppointmentHold]] = defaultdict(
            list
        )
        for hold in holds or []:
            if hold.staff_id is None or not hold.is_active(self.now):
                continue
            self._holds_by_staff_day[(hold.staff_id, hold.date)].append(hold)

    # ---------- Public API ----------
    def compute_availability(self, query: AvailabilityQuery) -> AvailabilityResult:
        """
        @brief
        Bookable slots for every selected staff member and date in range.

        @details
        Per staff member per date: resolve the working window, collect
        blocked ranges (sessions, active holds and, if a patient is given,
        that patient's other sessions), subtract and slice. The result is
        ordered by date, start time, then staff name.

        @params
            query : AvailabilityQuery
                Date range, optional staff filter, patient and duration.

        @returns
            AvailabilityResult with slots and the effective query echo.
        """
        duration = query.duration or self.settings.default_session_duration
        step = self.settings.slot_interval

        # (1) Select active staff, optionally filtered
        selected = [
            s
            for s in self.staff
            if s.status == "active" and (query.staff_ids is None or s.id in query.staff_ids)
        ]

        # (2) Walk the date range per staff member
        slots: list[AvailableSlot] = []
        for day in date_range(query.date_from, query.date_to):
            for staff in selected:
                working = self._working_window(staff, day)
                if working is None:
                    continue

                blocked = self._session_blocks(staff.id, day) + self._hold_blocks(staff.id, day)
                if query.patient_id:
                    blocked += self._patient_blocks(query.patient_id, day)

                free = subtract_blocked(working, blocked)
                for slot in slice_into_slots(free, duration, step):
                    slots.append(
                        AvailableSlot(
                            date=day,
                            staff_id=staff.id,
                            staff_name=staff.name,
                            start_time=slot.start_time,
                            end_time=slot.end_time,
                        )
                    )

        # (3) Deterministic ordering for display
        slots.sort(key=lambda s: (s.date, to_minutes(s.start_time), s.staff_name))

        logger.debug(
            "Availability %s..%s: %d slot(s) for %d staff",
            query.date_from,
            query.date_to,
            len(slots),
            len(selected),
        )

        echo = AvailabilityEcho(
            date_from=query.date_from,
            date_to=query.date_to,
            duration=duration,
            slot_interval=step,
            staff_ids=query.staff_ids,
            patient_id=query.patient_id,
            room_id=query.room_id,
        )
        return AvailabilityResult(slots=slots, query=echo)

    def day_availability(
        self, staff_id: str, day: dt.date, exclude_session_id: str | None = None
    ) -> StaffDayAvailability | None:
        """
        @brief
        Working window, merged blocked ranges and free ranges for one staff/day.

        @returns
            None if the staff id is unknown; otherwise a StaffDayAvailability
            (is_available=False with empty lists when the day is unusable).
        """
        staff = self.staff_by_id.get(staff_id)
        if staff is None:
            return None

        working = self._working_window(staff, day)
        if working is None:
            return StaffDayAvailability(date=day, staff_id=staff_id, is_available=False)

        blocked = merge_overlapping(
            self._session_blocks(staff_id, day, exclude_session_id)
            + self._hold_blocks(staff_id, day)
        )
        return StaffDayAvailability(
            date=day,
            staff_id=staff_id,
            is_available=True,
            working_hours=working,
            blocked_slots=blocked,
            available_slots=subtract_blocked(working, blocked),
        )

    def is_slot_available(
        self,
        staff_id: str,
        day: dt.date,
        start_time: str,
        end_time: str,
        exclude_session_id: str | None = None,
    ) -> SlotCheck:
        """
        @brief
        Point check of a requested range for one staff member.

        @details
        Checks in order: day usable, within working hours, no session
        conflict (optionally ignoring one session being rescheduled), no
        active hold. The first failure determines the reason.
        """
        requested = TimeSlot(start_time=start_time, end_time=end_time)

        # (1) Day must be usable at all
        day_view = self.day_availability(staff_id, day, exclude_session_id)
        if day_view is None or not day_view.is_available or day_view.working_hours is None:
            return SlotCheck(available=False, reason="Staff member is not available on this day")

        # (2) Requested range inside working hours
        working = day_view.working_hours
        if not contains(working, requested):
            return SlotCheck(
                available=False,
                reason=f"Time is outside working hours ({working.start_time}-{working.end_time})",
            )

        # (3) Session conflicts
        for blocked in self._session_blocks(staff_id, day, exclude_session_id):
            if slots_overlap(requested, blocked):
                return SlotCheck(
                    available=False,
                    reason=(
                        f"Conflicts with existing session at "
                        f"{blocked.start_time}-{blocked.end_time}"
                    ),
                )

        # (4) Active holds
        for blocked in self._hold_blocks(staff_id, day):
            if slots_overlap(requested, blocked):
                return SlotCheck(
                    available=False, reason="Time slot is currently on hold for another booking"
                )

        return SlotCheck(available=True)

    # ---------- Internals ----------
    def _working_window(self, staff: StaffForScheduling, day: dt.date) -> TimeSlot | None:
        override = find_override(self.unavailability, staff.id, day)
        return effective_working_hours(self.settings, staff, day, override)

    def _session_blocks(
        self, staff_id: str, day: dt.date, exclude_session_id: str | None = None
    ) -> list[TimeSlot]:
        return [
            TimeSlot(start_time=s.start_time, end_time=s.end_time)
            for s in self._sessions_by_staff_day.get((staff_id, day), [])
            if s.id != exclude_session_id
        ]

    def _hold_blocks(self, staff_id: str, day: dt.date) -> list[TimeSlot]:
        return [
            TimeSlot(start_time=h.start_time, end_time=h.end_time)
            for h in self._holds_by_staff_day.get((staff_id, day), [])
        ]

    def _patient_blocks(self, patient_id: str, day: dt.date) -> list[TimeSlot]:
        return [
            TimeSlot(start_time=s.start_time, end_time=s.end_time)
            for s in self._sessions_by_patient_day.get((patient_id, day), [])
        ]


__all__ = [
    "AvailabilityCalculator",
    "business_window",
    "effective_working_hours",
    "find_override",
    "resolve_staff_hours",
]
