# src/therasched/repair/violations.py
"""
@brief
Deterministic inputs of a repair request: slot catalog, violations and the
bounded search space.

@details
Everything here is derived from entity snapshots and a ValidationOutcome.
Nothing is proposed; the proposer may only pick from what is enumerated.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable, Mapping

from therasched.availability import effective_working_hours, find_override
from therasched.intervals import contains, slice_into_slots, to_minutes
from therasched.schemas.models import (
    Advisory,
    GeneratedSession,
    OrganizationSettings,
    PatientForScheduling,
    RoomForScheduling,
    RuleForScheduling,
    SessionSpec,
    StaffForScheduling,
    TimeSlot,
    UnavailabilityRecord,
    ValidationOutcome,
)
from therasched.schemas.repair import (
    AddableRequirementConstraint,
    MovableSessionConstraint,
    RepairRule,
    RepairSession,
    RepairViolation,
    SearchSpace,
    SlotDef,
)

logger = logging.getLogger(__name__)

# Rejection check -> violation type; first matching check wins, default rule_violation
_REJECTION_TYPES: dict[str, str] = {
    "StaffOverlap": "overbooked_staff",
    "PatientOverlap": "overbooked_patient",
    "RoomOverlap": "overbooked_room",
}
_ADVISORY_TYPES: dict[str, tuple[str, str]] = {
    "Coverage": ("unscheduled_required_session", "high"),
    "NoHours": ("soft_rule_missed", "medium"),
    "RoomUnassigned": ("unmet_preference", "low"),
}


# ----------------------------
# SLOT CATALOG
# ----------------------------
def build_slot_catalog(
    dates: Iterable[dt.date],
    day_start: str = "08:00",
    day_end: str = "18:00",
    duration: int = 60,
    step: int = 30,
) -> list[SlotDef]:
    """
    @brief
    Enumerate fixed-duration slots for each date.

    @details
    Slot ids are sequential across the whole catalog: T001, T002, ...
    SlotDef.day holds the ISO date.
    """
    window = TimeSlot(start_time=day_start, end_time=day_end)
    slots: list[SlotDef] = []
    for day in dates:
        for piece in slice_into_slots([window], duration, step):
            slots.append(
                SlotDef(
                    slot_id=f"T{len(slots) + 1:03d}",
                    day=day.isoformat(),
                    start=piece.start_time,
                    end=piece.end_time,
                )
            )
    return slots


class SlotIndex:
    """
    @brief
    Two-way lookup over a slot catalog that can grow.

    @details
    Sessions whose exact time is not in the catalog get an ad-hoc slot so
    that every committed session is expressible in slot terms.
    """

    def __init__(self, slots: Iterable[SlotDef] = ()) -> None:
        self.slots: list[SlotDef] = []
        self._by_id: dict[str, SlotDef] = {}
        self._by_key: dict[tuple[str, str, str], SlotDef] = {}
        for slot in slots:
            self._register(slot)

    def _register(self, slot: SlotDef) -> None:
        self.slots.append(slot)
        self._by_id[slot.slot_id] = slot
        self._by_key.setdefault((slot.day, slot.start, slot.end), slot)

    def get(self, slot_id: str) -> SlotDef | None:
        return self._by_id.get(slot_id)

    def find(self, day: dt.date, start: str, end: str) -> SlotDef | None:
        return self._by_key.get((day.isoformat(), start, end))

    def ensure(self, day: dt.date, start: str, end: str) -> SlotDef:
        slot = self.find(day, start, end)
        if slot is not None:
            return slot

        n = len(self.slots) + 1
        while f"T{n:03d}" in self._by_id:
            n += 1
        slot = SlotDef(slot_id=f"T{n:03d}", day=day.isoformat(), start=start, end=end)
        self._register(slot)
        return slot

    @staticmethod
    def date_of(slot: SlotDef) -> dt.date:
        return dt.date.fromisoformat(slot.day)

    @staticmethod
    def duration_of(slot: SlotDef) -> int:
        return to_minutes(slot.end) - to_minutes(slot.start)


# ----------------------------
# SESSIONS <-> SLOT TERMS
# ----------------------------
def to_repair_sessions(
    sessions: Iterable[GeneratedSession], slots: SlotIndex, prefix: str = "S"
) -> dict[str, tuple[RepairSession, GeneratedSession]]:
    """Assign sids (S001, ...) and express each session in slot terms."""
    mapping: dict[str, tuple[RepairSession, GeneratedSession]] = {}
    for n, session in enumerate(sessions, start=1):
        sid = f"{prefix}{n:03d}"
        slot = slots.ensure(session.date, session.start_time, session.end_time)
        mapping[sid] = (
            RepairSession(
                sid=sid,
                therapist_id=session.therapist_id,
                patient_id=session.patient_id,
                session_spec_id=session.session_spec_id or "",
                room_id=session.room_id,
                slot_id=slot.slot_id,
            ),
            session,
        )
    return mapping


def to_generated_session(
    session: RepairSession, slots: SlotIndex, notes: str | None = None
) -> GeneratedSession:
    slot = slots.get(session.slot_id)
    if slot is None:
        raise KeyError(f"Unknown slotId {session.slot_id}")
    return GeneratedSession(
        therapist_id=session.therapist_id,
        patient_id=session.patient_id,
        session_spec_id=session.session_spec_id or None,
        room_id=session.room_id,
        date=SlotIndex.date_of(slot),
        start_time=slot.start,
        end_time=slot.end,
        notes=notes,
    )


def rules_for_repair(rules: Iterable[RuleForScheduling]) -> list[RepairRule]:
    """
    @brief
    Project active rules into the repair contract.

    @details
    kind comes from rule_logic["kind"] when it is one of hard/soft/complex,
    otherwise "soft". The (already bound) description becomes the summary.
    """
    out: list[RepairRule] = []
    for rule in rules:
        if not rule.is_active:
            continue
        kind = rule.rule_logic.get("kind")
        out.append(
            RepairRule(
                rule_id=rule.id,
                kind=kind if kind in ("hard", "soft", "complex") else "soft",
                logic=dict(rule.rule_logic),
                summary=rule.description,
                priority=rule.priority,
            )
        )
    return out


# ----------------------------
# VIOLATIONS
# ----------------------------
def violations_from_outcome(
    outcome: ValidationOutcome, sessions_by_sid: Mapping[str, GeneratedSession]
) -> list[RepairViolation]:
    """
    @brief
    Turn validator rejections and advisories into typed repair violations.

    @details
    Rejected sessions are matched back to their sid by value; overlaps map
    to the matching overbooked_* type, every other hard check to
    rule_violation (blocker). Coverage, no-hours and unassigned-room
    advisories become unscheduled_required_session, soft_rule_missed and
    unmet_preference respectively.

    @returns
        Violations with sequential ids V001, V002, ...
    """
    violations: list[RepairViolation] = []
    claimed: set[str] = set()

    def next_vid() -> str:
        return f"V{len(violations) + 1:03d}"

    # (1) Hard rejections
    for rejected in outcome.rejected:
        sid = next(
            (
                s
                for s, session in sessions_by_sid.items()
                if s not in claimed and session == rejected.session
            ),
            None,
        )
        if sid is not None:
            claimed.add(sid)

        vtype = next(
            (_REJECTION_TYPES[c] for c in rejected.checks if c in _REJECTION_TYPES),
            "rule_violation",
        )
        entities = [rejected.session.therapist_id, rejected.session.patient_id]
        if rejected.session.room_id:
            entities.append(rejected.session.room_id)

        violations.append(
            RepairViolation(
                vid=next_vid(),
                type=vtype,  # type: ignore[arg-type]
                severity="blocker",
                message="; ".join(rejected.reasons),
                related_session_ids=[sid] if sid else [],
                related_entities=entities,
            )
        )

    # (2) Soft advisories
    for advisory in outcome.warnings:
        mapped = _ADVISORY_TYPES.get(advisory.check)
        if mapped is None:
            continue
        vtype, severity = mapped
        entities = [
            str(advisory.entities[key])
            for key in ("therapist_id", "patient_id", "session_spec_id")
            if key in advisory.entities
        ]
        violations.append(
            RepairViolation(
                vid=next_vid(),
                type=vtype,  # type: ignore[arg-type]
                severity=severity,  # type: ignore[arg-type]
                message=advisory.message,
                related_entities=entities,
            )
        )

    return violations


# ----------------------------
# SEARCH SPACE
# ----------------------------
class SearchSpaceBuilder:
    """
    @brief
    Computes the only legal destinations of a repair.

    @details
    For every committed session: slots of the same duration that fall within
    the working hours of at least one allowed therapist, therapists holding
    the session spec's certifications, and rooms with the required capabilities.
    For every coverage gap: an addable requirement with the same kinds of
    allowed sets.
    """

    def __init__(
        self,
        slots: SlotIndex,
        staff: list[StaffForScheduling],
        patients: list[PatientForScheduling],
        rooms: list[RoomForScheduling] | None = None,
        unavailability: list[UnavailabilityRecord] | None = None,
        settings: OrganizationSettings | None = None,
    ) -> None:
        self.slots = slots
        self.staff = [s for s in staff if s.status == "active"]
        self.patient_by_id = {p.id: p for p in patients}
        self.rooms = [r for r in (rooms or []) if r.status == "active"]
        self.unavailability = list(unavailability or [])
        self.settings = settings or OrganizationSettings()
        self._window_cache: dict[tuple[str, dt.date], TimeSlot | None] = {}

    def build(
        self,
        sessions: Iterable[RepairSession],
        outcome: ValidationOutcome,
        locked_sids: Iterable[str] = (),
    ) -> SearchSpace:
        locked = set(locked_sids)
        movable = [self._movable(s, lock=s.sid in locked) for s in sessions]

        addable: list[AddableRequirementConstraint] = []
        for advisory in outcome.warnings:
            if advisory.check != "Coverage":
                continue
            requirement = self._addable(advisory, f"R{len(addable) + 1:03d}")
            if requirement is not None:
                addable.append(requirement)

        logger.debug(
            "Search space: %d movable session(s), %d addable requirement(s)",
            len(movable),
            len(addable),
        )
        return SearchSpace(movable_sessions=movable, addable_requirements=addable)

    # ---------- Internals ----------
    def _spec(self, patient_id: str, spec_id: str | None) -> SessionSpec | None:
        patient = self.patient_by_id.get(patient_id)
        if patient is None:
            return None
        if spec_id:
            return patient.spec_by_id(spec_id)
        active = patient.active_specs
        return active[0] if len(active) == 1 else None

    def _certified_staff(self, spec: SessionSpec | None) -> list[StaffForScheduling]:
        required = set(spec.required_certifications) if spec else set()
        return [s for s in self.staff if required <= set(s.certifications)]

    def _capable_rooms(self, spec: SessionSpec | None) -> list[str] | None:
        if not self.rooms:
            return None
        required = set(spec.required_room_capabilities) if spec else set()
        return [r.id for r in self.rooms if required <= set(r.capabilities)]

    def _window(self, staff: StaffForScheduling, day: dt.date) -> TimeSlot | None:
        key = (staff.id, day)
        if key not in self._window_cache:
            override = find_override(self.unavailability, staff.id, day)
            self._window_cache[key] = effective_working_hours(self.settings, staff, day, override)
        return self._window_cache[key]

    def _fitting_slots(self, therapists: list[StaffForScheduling], duration: int) -> list[str]:
        allowed: list[str] = []
        for slot in self.slots.slots:
            if SlotIndex.duration_of(slot) != duration:
                continue
            piece = TimeSlot(start_time=slot.start, end_time=slot.end)
            day = SlotIndex.date_of(slot)
            for therapist in therapists:
                window = self._window(therapist, day)
                if window is not None and contains(window, piece):
                    allowed.append(slot.slot_id)
                    break
        return allowed

    def _movable(self, session: RepairSession, lock: bool) -> MovableSessionConstraint:
        spec = self._spec(session.patient_id, session.session_spec_id)
        therapists = self._certified_staff(spec)
        current = self.slots.get(session.slot_id)
        duration = (
            SlotIndex.duration_of(current) if current else self.settings.default_session_duration
        )

        return MovableSessionConstraint(
            sid=session.sid,
            allowed_slot_ids=self._fitting_slots(therapists, duration),
            allowed_therapist_ids=[t.id for t in therapists],
            allowed_room_ids=self._capable_rooms(spec),
            lock=lock,
        )

    def _addable(
        self, advisory: Advisory, requirement_id: str
    ) -> AddableRequirementConstraint | None:
        patient_id = str(advisory.entities.get("patient_id", ""))
        spec = self._spec(patient_id, advisory.entities.get("session_spec_id"))
        if spec is None:
            return None

        missing = int(advisory.entities.get("required", 0)) - int(
            advisory.entities.get("scheduled", 0)
        )
        if missing < 1:
            return None

        therapists = self._certified_staff(spec)
        duration = spec.duration_minutes or self.settings.default_session_duration
        return AddableRequirementConstraint(
            requirement_id=requirement_id,
            patient_id=patient_id,
            session_spec_id=spec.id,
            count_missing=missing,
            allowed_therapist_ids=[t.id for t in therapists],
            allowed_slot_ids=self._fitting_slots(therapists, duration),
            allowed_room_ids=self._capable_rooms(spec),
        )


def build_search_space(
    sessions: Iterable[RepairSession],
    outcome: ValidationOutcome,
    slots: SlotIndex,
    staff: list[StaffForScheduling],
    patients: list[PatientForScheduling],
    rooms: list[RoomForScheduling] | None = None,
    unavailability: list[UnavailabilityRecord] | None = None,
    settings: OrganizationSettings | None = None,
    locked_sids: Iterable[str] = (),
) -> SearchSpace:
    builder = SearchSpaceBuilder(slots, staff, patients, rooms, unavailability, settings)
    return builder.build(sessions, outcome, locked_sids)


__all__ = [
    "SearchSpaceBuilder",
    "SlotIndex",
    "build_search_space",
    "build_slot_catalog",
    "rules_for_repair",
    "to_generated_session",
    "to_repair_sessions",
    "violations_from_outcome",
]
