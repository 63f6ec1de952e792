# src/therasched/repair/request_builder.py
"""
RepairRequestBuilder: repair request construction for one schedule week.

Expresses committed sessions in slot terms, re-runs the session validator to
derive violations, and enumerates the search space the proposer must stay in.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections.abc import Iterable

from therasched.availability import business_window
from therasched.repair.violations import (
    SearchSpaceBuilder,
    SlotIndex,
    build_slot_catalog,
    rules_for_repair,
    to_generated_session,
    to_repair_sessions,
    violations_from_outcome,
)
from therasched.schemas.config import RepairConfig
from therasched.schemas.models import (
    GeneratedSession,
    OrganizationSettings,
    PatientForScheduling,
    RoomForScheduling,
    RuleForScheduling,
    StaffForScheduling,
    UnavailabilityRecord,
    ValidationOutcome,
)
from therasched.schemas.repair import (
    RepairMeta,
    RepairObjective,
    RepairRequest,
    RepairSchedule,
    RepairSession,
    RepairViolation,
    ScoringHints,
)
from therasched.validator import validate_sessions

logger = logging.getLogger(__name__)


class RepairRequestBuilder:
    """
    Builds repair requests against a fixed entity snapshot.

    The slot catalog is built once from business hours and every session
    duration in play; sessions at off-grid times get ad-hoc slots.
    """

    def __init__(
        self,
        dates: list[dt.date],
        staff: list[StaffForScheduling],
        patients: list[PatientForScheduling],
        rooms: list[RoomForScheduling] | None = None,
        unavailability: list[UnavailabilityRecord] | None = None,
        settings: OrganizationSettings | None = None,
        rules: list[RuleForScheduling] | None = None,
        cfg: RepairConfig | None = None,
        timezone: str = "UTC",
        locked_sids: Iterable[str] = (),
    ) -> None:
        """Initialize the builder with the snapshot and repair bounds."""
        self.dates = dates
        self.staff = staff
        self.patients = patients
        self.rooms = list(rooms or [])
        self.unavailability = list(unavailability or [])
        self.settings = settings or OrganizationSettings()
        self.rules = list(rules or [])
        self.cfg = cfg or RepairConfig()
        self.timezone = timezone
        self.locked_sids = set(locked_sids)

        self.slots = SlotIndex()
        self.notes_by_sid: dict[str, str | None] = {}
        self._build_catalog()

    # ---------- Public API ----------
    def register(self, sessions: Iterable[GeneratedSession]) -> list[RepairSession]:
        """Assign sids to a batch of sessions and express them in slot terms."""
        mapping = to_repair_sessions(sessions, self.slots)
        self.notes_by_sid.update({sid: pair[1].notes for sid, pair in mapping.items()})
        return [pair[0] for pair in mapping.values()]

    def to_generated(self, sessions: Iterable[RepairSession]) -> list[GeneratedSession]:
        return [
            to_generated_session(s, self.slots, notes=self.notes_by_sid.get(s.sid))
            for s in sessions
        ]

    def evaluate(
        self, sessions: list[RepairSession]
    ) -> tuple[ValidationOutcome, list[RepairViolation]]:
        """Validate the slot-term schedule and derive violations."""
        by_sid = {s.sid: g for s, g in zip(sessions, self.to_generated(sessions), strict=True)}
        outcome = validate_sessions(
            list(by_sid.values()),
            self.staff,
            self.patients,
            self.rooms,
            self.unavailability,
            self.settings,
        )
        return outcome, violations_from_outcome(outcome, by_sid)

    def build(
        self,
        sessions: list[RepairSession],
        iteration: int = 1,
        request_id: str | None = None,
    ) -> RepairRequest:
        """
        @brief
        Assemble a full RepairRequest for the given schedule state.

        @details
        (1) validate and derive violations
        (2) enumerate movable sessions and addable requirements
        (3) wrap with meta, rules and objective
        """
        # (1) Deterministic diagnosis
        outcome, violations = self.evaluate(sessions)

        # (2) Legal moves
        search_space = SearchSpaceBuilder(
            self.slots,
            self.staff,
            self.patients,
            self.rooms,
            self.unavailability,
            self.settings,
        ).build(sessions, outcome, self.locked_sids)

        # (3) Envelope
        request = RepairRequest(
            meta=RepairMeta(
                request_id=request_id or uuid.uuid4().hex,
                mode=self.cfg.mode,
                timezone=self.timezone,
                iteration=iteration,
                max_patch_ops=self.cfg.max_patch_ops,
            ),
            slots=list(self.slots.slots),
            schedule=RepairSchedule(sessions=list(sessions)),
            violations=violations,
            rules=rules_for_repair(self.rules),
            search_space=search_space,
            objective=RepairObjective(
                primary=self.cfg.objective,
                scoring_hints=ScoringHints(
                    prefer_fewer_moves=True,
                    avoid_moving_locked=True,
                    keep_existing_assignments_when_possible=True,
                ),
            ),
        )

        logger.info(
            "Built repair request %s (iteration %d): %d session(s), %d violation(s)",
            request.meta.request_id,
            iteration,
            len(sessions),
            len(violations),
        )
        return request

    # ---------- Internals ----------
    def _build_catalog(self) -> None:
        durations = {self.settings.default_session_duration}
        for patient in self.patients:
            for spec in patient.active_specs:
                if spec.duration_minutes:
                    durations.add(spec.duration_minutes)

        for day in self.dates:
            window = business_window(self.settings, day)
            if window is None:
                continue
            for duration in sorted(durations):
                for slot in build_slot_catalog(
                    [day], window.start_time, window.end_time, duration, self.settings.slot_interval
                ):
                    self.slots.ensure(day, slot.start, slot.end)

        logger.debug(
            "Slot catalog: %d slot(s) over %d day(s)", len(self.slots.slots), len(self.dates)
        )


__all__ = ["RepairRequestBuilder"]
