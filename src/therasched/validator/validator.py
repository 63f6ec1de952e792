# src/therasched/validator/validator.py
from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from therasched.availability import business_window, find_override, resolve_staff_hours
from therasched.errors import DataError, ValidationError
from therasched.intervals import contains, day_of_week, minutes_to_time, to_minutes
from therasched.metrics.logger import utc_now_iso, write_report
from therasched.schemas.models import (
    Advisory,
    GeneratedSession,
    OrganizationSettings,
    PatientForScheduling,
    RejectedSession,
    RoomForScheduling,
    SessionSpec,
    StaffForScheduling,
    TimeSlot,
    UnavailabilityRecord,
    ValidationOutcome,
)

logger = logging.getLogger(__name__)


# ----------------------------
# AUXILIARY STRUCTURES
# ----------------------------
@dataclass(frozen=True)
class Booking:
    """
    @brief
    One accepted session as seen by an overlap index.

    @details
    Times are minutes since midnight.
    """

    date: dt.date
    start: int
    end: int


@dataclass
class _Verdict:
    """Per-session accumulator for one pass."""

    reasons: list[str]
    checks: list[str]
    advisories: list[Advisory]
    spec: SessionSpec | None = None

    def reject(self, check: str, reason: str) -> None:
        self.reasons.append(reason)
        self.checks.append(check)


# ---------------------------
# VALIDATOR CLASS (instance core)
# ----------------------------
class SessionValidator:
    """
    @brief
    Deterministic gate between proposed sessions and the committed schedule.

    @details
    Makes a single left-to-right pass over the candidates while keeping
    three running indices (staff, patient, room) of sessions already
    accepted in this pass. Hard constraint violations reject the session
    with itemized reasons; soft shortfalls become advisories.

    Never raises for business-rule violations. Inputs are not mutated, so
    the same validator can be re-run as often as a repair loop needs.
    """

    # ---------- Constructor ----------
    def __init__(
        self,
        staff: list[StaffForScheduling],
        patients: list[PatientForScheduling],
        rooms: list[RoomForScheduling] | None = None,
        unavailability: list[UnavailabilityRecord] | None = None,
        settings: OrganizationSettings | None = None,
    ) -> None:
        """
        @brief
        Initialize validation context.

        @params
            staff, patients, rooms : authoritative entity lists
            unavailability : approved day overrides (others are ignored)
            settings : if given, business hours are enforced as well
        """
        self.staff = staff
        self.patients = patients
        self.rooms = list(rooms or [])
        self.unavailability = list(unavailability or [])
        self.settings = settings

        # (1) Lookup tables
        self.staff_by_id: dict[str, StaffForScheduling] = {s.id: s for s in staff}
        self.patient_by_id: dict[str, PatientForScheduling] = {p.id: p for p in patients}
        self.room_by_id: dict[str, RoomForScheduling] = {r.id: r for r in self.rooms}

        # (2) Accumulators, reset on every run
        self._reset()

    def _reset(self) -> None:
        self.valid: list[GeneratedSession] = []
        self.rejected: list[RejectedSession] = []
        self.warnings: list[Advisory] = []
        self._staff_index: dict[str, list[Booking]] = defaultdict(list)
        self._patient_index: dict[str, list[Booking]] = defaultdict(list)
        self._room_index: dict[str, list[Booking]] = defaultdict(list)

    # ---------- Public lifecycle API ----------
    def run_all_checks(self, sessions: Iterable[GeneratedSession]) -> ValidationOutcome:
        """
        @brief
        Validate a batch of candidate sessions.

        @details
        (1) per-session checks in input order, first accepted wins on overlap
        (2) coverage check per active session spec

        @returns
            ValidationOutcome partitioning the batch.
        """
        self._reset()
        candidates = list(sessions)

        # (1) Single pass over candidates
        for session in candidates:
            self._check_session(session)

        # (2) Coverage shortfalls
        self._check_coverage()

        logger.info(
            "Validated %d candidate(s): %d accepted, %d rejected, %d warning(s)",
            len(candidates),
            len(self.valid),
            len(self.rejected),
            len(self.warnings),
        )
        return self.build_outcome()

    def build_outcome(self) -> ValidationOutcome:
        return ValidationOutcome(
            valid=list(self.valid),
            rejected=list(self.rejected),
            warnings=list(self.warnings),
        )

    def build_report(self) -> dict[str, Any]:
        """
        @brief
        Serializable summary of the last run.

        @details
        The batch counts as valid when nothing was rejected; warnings never
        invalidate a schedule on their own.
        """
        outcome = self.build_outcome()
        return {
            "timestamp": utc_now_iso(),
            "valid": not outcome.rejected,
            "accepted": len(outcome.valid),
            "rejected": [r.model_dump(mode="json", by_alias=True) for r in outcome.rejected],
            "warnings": [w.model_dump(mode="json", by_alias=True) for w in outcome.warnings],
            "checks": outcome.checks,
        }

    def save_report(
        self,
        report: dict[str, Any],
        out_dir: Path | None = None,
        filename: str = "validation_report.json",
    ) -> Path:
        """Writes the report atomically to disk."""
        target_dir = out_dir or Path("data/output")
        try:
            path = write_report(report, target_dir, filename)
        except DataError as e:
            raise ValidationError(
                f"Failed to write validation report: {e}",
                source="SessionValidator.save_report",
                suggested_action="Check disk permissions and free space.",
            ) from e

        logger.info("Validation report saved: %s", path)
        return path

    # ---------- Per-session pipeline ----------
    def _check_session(self, session: GeneratedSession) -> None:
        verdict = _Verdict(reasons=[], checks=[], advisories=[])

        therapist = self._check_entities(session, verdict)
        patient = self.patient_by_id.get(session.patient_id)
        self._check_time_range(session, verdict)

        if therapist is not None and patient is not None:
            verdict.spec = self._resolve_spec(session, patient, verdict)
            self._check_certifications(therapist, verdict)
            self._check_working_hours(session, therapist, verdict)
            self._check_business_hours(session, verdict)
            self._check_overlaps(session, therapist, patient, verdict)
            self._check_room(session, patient, verdict)

        if verdict.reasons:
            self.rejected.append(
                RejectedSession(session=session, reasons=verdict.reasons, checks=verdict.checks)
            )
            logger.warning(
                "Rejected session therapist=%s patient=%s %s %s-%s: %s",
                session.therapist_id,
                session.patient_id,
                session.date,
                session.start_time,
                session.end_time,
                ", ".join(sorted(set(verdict.checks))),
            )
            return

        self._accept(session, verdict)

    def _accept(self, session: GeneratedSession, verdict: _Verdict) -> None:
        # (1) Persist resolved spec id on the accepted copy
        accepted = session
        if verdict.spec is not None and session.session_spec_id != verdict.spec.id:
            accepted = session.model_copy(update={"session_spec_id": verdict.spec.id})

        # (2) Register in the running indices
        booking = Booking(
            date=session.date,
            start=to_minutes(session.start_time),
            end=to_minutes(session.end_time),
        )
        self._staff_index[session.therapist_id].append(booking)
        self._patient_index[session.patient_id].append(booking)
        if session.room_id:
            self._room_index[session.room_id].append(booking)

        self.valid.append(accepted)
        self.warnings.extend(verdict.advisories)

    # ---------- Checks ----------
    def _check_entities(
        self, session: GeneratedSession, verdict: _Verdict
    ) -> StaffForScheduling | None:
        """Resolve staff and patient ids; unknown or inactive entities reject."""
        therapist = self.staff_by_id.get(session.therapist_id)
        if therapist is None:
            verdict.reject("EntityResolution", f"Therapist {session.therapist_id} not found")
        elif therapist.status != "active":
            verdict.reject("EntityResolution", f"Therapist {therapist.name} is not active")
            therapist = None

        patient = self.patient_by_id.get(session.patient_id)
        if patient is None:
            verdict.reject("EntityResolution", f"Patient {session.patient_id} not found")
        elif patient.status != "active":
            verdict.reject("EntityResolution", f"Patient {patient.display_id} is not active")

        return therapist

    def _check_time_range(self, session: GeneratedSession, verdict: _Verdict) -> None:
        if to_minutes(session.start_time) >= to_minutes(session.end_time):
            verdict.reject(
                "TimeRange",
                f"Invalid time range {session.start_time}-{session.end_time}",
            )

    def _resolve_spec(
        self, session: GeneratedSession, patient: PatientForScheduling, verdict: _Verdict
    ) -> SessionSpec | None:
        """
        @brief
        Determine which session spec a candidate fulfils.

        @details
        An explicit id must name an active spec of that patient. Without an
        id, the patient's single active spec is used; zero or several active
        specs make the candidate ambiguous.
        """
        if session.session_spec_id:
            spec = patient.spec_by_id(session.session_spec_id)
            if spec is None:
                verdict.reject(
                    "SessionSpec",
                    f"Session spec {session.session_spec_id} not found for patient "
                    f"{patient.display_id}",
                )
                return None
            if not spec.is_active:
                verdict.reject("SessionSpec", f"Session spec {spec.name or spec.id} is not active")
                return None
            return spec

        active = patient.active_specs
        if len(active) == 1:
            return active[0]
        if not active:
            verdict.reject(
                "SessionSpec", f"Patient {patient.display_id} has no active session specs"
            )
        else:
            verdict.reject(
                "SessionSpec",
                f"Session spec is required: patient {patient.display_id} has "
                f"{len(active)} active specs",
            )
        return None

    def _check_certifications(self, therapist: StaffForScheduling, verdict: _Verdict) -> None:
        if verdict.spec is None:
            return
        held = set(therapist.certifications)
        missing = [c for c in verdict.spec.required_certifications if c not in held]
        if missing:
            verdict.reject(
                "Certification",
                f"Therapist {therapist.name} missing certifications: {', '.join(missing)}",
            )

    def _check_working_hours(
        self, session: GeneratedSession, therapist: StaffForScheduling, verdict: _Verdict
    ) -> None:
        """
        @brief
        Session must lie within the staff member's hours for that date.

        @details
        A full-day override rejects. An override window replaces the default
        hours for the date. No recorded hours for the weekday only warns.
        """
        slot = TimeSlot(start_time=session.start_time, end_time=session.end_time)
        override = find_override(self.unavailability, therapist.id, session.date)

        # (1) Full-day block
        if override is not None and not override.available:
            reason = f": {override.reason}" if override.reason else ""
            verdict.reject(
                "Unavailability",
                f"Therapist {therapist.name} is unavailable on {session.date.isoformat()}{reason}",
            )
            return

        # (2) Partial-day override window
        if override is not None and override.window is not None:
            window = override.window
            if not contains(window, slot):
                verdict.reject(
                    "Unavailability",
                    f"Session time {session.start_time}-{session.end_time} outside "
                    f"{therapist.name}'s available window on {session.date.isoformat()} "
                    f"({window.start_time}-{window.end_time})",
                )
            return

        # (3) Default weekly hours
        day = day_of_week(session.date)
        hours = resolve_staff_hours(therapist, session.date, override)
        if hours is None:
            verdict.advisories.append(
                Advisory(
                    check="NoHours",
                    message=(
                        f"{therapist.name} doesn't have scheduled hours on {day}, "
                        "but was assigned a session"
                    ),
                    entities={"therapist_id": therapist.id, "day": day},
                )
            )
            return

        if not contains(hours, slot):
            verdict.reject(
                "WorkingHours",
                f"Session time {session.start_time}-{session.end_time} outside "
                f"{therapist.name}'s hours ({hours.start_time}-{hours.end_time})",
            )

    def _check_business_hours(self, session: GeneratedSession, verdict: _Verdict) -> None:
        if self.settings is None:
            return

        window = business_window(self.settings, session.date)
        if window is None:
            verdict.reject(
                "BusinessHours", f"Organization is closed on {day_of_week(session.date)}"
            )
            return

        slot = TimeSlot(start_time=session.start_time, end_time=session.end_time)
        if not contains(window, slot):
            verdict.reject(
                "BusinessHours",
                f"Session time {session.start_time}-{session.end_time} outside business hours "
                f"({window.start_time}-{window.end_time})",
            )

    def _check_overlaps(
        self,
        session: GeneratedSession,
        therapist: StaffForScheduling,
        patient: PatientForScheduling,
        verdict: _Verdict,
    ) -> None:
        """Staff and patient overlap against sessions accepted earlier in this pass."""
        date_str = session.date.isoformat()

        clash = self._find_clash(self._staff_index.get(session.therapist_id, []), session)
        if clash is not None:
            verdict.reject(
                "StaffOverlap",
                f"Therapist {therapist.name} has overlapping sessions on {date_str} "
                f"({_fmt(clash)})",
            )

        clash = self._find_clash(self._patient_index.get(session.patient_id, []), session)
        if clash is not None:
            verdict.reject(
                "PatientOverlap",
                f"Patient {patient.name or patient.display_id} has overlapping sessions on "
                f"{date_str} ({_fmt(clash)})",
            )

    def _check_room(
        self, session: GeneratedSession, patient: PatientForScheduling, verdict: _Verdict
    ) -> None:
        """
        @brief
        Room resolution, room overlap and room capabilities.

        @details
        Without a room, a spec that needs capabilities only produces an
        advisory so operators can assign a room later.
        """
        spec = verdict.spec
        required = spec.required_room_capabilities if spec is not None else []

        if not session.room_id:
            if required:
                verdict.advisories.append(
                    Advisory(
                        check="RoomUnassigned",
                        message=(
                            f"Patient {patient.name or patient.display_id} requires room "
                            f"capabilities ({', '.join(required)}) but no room was assigned "
                            "to this session"
                        ),
                        entities={"patient_id": patient.id, "date": session.date.isoformat()},
                    )
                )
            return

        room = self.room_by_id.get(session.room_id)
        if room is None:
            verdict.reject("EntityResolution", f"Room {session.room_id} not found")
            return
        if room.status != "active":
            verdict.reject("EntityResolution", f"Room {room.name or room.id} is not active")
            return

        clash = self._find_clash(self._room_index.get(room.id, []), session)
        if clash is not None:
            verdict.reject(
                "RoomOverlap",
                f"Room {room.name or room.id} has overlapping sessions on "
                f"{session.date.isoformat()} ({_fmt(clash)})",
            )

        held = set(room.capabilities)
        missing = [c for c in required if c not in held]
        if missing:
            verdict.reject(
                "RoomCapability",
                f"Room {room.name or room.id} missing required capabilities: "
                f"{', '.join(missing)}",
            )

    def _check_coverage(self) -> None:
        """
        @brief
        Compare accepted sessions per active spec with the weekly requirement.

        @details
        Shortfalls are advisories only; the schedule stays usable.
        """
        counts: dict[tuple[str, str | None], int] = defaultdict(int)
        for session in self.valid:
            counts[(session.patient_id, session.session_spec_id)] += 1

        for patient in self.patients:
            if patient.status != "active":
                continue
            for spec in patient.active_specs:
                scheduled = counts.get((patient.id, spec.id), 0)
                if scheduled >= spec.sessions_per_week:
                    continue
                self.warnings.append(
                    Advisory(
                        check="Coverage",
                        message=(
                            f"Patient {patient.name or patient.display_id} "
                            f"(ID: {patient.display_id}) is scheduled for {scheduled} "
                            f"{spec.name or spec.id} sessions instead of the requested "
                            f"{spec.sessions_per_week}."
                        ),
                        entities={
                            "patient_id": patient.id,
                            "session_spec_id": spec.id,
                            "scheduled": scheduled,
                            "required": spec.sessions_per_week,
                        },
                    )
                )

    # ---------- Utilities ----------
    @staticmethod
    def _find_clash(bookings: list[Booking], session: GeneratedSession) -> Booking | None:
        start = to_minutes(session.start_time)
        end = to_minutes(session.end_time)
        for booking in bookings:
            if booking.date == session.date and booking.start < end and start < booking.end:
                return booking
        return None


def _fmt(booking: Booking) -> str:
    return f"{minutes_to_time(booking.start)}-{minutes_to_time(booking.end)}"


# ----------------------------
# THIN FACADE
# ----------------------------
def validate_sessions(
    sessions: Iterable[GeneratedSession],
    staff: list[StaffForScheduling],
    patients: list[PatientForScheduling],
    rooms: list[RoomForScheduling] | None = None,
    unavailability: list[UnavailabilityRecord] | None = None,
    settings: OrganizationSettings | None = None,
) -> ValidationOutcome:
    """
    @brief
    High-level convenience wrapper for session validation.

    @returns
        ValidationOutcome with valid, rejected and warnings.
    """
    validator = SessionValidator(staff, patients, rooms, unavailability, settings)
    return validator.run_all_checks(sessions)


__all__ = ["Booking", "SessionValidator", "validate_sessions"]
