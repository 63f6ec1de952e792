# tests/validator/test_session_validator.py
from __future__ import annotations

import json

import pytest

from tests.factories import (
    MONDAY,
    SATURDAY,
    mk_day_off,
    mk_patient,
    mk_room,
    mk_session,
    mk_settings,
    mk_spec,
    mk_staff,
)
from therasched.errors import ValidationError
from therasched.schemas.models import UnavailabilityRecord
from therasched.validator import SessionValidator, validate_sessions


# -----------------------------
# HELPER FACTORIES
# -----------------------------
def mk_validator(staff=None, patients=None, rooms=None, unavailability=None, settings=None):
    """
    @brief
    Validator over a minimal snapshot.

    @details
    Default: therapist st1 "Alice Moss" (BCBA, 09:00-17:00 weekdays) and
    patient p1 "Ben Carter" with one spec sp1 (1 session/week).
    """
    return SessionValidator(
        staff or [mk_staff()],
        patients or [mk_patient()],
        rooms,
        unavailability,
        settings,
    )


# -----------------------------
# Acceptance and resolution
# -----------------------------
def test_valid_session_is_accepted_without_warnings() -> None:
    """
    @brief
    A session satisfying every constraint is accepted.

    @details
    Coverage is met (1 of 1), so no advisory is produced.
    """
    # --- Act ---
    outcome = mk_validator().run_all_checks([mk_session()])

    # --- Assert ---
    assert outcome.valid == [mk_session()]
    assert outcome.rejected == []
    assert outcome.warnings == []


def test_single_active_spec_is_resolved_when_missing() -> None:
    """
    @brief
    Without a session spec id, the patient's single active spec is used.

    @details
    The accepted copy carries the resolved id; the input is not mutated.
    """
    # --- Arrange ---
    session = mk_session(spec=None)

    # --- Act ---
    outcome = mk_validator().run_all_checks([session])

    # --- Assert ---
    assert outcome.valid[0].session_spec_id == "sp1"
    assert session.session_spec_id is None


def test_ambiguous_spec_is_rejected() -> None:
    """
    @brief
    Several active specs and no id make the candidate ambiguous.
    """
    # --- Arrange ---
    patient = mk_patient(specs=[mk_spec("sp1"), mk_spec("sp2")])

    # --- Act ---
    outcome = mk_validator(patients=[patient]).run_all_checks([mk_session(spec=None)])

    # --- Assert ---
    assert outcome.rejected[0].reasons == [
        "Session spec is required: patient p1 has 2 active specs"
    ]
    assert outcome.rejected[0].checks == ["SessionSpec"]


def test_unknown_spec_and_entities_are_rejected() -> None:
    """
    @brief
    Unknown therapist, patient or spec ids reject with a reason each.
    """
    # --- Act ---
    outcome = mk_validator().run_all_checks(
        [
            mk_session(therapist="ghost"),
            mk_session(patient="nobody"),
            mk_session(spec="sp9"),
        ]
    )

    # --- Assert ---
    reasons = [r.reasons for r in outcome.rejected]
    assert reasons[0] == ["Therapist ghost not found"]
    assert reasons[1] == ["Patient nobody not found"]
    assert reasons[2] == ["Session spec sp9 not found for patient p1"]
    assert outcome.valid == []


def test_inverted_time_range_is_rejected() -> None:
    """
    @brief
    start_time must be before end_time.
    """
    # --- Act ---
    outcome = mk_validator().run_all_checks([mk_session(start="11:00", end="10:00")])

    # --- Assert ---
    assert "TimeRange" in outcome.rejected[0].checks


# -----------------------------
# Certifications and hours
# -----------------------------
def test_missing_certification_rejects_with_named_reason() -> None:
    """
    @brief
    The therapist must hold every certification the session spec requires.
    """
    # --- Arrange ---
    patient = mk_patient(specs=[mk_spec(certifications=["BCBA", "SLP"])])

    # --- Act ---
    outcome = mk_validator(patients=[patient]).run_all_checks([mk_session()])

    # --- Assert ---
    assert outcome.valid == []
    assert outcome.rejected[0].reasons == ["Therapist Alice Moss missing certifications: SLP"]
    assert outcome.rejected[0].checks == ["Certification"]


def test_session_outside_working_hours_is_rejected() -> None:
    """
    @brief
    Sessions must lie within the therapist's default hours.
    """
    # --- Act ---
    outcome = mk_validator().run_all_checks([mk_session(start="16:30", end="17:30")])

    # --- Assert ---
    assert outcome.rejected[0].reasons == [
        "Session time 16:30-17:30 outside Alice Moss's hours (09:00-17:00)"
    ]


def test_day_off_rejects_and_pending_day_off_does_not() -> None:
    """
    @brief
    Approved full-day overrides reject; pending ones are ignored.
    """
    # --- Arrange ---
    approved = mk_validator(unavailability=[mk_day_off(reason="Training")])
    pending = mk_validator(unavailability=[mk_day_off(status="pending")])

    # --- Act ---
    blocked = approved.run_all_checks([mk_session()])
    ignored = pending.run_all_checks([mk_session()])

    # --- Assert ---
    assert blocked.rejected[0].reasons == [
        "Therapist Alice Moss is unavailable on 2025-01-06: Training"
    ]
    assert len(ignored.valid) == 1


def test_override_window_replaces_default_hours() -> None:
    """
    @brief
    A partial-day override narrows the allowed window for that date.
    """
    # --- Arrange ---
    override = UnavailabilityRecord(
        staff_id="st1", date=MONDAY, available=True, start_time="12:00", end_time="15:00"
    )
    validator = mk_validator(unavailability=[override])

    # --- Act ---
    outcome = validator.run_all_checks([mk_session(), mk_session(start="12:00", end="13:00")])

    # --- Assert ---
    assert outcome.rejected[0].checks == ["Unavailability"]
    assert outcome.valid[0].start_time == "12:00"


def test_no_hours_on_weekday_only_warns() -> None:
    """
    @brief
    A therapist without recorded hours for the weekday gets an advisory.
    """
    # --- Arrange ---
    staff = mk_staff(days=("tuesday",))

    # --- Act ---
    outcome = mk_validator(staff=[staff]).run_all_checks([mk_session()])

    # --- Assert ---
    assert len(outcome.valid) == 1
    assert [w.check for w in outcome.warnings] == ["NoHours"]
    assert outcome.warnings[0].entities == {"therapist_id": "st1", "day": "monday"}


def test_business_hours_enforced_only_with_settings() -> None:
    """
    @brief
    Closed days reject only when organization settings are supplied.
    """
    # --- Arrange ---
    staff = mk_staff(days=("saturday",))
    session = mk_session(day=SATURDAY)

    # --- Act ---
    without = mk_validator(staff=[staff]).run_all_checks([session])
    with_settings = mk_validator(staff=[staff], settings=mk_settings()).run_all_checks([session])

    # --- Assert ---
    assert len(without.valid) == 1
    assert with_settings.rejected[0].reasons == ["Organization is closed on saturday"]


# -----------------------------
# Overlaps
# -----------------------------
def test_patient_overlap_first_session_wins() -> None:
    """
    @brief
    Two sessions for the same patient at the same time: first accepted.

    @details
    Different therapists, so only the patient index clashes.
    """
    # --- Arrange ---
    staff = [mk_staff(), mk_staff("st2", name="Carl Dean")]
    patient = mk_patient(specs=[mk_spec(per_week=2)])
    first = mk_session()
    second = mk_session(therapist="st2", start="10:30", end="11:30")

    # --- Act ---
    outcome = mk_validator(staff=staff, patients=[patient]).run_all_checks([first, second])

    # --- Assert ---
    assert outcome.valid == [first]
    assert outcome.rejected[0].session == second
    assert outcome.rejected[0].reasons == [
        "Patient Ben Carter has overlapping sessions on 2025-01-06 (10:00-11:00)"
    ]
    assert outcome.rejected[0].checks == ["PatientOverlap"]


def test_staff_overlap_and_adjacent_sessions() -> None:
    """
    @brief
    Overlapping sessions for a therapist reject; back-to-back ones do not.
    """
    # --- Arrange ---
    patients = [mk_patient(), mk_patient("p2", name="Dana Fox"), mk_patient("p3", name="Eli Gray")]
    sessions = [
        mk_session(),
        mk_session(patient="p2", start="10:30", end="11:30"),
        mk_session(patient="p3", start="11:00", end="12:00"),
    ]

    # --- Act ---
    outcome = mk_validator(patients=patients).run_all_checks(sessions)

    # --- Assert ---
    assert [s.patient_id for s in outcome.valid] == ["p1", "p3"]
    assert outcome.rejected[0].checks == ["StaffOverlap"]
    assert outcome.checks == {"StaffOverlap": 1}


def test_rejected_session_does_not_block_later_ones() -> None:
    """
    @brief
    Only accepted sessions enter the running indices.
    """
    # --- Arrange ---
    patients = [mk_patient(), mk_patient("p2", name="Dana Fox")]
    bad = mk_session(start="16:30", end="17:30")
    good = mk_session(patient="p2", start="16:00", end="17:00")

    # --- Act ---
    outcome = mk_validator(patients=patients).run_all_checks([bad, good])

    # --- Assert ---
    assert outcome.valid == [good]


# -----------------------------
# Rooms
# -----------------------------
def test_room_checks() -> None:
    """
    @brief
    Unknown rooms, room overlaps and missing capabilities reject.
    """
    # --- Arrange ---
    staff = [mk_staff(), mk_staff("st2", name="Carl Dean")]
    patients = [
        mk_patient(specs=[mk_spec(required_room_capabilities=["sensory"])]),
        mk_patient("p2", name="Dana Fox"),
        mk_patient("p3", name="Eli Gray"),
    ]
    rooms = [mk_room("r1", ["sensory"]), mk_room("r2")]
    sessions = [
        mk_session(room="r1"),
        mk_session(therapist="st2", patient="p2", room="r1"),
        mk_session(patient="p3", start="12:00", end="13:00", room="r9"),
    ]
    capability = mk_session(start="14:00", end="15:00", room="r2", day=MONDAY)

    # --- Act ---
    outcome = mk_validator(staff=staff, patients=patients, rooms=rooms).run_all_checks(sessions)
    lacking = mk_validator(staff=staff, patients=patients, rooms=rooms).run_all_checks(
        [capability]
    )

    # --- Assert ---
    assert [r.checks for r in outcome.rejected] == [["RoomOverlap"], ["EntityResolution"]]
    assert outcome.rejected[1].reasons == ["Room r9 not found"]
    assert lacking.rejected[0].reasons == ["Room R2 missing required capabilities: sensory"]


def test_room_unassigned_advisory() -> None:
    """
    @brief
    A spec needing capabilities without a room only warns.
    """
    # --- Arrange ---
    patient = mk_patient(specs=[mk_spec(required_room_capabilities=["sensory"])])

    # --- Act ---
    outcome = mk_validator(patients=[patient]).run_all_checks([mk_session()])

    # --- Assert ---
    assert len(outcome.valid) == 1
    assert [w.check for w in outcome.warnings] == ["RoomUnassigned"]


# -----------------------------
# Coverage and reports
# -----------------------------
def test_coverage_shortfall_is_advisory() -> None:
    """
    @brief
    Fewer accepted sessions than required per week produces a Coverage advisory.
    """
    # --- Arrange ---
    patient = mk_patient(specs=[mk_spec(per_week=3)])

    # --- Act ---
    outcome = mk_validator(patients=[patient]).run_all_checks([mk_session()])

    # --- Assert ---
    assert len(outcome.valid) == 1
    coverage = outcome.warnings[0]
    assert coverage.check == "Coverage"
    assert coverage.entities == {
        "patient_id": "p1",
        "session_spec_id": "sp1",
        "scheduled": 1,
        "required": 3,
    }
    assert "instead of the requested 3" in coverage.message


def test_rerun_is_deterministic() -> None:
    """
    @brief
    Running the same validator twice gives the same outcome.
    """
    # --- Arrange ---
    validator = mk_validator()
    sessions = [mk_session(), mk_session(start="10:30", end="11:30")]

    # --- Act ---
    first = validator.run_all_checks(sessions)
    second = validator.run_all_checks(sessions)

    # --- Assert ---
    assert first == second
    assert len(first.rejected) == 1


def test_validate_sessions_facade() -> None:
    """
    @brief
    The functional wrapper matches the class API.
    """
    # --- Act ---
    outcome = validate_sessions([mk_session()], [mk_staff()], [mk_patient()])

    # --- Assert ---
    assert len(outcome.valid) == 1


def test_build_and_save_report(tmp_path) -> None:
    """
    @brief
    The report summarizes the last run and is written as JSON.
    """
    # --- Arrange ---
    validator = mk_validator()
    validator.run_all_checks([mk_session(), mk_session(start="10:30", end="11:30")])

    # --- Act ---
    report = validator.build_report()
    path = validator.save_report(report, tmp_path)

    # --- Assert ---
    assert report["valid"] is False
    assert report["accepted"] == 1
    assert report["checks"] == {"StaffOverlap": 1, "PatientOverlap": 1}
    assert json.loads(path.read_text(encoding="utf-8"))["accepted"] == 1


def test_save_report_wraps_write_failure(tmp_path) -> None:
    """
    @brief
    Report writer failures surface as ValidationError.

    @details
    A non-dict payload is refused by the JSON report writer.
    """
    # --- Arrange ---
    validator = mk_validator()

    # --- Act / Assert ---
    with pytest.raises(ValidationError):
        validator.save_report(["not", "a", "dict"], tmp_path)  # type: ignore[arg-type]
