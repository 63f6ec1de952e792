# tests/proposer/test_prompts.py
from __future__ import annotations

from tests.factories import (
    MONDAY,
    mk_patient,
    mk_room,
    mk_rule,
    mk_session,
    mk_spec,
    mk_staff,
)
from therasched.intervals import week_dates
from therasched.proposer import build_generation_prompt, build_session_repair_prompt
from therasched.proposer.prompts import redact_names


def snapshot():
    staff = [mk_staff("st1", name="Alice Moss", gender="female")]
    patients = [
        mk_patient(
            "p1",
            name="Ben Carter",
            specs=[mk_spec("sp1", per_week=2, certifications=["BCBA"], duration_minutes=45)],
        )
    ]
    return staff, patients


def test_generation_prompt_uses_ids_only() -> None:
    """
    @brief
    Entities are described by id and attributes; names never appear.
    """
    # --- Arrange ---
    staff, patients = snapshot()

    # --- Act ---
    prompt = build_generation_prompt(week_dates(MONDAY), staff, patients, [mk_rule()])

    # --- Assert ---
    text = prompt.system_prompt + prompt.user_prompt
    assert "Alice" not in text and "Moss" not in text
    assert "Ben Carter" not in text
    assert "- ID: st1" in prompt.user_prompt
    assert "Certifications: [BCBA]" in prompt.user_prompt
    assert "Duration (minutes): 45" in prompt.user_prompt
    assert "AVAILABLE DATES: 2025-01-06, 2025-01-07, 2025-01-08, 2025-01-09, 2025-01-10" in (
        prompt.user_prompt
    )
    assert "STAFF (1 therapists)" in prompt.user_prompt
    assert "1. [general] Prefer mornings (priority: 1)" in prompt.user_prompt


def test_generation_prompt_rooms_section_only_with_rooms() -> None:
    """
    @brief
    Room instructions and the room list appear only when rooms exist.
    """
    # --- Arrange ---
    staff, patients = snapshot()
    dates = week_dates(MONDAY)

    # --- Act ---
    without = build_generation_prompt(dates, staff, patients, [])
    with_rooms = build_generation_prompt(dates, staff, patients, [], [mk_room("r1", ["sensory"])])

    # --- Assert ---
    assert "ROOMS" not in without.user_prompt
    assert '"roomId"' not in without.user_prompt
    assert "No specific rules defined." in without.user_prompt
    assert "ROOMS (1 rooms):" in with_rooms.user_prompt
    assert "Capabilities: [sensory]" in with_rooms.user_prompt
    assert "Each room can only have ONE session at a time" in with_rooms.system_prompt


def test_redact_names_prefers_longest_match() -> None:
    """
    @brief
    Full names are replaced before shorter overlapping names.
    """
    # --- Arrange ---
    staff = [mk_staff("st1", name="Anna"), mk_staff("st2", name="Anna Lee")]
    patients = [mk_patient("p1", name="Ben Carter")]

    # --- Act ---
    text = redact_names("Anna Lee and Anna see Ben Carter; Annabel stays", staff, patients)

    # --- Assert ---
    assert text == "st2 and st1 see p1; Annabel stays"


def test_session_repair_prompt_redacts_reasons_and_lists_busy_times() -> None:
    """
    @brief
    Rejection reasons reach the proposer with names replaced by ids.
    """
    # --- Arrange ---
    staff, patients = snapshot()
    original = mk_session(start="16:30", end="17:30")
    accepted = [mk_session(patient="p2", start="09:00", end="10:00")]
    reasons = ["Session time 16:30-17:30 outside Alice Moss's hours (09:00-17:00)"]

    # --- Act ---
    prompt = build_session_repair_prompt(
        original,
        reasons,
        patients[0],
        patients[0].session_specs[0],
        week_dates(MONDAY),
        staff,
        [],
        accepted,
        [],
    )

    # --- Assert ---
    assert "Alice Moss" not in prompt.user_prompt
    assert "outside st1's hours" in prompt.user_prompt
    assert "- 2025-01-06 09:00-10:00 therapist=st1 patient=p2 room=none" in prompt.user_prompt
    assert "date=2025-01-06 16:30-17:30" in prompt.user_prompt
    assert "exactly one replacement session" in prompt.system_prompt
