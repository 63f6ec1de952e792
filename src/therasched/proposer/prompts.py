# src/therasched/proposer/prompts.py
"""
@brief
Prompt builders for the external proposer.

@details
Entities are named by id plus the minimal attributes the proposer needs;
staff and patient names are never included. Rule text must already have
been through binding resolution (rules.resolve_rules_for_proposer).
"""

from __future__ import annotations

import datetime as dt
import re
from collections.abc import Iterable

from therasched.proposer.base import ChatPrompt
from therasched.schemas.models import (
    GeneratedSession,
    PatientForScheduling,
    RoomForScheduling,
    RuleForScheduling,
    SessionSpec,
    StaffForScheduling,
)

DEFAULT_DURATION = 60


# ----------------------------
# ENTITY SECTIONS
# ----------------------------
def format_staff(staff: Iterable[StaffForScheduling]) -> str:
    blocks = []
    for s in staff:
        hours = ", ".join(
            f"{day}: {slot.start_time}-{slot.end_time}"
            for day, slot in s.default_hours.items()
            if slot is not None
        )
        blocks.append(
            f"- ID: {s.id}\n"
            f"  Gender: {s.gender or 'unspecified'}\n"
            f"  Certifications: [{', '.join(s.certifications)}]\n"
            f"  Working Hours: {hours or 'Not specified'}"
        )
    return "\n".join(blocks)


def format_spec(spec: SessionSpec, indent: str = "  ") -> str:
    return (
        f"{indent}- ID: {spec.id}\n"
        f"{indent}  Name: {spec.name}\n"
        f"{indent}  Sessions Per Week: {spec.sessions_per_week}\n"
        f"{indent}  Duration (minutes): {spec.duration_minutes or DEFAULT_DURATION}\n"
        f"{indent}  Required Certifications: [{', '.join(spec.required_certifications)}]\n"
        f"{indent}  Preferred Times: [{', '.join(spec.preferred_times or [])}]\n"
        f"{indent}  Preferred Room: {spec.preferred_room_id or 'None'}\n"
        f"{indent}  Required Room Capabilities: [{', '.join(spec.required_room_capabilities)}]"
    )


def format_patients(patients: Iterable[PatientForScheduling]) -> str:
    blocks = []
    for p in patients:
        specs = "\n".join(format_spec(s) for s in p.active_specs) or "  (No session specs)"
        blocks.append(
            f"- ID: {p.id}\n  Gender: {p.gender or 'unspecified'}\n  Session Specs:\n{specs}"
        )
    return "\n".join(blocks)


def format_rooms(rooms: Iterable[RoomForScheduling]) -> str:
    blocks = [f"- ID: {r.id}\n  Capabilities: [{', '.join(r.capabilities)}]" for r in rooms]
    return "\n".join(blocks) or "No rooms configured."


def format_rules(rules: Iterable[RuleForScheduling]) -> str:
    lines = [
        f"{i}. [{r.category}] {r.description} (priority: {r.priority})"
        for i, r in enumerate(rules, start=1)
    ]
    return "\n".join(lines) or "No specific rules defined."


# ----------------------------
# GENERATION
# ----------------------------
def build_generation_system_prompt(has_rooms: bool) -> str:
    rules = [
        "Each therapist can only have ONE session at a time (no overlapping sessions)",
        "Each patient can only have ONE session at a time (no overlapping sessions)",
        "Sessions must be within the therapist's working hours for that day",
        "Therapists must have ALL required certifications for the specific session spec "
        "being scheduled",
        "Try to honor gender pairing rules when possible",
        "Each patient session spec should receive its required number of sessions per week",
        "Distribute sessions evenly across the week when possible",
        f"Standard session duration is {DEFAULT_DURATION} minutes unless otherwise specified",
    ]
    if has_rooms:
        rules += [
            "Assign rooms to sessions when rooms are available",
            "Each room can only have ONE session at a time (no overlapping sessions)",
            "If a session spec requires room capabilities, only assign rooms that have ALL "
            "required capabilities",
            "If a session spec has a preferred room, try to use that room when possible",
        ]
    numbered = "\n".join(f"{i}. {text}" for i, text in enumerate(rules, start=1))
    return (
        "You are an expert therapy scheduling assistant. Your task is to generate a weekly "
        "schedule that assigns therapists to patients while respecting all constraints.\n\n"
        f"CRITICAL RULES:\n{numbered}\n\n"
        "You must return ONLY a valid JSON object with no additional text."
    )


def _session_shape(has_rooms: bool) -> str:
    room_line = '      "roomId": "<room ID or null>",\n' if has_rooms else ""
    return (
        "{\n"
        '  "sessions": [\n'
        "    {\n"
        '      "therapistId": "<staff ID>",\n'
        '      "patientId": "<patient ID>",\n'
        '      "sessionSpecId": "<patient session spec ID>",\n'
        f"{room_line}"
        '      "date": "YYYY-MM-DD",\n'
        '      "startTime": "HH:mm",\n'
        '      "endTime": "HH:mm",\n'
        '      "notes": "optional note"\n'
        "    }\n"
        "  ],\n"
        '  "warnings": ["any scheduling constraints that couldn\'t be fully satisfied"]\n'
        "}"
    )


def build_generation_prompt(
    week_dates: list[dt.date],
    staff: list[StaffForScheduling],
    patients: list[PatientForScheduling],
    rules: list[RuleForScheduling],
    rooms: list[RoomForScheduling] | None = None,
) -> ChatPrompt:
    """
    @brief
    Build the full-week generation prompt.

    @params
        week_dates : working dates of the target week (usually Monday-Friday)
        staff, patients, rooms : active entities only
        rules : active rules with bound (id-only) text

    @returns
        ChatPrompt asking for {"sessions": [...], "warnings": [...]}.
    """
    rooms = rooms or []
    has_rooms = bool(rooms)
    dates = [d.isoformat() for d in week_dates]

    rooms_section = f"\n\nROOMS ({len(rooms)} rooms):\n{format_rooms(rooms)}" if has_rooms else ""
    conflicts = "patient, or room" if has_rooms else "or patient"

    user_prompt = (
        f"Generate a schedule for the week of {dates[0]} to {dates[-1]}.\n\n"
        f"AVAILABLE DATES: {', '.join(dates)}\n\n"
        f"STAFF ({len(staff)} therapists):\n{format_staff(staff)}\n\n"
        f"PATIENTS ({len(patients)} patients):\n{format_patients(patients)}"
        f"{rooms_section}\n\n"
        f"SCHEDULING RULES:\n{format_rules(rules)}\n\n"
        "Generate a complete schedule. Return a JSON object with this exact structure:\n"
        f"{_session_shape(has_rooms)}\n\n"
        "Ensure:\n"
        "- Use exact IDs from the staff, patient, session spec and room lists above\n"
        '- Times are in 24-hour format (e.g., "09:00", "14:30")\n'
        "- Each session spec gets its required sessions per week\n"
        f"- No time conflicts for any therapist, {conflicts}"
    )
    return ChatPrompt(
        system_prompt=build_generation_system_prompt(has_rooms),
        user_prompt=user_prompt,
    )


# ----------------------------
# SINGLE-SESSION REPAIR (copy / regeneration flow)
# ----------------------------
def redact_names(
    text: str,
    staff: Iterable[StaffForScheduling],
    patients: Iterable[PatientForScheduling],
) -> str:
    """Replace staff and patient names in validator reasons with their ids."""
    pairs = [(s.name, s.id) for s in staff] + [(p.name, p.id) for p in patients]
    # longest first so "Anna Lee" wins over "Anna"
    for name, entity_id in sorted(pairs, key=lambda pair: len(pair[0]), reverse=True):
        if name.strip():
            pattern = re.compile(rf"\b{re.escape(name.strip())}\b")
            text = pattern.sub(lambda _m, eid=entity_id: eid, text)
    return text



def _busy_lines(sessions: Iterable[GeneratedSession]) -> str:
    lines = [
        f"- {s.date.isoformat()} {s.start_time}-{s.end_time} therapist={s.therapist_id} "
        f"patient={s.patient_id} room={s.room_id or 'none'}"
        for s in sessions
    ]
    return "\n".join(lines) or "None"


def build_session_repair_prompt(
    original: GeneratedSession,
    reasons: list[str],
    patient: PatientForScheduling,
    spec: SessionSpec | None,
    week_dates: list[dt.date],
    staff: list[StaffForScheduling],
    rooms: list[RoomForScheduling],
    accepted: list[GeneratedSession],
    rules: list[RuleForScheduling],
) -> ChatPrompt:
    """
    @brief
    Prompt for replacing one rejected session of a copied schedule.

    @details
    Scoped to one patient and one session spec. The already-accepted
    sessions are listed so the replacement avoids new conflicts.
    """
    system_prompt = (
        "You are a therapy scheduling assistant fixing ONE session in an existing schedule.\n"
        "The session below was rejected for the listed reasons. Propose exactly one "
        "replacement session for the same patient and session spec that avoids every "
        "listed busy time and satisfies all constraints.\n"
        "If no valid replacement exists, return an empty sessions array.\n\n"
        "You must return ONLY a valid JSON object with no additional text."
    )

    spec_text = format_spec(spec, indent="") if spec is not None else "- (spec not resolved)"
    user_prompt = (
        f"AVAILABLE DATES: {', '.join(d.isoformat() for d in week_dates)}\n\n"
        "REJECTED SESSION:\n"
        f"- therapistId={original.therapist_id} patientId={original.patient_id} "
        f"sessionSpecId={original.session_spec_id or 'none'} roomId={original.room_id or 'none'} "
        f"date={original.date.isoformat()} {original.start_time}-{original.end_time}\n"
        "REASONS:\n"
        + "\n".join(f"- {redact_names(r, staff, [patient])}" for r in reasons)
        + "\n\n"
        f"PATIENT: {patient.id} (gender: {patient.gender or 'unspecified'})\n"
        f"SESSION SPEC:\n{spec_text}\n\n"
        f"STAFF:\n{format_staff(staff)}\n\n"
        f"ROOMS:\n{format_rooms(rooms)}\n\n"
        f"ALREADY BOOKED (do not overlap):\n{_busy_lines(accepted)}\n\n"
        f"SCHEDULING RULES:\n{format_rules(rules)}\n\n"
        "Return a JSON object with this exact structure:\n"
        f"{_session_shape(bool(rooms))}"
    )
    return ChatPrompt(system_prompt=system_prompt, user_prompt=user_prompt)


__all__ = [
    "build_generation_prompt",
    "build_generation_system_prompt",
    "build_session_repair_prompt",
    "format_patients",
    "format_rooms",
    "format_rules",
    "format_staff",
    "redact_names",
]
