# tests/proposer/test_parsing.py
from __future__ import annotations

import datetime as dt
import json

import pytest

from therasched.errors import ProposerError
from therasched.proposer import parse_repair_response, parse_schedule_proposal

SESSION = {
    "therapistId": "st1",
    "patientId": "p1",
    "sessionSpecId": "sp1",
    "date": "2025-01-06",
    "startTime": "09:00",
    "endTime": "10:00",
}


def test_parse_schedule_proposal_reads_camel_case_sessions() -> None:
    """
    @brief
    A well-formed generation response becomes typed sessions.

    @details
    Unknown keys on a session are ignored; warnings pass through.
    """
    # --- Arrange ---
    text = json.dumps(
        {"sessions": [{**SESSION, "confidence": 0.9}], "warnings": ["p2 not fully scheduled"]}
    )

    # --- Act ---
    proposal = parse_schedule_proposal(text)

    # --- Assert ---
    session = proposal.sessions[0]
    assert session.therapist_id == "st1"
    assert session.date == dt.date(2025, 1, 6)
    assert session.room_id is None
    assert proposal.warnings == ["p2 not fully scheduled"]


def test_parse_schedule_proposal_strips_markdown_fence() -> None:
    """
    @brief
    JSON wrapped in a ```json fence is still accepted.
    """
    # --- Arrange ---
    text = "```json\n" + json.dumps({"sessions": [SESSION]}) + "\n```"

    # --- Act ---
    proposal = parse_schedule_proposal(text)

    # --- Assert ---
    assert len(proposal.sessions) == 1
    assert proposal.warnings == []


def test_parse_schedule_proposal_drops_malformed_items() -> None:
    """
    @brief
    Malformed session items are dropped with a warning; the rest survive.
    """
    # --- Arrange ---
    bad = {**SESSION, "startTime": "9am"}
    text = json.dumps({"sessions": [bad, SESSION, "nope"]})

    # --- Act ---
    proposal = parse_schedule_proposal(text)

    # --- Assert ---
    assert len(proposal.sessions) == 1
    assert proposal.warnings[0] == "Dropped malformed session #0: invalid startTime"
    assert proposal.warnings[1].startswith("Dropped malformed session #2")


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "Empty response from proposer"),
        ("   ", "Empty response from proposer"),
        ("not json", "Proposer response is not valid JSON"),
        ("[1, 2]", "Proposer response must be a JSON object, got list"),
        ('{"schedule": []}', "Invalid response format: missing sessions array"),
        ('{"sessions": {}}', "Invalid response format: missing sessions array"),
    ],
)
def test_parse_schedule_proposal_shape_errors(text: str, message: str) -> None:
    """
    @brief
    Anything but an object with a sessions array is a ProposerError.
    """
    # --- Act ---
    with pytest.raises(ProposerError) as info:
        parse_schedule_proposal(text)

    # --- Assert ---
    assert info.value.args[0].startswith(message)


def test_parse_repair_response() -> None:
    """
    @brief
    The repair parser only requires a "patch" key.

    @details
    Op-level checks are left to the governor, so a non-list patch passes here.
    """
    # --- Act ---
    data = parse_repair_response('{"patch": "later", "notes": []}')

    # --- Assert ---
    assert data["patch"] == "later"
    with pytest.raises(ProposerError, match="missing patch array"):
        parse_repair_response('{"ops": []}')
