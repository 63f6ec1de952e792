# src/therasched/proposer/parsing.py
"""
@brief
Shape checks for raw proposer output.

@details
The proposer returns a single JSON object. A generation response must carry
a "sessions" array, a repair response a "patch" array; anything else is a
ProposerError. Individual malformed session items are dropped with a
warning, since the validator decides on everything that survives.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from therasched.errors import ProposerError
from therasched.schemas.models import GeneratedSession, ScheduleProposal

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


def _load_object(text: str, source: str) -> dict[str, Any]:
    if not text or not text.strip():
        raise ProposerError("Empty response from proposer", source=source)

    # some providers wrap JSON in a markdown fence despite json mode
    match = _FENCE.match(text)
    body = match.group(1) if match else text

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise ProposerError(
            f"Proposer response is not valid JSON: {e.msg} (line {e.lineno})",
            source=source,
            suggested_action="Re-request; the proposer must return a single JSON object.",
        ) from e

    if not isinstance(data, dict):
        raise ProposerError(
            f"Proposer response must be a JSON object, got {type(data).__name__}",
            source=source,
        )
    return data


def parse_schedule_proposal(text: str) -> ScheduleProposal:
    """
    @brief
    Parse a generation response into a ScheduleProposal.

    @raises
        ProposerError
            If the text is not a JSON object or has no "sessions" array.
    """
    source = "proposer.parse_schedule_proposal"
    data = _load_object(text, source)

    raw_sessions = data.get("sessions")
    if not isinstance(raw_sessions, list):
        raise ProposerError(
            "Invalid response format: missing sessions array",
            source=source,
            suggested_action="Re-request; the response must contain a 'sessions' array.",
        )

    sessions: list[GeneratedSession] = []
    dropped: list[str] = []
    for i, item in enumerate(raw_sessions):
        try:
            sessions.append(GeneratedSession.model_validate(item))
        except PydanticValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            dropped.append(f"Dropped malformed session #{i}: invalid {fields or 'item'}")

    for message in dropped:
        logger.warning(message)

    proposal = ScheduleProposal(sessions=sessions, warnings=data.get("warnings", []))
    proposal.warnings.extend(dropped)
    return proposal


def parse_repair_response(text: str) -> dict[str, Any]:
    """
    @brief
    Parse a repair response into a raw dict.

    @details
    Only the top-level shape is checked here; op-level problems are left to
    the governor so they are reported item by item.

    @raises
        ProposerError
            If the text is not a JSON object or has no "patch" key.
    """
    source = "proposer.parse_repair_response"
    data = _load_object(text, source)
    if "patch" not in data:
        raise ProposerError(
            "Invalid repair response: missing patch array",
            source=source,
            suggested_action="Re-request; the response must contain a 'patch' array.",
        )
    return data


__all__ = ["parse_repair_response", "parse_schedule_proposal"]
