# tests/repair/test_governor.py
from __future__ import annotations

import json
from typing import Any

import pytest

from therasched.errors import PatchRejectedError
from therasched.repair import apply_patch, build_repair_prompt, validate_repair_response
from therasched.schemas.repair import (
    AddableRequirementConstraint,
    MovableSessionConstraint,
    RepairMeta,
    RepairObjective,
    RepairRequest,
    RepairResponse,
    RepairSchedule,
    RepairSession,
    ScoringHints,
    SearchSpace,
    SlotDef,
)


# -----------------------------
# HELPER FACTORIES
# -----------------------------
def mk_request(max_patch_ops: int = 10, avoid_moving_locked: bool | None = True) -> RepairRequest:
    """
    @brief
    Three-session Monday schedule with a bounded search space.

    @details
    S001 (st1/p1 at T001) may move to T002/T003 and to st1 or st2.
    S002 (st2/p2 at T002) may move to T001/T003 with st2 only.
    S003 (st1/p3 at T003) is locked.
    R001 is one missing sp2 session for p1, st1 at T003 only.
    """
    slots = [
        SlotDef(slot_id="T001", day="2025-01-06", start="09:00", end="10:00"),
        SlotDef(slot_id="T002", day="2025-01-06", start="10:00", end="11:00"),
        SlotDef(slot_id="T003", day="2025-01-06", start="11:00", end="12:00"),
    ]
    sessions = [
        RepairSession(
            sid="S001", therapist_id="st1", patient_id="p1", session_spec_id="sp1", slot_id="T001"
        ),
        RepairSession(
            sid="S002", therapist_id="st2", patient_id="p2", session_spec_id="sp1", slot_id="T002"
        ),
        RepairSession(
            sid="S003", therapist_id="st1", patient_id="p3", session_spec_id="sp1", slot_id="T003"
        ),
    ]
    search_space = SearchSpace(
        movable_sessions=[
            MovableSessionConstraint(
                sid="S001", allowed_slot_ids=["T002", "T003"], allowed_therapist_ids=["st1", "st2"]
            ),
            MovableSessionConstraint(
                sid="S002", allowed_slot_ids=["T001", "T003"], allowed_therapist_ids=["st2"]
            ),
            MovableSessionConstraint(sid="S003", allowed_slot_ids=["T001"], lock=True),
        ],
        addable_requirements=[
            AddableRequirementConstraint(
                requirement_id="R001",
                patient_id="p1",
                session_spec_id="sp2",
                count_missing=1,
                allowed_therapist_ids=["st1"],
                allowed_slot_ids=["T003"],
            )
        ],
    )
    return RepairRequest(
        meta=RepairMeta(request_id="req-1", max_patch_ops=max_patch_ops),
        slots=slots,
        schedule=RepairSchedule(sessions=sessions),
        search_space=search_space,
        objective=RepairObjective(
            scoring_hints=ScoringHints(avoid_moving_locked=avoid_moving_locked)
        ),
    )


def move(sid: str, to_slot: str, **extra: Any) -> dict[str, Any]:
    return {"op": "move", "sid": sid, "toSlotId": to_slot, "because": "fix overlap", **extra}


def add(**overrides: Any) -> dict[str, Any]:
    op = {
        "op": "add",
        "requirementId": "R001",
        "therapistId": "st1",
        "patientId": "p1",
        "sessionSpecId": "sp2",
        "slotId": "T003",
        "because": "missing sp2 session",
    }
    op.update(overrides)
    return op


def by_sid(sessions: list[RepairSession]) -> dict[str, RepairSession]:
    return {s.sid: s for s in sessions}


# -----------------------------
# Governance
# -----------------------------
def test_valid_move_is_accepted_and_applied() -> None:
    """
    @brief
    A move within the allowed sets passes and changes only that session.
    """
    # --- Arrange ---
    request = mk_request()
    response = {"patch": [move("S001", "T002", toTherapistId="st2")]}

    # --- Act ---
    result = validate_repair_response(request, response)
    sessions = by_sid(apply_patch(request, response))

    # --- Assert ---
    assert result.ok and result.errors == []
    assert sessions["S001"].slot_id == "T002"
    assert sessions["S001"].therapist_id == "st2"
    assert sessions["S002"] == request.schedule.sessions[1]


def test_moving_locked_session_is_rejected() -> None:
    """
    @brief
    A move of a lock=true session fails even into an allowed slot.

    @details
    The lock is reported once, by the op that touches the session.
    """
    # --- Act ---
    result = validate_repair_response(mk_request(), {"patch": [move("S003", "T001")]})

    # --- Assert ---
    assert not result.ok
    assert result.errors == ["patch[0] moves locked sid S003"]


def test_lock_guardrail_can_be_relaxed_but_op_check_stays() -> None:
    """
    @brief
    avoidMovingLocked=false skips the guardrail; the per-op lock check remains.
    """
    # --- Act ---
    result = validate_repair_response(
        mk_request(avoid_moving_locked=False), {"patch": [move("S003", "T001")]}
    )

    # --- Assert ---
    assert result.errors == ["patch[0] moves locked sid S003"]


def test_double_touch_rejects_whole_patch() -> None:
    """
    @brief
    Touching one session twice discards the patch, including its valid ops.

    @details
    apply_patch raises and the request schedule is left as it was.
    """
    # --- Arrange ---
    request = mk_request()
    response = {
        "patch": [
            move("S002", "T003"),
            move("S001", "T002"),
            {"op": "delete", "sid": "S001", "because": "duplicate"},
        ]
    }

    # --- Act ---
    with pytest.raises(PatchRejectedError) as info:
        apply_patch(request, response)

    # --- Assert ---
    assert info.value.errors == ["Session S001 is modified multiple times in one patch"]
    assert [s.slot_id for s in request.schedule.sessions] == ["T001", "T002", "T003"]


def test_disallowed_destinations_are_itemized() -> None:
    """
    @brief
    Slot, therapist and room outside the allowed sets each produce an error.

    @details
    S001 has no room allow-list, so only its current room (none) may be restated.
    """
    # --- Arrange ---
    response = {"patch": [move("S001", "T001", toTherapistId="st9", toRoomId="r1")]}

    # --- Act ---
    result = validate_repair_response(mk_request(), response)

    # --- Assert ---
    assert result.errors == [
        "patch[0] moves sid S001 to disallowed slotId T001",
        "patch[0] moves sid S001 to disallowed therapistId st9",
        "patch[0] moves sid S001 to disallowed roomId r1",
    ]


def test_unknown_ids_are_rejected() -> None:
    """
    @brief
    Ids not present in the request are never accepted.
    """
    # --- Act ---
    result = validate_repair_response(mk_request(), {"patch": [move("S999", "T404")]})

    # --- Assert ---
    assert result.errors == [
        "patch[0].sid is unknown: S999",
        "patch[0].toSlotId is unknown: T404",
        "patch[0] moves sid S999 but it is not in searchSpace.movableSessions",
    ]


def test_malformed_and_unsupported_ops() -> None:
    """
    @brief
    Bad ops produce itemized errors instead of failing the whole parse.
    """
    # --- Arrange ---
    patch = [{"op": "teleport"}, {"op": "move", "sid": "S001", "because": "x"}, "oops"]

    # --- Act ---
    result = validate_repair_response(mk_request(), {"patch": patch})

    # --- Assert ---
    assert result.errors[0] == "patch[0].op is unsupported: teleport"
    assert result.errors[1].startswith("patch[1] (move) is malformed:")
    assert result.errors[2] == 'patch[2] must be an operation object with "op"'


def test_patch_budget_and_justification() -> None:
    """
    @brief
    Patches longer than maxPatchOps fail; every op needs a "because".
    """
    # --- Arrange ---
    patch = [move("S001", "T002", because=" "), move("S002", "T001")]

    # --- Act ---
    result = validate_repair_response(mk_request(max_patch_ops=1), {"patch": patch})

    # --- Assert ---
    assert result.errors == [
        "Patch exceeds maxPatchOps (2 > 1)",
        "patch[0].because must be a non-empty string",
    ]


def test_response_shape_errors() -> None:
    """
    @brief
    Non-object responses and non-array patches are rejected up front.
    """
    # --- Assert ---
    assert validate_repair_response(mk_request(), "patch").errors == ["Response must be an object"]
    assert validate_repair_response(mk_request(), {"patch": {}}).errors == [
        "Response.patch must be an array"
    ]
    assert validate_repair_response(mk_request(), {}).errors == ["Response.patch must be an array"]


def test_parsed_response_model_is_accepted() -> None:
    """
    @brief
    A RepairResponse model is governed the same way as raw JSON.
    """
    # --- Arrange ---
    response = RepairResponse.model_validate({"patch": [move("S001", "T003")], "notes": ["ok"]})

    # --- Act ---
    result = validate_repair_response(mk_request(), response)

    # --- Assert ---
    assert result.ok


# -----------------------------
# Swap / delete / add
# -----------------------------
def test_swap_exchanges_slots() -> None:
    """
    @brief
    A swap of two movable sessions exchanges their slot ids only.
    """
    # --- Arrange ---
    response = {"patch": [{"op": "swap", "sidA": "S001", "sidB": "S002", "because": "balance"}]}

    # --- Act ---
    sessions = by_sid(apply_patch(mk_request(), response))

    # --- Assert ---
    assert (sessions["S001"].slot_id, sessions["S001"].therapist_id) == ("T002", "st1")
    assert (sessions["S002"].slot_id, sessions["S002"].therapist_id) == ("T001", "st2")


def test_swap_with_locked_session_is_rejected() -> None:
    """
    @brief
    Neither side of a swap may be locked.
    """
    # --- Arrange ---
    response = {"patch": [{"op": "swap", "sidA": "S001", "sidB": "S003", "because": "x"}]}

    # --- Act ---
    result = validate_repair_response(mk_request(), response)

    # --- Assert ---
    assert "patch[0] swaps locked sidB S003" in result.errors
    assert "Locked session S003 should not be modified" not in result.errors


def test_delete_removes_session() -> None:
    """
    @brief
    A delete of an unlocked session removes it from the result.
    """
    # --- Arrange ---
    response = {"patch": [{"op": "delete", "sid": "S002", "because": "duplicate"}]}

    # --- Act ---
    sessions = apply_patch(mk_request(), response)

    # --- Assert ---
    assert [s.sid for s in sessions] == ["S001", "S003"]


def test_add_creates_new_session_for_requirement() -> None:
    """
    @brief
    An add within the requirement's allowed sets creates a new sid.
    """
    # --- Act ---
    sessions = by_sid(apply_patch(mk_request(), {"patch": [add()]}))

    # --- Assert ---
    added = sessions["R001-A1"]
    assert (added.patient_id, added.session_spec_id, added.slot_id) == ("p1", "sp2", "T003")
    assert len(sessions) == 4


def test_add_violations() -> None:
    """
    @brief
    Mismatched patient, disallowed therapist and over-adding are rejected.
    """
    # --- Arrange ---
    patch = [add(patientId="p2", therapistId="st2"), add()]

    # --- Act ---
    result = validate_repair_response(mk_request(), {"patch": patch})

    # --- Assert ---
    assert result.errors == [
        "patch[0] add patientId mismatch (p2 != p1)",
        "patch[0] add uses disallowed therapistId st2",
        "patch[1] adds requirementId R001 beyond countMissing (1)",
    ]


def test_add_unknown_requirement() -> None:
    """
    @brief
    An add must reference an enumerated requirement.
    """
    # --- Act ---
    result = validate_repair_response(mk_request(), {"patch": [add(requirementId="R404")]})

    # --- Assert ---
    assert result.errors[0] == "patch[0].requirementId is unknown: R404"


# -----------------------------
# Prompt
# -----------------------------
def test_repair_prompt_embeds_camel_case_request() -> None:
    """
    @brief
    The user prompt carries the request as camelCase JSON.
    """
    # --- Act ---
    prompt = build_repair_prompt(mk_request())

    # --- Assert ---
    payload = json.loads(prompt.user_prompt.split("\n\n", 2)[2])
    assert payload["meta"]["maxPatchOps"] == 10
    assert payload["searchSpace"]["movableSessions"][2]["lock"] is True
    assert '"patch"' in prompt.system_prompt
