# src/therasched/repair/governor.py
"""
@brief
Repair protocol governor.

@details
Builds the prompt for an incremental repair and checks the proposer's patch
against the enumerated search space of the request. The governor never
decides what is wrong with a schedule; violations are computed upstream.
A patch is either fully valid and applied, or discarded as a whole.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from therasched.errors import PatchRejectedError
from therasched.proposer.base import ChatPrompt
from therasched.schemas.repair import (
    OP_MODELS,
    AddableRequirementConstraint,
    AddOp,
    DeleteOp,
    MovableSessionConstraint,
    MoveOp,
    RepairRequest,
    RepairResponse,
    RepairSession,
    SwapOp,
    ValidateRepairResult,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """You are a schedule repair assistant.

You will receive a JSON object describing:
- The current schedule (sessions with IDs and slot IDs)
- Deterministic violations to fix
- Rules to respect (already resolved to IDs)
- A bounded search space that lists the only allowed changes

You must return ONLY valid JSON with this exact shape:
{
  "patch": [ ...operations... ],
  "expectedImpact": { "violationsResolved": [], "violationsIntroducedRisk": [] },
  "notes": []
}

Operations:
- {"op": "move", "sid", "toSlotId", "toTherapistId"?, "toRoomId"?, "because", "fixes"?}
- {"op": "swap", "sidA", "sidB", "because", "fixes"?}
- {"op": "delete", "sid", "because", "fixes"?}
- {"op": "add", "requirementId", "therapistId", "patientId", "sessionSpecId", "slotId",
   "roomId"?, "because", "fixes"?}

CRITICAL:
- Use ONLY IDs and slotIds provided in the request.
- Choose ONLY from allowedSlotIds/allowedTherapistIds/allowedRoomIds in searchSpace.
- Never touch a session whose constraint has "lock": true.
- Touch each session at most once per patch.
- Every operation needs a short "because" explanation.
- Prefer the smallest number of operations.
- Do not add commentary outside JSON."""


# ----------------------------
# PROMPTS
# ----------------------------
def build_repair_system_prompt() -> str:
    return _SYSTEM_PROMPT


def build_repair_user_prompt(request: RepairRequest) -> str:
    payload = json.dumps(request.to_wire(), ensure_ascii=False)
    return (
        "Repair this schedule by proposing a patch to reduce violations.\n\n"
        "Return JSON only. Here is the repair request:\n\n"
        f"{payload}"
    )


def build_repair_prompt(request: RepairRequest) -> ChatPrompt:
    return ChatPrompt(
        system_prompt=build_repair_system_prompt(),
        user_prompt=build_repair_user_prompt(request),
    )


# ----------------------------
# GOVERNANCE
# ----------------------------
class _PatchChecker:
    """
    @brief
    Single-use checker for one patch against one request.

    @details
    Ops are checked one by one so that a malformed op produces an itemized
    error instead of failing the whole response parse. Touch counts and the
    lock guardrail are evaluated after all ops.
    """

    def __init__(self, request: RepairRequest) -> None:
        self.request = request
        self.errors: list[str] = []
        self.touched: list[str] = []
        self.ops: list[MoveOp | SwapOp | DeleteOp | AddOp] = []

        self.session_by_sid: dict[str, RepairSession] = {
            s.sid: s for s in request.schedule.sessions
        }
        self.slot_ids: set[str] = {s.slot_id for s in request.slots}
        self.movable_by_sid: dict[str, MovableSessionConstraint] = {
            m.sid: m for m in request.search_space.movable_sessions
        }
        self.addable_by_id: dict[str, AddableRequirementConstraint] = {
            r.requirement_id: r for r in request.search_space.addable_requirements
        }
        self._adds_per_requirement: Counter[str] = Counter()
        # sids whose lock was already reported by a per-op check
        self._lock_reported: set[str] = set()

    # ---------- Entry ----------
    def check(self, patch: Any) -> ValidateRepairResult:
        if not isinstance(patch, list):
            return ValidateRepairResult(ok=False, errors=["Response.patch must be an array"])

        # (1) Budget
        max_ops = self.request.meta.max_patch_ops
        if len(patch) > max_ops:
            self.errors.append(f"Patch exceeds maxPatchOps ({len(patch)} > {max_ops})")

        # (2) Per-op dispatch
        for index, raw in enumerate(patch):
            op = self._parse_op(index, raw)
            if op is None:
                continue
            self.ops.append(op)

            if isinstance(op, MoveOp):
                self._check_move(index, op)
            elif isinstance(op, SwapOp):
                self._check_swap(index, op)
            elif isinstance(op, DeleteOp):
                self._check_delete(index, op)
            else:
                self._check_add(index, op)

            if not op.because.strip():
                self.errors.append(f"patch[{index}].because must be a non-empty string")

        # (3) Whole-patch invariants
        self._check_touch_counts()
        self._check_lock_guardrail()

        return ValidateRepairResult(ok=not self.errors, errors=list(self.errors))

    # ---------- Parsing ----------
    def _parse_op(self, index: int, raw: Any) -> MoveOp | SwapOp | DeleteOp | AddOp | None:
        if isinstance(raw, (MoveOp, SwapOp, DeleteOp, AddOp)):
            return raw

        if not isinstance(raw, Mapping) or "op" not in raw:
            self.errors.append(f'patch[{index}] must be an operation object with "op"')
            return None

        model = OP_MODELS.get(str(raw["op"]))
        if model is None:
            self.errors.append(f"patch[{index}].op is unsupported: {raw['op']}")
            return None

        try:
            return model.model_validate(raw)  # type: ignore[return-value]
        except PydanticValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            self.errors.append(f"patch[{index}] ({raw['op']}) is malformed: {fields}")
            return None

    # ---------- Op checks ----------
    def _check_move(self, index: int, op: MoveOp) -> None:
        if op.sid not in self.session_by_sid:
            self.errors.append(f"patch[{index}].sid is unknown: {op.sid}")
        self.touched.append(op.sid)

        if op.to_slot_id not in self.slot_ids:
            self.errors.append(f"patch[{index}].toSlotId is unknown: {op.to_slot_id}")

        movable = self.movable_by_sid.get(op.sid)
        if movable is None:
            self.errors.append(
                f"patch[{index}] moves sid {op.sid} but it is not in searchSpace.movableSessions"
            )
            return

        if movable.lock:
            self.errors.append(f"patch[{index}] moves locked sid {op.sid}")
            self._lock_reported.add(op.sid)
        if op.to_slot_id not in movable.allowed_slot_ids:
            self.errors.append(
                f"patch[{index}] moves sid {op.sid} to disallowed slotId {op.to_slot_id}"
            )

        current = self.session_by_sid.get(op.sid)
        if op.to_therapist_id is not None and not _allowed(
            op.to_therapist_id,
            movable.allowed_therapist_ids,
            current.therapist_id if current else None,
        ):
            self.errors.append(
                f"patch[{index}] moves sid {op.sid} to disallowed therapistId {op.to_therapist_id}"
            )
        if op.to_room_id is not None and not _allowed(
            op.to_room_id, movable.allowed_room_ids, current.room_id if current else None
        ):
            self.errors.append(
                f"patch[{index}] moves sid {op.sid} to disallowed roomId {op.to_room_id}"
            )

    def _check_swap(self, index: int, op: SwapOp) -> None:
        if op.sid_a not in self.session_by_sid:
            self.errors.append(f"patch[{index}].sidA is unknown: {op.sid_a}")
        if op.sid_b not in self.session_by_sid:
            self.errors.append(f"patch[{index}].sidB is unknown: {op.sid_b}")
        self.touched.extend([op.sid_a, op.sid_b])

        movable_a = self.movable_by_sid.get(op.sid_a)
        movable_b = self.movable_by_sid.get(op.sid_b)
        if movable_a is None or movable_b is None:
            self.errors.append(f"patch[{index}] swap requires both sidA and sidB to be movable")
            return

        if movable_a.lock:
            self.errors.append(f"patch[{index}] swaps locked sidA {op.sid_a}")
            self._lock_reported.add(op.sid_a)
        if movable_b.lock:
            self.errors.append(f"patch[{index}] swaps locked sidB {op.sid_b}")
            self._lock_reported.add(op.sid_b)

    def _check_delete(self, index: int, op: DeleteOp) -> None:
        if op.sid not in self.session_by_sid:
            self.errors.append(f"patch[{index}].sid is unknown: {op.sid}")
        self.touched.append(op.sid)

        movable = self.movable_by_sid.get(op.sid)
        if movable is not None and movable.lock:
            self.errors.append(f"patch[{index}] deletes locked sid {op.sid}")
            self._lock_reported.add(op.sid)

    def _check_add(self, index: int, op: AddOp) -> None:
        if op.slot_id not in self.slot_ids:
            self.errors.append(f"patch[{index}].slotId is unknown: {op.slot_id}")

        addable = self.addable_by_id.get(op.requirement_id)
        if addable is None:
            self.errors.append(f"patch[{index}].requirementId is unknown: {op.requirement_id}")
            self.errors.append(
                f"patch[{index}] adds requirementId {op.requirement_id} but it is not in "
                "searchSpace.addableRequirements"
            )
            return

        # no id substitution: patient and spec must match the requirement
        if op.patient_id != addable.patient_id:
            self.errors.append(
                f"patch[{index}] add patientId mismatch ({op.patient_id} != {addable.patient_id})"
            )
        if op.session_spec_id != addable.session_spec_id:
            self.errors.append(
                f"patch[{index}] add sessionSpecId mismatch "
                f"({op.session_spec_id} != {addable.session_spec_id})"
            )
        if op.slot_id not in addable.allowed_slot_ids:
            self.errors.append(f"patch[{index}] add uses disallowed slotId {op.slot_id}")
        if op.therapist_id not in addable.allowed_therapist_ids:
            self.errors.append(f"patch[{index}] add uses disallowed therapistId {op.therapist_id}")
        if op.room_id is not None and not _allowed(op.room_id, addable.allowed_room_ids, None):
            self.errors.append(f"patch[{index}] add uses disallowed roomId {op.room_id}")

        self._adds_per_requirement[op.requirement_id] += 1
        if self._adds_per_requirement[op.requirement_id] > addable.count_missing:
            self.errors.append(
                f"patch[{index}] adds requirementId {op.requirement_id} beyond countMissing "
                f"({addable.count_missing})"
            )

    # ---------- Whole-patch checks ----------
    def _check_touch_counts(self) -> None:
        counts = Counter(self.touched)
        for sid, count in counts.items():
            if count > 1:
                self.errors.append(f"Session {sid} is modified multiple times in one patch")

    def _check_lock_guardrail(self) -> None:
        hints = self.request.objective.scoring_hints
        if hints is not None and hints.avoid_moving_locked is False:
            return
        for sid in dict.fromkeys(self.touched):
            if sid in self._lock_reported:
                continue
            movable = self.movable_by_sid.get(sid)
            if movable is not None and movable.lock:
                self.errors.append(f"Locked session {sid} should not be modified")


def _allowed(value: str, allowed: list[str] | None, current: str | None) -> bool:
    # None allow-list: only the current assignment may be restated
    if allowed is None:
        return value == current
    return value in allowed


def _extract_patch(response: RepairResponse | Mapping[str, Any] | Any) -> Any:
    if isinstance(response, RepairResponse):
        return list(response.patch)
    if isinstance(response, Mapping):
        return response.get("patch")
    return None


def validate_repair_response(
    request: RepairRequest, response: RepairResponse | Mapping[str, Any] | Any
) -> ValidateRepairResult:
    """
    @brief
    Check a proposer patch against the request's search space.

    @details
    Accepts either a parsed RepairResponse or the raw decoded JSON object.
    Rules:
        (1) patch length <= meta.max_patch_ops
        (2) every referenced id exists and is in the matching allowed set
        (3) locked sessions are never moved, swapped or deleted
        (4) every op carries a non-empty justification
        (5) no session is touched more than once

    @returns
        ValidateRepairResult; any error means the whole patch is discarded.
    """
    if not isinstance(response, (RepairResponse, Mapping)):
        return ValidateRepairResult(ok=False, errors=["Response must be an object"])

    result = _PatchChecker(request).check(_extract_patch(response))
    if result.ok:
        logger.info("Repair patch accepted (request=%s)", request.meta.request_id)
    else:
        logger.warning(
            "Repair patch rejected (request=%s): %d error(s)",
            request.meta.request_id,
            len(result.errors),
        )
    return result


# ----------------------------
# APPLICATION (all-or-nothing)
# ----------------------------
def apply_patch(
    request: RepairRequest, response: RepairResponse | Mapping[str, Any]
) -> list[RepairSession]:
    """
    @brief
    Apply a governed patch to the request's schedule.

    @details
    Validates first; if anything fails, raises PatchRejectedError and the
    schedule is left untouched. The request itself is never mutated.

    @returns
        New list of RepairSession after all ops.

    @raises
        PatchRejectedError
            If the patch fails governance.
    """
    checker = _PatchChecker(request)
    result = checker.check(_extract_patch(response))
    if not result.ok:
        raise PatchRejectedError(result.errors, source="repair.apply_patch")

    sessions: dict[str, RepairSession] = {
        s.sid: s.model_copy() for s in request.schedule.sessions
    }
    added = 0

    for op in checker.ops:
        if isinstance(op, MoveOp):
            current = sessions[op.sid]
            update: dict[str, Any] = {"slot_id": op.to_slot_id}
            if op.to_therapist_id is not None:
                update["therapist_id"] = op.to_therapist_id
            if "to_room_id" in op.model_fields_set:
                update["room_id"] = op.to_room_id
            sessions[op.sid] = current.model_copy(update=update)

        elif isinstance(op, SwapOp):
            a, b = sessions[op.sid_a], sessions[op.sid_b]
            sessions[op.sid_a] = a.model_copy(update={"slot_id": b.slot_id})
            sessions[op.sid_b] = b.model_copy(update={"slot_id": a.slot_id})

        elif isinstance(op, DeleteOp):
            del sessions[op.sid]

        else:
            added += 1
            sid = _new_sid(op.requirement_id, added, sessions)
            sessions[sid] = RepairSession(
                sid=sid,
                therapist_id=op.therapist_id,
                patient_id=op.patient_id,
                session_spec_id=op.session_spec_id,
                room_id=op.room_id,
                slot_id=op.slot_id,
            )

    logger.info(
        "Applied %d op(s) to request %s: %d -> %d session(s)",
        len(checker.ops),
        request.meta.request_id,
        len(request.schedule.sessions),
        len(sessions),
    )
    return list(sessions.values())


def _new_sid(requirement_id: str, n: int, existing: Mapping[str, Any]) -> str:
    sid = f"{requirement_id}-A{n}"
    while sid in existing:
        n += 1
        sid = f"{requirement_id}-A{n}"
    return sid


__all__ = [
    "apply_patch",
    "build_repair_prompt",
    "build_repair_system_prompt",
    "build_repair_user_prompt",
    "validate_repair_response",
]
