# src/therasched/schemas/repair.py
"""
@brief
Repair protocol contract (request sent to the proposer, patch it returns).

@details
The request enumerates the current schedule in slot terms, the violations
computed upstream, resolved rules and the bounded search space. The
response is a patch: a list of tagged operations (move | swap | delete | add)
that may only reference ids drawn from that search space.

Request-side models are built by the engine and are strict; response-side
models describe untrusted proposer output and ignore unknown keys.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from therasched.schemas.models import HHMM

ViolationSeverity = Literal["blocker", "high", "medium", "low"]
ViolationType = Literal[
    "unscheduled_required_session",
    "rule_violation",
    "soft_rule_missed",
    "overbooked_staff",
    "overbooked_patient",
    "overbooked_room",
    "unmet_preference",
]
RepairMode = Literal["template", "real"]

PATCH_OP_NAMES = ("move", "swap", "delete", "add")


class _RequestModel(BaseModel):
    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "alias_generator": to_camel,
    }


class _ResponseModel(BaseModel):
    model_config = {
        "extra": "ignore",
        "populate_by_name": True,
        "alias_generator": to_camel,
    }


# ------------------------------------------------------------
# Request side
# ------------------------------------------------------------
class SlotDef(_RequestModel):
    """Named, reusable time bucket."""

    slot_id: str
    day: str
    start: HHMM
    end: HHMM


class RepairSession(_RequestModel):
    """Committed session expressed in slot terms."""

    sid: str
    therapist_id: str
    patient_id: str
    session_spec_id: str
    room_id: str | None = None
    slot_id: str


class RepairViolation(_RequestModel):
    vid: str
    type: ViolationType
    severity: ViolationSeverity
    message: str
    related_session_ids: list[str] = Field(default_factory=list)
    related_rule_ids: list[str] = Field(default_factory=list)
    related_entities: list[str] = Field(default_factory=list)


class RepairRule(_RequestModel):
    rule_id: str
    kind: Literal["hard", "soft", "complex"]
    logic: dict[str, Any] = Field(default_factory=dict)
    summary: str | None = None
    priority: int | None = None


class MovableSessionConstraint(_RequestModel):
    """
    @brief
    Allowed destinations for one committed session.

    @details
    None for the therapist/room lists means the session keeps its current
    therapist/room. lock=True means the session must not be touched at all.
    """

    sid: str
    allowed_slot_ids: list[str] = Field(default_factory=list)
    allowed_therapist_ids: list[str] | None = None
    allowed_room_ids: list[str] | None = None
    lock: bool = False


class AddableRequirementConstraint(_RequestModel):
    """Unmet requirement and the ids an `add` for it may use."""

    requirement_id: str
    patient_id: str
    session_spec_id: str
    count_missing: int = Field(..., ge=1)
    allowed_therapist_ids: list[str] = Field(default_factory=list)
    allowed_slot_ids: list[str] = Field(default_factory=list)
    allowed_room_ids: list[str] | None = None


class SearchSpace(_RequestModel):
    movable_sessions: list[MovableSessionConstraint] = Field(default_factory=list)
    addable_requirements: list[AddableRequirementConstraint] = Field(default_factory=list)


class ScoringHints(_RequestModel):
    prefer_fewer_moves: bool | None = None
    avoid_moving_locked: bool | None = None
    keep_existing_assignments_when_possible: bool | None = None


class RepairObjective(_RequestModel):
    primary: Literal["fix_blockers", "maximize_fulfillment"] = "fix_blockers"
    scoring_hints: ScoringHints | None = None


class RepairMeta(_RequestModel):
    request_id: str
    mode: RepairMode = "real"
    timezone: str | None = None
    iteration: int = Field(1, ge=1)
    max_patch_ops: int = Field(10, ge=1)


class RepairSchedule(_RequestModel):
    sessions: list[RepairSession] = Field(default_factory=list)


class RepairRequest(_RequestModel):
    """
    @brief
    Full repair request.

    @details
    {meta, slots[], schedule{sessions[]}, violations[], rules[],
     searchSpace{movableSessions[], addableRequirements[]}, objective}
    """

    meta: RepairMeta
    slots: list[SlotDef] = Field(default_factory=list)
    schedule: RepairSchedule = Field(default_factory=RepairSchedule)
    violations: list[RepairViolation] = Field(default_factory=list)
    rules: list[RepairRule] = Field(default_factory=list)
    search_space: SearchSpace = Field(default_factory=SearchSpace)
    objective: RepairObjective = Field(default_factory=RepairObjective)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ------------------------------------------------------------
# Response side
# ------------------------------------------------------------
class MoveOp(_ResponseModel):
    op: Literal["move"]
    sid: str
    to_slot_id: str
    to_therapist_id: str | None = None
    to_room_id: str | None = None
    because: str = ""
    fixes: list[str] = Field(default_factory=list)


class SwapOp(_ResponseModel):
    op: Literal["swap"]
    sid_a: str
    sid_b: str
    because: str = ""
    fixes: list[str] = Field(default_factory=list)


class DeleteOp(_ResponseModel):
    op: Literal["delete"]
    sid: str
    because: str = ""
    fixes: list[str] = Field(default_factory=list)


class AddOp(_ResponseModel):
    op: Literal["add"]
    requirement_id: str
    therapist_id: str
    patient_id: str
    session_spec_id: str
    slot_id: str
    room_id: str | None = None
    because: str = ""
    fixes: list[str] = Field(default_factory=list)


PatchOp = Annotated[MoveOp | SwapOp | DeleteOp | AddOp, Field(discriminator="op")]

OP_MODELS: dict[str, type[_ResponseModel]] = {
    "move": MoveOp,
    "swap": SwapOp,
    "delete": DeleteOp,
    "add": AddOp,
}


class ExpectedImpact(_ResponseModel):
    violations_resolved: list[str] = Field(default_factory=list)
    violations_introduced_risk: list[str] = Field(default_factory=list)


class RepairResponse(_ResponseModel):
    """{patch: PatchOp[], expectedImpact?, notes?}"""

    patch: list[PatchOp]
    expected_impact: ExpectedImpact | None = None
    notes: list[str] = Field(default_factory=list)


class ValidateRepairResult(BaseModel):
    ok: bool
    errors: list[str] = Field(default_factory=list)


__all__ = [
    "AddOp",
    "AddableRequirementConstraint",
    "DeleteOp",
    "ExpectedImpact",
    "MovableSessionConstraint",
    "MoveOp",
    "OP_MODELS",
    "PATCH_OP_NAMES",
    "PatchOp",
    "RepairMeta",
    "RepairObjective",
    "RepairRequest",
    "RepairResponse",
    "RepairRule",
    "RepairSchedule",
    "RepairSession",
    "RepairViolation",
    "ScoringHints",
    "SearchSpace",
    "SlotDef",
    "SwapOp",
    "ValidateRepairResult",
]
