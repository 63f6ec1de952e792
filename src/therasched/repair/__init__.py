from therasched.repair.governor import (
    apply_patch,
    build_repair_prompt,
    build_repair_system_prompt,
    build_repair_user_prompt,
    validate_repair_response,
)
from therasched.repair.request_builder import RepairRequestBuilder
from therasched.repair.violations import (
    SearchSpaceBuilder,
    SlotIndex,
    build_search_space,
    build_slot_catalog,
    rules_for_repair,
    to_generated_session,
    to_repair_sessions,
    violations_from_outcome,
)

__all__ = [
    "RepairRequestBuilder",
    "SearchSpaceBuilder",
    "SlotIndex",
    "apply_patch",
    "build_repair_prompt",
    "build_repair_system_prompt",
    "build_repair_user_prompt",
    "build_search_space",
    "build_slot_catalog",
    "rules_for_repair",
    "to_generated_session",
    "to_repair_sessions",
    "validate_repair_response",
    "violations_from_outcome",
]
