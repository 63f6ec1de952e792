# src/therasched/rules/bindings.py
"""
@brief
Entity bindings for free-form rule text.

@details
A rule may mention people by name ("Sarah only works with Tom"). Before any
rule reaches the proposer, every such mention is resolved to an explicit
state: Unbound(text) or Bound(entity_id, entity_type). Bound mentions are
rewritten to ids (staffId=..., patientId=...) so names never leave the engine.

Bindings are stored inside rule_logic under "entityBindings":
    [{"mention": "Sarah", "entityType": "staff", "entityId": "st-1"}, ...]
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

EntityType = Literal["staff", "patient"]


class EntityBinding(BaseModel):
    model_config = {
        "extra": "ignore",
        "populate_by_name": True,
        "alias_generator": to_camel,
    }

    mention: str
    entity_type: EntityType
    entity_id: str

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


# ----------------------------
# MENTION STATES
# ----------------------------
@dataclass(frozen=True)
class Unbound:
    """Name mention not (yet) tied to an entity."""

    text: str


@dataclass(frozen=True)
class Bound:
    """Name mention resolved to exactly one entity."""

    entity_id: str
    entity_type: EntityType

    def as_reference(self) -> str:
        key = "staffId" if self.entity_type == "staff" else "patientId"
        return f"{key}={self.entity_id}"


Mention = Unbound | Bound


def bind_mention(text: str, bindings: Iterable[EntityBinding]) -> Mention:
    """Resolve a mention against bindings (case-insensitive, trimmed)."""
    needle = text.strip().lower()
    for binding in bindings:
        if binding.mention.strip().lower() == needle:
            return Bound(entity_id=binding.entity_id, entity_type=binding.entity_type)
    return Unbound(text=text)


# ----------------------------
# BINDING LISTS
# ----------------------------
def get_entity_bindings(rule_logic: Mapping[str, Any] | None) -> list[EntityBinding]:
    """
    @brief
    Read entity bindings from rule_logic.

    @returns
        The parsed bindings, or [] if the key is missing or any item is malformed.
    """
    if not isinstance(rule_logic, Mapping):
        return []
    raw = rule_logic.get("entityBindings")
    if not isinstance(raw, list):
        return []
    try:
        return [EntityBinding.model_validate(item) for item in raw]
    except PydanticValidationError:
        return []


def merge_entity_bindings(
    existing: Iterable[EntityBinding], updates: Iterable[EntityBinding]
) -> list[EntityBinding]:
    """
    @brief
    Merge binding updates into an existing list.

    @details
    An update replaces the existing binding with the same mention (compared
    case-insensitively after trimming) in place; new mentions are appended.
    Updates with an empty mention are ignored.
    """
    merged = list(existing)
    for update in updates:
        key = update.mention.strip().lower()
        if not key:
            continue
        index = next(
            (i for i, b in enumerate(merged) if b.mention.strip().lower() == key),
            None,
        )
        if index is None:
            merged.append(update)
        else:
            merged[index] = update
    return merged


def apply_entity_bindings_to_text(text: str, bindings: Iterable[EntityBinding]) -> str:
    """
    @brief
    Rewrite bound mentions in text to id references.

    @details
    Replacement is whole-word and case-insensitive; bindings are applied in
    order, so earlier bindings win over later overlapping ones.
    """
    out = text
    for binding in bindings:
        mention = binding.mention.strip()
        if not mention:
            continue
        reference = Bound(binding.entity_id, binding.entity_type).as_reference()
        pattern = re.compile(rf"\b{re.escape(mention)}\b", re.IGNORECASE)
        out = pattern.sub(lambda _m, ref=reference: ref, out)
    return out


__all__ = [
    "Bound",
    "EntityBinding",
    "EntityType",
    "Mention",
    "Unbound",
    "apply_entity_bindings_to_text",
    "bind_mention",
    "get_entity_bindings",
    "merge_entity_bindings",
]
