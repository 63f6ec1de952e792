# tests/rules/test_bindings.py
from __future__ import annotations

from therasched.rules import (
    Bound,
    EntityBinding,
    Unbound,
    apply_entity_bindings_to_text,
    bind_mention,
    get_entity_bindings,
    merge_entity_bindings,
)


def mk_binding(mention: str, entity_id: str, entity_type: str = "staff") -> EntityBinding:
    return EntityBinding(mention=mention, entity_type=entity_type, entity_id=entity_id)


def test_get_entity_bindings_reads_camel_case_wire_shape() -> None:
    """
    @brief
    Bindings are stored in rule_logic["entityBindings"] with camelCase keys.
    """
    # --- Arrange ---
    logic = {
        "kind": "soft",
        "entityBindings": [
            {"mention": "Sarah", "entityType": "staff", "entityId": "st1"},
            {"mention": "Tom", "entityType": "patient", "entityId": "p1"},
        ],
    }

    # --- Act ---
    bindings = get_entity_bindings(logic)

    # --- Assert ---
    assert [b.entity_id for b in bindings] == ["st1", "p1"]
    assert bindings[1].to_wire() == {"mention": "Tom", "entityType": "patient", "entityId": "p1"}


def test_get_entity_bindings_tolerates_missing_or_malformed_data() -> None:
    """
    @brief
    Missing keys, non-list values and malformed items yield no bindings.
    """
    # --- Arrange ---
    malformed = {"entityBindings": [{"mention": "Sarah", "entityType": "robot"}]}

    # --- Assert ---
    assert get_entity_bindings(None) == []
    assert get_entity_bindings({}) == []
    assert get_entity_bindings({"entityBindings": "Sarah"}) == []
    assert get_entity_bindings(malformed) == []


def test_bind_mention_is_case_insensitive() -> None:
    """
    @brief
    A mention resolves to Bound when a binding matches after trimming.
    """
    # --- Arrange ---
    bindings = [mk_binding("Sarah", "st1")]

    # --- Act ---
    bound = bind_mention("  sarah ", bindings)
    unbound = bind_mention("Tom", bindings)

    # --- Assert ---
    assert bound == Bound(entity_id="st1", entity_type="staff")
    assert bound.as_reference() == "staffId=st1"
    assert unbound == Unbound(text="Tom")


def test_merge_replaces_in_place_and_appends_new() -> None:
    """
    @brief
    Same mention (case-insensitive) replaces; new mentions append; empty ones are ignored.
    """
    # --- Arrange ---
    existing = [mk_binding("Sarah", "st1"), mk_binding("Tom", "p1", "patient")]
    updates = [mk_binding("SARAH", "st2"), mk_binding("Lee", "st3"), mk_binding("  ", "st9")]

    # --- Act ---
    merged = merge_entity_bindings(existing, updates)

    # --- Assert ---
    assert [(b.mention, b.entity_id) for b in merged] == [
        ("SARAH", "st2"),
        ("Tom", "p1"),
        ("Lee", "st3"),
    ]


def test_apply_bindings_rewrites_whole_words_only() -> None:
    """
    @brief
    Bound names become id references; partial words are left alone.
    """
    # --- Arrange ---
    bindings = [mk_binding("Sarah", "st1"), mk_binding("Tom", "p1", "patient")]
    text = "sarah only works with Tom, not Tommy"

    # --- Act ---
    rewritten = apply_entity_bindings_to_text(text, bindings)

    # --- Assert ---
    assert rewritten == "staffId=st1 only works with patientId=p1, not Tommy"
