# src/therasched/rules/review.py
from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from therasched.errors import RuleReviewRequiredError
from therasched.rules.bindings import (
    Bound,
    EntityBinding,
    EntityType,
    apply_entity_bindings_to_text,
    bind_mention,
    get_entity_bindings,
)
from therasched.schemas.models import PatientForScheduling, RuleForScheduling, StaffForScheduling

logger = logging.getLogger(__name__)

IssueType = Literal["ambiguous_entity_reference", "duplicate_full_name"]

# nested rule_logic is scanned only this deep
_SCAN_DEPTH = 4


@dataclass(frozen=True)
class ReviewCandidate:
    entity_type: EntityType
    id: str
    name: str


@dataclass(frozen=True)
class ReviewIssue:
    type: IssueType
    mention: str
    candidates: tuple[ReviewCandidate, ...]
    detail: str


@dataclass
class RuleReviewResult:
    rule_id: str
    status: Literal["ok", "needs_review"]
    issues: list[ReviewIssue] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.status == "needs_review"


# ----------------------------
# AUXILIARY FUNCTIONS
# ----------------------------
def _normalize(text: str) -> str:
    return text.lower().strip()


def _first_name(full_name: str) -> str | None:
    parts = _normalize(full_name).split()
    return parts[0] if parts else None


def _contains_phrase(haystack: str, phrase: str) -> bool:
    if not phrase:
        return False
    return re.search(rf"\b{re.escape(phrase)}\b", haystack, re.IGNORECASE) is not None


def _collect_strings(value: Any, out: list[str], depth: int) -> None:
    if depth <= 0:
        return
    if isinstance(value, str):
        out.append(value)
    elif isinstance(value, list):
        for item in value:
            _collect_strings(item, out, depth - 1)
    elif isinstance(value, Mapping):
        for item in value.values():
            _collect_strings(item, out, depth - 1)


class _CandidateIndex:
    """Staff and patients bucketed by normalized full name and first name."""

    def __init__(
        self, staff: Iterable[StaffForScheduling], patients: Iterable[PatientForScheduling]
    ) -> None:
        self.by_full_name: dict[str, list[ReviewCandidate]] = defaultdict(list)
        self.by_first_name: dict[str, list[ReviewCandidate]] = defaultdict(list)
        self.staff_ids: set[str] = set()
        self.patient_ids: set[str] = set()

        for s in staff:
            self._add(ReviewCandidate("staff", s.id, s.name))
            self.staff_ids.add(s.id)
        for p in patients:
            self._add(ReviewCandidate("patient", p.id, p.name))
            self.patient_ids.add(p.id)

    def _add(self, candidate: ReviewCandidate) -> None:
        full = _normalize(candidate.name)
        if not full:
            return
        self.by_full_name[full].append(candidate)
        first = _first_name(candidate.name)
        if first:
            self.by_first_name[first].append(candidate)

    def exists(self, binding: Bound) -> bool:
        ids = self.staff_ids if binding.entity_type == "staff" else self.patient_ids
        return binding.entity_id in ids


# ----------------------------
# REVIEW
# ----------------------------
def review_rule(
    rule: RuleForScheduling,
    staff: Iterable[StaffForScheduling],
    patients: Iterable[PatientForScheduling],
) -> RuleReviewResult:
    """
    @brief
    Flag name mentions in a rule that do not identify exactly one entity.

    @details
    Scans the description and string values of rule_logic. Reports:
        - duplicate_full_name: a mentioned full name shared by several entities
        - ambiguous_entity_reference: a first-name token shared by several
          entities, unless it is bound or part of an unambiguous full name
    Bindings pointing to unknown entities are ignored.

    @returns
        RuleReviewResult with status "ok" or "needs_review".
    """
    index = _CandidateIndex(staff, patients)

    # (1) Text to scan
    texts = [rule.description]
    _collect_strings(rule.rule_logic, texts, _SCAN_DEPTH)
    haystack = _normalize(" ".join(texts))

    # (2) Mentions already bound to an existing entity
    bindings = get_entity_bindings(rule.rule_logic)
    bound_mentions: set[str] = set()
    resolved_first_names: set[str] = set()
    for binding in bindings:
        state = bind_mention(binding.mention, [binding])
        if not isinstance(state, Bound) or not index.exists(state):
            continue
        mention = _normalize(binding.mention)
        bound_mentions.add(mention)
        first = _first_name(mention)
        if first:
            resolved_first_names.add(first)

    # (3) Unambiguous full names resolve their first-name token
    for full_name, candidates in index.by_full_name.items():
        if len(candidates) == 1 and _contains_phrase(haystack, full_name):
            first = _first_name(candidates[0].name)
            if first:
                resolved_first_names.add(first)

    issues: list[ReviewIssue] = []

    # (4) Duplicate full names
    for full_name, candidates in index.by_full_name.items():
        if len(candidates) <= 1 or full_name in bound_mentions:
            continue
        if not _contains_phrase(haystack, full_name):
            continue
        issues.append(
            ReviewIssue(
                type="duplicate_full_name",
                mention=full_name,
                candidates=tuple(candidates),
                detail=f'The name "{full_name}" matches multiple entities.',
            )
        )

    # (5) Ambiguous first-name tokens
    tokens = dict.fromkeys(t for t in re.split(r"[^a-z0-9]+", haystack) if t)
    for token in tokens:
        if token in resolved_first_names or token in bound_mentions:
            continue
        candidates = index.by_first_name.get(token, [])
        if len(candidates) <= 1:
            continue
        issues.append(
            ReviewIssue(
                type="ambiguous_entity_reference",
                mention=token,
                candidates=tuple(candidates),
                detail=f'The mention "{token}" matches multiple entities.',
            )
        )

    return RuleReviewResult(
        rule_id=rule.id,
        status="needs_review" if issues else "ok",
        issues=issues,
    )


def review_rules(
    rules: Iterable[RuleForScheduling],
    staff: list[StaffForScheduling],
    patients: list[PatientForScheduling],
) -> list[RuleReviewResult]:
    return [review_rule(rule, staff, patients) for rule in rules]


def resolve_rules_for_proposer(
    rules: Iterable[RuleForScheduling],
    staff: list[StaffForScheduling],
    patients: list[PatientForScheduling],
) -> list[RuleForScheduling]:
    """
    @brief
    Gate rule text before it is sent to the proposer.

    @details
    Every active rule is reviewed. If any rule needs review, nothing is
    returned and RuleReviewRequiredError carries the flagged results.
    Otherwise each rule is returned with its bound mentions rewritten to
    id references.

    @raises
        RuleReviewRequiredError
            If at least one active rule has an unresolved ambiguous mention.
    """
    active = [r for r in rules if r.is_active]
    results = review_rules(active, staff, patients)

    flagged = [r for r in results if r.needs_review]
    if flagged:
        logger.warning(
            "%d rule(s) need review before generation: %s",
            len(flagged),
            ", ".join(r.rule_id for r in flagged),
        )
        raise RuleReviewRequiredError(flagged, source="rules.resolve_rules_for_proposer")

    resolved: list[RuleForScheduling] = []
    for rule in active:
        bindings: list[EntityBinding] = get_entity_bindings(rule.rule_logic)
        if not bindings:
            resolved.append(rule)
            continue
        resolved.append(
            rule.model_copy(
                update={"description": apply_entity_bindings_to_text(rule.description, bindings)}
            )
        )
    return resolved


__all__ = [
    "ReviewCandidate",
    "ReviewIssue",
    "RuleReviewResult",
    "resolve_rules_for_proposer",
    "review_rule",
    "review_rules",
]
