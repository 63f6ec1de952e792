from therasched.rules.bindings import (
    Bound,
    EntityBinding,
    Mention,
    Unbound,
    apply_entity_bindings_to_text,
    bind_mention,
    get_entity_bindings,
    merge_entity_bindings,
)
from therasched.rules.review import (
    ReviewCandidate,
    ReviewIssue,
    RuleReviewResult,
    resolve_rules_for_proposer,
    review_rule,
    review_rules,
)

__all__ = [
    "Bound",
    "EntityBinding",
    "Mention",
    "ReviewCandidate",
    "ReviewIssue",
    "RuleReviewResult",
    "Unbound",
    "apply_entity_bindings_to_text",
    "bind_mention",
    "get_entity_bindings",
    "merge_entity_bindings",
    "resolve_rules_for_proposer",
    "review_rule",
    "review_rules",
]
