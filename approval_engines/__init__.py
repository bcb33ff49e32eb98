"""
Module: approval_engines
Responsibility:
    Package entrypoint re-exporting the pure approval engines: condition
    evaluation, rule selection, step planning and completion.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain (and kernel exceptions).
    MUST NOT import approval_services or approval_config.

Invariants enforced:
    - Purity: engines never read the clock or the database.  Callers pass
      everything in.
    - Determinism: identical inputs always produce identical outputs.

Every traced invocation emits an APPROVAL_ENGINE_TRACE log record
(see ``approval_engines.tracer``).
"""

from approval_engines.completion import (
    evaluate_request_outcome,
    evaluate_step_group,
    group_steps,
)
from approval_engines.conditions import (
    evaluate_condition,
    evaluate_rule_conditions,
    resolve_field,
)
from approval_engines.matching import rank_rules, rule_sort_key, select_matching_rule
from approval_engines.planning import (
    dedupe_approvers,
    default_min_approvals,
    first_group_size,
    plan_steps,
)
from approval_engines.tracer import traced_engine

__all__ = [
    "dedupe_approvers",
    "default_min_approvals",
    "evaluate_condition",
    "evaluate_request_outcome",
    "evaluate_rule_conditions",
    "evaluate_step_group",
    "first_group_size",
    "group_steps",
    "plan_steps",
    "rank_rules",
    "resolve_field",
    "rule_sort_key",
    "select_matching_rule",
    "traced_engine",
]
