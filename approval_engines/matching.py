"""
approval_engines.matching -- Pure rule selection.

Responsibility:
    Order candidate rules with an explicit priority comparator and pick
    the first whose condition set matches the entity data.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Deterministic total order: ``rule_sort_key`` orders by priority in
      the configured direction, then by creation sequence, then by rule
      id.  No two distinct rules compare equal, so the same rules and the
      same entity data always select the same rule.
    - Inactive rules and rules for another entity type never match.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from approval_engines.conditions import evaluate_rule_conditions
from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import RulePriorityOrder, WorkflowRule


def rule_sort_key(
    rule: WorkflowRule,
    order: RulePriorityOrder = RulePriorityOrder.LOWER_FIRST,
) -> tuple[int, int, str]:
    """Sort key implementing the rule priority comparator.

    ``LOWER_FIRST``: priority 1 is evaluated before priority 10.
    ``HIGHER_FIRST``: priority 10 is evaluated before priority 1.
    Ties in either direction fall back to the earlier-created rule.
    """
    priority = rule.priority
    if RulePriorityOrder(order) is RulePriorityOrder.HIGHER_FIRST:
        priority = -priority
    return (priority, rule.created_seq, str(rule.id))


def rank_rules(
    rules: Iterable[WorkflowRule],
    order: RulePriorityOrder = RulePriorityOrder.LOWER_FIRST,
) -> list[WorkflowRule]:
    """Candidates in evaluation order."""
    return sorted(rules, key=lambda r: rule_sort_key(r, order))


@traced_engine("rule_matcher", "1.0", fingerprint_fields=("entity_type", "entity_data"))
def select_matching_rule(
    *,
    rules: Iterable[WorkflowRule],
    entity_type: str,
    entity_data: Mapping[str, Any],
    order: RulePriorityOrder = RulePriorityOrder.LOWER_FIRST,
) -> WorkflowRule | None:
    """Select the winning rule, or None when no candidate matches."""
    candidates = [r for r in rules if r.is_active and r.entity_type == entity_type]
    for rule in rank_rules(candidates, order):
        if evaluate_rule_conditions(rule.conditions, rule.logic, entity_data):
            return rule
    return None
