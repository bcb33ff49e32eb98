"""
Configuration Validator (``approval_config.validator``).

Responsibility
--------------
Validates a ``WorkflowPackSource`` before it is compiled, so that a pack
that would fail half-way through installation is rejected as a whole.

Architecture position
---------------------
**Config layer** -- build-time validation.  Reuses the kernel's own write
checks (``validate_step_definitions``, ``parse_conditions``) so the pack
and the services agree on what is well formed.

Invariants enforced
-------------------
* Settings use known ``rule_priority_order`` / ``default_rejection_policy``
  values.
* Workflow keys are unique and every step definition is well formed.
* Every rule references a declared workflow of the same entity type,
  uses a known logic, an integer priority and parseable conditions.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``) -> the pack MUST
  NOT be compiled.
* Warnings (rules without conditions, workflows without active steps or
  without rules) -> the pack may be compiled but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from approval_config.schema import WorkflowDef, WorkflowPackSource
from approval_kernel.domain.conditions import RuleLogic, parse_conditions
from approval_kernel.domain.workflow import (
    RejectionPolicy,
    RulePriorityOrder,
    StepDefinition,
)
from approval_kernel.exceptions import (
    InvalidConditionError,
    InvalidWorkflowDefinitionError,
)
from approval_kernel.services.workflow_service import validate_step_definitions


@dataclass
class ConfigValidationResult:
    """
    Result of pack validation.

    ``is_valid`` is True only when ``errors`` is empty.  Warnings do not
    block compilation.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def step_definitions(workflow: WorkflowDef) -> tuple[StepDefinition, ...]:
    """Authored steps as (unvalidated) kernel step definitions."""
    return tuple(
        StepDefinition(
            step_order=s.step_order,
            step_type=s.step_type,
            approver_type=s.approver_type,
            approver_ref=s.approver_ref,
            min_approvals=s.min_approvals,
            rejection_policy=s.rejection_policy,
            is_active=s.is_active,
        )
        for s in workflow.steps
    )


def validate_pack(pack: WorkflowPackSource) -> ConfigValidationResult:
    """Validate a loaded pack; never raises for content problems."""
    result = ConfigValidationResult()

    _validate_settings(pack, result)
    workflows = _validate_workflows(pack, result)
    _validate_rules(pack, workflows, result)

    return result


def _validate_settings(pack: WorkflowPackSource, result: ConfigValidationResult) -> None:
    try:
        RulePriorityOrder(pack.settings.rule_priority_order)
    except ValueError:
        result.add_error(
            f"settings: unknown rule_priority_order '{pack.settings.rule_priority_order}'"
        )
    try:
        RejectionPolicy(pack.settings.default_rejection_policy)
    except ValueError:
        result.add_error(
            "settings: unknown default_rejection_policy "
            f"'{pack.settings.default_rejection_policy}'"
        )


def _validate_workflows(
    pack: WorkflowPackSource,
    result: ConfigValidationResult,
) -> dict[str, WorkflowDef]:
    by_key: dict[str, WorkflowDef] = {}
    for workflow in pack.workflows:
        label = f"workflow '{workflow.key}'"
        if workflow.key in by_key:
            result.add_error(f"{label}: duplicate workflow key")
            continue
        by_key[workflow.key] = workflow

        if not str(workflow.name).strip():
            result.add_error(f"{label}: name is required")
        if not str(workflow.entity_type).strip():
            result.add_error(f"{label}: entity_type is required")

        timeout = workflow.policy.timeout_hours
        if timeout is not None and (
            isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 1
        ):
            result.add_error(f"{label}: policy.timeout_hours must be a positive integer")

        try:
            definitions = validate_step_definitions(workflow.name, step_definitions(workflow))
        except InvalidWorkflowDefinitionError as exc:
            result.add_error(f"{label}: {exc.reason}")
            continue
        if not any(d.is_active for d in definitions):
            result.add_warning(f"{label}: no active steps; submissions will fail")

    referenced = {rule.workflow for rule in pack.rules}
    for key in by_key:
        if key not in referenced:
            result.add_warning(f"workflow '{key}': no rule selects this workflow")
    return by_key


def _validate_rules(
    pack: WorkflowPackSource,
    workflows: dict[str, WorkflowDef],
    result: ConfigValidationResult,
) -> None:
    for rule in pack.rules:
        label = f"rule '{rule.name}'"
        workflow = workflows.get(rule.workflow)
        if workflow is None:
            result.add_error(f"{label}: unknown workflow '{rule.workflow}'")
        elif workflow.entity_type != rule.entity_type:
            result.add_error(
                f"{label}: entity_type '{rule.entity_type}' does not match "
                f"workflow entity_type '{workflow.entity_type}'"
            )

        if isinstance(rule.priority, bool) or not isinstance(rule.priority, int):
            result.add_error(f"{label}: priority must be an integer")
        try:
            RuleLogic(rule.logic)
        except ValueError:
            result.add_error(f"{label}: unknown logic '{rule.logic}'")

        try:
            parse_conditions(list(rule.conditions))
        except InvalidConditionError as exc:
            result.add_error(f"{label}: {exc.reason}")
        if not rule.conditions:
            result.add_warning(f"{label}: no conditions; the rule never matches")
