"""
Configuration Compiler -- WorkflowPackSource -> CompiledWorkflowPack.

The compiler validates the source pack and produces a frozen runtime
artifact in kernel types: step definitions, parsed conditions, enum
settings.  ``install_pack`` and ``ApprovalWorkflowEngine`` only accept
the compiled form.

Compilation refuses any pack whose validation reports errors; the
checksum of the compiled pack is the checksum of its source.
"""

from __future__ import annotations

from dataclasses import dataclass

from approval_config.schema import RuleDef, WorkflowDef, WorkflowPackSource
from approval_config.validator import step_definitions, validate_pack
from approval_kernel.domain.conditions import Condition, RuleLogic, parse_conditions
from approval_kernel.domain.workflow import (
    RejectionPolicy,
    RulePriorityOrder,
    StepDefinition,
    WorkflowPolicy,
)
from approval_kernel.exceptions import ConfigurationError
from approval_kernel.services.workflow_service import validate_step_definitions


@dataclass(frozen=True)
class CompiledWorkflow:
    key: str
    name: str
    entity_type: str
    steps: tuple[StepDefinition, ...]
    policy: WorkflowPolicy
    is_active: bool = True
    description: str | None = None


@dataclass(frozen=True)
class CompiledRule:
    name: str
    entity_type: str
    workflow_key: str
    conditions: tuple[Condition, ...]
    priority: int
    logic: RuleLogic
    is_active: bool = True


@dataclass(frozen=True)
class CompiledWorkflowPack:
    """Machine-validated, frozen runtime artifact.

    Attributes:
        checksum: SHA-256 of the source pack.
        rule_priority_order: Direction in which rule priorities compete.
        default_rejection_policy: Applied to steps that set none.
        workflows: Compiled workflows, in authored order.
        rules: Compiled rules, in authored order.
        source_path: File or directory the pack was loaded from.
    """

    checksum: str
    rule_priority_order: RulePriorityOrder
    default_rejection_policy: RejectionPolicy
    workflows: tuple[CompiledWorkflow, ...]
    rules: tuple[CompiledRule, ...]
    source_path: str = ""

    def workflow(self, key: str) -> CompiledWorkflow:
        for workflow in self.workflows:
            if workflow.key == key:
                return workflow
        raise KeyError(key)


def _compile_workflow(workflow: WorkflowDef) -> CompiledWorkflow:
    return CompiledWorkflow(
        key=workflow.key,
        name=workflow.name,
        entity_type=workflow.entity_type,
        steps=validate_step_definitions(workflow.name, step_definitions(workflow)),
        policy=WorkflowPolicy(
            require_comments=workflow.policy.require_comments,
            allow_delegation=workflow.policy.allow_delegation,
            timeout_hours=workflow.policy.timeout_hours,
            escalation_user_ids=workflow.policy.escalation_user_ids,
        ),
        is_active=workflow.is_active,
        description=workflow.description,
    )


def _compile_rule(rule: RuleDef) -> CompiledRule:
    return CompiledRule(
        name=rule.name,
        entity_type=rule.entity_type,
        workflow_key=rule.workflow,
        conditions=parse_conditions(list(rule.conditions)),
        priority=rule.priority,
        logic=RuleLogic(rule.logic),
        is_active=rule.is_active,
    )


def compile_pack(source: WorkflowPackSource) -> CompiledWorkflowPack:
    """Validate and compile a source pack.

    Raises:
        ConfigurationError: validation reported at least one error.
    """
    validation = validate_pack(source)
    if not validation.is_valid:
        raise ConfigurationError(validation.errors)

    return CompiledWorkflowPack(
        checksum=source.checksum,
        rule_priority_order=RulePriorityOrder(source.settings.rule_priority_order),
        default_rejection_policy=RejectionPolicy(source.settings.default_rejection_policy),
        workflows=tuple(_compile_workflow(w) for w in source.workflows),
        rules=tuple(_compile_rule(r) for r in source.rules),
        source_path=source.source_path,
    )
