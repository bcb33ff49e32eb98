"""
WorkflowService -- administration of workflows and rules.

Responsibility:
    Create, update, activate/deactivate and delete workflow definitions
    and the rules that select them.  Validates step definitions and rule
    conditions on write so that the submission path only ever sees
    well-formed definitions.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Step orders are positive and unique within a workflow.
    - ``min_approvals`` is unset or >= 1; ``single`` steps have a quorum of 1.
    - Every approver reference is a non-empty string.
    - Rule conditions parse into the closed condition variants and are
      stored in canonical dict form.
    - Rules get a creation sequence (``created_seq``) for priority ties.
    - A workflow referenced by rules or requests cannot be deleted.

Failure modes:
    - InvalidWorkflowDefinitionError on malformed definitions.
    - InvalidConditionError on malformed rule conditions.
    - WorkflowNotFoundError / WorkflowRuleNotFoundError on unknown ids
      (including ids owned by another organization).
    - WorkflowInUseError on delete of a referenced workflow.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_kernel.domain.conditions import (
    Condition,
    RuleLogic,
    condition_to_dict,
    parse_condition,
)
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    ApproverType,
    RejectionPolicy,
    StepDefinition,
    StepType,
    WorkflowPolicy,
    WorkflowRule,
)
from approval_kernel.exceptions import (
    InvalidWorkflowDefinitionError,
    WorkflowInUseError,
    WorkflowNotFoundError,
    WorkflowRuleNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.models.workflow import (
    ApprovalRuleModel,
    ApprovalWorkflowModel,
    ApprovalWorkflowStepModel,
)
from approval_kernel.services.auditor_service import AuditTrail
from approval_kernel.services.base import BaseService
from approval_kernel.services.sequence_service import SequenceService

logger = get_logger("services.workflow")


def validate_step_definitions(
    workflow_name: str,
    steps: Sequence[StepDefinition],
) -> tuple[StepDefinition, ...]:
    """Check structural rules and coerce enum fields.

    Returns the definitions sorted by ``step_order``.
    """
    normalized: list[StepDefinition] = []
    seen_orders: set[int] = set()

    for step in steps:
        def fail(reason: str) -> InvalidWorkflowDefinitionError:
            return InvalidWorkflowDefinitionError(
                workflow_name, f"step {step.step_order}: {reason}"
            )

        if isinstance(step.step_order, bool) or not isinstance(step.step_order, int):
            raise fail("step_order must be an integer")
        if step.step_order < 1:
            raise fail("step_order must be 1 or greater")
        if step.step_order in seen_orders:
            raise fail("duplicate step_order")
        seen_orders.add(step.step_order)

        try:
            step_type = StepType(step.step_type)
            approver_type = ApproverType(step.approver_type)
            rejection_policy = (
                RejectionPolicy(step.rejection_policy)
                if step.rejection_policy is not None
                else None
            )
        except ValueError as exc:
            raise fail(str(exc)) from None

        if not isinstance(step.approver_ref, str) or not step.approver_ref.strip():
            raise fail("approver_ref must be a non-empty string")

        if step.min_approvals is not None:
            if isinstance(step.min_approvals, bool) or not isinstance(step.min_approvals, int):
                raise fail("min_approvals must be an integer")
            if step.min_approvals < 1:
                raise fail("min_approvals must be at least 1")
            if step_type is StepType.SINGLE and step.min_approvals != 1:
                raise fail("single steps require min_approvals of 1")
            if approver_type is ApproverType.USER and step.min_approvals > 1:
                raise fail("a user approver cannot satisfy a quorum above 1")

        normalized.append(
            StepDefinition(
                step_order=step.step_order,
                step_type=step_type,
                approver_type=approver_type,
                approver_ref=step.approver_ref.strip(),
                min_approvals=step.min_approvals,
                rejection_policy=rejection_policy,
                is_active=bool(step.is_active),
            )
        )

    return tuple(sorted(normalized, key=lambda s: s.step_order))


def normalize_conditions(
    conditions: Sequence[Condition | dict[str, Any]],
) -> list[dict[str, Any]]:
    """Parse (when given dicts) and serialize conditions to stored form."""
    stored: list[dict[str, Any]] = []
    for condition in conditions:
        if isinstance(condition, dict):
            condition = parse_condition(condition)
        stored.append(condition_to_dict(condition))
    return stored


class WorkflowService(BaseService[ApprovalWorkflowModel]):
    """Workflow and rule administration for one organization at a time."""

    def __init__(self, session: Session, auditor: AuditTrail):
        super().__init__(session)
        self._auditor = auditor
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_workflow(self, organization_id: str, workflow_id: UUID) -> ApprovalWorkflowModel:
        row = self.session.execute(
            select(ApprovalWorkflowModel).where(
                ApprovalWorkflowModel.id == workflow_id,
                ApprovalWorkflowModel.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return row

    def _load_rule(self, organization_id: str, rule_id: UUID) -> ApprovalRuleModel:
        row = self.session.execute(
            select(ApprovalRuleModel).where(
                ApprovalRuleModel.id == rule_id,
                ApprovalRuleModel.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise WorkflowRuleNotFoundError(str(rule_id))
        return row

    @staticmethod
    def _step_rows(steps: Sequence[StepDefinition], actor_id: str) -> list[ApprovalWorkflowStepModel]:
        return [
            ApprovalWorkflowStepModel(
                step_order=s.step_order,
                step_type=s.step_type.value,
                approver_type=s.approver_type.value,
                approver_ref=s.approver_ref,
                min_approvals=s.min_approvals,
                rejection_policy=s.rejection_policy.value if s.rejection_policy else None,
                is_active=s.is_active,
                created_by=actor_id,
            )
            for s in steps
        ]

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def create_workflow(
        self,
        organization_id: str,
        name: str,
        entity_type: str,
        steps: Sequence[StepDefinition],
        actor_id: str,
        policy: WorkflowPolicy | None = None,
        description: str | None = None,
        is_active: bool = True,
    ) -> ApprovalWorkflow:
        """Create a workflow with its step definitions."""
        if not name or not name.strip():
            raise InvalidWorkflowDefinitionError(str(name), "name is required")
        if not entity_type or not entity_type.strip():
            raise InvalidWorkflowDefinitionError(name, "entity_type is required")
        definitions = validate_step_definitions(name, steps)
        policy = policy or WorkflowPolicy()

        row = ApprovalWorkflowModel(
            organization_id=organization_id,
            name=name.strip(),
            description=description,
            entity_type=entity_type,
            is_active=is_active,
            policy=policy.to_dict(),
            created_by=actor_id,
        )
        row.steps = self._step_rows(definitions, actor_id)
        self.session.add(row)
        self.session.flush()

        self._auditor.record(
            "ApprovalWorkflow",
            row.id,
            AuditAction.WORKFLOW_CREATED,
            actor_id,
            {
                "organization_id": organization_id,
                "name": row.name,
                "entity_type": entity_type,
                "step_count": len(definitions),
            },
        )
        if not definitions:
            logger.warning(
                "workflow_created_without_steps",
                extra={"workflow_id": str(row.id), "organization_id": organization_id},
            )
        logger.info(
            "workflow_created",
            extra={
                "workflow_id": str(row.id),
                "organization_id": organization_id,
                "entity_type": entity_type,
                "step_count": len(definitions),
            },
        )
        return row.to_dto()

    def update_workflow(
        self,
        organization_id: str,
        workflow_id: UUID,
        actor_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        policy: WorkflowPolicy | None = None,
        steps: Sequence[StepDefinition] | None = None,
    ) -> ApprovalWorkflow:
        """Rename, change policy, or replace the step definitions.

        Requests already submitted keep the step rows they were planned
        with; only new submissions see replaced definitions.
        """
        row = self._load_workflow(organization_id, workflow_id)
        changed: list[str] = []

        if name is not None:
            if not name.strip():
                raise InvalidWorkflowDefinitionError(row.name, "name is required")
            row.name = name.strip()
            changed.append("name")
        if description is not None:
            row.description = description
            changed.append("description")
        if policy is not None:
            row.policy = policy.to_dict()
            changed.append("policy")
        if steps is not None:
            definitions = validate_step_definitions(row.name, steps)
            # Old rows go first so (workflow_id, step_order) stays unique.
            row.steps.clear()
            self.session.flush()
            row.steps.extend(self._step_rows(definitions, actor_id))
            changed.append("steps")

        row.updated_by = actor_id
        self.session.flush()

        self._auditor.record(
            "ApprovalWorkflow",
            row.id,
            AuditAction.WORKFLOW_UPDATED,
            actor_id,
            {"changed": changed},
        )
        logger.info(
            "workflow_updated",
            extra={"workflow_id": str(row.id), "changed": changed},
        )
        return row.to_dto()

    def set_workflow_active(
        self,
        organization_id: str,
        workflow_id: UUID,
        is_active: bool,
        actor_id: str,
    ) -> ApprovalWorkflow:
        """Activate or deactivate a workflow."""
        row = self._load_workflow(organization_id, workflow_id)
        if row.is_active != is_active:
            row.is_active = is_active
            row.updated_by = actor_id
            self.session.flush()
            self._auditor.record(
                "ApprovalWorkflow",
                row.id,
                AuditAction.WORKFLOW_ACTIVATED if is_active else AuditAction.WORKFLOW_DEACTIVATED,
                actor_id,
                {},
            )
            logger.info(
                "workflow_activation_changed",
                extra={"workflow_id": str(row.id), "is_active": is_active},
            )
        return row.to_dto()

    def delete_workflow(
        self,
        organization_id: str,
        workflow_id: UUID,
        actor_id: str,
    ) -> None:
        """Delete an unreferenced workflow and its step definitions."""
        row = self._load_workflow(organization_id, workflow_id)

        rule_count = self.session.execute(
            select(func.count()).select_from(ApprovalRuleModel).where(
                ApprovalRuleModel.workflow_id == row.id
            )
        ).scalar_one()
        request_count = self.session.execute(
            select(func.count()).select_from(ApprovalRequestModel).where(
                ApprovalRequestModel.workflow_id == row.id
            )
        ).scalar_one()
        if rule_count or request_count:
            raise WorkflowInUseError(str(row.id), rule_count, request_count)

        self.session.delete(row)
        self.session.flush()
        self._auditor.record(
            "ApprovalWorkflow",
            workflow_id,
            AuditAction.WORKFLOW_DELETED,
            actor_id,
            {"name": row.name},
        )
        logger.info("workflow_deleted", extra={"workflow_id": str(workflow_id)})

    def get_workflow(self, organization_id: str, workflow_id: UUID) -> ApprovalWorkflow:
        return self._load_workflow(organization_id, workflow_id).to_dto()

    def list_workflows(
        self,
        organization_id: str,
        is_active: bool | None = None,
        entity_type: str | None = None,
    ) -> list[ApprovalWorkflow]:
        query = select(ApprovalWorkflowModel).where(
            ApprovalWorkflowModel.organization_id == organization_id
        )
        if is_active is not None:
            query = query.where(ApprovalWorkflowModel.is_active.is_(is_active))
        if entity_type is not None:
            query = query.where(ApprovalWorkflowModel.entity_type == entity_type)
        rows = self.session.execute(
            query.order_by(ApprovalWorkflowModel.name, ApprovalWorkflowModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rule(
        self,
        organization_id: str,
        name: str,
        entity_type: str,
        workflow_id: UUID,
        conditions: Sequence[Condition | dict[str, Any]],
        actor_id: str,
        priority: int = 0,
        logic: RuleLogic | str = RuleLogic.AND,
        is_active: bool = True,
    ) -> WorkflowRule:
        """Create a rule selecting ``workflow_id`` for ``entity_type``."""
        if not name or not name.strip():
            raise InvalidWorkflowDefinitionError(str(name), "rule name is required")
        if not entity_type or not entity_type.strip():
            raise InvalidWorkflowDefinitionError(name, "rule entity_type is required")
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise InvalidWorkflowDefinitionError(name, "rule priority must be an integer")
        try:
            logic = RuleLogic(logic)
        except ValueError:
            raise InvalidWorkflowDefinitionError(name, f"unknown rule logic '{logic}'") from None

        workflow = self._load_workflow(organization_id, workflow_id)
        if workflow.entity_type != entity_type:
            raise InvalidWorkflowDefinitionError(
                name,
                f"rule entity_type '{entity_type}' does not match workflow "
                f"entity_type '{workflow.entity_type}'",
            )
        stored = normalize_conditions(conditions)

        row = ApprovalRuleModel(
            organization_id=organization_id,
            name=name.strip(),
            entity_type=entity_type,
            priority=priority,
            conditions=stored,
            logic=logic.value,
            workflow_id=workflow.id,
            is_active=is_active,
            created_seq=self._sequences.next_value(SequenceService.APPROVAL_RULE),
            created_by=actor_id,
        )
        self.session.add(row)
        self.session.flush()

        self._auditor.record(
            "ApprovalRule",
            row.id,
            AuditAction.RULE_CREATED,
            actor_id,
            {
                "organization_id": organization_id,
                "name": row.name,
                "entity_type": entity_type,
                "workflow_id": str(workflow.id),
                "priority": priority,
                "logic": logic.value,
                "conditions": stored,
            },
        )
        if not stored:
            logger.warning(
                "rule_created_without_conditions",
                extra={"rule_id": str(row.id), "organization_id": organization_id},
            )
        logger.info(
            "rule_created",
            extra={
                "rule_id": str(row.id),
                "workflow_id": str(workflow.id),
                "priority": priority,
                "condition_count": len(stored),
            },
        )
        return row.to_dto()

    def set_rule_active(
        self,
        organization_id: str,
        rule_id: UUID,
        is_active: bool,
        actor_id: str,
    ) -> WorkflowRule:
        row = self._load_rule(organization_id, rule_id)
        if row.is_active != is_active:
            row.is_active = is_active
            row.updated_by = actor_id
            self.session.flush()
            self._auditor.record(
                "ApprovalRule",
                row.id,
                AuditAction.RULE_ACTIVATED if is_active else AuditAction.RULE_DEACTIVATED,
                actor_id,
                {},
            )
        return row.to_dto()

    def delete_rule(
        self,
        organization_id: str,
        rule_id: UUID,
        actor_id: str,
    ) -> None:
        row = self._load_rule(organization_id, rule_id)
        name = row.name
        self.session.delete(row)
        self.session.flush()
        self._auditor.record(
            "ApprovalRule",
            rule_id,
            AuditAction.RULE_DELETED,
            actor_id,
            {"name": name},
        )
        logger.info("rule_deleted", extra={"rule_id": str(rule_id)})

    def list_rules(
        self,
        organization_id: str,
        entity_type: str | None = None,
    ) -> list[WorkflowRule]:
        """Rules of an organization, lowest priority value first."""
        query = select(ApprovalRuleModel).where(
            ApprovalRuleModel.organization_id == organization_id
        )
        if entity_type is not None:
            query = query.where(ApprovalRuleModel.entity_type == entity_type)
        rows = self.session.execute(
            query.order_by(ApprovalRuleModel.priority, ApprovalRuleModel.created_seq)
        ).scalars().all()
        return [row.to_dto() for row in rows]
