"""
RuleMatcher -- selects the workflow for a submission.

Responsibility:
    Loads the active rules of (organization, entity type) whose workflow
    is active, lets the pure matching engine pick the winner, and
    resolves it to the workflow with its step definitions.

Architecture position:
    Kernel > Services (read-only; no flush).

Failure modes:
    - NoMatchingRuleError when no candidate matches.
    - WorkflowMisconfiguredError when the winning rule's workflow has no
      active step definitions.
"""

from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_engines.matching import select_matching_rule
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    RulePriorityOrder,
    WorkflowRule,
)
from approval_kernel.exceptions import (
    NoMatchingRuleError,
    WorkflowMisconfiguredError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import ApprovalRuleModel, ApprovalWorkflowModel

logger = get_logger("services.rule_matcher")


class RuleMatcher:
    """Rule Matcher over persisted rules and workflows."""

    def __init__(
        self,
        session: Session,
        priority_order: RulePriorityOrder = RulePriorityOrder.LOWER_FIRST,
    ):
        self.session = session
        self._priority_order = priority_order

    def candidate_rules(self, organization_id: str, entity_type: str) -> list[WorkflowRule]:
        rows = self.session.execute(
            select(ApprovalRuleModel)
            .join(
                ApprovalWorkflowModel,
                ApprovalWorkflowModel.id == ApprovalRuleModel.workflow_id,
            )
            .where(
                ApprovalRuleModel.organization_id == organization_id,
                ApprovalRuleModel.entity_type == entity_type,
                ApprovalRuleModel.is_active.is_(True),
                ApprovalWorkflowModel.organization_id == organization_id,
                ApprovalWorkflowModel.is_active.is_(True),
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def match_rule(
        self,
        organization_id: str,
        entity_type: str,
        entity_data: Mapping[str, Any],
    ) -> WorkflowRule:
        candidates = self.candidate_rules(organization_id, entity_type)
        rule = select_matching_rule(
            rules=candidates,
            entity_type=entity_type,
            entity_data=entity_data,
            order=self._priority_order,
        )
        if rule is None:
            logger.info(
                "approval_rule_not_matched",
                extra={
                    "organization_id": organization_id,
                    "entity_type": entity_type,
                    "candidate_count": len(candidates),
                },
            )
            raise NoMatchingRuleError(organization_id, entity_type)
        return rule

    def match(
        self,
        organization_id: str,
        entity_type: str,
        entity_data: Mapping[str, Any],
    ) -> tuple[WorkflowRule, ApprovalWorkflow]:
        """Winning rule and its workflow (with step definitions)."""
        rule = self.match_rule(organization_id, entity_type, entity_data)

        workflow_row = self.session.execute(
            select(ApprovalWorkflowModel).where(
                ApprovalWorkflowModel.id == rule.workflow_id,
                ApprovalWorkflowModel.organization_id == organization_id,
            )
        ).scalar_one()
        workflow = workflow_row.to_dto()

        if not workflow.active_steps:
            raise WorkflowMisconfiguredError(
                str(workflow.id), "workflow has no active steps"
            )

        logger.info(
            "approval_rule_matched",
            extra={
                "organization_id": organization_id,
                "entity_type": entity_type,
                "rule_id": str(rule.id),
                "rule_priority": rule.priority,
                "workflow_id": str(workflow.id),
            },
        )
        return rule, workflow
