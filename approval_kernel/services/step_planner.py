"""
WorkflowStepPlanner -- resolves approver pools, then plans step rows.

Responsibility:
    Asks the membership directory for the users behind each ``role`` /
    ``team`` step, then hands the pools to the pure planning engine.

Architecture position:
    Kernel > Services.  The directory is an explicit constructor
    dependency; ``user`` steps never reach it.

Failure modes:
    - WorkflowMisconfiguredError / ApproverResolutionError from the
      planning engine.
"""

from approval_engines.planning import plan_steps
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    ApproverDirectory,
    ApproverType,
    PlannedStep,
    RejectionPolicy,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("services.step_planner")


class WorkflowStepPlanner:
    """Turns a matched workflow into the concrete steps of one request."""

    def __init__(
        self,
        directory: ApproverDirectory,
        default_rejection_policy: RejectionPolicy = RejectionPolicy.IMMEDIATE,
    ):
        self._directory = directory
        self._default_rejection_policy = default_rejection_policy

    def resolve_pools(
        self,
        workflow: ApprovalWorkflow,
        organization_id: str,
    ) -> dict[int, list[str]]:
        pools: dict[int, list[str]] = {}
        for step in workflow.active_steps:
            if step.approver_type is ApproverType.USER:
                pools[step.step_order] = [step.approver_ref]
                continue
            pools[step.step_order] = list(
                self._directory.resolve_approvers(
                    organization_id,
                    step.approver_type,
                    step.approver_ref,
                )
            )
            logger.debug(
                "approvers_resolved",
                extra={
                    "workflow_id": str(workflow.id),
                    "step_order": step.step_order,
                    "approver_type": step.approver_type.value,
                    "approver_ref": step.approver_ref,
                    "approver_count": len(pools[step.step_order]),
                },
            )
        return pools

    def plan(
        self,
        workflow: ApprovalWorkflow,
        organization_id: str,
    ) -> tuple[PlannedStep, ...]:
        """Planned step rows, ``step_order`` ascending."""
        return plan_steps(
            workflow=workflow,
            resolved_approvers=self.resolve_pools(workflow, organization_id),
            default_rejection_policy=self._default_rejection_policy,
        )
