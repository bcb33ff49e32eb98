"""
approval_engines.planning -- Pure workflow step planner.

Responsibility:
    Expand a workflow's active step definitions, together with the
    approver pools already resolved for each step, into the concrete
    approval step rows of one request.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Approver resolution
    against the membership directory happens in
    ``approval_kernel.services.step_planner`` before this engine runs.

Invariants enforced:
    - Output is ordered by ``step_order`` ascending, then by the pool's
      resolution order.
    - ``parallel`` / ``any`` steps fan out to one row per distinct
      resolved approver; every row of a group shares ``min_approvals``
      and ``required_approvers`` (= pool size).
    - A ``single`` step resolves to exactly one approver.
    - ``1 <= min_approvals <= required_approvers`` for every group.

Failure modes:
    - WorkflowMisconfiguredError when the workflow has no active steps or
      two active steps share a step order.
    - ApproverResolutionError when a pool is empty, a single step does not
      resolve to exactly one user, or the quorum exceeds the pool.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    PlannedStep,
    RejectionPolicy,
    StepDefinition,
    StepType,
)
from approval_kernel.exceptions import (
    ApproverResolutionError,
    WorkflowMisconfiguredError,
)


def dedupe_approvers(user_ids: Iterable[str]) -> list[str]:
    """Drop blanks and repeats, keeping first-seen order."""
    seen: set[str] = set()
    pool: list[str] = []
    for user_id in user_ids:
        if not user_id or user_id in seen:
            continue
        seen.add(user_id)
        pool.append(user_id)
    return pool


def default_min_approvals(step_type: StepType, pool_size: int) -> int:
    """Quorum used when a step definition leaves ``min_approvals`` unset."""
    if step_type is StepType.PARALLEL:
        return pool_size
    return 1


def _plan_group(
    step: StepDefinition,
    pool: list[str],
    default_rejection_policy: RejectionPolicy,
) -> list[PlannedStep]:
    def fail(reason: str) -> ApproverResolutionError:
        return ApproverResolutionError(
            step.step_order,
            step.approver_type.value,
            step.approver_ref,
            reason,
        )

    if not pool:
        raise fail("resolved to zero approvers")

    if step.step_type is StepType.SINGLE:
        if len(pool) != 1:
            raise fail(
                f"single step must resolve to exactly one approver (got {len(pool)})"
            )
        if step.min_approvals not in (None, 1):
            raise fail("single step requires min_approvals of 1")

    min_approvals = step.min_approvals
    if min_approvals is None:
        min_approvals = default_min_approvals(step.step_type, len(pool))
    if min_approvals < 1:
        raise fail("min_approvals must be at least 1")
    if min_approvals > len(pool):
        raise fail(
            f"min_approvals {min_approvals} exceeds the {len(pool)} resolved approver(s)"
        )

    rejection_policy = step.rejection_policy or default_rejection_policy
    return [
        PlannedStep(
            step_order=step.step_order,
            step_type=step.step_type,
            approver_id=user_id,
            min_approvals=min_approvals,
            required_approvers=len(pool),
            rejection_policy=rejection_policy,
        )
        for user_id in pool
    ]


@traced_engine("step_planner", "1.0", fingerprint_fields=("resolved_approvers",))
def plan_steps(
    *,
    workflow: ApprovalWorkflow,
    resolved_approvers: Mapping[int, Sequence[str]],
    default_rejection_policy: RejectionPolicy = RejectionPolicy.IMMEDIATE,
) -> tuple[PlannedStep, ...]:
    """Expand active step definitions into planned step rows.

    Args:
        workflow: The matched workflow.
        resolved_approvers: User ids per ``step_order`` as returned by the
            approver directory (duplicates allowed, collapsed here).
        default_rejection_policy: Used for steps without their own policy.
    """
    active = workflow.active_steps
    if not active:
        raise WorkflowMisconfiguredError(str(workflow.id), "workflow has no active steps")

    orders = [s.step_order for s in active]
    if len(set(orders)) != len(orders):
        raise WorkflowMisconfiguredError(
            str(workflow.id), "active steps share a step_order"
        )

    planned: list[PlannedStep] = []
    for step in active:
        pool = dedupe_approvers(resolved_approvers.get(step.step_order, ()))
        planned.extend(_plan_group(step, pool, default_rejection_policy))
    return tuple(planned)


def first_group_size(planned: Sequence[PlannedStep]) -> int:
    """Number of approvers in the lowest step order (submission message)."""
    if not planned:
        return 0
    first = min(p.step_order for p in planned)
    return sum(1 for p in planned if p.step_order == first)
