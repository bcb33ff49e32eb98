"""
approval_engines.completion -- Pure step-group and request resolution.

Responsibility:
    Decide, from a consistent snapshot of a request's step rows, whether
    each step group (rows sharing ``step_order``) is pending, approved or
    rejected, and what that means for the request.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - A group is approved once its approved rows reach ``min_approvals``.
    - ``IMMEDIATE`` rejection policy: one rejected row rejects the group.
      ``QUORUM``: the group is rejected only when approved + pending rows
      can no longer reach ``min_approvals``.
    - A rejected group rejects the request, whatever its position.
    - The request is approved only when every group is approved, so
      step-order sequencing is enforced here and not at action time.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from itertools import groupby

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import (
    ApprovalStep,
    GroupOutcome,
    RejectionPolicy,
    RequestEvaluation,
    RequestStatus,
    StepStatus,
)


def evaluate_step_group(steps: Sequence[ApprovalStep]) -> GroupOutcome:
    """Resolve one step group.  All rows must share a step order."""
    if not steps:
        return GroupOutcome.PENDING

    head = steps[0]
    approved = sum(1 for s in steps if s.status is StepStatus.APPROVED)
    rejected = sum(1 for s in steps if s.status is StepStatus.REJECTED)
    pending = sum(1 for s in steps if s.status is StepStatus.PENDING)

    if head.rejection_policy is RejectionPolicy.IMMEDIATE:
        if rejected:
            return GroupOutcome.REJECTED
        if approved >= head.min_approvals:
            return GroupOutcome.APPROVED
        return GroupOutcome.PENDING

    if approved >= head.min_approvals:
        return GroupOutcome.APPROVED
    if approved + pending < head.min_approvals:
        return GroupOutcome.REJECTED
    return GroupOutcome.PENDING


def group_steps(steps: Iterable[ApprovalStep]) -> list[tuple[int, list[ApprovalStep]]]:
    """Step rows grouped by step order, ascending."""
    ordered = sorted(steps, key=lambda s: (s.step_order, s.approver_id))
    return [(order, list(rows)) for order, rows in groupby(ordered, key=lambda s: s.step_order)]


@traced_engine("request_completion", "1.0")
def evaluate_request_outcome(steps: Sequence[ApprovalStep]) -> RequestEvaluation:
    """Derive the request outcome from all of its step rows."""
    outcomes = tuple(
        (order, evaluate_step_group(rows)) for order, rows in group_steps(steps)
    )

    if any(o is GroupOutcome.REJECTED for _, o in outcomes):
        return RequestEvaluation(
            status=RequestStatus.REJECTED,
            current_step_order=None,
            group_outcomes=outcomes,
        )

    current = next(
        (order for order, o in outcomes if o is not GroupOutcome.APPROVED),
        None,
    )
    if outcomes and current is None:
        status = RequestStatus.APPROVED
    else:
        status = RequestStatus.PENDING
    return RequestEvaluation(
        status=status,
        current_step_order=current,
        group_outcomes=outcomes,
    )
