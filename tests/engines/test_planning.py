"""
Tests for the pure step planner.

Covers approver fan-out per step type, quorum defaults, pool dedupe, and
the failure modes for unusable pools and misconfigured workflows.
"""

from uuid import uuid4

import pytest

from approval_engines.planning import (
    dedupe_approvers,
    default_min_approvals,
    first_group_size,
    plan_steps,
)
from approval_kernel.domain.workflow import (
    ApprovalWorkflow,
    RejectionPolicy,
    StepType,
)
from approval_kernel.exceptions import (
    ApproverResolutionError,
    WorkflowMisconfiguredError,
)
from tests.factories import step


def workflow(*steps) -> ApprovalWorkflow:
    return ApprovalWorkflow(
        id=uuid4(),
        organization_id="org-1",
        name="wf",
        entity_type="invoice",
        is_active=True,
        steps=tuple(steps),
    )


def plan(wf, pools, policy=RejectionPolicy.IMMEDIATE):
    return plan_steps(workflow=wf, resolved_approvers=pools, default_rejection_policy=policy)


class TestDedupe:
    def test_keeps_first_seen_order(self):
        assert dedupe_approvers(["b", "a", "b", "", "c", "a"]) == ["b", "a", "c"]

    def test_default_min_approvals(self):
        assert default_min_approvals(StepType.PARALLEL, 4) == 4
        assert default_min_approvals(StepType.ANY, 4) == 1
        assert default_min_approvals(StepType.SINGLE, 1) == 1


class TestPlanSteps:
    def test_single_user_step(self):
        planned = plan(workflow(step(1, ref="alice")), {1: ["alice"]})
        assert len(planned) == 1
        assert planned[0].approver_id == "alice"
        assert planned[0].min_approvals == 1
        assert planned[0].required_approvers == 1
        assert planned[0].rejection_policy is RejectionPolicy.IMMEDIATE

    def test_parallel_fans_out_and_defaults_to_everyone(self):
        wf = workflow(step(1, step_type="parallel", approver_type="team", ref="finance"))
        planned = plan(wf, {1: ["fin-1", "fin-2", "fin-3"]})
        assert [p.approver_id for p in planned] == ["fin-1", "fin-2", "fin-3"]
        assert {p.min_approvals for p in planned} == {3}
        assert {p.required_approvers for p in planned} == {3}

    def test_any_defaults_to_one(self):
        wf = workflow(step(1, step_type="any", approver_type="team", ref="hr"))
        planned = plan(wf, {1: ["hr-1", "hr-2"]})
        assert {p.min_approvals for p in planned} == {1}

    def test_explicit_quorum(self):
        wf = workflow(step(1, step_type="parallel", approver_type="team", ref="finance", min_approvals=2))
        planned = plan(wf, {1: ["fin-1", "fin-2", "fin-3"]})
        assert {p.min_approvals for p in planned} == {2}

    def test_duplicate_pool_members_collapse(self):
        wf = workflow(step(1, step_type="parallel", approver_type="team", ref="finance"))
        planned = plan(wf, {1: ["fin-1", "fin-1", "fin-2"]})
        assert [p.approver_id for p in planned] == ["fin-1", "fin-2"]
        assert planned[0].required_approvers == 2

    def test_rows_ordered_by_step_order(self):
        wf = workflow(step(2, ref="cfo-1"), step(1, ref="manager-1"))
        planned = plan(wf, {1: ["manager-1"], 2: ["cfo-1"]})
        assert [p.step_order for p in planned] == [1, 2]

    def test_inactive_steps_are_skipped(self):
        wf = workflow(step(1, ref="a"), step(2, ref="b", is_active=False))
        planned = plan(wf, {1: ["a"], 2: ["b"]})
        assert [p.approver_id for p in planned] == ["a"]

    def test_step_rejection_policy_overrides_default(self):
        wf = workflow(
            step(1, ref="a"),
            step(2, step_type="any", approver_type="team", ref="t", rejection_policy="quorum"),
        )
        planned = plan(wf, {1: ["a"], 2: ["x", "y"]}, policy=RejectionPolicy.IMMEDIATE)
        assert planned[0].rejection_policy is RejectionPolicy.IMMEDIATE
        assert planned[1].rejection_policy is RejectionPolicy.QUORUM

    def test_first_group_size(self):
        wf = workflow(
            step(1, step_type="parallel", approver_type="team", ref="finance"),
            step(2, ref="cfo-1"),
        )
        planned = plan(wf, {1: ["fin-1", "fin-2"], 2: ["cfo-1"]})
        assert first_group_size(planned) == 2
        assert first_group_size(()) == 0


class TestPlanningFailures:
    def test_empty_pool(self):
        wf = workflow(step(1, step_type="any", approver_type="team", ref="empty"))
        with pytest.raises(ApproverResolutionError) as exc_info:
            plan(wf, {1: []})
        assert exc_info.value.step_order == 1
        assert exc_info.value.code == "APPROVER_RESOLUTION_FAILED"

    def test_single_step_with_several_approvers(self):
        wf = workflow(step(1, approver_type="role", ref="finance_manager"))
        with pytest.raises(ApproverResolutionError, match="exactly one"):
            plan(wf, {1: ["a", "b"]})

    def test_quorum_larger_than_pool(self):
        wf = workflow(step(1, step_type="parallel", approver_type="team", ref="t", min_approvals=3))
        with pytest.raises(ApproverResolutionError, match="exceeds"):
            plan(wf, {1: ["a", "b"]})

    def test_no_active_steps(self):
        wf = workflow(step(1, is_active=False))
        with pytest.raises(WorkflowMisconfiguredError):
            plan(wf, {})

    def test_shared_step_order(self):
        wf = workflow(step(1, ref="a"), step(1, ref="b"))
        with pytest.raises(WorkflowMisconfiguredError):
            plan(wf, {1: ["a"]})
