"""
Tests for ApprovalSelector -- read projections over approval requests.

Covers:
- get_request(): steps ordering, organization scoping
- get_requests_for_approver() / get_pending_for_approver(): inbox semantics
- get_history_for_entity(): newest first, all statuses
- get_request_progress(): current step and resolved groups
- get_overdue_steps(): the escalation feed
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import RequestStatus, StepStatus, WorkflowPolicy
from approval_kernel.exceptions import ApprovalRequestNotFoundError
from tests.factories import ORG, OTHER_ORG, step


class TestGetRequest:
    def test_steps_ordered_by_step_order_then_approver(
        self, routed_workflow, submit, approval_selector,
    ):
        routed_workflow(steps=[
            step(2, approver_type="role", ref="cfo"),
            step(1, step_type="parallel", approver_type="team", ref="finance"),
        ])
        request = approval_selector.get_request(ORG, submit().request_id)
        assert [(s.step_order, s.approver_id) for s in request.steps] == [
            (1, "fin-1"), (1, "fin-2"), (1, "fin-3"), (2, "cfo-1"),
        ]

    def test_unknown_id(self, approval_selector):
        with pytest.raises(ApprovalRequestNotFoundError):
            approval_selector.get_request(ORG, uuid4())

    def test_other_organization(self, routed_workflow, submit, approval_selector):
        routed_workflow()
        request_id = submit().request_id
        with pytest.raises(ApprovalRequestNotFoundError):
            approval_selector.get_request(OTHER_ORG, request_id)


class TestApproverInbox:
    def test_pending_for_approver(self, routed_workflow, submit, approval_selector, deterministic_clock):
        routed_workflow(steps=[step(1, ref="manager-1")])
        older = submit(entity_id="INV-1").request_id
        deterministic_clock.advance(60)
        newer = submit(entity_id="INV-2").request_id

        inbox = approval_selector.get_pending_for_approver(ORG, "manager-1")

        assert [r.id for r in inbox] == [newer, older]
        assert approval_selector.get_pending_for_approver(ORG, "nobody") == []
        assert approval_selector.get_pending_for_approver(OTHER_ORG, "manager-1") == []

    def test_acted_requests_leave_inbox(self, routed_workflow, submit, action_processor, approval_selector):
        routed_workflow(steps=[step(1, ref="manager-1")])
        request_id = submit().request_id
        action_processor.approve(ORG, "manager-1", request_id)

        assert approval_selector.get_pending_for_approver(ORG, "manager-1") == []
        history = approval_selector.get_requests_for_approver(ORG, "manager-1", status=StepStatus.APPROVED)
        assert [r.id for r in history] == [request_id]

    def test_resolved_group_leftovers_leave_inbox(
        self, routed_workflow, submit, action_processor, approval_selector,
    ):
        routed_workflow(steps=[
            step(1, step_type="any", approver_type="team", ref="hr"),
            step(2, approver_type="role", ref="cfo"),
        ])
        request_id = submit().request_id
        action_processor.approve(ORG, "hr-1", request_id)

        assert approval_selector.get_pending_for_approver(ORG, "hr-2") == []
        assert [r.id for r in approval_selector.get_pending_for_approver(ORG, "cfo-1")] == [request_id]
        # The leftover row is still pending; only the inbox hides it.
        assert [r.id for r in approval_selector.get_requests_for_approver(ORG, "hr-2", "pending")] == [
            request_id,
        ]

    def test_cancelled_requests_leave_inbox(self, routed_workflow, submit, action_processor, approval_selector):
        routed_workflow(steps=[step(1, ref="manager-1")])
        request_id = submit().request_id
        action_processor.cancel(ORG, "requester-1", request_id)
        assert approval_selector.get_pending_for_approver(ORG, "manager-1") == []


class TestHistory:
    def test_history_for_entity(self, routed_workflow, submit, action_processor, approval_selector, deterministic_clock):
        routed_workflow(steps=[step(1, ref="manager-1")])
        first = submit(entity_id="INV-7").request_id
        action_processor.reject(ORG, "manager-1", first, "Wrong vendor")
        deterministic_clock.advance(3600)
        second = submit(entity_id="INV-7").request_id
        submit(entity_id="INV-8")

        history = approval_selector.get_history_for_entity(ORG, "invoice", "INV-7")

        assert [r.id for r in history] == [second, first]
        assert [r.status for r in history] == [RequestStatus.PENDING, RequestStatus.REJECTED]
        assert approval_selector.get_history_for_entity(OTHER_ORG, "invoice", "INV-7") == []


class TestProgress:
    def test_progress_through_two_steps(self, routed_workflow, submit, action_processor, approval_selector):
        routed_workflow(steps=[step(1, ref="manager-1"), step(2, ref="cfo-1")])
        request_id = submit().request_id

        progress = approval_selector.get_request_progress(ORG, request_id)
        assert (progress.current_step_order, progress.total_steps, progress.resolved_steps) == (1, 2, 0)

        action_processor.approve(ORG, "manager-1", request_id)
        progress = approval_selector.get_request_progress(ORG, request_id)
        assert (progress.current_step_order, progress.resolved_steps) == (2, 1)

        action_processor.approve(ORG, "cfo-1", request_id)
        progress = approval_selector.get_request_progress(ORG, request_id)
        assert progress.status is RequestStatus.APPROVED
        assert progress.current_step_order is None
        assert progress.resolved_steps == 2

    def test_cancelled_request_has_no_current_step(
        self, routed_workflow, submit, action_processor, approval_selector,
    ):
        routed_workflow()
        request_id = submit().request_id
        action_processor.cancel(ORG, "requester-1", request_id)

        progress = approval_selector.get_request_progress(ORG, request_id)
        assert progress.status is RequestStatus.CANCELLED
        assert progress.current_step_order is None
        assert progress.resolved_steps == 0


class TestOverdueSteps:
    def test_overdue_after_timeout(self, routed_workflow, submit, approval_selector, deterministic_clock):
        routed_workflow(
            steps=[step(1, ref="manager-1")],
            policy=WorkflowPolicy(timeout_hours=48, escalation_user_ids=("cfo-1",)),
        )
        request_id = submit().request_id
        submitted_at = deterministic_clock.now()

        assert approval_selector.get_overdue_steps(submitted_at + timedelta(hours=47)) == []

        overdue = approval_selector.get_overdue_steps(submitted_at + timedelta(hours=48))
        assert len(overdue) == 1
        assert overdue[0].request_id == request_id
        assert overdue[0].approver_id == "manager-1"
        assert overdue[0].due_at == submitted_at + timedelta(hours=48)
        assert overdue[0].escalation_user_ids == ("cfo-1",)

    def test_only_actionable_steps(self, routed_workflow, submit, action_processor, approval_selector, deterministic_clock):
        routed_workflow(
            steps=[step(1, ref="manager-1"), step(2, ref="cfo-1")],
            policy=WorkflowPolicy(timeout_hours=1),
        )
        request_id = submit().request_id
        action_processor.approve(ORG, "manager-1", request_id)

        overdue = approval_selector.get_overdue_steps(deterministic_clock.now() + timedelta(hours=2))
        assert [(s.step_order, s.approver_id) for s in overdue] == [(2, "cfo-1")]

    def test_only_the_current_group(self, routed_workflow, submit, approval_selector, deterministic_clock):
        routed_workflow(
            steps=[
                step(1, step_type="parallel", approver_type="team", ref="finance", min_approvals=2),
                step(2, ref="cfo-1"),
            ],
            policy=WorkflowPolicy(timeout_hours=1),
        )
        submit()

        overdue = approval_selector.get_overdue_steps(deterministic_clock.now() + timedelta(hours=2))
        assert [(s.step_order, s.approver_id) for s in overdue] == [
            (1, "fin-1"), (1, "fin-2"), (1, "fin-3"),
        ]

    def test_later_group_waits_behind_the_first(
        self, routed_workflow, submit, action_processor, approval_selector, deterministic_clock,
    ):
        routed_workflow(
            steps=[step(1, ref="manager-1"), step(2, ref="cfo-1")],
            policy=WorkflowPolicy(timeout_hours=1),
        )
        request_id = submit().request_id
        # Out-of-order approval leaves step 1 current.
        action_processor.approve(ORG, "cfo-1", request_id)

        overdue = approval_selector.get_overdue_steps(deterministic_clock.now() + timedelta(hours=2))
        assert [(s.step_order, s.approver_id) for s in overdue] == [(1, "manager-1")]

    def test_no_timeout_never_overdue(self, routed_workflow, submit, approval_selector, deterministic_clock):
        routed_workflow()
        submit()
        assert approval_selector.get_overdue_steps(deterministic_clock.now() + timedelta(days=365)) == []

    def test_terminal_requests_never_overdue(
        self, routed_workflow, submit, action_processor, approval_selector, deterministic_clock,
    ):
        routed_workflow(steps=[step(1, ref="manager-1")], policy=WorkflowPolicy(timeout_hours=1))
        request_id = submit().request_id
        action_processor.cancel(ORG, "requester-1", request_id)
        assert approval_selector.get_overdue_steps(deterministic_clock.now() + timedelta(hours=5)) == []

    def test_organization_filter(self, routed_workflow, submit, approval_selector, deterministic_clock):
        routed_workflow(policy=WorkflowPolicy(timeout_hours=1))
        submit()
        as_of = deterministic_clock.now() + timedelta(hours=2)
        assert len(approval_selector.get_overdue_steps(as_of, organization_id=ORG)) == 1
        assert approval_selector.get_overdue_steps(as_of, organization_id=OTHER_ORG) == []

    def test_naive_as_of_refused(self, approval_selector):
        with pytest.raises(ValueError):
            approval_selector.get_overdue_steps(datetime(2024, 1, 1))

    def test_other_timezone_as_of(self, routed_workflow, submit, approval_selector, deterministic_clock):
        routed_workflow(policy=WorkflowPolicy(timeout_hours=1))
        submit()
        local = timezone(timedelta(hours=2))
        as_of = (deterministic_clock.now() + timedelta(hours=1)).astimezone(local)
        assert len(approval_selector.get_overdue_steps(as_of)) == 1
