"""
Tests for ApprovalRequestManager -- submission of entities for approval.

Covers:
- submit_for_approval(): happy path, first-group message, entity snapshot
- rule routing by priority and conditions
- NoMatchingRule, misconfigured workflows, unresolvable approvers
- malformed submissions
- audit trail and structured log events
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from approval_kernel.domain.workflow import RequestStatus, StepStatus, WorkflowPolicy
from approval_kernel.exceptions import (
    ApproverResolutionError,
    InvalidSubmissionError,
    NoMatchingRuleError,
    WorkflowMisconfiguredError,
)
from approval_kernel.models.approval import ApprovalRequestModel, ApprovalStepModel
from approval_kernel.models.audit_event import AuditAction
from tests.factories import ORG, OTHER_ORG, REQUESTER, step


class TestSubmitForApproval:
    def test_creates_pending_request_with_steps(
        self, session, routed_workflow, submit, approval_selector,
    ):
        workflow = routed_workflow(steps=[step(1, ref="manager-1")])

        result = submit()

        assert result.status is RequestStatus.PENDING
        assert result.workflow_id == workflow.id
        assert result.message == "invoice submitted for approval (1 approver(s))"

        request = approval_selector.get_request(ORG, result.request_id)
        assert request.requested_by == REQUESTER
        assert request.completed_at is None
        assert [(s.approver_id, s.status) for s in request.steps] == [
            ("manager-1", StepStatus.PENDING),
        ]

    def test_message_counts_first_group_only(self, routed_workflow, submit):
        routed_workflow(steps=[
            step(1, step_type="parallel", approver_type="team", ref="finance"),
            step(2, approver_type="role", ref="cfo"),
        ])
        assert submit().message.endswith("(3 approver(s))")

    def test_all_step_rows_are_persisted_up_front(self, session, routed_workflow, submit):
        routed_workflow(steps=[
            step(1, step_type="any", approver_type="team", ref="hr"),
            step(2, approver_type="role", ref="cfo"),
        ])
        result = submit()

        rows = session.execute(
            select(ApprovalStepModel).where(ApprovalStepModel.request_id == result.request_id)
        ).scalars().all()
        assert sorted((r.step_order, r.approver_id) for r in rows) == [
            (1, "hr-1"), (1, "hr-2"), (2, "cfo-1"),
        ]
        assert all(r.delegated_to is None and r.action_at is None for r in rows)

    def test_snapshot_adds_entity_type_and_id(self, routed_workflow, submit, approval_selector):
        routed_workflow()
        result = submit(entity_id="INV-9", entity_data={"amount": Decimal("12.50")})

        data = approval_selector.get_request(ORG, result.request_id).entity_data
        assert data == {"amount": 12.5, "entityType": "invoice", "entityId": "INV-9"}

    def test_snapshot_keeps_caller_values(self, routed_workflow, submit, approval_selector):
        routed_workflow()
        result = submit(entity_data={"entityType": "custom", "amount": 1})
        data = approval_selector.get_request(ORG, result.request_id).entity_data
        assert data["entityType"] == "custom"

    def test_missing_entity_data_is_empty_snapshot(self, routed_workflow, request_manager, approval_selector):
        routed_workflow()
        result = request_manager.submit_for_approval(ORG, REQUESTER, "invoice", "INV-1")
        data = approval_selector.get_request(ORG, result.request_id).entity_data
        assert data == {"entityType": "invoice", "entityId": "INV-1"}

    def test_not_idempotent(self, session, routed_workflow, submit):
        routed_workflow()
        first = submit()
        second = submit()

        assert first.request_id != second.request_id
        count = session.execute(
            select(func.count()).select_from(ApprovalRequestModel)
        ).scalar_one()
        assert count == 2


class TestRouting:
    def test_priority_then_conditions(self, create_workflow, create_rule, submit):
        large = create_workflow(name="Large", steps=[step(1, approver_type="role", ref="cfo")])
        standard = create_workflow(name="Standard", steps=[step(1, approver_type="role", ref="finance_manager")])
        create_rule(standard, priority=100, name="Fallback")
        create_rule(
            large,
            priority=10,
            name="Large invoices",
            conditions=[{"type": "amount", "operator": "gte", "value": 10000}],
        )

        assert submit(entity_data={"amount": 25000}).workflow_id == large.id
        assert submit(entity_data={"amount": 500}).workflow_id == standard.id

    def test_or_logic(self, create_workflow, create_rule, submit):
        workflow = create_workflow(entity_type="employee_change")
        create_rule(
            workflow,
            logic="OR",
            conditions=[
                {"type": "field", "field": "change.kind", "operator": "eq", "value": "salary"},
                {"type": "field", "field": "change.kind", "operator": "eq", "value": "title"},
            ],
        )

        result = submit(entity_type="employee_change", entity_data={"change": {"kind": "title"}})
        assert result.workflow_id == workflow.id

        with pytest.raises(NoMatchingRuleError):
            submit(entity_type="employee_change", entity_data={"change": {"kind": "team"}})

    def test_no_rule_for_entity_type(self, routed_workflow, submit):
        routed_workflow(entity_type="invoice")
        with pytest.raises(NoMatchingRuleError) as exc_info:
            submit(entity_type="expense")
        assert exc_info.value.code == "NO_MATCHING_RULE"

    def test_rules_of_other_organizations_ignored(self, routed_workflow, submit):
        routed_workflow()
        with pytest.raises(NoMatchingRuleError):
            submit(organization_id=OTHER_ORG)

    def test_inactive_rule_ignored(self, create_workflow, create_rule, submit):
        create_rule(create_workflow(), is_active=False)
        with pytest.raises(NoMatchingRuleError):
            submit()

    def test_inactive_workflow_ignored(self, create_workflow, create_rule, submit):
        active = create_workflow(name="Active")
        inactive = create_workflow(name="Inactive", is_active=False)
        create_rule(inactive, priority=1)
        create_rule(active, priority=2)
        assert submit().workflow_id == active.id

    def test_rule_without_conditions_never_matches(self, create_workflow, create_rule, submit):
        create_rule(create_workflow(), conditions=[])
        with pytest.raises(NoMatchingRuleError):
            submit()


class TestSubmissionFailures:
    def test_workflow_without_active_steps(self, routed_workflow, submit, session):
        routed_workflow(steps=[step(1, is_active=False)])
        with pytest.raises(WorkflowMisconfiguredError):
            submit()
        assert session.execute(
            select(func.count()).select_from(ApprovalRequestModel)
        ).scalar_one() == 0

    def test_empty_team(self, routed_workflow, submit):
        routed_workflow(steps=[step(1, step_type="any", approver_type="team", ref="empty")])
        with pytest.raises(ApproverResolutionError):
            submit()

    def test_unknown_role(self, routed_workflow, submit):
        routed_workflow(steps=[step(1, approver_type="role", ref="nobody")])
        with pytest.raises(ApproverResolutionError):
            submit()

    def test_single_step_on_multi_member_team(self, routed_workflow, submit):
        routed_workflow(steps=[step(1, approver_type="team", ref="finance")])
        with pytest.raises(ApproverResolutionError, match="exactly one"):
            submit()

    def test_quorum_larger_than_team(self, routed_workflow, submit):
        routed_workflow(steps=[
            step(1, step_type="parallel", approver_type="team", ref="hr", min_approvals=3),
        ])
        with pytest.raises(ApproverResolutionError):
            submit()

    @pytest.mark.parametrize(
        "entity_type,entity_id,field",
        [
            ("", "INV-1", "entity_type"),
            ("invoice", "", "entity_id"),
            ("invoice", "   ", "entity_id"),
        ],
    )
    def test_blank_identifiers(self, request_manager, entity_type, entity_id, field):
        with pytest.raises(InvalidSubmissionError) as exc_info:
            request_manager.submit_for_approval(ORG, REQUESTER, entity_type, entity_id, {})
        assert exc_info.value.field == field

    def test_entity_data_must_be_mapping(self, request_manager):
        with pytest.raises(InvalidSubmissionError):
            request_manager.submit_for_approval(ORG, REQUESTER, "invoice", "INV-1", ["amount"])

    @pytest.mark.parametrize(
        "value",
        [Decimal("Infinity"), Decimal("-Infinity"), Decimal("NaN"), float("inf"), float("nan")],
    )
    def test_non_finite_numbers_are_refused(self, session, routed_workflow, submit, value):
        routed_workflow()
        with pytest.raises(InvalidSubmissionError) as exc_info:
            submit(entity_data={"amount": 10, "lines": [{"amount": value}]})

        assert exc_info.value.field == "entity_data"
        assert exc_info.value.code == "INVALID_SUBMISSION"
        assert session.execute(
            select(func.count()).select_from(ApprovalRequestModel)
        ).scalar_one() == 0


class TestSubmissionAudit:
    def test_audit_event(self, routed_workflow, submit, auditor_service):
        workflow = routed_workflow()
        result = submit()

        trace = auditor_service.get_trace("ApprovalRequest", result.request_id)
        assert trace.actions == (AuditAction.APPROVAL_SUBMITTED,)
        entry = trace.entries[0]
        assert entry.actor_id == REQUESTER
        assert entry.payload["workflow_id"] == str(workflow.id)
        assert entry.payload["step_count"] == 1

    def test_log_events(self, routed_workflow, submit, captured_logs):
        routed_workflow()
        result = submit()

        records = captured_logs()
        submitted = [r for r in records if r["message"] == "approval_request_submitted"]
        assert len(submitted) == 1
        assert submitted[0]["request_id"] == str(result.request_id)
        assert submitted[0]["organization_id"] == ORG
        assert any(r["message"] == "approval_rule_matched" for r in records)

    def test_policy_does_not_affect_submission(self, routed_workflow, submit):
        routed_workflow(policy=WorkflowPolicy(require_comments=True, allow_delegation=False))
        assert submit().status is RequestStatus.PENDING
