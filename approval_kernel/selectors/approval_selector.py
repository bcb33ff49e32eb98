"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read projections over approval requests and their steps:
    fetch one request, an approver's inbox, an entity's approval history,
    request progress, and the overdue-step feed consumed by an external
    escalation scheduler.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and the pure completion engine.

Invariants enforced:
    - Organization scoping: every request-level query filters on
      ``organization_id``.  A request of another organization is reported
      as not found, never returned.
    - Steps inside a request are ordered by ``(step_order, approver_id)``.
    - Pending step rows of a group that has already resolved are not
      actionable and never appear in an approver's pending inbox or in
      the overdue feed.
    - The overdue feed lists only rows of the current step group, the
      lowest-ordered group not yet approved.  Later groups are not
      waiting on anyone yet.

Failure modes:
    - ApprovalRequestNotFoundError from get_request / get_request_progress.
    - ValueError when ``as_of`` is a naive datetime.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select

from approval_engines.completion import evaluate_request_outcome
from approval_kernel.domain.workflow import (
    ApprovalRequest,
    ApprovalStep,
    GroupOutcome,
    RequestProgress,
    RequestStatus,
    StepStatus,
    WorkflowPolicy,
)
from approval_kernel.exceptions import ApprovalRequestNotFoundError
from approval_kernel.models.approval import ApprovalRequestModel, ApprovalStepModel
from approval_kernel.models.workflow import ApprovalWorkflowModel
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OverdueStep:
    """A pending, actionable step whose workflow timeout has elapsed."""

    request_id: UUID
    organization_id: str
    workflow_id: UUID
    step_id: UUID
    step_order: int
    approver_id: str
    delegated_to: str | None
    submitted_at: datetime
    due_at: datetime
    escalation_user_ids: tuple[str, ...]


def _actionable(steps: tuple[ApprovalStep, ...]) -> list[ApprovalStep]:
    """Pending rows whose step group is still unresolved."""
    evaluation = evaluate_request_outcome(steps)
    return [
        s for s in steps
        if s.status is StepStatus.PENDING
        and evaluation.outcome_for(s.step_order) is GroupOutcome.PENDING
    ]


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Selector for approval request queries."""

    def _request_query(self, organization_id: str):
        return (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.organization_id == organization_id)
            .execution_options(populate_existing=True)
        )

    def get_request(self, organization_id: str, request_id: UUID) -> ApprovalRequest:
        """Request with its steps; NotFound for unknown ids and other orgs."""
        row = self.session.execute(
            self._request_query(organization_id).where(ApprovalRequestModel.id == request_id)
        ).scalar_one_or_none()
        if row is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return row.to_dto()

    def get_requests_for_approver(
        self,
        organization_id: str,
        user_id: str,
        status: StepStatus | str | None = None,
    ) -> list[ApprovalRequest]:
        """Requests where ``user_id`` owns or was delegated a step.

        ``status`` filters on the step status, not the request status.
        Newest submission first.
        """
        step_filter = select(ApprovalStepModel.request_id).where(
            or_(
                ApprovalStepModel.approver_id == user_id,
                ApprovalStepModel.delegated_to == user_id,
            )
        )
        if status is not None:
            step_filter = step_filter.where(
                ApprovalStepModel.status == StepStatus(status).value
            )

        rows = self.session.execute(
            self._request_query(organization_id)
            .where(ApprovalRequestModel.id.in_(step_filter))
            .order_by(
                ApprovalRequestModel.submitted_at.desc(),
                ApprovalRequestModel.id,
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def get_pending_for_approver(
        self,
        organization_id: str,
        user_id: str,
    ) -> list[ApprovalRequest]:
        """Pending requests on which ``user_id`` can act right now."""
        candidates = self.get_requests_for_approver(
            organization_id, user_id, status=StepStatus.PENDING,
        )
        return [
            request
            for request in candidates
            if request.status is RequestStatus.PENDING
            and any(s.is_authorized(user_id) for s in _actionable(request.steps))
        ]

    def get_history_for_entity(
        self,
        organization_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[ApprovalRequest]:
        """Every request ever submitted for one entity, newest first."""
        rows = self.session.execute(
            self._request_query(organization_id)
            .where(
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
            )
            .order_by(
                ApprovalRequestModel.submitted_at.desc(),
                ApprovalRequestModel.id,
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def get_request_progress(
        self,
        organization_id: str,
        request_id: UUID,
    ) -> RequestProgress:
        request = self.get_request(organization_id, request_id)
        evaluation = evaluate_request_outcome(request.steps)
        return RequestProgress(
            request_id=request.id,
            status=request.status,
            current_step_order=(
                evaluation.current_step_order
                if request.status is RequestStatus.PENDING
                else None
            ),
            total_steps=evaluation.total_groups,
            resolved_steps=evaluation.resolved_groups,
        )

    def get_overdue_steps(
        self,
        as_of: datetime,
        organization_id: str | None = None,
    ) -> list[OverdueStep]:
        """Actionable steps of pending requests past their workflow timeout.

        This is the data contract for an external escalation job; nothing
        here reassigns or cancels.  Workflows without ``timeout_hours``
        never produce overdue steps.
        """
        if as_of.tzinfo is None:
            raise ValueError("as_of must be timezone-aware")

        query = (
            select(ApprovalRequestModel, ApprovalWorkflowModel.policy)
            .join(
                ApprovalWorkflowModel,
                ApprovalWorkflowModel.id == ApprovalRequestModel.workflow_id,
            )
            .where(ApprovalRequestModel.status == RequestStatus.PENDING.value)
            .order_by(ApprovalRequestModel.submitted_at, ApprovalRequestModel.id)
            .execution_options(populate_existing=True)
        )
        if organization_id is not None:
            query = query.where(ApprovalRequestModel.organization_id == organization_id)

        overdue: list[OverdueStep] = []
        for row, raw_policy in self.session.execute(query).all():
            policy = WorkflowPolicy.from_dict(raw_policy)
            if policy.timeout_hours is None:
                continue
            due_at = row.submitted_at + timedelta(hours=policy.timeout_hours)
            if due_at > as_of:
                continue
            request = row.to_dto()
            current = evaluate_request_outcome(request.steps).current_step_order
            for step in _actionable(request.steps):
                if step.step_order != current:
                    continue
                overdue.append(
                    OverdueStep(
                        request_id=request.id,
                        organization_id=request.organization_id,
                        workflow_id=request.workflow_id,
                        step_id=step.id,
                        step_order=step.step_order,
                        approver_id=step.approver_id,
                        delegated_to=step.delegated_to,
                        submitted_at=request.submitted_at,
                        due_at=due_at,
                        escalation_user_ids=policy.escalation_user_ids,
                    )
                )
        return overdue
