"""
ApprovalActionProcessor -- approve / reject / delegate / cancel.

Responsibility:
    Applies approver actions to individual approval steps and drives the
    request to its terminal status once the step groups resolve.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Decisions about
    group and request resolution are delegated to the pure
    ``approval_engines.completion`` engine.

Invariants enforced:
    - At most one terminal transition per step: the flip is a single
      ``UPDATE ... WHERE id = :id AND status = 'pending' AND (approver_id
      = :actor OR delegated_to = :actor)``.  Zero affected rows means
      another actor got there first, reported as NoActionableStepError.
    - At most one terminal transition per request: the completion write
      is ``UPDATE ... WHERE status = 'pending'``.  Only the writer that
      affected the row records the completion in the audit trail.
    - Completion is derived from a fresh read of every sibling step taken
      after the step flip, inside the same transaction.  On PostgreSQL the
      request row is locked (``SELECT ... FOR UPDATE``) for the whole
      action, so concurrent actions on one request serialize.
    - Steps whose group is already resolved are no longer actionable.
    - Delegation only changes ``delegated_to`` (and comments when given);
      status and ``action_at`` are untouched.
    - A step is never delegated to a user who already owns or holds
      another row of the same step group, so each approval counted toward
      ``min_approvals`` comes from a different person.

Failure modes:
    - ApprovalRequestNotFoundError: unknown id or another organization.
    - RequestNotPendingError: the request is already terminal.
    - NoActionableStepError: the actor has no pending step, or lost a race.
    - CommentsRequiredError / InvalidDelegationError: workflow policy.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from approval_engines.completion import evaluate_request_outcome
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    STEP_STATUS_FOR_ACTION,
    ActionResult,
    ApprovalStep,
    DelegationResult,
    GroupOutcome,
    RequestEvaluation,
    RequestStatus,
    StepAction,
    StepStatus,
    WorkflowPolicy,
)
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    CommentsRequiredError,
    InvalidDelegationError,
    NoActionableStepError,
    RequestNotPendingError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalRequestModel, ApprovalStepModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.models.workflow import ApprovalWorkflowModel
from approval_kernel.services.auditor_service import AuditTrail
from approval_kernel.services.base import BaseService

logger = get_logger("services.action_processor")

_STEP_AUDIT_ACTION = {
    StepAction.APPROVE: AuditAction.APPROVAL_STEP_APPROVED,
    StepAction.REJECT: AuditAction.APPROVAL_STEP_REJECTED,
}

_REQUEST_AUDIT_ACTION = {
    RequestStatus.APPROVED: AuditAction.APPROVAL_REQUEST_APPROVED,
    RequestStatus.REJECTED: AuditAction.APPROVAL_REQUEST_REJECTED,
    RequestStatus.CANCELLED: AuditAction.APPROVAL_CANCELLED,
}


class ApprovalActionProcessor(BaseService[ApprovalStepModel]):
    """State machine driver for approval steps and requests."""

    def __init__(
        self,
        session: Session,
        auditor: AuditTrail,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._auditor = auditor
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Public actions
    # ------------------------------------------------------------------

    def approve(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID,
        comments: str | None = None,
    ) -> ActionResult:
        """Approve the actor's pending step on a request."""
        return self._act(organization_id, actor_id, request_id, StepAction.APPROVE, comments)

    def reject(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID,
        comments: str | None = None,
    ) -> ActionResult:
        """Reject the actor's pending step on a request."""
        return self._act(organization_id, actor_id, request_id, StepAction.REJECT, comments)

    def delegate(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID,
        delegate_to_user_id: str,
        comments: str | None = None,
    ) -> DelegationResult:
        """Hand the actor's pending step to another user.

        Re-delegation overwrites ``delegated_to``.  The step's formal
        owner (``approver_id``) never changes.
        """
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            request_id=str(request_id),
        ):
            if not isinstance(delegate_to_user_id, str) or not delegate_to_user_id.strip():
                raise InvalidDelegationError(str(request_id), "delegate user id is required")
            if delegate_to_user_id == actor_id:
                raise InvalidDelegationError(str(request_id), "cannot delegate to yourself")

            request = self._load_request_for_action(organization_id, request_id)
            if not self._workflow_policy(request.workflow_id).allow_delegation:
                raise InvalidDelegationError(
                    str(request_id), "the workflow does not allow delegation"
                )

            steps = self._load_steps(request.id)
            step = self._find_actionable_step(request.id, actor_id, steps)
            if any(
                s.id != step.id
                and s.step_order == step.step_order
                and delegate_to_user_id in (s.approver_id, s.delegated_to)
                for s in steps
            ):
                raise InvalidDelegationError(
                    str(request_id),
                    f"{delegate_to_user_id} already holds a step in group {step.step_order}",
                )

            values: dict[str, object] = {"delegated_to": delegate_to_user_id}
            if comments is not None:
                values["comments"] = comments
            result = self.session.execute(
                update(ApprovalStepModel)
                .where(
                    ApprovalStepModel.id == step.id,
                    ApprovalStepModel.status == StepStatus.PENDING.value,
                    or_(
                        ApprovalStepModel.approver_id == actor_id,
                        ApprovalStepModel.delegated_to == actor_id,
                    ),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self._log_race_lost(step, actor_id, "delegate")
                raise NoActionableStepError(
                    str(request_id), actor_id, "step was actioned concurrently"
                )

            self._auditor.record(
                "ApprovalRequest",
                request.id,
                AuditAction.APPROVAL_STEP_DELEGATED,
                actor_id,
                {
                    "step_id": str(step.id),
                    "step_order": step.step_order,
                    "approver_id": step.approver_id,
                    "previous_delegate": step.delegated_to,
                    "delegated_to": delegate_to_user_id,
                    "comments": comments,
                },
            )
            logger.info(
                "approval_step_delegated",
                extra={
                    "step_id": str(step.id),
                    "step_order": step.step_order,
                    "previous_delegate": step.delegated_to,
                    "delegated_to": delegate_to_user_id,
                },
            )

        return DelegationResult(
            success=True,
            message=f"Approval step delegated successfully to {delegate_to_user_id}.",
            delegated_to=delegate_to_user_id,
        )

    def cancel(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID,
        reason: str | None = None,
    ) -> ActionResult:
        """Cancel a pending request (requester withdrawal or an external
        escalation / timeout job)."""
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            request_id=str(request_id),
        ):
            request = self._load_request_for_action(organization_id, request_id)
            now = self._clock.now()
            if not self._complete_request(request.id, RequestStatus.CANCELLED, now):
                fresh = self._current_request_status(request.id)
                raise RequestNotPendingError(str(request_id), fresh.value)

            self._auditor.record(
                "ApprovalRequest",
                request.id,
                AuditAction.APPROVAL_CANCELLED,
                actor_id,
                {"reason": reason},
            )
            logger.info(
                "approval_request_completed",
                extra={"status": RequestStatus.CANCELLED.value, "reason": reason},
            )

        return ActionResult(
            success=True,
            message="Approval request cancelled.",
            request_status=RequestStatus.CANCELLED,
        )

    # ------------------------------------------------------------------
    # Approve / reject
    # ------------------------------------------------------------------

    def _act(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID,
        action: StepAction,
        comments: str | None,
    ) -> ActionResult:
        with LogContext.bind(
            organization_id=organization_id,
            actor_id=actor_id,
            request_id=str(request_id),
        ):
            request = self._load_request_for_action(organization_id, request_id)
            steps = self._load_steps(request.id)
            step = self._find_actionable_step(request.id, actor_id, steps)

            policy = self._workflow_policy(request.workflow_id)
            if policy.require_comments and (comments is None or not comments.strip()):
                raise CommentsRequiredError(str(request_id), action.value)

            now = self._clock.now()
            new_status = STEP_STATUS_FOR_ACTION[action]
            if not self._claim_step(step, actor_id, new_status, comments, now):
                self._log_race_lost(step, actor_id, action.value)
                raise NoActionableStepError(
                    str(request_id), actor_id, "step was actioned concurrently"
                )

            self._auditor.record(
                "ApprovalRequest",
                request.id,
                _STEP_AUDIT_ACTION[action],
                actor_id,
                {
                    "step_id": str(step.id),
                    "step_order": step.step_order,
                    "approver_id": step.approver_id,
                    "delegated_to": step.delegated_to,
                    "comments": comments,
                },
            )

            evaluation = evaluate_request_outcome(self._load_steps(request.id))
            final_status = self._resolve_request(request.id, actor_id, evaluation, now)

            logger.info(
                "approval_step_actioned",
                extra={
                    "step_id": str(step.id),
                    "step_order": step.step_order,
                    "action": action.value,
                    "group_outcome": evaluation.outcome_for(step.step_order).value,
                    "request_status": final_status.value,
                },
            )

        return ActionResult(
            success=True,
            message=self._result_message(action, step, evaluation, final_status),
            request_status=final_status,
        )

    def _resolve_request(
        self,
        request_id: UUID,
        actor_id: str,
        evaluation: RequestEvaluation,
        now: datetime,
    ) -> RequestStatus:
        """Write the terminal request status if the steps call for one."""
        if evaluation.status is RequestStatus.PENDING:
            return RequestStatus.PENDING

        if self._complete_request(request_id, evaluation.status, now):
            self._auditor.record(
                "ApprovalRequest",
                request_id,
                _REQUEST_AUDIT_ACTION[evaluation.status],
                actor_id,
                {"resolved_groups": evaluation.resolved_groups},
            )
            logger.info(
                "approval_request_completed",
                extra={"status": evaluation.status.value},
            )
            return evaluation.status

        # Another transaction completed the request first; report what it wrote.
        fresh = self._current_request_status(request_id)
        logger.info(
            "approval_request_completion_race_lost",
            extra={"derived_status": evaluation.status.value, "status": fresh.value},
        )
        return fresh

    @staticmethod
    def _result_message(
        action: StepAction,
        step: ApprovalStep,
        evaluation: RequestEvaluation,
        final_status: RequestStatus,
    ) -> str:
        if action is StepAction.APPROVE:
            if final_status is RequestStatus.APPROVED:
                return "Approval completed. All workflow steps approved."
            if final_status is not RequestStatus.PENDING:
                return f"Approval recorded. Request is {final_status.value}."
            if evaluation.outcome_for(step.step_order) is GroupOutcome.APPROVED:
                return (
                    "Approval recorded. Moving to next step "
                    f"({evaluation.current_step_order})."
                )
            return "Approval recorded. Awaiting additional approvals for this step."

        if final_status is RequestStatus.REJECTED:
            return "Request rejected."
        if final_status is not RequestStatus.PENDING:
            return f"Rejection recorded. Request is {final_status.value}."
        return "Rejection recorded. The step can still reach its quorum."

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load_request_for_action(
        self,
        organization_id: str,
        request_id: UUID,
    ) -> ApprovalRequestModel:
        """Lock and return a pending request of this organization."""
        request = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.id == request_id,
                ApprovalRequestModel.organization_id == organization_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        if request.status != RequestStatus.PENDING.value:
            raise RequestNotPendingError(str(request_id), request.status)
        return request

    def _load_steps(self, request_id: UUID) -> list[ApprovalStep]:
        rows = self.session.execute(
            select(ApprovalStepModel)
            .where(ApprovalStepModel.request_id == request_id)
            .order_by(ApprovalStepModel.step_order, ApprovalStepModel.approver_id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def _find_actionable_step(
        self,
        request_id: UUID,
        actor_id: str,
        steps: list[ApprovalStep],
    ) -> ApprovalStep:
        """The actor's pending step in an unresolved group.

        When the actor holds several, the lowest step order wins, then
        the step they own directly over one delegated to them.
        """
        evaluation = evaluate_request_outcome(steps)
        candidates = [
            s
            for s in steps
            if s.status is StepStatus.PENDING
            and s.is_authorized(actor_id)
            and evaluation.outcome_for(s.step_order) is GroupOutcome.PENDING
        ]
        if not candidates:
            raise NoActionableStepError(str(request_id), actor_id)
        candidates.sort(key=lambda s: (s.step_order, s.approver_id != actor_id))
        return candidates[0]

    def _workflow_policy(self, workflow_id: UUID) -> WorkflowPolicy:
        policy = self.session.execute(
            select(ApprovalWorkflowModel.policy).where(ApprovalWorkflowModel.id == workflow_id)
        ).scalar_one_or_none()
        return WorkflowPolicy.from_dict(policy)

    def _current_request_status(self, request_id: UUID) -> RequestStatus:
        status = self.session.execute(
            select(ApprovalRequestModel.status)
            .where(ApprovalRequestModel.id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        return RequestStatus(status)

    # ------------------------------------------------------------------
    # Guarded writes
    # ------------------------------------------------------------------

    def _claim_step(
        self,
        step: ApprovalStep,
        actor_id: str,
        status: StepStatus,
        comments: str | None,
        now: datetime,
    ) -> bool:
        """Compare-and-swap the step from pending to ``status``."""
        result = self.session.execute(
            update(ApprovalStepModel)
            .where(
                ApprovalStepModel.id == step.id,
                ApprovalStepModel.status == StepStatus.PENDING.value,
                or_(
                    ApprovalStepModel.approver_id == actor_id,
                    ApprovalStepModel.delegated_to == actor_id,
                ),
            )
            .values(status=status.value, comments=comments, action_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _complete_request(
        self,
        request_id: UUID,
        status: RequestStatus,
        now: datetime,
    ) -> bool:
        """Compare-and-swap the request from pending to ``status``."""
        result = self.session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.id == request_id,
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
            )
            .values(status=status.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _log_race_lost(self, step: ApprovalStep, actor_id: str, action: str) -> None:
        logger.warning(
            "approval_step_race_lost",
            extra={
                "step_id": str(step.id),
                "step_order": step.step_order,
                "attempted_action": action,
            },
        )
