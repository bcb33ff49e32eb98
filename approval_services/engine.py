"""
approval_services.engine -- ApprovalWorkflowEngine facade.

Responsibility:
    The library-level contract exposed to collaborators (HTTP handlers,
    jobs, UIs): submit, approve, reject, delegate, cancel and the read
    projections.  Each call is one unit of work with its own transaction
    and returns plain dicts ready for serialization.

Architecture position:
    Services -- top layer.  Constructs every kernel service per unit of
    work (DI is visible in ``_services``).  The only layer that owns
    transaction boundaries (``session_scope``): kernel services flush,
    this facade commits or rolls back.

Invariants enforced:
    - All dependencies (session factory, approver directory, clock) are
      constructor parameters; there is no process-wide instance.
    - No step or request state is cached across calls.
    - A request id that is not a UUID is reported as not found.

Failure modes:
    - Every ``ApprovalKernelError`` propagates unchanged after rollback.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from approval_config.compiler import CompiledWorkflowPack
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    ApprovalRequest,
    ApprovalStep,
    ApproverDirectory,
    RejectionPolicy,
    RequestProgress,
    RulePriorityOrder,
)
from approval_kernel.exceptions import ApprovalRequestNotFoundError
from approval_kernel.logging_config import LogContext
from approval_kernel.selectors.approval_selector import ApprovalSelector, OverdueStep
from approval_kernel.services.action_processor import ApprovalActionProcessor
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.rule_matcher import RuleMatcher
from approval_kernel.services.step_planner import WorkflowStepPlanner
from approval_kernel.services.submission_service import ApprovalRequestManager


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def step_to_dict(step: ApprovalStep) -> dict[str, Any]:
    return {
        "id": str(step.id),
        "requestId": str(step.request_id),
        "stepOrder": step.step_order,
        "stepType": step.step_type.value,
        "approverId": step.approver_id,
        "delegatedTo": step.delegated_to,
        "minApprovals": step.min_approvals,
        "requiredApprovers": step.required_approvers,
        "rejectionPolicy": step.rejection_policy.value,
        "status": step.status.value,
        "comments": step.comments,
        "actionAt": _isoformat(step.action_at),
    }


def request_to_dict(request: ApprovalRequest) -> dict[str, Any]:
    return {
        "id": str(request.id),
        "organizationId": request.organization_id,
        "workflowId": str(request.workflow_id),
        "entityType": request.entity_type,
        "entityId": request.entity_id,
        "entityData": dict(request.entity_data),
        "requestedBy": request.requested_by,
        "status": request.status.value,
        "submittedAt": _isoformat(request.submitted_at),
        "completedAt": _isoformat(request.completed_at),
        "steps": [step_to_dict(s) for s in request.steps],
    }


def progress_to_dict(progress: RequestProgress) -> dict[str, Any]:
    return {
        "requestId": str(progress.request_id),
        "status": progress.status.value,
        "currentStepOrder": progress.current_step_order,
        "totalSteps": progress.total_steps,
        "resolvedSteps": progress.resolved_steps,
    }


def overdue_to_dict(step: OverdueStep) -> dict[str, Any]:
    return {
        "requestId": str(step.request_id),
        "organizationId": step.organization_id,
        "workflowId": str(step.workflow_id),
        "stepId": str(step.step_id),
        "stepOrder": step.step_order,
        "approverId": step.approver_id,
        "delegatedTo": step.delegated_to,
        "submittedAt": _isoformat(step.submitted_at),
        "dueAt": _isoformat(step.due_at),
        "escalationUserIds": list(step.escalation_user_ids),
    }


def coerce_request_id(request_id: UUID | str) -> UUID:
    """Parse a request id; anything that is not a UUID cannot exist."""
    if isinstance(request_id, UUID):
        return request_id
    try:
        return UUID(str(request_id))
    except ValueError:
        raise ApprovalRequestNotFoundError(str(request_id)) from None


@dataclass(frozen=True)
class _Services:
    manager: ApprovalRequestManager
    processor: ApprovalActionProcessor
    selector: ApprovalSelector


class ApprovalWorkflowEngine:
    """Transactional facade over the approval kernel.

    Contract:
        Receives a session factory and an approver directory.  Every
        public method opens one ``session_scope``, builds the kernel
        services on that session, and commits on success.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        directory: ApproverDirectory,
        clock: Clock | None = None,
        priority_order: RulePriorityOrder = RulePriorityOrder.LOWER_FIRST,
        default_rejection_policy: RejectionPolicy = RejectionPolicy.IMMEDIATE,
    ):
        self._session_factory = session_factory
        self._directory = directory
        self._clock = clock or SystemClock()
        self._priority_order = RulePriorityOrder(priority_order)
        self._default_rejection_policy = RejectionPolicy(default_rejection_policy)

    @classmethod
    def from_pack(
        cls,
        session_factory: sessionmaker[Session],
        directory: ApproverDirectory,
        pack: CompiledWorkflowPack,
        clock: Clock | None = None,
    ) -> ApprovalWorkflowEngine:
        """Build an engine with the settings of a ``CompiledWorkflowPack``."""
        return cls(
            session_factory,
            directory,
            clock=clock,
            priority_order=pack.rule_priority_order,
            default_rejection_policy=pack.default_rejection_policy,
        )

    def _services(self, session: Session) -> _Services:
        auditor = AuditorService(session, self._clock)
        return _Services(
            manager=ApprovalRequestManager(
                session,
                RuleMatcher(session, self._priority_order),
                WorkflowStepPlanner(self._directory, self._default_rejection_policy),
                auditor,
                self._clock,
            ),
            processor=ApprovalActionProcessor(session, auditor, self._clock),
            selector=ApprovalSelector(session),
        )

    def _unit_of_work(self, organization_id: str, actor_id: str | None = None):
        return LogContext.bind(
            correlation_id=LogContext.get_all().get("correlation_id") or str(uuid4()),
            organization_id=organization_id,
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        organization_id: str,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        entity_data: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Returns ``{requestId, workflowId, status, message}``."""
        with self._unit_of_work(organization_id, actor_id):
            with session_scope(self._session_factory) as session:
                result = self._services(session).manager.submit_for_approval(
                    organization_id, actor_id, entity_type, entity_id, entity_data,
                )
            return result.to_dict()

    def approve(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID | str,
        comments: str | None = None,
    ) -> dict[str, Any]:
        """Returns ``{success, message, requestStatus}``."""
        request_uuid = coerce_request_id(request_id)
        with self._unit_of_work(organization_id, actor_id):
            with session_scope(self._session_factory) as session:
                result = self._services(session).processor.approve(
                    organization_id, actor_id, request_uuid, comments,
                )
            return result.to_dict()

    def reject(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID | str,
        comments: str | None = None,
    ) -> dict[str, Any]:
        """Returns ``{success, message, requestStatus}``."""
        request_uuid = coerce_request_id(request_id)
        with self._unit_of_work(organization_id, actor_id):
            with session_scope(self._session_factory) as session:
                result = self._services(session).processor.reject(
                    organization_id, actor_id, request_uuid, comments,
                )
            return result.to_dict()

    def delegate(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID | str,
        delegate_to_user_id: str,
        comments: str | None = None,
    ) -> dict[str, Any]:
        """Returns ``{success, message}``."""
        request_uuid = coerce_request_id(request_id)
        with self._unit_of_work(organization_id, actor_id):
            with session_scope(self._session_factory) as session:
                result = self._services(session).processor.delegate(
                    organization_id, actor_id, request_uuid, delegate_to_user_id, comments,
                )
            return result.to_dict()

    def cancel(
        self,
        organization_id: str,
        actor_id: str,
        request_id: UUID | str,
        reason: str | None = None,
    ) -> dict[str, Any]:
        request_uuid = coerce_request_id(request_id)
        with self._unit_of_work(organization_id, actor_id):
            with session_scope(self._session_factory) as session:
                result = self._services(session).processor.cancel(
                    organization_id, actor_id, request_uuid, reason,
                )
            return result.to_dict()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, organization_id: str, request_id: UUID | str) -> dict[str, Any]:
        request_uuid = coerce_request_id(request_id)
        with session_scope(self._session_factory) as session:
            return request_to_dict(
                self._services(session).selector.get_request(organization_id, request_uuid)
            )

    def get_request_progress(
        self,
        organization_id: str,
        request_id: UUID | str,
    ) -> dict[str, Any]:
        request_uuid = coerce_request_id(request_id)
        with session_scope(self._session_factory) as session:
            return progress_to_dict(
                self._services(session).selector.get_request_progress(
                    organization_id, request_uuid,
                )
            )

    def get_pending_for_approver(
        self,
        organization_id: str,
        user_id: str,
    ) -> list[dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            requests = self._services(session).selector.get_pending_for_approver(
                organization_id, user_id,
            )
            return [request_to_dict(r) for r in requests]

    def get_history_for_entity(
        self,
        organization_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[dict[str, Any]]:
        with session_scope(self._session_factory) as session:
            requests = self._services(session).selector.get_history_for_entity(
                organization_id, entity_type, entity_id,
            )
            return [request_to_dict(r) for r in requests]

    def get_overdue_steps(
        self,
        as_of: datetime | None = None,
        organization_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Escalation feed; ``as_of`` defaults to the engine clock."""
        with session_scope(self._session_factory) as session:
            steps = self._services(session).selector.get_overdue_steps(
                as_of or self._clock.now(), organization_id,
            )
            return [overdue_to_dict(s) for s in steps]
