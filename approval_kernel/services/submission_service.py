"""
ApprovalRequestManager -- submission of entities for approval.

Responsibility:
    Orchestrates ``submit_for_approval``: validate the submission, match a
    rule to a workflow, plan the concrete steps, and persist the request
    together with all of its steps.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  The caller's
    transaction makes the request and its steps all-or-nothing: either
    the whole set is committed or nothing is.

Invariants enforced:
    - entity_type and entity_id are non-empty strings.
    - A request is never persisted without its full planned step set.
    - The entity data snapshot is stored as submitted (plus ``entityType``
      and ``entityId`` when absent) and never re-evaluated later.
    - Submission is not idempotent: each call creates a new request.

Failure modes:
    - InvalidSubmissionError on malformed input, including NaN or
      infinite numbers anywhere in entity_data.
    - NoMatchingRuleError when no rule matches.
    - WorkflowMisconfiguredError / ApproverResolutionError from matching
      and planning.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from approval_engines.planning import first_group_size
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.conditions import ENTITY_TYPE_KEY
from approval_kernel.domain.workflow import RequestStatus, StepStatus, SubmissionResult
from approval_kernel.exceptions import InvalidSubmissionError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalRequestModel, ApprovalStepModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.auditor_service import AuditTrail
from approval_kernel.services.base import BaseService
from approval_kernel.services.rule_matcher import RuleMatcher
from approval_kernel.services.step_planner import WorkflowStepPlanner

logger = get_logger("services.submission")

ENTITY_ID_KEY = "entityId"


def _require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidSubmissionError(field, "must be a non-empty string")
    return value


def json_safe(value: Any) -> Any:
    """Copy of ``value`` that a JSON column can store."""
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidSubmissionError("entity_data", "non-finite number")
    if isinstance(value, bool) or value is None or isinstance(value, (str, int, float)):
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidSubmissionError("entity_data", "non-finite number")
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return json_safe(value.value)
    return str(value)


class ApprovalRequestManager(BaseService[ApprovalRequestModel]):
    """Creates approval requests."""

    def __init__(
        self,
        session: Session,
        matcher: RuleMatcher,
        planner: WorkflowStepPlanner,
        auditor: AuditTrail,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._matcher = matcher
        self._planner = planner
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def submit_for_approval(
        self,
        organization_id: str,
        requested_by: str,
        entity_type: str,
        entity_id: str,
        entity_data: Mapping[str, Any] | None = None,
    ) -> SubmissionResult:
        """Submit an entity for approval.

        Returns:
            SubmissionResult with the new request id, the matched workflow,
            status ``pending`` and a message naming the number of approvers
            in the first step group.
        """
        _require_text("organization_id", organization_id)
        _require_text("requested_by", requested_by)
        _require_text("entity_type", entity_type)
        _require_text("entity_id", entity_id)
        if entity_data is None:
            entity_data = {}
        if not isinstance(entity_data, Mapping):
            raise InvalidSubmissionError("entity_data", "must be a mapping")

        snapshot: dict[str, Any] = dict(entity_data)
        snapshot.setdefault(ENTITY_TYPE_KEY, entity_type)
        snapshot.setdefault(ENTITY_ID_KEY, entity_id)
        stored_data = json_safe(snapshot)

        with LogContext.bind(organization_id=organization_id, actor_id=requested_by):
            rule, workflow = self._matcher.match(organization_id, entity_type, snapshot)
            planned = self._planner.plan(workflow, organization_id)

            now = self._clock.now()
            request = ApprovalRequestModel(
                organization_id=organization_id,
                workflow_id=workflow.id,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_data=stored_data,
                requested_by=requested_by,
                status=RequestStatus.PENDING.value,
                submitted_at=now,
                completed_at=None,
            )
            self.session.add(request)
            self.session.flush()

            self.session.add_all(
                ApprovalStepModel(
                    request_id=request.id,
                    step_order=p.step_order,
                    step_type=p.step_type.value,
                    approver_id=p.approver_id,
                    delegated_to=None,
                    min_approvals=p.min_approvals,
                    required_approvers=p.required_approvers,
                    rejection_policy=p.rejection_policy.value,
                    status=StepStatus.PENDING.value,
                )
                for p in planned
            )
            self.session.flush()

            approver_count = first_group_size(planned)
            self._auditor.record(
                "ApprovalRequest",
                request.id,
                AuditAction.APPROVAL_SUBMITTED,
                requested_by,
                {
                    "organization_id": organization_id,
                    "workflow_id": str(workflow.id),
                    "rule_id": str(rule.id),
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "step_count": len(planned),
                    "first_step_approvers": approver_count,
                },
            )

            logger.info(
                "approval_request_submitted",
                extra={
                    "request_id": str(request.id),
                    "workflow_id": str(workflow.id),
                    "rule_id": str(rule.id),
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "step_count": len(planned),
                    "first_step_approvers": approver_count,
                },
            )

        return SubmissionResult(
            request_id=request.id,
            workflow_id=workflow.id,
            status=RequestStatus.PENDING,
            message=f"{entity_type} submitted for approval ({approver_count} approver(s))",
        )
