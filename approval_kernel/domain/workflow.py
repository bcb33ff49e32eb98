"""
Approval workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval workflow engine.  Defines the request
and step lifecycle state machines, workflow / step definitions, rules,
planned steps, persisted request and step records, and the result shapes
returned to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Request lifecycle: ``pending -> {approved, rejected, cancelled}``
  exactly once.  ``REQUEST_TRANSITIONS`` lists the only legal edges.
* Step lifecycle: ``pending -> {approved, rejected}``; terminal steps are
  immutable.
* A step's authorized actor is ``approver_id`` or, when set,
  ``delegated_to`` (``ApprovalStep.is_authorized``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from approval_kernel.domain.conditions import Condition, RuleLogic


# =========================================================================
# Enumerations
# =========================================================================


class StepType(str, Enum):
    """How a step group is satisfied."""

    SINGLE = "single"
    PARALLEL = "parallel"
    ANY = "any"


class ApproverType(str, Enum):
    """How a step's ``approver_ref`` is interpreted."""

    USER = "user"
    ROLE = "role"
    TEAM = "team"


class RequestStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Approval step lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepAction(str, Enum):
    """Terminal actions an approver can take on a step."""

    APPROVE = "approve"
    REJECT = "reject"


class RejectionPolicy(str, Enum):
    """How a rejection inside a step group affects the group.

    ``IMMEDIATE``: one rejection rejects the group (and the request).
    ``QUORUM``: the group is rejected only once the approvals still
    obtainable can no longer reach ``min_approvals``.
    """

    IMMEDIATE = "immediate"
    QUORUM = "quorum"


class RulePriorityOrder(str, Enum):
    """Direction of the rule priority comparator."""

    LOWER_FIRST = "lower_first"
    HIGHER_FIRST = "higher_first"


class GroupOutcome(str, Enum):
    """Resolution of one step group (rows sharing a ``step_order``)."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.APPROVED, StepStatus.REJECTED}),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
})

TERMINAL_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.REJECTED,
})

STEP_STATUS_FOR_ACTION: dict[StepAction, StepStatus] = {
    StepAction.APPROVE: StepStatus.APPROVED,
    StepAction.REJECT: StepStatus.REJECTED,
}


# =========================================================================
# Workflow definitions
# =========================================================================


@dataclass(frozen=True)
class WorkflowPolicy:
    """Workflow-wide behaviour switches.

    ``timeout_hours`` and ``escalation_user_ids`` are carried for an
    external escalation scheduler; this package never acts on them.
    """

    require_comments: bool = False
    allow_delegation: bool = True
    timeout_hours: int | None = None
    escalation_user_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "require_comments": self.require_comments,
            "allow_delegation": self.allow_delegation,
            "timeout_hours": self.timeout_hours,
            "escalation_user_ids": list(self.escalation_user_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> WorkflowPolicy:
        data = data or {}
        return cls(
            require_comments=bool(data.get("require_comments", False)),
            allow_delegation=bool(data.get("allow_delegation", True)),
            timeout_hours=data.get("timeout_hours"),
            escalation_user_ids=tuple(data.get("escalation_user_ids") or ()),
        )


@dataclass(frozen=True)
class StepDefinition:
    """One configured step of a workflow.

    ``min_approvals=None`` means "use the step type default": 1 for
    ``single`` and ``any``, the resolved pool size for ``parallel``.
    ``rejection_policy=None`` means "use the configured default".
    """

    step_order: int
    step_type: StepType
    approver_type: ApproverType
    approver_ref: str
    min_approvals: int | None = None
    rejection_policy: RejectionPolicy | None = None
    is_active: bool = True
    id: UUID | None = None


@dataclass(frozen=True)
class ApprovalWorkflow:
    """A workflow definition with its ordered step definitions."""

    id: UUID
    organization_id: str
    name: str
    entity_type: str
    is_active: bool
    steps: tuple[StepDefinition, ...]
    policy: WorkflowPolicy = field(default_factory=WorkflowPolicy)
    description: str | None = None

    @property
    def active_steps(self) -> tuple[StepDefinition, ...]:
        """Active step definitions, ``step_order`` ascending."""
        return tuple(
            sorted(
                (s for s in self.steps if s.is_active),
                key=lambda s: s.step_order,
            )
        )


@dataclass(frozen=True)
class WorkflowRule:
    """A declarative condition set selecting a workflow.

    ``created_seq`` is the creation sequence, the stable fallback when two
    matching rules share a priority.
    """

    id: UUID
    organization_id: str
    name: str
    entity_type: str
    priority: int
    conditions: tuple[Condition, ...]
    logic: RuleLogic
    workflow_id: UUID
    is_active: bool = True
    created_seq: int = 0


# =========================================================================
# Planning and persisted records
# =========================================================================


@dataclass(frozen=True)
class PlannedStep:
    """One approval step row to be persisted for a new request."""

    step_order: int
    step_type: StepType
    approver_id: str
    min_approvals: int
    required_approvers: int
    rejection_policy: RejectionPolicy


@dataclass(frozen=True)
class ApprovalStep:
    """Persisted approval step (one row of a step group)."""

    id: UUID
    request_id: UUID
    step_order: int
    step_type: StepType
    approver_id: str
    delegated_to: str | None
    min_approvals: int
    required_approvers: int
    rejection_policy: RejectionPolicy
    status: StepStatus
    comments: str | None = None
    action_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES

    @property
    def acting_user(self) -> str:
        return self.delegated_to or self.approver_id

    def is_authorized(self, actor_id: str) -> bool:
        return actor_id == self.approver_id or (
            self.delegated_to is not None and actor_id == self.delegated_to
        )


@dataclass(frozen=True)
class ApprovalRequest:
    """Persisted approval request with its steps."""

    id: UUID
    organization_id: str
    workflow_id: UUID
    entity_type: str
    entity_id: str
    entity_data: dict[str, Any]
    requested_by: str
    status: RequestStatus
    submitted_at: datetime
    completed_at: datetime | None = None
    steps: tuple[ApprovalStep, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES


# =========================================================================
# Results
# =========================================================================


@dataclass(frozen=True)
class SubmissionResult:
    request_id: UUID
    workflow_id: UUID
    status: RequestStatus
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "requestId": str(self.request_id),
            "workflowId": str(self.workflow_id),
            "status": self.status.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str
    request_status: RequestStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "requestStatus": self.request_status.value,
        }


@dataclass(frozen=True)
class DelegationResult:
    success: bool
    message: str
    delegated_to: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass(frozen=True)
class RequestEvaluation:
    """Request-level outcome derived from all step rows of a request.

    ``current_step_order`` is the lowest step order whose group is not yet
    approved (None once every group is approved or the request is rejected).
    """

    status: RequestStatus
    current_step_order: int | None
    group_outcomes: tuple[tuple[int, GroupOutcome], ...]

    @property
    def total_groups(self) -> int:
        return len(self.group_outcomes)

    @property
    def resolved_groups(self) -> int:
        return sum(1 for _, o in self.group_outcomes if o is not GroupOutcome.PENDING)

    def outcome_for(self, step_order: int) -> GroupOutcome:
        for order, outcome in self.group_outcomes:
            if order == step_order:
                return outcome
        raise KeyError(step_order)


@dataclass(frozen=True)
class RequestProgress:
    """Where a request stands across its step groups."""

    request_id: UUID
    status: RequestStatus
    current_step_order: int | None
    total_steps: int
    resolved_steps: int


# =========================================================================
# Collaborators
# =========================================================================


class ApproverDirectory(Protocol):
    """Resolves ``role`` / ``team`` approver references to user ids."""

    def resolve_approvers(
        self,
        organization_id: str,
        approver_type: ApproverType,
        approver_ref: str,
    ) -> list[str]:
        ...


class StaticApproverDirectory:
    """In-memory directory keyed by (organization, approver type, ref).

    ``user`` references resolve to themselves.
    """

    def __init__(
        self,
        memberships: dict[tuple[str, str, str], list[str]] | None = None,
    ):
        self._memberships: dict[tuple[str, str, str], list[str]] = {}
        for key, users in (memberships or {}).items():
            self._memberships[key] = list(users)

    def add(
        self,
        organization_id: str,
        approver_type: ApproverType | str,
        approver_ref: str,
        user_ids: list[str],
    ) -> None:
        key = (organization_id, ApproverType(approver_type).value, approver_ref)
        self._memberships[key] = list(user_ids)

    def resolve_approvers(
        self,
        organization_id: str,
        approver_type: ApproverType,
        approver_ref: str,
    ) -> list[str]:
        approver_type = ApproverType(approver_type)
        if approver_type is ApproverType.USER:
            return [approver_ref]
        key = (organization_id, approver_type.value, approver_ref)
        return list(self._memberships.get(key, ()))
