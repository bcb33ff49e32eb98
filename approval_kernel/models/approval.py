"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests and their steps.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Lifecycle: DB check constraints limit status values; the action
      processor performs every terminal transition as a guarded UPDATE
      (``WHERE status = 'pending'``); ORM listeners in db/immutability.py
      block any ORM change to a row that is already terminal.
    - Step groups are rows sharing ``(request_id, step_order)``, served by
      the ``ix_approval_steps_request_order`` index.
    - ``completed_at`` is set iff the request status is not pending.

Failure modes:
    - IntegrityError on an invalid status value.
    - ImmutabilityViolationError on ORM mutation of a terminal row.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.db.types import UTCDateTime

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import ApprovalRequest, ApprovalStep


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Created together with all of its steps in one transaction.
        Status changes only through guarded UPDATEs issued by the action
        processor; terminal statuses never change again.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_approval_requests_valid_status",
        ),
        Index(
            "ix_approval_requests_entity",
            "organization_id", "entity_type", "entity_id", "submitted_at",
        ),
        Index(
            "ix_approval_requests_status",
            "organization_id", "status",
        ),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflows.id"),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    steps: Mapped[list[ApprovalStepModel]] = relationship(
        "ApprovalStepModel",
        back_populates="request",
        order_by=lambda: [ApprovalStepModel.step_order, ApprovalStepModel.approver_id],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} "
            f"{self.entity_type}:{self.entity_id} "
            f"status={self.status}>"
        )

    def to_dto(self, include_steps: bool = True) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            ApprovalRequest as ApprovalRequestDTO,
            RequestStatus,
        )

        return ApprovalRequestDTO(
            id=self.id,
            organization_id=self.organization_id,
            workflow_id=self.workflow_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            entity_data=dict(self.entity_data or {}),
            requested_by=self.requested_by,
            status=RequestStatus(self.status),
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            steps=tuple(s.to_dto() for s in self.steps) if include_steps else (),
        )


class ApprovalStepModel(Base):
    """Persistent approval step (one approver's row of a step group)."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_approval_steps_valid_status",
        ),
        Index("ix_approval_steps_request_order", "request_id", "step_order"),
        Index("ix_approval_steps_approver", "approver_id", "status"),
        Index("ix_approval_steps_delegate", "delegated_to", "status"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    delegated_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    min_approvals: Mapped[int] = mapped_column(Integer, nullable=False)
    required_approvers: Mapped[int] = mapped_column(Integer, nullable=False)
    rejection_policy: Mapped[str] = mapped_column(
        String(20), nullable=False, default="immediate",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    request: Mapped[ApprovalRequestModel] = relationship(
        "ApprovalRequestModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.id} request={self.request_id} "
            f"order={self.step_order} approver={self.approver_id} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        from approval_kernel.domain.workflow import (
            ApprovalStep as ApprovalStepDTO,
            RejectionPolicy,
            StepStatus,
            StepType,
        )

        return ApprovalStepDTO(
            id=self.id,
            request_id=self.request_id,
            step_order=self.step_order,
            step_type=StepType(self.step_type),
            approver_id=self.approver_id,
            delegated_to=self.delegated_to,
            min_approvals=self.min_approvals,
            required_approvers=self.required_approvers,
            rejection_policy=RejectionPolicy(self.rejection_policy),
            status=StepStatus(self.status),
            comments=self.comments,
            action_at=self.action_at,
        )
