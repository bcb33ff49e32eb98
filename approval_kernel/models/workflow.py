"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow definitions, their step
    definitions, and the rules that select them.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - UNIQUE(workflow_id, step_order): step order is unique within a workflow.
    - Rule conditions are stored in their serialized dict form and parsed
      back into the closed condition variants by ``to_dto()``.
    - ``created_seq`` on rules is allocated by SequenceService and gives a
      stable creation order for priority ties.

Failure modes:
    - IntegrityError on duplicate step_order within a workflow.
    - InvalidConditionError from ``ApprovalRuleModel.to_dto()`` if stored
      conditions were tampered with outside WorkflowService.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import (
        ApprovalWorkflow,
        StepDefinition,
        WorkflowRule,
    )


class ApprovalWorkflowModel(TrackedBase):
    """Persistent workflow definition."""

    __tablename__ = "approval_workflows"

    __table_args__ = (
        Index(
            "ix_approval_workflows_org_entity",
            "organization_id", "entity_type", "is_active",
        ),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    policy: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    steps: Mapped[list[ApprovalWorkflowStepModel]] = relationship(
        "ApprovalWorkflowStepModel",
        back_populates="workflow",
        order_by="ApprovalWorkflowStepModel.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.id} {self.name} ({self.entity_type})>"

    def to_dto(self) -> ApprovalWorkflow:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            ApprovalWorkflow as ApprovalWorkflowDTO,
            WorkflowPolicy,
        )

        return ApprovalWorkflowDTO(
            id=self.id,
            organization_id=self.organization_id,
            name=self.name,
            entity_type=self.entity_type,
            is_active=self.is_active,
            steps=tuple(s.to_dto() for s in self.steps),
            policy=WorkflowPolicy.from_dict(self.policy),
            description=self.description,
        )


class ApprovalWorkflowStepModel(TrackedBase):
    """Persistent step definition of a workflow."""

    __tablename__ = "approval_workflow_steps"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "step_order",
            name="uq_approval_workflow_steps_order",
        ),
        CheckConstraint(
            "step_type IN ('single', 'parallel', 'any')",
            name="ck_approval_workflow_steps_type",
        ),
        CheckConstraint(
            "approver_type IN ('user', 'role', 'team')",
            name="ck_approval_workflow_steps_approver_type",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_type: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    min_approvals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rejection_policy: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    workflow: Mapped[ApprovalWorkflowModel] = relationship(
        "ApprovalWorkflowModel",
        back_populates="steps",
    )

    def to_dto(self) -> StepDefinition:
        from approval_kernel.domain.workflow import (
            ApproverType,
            RejectionPolicy,
            StepDefinition as StepDefinitionDTO,
            StepType,
        )

        return StepDefinitionDTO(
            id=self.id,
            step_order=self.step_order,
            step_type=StepType(self.step_type),
            approver_type=ApproverType(self.approver_type),
            approver_ref=self.approver_ref,
            min_approvals=self.min_approvals,
            rejection_policy=(
                RejectionPolicy(self.rejection_policy)
                if self.rejection_policy
                else None
            ),
            is_active=self.is_active,
        )


class ApprovalRuleModel(TrackedBase):
    """Persistent rule selecting a workflow for an entity type."""

    __tablename__ = "approval_rules"

    __table_args__ = (
        Index(
            "ix_approval_rules_candidates",
            "organization_id", "entity_type", "is_active",
        ),
        CheckConstraint(
            "logic IN ('AND', 'OR')",
            name="ck_approval_rules_logic",
        ),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    logic: Mapped[str] = mapped_column(String(3), nullable=False, default="AND")
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflows.id"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.id} {self.name} priority={self.priority}>"

    def to_dto(self) -> WorkflowRule:
        """Convert ORM model to frozen domain DTO (conditions parsed)."""
        from approval_kernel.domain.conditions import RuleLogic, parse_conditions
        from approval_kernel.domain.workflow import WorkflowRule as WorkflowRuleDTO

        return WorkflowRuleDTO(
            id=self.id,
            organization_id=self.organization_id,
            name=self.name,
            entity_type=self.entity_type,
            priority=self.priority,
            conditions=parse_conditions(self.conditions or []),
            logic=RuleLogic(self.logic),
            workflow_id=self.workflow_id,
            is_active=self.is_active,
            created_seq=self.created_seq,
        )
