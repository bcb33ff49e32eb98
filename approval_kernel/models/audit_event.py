"""
Module: approval_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Minimum coverage (each action type generates at least one AuditEvent):
    - APPROVAL_SUBMITTED, APPROVAL_CANCELLED
    - APPROVAL_STEP_APPROVED, APPROVAL_STEP_REJECTED, APPROVAL_STEP_DELEGATED
    - APPROVAL_REQUEST_APPROVED, APPROVAL_REQUEST_REJECTED
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base
from approval_kernel.db.types import UTCDateTime


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Request lifecycle
    APPROVAL_SUBMITTED = "approval_submitted"
    APPROVAL_REQUEST_APPROVED = "approval_request_approved"
    APPROVAL_REQUEST_REJECTED = "approval_request_rejected"
    APPROVAL_CANCELLED = "approval_cancelled"

    # Step lifecycle
    APPROVAL_STEP_APPROVED = "approval_step_approved"
    APPROVAL_STEP_REJECTED = "approval_step_rejected"
    APPROVAL_STEP_DELEGATED = "approval_step_delegated"

    # Administration
    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_UPDATED = "workflow_updated"
    WORKFLOW_ACTIVATED = "workflow_activated"
    WORKFLOW_DEACTIVATED = "workflow_deactivated"
    WORKFLOW_DELETED = "workflow_deleted"
    RULE_CREATED = "rule_created"
    RULE_ACTIVATED = "rule_activated"
    RULE_DEACTIVATED = "rule_deactivated"
    RULE_DELETED = "rule_deleted"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.
        Each row's hash includes the previous row's hash.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    # Monotonic sequence for ordering
    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    # Type of entity being audited (e.g., "ApprovalRequest", "ApprovalWorkflow")
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    actor_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # Hash of the previous audit event (null for first event)
    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    # hash = H(entity_type + entity_id + action + payload_hash + prev_hash)
    hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        """Check if this is the first event in the hash chain."""
        return self.prev_hash is None
