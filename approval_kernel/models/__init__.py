"""ORM models for the approval kernel."""

from approval_kernel.models.approval import ApprovalRequestModel, ApprovalStepModel
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.models.sequence import SequenceCounter
from approval_kernel.models.workflow import (
    ApprovalRuleModel,
    ApprovalWorkflowModel,
    ApprovalWorkflowStepModel,
)


def import_all_models() -> list[type]:
    """Return every mapped model so Base.metadata knows all tables."""
    return [
        ApprovalWorkflowModel,
        ApprovalWorkflowStepModel,
        ApprovalRuleModel,
        ApprovalRequestModel,
        ApprovalStepModel,
        AuditEvent,
        SequenceCounter,
    ]


__all__ = [
    "ApprovalRequestModel",
    "ApprovalStepModel",
    "ApprovalRuleModel",
    "ApprovalWorkflowModel",
    "ApprovalWorkflowStepModel",
    "AuditAction",
    "AuditEvent",
    "SequenceCounter",
    "import_all_models",
]
