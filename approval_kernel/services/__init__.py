"""Services for the approval kernel (write side)."""

from approval_kernel.services.action_processor import ApprovalActionProcessor
from approval_kernel.services.auditor_service import (
    AuditorService,
    AuditTrace,
    AuditTraceEntry,
    AuditTrail,
)
from approval_kernel.services.rule_matcher import RuleMatcher
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.step_planner import WorkflowStepPlanner
from approval_kernel.services.submission_service import ApprovalRequestManager
from approval_kernel.services.workflow_service import WorkflowService

__all__ = [
    "ApprovalActionProcessor",
    "ApprovalRequestManager",
    "AuditTrace",
    "AuditTraceEntry",
    "AuditTrail",
    "AuditorService",
    "RuleMatcher",
    "SequenceService",
    "WorkflowService",
    "WorkflowStepPlanner",
]
