"""
approval_services -- Package init and public API.

Responsibility:
    Transactional facade over the approval kernel.  This is the only layer
    that opens and commits database transactions.

Architecture position:
    Services -- top layer.

    Dependency direction:
        approval_services/ -> approval_kernel/, approval_engines/, approval_config/
        approval_kernel/   -> approval_services/ (FORBIDDEN)
        approval_engines/  -> approval_services/ (FORBIDDEN)
"""

from approval_services.engine import (
    ApprovalWorkflowEngine,
    coerce_request_id,
    overdue_to_dict,
    progress_to_dict,
    request_to_dict,
    step_to_dict,
)

__all__ = [
    "ApprovalWorkflowEngine",
    "coerce_request_id",
    "overdue_to_dict",
    "progress_to_dict",
    "request_to_dict",
    "step_to_dict",
]
