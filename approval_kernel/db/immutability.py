"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Terminal approval decisions are facts.  Once a step is approved or rejected,
or a request reaches approved / rejected / cancelled, nothing may change it.
The action processor writes every terminal transition through a guarded
``UPDATE ... WHERE status = 'pending'``; these listeners catch the other path,
an ORM object mutated and flushed after it became terminal.

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                | When Immutable                     | Why
----------------------|------------------------------------|-------------------------------
ApprovalStep          | After status is approved/rejected  | A decision is final
ApprovalStep          | Never deletable                    | Steps are never partially removed
ApprovalRequest       | After status leaves pending        | Terminal exactly once
ApprovalRequest       | Never deletable                    | Archival is external
AuditEvent            | ALWAYS (from creation)             | Audit trail is append-only

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY CHECK "WAS TERMINAL" NOT "IS TERMINAL"?
   The transition pending -> approved is itself an update.  We look at the
   attribute history: if the OLD status was already terminal, block.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_STEP = frozenset({"approved", "rejected"})
_TERMINAL_REQUEST = frozenset({"approved", "rejected", "cancelled"})


def _previous_status(target) -> str:
    """Status the row had before the pending flush."""
    history = get_history(target, "status")
    if history.deleted:
        old = history.deleted[0]
    else:
        old = target.status
    return getattr(old, "value", old)


def _block(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_step_immutability(mapper, connection, target):
    """Block any ORM change to a step that was already terminal."""
    if _previous_status(target) not in _TERMINAL_STEP:
        return
    for attr in inspect(target).attrs:
        if attr.history.has_changes():
            _block(
                "ApprovalStep",
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a terminal approval step",
            )


def _check_step_delete(mapper, connection, target):
    _block("ApprovalStep", target, "DELETE", "Approval steps cannot be deleted")


def _check_request_immutability(mapper, connection, target):
    """Block any ORM change to a request that was already terminal."""
    if _previous_status(target) not in _TERMINAL_REQUEST:
        return
    for attr in inspect(target).attrs:
        if attr.key == "steps":
            continue
        if attr.history.has_changes():
            _block(
                "ApprovalRequest",
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a terminal approval request",
            )


def _check_request_delete(mapper, connection, target):
    _block("ApprovalRequest", target, "DELETE", "Approval requests cannot be deleted")


def _check_audit_event_immutability(mapper, connection, target):
    _block(
        "AuditEvent",
        target,
        "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


def _listeners():
    from approval_kernel.models.approval import ApprovalRequestModel, ApprovalStepModel
    from approval_kernel.models.audit_event import AuditEvent

    return (
        (ApprovalStepModel, "before_update", _check_step_immutability),
        (ApprovalStepModel, "before_delete", _check_step_delete),
        (ApprovalRequestModel, "before_update", _check_request_immutability),
        (ApprovalRequestModel, "before_delete", _check_request_delete),
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are skipped.  Called by
    ``create_tables()`` and by the test harness.
    """
    for target, identifier, fn in _listeners():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)


def unregister_immutability_listeners():
    """Remove all listeners. FOR TESTING ONLY."""
    for target, identifier, fn in _listeners():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
