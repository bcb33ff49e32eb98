"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, jobs, UIs) must be able to tell "stale state, refresh"
apart from "the request itself is invalid" without parsing message strings.
Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (not just a formatted message)

The two caller-facing categories are ``InvalidInputError`` and
``NotFoundError``.  Every concrete error below inherits from one of them,
so a handler may catch the category or the precise type.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- InvalidInputError
    |   +-- InvalidSubmissionError
    |   +-- RequestNotPendingError
    |   +-- WorkflowMisconfiguredError
    |   +-- ApproverResolutionError
    |   +-- InvalidConditionError
    |   +-- InvalidDelegationError
    |   +-- CommentsRequiredError
    |   +-- InvalidWorkflowDefinitionError
    |   +-- WorkflowInUseError
    |
    +-- NotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- NoActionableStepError
    |   +-- NoMatchingRuleError
    |   +-- WorkflowNotFoundError
    |   +-- WorkflowRuleNotFoundError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
InvalidInput    | INVALID_SUBMISSION          | Empty entity type / entity id
                | REQUEST_NOT_PENDING         | Action on a terminal request
                | WORKFLOW_MISCONFIGURED      | Rule matched, workflow has no steps
                | APPROVER_RESOLUTION_FAILED  | Step resolved to an unusable pool
                | INVALID_CONDITION           | Malformed rule condition
                | INVALID_DELEGATION          | Delegation target invalid / disabled
                | COMMENTS_REQUIRED           | Workflow demands comments
                | INVALID_WORKFLOW_DEFINITION | Bad step definitions on write
                | WORKFLOW_IN_USE             | Delete of a workflow with rules
----------------|-----------------------------|-----------------------------------------
NotFound        | APPROVAL_REQUEST_NOT_FOUND  | Unknown id or other organization
                | NO_ACTIONABLE_STEP          | Actor has no pending step (or lost race)
                | NO_MATCHING_RULE            | No active rule matched the entity data
                | WORKFLOW_NOT_FOUND          | Unknown workflow id
                | WORKFLOW_RULE_NOT_FOUND     | Unknown rule id
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | ORM change to a terminal row
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
Config          | CONFIGURATION_INVALID       | YAML pack failed validation
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Caller-facing categories


class InvalidInputError(ApprovalKernelError):
    """The request or action itself is invalid."""

    code: str = "INVALID_INPUT"


class NotFoundError(ApprovalKernelError):
    """Nothing to act on: unknown id, wrong actor, or already resolved."""

    code: str = "NOT_FOUND"


# InvalidInput subclasses


class InvalidSubmissionError(InvalidInputError):
    """A submission field is missing or malformed."""

    code: str = "INVALID_SUBMISSION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid submission field '{field}': {reason}")


class RequestNotPendingError(InvalidInputError):
    """An action was attempted on a request that is no longer pending."""

    code: str = "REQUEST_NOT_PENDING"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is not pending (status: {status})"
        )


class WorkflowMisconfiguredError(InvalidInputError):
    """A rule matched but its workflow cannot produce any approval step."""

    code: str = "WORKFLOW_MISCONFIGURED"

    def __init__(self, workflow_id: str, reason: str):
        self.workflow_id = workflow_id
        self.reason = reason
        super().__init__(f"Workflow {workflow_id} is misconfigured: {reason}")


class ApproverResolutionError(InvalidInputError):
    """Approver resolution produced a pool the step cannot use."""

    code: str = "APPROVER_RESOLUTION_FAILED"

    def __init__(
        self,
        step_order: int,
        approver_type: str,
        approver_ref: str | None,
        reason: str,
    ):
        self.step_order = step_order
        self.approver_type = approver_type
        self.approver_ref = approver_ref
        self.reason = reason
        super().__init__(
            f"Step {step_order} ({approver_type}:{approver_ref}): {reason}"
        )


class InvalidConditionError(InvalidInputError):
    """A rule condition is malformed or uses an unsupported operator."""

    code: str = "INVALID_CONDITION"

    def __init__(self, condition: object, reason: str):
        self.condition = condition
        self.reason = reason
        super().__init__(f"Invalid rule condition {condition!r}: {reason}")


class InvalidDelegationError(InvalidInputError):
    """Delegation target is invalid or the workflow forbids delegation."""

    code: str = "INVALID_DELEGATION"

    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Cannot delegate on request {request_id}: {reason}")


class CommentsRequiredError(InvalidInputError):
    """The workflow requires comments on every decision."""

    code: str = "COMMENTS_REQUIRED"

    def __init__(self, request_id: str, action: str):
        self.request_id = request_id
        self.action = action
        super().__init__(
            f"Comments are required to {action} request {request_id}"
        )


class InvalidWorkflowDefinitionError(InvalidInputError):
    """Workflow step definitions violate structural rules."""

    code: str = "INVALID_WORKFLOW_DEFINITION"

    def __init__(self, workflow_name: str, reason: str):
        self.workflow_name = workflow_name
        self.reason = reason
        super().__init__(f"Invalid workflow '{workflow_name}': {reason}")


class WorkflowInUseError(InvalidInputError):
    """A workflow cannot be deleted while rules or requests reference it."""

    code: str = "WORKFLOW_IN_USE"

    def __init__(self, workflow_id: str, rule_count: int, request_count: int = 0):
        self.workflow_id = workflow_id
        self.rule_count = rule_count
        self.request_count = request_count
        super().__init__(
            f"Workflow {workflow_id} is referenced by {rule_count} rule(s) "
            f"and {request_count} request(s)"
        )


# NotFound subclasses


class ApprovalRequestNotFoundError(NotFoundError):
    """Approval request does not exist in the caller's organization."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class NoActionableStepError(NotFoundError):
    """The actor has no pending, authorized step on the request.

    Also raised when a guarded step update affected zero rows: another
    actor terminated the step first.
    """

    code: str = "NO_ACTIONABLE_STEP"

    def __init__(self, request_id: str, actor_id: str, reason: str = ""):
        self.request_id = request_id
        self.actor_id = actor_id
        self.reason = reason
        message = f"No pending approval step on request {request_id} for {actor_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NoMatchingRuleError(NotFoundError):
    """No active approval rule matched the submitted entity data."""

    code: str = "NO_MATCHING_RULE"

    def __init__(self, organization_id: str, entity_type: str):
        self.organization_id = organization_id
        self.entity_type = entity_type
        super().__init__(
            f"No approval rule matches {entity_type} in organization {organization_id}"
        )


class WorkflowNotFoundError(NotFoundError):
    """Approval workflow does not exist in the caller's organization."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Approval workflow not found: {workflow_id}")


class WorkflowRuleNotFoundError(NotFoundError):
    """Approval rule does not exist in the caller's organization."""

    code: str = "WORKFLOW_RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule not found: {rule_id}")


# Immutability-related exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Terminal approval steps, terminal approval requests and audit events
    never change once written.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit-related exceptions


class AuditError(ApprovalKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Configuration exceptions


class ConfigurationError(ApprovalKernelError):
    """A workflow configuration pack failed validation."""

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            f"Configuration invalid ({len(self.errors)} error(s)): "
            + "; ".join(self.errors)
        )
