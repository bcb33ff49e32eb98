"""
Pure domain layer.

Value objects and enumerations for approval workflows with NO
dependencies on the ORM, the database or I/O.  All domain objects are
immutable.
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.conditions import (
    AmountCondition,
    Condition,
    ConditionOperator,
    ConditionType,
    EntityTypeCondition,
    FieldCondition,
    ManualCondition,
    RuleLogic,
    UserRoleCondition,
    condition_to_dict,
    parse_condition,
    parse_conditions,
)
from approval_kernel.domain.workflow import (
    ActionResult,
    ApprovalRequest,
    ApprovalStep,
    ApprovalWorkflow,
    ApproverDirectory,
    ApproverType,
    DelegationResult,
    GroupOutcome,
    PlannedStep,
    RejectionPolicy,
    RequestEvaluation,
    RequestProgress,
    RequestStatus,
    RulePriorityOrder,
    StaticApproverDirectory,
    StepAction,
    StepDefinition,
    StepStatus,
    StepType,
    SubmissionResult,
    WorkflowPolicy,
    WorkflowRule,
)
