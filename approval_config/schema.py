"""
WorkflowPackSource schema.

Defines the human-authored, reviewable source artifact for approval
configuration.  YAML files are parsed into these types by the loader,
checked by the validator and compiled into a CompiledWorkflowPack by the
compiler.

Key distinction:
  WorkflowPackSource   = source artifact (human-authored, versioned)
  CompiledWorkflowPack = runtime artifact (machine-validated, frozen)

Enum-valued fields stay plain strings here; the validator reports
unknown values and the compiler converts them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SettingsDef:
    """Pack-wide engine settings."""

    rule_priority_order: str = "lower_first"
    default_rejection_policy: str = "immediate"


@dataclass(frozen=True)
class PolicyDef:
    """Workflow policy switches as authored."""

    require_comments: bool = False
    allow_delegation: bool = True
    timeout_hours: int | None = None
    escalation_user_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class StepDef:
    step_order: Any
    step_type: str
    approver_type: str
    approver_ref: str
    min_approvals: Any = None
    rejection_policy: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class WorkflowDef:
    """A workflow, referenced by rules through its ``key``."""

    key: str
    name: str
    entity_type: str
    steps: tuple[StepDef, ...]
    policy: PolicyDef = PolicyDef()
    is_active: bool = True
    description: str | None = None


@dataclass(frozen=True)
class RuleDef:
    """A rule; ``conditions`` keep their stored dict form until compiled."""

    name: str
    entity_type: str
    workflow: str
    conditions: tuple[dict[str, Any], ...]
    priority: Any = 0
    logic: str = "AND"
    is_active: bool = True


@dataclass(frozen=True)
class WorkflowPackSource:
    """The complete human-authored pack."""

    settings: SettingsDef
    workflows: tuple[WorkflowDef, ...]
    rules: tuple[RuleDef, ...]
    checksum: str
    source_path: str = ""
