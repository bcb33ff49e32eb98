"""
Pack installer (``approval_config.installer``).

Persists a ``CompiledWorkflowPack`` for one organization through
``WorkflowService``, so every workflow and rule goes through the same
write validation and audit trail as one created by hand.

Flush-only: the caller owns the transaction, which makes an install
all-or-nothing.  Installing the same pack twice creates a second copy;
deduplication is the caller's decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.compiler import CompiledWorkflowPack
from approval_kernel.logging_config import get_logger
from approval_kernel.services.auditor_service import AuditorService, AuditTrail
from approval_kernel.services.workflow_service import WorkflowService

logger = get_logger("config.installer")


@dataclass(frozen=True)
class InstallResult:
    organization_id: str
    checksum: str
    workflow_ids: dict[str, UUID]
    rule_ids: tuple[UUID, ...]


def install_pack(
    session: Session,
    organization_id: str,
    pack: CompiledWorkflowPack,
    actor_id: str,
    auditor: AuditTrail | None = None,
) -> InstallResult:
    """Create every workflow, then every rule, of ``pack``."""
    service = WorkflowService(session, auditor or AuditorService(session))

    workflow_ids: dict[str, UUID] = {}
    for workflow in pack.workflows:
        created = service.create_workflow(
            organization_id=organization_id,
            name=workflow.name,
            entity_type=workflow.entity_type,
            steps=workflow.steps,
            actor_id=actor_id,
            policy=workflow.policy,
            description=workflow.description,
            is_active=workflow.is_active,
        )
        workflow_ids[workflow.key] = created.id

    rule_ids: list[UUID] = []
    for rule in pack.rules:
        created_rule = service.create_rule(
            organization_id=organization_id,
            name=rule.name,
            entity_type=rule.entity_type,
            workflow_id=workflow_ids[rule.workflow_key],
            conditions=rule.conditions,
            actor_id=actor_id,
            priority=rule.priority,
            logic=rule.logic,
            is_active=rule.is_active,
        )
        rule_ids.append(created_rule.id)

    logger.info(
        "workflow_pack_installed",
        extra={
            "organization_id": organization_id,
            "checksum": pack.checksum,
            "workflow_count": len(workflow_ids),
            "rule_count": len(rule_ids),
        },
    )
    return InstallResult(
        organization_id=organization_id,
        checksum=pack.checksum,
        workflow_ids=workflow_ids,
        rule_ids=tuple(rule_ids),
    )
