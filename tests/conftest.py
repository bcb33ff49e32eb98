"""
Pytest fixtures for the approval workflow test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path, or DATABASE_URL)
- Rollback-isolated sessions and a committing session factory
- Kernel service fixtures wired the way ApprovalWorkflowEngine wires them
- Factory fixtures for workflows and rules

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL.  When unset, every test gets its
  own SQLite file.  Tests marked ``postgres`` are skipped on SQLite.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.db.immutability import register_immutability_listeners
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.domain.workflow import (
    ApproverType,
    StaticApproverDirectory,
    WorkflowPolicy,
)
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.action_processor import ApprovalActionProcessor
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.rule_matcher import RuleMatcher
from approval_kernel.services.step_planner import WorkflowStepPlanner
from approval_kernel.services.submission_service import ApprovalRequestManager
from approval_kernel.services.workflow_service import WorkflowService
from tests.factories import ADMIN, ORG, OTHER_ORG, REQUESTER, step


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, request_manager):
            request_manager.submit_for_approval(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_request_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL (DATABASE_URL)"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def get_database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approvals.db'}"


def pytest_collection_modifyitems(config, items):
    url = os.environ.get("DATABASE_URL", "")
    if url.startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """A fresh schema for every test."""
    eng = init_engine_from_url(
        get_database_url(tmp_path),
        echo=False,
        pool_size=10, max_overflow=10, pool_timeout=10,
    )
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction that is rolled back at
    teardown; ``session.commit()`` inside a test only releases a
    savepoint.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def session_factory(db_engine):
    """Session factory performing real commits (facade and concurrency tests).

    Do not combine with the ``session`` fixture in one test: on SQLite
    the rollback-isolated session holds the write lock.
    """
    return get_session_factory()


# =============================================================================
# Clock, directory and service fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def directory() -> StaticApproverDirectory:
    """Approver directory shared by most tests."""
    d = StaticApproverDirectory()
    d.add(ORG, ApproverType.ROLE, "finance_manager", ["manager-1"])
    d.add(ORG, ApproverType.ROLE, "cfo", ["cfo-1"])
    d.add(ORG, ApproverType.TEAM, "finance", ["fin-1", "fin-2", "fin-3"])
    d.add(ORG, ApproverType.TEAM, "hr", ["hr-1", "hr-2"])
    d.add(ORG, ApproverType.TEAM, "empty", [])
    d.add(OTHER_ORG, ApproverType.ROLE, "finance_manager", ["other-manager"])
    return d


@pytest.fixture
def auditor_service(session: Session, deterministic_clock):
    """Provide an AuditorService instance."""
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def workflow_service(session: Session, auditor_service) -> WorkflowService:
    return WorkflowService(session, auditor_service)


@pytest.fixture
def rule_matcher(session: Session) -> RuleMatcher:
    return RuleMatcher(session)


@pytest.fixture
def step_planner(directory) -> WorkflowStepPlanner:
    return WorkflowStepPlanner(directory)


@pytest.fixture
def request_manager(
    session, rule_matcher, step_planner, auditor_service, deterministic_clock,
) -> ApprovalRequestManager:
    return ApprovalRequestManager(
        session, rule_matcher, step_planner, auditor_service, deterministic_clock,
    )


@pytest.fixture
def action_processor(session, auditor_service, deterministic_clock) -> ApprovalActionProcessor:
    return ApprovalActionProcessor(session, auditor_service, deterministic_clock)


@pytest.fixture
def approval_selector(session) -> ApprovalSelector:
    return ApprovalSelector(session)


# =============================================================================
# Factory fixtures
# =============================================================================


@pytest.fixture
def create_workflow(workflow_service):
    """Factory fixture: persist a workflow and return its DTO."""

    def _create(
        steps=None,
        entity_type: str = "invoice",
        name: str = "Invoice approval",
        policy: WorkflowPolicy | None = None,
        organization_id: str = ORG,
        is_active: bool = True,
    ):
        return workflow_service.create_workflow(
            organization_id=organization_id,
            name=name,
            entity_type=entity_type,
            steps=steps if steps is not None else [step(1)],
            actor_id=ADMIN,
            policy=policy,
            is_active=is_active,
        )

    return _create


@pytest.fixture
def create_rule(workflow_service):
    """Factory fixture: persist a rule selecting ``workflow``."""

    def _create(
        workflow,
        conditions=None,
        priority: int = 0,
        logic: str = "AND",
        name: str = "Rule",
        is_active: bool = True,
    ):
        return workflow_service.create_rule(
            organization_id=workflow.organization_id,
            name=name,
            entity_type=workflow.entity_type,
            workflow_id=workflow.id,
            conditions=conditions if conditions is not None else [{"type": "manual"}],
            actor_id=ADMIN,
            priority=priority,
            logic=logic,
            is_active=is_active,
        )

    return _create


@pytest.fixture
def routed_workflow(create_workflow, create_rule):
    """Factory fixture: a workflow plus a manual rule that always selects it."""

    def _create(steps=None, policy: WorkflowPolicy | None = None, entity_type: str = "invoice"):
        workflow = create_workflow(steps=steps, policy=policy, entity_type=entity_type)
        create_rule(workflow)
        return workflow

    return _create


@pytest.fixture
def submit(request_manager):
    """Factory fixture: submit an invoice and return the SubmissionResult."""

    def _submit(
        entity_id: str = "INV-1",
        entity_data: dict | None = None,
        entity_type: str = "invoice",
        organization_id: str = ORG,
        requested_by: str = REQUESTER,
    ):
        return request_manager.submit_for_approval(
            organization_id,
            requested_by,
            entity_type,
            entity_id,
            entity_data if entity_data is not None else {"amount": 1000, "currency": "USD"},
        )

    return _submit
