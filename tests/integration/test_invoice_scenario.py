"""
End-to-end invoice and employee-change scenarios through the
ApprovalWorkflowEngine facade, with the standard pack installed and every
call committed in its own transaction.
"""

import pytest

from approval_config import get_active_config
from approval_config.installer import install_pack
from approval_kernel.db.engine import session_scope
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    CommentsRequiredError,
    InvalidDelegationError,
    RequestNotPendingError,
)
from approval_kernel.services.auditor_service import AuditorService
from approval_services import ApprovalWorkflowEngine
from tests.factories import ADMIN, ORG, REQUESTER


@pytest.fixture
def engine(session_factory, directory, deterministic_clock):
    pack = get_active_config()
    with session_scope(session_factory) as session:
        install_pack(session, ORG, pack, ADMIN, AuditorService(session, deterministic_clock))
    return ApprovalWorkflowEngine.from_pack(session_factory, directory, pack, deterministic_clock)


def submit_invoice(engine, entity_id, amount):
    return engine.submit_for_approval(ORG, REQUESTER, "invoice", entity_id, {"amount": amount})


class TestStandardInvoice:
    def test_manager_sign_off(self, engine):
        submitted = submit_invoice(engine, "INV-100", 800)

        assert submitted["status"] == "pending"
        assert submitted["message"] == "invoice submitted for approval (1 approver(s))"
        assert engine.get_pending_for_approver(ORG, "manager-1")[0]["id"] == submitted["requestId"]

        approved = engine.approve(ORG, "manager-1", submitted["requestId"])

        assert approved == {
            "success": True,
            "message": "Approval completed. All workflow steps approved.",
            "requestStatus": "approved",
        }
        request = engine.get_request(ORG, submitted["requestId"])
        assert request["status"] == "approved"
        assert request["completedAt"] is not None
        assert request["entityData"] == {"amount": 800, "entityType": "invoice", "entityId": "INV-100"}
        assert request["steps"][0]["status"] == "approved"
        assert engine.get_pending_for_approver(ORG, "manager-1") == []

    def test_requester_cancels(self, engine):
        request_id = submit_invoice(engine, "INV-101", 50)["requestId"]

        assert engine.cancel(ORG, REQUESTER, request_id, "Duplicate") == {
            "success": True,
            "message": "Approval request cancelled.",
            "requestStatus": "cancelled",
        }
        with pytest.raises(RequestNotPendingError):
            engine.approve(ORG, "manager-1", request_id)

    def test_history_for_entity(self, engine, deterministic_clock):
        first = submit_invoice(engine, "INV-102", 50)["requestId"]
        engine.reject(ORG, "manager-1", first, "Wrong amount")
        deterministic_clock.advance(60)
        second = submit_invoice(engine, "INV-102", 60)["requestId"]

        history = engine.get_history_for_entity(ORG, "invoice", "INV-102")

        assert [(r["id"], r["status"]) for r in history] == [(second, "pending"), (first, "rejected")]


class TestLargeInvoice:
    def test_quorum_then_delegated_cfo(self, engine):
        submitted = submit_invoice(engine, "INV-200", 18000)
        request_id = submitted["requestId"]
        assert submitted["message"] == "invoice submitted for approval (3 approver(s))"

        with pytest.raises(CommentsRequiredError):
            engine.approve(ORG, "fin-1", request_id)
        assert engine.get_request(ORG, request_id)["steps"][0]["status"] == "pending"

        first = engine.approve(ORG, "fin-1", request_id, "Matches PO")
        assert first["message"] == "Approval recorded. Awaiting additional approvals for this step."
        second = engine.approve(ORG, "fin-2", request_id, "Checked")
        assert second["message"] == "Approval recorded. Moving to next step (2)."

        progress = engine.get_request_progress(ORG, request_id)
        assert progress == {
            "requestId": request_id,
            "status": "pending",
            "currentStepOrder": 2,
            "totalSteps": 2,
            "resolvedSteps": 1,
        }
        assert engine.get_pending_for_approver(ORG, "fin-3") == []

        delegated = engine.delegate(ORG, "cfo-1", request_id, "deputy-cfo", "Travelling")
        assert delegated == {
            "success": True,
            "message": "Approval step delegated successfully to deputy-cfo.",
        }
        assert [r["id"] for r in engine.get_pending_for_approver(ORG, "deputy-cfo")] == [request_id]

        done = engine.approve(ORG, "deputy-cfo", request_id, "Approved on behalf of the CFO")
        assert done["requestStatus"] == "approved"

        cfo_step = engine.get_request(ORG, request_id)["steps"][-1]
        assert cfo_step["approverId"] == "cfo-1"
        assert cfo_step["delegatedTo"] == "deputy-cfo"
        assert cfo_step["comments"] == "Approved on behalf of the CFO"

    def test_quorum_rejection(self, engine):
        request_id = submit_invoice(engine, "INV-201", 12000)["requestId"]

        first = engine.reject(ORG, "fin-1", request_id, "Missing receipt")
        assert first == {
            "success": True,
            "message": "Rejection recorded. The step can still reach its quorum.",
            "requestStatus": "pending",
        }
        second = engine.reject(ORG, "fin-2", request_id, "Agreed")
        assert second["message"] == "Request rejected."
        assert second["requestStatus"] == "rejected"
        assert engine.get_pending_for_approver(ORG, "cfo-1") == []


class TestEscalationFeed:
    def test_large_invoice_overdue_after_48_hours(self, engine, deterministic_clock):
        request_id = submit_invoice(engine, "INV-300", 30000)["requestId"]
        submit_invoice(engine, "INV-301", 30)

        assert engine.get_overdue_steps() == []
        deterministic_clock.advance_hours(48)

        overdue = engine.get_overdue_steps(organization_id=ORG)
        assert [s["approverId"] for s in overdue] == ["fin-1", "fin-2", "fin-3"]
        assert {s["requestId"] for s in overdue} == {request_id}
        assert overdue[0]["escalationUserIds"] == ["cfo"]


class TestEmployeeChange:
    def test_any_member_of_hr_approves(self, engine):
        request_id = engine.submit_for_approval(
            ORG, REQUESTER, "employee_change", "EMP-9", {"change": {"kind": "salary"}},
        )["requestId"]

        with pytest.raises(InvalidDelegationError):
            engine.delegate(ORG, "hr-1", request_id, "hr-2")

        result = engine.approve(ORG, "hr-2", request_id)
        assert result["requestStatus"] == "approved"


class TestRequestIds:
    @pytest.mark.parametrize("bad_id", ["not-a-uuid", "", "12345"])
    def test_non_uuid_is_not_found(self, engine, bad_id):
        with pytest.raises(ApprovalRequestNotFoundError):
            engine.get_request(ORG, bad_id)
        with pytest.raises(ApprovalRequestNotFoundError):
            engine.approve(ORG, "manager-1", bad_id)
