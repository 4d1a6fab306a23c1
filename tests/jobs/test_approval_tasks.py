"""
Approval escalation as a job.

The handler opens its own transaction, so these tests seed data through
``session_scope`` and never use the shared ``session`` fixture.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from erp_jobs.domain.types import ExecutionStatus
from erp_jobs.services import JobService, JobWorker
from erp_jobs.tasks import HandlerRegistry
from erp_jobs.tasks.approval_tasks import (
    ESCALATE_OVERDUE_HANDLER,
    EscalateOverdueApprovalsHandler,
    register_approval_tasks,
)
from erp_kernel.db.engine import session_scope
from erp_kernel.domain.approval import ApprovalRequestStatus
from erp_kernel.exceptions import ValidationError
from erp_kernel.services.approval_service import ApprovalService
from erp_kernel.services.approval_workflow_service import ApprovalWorkflowService


@pytest.fixture
def overdue_requests(session_factory, deterministic_clock, two_level_workflow, approvers):
    """Submit ``count`` requests, then move the clock past their level-1 due date."""

    def _seed(count: int) -> list:
        with session_scope(session_factory) as session:
            ApprovalWorkflowService(session, deterministic_clock).create_workflow(two_level_workflow())
            service = ApprovalService(session, deterministic_clock)
            ids = [
                service.submit_for_approval(
                    "expense", uuid4(), f"EXP-{n}", approvers["requester"], 50_000,
                ).id
                for n in range(count)
            ]
        deterministic_clock.advance(timedelta(hours=25))
        return ids

    return _seed


def _status(session_factory, clock, request_id):
    with session_scope(session_factory) as session:
        return ApprovalService(session, clock).get_request(request_id).status


class TestEscalateOverdueHandler:

    def test_escalates_and_reports_count(self, session_factory, deterministic_clock, overdue_requests):
        ids = overdue_requests(2)
        handler = EscalateOverdueApprovalsHandler(session_factory, deterministic_clock)

        result = handler.invoke({}, deterministic_clock.now() + timedelta(minutes=5))

        assert result == {"escalated": 2}
        assert all(
            _status(session_factory, deterministic_clock, rid) is ApprovalRequestStatus.ESCALATED
            for rid in ids
        )

    def test_limit_caps_each_run(self, session_factory, deterministic_clock, overdue_requests):
        overdue_requests(3)
        handler = EscalateOverdueApprovalsHandler(session_factory, deterministic_clock)
        deadline = deterministic_clock.now()

        assert handler.invoke({"limit": 2}, deadline) == {"escalated": 2}
        assert handler.invoke({"limit": 2}, deadline) == {"escalated": 1}

    @pytest.mark.parametrize("limit", [0, -1, "10", True, 2.5])
    def test_invalid_limit(self, session_factory, deterministic_clock, limit):
        handler = EscalateOverdueApprovalsHandler(session_factory, deterministic_clock)
        with pytest.raises(ValidationError):
            handler.invoke({"limit": limit}, deterministic_clock.now())

    def test_nothing_overdue(self, session_factory, deterministic_clock):
        handler = EscalateOverdueApprovalsHandler(session_factory, deterministic_clock)
        assert handler.invoke({}, deterministic_clock.now()) == {"escalated": 0}


class TestRegistration:

    def test_registered_under_well_known_key(self, session_factory, deterministic_clock):
        registry = HandlerRegistry()
        register_approval_tasks(registry, session_factory, deterministic_clock)

        assert registry.list_handlers() == (ESCALATE_OVERDUE_HANDLER,)
        assert isinstance(registry.get(ESCALATE_OVERDUE_HANDLER), EscalateOverdueApprovalsHandler)

    def test_runs_through_worker(self, session_factory, deterministic_clock, overdue_requests):
        overdue_requests(1)
        registry = HandlerRegistry()
        register_approval_tasks(registry, session_factory, deterministic_clock)
        registry.freeze()
        with session_scope(session_factory) as session:
            job = JobService(session, deterministic_clock, registry=registry).submit(
                "escalate-approvals", ESCALATE_OVERDUE_HANDLER,
            )

        with JobWorker(session_factory, registry, deterministic_clock, concurrency=1) as worker:
            (outcome,) = worker.run_once()

        assert outcome.status is ExecutionStatus.COMPLETED
        with session_scope(session_factory) as session:
            execution = JobService(session, deterministic_clock).list_executions(job.id).items[0]
        assert execution.result == {"escalated": 1}
