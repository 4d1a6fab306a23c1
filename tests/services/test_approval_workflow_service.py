"""
Tests for ApprovalWorkflowService.

Covers:
- Creation with structural validation and unique codes
- Patching with version bumps and optimistic version checks
- Level edits blocked while requests are open
- Activation / deactivation
- Deletion guarded by referencing requests
"""

from uuid import uuid4

import pytest

from erp_kernel.domain.approval import ApprovalLevel, ApprovalType, ApproverType, WorkflowStatus
from erp_kernel.domain.enums import AuditAction
from erp_kernel.domain.pagination import Pagination
from erp_kernel.exceptions import (
    DuplicateKeyError,
    InvalidWorkflowDefinitionError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
    WorkflowInUseError,
)
from erp_kernel.services.approval_service import ApprovalService
from erp_kernel.services.approval_workflow_service import ApprovalWorkflowService, coerce_level
from erp_kernel.services.audit_service import AuditService


@pytest.fixture
def workflows(session, deterministic_clock) -> ApprovalWorkflowService:
    return ApprovalWorkflowService(session, deterministic_clock)


@pytest.fixture
def open_request(session, deterministic_clock, approvers):
    def _open(workflow):
        return ApprovalService(session, deterministic_clock).submit_for_approval(
            workflow.document_type, uuid4(), "EXP-1", approvers["requester"], 50_000,
        )

    return _open


class TestCreate:

    def test_create_and_read_back(self, workflows, two_level_workflow, test_actor_id):
        created = workflows.create_workflow(two_level_workflow(), actor_id=test_actor_id)

        loaded = workflows.get_workflow(created.id)
        assert loaded.code == "EXP-STD"
        assert loaded.version == 1
        assert loaded.created_by == test_actor_id
        assert loaded.levels == created.levels
        assert [level.name for level in loaded.levels] == ["Manager", "Finance"]
        assert workflows.get_workflow_by_code("EXP-STD").id == created.id

    def test_invalid_definition(self, workflows, two_level_workflow):
        with pytest.raises(InvalidWorkflowDefinitionError) as exc_info:
            workflows.create_workflow(two_level_workflow(levels=()))
        assert exc_info.value.errors == ["at least one approval level is required"]

    def test_duplicate_code(self, workflows, two_level_workflow):
        workflows.create_workflow(two_level_workflow())
        with pytest.raises(DuplicateKeyError):
            workflows.create_workflow(two_level_workflow(name="Copy"))

    def test_unknown_code(self, workflows):
        with pytest.raises(NotFoundError):
            workflows.get_workflow_by_code("MISSING")

    def test_creation_is_audited(self, workflows, two_level_workflow, session, deterministic_clock):
        created = workflows.create_workflow(two_level_workflow())
        trail = AuditService(session, deterministic_clock).list_for_entity("ApprovalWorkflow", created.id)
        assert [e.action for e in trail.items] == [AuditAction.CREATE]


class TestCoerceLevel:

    def test_from_mapping(self):
        approver = uuid4()
        level = coerce_level({
            "level_number": 1,
            "name": "Controllers",
            "approver_type": "role",
            "approver_ids": [str(approver)],
            "escalation_to": str(approver),
        })
        assert level.approver_type is ApproverType.ROLE
        assert level.approver_ids == (approver,)
        assert level.escalation_to == approver

    def test_unknown_field(self):
        with pytest.raises(ValidationError):
            coerce_level({"level_number": 1, "name": "x", "colour": "red"})


class TestUpdate:

    def test_patch_bumps_version(self, workflows, two_level_workflow):
        created = workflows.create_workflow(two_level_workflow())

        updated = workflows.update_workflow(
            created.id, {"name": "Expenses", "approval_type": "AnyApprover"}, expected_version=1,
        )

        assert updated.version == 2
        assert updated.name == "Expenses"
        assert updated.approval_type is ApprovalType.ANY_APPROVER

    def test_stale_version_rejected(self, workflows, two_level_workflow):
        created = workflows.create_workflow(two_level_workflow())
        workflows.update_workflow(created.id, {"name": "v2"})

        with pytest.raises(VersionConflictError) as exc_info:
            workflows.update_workflow(created.id, {"name": "v3"}, expected_version=1)
        assert (exc_info.value.expected, exc_info.value.actual) == (1, 2)

    def test_unpatchable_field(self, workflows, two_level_workflow):
        created = workflows.create_workflow(two_level_workflow())
        with pytest.raises(ValidationError):
            workflows.update_workflow(created.id, {"code": "OTHER"})
        with pytest.raises(ValidationError):
            workflows.update_workflow(created.id, {"status": "Inactive"})

    def test_patch_must_stay_valid(self, workflows, two_level_workflow):
        created = workflows.create_workflow(two_level_workflow())
        with pytest.raises(InvalidWorkflowDefinitionError):
            workflows.update_workflow(created.id, {"min_amount": 10, "max_amount": 5})
        assert workflows.get_workflow(created.id).version == 1

    def test_replace_levels(self, workflows, two_level_workflow, approvers):
        created = workflows.create_workflow(two_level_workflow())

        updated = workflows.update_workflow(
            created.id,
            {"levels": [{"level_number": 1, "name": "Solo", "approver_ids": [approvers["u1"]]}]},
        )

        assert updated.level_count == 1
        assert workflows.get_workflow(created.id).levels[0].name == "Solo"

    def test_levels_locked_while_requests_open(
        self, workflows, two_level_workflow, open_request, approvers,
    ):
        created = workflows.create_workflow(two_level_workflow())
        open_request(created)
        new_levels = (ApprovalLevel(level_number=1, name="Solo", approver_ids=(approvers["u1"],)),)

        with pytest.raises(WorkflowInUseError):
            workflows.update_workflow(created.id, {"levels": new_levels})
        # Other fields stay editable.
        assert workflows.update_workflow(created.id, {"description": "x"}).version == 2

    def test_unchanged_levels_allowed_while_open(self, workflows, two_level_workflow, open_request):
        created = workflows.create_workflow(two_level_workflow())
        open_request(created)
        assert workflows.update_workflow(created.id, {"levels": created.levels}).version == 2


class TestStatus:

    def test_deactivate_and_activate(self, workflows, two_level_workflow):
        created = workflows.create_workflow(two_level_workflow())

        inactive = workflows.deactivate_workflow(created.id)
        assert inactive.status is WorkflowStatus.INACTIVE
        assert inactive.version == 2
        assert workflows.deactivate_workflow(created.id).version == 2

        assert workflows.activate_workflow(created.id).status is WorkflowStatus.ACTIVE

    def test_list_filters(self, workflows, two_level_workflow):
        workflows.create_workflow(two_level_workflow())
        other = workflows.create_workflow(two_level_workflow(code="INV-STD", document_type="invoice"))
        workflows.deactivate_workflow(other.id)

        assert workflows.list_workflows(document_type="expense").total_count == 1
        inactive = workflows.list_workflows(Pagination(page=1, per_page=10), status=WorkflowStatus.INACTIVE)
        assert [w.code for w in inactive.items] == ["INV-STD"]


class TestDelete:

    def test_delete_unreferenced(self, workflows, two_level_workflow):
        created = workflows.create_workflow(two_level_workflow())
        workflows.delete_workflow(created.id)
        with pytest.raises(NotFoundError):
            workflows.get_workflow(created.id)

    def test_referenced_workflow_cannot_be_deleted(
        self, workflows, two_level_workflow, open_request, approvers, session, deterministic_clock,
    ):
        created = workflows.create_workflow(two_level_workflow())
        request = open_request(created)
        ApprovalService(session, deterministic_clock).cancel(request.id, approvers["requester"])

        with pytest.raises(WorkflowInUseError):
            workflows.delete_workflow(created.id)
