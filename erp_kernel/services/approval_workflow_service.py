"""
ApprovalWorkflowService -- approval workflow definitions.

Responsibility:
    Create, edit, publish/pause and remove approval workflows.  Structural
    validation is delegated to ``erp_engines.approval``.

Architecture position:
    Kernel > Services.  May import from domain/, repositories/, engines.

Invariants enforced:
    - Level numbers are 1..N, min_approvers fits the approver list, and
      auto_approve_below never exceeds max_amount.
    - Workflow codes are unique.
    - Every edit increments ``version``; callers holding a stale version
      get a VersionConflictError.
    - Levels cannot change while an open request (Pending, InProgress,
      Escalated) references the workflow.
    - A workflow referenced by any request cannot be deleted; it is
      deactivated instead.

Failure modes:
    - InvalidWorkflowDefinitionError, ValidationError on bad input.
    - DuplicateKeyError on code collision.
    - VersionConflictError, WorkflowInUseError.
    - NotFoundError for an unknown workflow id or code.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from erp_engines.approval import workflow_definition_errors
from erp_kernel.domain.approval import (
    OPEN_REQUEST_STATUSES,
    WORKFLOW_PATCHABLE_FIELDS,
    ApprovalLevel,
    ApprovalType,
    ApprovalWorkflow,
    ApproverType,
    WorkflowStatus,
)
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.enums import AuditAction
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.exceptions import (
    DuplicateKeyError,
    InvalidWorkflowDefinitionError,
    ValidationError,
    VersionConflictError,
    WorkflowInUseError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.approval import ApprovalWorkflowModel
from erp_kernel.repositories.approval import (
    ApprovalRequestRepository,
    ApprovalWorkflowRepository,
)
from erp_kernel.services.audit_service import AuditService

logger = get_logger("services.approval_workflow")

_ENTITY = "ApprovalWorkflow"


def coerce_level(value: ApprovalLevel | Mapping[str, Any]) -> ApprovalLevel:
    """Accept an ApprovalLevel or a plain mapping of its fields."""
    if isinstance(value, ApprovalLevel):
        return value
    data = dict(value)
    if "approver_type" in data:
        data["approver_type"] = ApproverType.parse(data["approver_type"])
    if "approver_ids" in data:
        data["approver_ids"] = tuple(
            a if isinstance(a, UUID) else UUID(str(a)) for a in data["approver_ids"]
        )
    if data.get("escalation_to") is not None and not isinstance(data["escalation_to"], UUID):
        data["escalation_to"] = UUID(str(data["escalation_to"]))
    try:
        return ApprovalLevel(**data)
    except TypeError as exc:
        raise ValidationError(f"Invalid approval level: {exc}") from exc


class ApprovalWorkflowService:
    """
    Contract:
        Flushes within the caller's transaction; never commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._workflows = ApprovalWorkflowRepository(session, self._clock)
        self._requests = ApprovalRequestRepository(session, self._clock)
        self._auditor = auditor or AuditService(session, self._clock)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_workflow(
        self,
        workflow: ApprovalWorkflow,
        actor_id: UUID | None = None,
    ) -> ApprovalWorkflow:
        workflow = workflow.evolve(
            levels=tuple(coerce_level(level) for level in workflow.levels),
            version=1,
            created_by=actor_id or workflow.created_by,
            updated_by=actor_id or workflow.updated_by,
        )
        errors = workflow_definition_errors(workflow)
        if errors:
            raise InvalidWorkflowDefinitionError(workflow.code, errors)
        if self._workflows.code_exists(workflow.code):
            raise DuplicateKeyError(_ENTITY, f"code={workflow.code}")

        created = self._workflows.create(workflow)
        self._auditor.record(
            _ENTITY,
            created.id,
            AuditAction.CREATE,
            user_id=actor_id,
            new_values={"code": created.code, "version": created.version},
        )
        logger.info(
            "approval_workflow_created",
            extra={
                "workflow_id": str(created.id),
                "code": created.code,
                "document_type": created.document_type,
                "approval_type": created.approval_type.value,
                "levels": created.level_count,
            },
        )
        return created

    def update_workflow(
        self,
        workflow_id: UUID,
        patch: Mapping[str, Any],
        actor_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> ApprovalWorkflow:
        """
        Apply ``patch`` (a mapping of field -> new value) and bump the version.

        Only fields in ``WORKFLOW_PATCHABLE_FIELDS`` may be patched.  Status
        changes go through activate_workflow / deactivate_workflow.
        """
        current = self._workflows.find_by_id(workflow_id)
        if expected_version is not None and expected_version != current.version:
            raise VersionConflictError(_ENTITY, workflow_id, expected_version, current.version)

        unknown = set(patch) - WORKFLOW_PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot patch workflow field(s): {', '.join(sorted(unknown))}"
            )

        changes = dict(patch)
        if "levels" in changes:
            changes["levels"] = tuple(coerce_level(level) for level in changes["levels"])
        if "approval_type" in changes:
            changes["approval_type"] = ApprovalType.parse(changes["approval_type"])

        if "levels" in changes and changes["levels"] != current.levels:
            open_count = self._requests.count_for_workflow(workflow_id, OPEN_REQUEST_STATUSES)
            if open_count:
                raise WorkflowInUseError(
                    workflow_id, open_count, "levels cannot change while requests are open",
                )

        updated = current.evolve(
            **changes, version=current.version + 1, updated_by=actor_id,
        )
        errors = workflow_definition_errors(updated)
        if errors:
            raise InvalidWorkflowDefinitionError(updated.code, errors)

        saved = self._workflows.update(updated)
        self._auditor.record(
            _ENTITY,
            saved.id,
            AuditAction.UPDATE,
            user_id=actor_id,
            old_values={k: _audit_value(getattr(current, k)) for k in changes},
            new_values={k: _audit_value(getattr(saved, k)) for k in changes},
        )
        logger.info(
            "approval_workflow_updated",
            extra={
                "workflow_id": str(saved.id),
                "fields": sorted(changes),
                "version": saved.version,
            },
        )
        return saved

    def activate_workflow(self, workflow_id: UUID, actor_id: UUID | None = None) -> ApprovalWorkflow:
        return self._set_status(workflow_id, WorkflowStatus.ACTIVE, actor_id)

    def deactivate_workflow(self, workflow_id: UUID, actor_id: UUID | None = None) -> ApprovalWorkflow:
        return self._set_status(workflow_id, WorkflowStatus.INACTIVE, actor_id)

    def delete_workflow(self, workflow_id: UUID, actor_id: UUID | None = None) -> None:
        current = self._workflows.find_by_id(workflow_id)
        referenced = self._requests.count_for_workflow(workflow_id)
        if referenced:
            raise WorkflowInUseError(
                workflow_id, referenced, "deactivate the workflow instead of deleting it",
            )
        self._workflows.delete(workflow_id)
        self._auditor.record(
            _ENTITY,
            workflow_id,
            AuditAction.DELETE,
            user_id=actor_id,
            old_values={"code": current.code, "version": current.version},
        )
        logger.info(
            "approval_workflow_deleted",
            extra={"workflow_id": str(workflow_id), "code": current.code},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_workflow(self, workflow_id: UUID) -> ApprovalWorkflow:
        return self._workflows.find_by_id(workflow_id)

    def get_workflow_by_code(self, code: str) -> ApprovalWorkflow:
        return self._workflows.find_by_code(code)

    def list_workflows(
        self,
        pagination: Pagination | None = None,
        document_type: str | None = None,
        status: WorkflowStatus | None = None,
    ) -> Paginated[ApprovalWorkflow]:
        criteria = []
        if document_type is not None:
            criteria.append(ApprovalWorkflowModel.document_type == document_type)
        if status is not None:
            criteria.append(ApprovalWorkflowModel.status == status)
        return self._workflows.find_all(pagination or Pagination(), *criteria)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _set_status(
        self, workflow_id: UUID, status: WorkflowStatus, actor_id: UUID | None,
    ) -> ApprovalWorkflow:
        current = self._workflows.find_by_id(workflow_id)
        if current.status is status:
            return current
        saved = self._workflows.update(
            current.evolve(status=status, version=current.version + 1, updated_by=actor_id)
        )
        self._auditor.record(
            _ENTITY,
            workflow_id,
            AuditAction.UPDATE,
            user_id=actor_id,
            old_values={"status": current.status},
            new_values={"status": saved.status},
        )
        logger.info(
            "approval_workflow_status_changed",
            extra={
                "workflow_id": str(workflow_id),
                "from_status": current.status.value,
                "to_status": saved.status.value,
            },
        )
        return saved


def _audit_value(value: Any) -> Any:
    if isinstance(value, tuple) and value and isinstance(value[0], ApprovalLevel):
        return [
            {
                "level_number": level.level_number,
                "name": level.name,
                "approver_type": level.approver_type.value,
                "approver_ids": [str(a) for a in level.approver_ids],
                "min_approvers": level.min_approvers,
            }
            for level in value
        ]
    return value
