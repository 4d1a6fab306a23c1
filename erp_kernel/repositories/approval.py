"""
Approval repositories.

ApprovalWorkflowRepository persists workflow definitions with their
levels; ApprovalRequestRepository persists requests with their append-only
action trail and answers the approver-facing queries.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, exists, func, or_, select

from erp_kernel.db.errors import translate_db_errors
from erp_kernel.domain.approval import (
    OPEN_REQUEST_STATUSES,
    ApprovalActionType,
    ApprovalRequest,
    ApprovalRequestStatus,
    ApprovalWorkflow,
    WorkflowStatus,
)
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.models.approval import (
    ApprovalActionModel,
    ApprovalLevelApproverModel,
    ApprovalLevelModel,
    ApprovalRequestModel,
    ApprovalWorkflowModel,
)
from erp_kernel.repositories.base import SqlRepository


class ApprovalWorkflowRepository(SqlRepository[ApprovalWorkflowModel, ApprovalWorkflow]):
    model = ApprovalWorkflowModel
    entity_name = "ApprovalWorkflow"

    def find_by_code(self, code: str) -> ApprovalWorkflow:
        return self._find_one(code, ApprovalWorkflowModel.code == code)

    def code_exists(self, code: str) -> bool:
        with translate_db_errors(self.entity_name):
            return self._session.scalar(
                select(exists().where(ApprovalWorkflowModel.code == code))
            )

    def find_active_for_document_type(self, document_type: str) -> list[ApprovalWorkflow]:
        with translate_db_errors(self.entity_name):
            rows = self._session.scalars(
                select(ApprovalWorkflowModel)
                .where(
                    ApprovalWorkflowModel.document_type == document_type,
                    ApprovalWorkflowModel.status == WorkflowStatus.ACTIVE,
                )
                .order_by(ApprovalWorkflowModel.code)
            ).all()
        return [row.to_dto() for row in rows]

    def _apply(self, model: ApprovalWorkflowModel, record: ApprovalWorkflow) -> None:
        model.apply_dto(record)
        if tuple(level.to_dto() for level in model.levels) == record.levels:
            return
        # Old level rows must be gone before new rows reuse their
        # (workflow_id, level_number) keys.
        model.levels.clear()
        self._flush()
        model.levels.extend(
            ApprovalLevelModel.from_dto(level, model.id) for level in record.levels
        )


class ApprovalRequestRepository(SqlRepository[ApprovalRequestModel, ApprovalRequest]):
    model = ApprovalRequestModel
    entity_name = "ApprovalRequest"

    def find_by_number(self, request_number: str) -> ApprovalRequest:
        return self._find_one(
            request_number, ApprovalRequestModel.request_number == request_number,
        )

    def count_for_workflow(
        self,
        workflow_id: UUID,
        statuses: Iterable[ApprovalRequestStatus] | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(ApprovalRequestModel).where(
            ApprovalRequestModel.workflow_id == workflow_id
        )
        if statuses is not None:
            stmt = stmt.where(ApprovalRequestModel.status.in_(list(statuses)))
        with translate_db_errors(self.entity_name):
            return self._session.scalar(stmt) or 0

    def _pending_for_approver_stmt(self, user_id: UUID, principal_ids: Iterable[UUID]):
        """
        Open requests whose current level lists one of ``principal_ids``
        (unless ``user_id`` delegated it away), or was delegated to ``user_id``.
        """
        request = ApprovalRequestModel
        approver = ApprovalLevelApproverModel
        action = ApprovalActionModel

        listed = exists().where(
            approver.workflow_id == request.workflow_id,
            approver.level_number == request.current_level,
            approver.approver_id.in_(list(principal_ids)),
        )
        delegated_away = exists().where(
            action.request_id == request.id,
            action.level_number == request.current_level,
            action.action == ApprovalActionType.DELEGATE,
            action.approver_id == user_id,
        )
        delegated_in = exists().where(
            action.request_id == request.id,
            action.level_number == request.current_level,
            action.action == ApprovalActionType.DELEGATE,
            action.delegated_to == user_id,
        )
        return select(request).where(
            request.status.in_(list(OPEN_REQUEST_STATUSES)),
            or_(and_(listed, ~delegated_away), delegated_in),
        )

    def find_pending_for_approver(
        self,
        user_id: UUID,
        principal_ids: Iterable[UUID],
        pagination: Pagination,
    ) -> Paginated[ApprovalRequest]:
        stmt = self._pending_for_approver_stmt(user_id, principal_ids)
        return self._paginate(
            stmt,
            pagination,
            order_by=(
                ApprovalRequestModel.due_date.is_(None),
                ApprovalRequestModel.due_date,
                ApprovalRequestModel.created_at,
                ApprovalRequestModel.id,
            ),
        )

    def all_pending_for_approver(
        self, user_id: UUID, principal_ids: Iterable[UUID],
    ) -> list[ApprovalRequest]:
        stmt = self._pending_for_approver_stmt(user_id, principal_ids)
        with translate_db_errors(self.entity_name):
            rows = self._session.scalars(stmt.order_by(ApprovalRequestModel.created_at)).all()
        return [row.to_dto() for row in rows]

    def find_overdue(self, now: datetime, limit: int = 100) -> list[ApprovalRequest]:
        """Pending/InProgress requests whose due date has passed, oldest due first."""
        with translate_db_errors(self.entity_name):
            rows = self._session.scalars(
                select(ApprovalRequestModel)
                .where(
                    ApprovalRequestModel.status.in_([
                        ApprovalRequestStatus.PENDING,
                        ApprovalRequestStatus.IN_PROGRESS,
                    ]),
                    ApprovalRequestModel.due_date.is_not(None),
                    ApprovalRequestModel.due_date < now,
                )
                .order_by(ApprovalRequestModel.due_date, ApprovalRequestModel.id)
                .limit(limit)
            ).all()
        return [row.to_dto() for row in rows]
