"""
Module: erp_kernel.models.approval
Responsibility: ORM persistence for approval workflows, their ordered
    levels and level approvers, approval requests, and the append-only
    approval action trail.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - UNIQUE(code) on workflows, UNIQUE(request_number) on requests.
    - UNIQUE(workflow_id, level_number) on levels.
    - Level approvers are rows rather than a serialized list, so "who may
      act at the current level" is a join, not a text scan.
    - Approval actions are append-only: a before_update / before_delete
      listener rejects any mutation of a persisted action.

Failure modes:
    - IntegrityError on duplicate workflow code or request number
      (translated to DuplicateKeyError by repositories).
    - ConflictError from the action immutability listener.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import Base, TrackedBase, UUIDString
from erp_kernel.db.types import TextEnumType, UTCDateTime
from erp_kernel.domain.approval import (
    ApprovalAction,
    ApprovalActionType,
    ApprovalLevel,
    ApprovalRequest,
    ApprovalRequestStatus,
    ApprovalType,
    ApprovalWorkflow,
    ApproverType,
    WorkflowStatus,
)
from erp_kernel.domain.enums import Currency
from erp_kernel.exceptions import ConflictError


class ApprovalWorkflowModel(TrackedBase):
    """Persistent approval workflow definition."""

    __tablename__ = "approval_workflows"

    __table_args__ = (
        Index("ix_approval_workflows_routing", "document_type", "status"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_type: Mapped[str] = mapped_column(String(100), nullable=False)
    approval_type: Mapped[ApprovalType] = mapped_column(
        TextEnumType(ApprovalType), nullable=False, default=ApprovalType.SEQUENTIAL,
    )
    min_amount: Mapped[int | None] = mapped_column(nullable=True)
    max_amount: Mapped[int | None] = mapped_column(nullable=True)
    auto_approve_below: Mapped[int | None] = mapped_column(nullable=True)
    escalation_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notify_requester: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_approver: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_delegation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_reassignment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_comments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[WorkflowStatus] = mapped_column(
        TextEnumType(WorkflowStatus), nullable=False, default=WorkflowStatus.ACTIVE,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    levels: Mapped[list[ApprovalLevelModel]] = relationship(
        back_populates="workflow",
        order_by="ApprovalLevelModel.level_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.code} v{self.version} {self.status}>"

    def to_dto(self) -> ApprovalWorkflow:
        return ApprovalWorkflow(
            **self.envelope(),
            code=self.code,
            name=self.name,
            description=self.description,
            document_type=self.document_type,
            approval_type=self.approval_type,
            min_amount=self.min_amount,
            max_amount=self.max_amount,
            auto_approve_below=self.auto_approve_below,
            escalation_hours=self.escalation_hours,
            notify_requester=self.notify_requester,
            notify_approver=self.notify_approver,
            allow_delegation=self.allow_delegation,
            allow_reassignment=self.allow_reassignment,
            require_comments=self.require_comments,
            levels=tuple(level.to_dto() for level in self.levels),
            status=self.status,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalWorkflow) -> ApprovalWorkflowModel:
        model = cls()
        model.apply_envelope(dto)
        model.apply_dto(dto)
        model.levels = [ApprovalLevelModel.from_dto(level, dto.id) for level in dto.levels]
        return model

    def apply_dto(self, dto: ApprovalWorkflow) -> None:
        """Copy scalar fields; levels are replaced by the repository."""
        self.code = dto.code
        self.name = dto.name
        self.description = dto.description
        self.document_type = dto.document_type
        self.approval_type = dto.approval_type
        self.min_amount = dto.min_amount
        self.max_amount = dto.max_amount
        self.auto_approve_below = dto.auto_approve_below
        self.escalation_hours = dto.escalation_hours
        self.notify_requester = dto.notify_requester
        self.notify_approver = dto.notify_approver
        self.allow_delegation = dto.allow_delegation
        self.allow_reassignment = dto.allow_reassignment
        self.require_comments = dto.require_comments
        self.status = dto.status
        self.version = dto.version


class ApprovalLevelModel(Base):
    """One ordered level of a workflow."""

    __tablename__ = "approval_workflow_levels"

    __table_args__ = (
        UniqueConstraint("workflow_id", "level_number", name="uq_workflow_level_number"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False,
    )
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_type: Mapped[ApproverType] = mapped_column(
        TextEnumType(ApproverType), nullable=False,
    )
    min_approvers: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    skip_if_approved_above: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    due_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalation_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    workflow: Mapped[ApprovalWorkflowModel] = relationship(back_populates="levels")
    approvers: Mapped[list[ApprovalLevelApproverModel]] = relationship(
        back_populates="level",
        order_by="ApprovalLevelApproverModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self) -> ApprovalLevel:
        return ApprovalLevel(
            level_number=self.level_number,
            name=self.name,
            approver_type=self.approver_type,
            approver_ids=tuple(a.approver_id for a in self.approvers),
            min_approvers=self.min_approvers,
            skip_if_approved_above=self.skip_if_approved_above,
            due_hours=self.due_hours,
            escalation_to=self.escalation_to,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalLevel, workflow_id: UUID) -> ApprovalLevelModel:
        return cls(
            workflow_id=workflow_id,
            level_number=dto.level_number,
            name=dto.name,
            approver_type=dto.approver_type,
            min_approvers=dto.min_approvers,
            skip_if_approved_above=dto.skip_if_approved_above,
            due_hours=dto.due_hours,
            escalation_to=dto.escalation_to,
            approvers=[
                ApprovalLevelApproverModel(
                    workflow_id=workflow_id,
                    level_number=dto.level_number,
                    approver_id=approver_id,
                    position=position,
                )
                for position, approver_id in enumerate(dto.approver_ids)
            ],
        )


class ApprovalLevelApproverModel(Base):
    """
    One approver entry (user or group id) of a level.

    ``workflow_id`` and ``level_number`` are denormalized from the level so
    the pending-for-approver query joins on the request's current level
    directly.
    """

    __tablename__ = "approval_level_approvers"

    __table_args__ = (
        UniqueConstraint("level_id", "approver_id", name="uq_level_approver"),
        Index("ix_level_approvers_lookup", "approver_id", "workflow_id", "level_number"),
    )

    level_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflow_levels.id", ondelete="CASCADE"), nullable=False,
    )
    workflow_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    level: Mapped[ApprovalLevelModel] = relationship(back_populates="approvers")


class ApprovalRequestModel(TrackedBase):
    """Persistent approval request with its ordered action trail."""

    __tablename__ = "approval_requests"

    __table_args__ = (
        Index("ix_approval_requests_status_due", "status", "due_date"),
        Index("ix_approval_requests_workflow_status", "workflow_id", "status"),
        Index("ix_approval_requests_document", "document_type", "document_id"),
    )

    request_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_workflows.id"), nullable=False,
    )
    document_type: Mapped[str] = mapped_column(String(100), nullable=False)
    document_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    document_number: Mapped[str] = mapped_column(String(100), nullable=False)
    requested_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[Currency] = mapped_column(TextEnumType(Currency), nullable=False)
    status: Mapped[ApprovalRequestStatus] = mapped_column(
        TextEnumType(ApprovalRequestStatus), nullable=False,
    )
    current_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    actions: Mapped[list[ApprovalActionModel]] = relationship(
        back_populates="request",
        order_by="ApprovalActionModel.sequence",
        cascade="save-update, merge",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_number} status={self.status} "
            f"level={self.current_level}>"
        )

    def to_dto(self) -> ApprovalRequest:
        return ApprovalRequest(
            **self.envelope(),
            request_number=self.request_number,
            workflow_id=self.workflow_id,
            document_type=self.document_type,
            document_id=self.document_id,
            document_number=self.document_number,
            requested_by=self.requested_by,
            requested_at=self.requested_at,
            amount=self.amount,
            currency=self.currency,
            status=self.status,
            current_level=self.current_level,
            due_date=self.due_date,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            rejected_at=self.rejected_at,
            rejected_by=self.rejected_by,
            rejection_reason=self.rejection_reason,
            cancelled_at=self.cancelled_at,
            cancelled_by=self.cancelled_by,
            escalated_at=self.escalated_at,
            actions=tuple(a.to_dto() for a in self.actions),
        )

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        model = cls()
        model.apply_envelope(dto)
        model.request_number = dto.request_number
        model.workflow_id = dto.workflow_id
        model.document_type = dto.document_type
        model.document_id = dto.document_id
        model.document_number = dto.document_number
        model.requested_by = dto.requested_by
        model.requested_at = dto.requested_at
        model.amount = dto.amount
        model.currency = dto.currency
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: ApprovalRequest) -> None:
        """
        Copy mutable state and append actions not yet persisted.

        Document identity, requester and amount never change after
        submission; existing actions are never rewritten.
        """
        self.status = dto.status
        self.current_level = dto.current_level
        self.due_date = dto.due_date
        self.approved_at = dto.approved_at
        self.approved_by = dto.approved_by
        self.rejected_at = dto.rejected_at
        self.rejected_by = dto.rejected_by
        self.rejection_reason = dto.rejection_reason
        self.cancelled_at = dto.cancelled_at
        self.cancelled_by = dto.cancelled_by
        self.escalated_at = dto.escalated_at

        persisted = {a.id for a in self.actions}
        next_sequence = max((a.sequence for a in self.actions), default=0) + 1
        for action in dto.actions:
            if action.id in persisted:
                continue
            self.actions.append(
                ApprovalActionModel.from_dto(action, sequence=next_sequence)
            )
            next_sequence += 1


class ApprovalActionModel(Base):
    """One approver action.  Append-only."""

    __tablename__ = "approval_actions"

    __table_args__ = (
        Index("ix_approval_actions_request_level", "request_id", "level_number", "action"),
        Index("ix_approval_actions_delegate", "delegated_to", "action"),
        UniqueConstraint("request_id", "sequence", name="uq_approval_action_sequence"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[ApprovalActionType] = mapped_column(
        TextEnumType(ApprovalActionType), nullable=False,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    delegated_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    request: Mapped[ApprovalRequestModel] = relationship(back_populates="actions")

    def to_dto(self) -> ApprovalAction:
        return ApprovalAction(
            id=self.id,
            created_at=self.created_at,
            updated_at=self.created_at,
            created_by=self.approver_id,
            request_id=self.request_id,
            level_number=self.level_number,
            approver_id=self.approver_id,
            action=self.action,
            comments=self.comments,
            delegated_to=self.delegated_to,
            sequence=self.sequence,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalAction, sequence: int) -> ApprovalActionModel:
        return cls(
            id=dto.id,
            request_id=dto.request_id,
            sequence=sequence,
            level_number=dto.level_number,
            approver_id=dto.approver_id,
            action=dto.action,
            comments=dto.comments,
            delegated_to=dto.delegated_to,
            created_at=dto.created_at,
        )


@event.listens_for(ApprovalActionModel, "before_update")
def _reject_action_update(mapper, connection, target: ApprovalActionModel) -> None:
    raise ConflictError(f"Approval action {target.id} is append-only and cannot be modified")


@event.listens_for(ApprovalActionModel, "before_delete")
def _reject_action_delete(mapper, connection, target: ApprovalActionModel) -> None:
    raise ConflictError(f"Approval action {target.id} is append-only and cannot be deleted")
