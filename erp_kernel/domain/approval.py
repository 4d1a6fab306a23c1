"""
Approval domain types (``erp_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for multi-level approval routing: the request
lifecycle state machine, workflow and level definitions, request and
action records, the pending-summary read model, and the collaborator
protocols (group directory, notifier) the service depends on.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  No imports from ``db/``,
``models/``, ``repositories/`` or ``services/``.

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` is the only source of legal status moves;
  terminal statuses have no outgoing edges.
* ``current_level`` is None exactly when the request is terminal or Draft.
* Level numbers of a workflow are 1..N without gaps (checked by
  ``erp_engines.approval.workflow_definition_errors``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from erp_kernel.domain.enums import Currency, TextEnum
from erp_kernel.domain.records import Record
from erp_kernel.domain.values import Money

# Actor recorded on synthetic actions (auto-approval, carried-forward approvals).
SYSTEM_ACTOR_ID = UUID(int=0)


class ApprovalType(TextEnum):
    SEQUENTIAL = "Sequential"
    ANY_APPROVER = "AnyApprover"
    ALL_APPROVERS = "AllApprovers"


class ApproverType(TextEnum):
    """
    How ``ApprovalLevel.approver_ids`` are interpreted.

    SpecificUser, Supervisor and AmountBased levels list user ids directly.
    Role and Department levels list group ids whose members are resolved
    through an ``ApprovalDirectory``.
    """

    SPECIFIC_USER = "SpecificUser"
    ROLE = "Role"
    DEPARTMENT = "Department"
    SUPERVISOR = "Supervisor"
    AMOUNT_BASED = "AmountBased"


GROUP_APPROVER_TYPES: frozenset[ApproverType] = frozenset(
    {ApproverType.ROLE, ApproverType.DEPARTMENT}
)


class WorkflowStatus(TextEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class ApprovalRequestStatus(TextEnum):
    DRAFT = "Draft"
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    ESCALATED = "Escalated"


class ApprovalActionType(TextEnum):
    APPROVE = "Approve"
    REJECT = "Reject"
    DELEGATE = "Delegate"
    REQUEST_INFO = "RequestInfo"

    @classmethod
    def default(cls) -> ApprovalActionType:
        # An unreadable stored action must never count as an approval.
        return cls.REQUEST_INFO


REQUEST_TRANSITIONS: dict[ApprovalRequestStatus, frozenset[ApprovalRequestStatus]] = {
    ApprovalRequestStatus.DRAFT: frozenset({
        ApprovalRequestStatus.PENDING,
        ApprovalRequestStatus.APPROVED,
        ApprovalRequestStatus.CANCELLED,
    }),
    ApprovalRequestStatus.PENDING: frozenset({
        ApprovalRequestStatus.IN_PROGRESS,
        ApprovalRequestStatus.APPROVED,
        ApprovalRequestStatus.REJECTED,
        ApprovalRequestStatus.CANCELLED,
        ApprovalRequestStatus.ESCALATED,
    }),
    ApprovalRequestStatus.IN_PROGRESS: frozenset({
        ApprovalRequestStatus.IN_PROGRESS,
        ApprovalRequestStatus.APPROVED,
        ApprovalRequestStatus.REJECTED,
        ApprovalRequestStatus.CANCELLED,
        ApprovalRequestStatus.ESCALATED,
    }),
    ApprovalRequestStatus.ESCALATED: frozenset({
        ApprovalRequestStatus.IN_PROGRESS,
        ApprovalRequestStatus.APPROVED,
        ApprovalRequestStatus.REJECTED,
        ApprovalRequestStatus.CANCELLED,
    }),
    ApprovalRequestStatus.APPROVED: frozenset(),
    ApprovalRequestStatus.REJECTED: frozenset(),
    ApprovalRequestStatus.CANCELLED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[ApprovalRequestStatus] = frozenset({
    ApprovalRequestStatus.APPROVED,
    ApprovalRequestStatus.REJECTED,
    ApprovalRequestStatus.CANCELLED,
})

OPEN_REQUEST_STATUSES: frozenset[ApprovalRequestStatus] = frozenset({
    ApprovalRequestStatus.PENDING,
    ApprovalRequestStatus.IN_PROGRESS,
    ApprovalRequestStatus.ESCALATED,
})


def can_transition(
    current: ApprovalRequestStatus, target: ApprovalRequestStatus,
) -> bool:
    return target in REQUEST_TRANSITIONS.get(current, frozenset())


# =========================================================================
# Workflow definition
# =========================================================================


@dataclass(frozen=True, kw_only=True)
class ApprovalLevel:
    level_number: int
    name: str
    approver_type: ApproverType = ApproverType.SPECIFIC_USER
    approver_ids: tuple[UUID, ...] = ()
    min_approvers: int = 1
    skip_if_approved_above: bool = False
    due_hours: int | None = None
    escalation_to: UUID | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.approver_ids, tuple):
            object.__setattr__(self, "approver_ids", tuple(self.approver_ids))

    @property
    def is_group_level(self) -> bool:
        return self.approver_type in GROUP_APPROVER_TYPES


@dataclass(frozen=True, kw_only=True)
class ApprovalWorkflow(Record):
    code: str
    name: str
    document_type: str
    approval_type: ApprovalType = ApprovalType.SEQUENTIAL
    description: str | None = None
    min_amount: int | None = None
    max_amount: int | None = None
    auto_approve_below: int | None = None
    escalation_hours: int | None = None
    notify_requester: bool = True
    notify_approver: bool = True
    allow_delegation: bool = True
    allow_reassignment: bool = False
    require_comments: bool = False
    levels: tuple[ApprovalLevel, ...] = ()
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    version: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.levels, tuple):
            object.__setattr__(self, "levels", tuple(self.levels))

    @property
    def level_count(self) -> int:
        return len(self.levels)

    def level(self, level_number: int) -> ApprovalLevel | None:
        for level in self.levels:
            if level.level_number == level_number:
                return level
        return None


# Fields update_workflow accepts in a patch.
WORKFLOW_PATCHABLE_FIELDS: frozenset[str] = frozenset({
    "name",
    "description",
    "document_type",
    "approval_type",
    "min_amount",
    "max_amount",
    "auto_approve_below",
    "escalation_hours",
    "notify_requester",
    "notify_approver",
    "allow_delegation",
    "allow_reassignment",
    "require_comments",
    "levels",
})


# =========================================================================
# Requests and actions
# =========================================================================


@dataclass(frozen=True, kw_only=True)
class ApprovalAction(Record):
    request_id: UUID
    level_number: int
    approver_id: UUID
    action: ApprovalActionType
    comments: str | None = None
    delegated_to: UUID | None = None
    # Insertion order within the request.
    sequence: int = 0


@dataclass(frozen=True, kw_only=True)
class ApprovalRequest(Record):
    request_number: str
    workflow_id: UUID
    document_type: str
    document_id: UUID
    document_number: str
    requested_by: UUID
    requested_at: datetime
    amount: int
    currency: Currency = Currency.USD
    status: ApprovalRequestStatus = ApprovalRequestStatus.PENDING
    current_level: int | None = None
    due_date: datetime | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    rejected_at: datetime | None = None
    rejected_by: UUID | None = None
    rejection_reason: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    escalated_at: datetime | None = None
    actions: tuple[ApprovalAction, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.actions, tuple):
            object.__setattr__(self, "actions", tuple(self.actions))

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES

    def actions_at(self, level_number: int) -> tuple[ApprovalAction, ...]:
        return tuple(a for a in self.actions if a.level_number == level_number)


@dataclass(frozen=True)
class PendingApprovalSummary:
    """Severity breakdown of the requests waiting on one approver."""

    approver_id: UUID
    pending_count: int = 0
    on_time: int = 0
    approaching: int = 0
    overdue: int = 0
    total_amount_minor: Mapping[str, int] = field(default_factory=dict)
    by_document_type: Mapping[str, int] = field(default_factory=dict)


# =========================================================================
# Collaborator protocols
# =========================================================================


@runtime_checkable
class ApprovalDirectory(Protocol):
    """Resolves group membership and workflow administration rights."""

    def groups_of(self, user_id: UUID) -> frozenset[UUID]:
        ...

    def is_workflow_admin(self, user_id: UUID, workflow: ApprovalWorkflow) -> bool:
        ...


@runtime_checkable
class Notifier(Protocol):
    def notify(
        self,
        recipient_id: UUID,
        subject: str,
        body: str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ...


@dataclass(frozen=True)
class StaticApprovalDirectory:
    """
    In-process directory backed by fixed mappings.

    ``memberships`` maps a user id to the role/department group ids it
    belongs to; ``administrators`` may cancel any request.
    """

    memberships: Mapping[UUID, frozenset[UUID]] = field(default_factory=dict)
    administrators: frozenset[UUID] = frozenset()

    def groups_of(self, user_id: UUID) -> frozenset[UUID]:
        return frozenset(self.memberships.get(user_id, frozenset()))

    def is_workflow_admin(self, user_id: UUID, workflow: ApprovalWorkflow) -> bool:
        return user_id in self.administrators
