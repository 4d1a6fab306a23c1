"""
ApprovalService -- routes documents through approval workflows.

Responsibility:
    Submit documents for approval, record approver decisions, advance
    requests level by level, and surface what each approver has pending.
    Routing rules (workflow selection, eligibility, level satisfaction,
    due dates) live in ``erp_engines.approval``; this service loads state,
    applies those rules, persists the outcome and audits it.

Architecture position:
    Kernel > Services.  May import from domain/, repositories/, engines.

Invariants enforced:
    - Only Pending, InProgress and Escalated requests accept decisions.
    - Actions are append-only; an approver's repeated Approve at a level is
      recorded but counted once.
    - ``current_level`` is None once the request is Approved, Rejected or
      Cancelled, and ``due_date`` is cleared with it.
    - Only the requester or a workflow administrator may cancel.
    - Every state change writes an audit row in the same transaction.

Failure modes:
    - NoMatchingWorkflowError when no active workflow routes the document.
    - RequestNotActionableError when the request is terminal.
    - NotAnApproverError when the actor cannot act at the level.
    - DelegationNotAllowedError, CancellationNotPermittedError.
    - ValidationError for missing comments or rejection reason.
"""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from erp_engines.approval import (
    DueSeverity,
    carried_forward_approvers,
    classify_due,
    due_date_for_level,
    evaluate_level,
    is_eligible,
    qualifies_for_auto_approval,
    select_workflow,
)
from erp_kernel.domain.approval import (
    OPEN_REQUEST_STATUSES,
    SYSTEM_ACTOR_ID,
    ApprovalAction,
    ApprovalActionType,
    ApprovalDirectory,
    ApprovalLevel,
    ApprovalRequest,
    ApprovalRequestStatus,
    ApprovalType,
    ApprovalWorkflow,
    Notifier,
    PendingApprovalSummary,
    StaticApprovalDirectory,
)
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.enums import AuditAction, Currency
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.domain.values import coerce_currency
from erp_kernel.exceptions import (
    CancellationNotPermittedError,
    DelegationNotAllowedError,
    NoMatchingWorkflowError,
    NotAnApproverError,
    RequestNotActionableError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.approval import ApprovalRequestModel
from erp_kernel.repositories.approval import (
    ApprovalRequestRepository,
    ApprovalWorkflowRepository,
)
from erp_kernel.services.audit_service import AuditService
from erp_kernel.services.notifier import LoggingNotifier
from erp_kernel.services.sequence_service import SequenceService

logger = get_logger("services.approval")

_ENTITY = "ApprovalRequest"

# Level number of the synthetic action recorded on auto-approved requests,
# which never enter a level.
AUTO_APPROVAL_LEVEL = 0


class ApprovalService:
    """
    Contract:
        Flushes within the caller's transaction; never commits.  Callers
        wrap each operation in ``session_scope()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        directory: ApprovalDirectory | None = None,
        notifier: Notifier | None = None,
        auditor: AuditService | None = None,
        approaching_window: timedelta = timedelta(hours=24),
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._directory = directory or StaticApprovalDirectory()
        self._notifier = notifier or LoggingNotifier()
        self._auditor = auditor or AuditService(session, self._clock)
        self._approaching_window = approaching_window
        self._workflows = ApprovalWorkflowRepository(session, self._clock)
        self._requests = ApprovalRequestRepository(session, self._clock)
        self._sequence = SequenceService(session)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        document_type: str,
        document_id: UUID,
        document_number: str,
        requested_by: UUID,
        amount: int,
        currency: Currency | str = Currency.USD,
    ) -> ApprovalRequest:
        """
        Open an approval request for a document.

        The workflow is chosen by ``erp_engines.approval.select_workflow``.
        Amounts under the workflow's ``auto_approve_below`` produce a request
        that is already Approved, carrying one system Approve action.
        """
        currency = coerce_currency(currency)
        candidates = self._workflows.find_active_for_document_type(document_type)
        workflow = select_workflow(candidates, document_type, amount)
        if workflow is None:
            raise NoMatchingWorkflowError(document_type, amount)

        now = self._clock.now()
        number = self._next_request_number()
        request = ApprovalRequest(
            request_number=number,
            workflow_id=workflow.id,
            document_type=document_type,
            document_id=document_id,
            document_number=document_number,
            requested_by=requested_by,
            requested_at=now,
            amount=amount,
            currency=currency,
            created_by=requested_by,
            updated_by=requested_by,
        )

        if qualifies_for_auto_approval(workflow, amount):
            request = request.evolve(
                status=ApprovalRequestStatus.APPROVED,
                approved_at=now,
                approved_by=SYSTEM_ACTOR_ID,
                actions=(
                    self._action(
                        request,
                        AUTO_APPROVAL_LEVEL,
                        SYSTEM_ACTOR_ID,
                        ApprovalActionType.APPROVE,
                        comments=(
                            f"Auto-approved: amount below {workflow.auto_approve_below}"
                        ),
                    ),
                ),
            )
        else:
            first = workflow.level(1)
            request = request.evolve(
                status=ApprovalRequestStatus.PENDING,
                current_level=1,
                due_date=due_date_for_level(workflow, first, now),
            )

        created = self._requests.create(request)
        self._auditor.record(
            _ENTITY,
            created.id,
            AuditAction.SUBMIT,
            user_id=requested_by,
            new_values={
                "request_number": created.request_number,
                "workflow_code": workflow.code,
                "status": created.status,
                "amount": created.amount,
                "currency": created.currency,
            },
        )
        logger.info(
            "approval_request_submitted",
            extra={
                "request_id": str(created.id),
                "request_number": created.request_number,
                "workflow_code": workflow.code,
                "document_type": document_type,
                "amount": amount,
                "currency": currency.value,
                "status": created.status.value,
            },
        )

        if created.status is ApprovalRequestStatus.APPROVED:
            if workflow.notify_requester:
                self._notify_requester(created, "approved")
        elif workflow.notify_approver:
            self._notify_level(created, workflow.level(1))
        return created

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def approve(
        self,
        request_id: UUID,
        approver_id: UUID,
        comments: str | None = None,
    ) -> ApprovalRequest:
        request = self._load_open(request_id, "approve")
        workflow = self._workflows.find_by_id(request.workflow_id)
        if workflow.require_comments and not (comments and comments.strip()):
            raise ValidationError(
                f"Workflow {workflow.code} requires comments on approval"
            )

        level = self._acting_level(request, workflow, approver_id)
        action = self._action(
            request, level.level_number, approver_id, ApprovalActionType.APPROVE, comments,
        )
        actions = request.actions + (action,)
        evaluation = evaluate_level(
            workflow.approval_type,
            level,
            _at_level(actions, level.level_number),
            self._directory.groups_of,
        )

        old_status, old_level = request.status, request.current_level
        if workflow.approval_type is ApprovalType.ANY_APPROVER and evaluation.satisfied:
            updated = self._finalize_approved(request, actions, approver_id)
        elif evaluation.satisfied:
            updated = self._advance(request, workflow, actions, approver_id)
        else:
            status = request.status
            if status is ApprovalRequestStatus.PENDING:
                status = ApprovalRequestStatus.IN_PROGRESS
            updated = request.evolve(status=status, actions=actions, updated_by=approver_id)

        saved = self._requests.update(updated)
        self._auditor.record(
            _ENTITY,
            saved.id,
            AuditAction.APPROVE,
            user_id=approver_id,
            old_values={"status": old_status, "current_level": old_level},
            new_values={"status": saved.status, "current_level": saved.current_level},
        )
        logger.info(
            "approval_request_approved",
            extra={
                "request_id": str(saved.id),
                "approver_id": str(approver_id),
                "level_number": level.level_number,
                "counted": len(evaluation.counted_approvers),
                "required": evaluation.required,
                "level_satisfied": evaluation.satisfied,
                "status": saved.status.value,
                "current_level": saved.current_level,
            },
        )

        if saved.status is ApprovalRequestStatus.APPROVED:
            if workflow.notify_requester:
                self._notify_requester(saved, "approved")
        elif saved.current_level != old_level and workflow.notify_approver:
            self._notify_level(saved, workflow.level(saved.current_level))
        return saved

    def reject(self, request_id: UUID, approver_id: UUID, reason: str) -> ApprovalRequest:
        """
        Reject the request outright, whatever level it is at.

        Rejection is a normal outcome, not an error.
        """
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        request = self._load_open(request_id, "reject")
        workflow = self._workflows.find_by_id(request.workflow_id)
        level = self._acting_level(request, workflow, approver_id)

        now = self._clock.now()
        action = self._action(
            request, level.level_number, approver_id, ApprovalActionType.REJECT, reason,
        )
        old_status, old_level = request.status, request.current_level
        saved = self._requests.update(
            request.evolve(
                status=ApprovalRequestStatus.REJECTED,
                current_level=None,
                due_date=None,
                rejected_at=now,
                rejected_by=approver_id,
                rejection_reason=reason,
                actions=request.actions + (action,),
                updated_by=approver_id,
            )
        )
        self._auditor.record(
            _ENTITY,
            saved.id,
            AuditAction.REJECT,
            user_id=approver_id,
            old_values={"status": old_status, "current_level": old_level},
            new_values={"status": saved.status, "rejection_reason": reason},
        )
        logger.info(
            "approval_request_rejected",
            extra={
                "request_id": str(saved.id),
                "approver_id": str(approver_id),
                "level_number": level.level_number,
            },
        )
        if workflow.notify_requester:
            self._notify_requester(saved, "rejected")
        return saved

    def cancel(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> ApprovalRequest:
        request = self._requests.find_by_id(request_id)
        if request.is_terminal:
            raise RequestNotActionableError(request_id, request.status.value, "cancel")
        workflow = self._workflows.find_by_id(request.workflow_id)
        if actor_id != request.requested_by and not self._directory.is_workflow_admin(
            actor_id, workflow,
        ):
            raise CancellationNotPermittedError(request_id, actor_id)

        old_status = request.status
        saved = self._requests.update(
            request.evolve(
                status=ApprovalRequestStatus.CANCELLED,
                current_level=None,
                due_date=None,
                cancelled_at=self._clock.now(),
                cancelled_by=actor_id,
                updated_by=actor_id,
            )
        )
        self._auditor.record(
            _ENTITY,
            saved.id,
            AuditAction.CANCEL,
            user_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": saved.status, "reason": reason},
        )
        logger.info(
            "approval_request_cancelled",
            extra={
                "request_id": str(saved.id),
                "actor_id": str(actor_id),
                "by_requester": actor_id == request.requested_by,
            },
        )
        return saved

    def delegate(
        self,
        request_id: UUID,
        approver_id: UUID,
        delegate_to: UUID,
        comments: str | None = None,
    ) -> ApprovalRequest:
        """
        Hand the actor's obligation at the current level to ``delegate_to``.

        The delegate covers the delegator's approver entries and sees the
        request as pending; the delegator no longer does.
        Delegating to someone who can already act at the level is refused.
        """
        request = self._load_open(request_id, "delegate")
        workflow = self._workflows.find_by_id(request.workflow_id)
        if not workflow.allow_delegation:
            raise DelegationNotAllowedError(workflow.code)
        if delegate_to == approver_id:
            raise ValidationError("An approver cannot delegate to themselves")

        level = self._current_level(request, workflow)
        level_actions = request.actions_at(level.level_number)
        if not is_eligible(level, approver_id, level_actions, self._directory.groups_of):
            raise NotAnApproverError(request_id, approver_id, level.level_number)
        # A delegate's approval counts once, so the level could fall short.
        if is_eligible(level, delegate_to, level_actions, self._directory.groups_of):
            raise ValidationError(
                "Cannot delegate to an approver who is already eligible at this level"
            )
        for existing in level_actions:
            if existing.approver_id == approver_id and existing.action is ApprovalActionType.APPROVE:
                raise ValidationError(
                    "Approver has already approved this level and cannot delegate it"
                )
            if (
                existing.approver_id == delegate_to
                and existing.action is ApprovalActionType.DELEGATE
            ):
                raise ValidationError(
                    "Cannot delegate to an approver who has delegated this level"
                )

        action = self._action(
            request,
            level.level_number,
            approver_id,
            ApprovalActionType.DELEGATE,
            comments,
            delegated_to=delegate_to,
        )
        saved = self._requests.update(
            request.evolve(actions=request.actions + (action,), updated_by=approver_id)
        )
        self._auditor.record(
            _ENTITY,
            saved.id,
            AuditAction.DELEGATE,
            user_id=approver_id,
            new_values={
                "level_number": level.level_number,
                "delegated_to": delegate_to,
            },
        )
        logger.info(
            "approval_request_delegated",
            extra={
                "request_id": str(saved.id),
                "approver_id": str(approver_id),
                "delegated_to": str(delegate_to),
                "level_number": level.level_number,
            },
        )
        self._notifier.notify(
            delegate_to,
            f"Approval delegated: {saved.request_number}",
            f"{saved.document_type} {saved.document_number} awaits your approval",
            {"request_id": str(saved.id), "level_number": level.level_number},
        )
        return saved

    def request_info(
        self,
        request_id: UUID,
        approver_id: UUID,
        comments: str,
    ) -> ApprovalRequest:
        """Ask the requester for more information without deciding."""
        if not comments or not comments.strip():
            raise ValidationError("A question for the requester is required")
        request = self._load_open(request_id, "request_info")
        workflow = self._workflows.find_by_id(request.workflow_id)
        level = self._acting_level(request, workflow, approver_id)

        action = self._action(
            request, level.level_number, approver_id, ApprovalActionType.REQUEST_INFO, comments,
        )
        saved = self._requests.update(
            request.evolve(actions=request.actions + (action,), updated_by=approver_id)
        )
        self._auditor.record(
            _ENTITY,
            saved.id,
            AuditAction.UPDATE,
            user_id=approver_id,
            new_values={"information_requested": comments},
        )
        logger.info(
            "approval_information_requested",
            extra={
                "request_id": str(saved.id),
                "approver_id": str(approver_id),
                "level_number": level.level_number,
            },
        )
        self._notifier.notify(
            saved.requested_by,
            f"Information requested: {saved.request_number}",
            comments,
            {"request_id": str(saved.id), "approver_id": str(approver_id)},
        )
        return saved

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def escalate_overdue(self, limit: int = 100) -> list[ApprovalRequest]:
        """
        Mark Pending/InProgress requests past their due date as Escalated.

        Notifies the current level's ``escalation_to``.  Escalation grants no
        approval rights and records no action.
        """
        now = self._clock.now()
        escalated: list[ApprovalRequest] = []
        for request in self._requests.find_overdue(now, limit=limit):
            workflow = self._workflows.find_by_id(request.workflow_id)
            level = workflow.level(request.current_level) if request.current_level else None
            saved = self._requests.update(
                request.evolve(
                    status=ApprovalRequestStatus.ESCALATED,
                    escalated_at=now,
                    updated_by=SYSTEM_ACTOR_ID,
                )
            )
            self._auditor.record(
                _ENTITY,
                saved.id,
                AuditAction.ESCALATE,
                user_id=SYSTEM_ACTOR_ID,
                old_values={"status": request.status, "due_date": request.due_date},
                new_values={"status": saved.status, "escalated_at": now},
            )
            target = level.escalation_to if level is not None else None
            logger.warning(
                "approval_request_escalated",
                extra={
                    "request_id": str(saved.id),
                    "request_number": saved.request_number,
                    "level_number": saved.current_level,
                    "due_date": request.due_date,
                    "escalation_to": str(target) if target else None,
                },
            )
            if target is not None:
                self._notifier.notify(
                    target,
                    f"Approval overdue: {saved.request_number}",
                    f"{saved.document_type} {saved.document_number} is past due "
                    f"at level {saved.current_level}",
                    {"request_id": str(saved.id), "level_number": saved.current_level},
                )
            escalated.append(saved)
        return escalated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self._requests.find_by_id(request_id)

    def get_request_by_number(self, request_number: str) -> ApprovalRequest:
        return self._requests.find_by_number(request_number)

    def list_requests(
        self,
        pagination: Pagination | None = None,
        status: ApprovalRequestStatus | None = None,
        requested_by: UUID | None = None,
    ) -> Paginated[ApprovalRequest]:
        criteria = []
        if status is not None:
            criteria.append(ApprovalRequestModel.status == status)
        if requested_by is not None:
            criteria.append(ApprovalRequestModel.requested_by == requested_by)
        return self._requests.find_all(pagination or Pagination(), *criteria)

    def get_pending_for_approver(
        self,
        user_id: UUID,
        pagination: Pagination | None = None,
    ) -> Paginated[ApprovalRequest]:
        """Open requests waiting on ``user_id`` at their current level, soonest due first."""
        return self._requests.find_pending_for_approver(
            user_id, self._principals(user_id), pagination or Pagination(),
        )

    def get_pending_summary(self, user_id: UUID) -> PendingApprovalSummary:
        pending = self._requests.all_pending_for_approver(user_id, self._principals(user_id))
        now = self._clock.now()
        severities: Counter[DueSeverity] = Counter()
        totals: Counter[str] = Counter()
        by_type: Counter[str] = Counter()
        for request in pending:
            severities[classify_due(request.due_date, now, self._approaching_window)] += 1
            totals[request.currency.value] += request.amount
            by_type[request.document_type] += 1
        return PendingApprovalSummary(
            approver_id=user_id,
            pending_count=len(pending),
            on_time=severities[DueSeverity.ON_TIME],
            approaching=severities[DueSeverity.APPROACHING],
            overdue=severities[DueSeverity.OVERDUE],
            total_amount_minor=dict(totals),
            by_document_type=dict(by_type),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _next_request_number(self) -> str:
        return f"APR-{self._sequence.next_value(SequenceService.APPROVAL_REQUEST):06d}"

    def _principals(self, user_id: UUID) -> frozenset[UUID]:
        return frozenset({user_id}) | self._directory.groups_of(user_id)

    def _load_open(self, request_id: UUID, operation: str) -> ApprovalRequest:
        request = self._requests.find_by_id(request_id)
        if request.status not in OPEN_REQUEST_STATUSES:
            raise RequestNotActionableError(request_id, request.status.value, operation)
        return request

    def _current_level(self, request: ApprovalRequest, workflow: ApprovalWorkflow) -> ApprovalLevel:
        level = workflow.level(request.current_level) if request.current_level else None
        if level is None:
            raise RequestNotActionableError(
                request.id, request.status.value, f"act at level {request.current_level}",
            )
        return level

    def _acting_level(
        self,
        request: ApprovalRequest,
        workflow: ApprovalWorkflow,
        actor_id: UUID,
    ) -> ApprovalLevel:
        """
        The level at which ``actor_id`` acts.

        For AnyApprover workflows that is the first level at or after the
        current one where the actor is eligible; otherwise the current level.
        """
        current = self._current_level(request, workflow)
        if workflow.approval_type is ApprovalType.ANY_APPROVER:
            candidates = [
                level for level in workflow.levels if level.level_number >= current.level_number
            ]
        else:
            candidates = [current]
        for level in candidates:
            if is_eligible(
                level,
                actor_id,
                request.actions_at(level.level_number),
                self._directory.groups_of,
            ):
                return level
        raise NotAnApproverError(request.id, actor_id, current.level_number)

    def _action(
        self,
        request: ApprovalRequest,
        level_number: int,
        approver_id: UUID,
        action: ApprovalActionType,
        comments: str | None = None,
        delegated_to: UUID | None = None,
    ) -> ApprovalAction:
        now = self._clock.now()
        return ApprovalAction(
            request_id=request.id,
            level_number=level_number,
            approver_id=approver_id,
            action=action,
            comments=comments,
            delegated_to=delegated_to,
            created_at=now,
            updated_at=now,
            created_by=approver_id,
        )

    def _advance(
        self,
        request: ApprovalRequest,
        workflow: ApprovalWorkflow,
        actions: tuple[ApprovalAction, ...],
        actor_id: UUID,
    ) -> ApprovalRequest:
        """
        Move past the satisfied current level.

        Levels flagged ``skip_if_approved_above`` first receive carried-forward
        approvals from earlier levels; if those satisfy the level it is passed
        as well.
        """
        next_number = request.current_level + 1
        while next_number <= workflow.level_count:
            level = workflow.level(next_number)
            if level.skip_if_approved_above:
                for carried_id, from_level in carried_forward_approvers(
                    level, actions, self._directory.groups_of,
                ):
                    actions = actions + (
                        self._action(
                            request,
                            next_number,
                            carried_id,
                            ApprovalActionType.APPROVE,
                            comments=f"Carried forward from level {from_level}",
                        ),
                    )
                evaluation = evaluate_level(
                    workflow.approval_type,
                    level,
                    _at_level(actions, next_number),
                    self._directory.groups_of,
                )
                if evaluation.satisfied:
                    logger.info(
                        "approval_level_skipped",
                        extra={"request_id": str(request.id), "level_number": next_number},
                    )
                    next_number += 1
                    continue

            return request.evolve(
                status=ApprovalRequestStatus.IN_PROGRESS,
                current_level=next_number,
                due_date=due_date_for_level(workflow, level, self._clock.now()),
                actions=actions,
                updated_by=actor_id,
            )
        return self._finalize_approved(request, actions, actor_id)

    def _finalize_approved(
        self,
        request: ApprovalRequest,
        actions: tuple[ApprovalAction, ...],
        actor_id: UUID,
    ) -> ApprovalRequest:
        return request.evolve(
            status=ApprovalRequestStatus.APPROVED,
            current_level=None,
            due_date=None,
            approved_at=self._clock.now(),
            approved_by=actor_id,
            actions=actions,
            updated_by=actor_id,
        )

    def _notify_level(self, request: ApprovalRequest, level: ApprovalLevel | None) -> None:
        if level is None:
            return
        for recipient in level.approver_ids:
            self._notifier.notify(
                recipient,
                f"Approval required: {request.request_number}",
                f"{request.document_type} {request.document_number} for "
                f"{request.money} awaits approval at level {level.level_number} ({level.name})",
                {
                    "request_id": str(request.id),
                    "level_number": level.level_number,
                    "due_date": request.due_date.isoformat() if request.due_date else None,
                },
            )

    def _notify_requester(self, request: ApprovalRequest, outcome: str) -> None:
        self._notifier.notify(
            request.requested_by,
            f"Request {request.request_number} {outcome}",
            f"{request.document_type} {request.document_number} was {outcome}",
            {"request_id": str(request.id), "status": request.status.value},
        )


def _at_level(
    actions: tuple[ApprovalAction, ...], level_number: int,
) -> tuple[ApprovalAction, ...]:
    return tuple(a for a in actions if a.level_number == level_number)
