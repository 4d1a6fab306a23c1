"""
erp_engines.approval -- pure approval routing rules.

Responsibility:
    Decide everything about an approval request that can be decided from
    data alone: whether a workflow definition is well formed, which
    workflow routes a document, who may act at a level (including
    delegation), whether a level is satisfied under the workflow's
    approval type, when a level falls due and how urgent it is.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import erp_kernel.domain types.

Invariants enforced:
    - Level numbers must be exactly 1..N.
    - min_approvers is between 1 and the number of listed approvers.
    - Duplicate Approve actions by one actor count once toward a level.
    - A delegator loses its approval rights at the level; the delegate
      acts for the approver entries the delegator covered.
    - Workflow selection is deterministic: the highest ``min_amount`` wins,
      then the narrowest amount range, then the lowest code.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from erp_kernel.domain.approval import (
    ApprovalAction,
    ApprovalActionType,
    ApprovalLevel,
    ApprovalType,
    ApprovalWorkflow,
    WorkflowStatus,
)
from erp_kernel.domain.enums import TextEnum

GroupResolver = Callable[[UUID], frozenset[UUID]]


def _no_groups(user_id: UUID) -> frozenset[UUID]:
    return frozenset()


# =========================================================================
# Workflow definition
# =========================================================================


def workflow_definition_errors(workflow: ApprovalWorkflow) -> list[str]:
    """Every structural problem with a workflow definition, empty when valid."""
    errors: list[str] = []

    if not workflow.code.strip():
        errors.append("code must not be blank")
    if not workflow.name.strip():
        errors.append("name must not be blank")
    if not workflow.document_type.strip():
        errors.append("document_type must not be blank")

    if not workflow.levels:
        errors.append("at least one approval level is required")

    numbers = sorted(level.level_number for level in workflow.levels)
    if numbers != list(range(1, len(numbers) + 1)):
        errors.append(
            f"level numbers must be 1..{len(numbers)} without gaps, got {numbers}"
        )

    for level in workflow.levels:
        prefix = f"level {level.level_number}"
        if not level.approver_ids:
            errors.append(f"{prefix}: approver_ids must not be empty")
        if len(set(level.approver_ids)) != len(level.approver_ids):
            errors.append(f"{prefix}: approver_ids contains duplicates")
        if level.min_approvers < 1:
            errors.append(f"{prefix}: min_approvers must be at least 1")
        elif level.min_approvers > len(level.approver_ids):
            errors.append(
                f"{prefix}: min_approvers ({level.min_approvers}) exceeds "
                f"approver count ({len(level.approver_ids)})"
            )
        if level.due_hours is not None and level.due_hours <= 0:
            errors.append(f"{prefix}: due_hours must be positive")

    for label, value in (
        ("min_amount", workflow.min_amount),
        ("max_amount", workflow.max_amount),
        ("auto_approve_below", workflow.auto_approve_below),
    ):
        if value is not None and value < 0:
            errors.append(f"{label} must not be negative")

    if (
        workflow.min_amount is not None
        and workflow.max_amount is not None
        and workflow.min_amount > workflow.max_amount
    ):
        errors.append("min_amount must not exceed max_amount")

    if (
        workflow.auto_approve_below is not None
        and workflow.max_amount is not None
        and workflow.auto_approve_below > workflow.max_amount
    ):
        errors.append("auto_approve_below must not exceed max_amount")

    if workflow.escalation_hours is not None and workflow.escalation_hours <= 0:
        errors.append("escalation_hours must be positive")

    return errors


def amount_in_bounds(workflow: ApprovalWorkflow, amount: int) -> bool:
    if workflow.min_amount is not None and amount < workflow.min_amount:
        return False
    if workflow.max_amount is not None and amount > workflow.max_amount:
        return False
    return True


def qualifies_for_auto_approval(workflow: ApprovalWorkflow, amount: int) -> bool:
    return workflow.auto_approve_below is not None and amount < workflow.auto_approve_below


def _selection_key(workflow: ApprovalWorkflow) -> tuple:
    floor = workflow.min_amount if workflow.min_amount is not None else -1
    if workflow.max_amount is None:
        width: float = float("inf")
    else:
        width = workflow.max_amount - (workflow.min_amount or 0)
    return (-floor, width, workflow.code)


def select_workflow(
    workflows: Iterable[ApprovalWorkflow],
    document_type: str,
    amount: int,
) -> ApprovalWorkflow | None:
    """The active workflow that routes ``document_type`` at ``amount``, or None."""
    candidates = [
        w for w in workflows
        if w.status is WorkflowStatus.ACTIVE
        and w.document_type == document_type
        and amount_in_bounds(w, amount)
    ]
    if not candidates:
        return None
    return min(candidates, key=_selection_key)


# =========================================================================
# Eligibility and delegation
# =========================================================================


def delegation_map(actions: Iterable[ApprovalAction]) -> dict[UUID, UUID]:
    """Delegator -> delegate for Delegate actions; a later delegation wins."""
    mapping: dict[UUID, UUID] = {}
    for action in actions:
        if action.action is ApprovalActionType.DELEGATE and action.delegated_to is not None:
            mapping[action.approver_id] = action.delegated_to
    return mapping


def _resolve(user_id: UUID, delegations: dict[UUID, UUID]) -> UUID:
    seen = {user_id}
    current = user_id
    while current in delegations:
        current = delegations[current]
        if current in seen:
            break
        seen.add(current)
    return current


def _direct_entries(
    level: ApprovalLevel, user_id: UUID, groups_of: GroupResolver,
) -> frozenset[UUID]:
    listed = frozenset(level.approver_ids)
    if level.is_group_level:
        return listed & groups_of(user_id)
    return listed & {user_id}


def covered_entries(
    level: ApprovalLevel,
    actor_id: UUID,
    level_actions: Sequence[ApprovalAction] = (),
    groups_of: GroupResolver = _no_groups,
) -> frozenset[UUID]:
    """
    The ``approver_ids`` entries ``actor_id`` can act for at ``level``.

    An actor who delegated covers nothing; a delegate covers whatever its
    delegators (transitively) covered.
    """
    delegations = delegation_map(level_actions)
    covered: set[UUID] = set()
    if actor_id not in delegations:
        covered |= _direct_entries(level, actor_id, groups_of)
    for delegator in delegations:
        if delegator != actor_id and _resolve(delegator, delegations) == actor_id:
            covered |= _direct_entries(level, delegator, groups_of)
    return frozenset(covered)


def is_eligible(
    level: ApprovalLevel,
    actor_id: UUID,
    level_actions: Sequence[ApprovalAction] = (),
    groups_of: GroupResolver = _no_groups,
) -> bool:
    return bool(covered_entries(level, actor_id, level_actions, groups_of))


# =========================================================================
# Level satisfaction
# =========================================================================


@dataclass(frozen=True)
class LevelEvaluation:
    level_number: int
    satisfied: bool
    counted_approvers: tuple[UUID, ...]
    required: int
    uncovered: frozenset[UUID] = frozenset()


def evaluate_level(
    approval_type: ApprovalType,
    level: ApprovalLevel,
    level_actions: Sequence[ApprovalAction],
    groups_of: GroupResolver = _no_groups,
) -> LevelEvaluation:
    """
    Apply the level-satisfaction rule for ``approval_type``.

    Only Approve actions by actors eligible at the level count, and each
    actor counts once however many times it approved.
    """
    counted: list[UUID] = []
    covered: set[UUID] = set()
    for action in level_actions:
        if action.action is not ApprovalActionType.APPROVE:
            continue
        if action.approver_id in counted:
            continue
        entries = covered_entries(level, action.approver_id, level_actions, groups_of)
        if not entries:
            continue
        counted.append(action.approver_id)
        covered |= entries

    if approval_type is ApprovalType.ANY_APPROVER:
        required = 1
        satisfied = len(counted) >= 1
        uncovered: frozenset[UUID] = frozenset()
    elif approval_type is ApprovalType.ALL_APPROVERS:
        uncovered = frozenset(level.approver_ids) - covered
        required = max(level.min_approvers, 1)
        satisfied = not uncovered and len(counted) >= required
    else:
        required = level.min_approvers
        satisfied = len(counted) >= required
        uncovered = frozenset()

    return LevelEvaluation(
        level_number=level.level_number,
        satisfied=satisfied,
        counted_approvers=tuple(counted),
        required=required,
        uncovered=uncovered,
    )


def carried_forward_approvers(
    level: ApprovalLevel,
    prior_actions: Sequence[ApprovalAction],
    groups_of: GroupResolver = _no_groups,
) -> list[tuple[UUID, int]]:
    """
    Approvers of earlier levels who are also eligible at ``level``.

    Used for levels flagged ``skip_if_approved_above``: each returned
    ``(approver_id, from_level)`` has its earlier approval recorded again
    at ``level``.
    """
    already = {
        a.approver_id for a in prior_actions
        if a.level_number == level.level_number and a.action is ApprovalActionType.APPROVE
    }
    result: list[tuple[UUID, int]] = []
    for action in prior_actions:
        if action.action is not ApprovalActionType.APPROVE:
            continue
        if action.level_number >= level.level_number:
            continue
        if action.approver_id in already:
            continue
        if _direct_entries(level, action.approver_id, groups_of):
            already.add(action.approver_id)
            result.append((action.approver_id, action.level_number))
    return result


# =========================================================================
# Due dates
# =========================================================================


class DueSeverity(TextEnum):
    ON_TIME = "OnTime"
    APPROACHING = "Approaching"
    OVERDUE = "Overdue"


def due_date_for_level(
    workflow: ApprovalWorkflow,
    level: ApprovalLevel,
    start: datetime,
) -> datetime | None:
    """``start`` plus the level's due_hours, falling back to escalation_hours."""
    hours = level.due_hours if level.due_hours is not None else workflow.escalation_hours
    if hours is None:
        return None
    return start + timedelta(hours=hours)


def classify_due(
    due_date: datetime | None,
    now: datetime,
    approaching_window: timedelta,
) -> DueSeverity:
    if due_date is None:
        return DueSeverity.ON_TIME
    if due_date < now:
        return DueSeverity.OVERDUE
    if due_date - now <= approaching_window:
        return DueSeverity.APPROACHING
    return DueSeverity.ON_TIME
