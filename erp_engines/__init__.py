"""
Module: erp_engines
Responsibility:
    Pure calculation engines.  Each sub-module is deterministic and free
    of I/O: no sessions, no clock access, no logging side effects.
    Callers pass the current time and any resolved collaborator data in.

Architecture position:
    Engines -- may import erp_kernel.domain only.  MUST NOT import
    erp_kernel.services, erp_jobs or erp_modules.
"""

from erp_engines.approval import (
    DueSeverity,
    LevelEvaluation,
    amount_in_bounds,
    carried_forward_approvers,
    classify_due,
    delegation_map,
    due_date_for_level,
    evaluate_level,
    is_eligible,
    qualifies_for_auto_approval,
    select_workflow,
    workflow_definition_errors,
)

__all__ = [
    "DueSeverity",
    "LevelEvaluation",
    "amount_in_bounds",
    "carried_forward_approvers",
    "classify_due",
    "delegation_map",
    "due_date_for_level",
    "evaluate_level",
    "is_eligible",
    "qualifies_for_auto_approval",
    "select_workflow",
    "workflow_definition_errors",
]
