"""
Text enum encoding.

Verifies:
- Every variant survives encode -> parse
- Parsing ignores case, whitespace and separators
- Unknown strings resolve to the enum's documented default
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from erp_engines.approval import DueSeverity
from erp_jobs.domain.types import ExecutionStatus, JobPriority, JobStatus, JobType, ScheduleType
from erp_kernel.domain.approval import (
    ApprovalActionType,
    ApprovalRequestStatus,
    ApprovalType,
    ApproverType,
    WorkflowStatus,
)
from erp_kernel.domain.enums import AuditAction, Currency, Status
from erp_modules.parties.models import PartyType

ALL_ENUMS = [
    Status,
    Currency,
    AuditAction,
    JobType,
    JobPriority,
    JobStatus,
    ExecutionStatus,
    ScheduleType,
    ApprovalType,
    ApproverType,
    WorkflowStatus,
    ApprovalRequestStatus,
    ApprovalActionType,
    DueSeverity,
    PartyType,
]

ALL_VARIANTS = [(enum_cls, member) for enum_cls in ALL_ENUMS for member in enum_cls]


def _names_and_values(enum_cls) -> set[str]:
    folded = set()
    for member in enum_cls:
        folded.add("".join(ch for ch in member.value if ch not in "-_ ").casefold())
        folded.add("".join(ch for ch in member.name if ch not in "-_ ").casefold())
    return folded


class TestRoundTrip:

    @pytest.mark.parametrize(
        "enum_cls,member", ALL_VARIANTS, ids=lambda v: getattr(v, "__name__", str(v)),
    )
    def test_encode_then_parse_returns_variant(self, enum_cls, member):
        assert enum_cls.parse(member.value) is member
        assert enum_cls(str(member)) is member

    @given(
        enum_cls=st.sampled_from(ALL_ENUMS),
        text=st.text(alphabet=st.characters(min_codepoint=48, max_codepoint=122), max_size=20),
    )
    def test_unknown_text_parses_to_default(self, enum_cls, text):
        folded = "".join(ch for ch in text.strip() if ch not in "-_ ").casefold()
        if folded in _names_and_values(enum_cls):
            return
        assert enum_cls.parse(text) is enum_cls.default()


class TestTolerantParsing:

    def test_case_and_whitespace_ignored(self):
        assert Status.parse("  inactive ") is Status.INACTIVE
        assert ApprovalRequestStatus.parse("inprogress") is ApprovalRequestStatus.IN_PROGRESS

    def test_separators_ignored(self):
        assert ApprovalRequestStatus.parse("in-progress") is ApprovalRequestStatus.IN_PROGRESS
        assert ApprovalRequestStatus.parse("IN_PROGRESS") is ApprovalRequestStatus.IN_PROGRESS
        assert ScheduleType.parse("specific times") is ScheduleType.SPECIFIC_TIMES

    def test_lookup_returns_none_for_unknown(self):
        assert Currency.lookup("XYZ") is None
        assert Currency.lookup(42) is None

    def test_non_string_parses_to_default(self):
        assert Status.parse(None) is Status.ACTIVE


class TestDefaults:
    """Defaults that differ from the first declared variant."""

    def test_first_variant_is_default(self):
        assert Status.parse("archived") is Status.ACTIVE
        assert JobType.parse("sometimes") is JobType.ONE_TIME

    def test_job_priority_defaults_to_normal(self):
        assert JobPriority.parse("urgent!!") is JobPriority.NORMAL

    def test_unreadable_job_status_is_held(self):
        assert JobStatus.parse("exploded") is JobStatus.PAUSED

    def test_unreadable_execution_status_counts_as_failed(self):
        assert ExecutionStatus.parse("???") is ExecutionStatus.FAILED

    def test_unreadable_action_never_counts_as_approval(self):
        assert ApprovalActionType.parse("rubber-stamp") is ApprovalActionType.REQUEST_INFO

    def test_priority_rank_orders_critical_first(self):
        ranked = sorted(JobPriority, key=lambda p: p.rank)
        assert ranked == [
            JobPriority.CRITICAL,
            JobPriority.HIGH,
            JobPriority.NORMAL,
            JobPriority.LOW,
        ]
