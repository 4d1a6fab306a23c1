"""
Pytest fixtures for the ERP test suite.

Provides:
- An in-memory SQLite database per test (every table created fresh)
- A session factory for code that opens its own transactions (workers)
- A deterministic clock and a stable test actor
- Captured structured logs

Tests that need real cross-connection locking build a file-backed
database under ``tmp_path`` themselves.
"""

import json
import logging
from datetime import UTC, datetime
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from erp_kernel.db.engine import build_engine, create_tables
from erp_kernel.domain.approval import ApprovalLevel, ApprovalWorkflow
from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# Fixed start instant for every deterministic clock
CLOCK_START = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ``erp`` logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, job_service):
            job_service.submit("nightly", "reports.nightly")
            logs = captured_logs()
            assert any(r["message"] == "job_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("erp")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """A private in-memory database with every table created."""
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Services flush and never commit, so everything a test writes stays in
    this session's transaction and disappears with the database.
    """
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Actor and clock fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Provide a deterministic clock starting at 2026-02-01 12:00 UTC."""
    return DeterministicClock(CLOCK_START)


# =============================================================================
# Approval fixtures
# =============================================================================


@pytest.fixture
def approvers() -> dict[str, UUID]:
    """Named actors: level approvers u1..u5 plus requester, admin, manager."""
    return {
        name: uuid4()
        for name in ("u1", "u2", "u3", "u4", "u5", "requester", "admin", "manager")
    }


@pytest.fixture
def two_level_workflow(approvers):
    """
    Build the standard expense workflow.

    Level 1: one of u1/u2, due in 24h, escalates to ``manager``.
    Level 2: two of u3/u4/u5, due in 48h.
    """

    def _build(**overrides) -> ApprovalWorkflow:
        fields = {
            "code": "EXP-STD",
            "name": "Standard expense approval",
            "document_type": "expense",
            "levels": (
                ApprovalLevel(
                    level_number=1,
                    name="Manager",
                    approver_ids=(approvers["u1"], approvers["u2"]),
                    due_hours=24,
                    escalation_to=approvers["manager"],
                ),
                ApprovalLevel(
                    level_number=2,
                    name="Finance",
                    approver_ids=(approvers["u3"], approvers["u4"], approvers["u5"]),
                    min_approvers=2,
                    due_hours=48,
                ),
            ),
        }
        fields.update(overrides)
        return ApprovalWorkflow(**fields)

    return _build
