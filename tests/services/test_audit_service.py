"""Audit trail: sequence ordering, value serialization and pagination."""

from datetime import UTC, datetime
from uuid import uuid4

from erp_kernel.domain.enums import AuditAction, Status
from erp_kernel.domain.pagination import Pagination
from erp_kernel.services.audit_service import AuditService


class TestAuditService:

    def test_entries_oldest_first(self, session, deterministic_clock, test_actor_id):
        audit = AuditService(session, deterministic_clock)
        entity_id = uuid4()

        first = audit.record("Widget", entity_id, AuditAction.CREATE, user_id=test_actor_id)
        deterministic_clock.advance(5)
        second = audit.record("Widget", entity_id, AuditAction.UPDATE, user_id=test_actor_id)
        audit.record("Widget", uuid4(), AuditAction.DELETE)

        trail = audit.list_for_entity("Widget", entity_id)

        assert trail.total_count == 2
        assert [e.id for e in trail.items] == [first.id, second.id]
        assert second.seq > first.seq
        assert trail.items[1].created_at == deterministic_clock.now()

    def test_values_stored_as_json(self, session, deterministic_clock):
        audit = AuditService(session, deterministic_clock)
        ref = uuid4()
        when = datetime(2026, 3, 1, tzinfo=UTC)

        entry = audit.record(
            "Widget",
            uuid4(),
            AuditAction.UPDATE,
            old_values={"status": Status.ACTIVE, "owner": ref},
            new_values={"status": Status.INACTIVE, "due": when, "count": 3},
        )

        assert entry.old_values == {"status": "Active", "owner": str(ref)}
        assert entry.new_values == {"status": "Inactive", "due": when.isoformat(), "count": 3}

    def test_pagination(self, session, deterministic_clock):
        audit = AuditService(session, deterministic_clock)
        entity_id = uuid4()
        for _ in range(5):
            audit.record("Widget", entity_id, AuditAction.UPDATE)

        page = audit.list_for_entity("Widget", entity_id, Pagination(page=2, per_page=2))

        assert page.total_count == 5
        assert len(page.items) == 2
        assert page.has_next

    def test_records_are_logged(self, session, deterministic_clock, captured_logs):
        AuditService(session, deterministic_clock).record("Widget", uuid4(), AuditAction.CREATE)
        records = [r for r in captured_logs() if r["message"] == "audit_recorded"]
        assert records[0]["entity_type"] == "Widget"
        assert records[0]["action"] == "Create"
