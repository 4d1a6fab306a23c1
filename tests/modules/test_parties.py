"""
Tests for the parties module.

Covers:
- Record-level validation on Party
- Create / read / update / delete through PartyService
- Status flips and filtered listing
- Audit rows for every change
"""

from uuid import uuid4

import pytest

from erp_kernel.domain.enums import AuditAction, Currency, Status
from erp_kernel.domain.pagination import Pagination
from erp_kernel.domain.values import Address, ContactInfo, Money
from erp_kernel.exceptions import DuplicateKeyError, NotFoundError, ValidationError
from erp_kernel.services.audit_service import AuditService
from erp_modules.parties import Party, PartyService, PartyType


@pytest.fixture
def parties(session, deterministic_clock) -> PartyService:
    return PartyService(session, deterministic_clock)


@pytest.fixture
def acme_address() -> Address:
    return Address(street="1 Main St", city="Springfield", country="US", postal_code="12345")


class TestPartyRecord:

    def test_defaults(self):
        party = Party(code="CUST-001", name="Acme")
        assert party.party_type is PartyType.CUSTOMER
        assert party.is_active
        assert party.payment_terms_days == 30

    @pytest.mark.parametrize(
        "fields",
        [
            {"code": " ", "name": "Acme"},
            {"code": "C1", "name": ""},
            {"code": "C1", "name": "Acme", "credit_limit": Money.of(-1)},
            {"code": "C1", "name": "Acme", "payment_terms_days": -5},
        ],
    )
    def test_invalid(self, fields):
        with pytest.raises(ValidationError):
            Party(**fields)


class TestPartyService:

    def test_create_and_round_trip(self, parties, acme_address, test_actor_id):
        created = parties.create_party(
            " CUST-001 ",
            "Acme Corp",
            "customer",
            actor_id=test_actor_id,
            address=acme_address,
            contact=ContactInfo(email="ap@acme.test"),
            credit_limit=Money.of(500_000, "EUR"),
            payment_terms_days=45,
            tax_id="US-99",
        )

        loaded = parties.get_party_by_code("CUST-001")

        assert loaded == created
        assert loaded.id == created.id
        assert loaded.address == acme_address
        assert loaded.contact.email == "ap@acme.test"
        assert loaded.credit_limit == Money(500_000, Currency.EUR)
        assert loaded.created_by == test_actor_id
        assert loaded.updated_at >= loaded.created_at

    def test_duplicate_code(self, parties):
        parties.create_party("V-1", "Supplier", PartyType.VENDOR)
        with pytest.raises(DuplicateKeyError):
            parties.create_party("V-1", "Other supplier", PartyType.VENDOR)

    def test_update_fields(self, parties, acme_address, deterministic_clock):
        party = parties.create_party("C-1", "Acme")
        deterministic_clock.advance(60)

        updated = parties.update_party(
            party.id, {"name": "Acme Holdings", "address": acme_address, "credit_limit": None},
        )

        assert updated.name == "Acme Holdings"
        assert updated.address == acme_address
        assert updated.updated_at == deterministic_clock.now()
        assert updated.created_at == party.created_at

    def test_fixed_fields_cannot_change(self, parties):
        party = parties.create_party("C-1", "Acme")
        with pytest.raises(ValidationError):
            parties.update_party(party.id, {"code": "C-2"})
        with pytest.raises(ValidationError):
            parties.update_party(party.id, {"status": Status.INACTIVE})

    def test_update_rejects_invalid_values(self, parties):
        party = parties.create_party("C-1", "Acme")
        with pytest.raises(ValidationError):
            parties.update_party(party.id, {"payment_terms_days": -1})

    def test_status_flips(self, parties):
        party = parties.create_party("C-1", "Acme")

        inactive = parties.deactivate_party(party.id)
        assert inactive.status is Status.INACTIVE
        assert not inactive.is_active
        assert parties.deactivate_party(party.id).updated_at == inactive.updated_at

        assert parties.activate_party(party.id).is_active

    def test_list_filters(self, parties):
        parties.create_party("C-1", "Acme")
        vendor = parties.create_party("V-1", "Supplier", PartyType.VENDOR)
        parties.create_party("V-2", "Other supplier", PartyType.VENDOR)
        parties.deactivate_party(vendor.id)

        vendors = parties.list_parties(party_type=PartyType.VENDOR)
        active_vendors = parties.list_parties(
            Pagination(per_page=1), party_type=PartyType.VENDOR, status=Status.ACTIVE,
        )

        assert vendors.total_count == 2
        assert [p.code for p in active_vendors.items] == ["V-2"]
        assert not active_vendors.has_next

    def test_delete(self, parties):
        party = parties.create_party("C-1", "Acme")
        parties.delete_party(party.id)
        with pytest.raises(NotFoundError):
            parties.get_party(party.id)
        with pytest.raises(NotFoundError):
            parties.delete_party(uuid4())

    def test_changes_are_audited(self, parties, session, deterministic_clock, test_actor_id):
        party = parties.create_party("C-1", "Acme", actor_id=test_actor_id)
        parties.update_party(party.id, {"credit_limit": Money.of(1_000)}, actor_id=test_actor_id)
        parties.deactivate_party(party.id, actor_id=test_actor_id)
        parties.delete_party(party.id, actor_id=test_actor_id)

        trail = AuditService(session, deterministic_clock).list_for_entity("Party", party.id)

        assert [e.action for e in trail.items] == [
            AuditAction.CREATE, AuditAction.UPDATE, AuditAction.UPDATE, AuditAction.DELETE,
        ]
        assert trail.items[1].new_values == {
            "credit_limit": {"amount_minor": 1_000, "currency": "USD"},
        }
        assert trail.items[2].new_values == {"status": "Inactive"}
        assert all(e.user_id == test_actor_id for e in trail.items)
