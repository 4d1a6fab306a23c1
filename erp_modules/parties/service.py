"""
Service layer for Party operations.

Manages customers and vendors.  Returns frozen ``Party`` records, never
ORM rows.

Invariants enforced:
    - Party codes are unique and fixed at creation.
    - Deactivation is a soft status flip; ``delete_party`` removes the row.
    - Every create, update, status flip and delete is audited.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT enforce credit limits against open balances.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.enums import AuditAction, Status
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.domain.values import Address, ContactInfo, Money
from erp_kernel.exceptions import DuplicateKeyError, ValidationError
from erp_kernel.logging_config import get_logger
from erp_kernel.services.audit_service import AuditService
from erp_modules.parties.models import Party, PartyType
from erp_modules.parties.orm import PartyModel
from erp_modules.parties.repository import PartyRepository

logger = get_logger("modules.parties.service")

_ENTITY = "Party"

PARTY_UPDATABLE_FIELDS: frozenset[str] = frozenset({
    "name",
    "address",
    "contact",
    "credit_limit",
    "payment_terms_days",
    "tax_id",
})


class PartyService:
    """
    Service for managing parties.

    Handles CRUD for customers and vendors, plus activate / deactivate.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)
        self._parties = PartyRepository(session, self._clock)

    def create_party(
        self,
        code: str,
        name: str,
        party_type: PartyType | str = PartyType.CUSTOMER,
        actor_id: UUID | None = None,
        address: Address | None = None,
        contact: ContactInfo | None = None,
        credit_limit: Money | None = None,
        payment_terms_days: int = 30,
        tax_id: str | None = None,
    ) -> Party:
        """
        Create a new party.

        Args:
            code: Unique identifier (e.g., "CUST-001", "VEND-ACME").
            name: Display name.
            party_type: Customer or Vendor.
            actor_id: Actor creating the party.
            credit_limit: Optional credit limit (customers).

        Raises:
            ValidationError: If a field is invalid.
            DuplicateKeyError: If ``code`` is taken.
        """
        party = Party(
            code=code.strip() if code else code,
            name=name,
            party_type=PartyType.parse(party_type),
            address=address,
            contact=contact,
            credit_limit=credit_limit,
            payment_terms_days=payment_terms_days,
            tax_id=tax_id,
            created_by=actor_id,
            updated_by=actor_id,
        )
        if self._parties.code_exists(party.code):
            raise DuplicateKeyError(_ENTITY, f"code={party.code}")

        created = self._parties.create(party)
        self._auditor.record(
            _ENTITY,
            created.id,
            AuditAction.CREATE,
            user_id=actor_id,
            new_values={"code": created.code, "name": created.name, "party_type": created.party_type.value},
        )
        logger.info(
            "party_created",
            extra={
                "party_id": str(created.id),
                "code": created.code,
                "party_type": created.party_type.value,
            },
        )
        return created

    def update_party(
        self,
        party_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID | None = None,
    ) -> Party:
        """
        Update party details.

        ``code`` and ``party_type`` cannot be changed; ``status`` changes go
        through activate_party / deactivate_party.
        """
        unknown = set(changes) - PARTY_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update party field(s): {', '.join(sorted(unknown))}")

        current = self._parties.find_by_id(party_id)
        updated = self._parties.update(current.evolve(**changes, updated_by=actor_id))
        self._auditor.record(
            _ENTITY,
            party_id,
            AuditAction.UPDATE,
            user_id=actor_id,
            old_values={k: _audit_value(getattr(current, k)) for k in changes},
            new_values={k: _audit_value(getattr(updated, k)) for k in changes},
        )
        logger.info(
            "party_updated",
            extra={"party_id": str(party_id), "fields": sorted(changes)},
        )
        return updated

    def get_party(self, party_id: UUID) -> Party:
        return self._parties.find_by_id(party_id)

    def get_party_by_code(self, code: str) -> Party:
        return self._parties.find_by_code(code)

    def list_parties(
        self,
        pagination: Pagination | None = None,
        party_type: PartyType | None = None,
        status: Status | None = None,
    ) -> Paginated[Party]:
        criteria = []
        if party_type is not None:
            criteria.append(PartyModel.party_type == party_type)
        if status is not None:
            criteria.append(PartyModel.status == status)
        return self._parties.find_all(pagination or Pagination(), *criteria)

    def deactivate_party(self, party_id: UUID, actor_id: UUID | None = None) -> Party:
        """Hide a party from selection lists; it stays available for history."""
        return self._set_status(party_id, Status.INACTIVE, actor_id)

    def activate_party(self, party_id: UUID, actor_id: UUID | None = None) -> Party:
        return self._set_status(party_id, Status.ACTIVE, actor_id)

    def delete_party(self, party_id: UUID, actor_id: UUID | None = None) -> None:
        party = self._parties.find_by_id(party_id)
        self._parties.delete(party_id)
        self._auditor.record(
            _ENTITY,
            party_id,
            AuditAction.DELETE,
            user_id=actor_id,
            old_values={"code": party.code, "name": party.name},
        )
        logger.info("party_deleted", extra={"party_id": str(party_id), "code": party.code})

    def _set_status(self, party_id: UUID, status: Status, actor_id: UUID | None) -> Party:
        current = self._parties.find_by_id(party_id)
        if current.status is status:
            return current
        saved = self._parties.update(current.evolve(status=status, updated_by=actor_id))
        self._auditor.record(
            _ENTITY,
            party_id,
            AuditAction.UPDATE,
            user_id=actor_id,
            old_values={"status": current.status.value},
            new_values={"status": saved.status.value},
        )
        logger.info(
            "party_status_changed",
            extra={
                "party_id": str(party_id),
                "from_status": current.status.value,
                "to_status": saved.status.value,
            },
        )
        return saved


def _audit_value(value: Any) -> Any:
    if isinstance(value, (Address, ContactInfo)):
        return value.to_dict()
    if isinstance(value, Money):
        return {"amount_minor": value.amount_minor, "currency": value.currency.value}
    return value
