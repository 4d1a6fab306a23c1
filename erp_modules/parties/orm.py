"""
Party ORM model (``erp_modules.parties.orm``).

Responsibility
--------------
SQLAlchemy persistence for ``Party``.  Address and contact details are
stored as JSON documents; the credit limit as minor units plus currency.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``erp_kernel.db`` and the
sibling ``models.py``.  MUST NOT be imported by ``erp_kernel``.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import TrackedBase
from erp_kernel.db.types import TextEnumType
from erp_kernel.domain.enums import Currency, Status
from erp_kernel.domain.values import Address, ContactInfo, Money
from erp_modules.parties.models import Party, PartyType


class PartyModel(TrackedBase):
    """
    ORM model for parties.

    Guarantees:
        - code is unique (uq_parties_code).
        - credit_limit_minor and credit_currency are both set or both null.
    """

    __tablename__ = "parties"

    __table_args__ = (
        UniqueConstraint("code", name="uq_parties_code"),
        Index("ix_parties_type_status", "party_type", "status"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    party_type: Mapped[PartyType] = mapped_column(
        TextEnumType(PartyType), nullable=False, default=PartyType.CUSTOMER,
    )
    status: Mapped[Status] = mapped_column(
        TextEnumType(Status), nullable=False, default=Status.ACTIVE,
    )
    address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    contact: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    credit_limit_minor: Mapped[int | None] = mapped_column(nullable=True)
    credit_currency: Mapped[Currency | None] = mapped_column(
        TextEnumType(Currency), nullable=True,
    )
    payment_terms_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    tax_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<PartyModel {self.code}: {self.name}>"

    def to_dto(self) -> Party:
        credit_limit = None
        if self.credit_limit_minor is not None:
            credit_limit = Money(self.credit_limit_minor, self.credit_currency or Currency.USD)
        return Party(
            **self.envelope(),
            code=self.code,
            name=self.name,
            party_type=self.party_type,
            status=self.status,
            address=Address.from_dict(self.address) if self.address else None,
            contact=ContactInfo.from_dict(self.contact) if self.contact else None,
            credit_limit=credit_limit,
            payment_terms_days=self.payment_terms_days,
            tax_id=self.tax_id,
        )

    @classmethod
    def from_dto(cls, dto: Party) -> PartyModel:
        model = cls()
        model.apply_envelope(dto)
        model.code = dto.code
        model.party_type = dto.party_type
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: Party) -> None:
        """Copy mutable fields.  Code and party type are fixed at creation."""
        self.name = dto.name
        self.status = dto.status
        self.address = dto.address.to_dict() if dto.address is not None else None
        self.contact = dto.contact.to_dict() if dto.contact is not None else None
        if dto.credit_limit is not None:
            self.credit_limit_minor = dto.credit_limit.amount_minor
            self.credit_currency = dto.credit_limit.currency
        else:
            self.credit_limit_minor = None
            self.credit_currency = None
        self.payment_terms_days = dto.payment_terms_days
        self.tax_id = dto.tax_id
