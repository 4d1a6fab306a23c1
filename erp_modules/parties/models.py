"""
Party domain records (``erp_modules.parties.models``).

Responsibility
--------------
Frozen record for a customer or vendor: code, name, address, contact
details, an optional Money credit limit and a lifecycle Status.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``code`` and ``name`` are non-blank.
* ``credit_limit`` is never negative.
* ``payment_terms_days`` is non-negative.
"""

from __future__ import annotations

from dataclasses import dataclass

from erp_kernel.domain.enums import Status, TextEnum
from erp_kernel.domain.records import Record
from erp_kernel.domain.values import Address, ContactInfo, Money
from erp_kernel.exceptions import ValidationError


class PartyType(TextEnum):
    CUSTOMER = "Customer"
    VENDOR = "Vendor"


@dataclass(frozen=True, kw_only=True)
class Party(Record):
    """A customer or vendor."""

    code: str
    name: str
    party_type: PartyType = PartyType.CUSTOMER
    status: Status = Status.ACTIVE
    address: Address | None = None
    contact: ContactInfo | None = None
    credit_limit: Money | None = None
    payment_terms_days: int = 30
    tax_id: str | None = None

    def __post_init__(self) -> None:
        if not self.code or not self.code.strip():
            raise ValidationError("Party code is required")
        if not self.name or not self.name.strip():
            raise ValidationError("Party name is required")
        if self.credit_limit is not None and self.credit_limit.is_negative:
            raise ValidationError(f"Party credit_limit cannot be negative: {self.credit_limit}")
        if self.payment_terms_days < 0:
            raise ValidationError("Party payment_terms_days must be non-negative")

    @property
    def is_active(self) -> bool:
        return self.status is Status.ACTIVE
