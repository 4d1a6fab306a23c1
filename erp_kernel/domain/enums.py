"""
Closed enumerations stored as text.

Every domain enumeration subclasses ``TextEnum``: the member value is the
canonical variant name, which is what lands in the text column and in
JSON.  Parsing is tolerant.  Case, surrounding whitespace and separator
characters (``-``, ``_``, space) are ignored, and a string that matches
no variant resolves to the enum's documented default instead of raising::

    >>> Status("inactive")
    <Status.INACTIVE: 'Inactive'>
    >>> Status("archived")
    <Status.ACTIVE: 'Active'>

The default is the first declared member unless the subclass overrides
``default()``.
"""

from enum import Enum
from typing import Any, Self


def _fold(value: str) -> str:
    return "".join(ch for ch in value if ch not in "-_ ").casefold()


class TextEnum(str, Enum):
    """Base class for text-encoded closed enumerations."""

    @classmethod
    def default(cls) -> Self:
        return next(iter(cls))

    @classmethod
    def lookup(cls, value: Any) -> Self | None:
        """Return the matching member, or None when nothing matches."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        folded = _fold(value.strip())
        for member in cls:
            if _fold(member.value) == folded or _fold(member.name) == folded:
                return member
        return None

    @classmethod
    def parse(cls, value: Any) -> Self:
        """Tolerant parse: unknown input yields ``default()``."""
        return cls(value)

    @classmethod
    def _missing_(cls, value: Any) -> Self:
        member = cls.lookup(value)
        return member if member is not None else cls.default()

    def __str__(self) -> str:
        return self.value


class Status(TextEnum):
    """Lifecycle status shared by most master-data records."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    DRAFT = "Draft"
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Currency(TextEnum):
    """Supported currencies.  Amounts are always held in minor units."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    CNY = "CNY"
    CAD = "CAD"
    AUD = "AUD"
    CHF = "CHF"
    INR = "INR"
    MXN = "MXN"


class AuditAction(TextEnum):
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    SUBMIT = "Submit"
    APPROVE = "Approve"
    REJECT = "Reject"
    DELEGATE = "Delegate"
    CANCEL = "Cancel"
    ESCALATE = "Escalate"
