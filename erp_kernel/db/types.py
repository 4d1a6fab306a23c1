"""
Module: erp_kernel.db.types
Responsibility: Column types shared by every model -- fixed-width RFC-3339
    instants, text-encoded enums with repair-on-read, and annotated aliases
    for minor-unit money, currency codes and short codes.
Architecture position: Kernel > DB.  May be imported by models/ and
    repositories/.  Imports only erp_kernel.domain.enums and logging.

Invariants enforced:
    - Instants are stored as ``YYYY-MM-DDTHH:MM:SS.ffffff+00:00``.  The
      width never varies, so string comparison in SQL orders instants
      chronologically.
    - Enum columns hold the member value (the variant name).  A stored value
      that no longer names a variant is read back as the enum default and a
      ``enum_value_repaired`` warning is logged.
"""

from datetime import UTC, datetime
from typing import Annotated

from sqlalchemy import BigInteger, String
from sqlalchemy.types import TypeDecorator

from erp_kernel.domain.enums import TextEnum
from erp_kernel.logging_config import get_logger

logger = get_logger("db.types")

_INSTANT_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

# Integer amount in currency minor units
MinorUnits = Annotated[int, BigInteger]

# Currency code column
CurrencyCode = Annotated[str, String(3)]

# Short identifier strings (codes, names, handler keys)
ShortCode = Annotated[str, String(100)]

# Long free text
LongText = Annotated[str, String(4000)]


def format_instant(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_INSTANT_FORMAT)


def parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime stored as a fixed-width RFC-3339 string."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            return format_instant(parse_instant(value))
        return format_instant(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_instant(value)


class TextEnumType(TypeDecorator):
    """Stores a ``TextEnum`` member as its variant name."""

    impl = String(40)
    cache_ok = True

    def __init__(self, enum_class: type[TextEnum], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return self.enum_class.parse(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        member = self.enum_class.lookup(value)
        if member is None:
            member = self.enum_class.default()
            logger.warning(
                "enum_value_repaired",
                extra={
                    "enum": self.enum_class.__name__,
                    "stored_value": value,
                    "repaired_to": member.value,
                },
            )
        return member
