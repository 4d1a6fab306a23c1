"""
Values -- immutable value objects shared by every module.

Responsibility:
    Money in integer minor units paired with a supported Currency, and the
    plain Address / ContactInfo records embedded in parties, sites and
    documents.

Invariants enforced:
    - Money amounts are ``int`` minor units; floats are rejected.
    - Money arithmetic never mixes currencies.
    - Decimal conversion divides by 100 for every currency, JPY included.
    - An Address postal code, when present, is non-blank.

Failure modes:
    - InvalidCurrencyError for a currency outside the supported set.
    - CurrencyMismatchError when adding or comparing across currencies.
    - ValidationError for a float amount or a blank postal code.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from erp_kernel.domain.enums import Currency
from erp_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidCurrencyError,
    ValidationError,
)

MINOR_UNITS_PER_MAJOR = 100


def coerce_currency(value: str | Currency) -> Currency:
    """Strict currency lookup for user input; unknown codes are rejected."""
    currency = Currency.lookup(value)
    if currency is None:
        raise InvalidCurrencyError(str(value))
    return currency


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount in minor units.

    Contract:
        ``amount_minor`` is an integer count of the currency's minor unit
        (cents for USD).  Conversion to a decimal major-unit figure always
        divides by 100.
    """

    amount_minor: int
    currency: Currency = Currency.USD

    def __post_init__(self) -> None:
        if isinstance(self.amount_minor, bool) or not isinstance(self.amount_minor, int):
            raise ValidationError(
                f"Money amount must be integer minor units, got {type(self.amount_minor).__name__}"
            )
        if not isinstance(self.currency, Currency):
            object.__setattr__(self, "currency", coerce_currency(self.currency))

    @classmethod
    def of(cls, amount_minor: int, currency: str | Currency = Currency.USD) -> Money:
        return cls(amount_minor=amount_minor, currency=coerce_currency(currency))

    @classmethod
    def from_decimal(cls, amount: Decimal | str, currency: str | Currency = Currency.USD) -> Money:
        """Build from a major-unit decimal, rounding half-up to the minor unit."""
        minor = (Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return cls(amount_minor=int(minor), currency=coerce_currency(currency))

    @classmethod
    def zero(cls, currency: str | Currency = Currency.USD) -> Money:
        return cls(amount_minor=0, currency=coerce_currency(currency))

    def to_decimal(self) -> Decimal:
        return Decimal(self.amount_minor) / MINOR_UNITS_PER_MAJOR

    @property
    def is_zero(self) -> bool:
        return self.amount_minor == 0

    @property
    def is_negative(self) -> bool:
        return self.amount_minor < 0

    def _check_currency(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency is not self.currency:
            raise CurrencyMismatchError(self.currency.value, other.currency.value)

    def __add__(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount_minor + other.amount_minor, self.currency)

    def __sub__(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount_minor - other.amount_minor, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount_minor, self.currency)

    def __lt__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.amount_minor < other.amount_minor

    def __le__(self, other: Money) -> bool:
        self._check_currency(other)
        return self.amount_minor <= other.amount_minor

    def __str__(self) -> str:
        return f"{self.to_decimal():.2f} {self.currency.value}"


@dataclass(frozen=True, slots=True)
class Address:
    street: str
    city: str
    country: str
    postal_code: str | None = None
    state: str | None = None

    def __post_init__(self) -> None:
        if self.postal_code is not None and not self.postal_code.strip():
            raise ValidationError("Address postal_code must be non-empty when present")

    def to_dict(self) -> dict[str, str | None]:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str | None]) -> Address:
        return cls(
            street=data.get("street") or "",
            city=data.get("city") or "",
            state=data.get("state"),
            postal_code=data.get("postal_code"),
            country=data.get("country") or "",
        )


@dataclass(frozen=True, slots=True)
class ContactInfo:
    email: str | None = None
    phone: str | None = None
    fax: str | None = None
    website: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "email": self.email,
            "phone": self.phone,
            "fax": self.fax,
            "website": self.website,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str | None]) -> ContactInfo:
        return cls(
            email=data.get("email"),
            phone=data.get("phone"),
            fax=data.get("fax"),
            website=data.get("website"),
        )
