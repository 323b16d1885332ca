"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Self

from orderdesk.domain.base import ValueObject
from orderdesk.domain.exceptions import (
    CurrencyMismatchError,
    NegativeMoneyError,
    UnsupportedCurrencyError,
)

# Currencies whose minor unit is not 1/100 of the major unit.
_MINOR_UNIT_EXPONENTS: dict[str, int] = {
    "BHD": 3,
    "CLP": 0,
    "IQD": 3,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "UGX": 0,
    "VND": 0,
}


def normalize_currency(code: str) -> str:
    """Return the canonical upper-case ISO-4217 code.

    Raises:
        UnsupportedCurrencyError: If the code is not three letters.
    """
    normalized = (code or "").strip().upper()
    if len(normalized) != 3 or not normalized.isalpha() or not normalized.isascii():
        raise UnsupportedCurrencyError(code)
    return normalized


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places between major and minor units."""
    return _MINOR_UNIT_EXPONENTS.get(normalize_currency(currency), 2)


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Represents monetary value with an explicit currency.

    Money is stored in the smallest currency unit (paise for INR, cents for
    USD) to avoid floating-point precision issues. The currency is always
    declared, never inferred from the size of the amount.

    Attributes:
        amount: Amount in minor units.
        currency: ISO 4217 currency code (e.g., 'INR', 'USD').
    """

    amount: int
    currency: str

    def __post_init__(self) -> None:
        """Validate money constraints."""
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError(f"Money amount must be an integer number of minor units, got {self.amount!r}")
        if self.amount < 0:
            raise NegativeMoneyError(self.amount)
        object.__setattr__(self, "currency", normalize_currency(self.currency))

    @classmethod
    def from_major(cls, amount: Decimal | str, currency: str) -> Self:
        """Create money from an amount in major units (e.g. rupees).

        Args:
            amount: Decimal amount in major units.
            currency: Currency code.

        Returns:
            Money instance.
        """
        scale = Decimal(10) ** minor_unit_exponent(currency)
        minor = int((Decimal(amount) * scale).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return cls(amount=minor, currency=currency)

    def to_major(self) -> Decimal:
        """Convert to decimal amount in major units."""
        return Decimal(self.amount) / (Decimal(10) ** minor_unit_exponent(self.currency))

    def __add__(self, other: "Money") -> "Money":
        """Add two money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __mul__(self, quantity: int) -> "Money":
        return Money(amount=self.amount * quantity, currency=self.currency)

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def exceeds(self, other: "Money") -> bool:
        """Check whether this amount is larger than ``other`` in the same currency.

        Raises:
            CurrencyMismatchError: If currencies don't match.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return self.amount > other.amount

    def __str__(self) -> str:
        exponent = minor_unit_exponent(self.currency)
        return f"{self.to_major():.{exponent}f} {self.currency}"


# ============================================================================
# Acting Identity
# ============================================================================


ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Actor(ValueObject):
    """Identity on whose behalf a mutation is performed.

    Resolved once per request from the authentication collaborator and
    passed explicitly down to every mutation so it lands in the audit entry.

    Attributes:
        actor_id: Authenticated user id, or a system identity such as 'gateway'.
        roles: Authorization claims attached to the identity.
        ip_address: Client address, when known.
        user_agent: Client user agent, when known.
        request_id: Correlation id of the request that carried the mutation.
    """

    actor_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None

    def __post_init__(self) -> None:
        if not self.actor_id or not self.actor_id.strip():
            raise ValueError("Actor id cannot be empty")
        object.__setattr__(self, "roles", frozenset(self.roles))

    @classmethod
    def system(cls, name: str, request_id: str | None = None) -> Self:
        """Create a non-human actor (gateway callbacks, pollers)."""
        return cls(actor_id=f"system:{name}", roles=frozenset({"system"}), request_id=request_id)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles

    def request_metadata(self) -> dict[str, Any]:
        """Metadata recorded next to audit entries."""
        return {
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "request_id": self.request_id,
        }
