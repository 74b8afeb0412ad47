"""Funding domain models.

A FundingAttempt is the transient record of one payment being verified. Once a
provider confirms it, the attempt is promoted to an immutable FundingEvent,
whose event key is the identity the dedup ledger guards.
"""

import re
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from card_provisioning.models.exceptions import ValidationError


class Provider(str, Enum):
    """Settlement rails a card can be funded through."""

    MTN = "mtn"
    VODAFONE = "vodafone"
    AIRTELTIGO = "airteltigo"
    CRYPTO = "crypto"

    @property
    def is_mobile_money(self) -> bool:
        return self is not Provider.CRYPTO

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        try:
            return cls(str(value.value if isinstance(value, Provider) else value).lower())
        except ValueError:
            available = ", ".join(p.value for p in cls)
            raise ValidationError(
                f"Unknown provider: {value}. Available providers: {available}"
            ) from None


class ProviderStatus(str, Enum):
    """Status values reported by payment providers."""

    PENDING = "PENDING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"


class AttemptStatus(str, Enum):
    """Lifecycle of a FundingAttempt."""

    PENDING = "pending"
    VERIFYING = "verifying"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# Minor-unit exponents; anything not listed uses 2
CURRENCY_DECIMALS: dict[str, int] = {
    "XOF": 0,
    "XAF": 0,
    "UGX": 0,
    "RWF": 0,
    "ETH": 6,
    "BTC": 8,
}

_CURRENCY_RE = re.compile(r"^[A-Z]{3,5}$")


def currency_decimals(currency: str) -> int:
    return CURRENCY_DECIMALS.get(currency.upper(), 2)


def to_decimal(amount: Any) -> Decimal:
    """Convert a JSON number or string into a Decimal without float artifacts."""
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, bool):
        raise ValidationError("amount must be a number")
    try:
        return Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"amount must be a number, got {amount!r}") from e


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount into integer minor units (truncating)."""
    exponent = currency_decimals(currency)
    return int((amount * (Decimal(10) ** exponent)).to_integral_value(rounding=ROUND_DOWN))


def from_minor_units(amount: int, currency: str) -> Decimal:
    exponent = currency_decimals(currency)
    return (Decimal(amount) / (Decimal(10) ** exponent)).quantize(
        Decimal(1).scaleb(-exponent)
    )


def format_amount(amount: Decimal | int | float, currency: str) -> str:
    """Format an amount for reporting, e.g. ``50.00 USD`` or ``1000 XOF``."""
    exponent = currency_decimals(currency)
    value = to_decimal(amount).quantize(Decimal(1).scaleb(-exponent), rounding=ROUND_DOWN)
    return f"{value:,f} {currency.upper()}"


def make_event_key(*parts: str | int | None) -> str:
    """Derive a deterministic event key from an event's natural identifiers.

    Re-delivery of the same event yields the same key. Empty parts are
    skipped, so ``make_event_key("mtn", "tx-998")`` is ``"mtn-tx-998"``.
    """
    cleaned = [str(p).strip().lower() for p in parts if p is not None and str(p).strip()]
    if not cleaned:
        raise ValidationError("An event key needs at least one identifier")
    return "-".join(cleaned)


@dataclass
class FundingAttempt:
    """
    A single funding request as submitted by a user.

    Owned by the verification state machine for the duration of one
    verification cycle; never persisted unless promoted to a FundingEvent.
    """

    reference: str
    amount: Decimal
    currency: str
    provider: Provider
    external_id: str | None = None
    phone_or_address: str | None = None
    status: AttemptStatus = AttemptStatus.PENDING

    @classmethod
    def create(
        cls,
        reference: str | None,
        amount: Any,
        currency: str | None,
        provider: "str | Provider" = Provider.MTN,
        external_id: str | None = None,
        phone_or_address: str | None = None,
    ) -> "FundingAttempt":
        """Build and validate an attempt from loosely-typed request values."""
        attempt = cls(
            reference=(reference or "").strip(),
            amount=to_decimal(amount) if amount is not None else Decimal(0),
            currency=(currency or "").strip().upper(),
            provider=Provider.parse(provider),
            external_id=external_id,
            phone_or_address=phone_or_address,
        )
        attempt.validate()
        return attempt

    def validate(self) -> None:
        """Raise ValidationError if the attempt cannot be verified."""
        if not self.reference:
            raise ValidationError("reference is required")
        if not self.amount.is_finite() or self.amount <= 0:
            raise ValidationError("amount must be greater than 0")
        if not _CURRENCY_RE.match(self.currency or ""):
            raise ValidationError(f"Invalid currency code: {self.currency!r}")

    @property
    def display_amount(self) -> str:
        return format_amount(self.amount, self.currency)


@dataclass(frozen=True)
class InitiationResult:
    """Result of asking a provider to start a collection."""

    reference: str
    provider: Provider
    status: ProviderStatus = ProviderStatus.PENDING
    external_id: str | None = None


@dataclass(frozen=True)
class ProviderStatusResult:
    """
    Unified status answer that every provider adapter returns.

    Provider-reported failures are NOT exceptions; they come back with
    status=FAILED and a reason. Exceptions are reserved for transport errors.
    """

    status: ProviderStatus
    reference: str
    transaction_id: str | None = None
    financial_transaction_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ProviderStatus.SUCCESSFUL, ProviderStatus.FAILED)

    def settled_amount(self, claimed: Decimal, claimed_currency: str) -> tuple[Decimal, str]:
        """
        Amount and currency to credit for this payment.

        The provider-reported amount wins over the claimed one. Rails that do
        not report an amount (on-chain receipts carry no fiat value) fall back
        to the claimed amount.
        """
        if self.amount is None:
            return claimed, claimed_currency
        return self.amount, (self.currency or claimed_currency).upper()


@dataclass(frozen=True)
class FundingEvent:
    """
    A confirmed, uniquely-keyed proof that a user supplied money.

    At most one VirtualCard is ever created per distinct event_key.
    """

    event_key: str
    user_address_or_id: str
    amount: int
    currency: str
    funding_type: str
    source_tx_id: str
    card_type: str | None = None

    def __post_init__(self) -> None:
        if not self.event_key:
            raise ValidationError("event_key is required")
        if self.amount <= 0:
            raise ValidationError("Funding amount must be greater than 0")

    def belongs_to(self, *identities: str | None) -> bool:
        """Check whether the event was emitted for any of the given identities."""
        owner = self.user_address_or_id.lower()
        return any(identity and identity.lower() == owner for identity in identities)

    @classmethod
    def from_confirmed_attempt(
        cls,
        attempt: FundingAttempt,
        result: ProviderStatusResult,
        user_id: str,
        card_type: str | None = None,
    ) -> "FundingEvent":
        """Promote a provider-confirmed attempt to a FundingEvent.

        The card is sized from what the provider confirmed, not from what
        the attempt claimed.
        """
        source_tx_id = (
            result.financial_transaction_id or result.transaction_id or attempt.reference
        )
        amount, currency = result.settled_amount(attempt.amount, attempt.currency)
        return cls(
            event_key=make_event_key(attempt.provider.value, source_tx_id),
            user_address_or_id=user_id,
            amount=to_minor_units(amount, currency),
            currency=currency,
            funding_type=attempt.provider.value,
            source_tx_id=source_tx_id,
            card_type=card_type,
        )
