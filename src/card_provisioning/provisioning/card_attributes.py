"""Card attribute derivation for newly provisioned cards."""

import secrets
from datetime import datetime

from card_provisioning.config import settings
from card_provisioning.models.card import CardAttributes
from card_provisioning.models.funding import FundingEvent
from card_provisioning.models.session import utcnow


def generate_masked_number() -> str:
    """Display-only card number: four random digits behind a mask."""
    return f"****{secrets.randbelow(10_000):04d}"


def expiry_date(issued_at: datetime, validity_years: int) -> str:
    """MM/YY expiry ``validity_years`` after issuance."""
    return f"{issued_at.month:02d}/{(issued_at.year + validity_years) % 100:02d}"


def spending_limit(amount: int, percent: int) -> int:
    """Share of the funded amount in minor units, rounded down."""
    return amount * percent // 100


def derive_card_attributes(
    event: FundingEvent,
    issued_at: datetime | None = None,
) -> CardAttributes:
    card_type = event.card_type or settings.provisioning.default_card_type
    return CardAttributes(
        card_name=f"{card_type} Card",
        masked_number=generate_masked_number(),
        expiry_date=expiry_date(issued_at or utcnow(), settings.provisioning.card_validity_years),
        card_type=card_type,
        currency=event.currency,
        spending_limit=spending_limit(event.amount, settings.provisioning.spending_limit_percent),
    )
