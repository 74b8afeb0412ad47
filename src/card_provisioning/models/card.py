"""Virtual card domain models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class CardOperationType(str, Enum):
    """Card-management mutations recorded in the operation journal."""

    RECORD = "record_card"
    UPDATE_LIMIT = "update_card_limit"
    DEACTIVATE = "deactivate_card"


@dataclass(frozen=True)
class CardAttributes:
    """Attributes derived for a new card from its funding event."""

    card_name: str
    masked_number: str
    expiry_date: str
    card_type: str
    currency: str
    spending_limit: int


@dataclass
class VirtualCard:
    """
    A provisioned virtual spending card.

    Amounts are integer minor units of ``currency``. provisioning_event_key is
    unique across all cards.
    """

    id: str
    user_id: str
    card_name: str
    masked_number: str
    expiry_date: str
    card_type: str
    currency: str
    spending_limit: int
    current_spend: int
    is_active: bool
    created_at: datetime
    provisioning_event_key: str
    visa_account_id: str | None = None
    payment_reference: str | None = None

    @property
    def last4(self) -> str:
        return self.masked_number[-4:]

    def to_safe_dict(self) -> dict:
        """Card data that is safe to hand back to clients."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "cardName": self.card_name,
            "maskedNumber": self.masked_number,
            "expiryDate": self.expiry_date,
            "cardType": self.card_type,
            "currency": self.currency,
            "spendingLimit": self.spending_limit,
            "currentSpend": self.current_spend,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
            "provisioningEventKey": self.provisioning_event_key,
        }


@dataclass(frozen=True)
class CardOperationReceipt:
    """Receipt for a journaled card mutation."""

    card_id: str
    operation: CardOperationType
    transaction_hash: str
