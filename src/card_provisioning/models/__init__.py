"""Domain models for Card Provisioning Service."""

from card_provisioning.models.card import (
    CardAttributes,
    CardOperationReceipt,
    CardOperationType,
    VirtualCard,
)
from card_provisioning.models.exceptions import (
    AuthorizationError,
    CardOperationRejected,
    CardProvisioningError,
    DuplicateClaim,
    ProviderError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
    StorageError,
    ValidationError,
)
from card_provisioning.models.funding import (
    AttemptStatus,
    FundingAttempt,
    FundingEvent,
    InitiationResult,
    Provider,
    ProviderStatus,
    ProviderStatusResult,
    format_amount,
    make_event_key,
)
from card_provisioning.models.session import AuthMethod, Session, User

__all__ = [
    "AttemptStatus",
    "AuthMethod",
    "AuthorizationError",
    "CardOperationRejected",
    "CardAttributes",
    "CardOperationReceipt",
    "CardOperationType",
    "CardProvisioningError",
    "DuplicateClaim",
    "FundingAttempt",
    "FundingEvent",
    "InitiationResult",
    "Provider",
    "ProviderError",
    "ProviderRejected",
    "ProviderStatus",
    "ProviderStatusResult",
    "ProviderTimeout",
    "ProviderUnavailable",
    "Session",
    "StorageError",
    "User",
    "ValidationError",
    "VirtualCard",
    "format_amount",
    "make_event_key",
]
