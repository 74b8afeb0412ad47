"""Custom exceptions for Card Provisioning Service."""


class CardProvisioningError(Exception):
    """Base exception for all service errors."""

    pass


class ValidationError(CardProvisioningError):
    """
    Raised when a request is missing fields or carries malformed values.

    This is a TERMINAL error. It is surfaced to the caller immediately and
    never retried.
    """

    pass


class AuthorizationError(CardProvisioningError):
    """
    Raised when the caller's session is unknown, expired, or bound to a
    different user.

    The caller must re-authenticate. Not retried automatically.
    """

    pass


class ProviderError(CardProvisioningError):
    """Base exception for payment provider errors."""

    error_kind = "provider_error"

    pass


class ProviderRejected(ProviderError):
    """
    Raised when the payment provider explicitly reports failure.

    This is a TERMINAL error. The user must re-initiate the payment.
    """

    error_kind = "provider_rejected"


class ProviderTimeout(ProviderError):
    """
    Raised when the polling ceiling is exceeded without a terminal provider
    status.

    No provisioning occurred, so the user may safely re-check manually.
    """

    error_kind = "provider_timeout"


class ProviderUnavailable(ProviderError):
    """
    Raised when the provider cannot be reached or answers with a 5xx.

    Examples:
    - Network timeout
    - Connection errors
    - Provider API returns 5xx errors
    - No adapter is configured for the rail in this environment
    """

    error_kind = "provider_unavailable"


class StorageError(CardProvisioningError):
    """
    Raised when the persistence layer is unavailable or errored.

    This is a RETRYABLE error. A retry must repeat the same idempotent claim;
    it must never be taken to mean that an event is unclaimed.
    """

    pass


class DuplicateClaim(CardProvisioningError):
    """
    Internal signal: another claimant already provisioned this event.

    Never user-visible. Resolved by returning the existing card.
    """

    def __init__(self, event_key: str) -> None:
        super().__init__(f"Funding event {event_key} already provisioned")
        self.event_key = event_key


class CardOperationRejected(CardProvisioningError):
    """
    Raised when a card-management operation cannot be applied.

    Examples:
    - Card does not exist or belongs to another user
    - Card is inactive
    - New limit is below the amount already spent
    """

    pass
