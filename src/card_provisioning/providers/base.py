"""Base interface for payment providers."""

from abc import ABC, abstractmethod

from card_provisioning.models.funding import (
    FundingAttempt,
    InitiationResult,
    Provider,
    ProviderStatusResult,
)


class PaymentProvider(ABC):
    """
    Abstract base class for settlement-rail integrations.

    Every rail (MTN, Vodafone, AirtelTigo, crypto) implements this interface
    so the verification state machine can drive any of them the same way.
    """

    provider: Provider

    @abstractmethod
    async def initiate(self, attempt: FundingAttempt) -> InitiationResult:
        """
        Ask the provider to start collecting a payment.

        Args:
            attempt: Validated funding attempt. ``phone_or_address`` names the
                payer and ``external_id`` is the caller's correlation id.

        Returns:
            InitiationResult carrying the provider reference to poll.

        Raises:
            ProviderRejected: The provider refused the request (4xx).
            ProviderUnavailable: Network errors, timeouts or 5xx responses.
        """
        pass

    @abstractmethod
    async def check_status(
        self,
        reference: str,
        external_id: str | None = None,
    ) -> ProviderStatusResult:
        """
        Look up the current status of a payment.

        Returns:
            ProviderStatusResult with PENDING, SUCCESSFUL or FAILED.

        Raises:
            ProviderUnavailable: For transient errors (5xx, timeouts, network
                errors).

        Note:
            A provider-reported failure is NOT an exception. It comes back as
            status=FAILED with a reason.
        """
        pass

    async def close(self) -> None:
        """Release any network resources held by the provider."""
        return None
