"""
Provider factory for payment provider instances.

Selects the adapter for each settlement rail from configuration. Real
adapters are used when their credentials are configured. A rail without
credentials falls back to the deterministic sandbox only in development and
test environments, or when ``PROVIDERS__ALLOW_SANDBOX`` is set; elsewhere it
is unavailable.
"""

import structlog

from card_provisioning.config import settings
from card_provisioning.models.exceptions import ProviderUnavailable
from card_provisioning.models.funding import Provider
from card_provisioning.providers.base import PaymentProvider
from card_provisioning.providers.crypto_provider import CryptoProvider
from card_provisioning.providers.mtn_provider import MtnMomoProvider
from card_provisioning.providers.sandbox_provider import SandboxProvider

logger = structlog.get_logger(__name__)


class ProviderFactory:
    """
    Factory and cache for payment provider instances.

    One instance is kept per rail so HTTP connection pools, access tokens and
    sandbox bookkeeping survive across requests.
    """

    def __init__(self, allow_sandbox: bool | None = None) -> None:
        self.allow_sandbox = (
            allow_sandbox if allow_sandbox is not None else settings.sandbox_providers_allowed
        )
        self._instances: dict[Provider, PaymentProvider] = {}

    def get(self, provider: "str | Provider") -> PaymentProvider:
        """
        Get the provider instance for a rail, creating it on first use.

        Raises:
            ValidationError: If the provider name is unknown
            ProviderUnavailable: If the rail has no adapter in this environment
        """
        rail = Provider.parse(provider)
        if rail not in self._instances:
            self._instances[rail] = self._create(rail)
        return self._instances[rail]

    def register(self, provider: "str | Provider", instance: PaymentProvider) -> None:
        """Install a specific adapter for a rail (tests, custom adapters)."""
        if not isinstance(instance, PaymentProvider):
            raise TypeError(f"{type(instance).__name__} must inherit from PaymentProvider")

        rail = Provider.parse(provider)
        self._instances[rail] = instance
        logger.info(
            "provider_registered",
            provider=rail.value,
            provider_class=type(instance).__name__,
        )

    def _create(self, rail: Provider) -> PaymentProvider:
        if rail is Provider.MTN and settings.mtn.is_configured:
            instance: PaymentProvider = MtnMomoProvider(
                base_url=settings.mtn.base_url,
                subscription_key=settings.mtn.subscription_key,
                api_user_id=settings.mtn.api_user_id,
                api_key=settings.mtn.api_key,
                target_environment=settings.mtn.target_environment,
                timeout_seconds=settings.mtn.timeout_seconds,
            )
        elif rail is Provider.CRYPTO and settings.crypto.is_configured:
            instance = CryptoProvider(
                rpc_url=settings.crypto.rpc_url,
                required_confirmations=settings.crypto.required_confirmations,
                timeout_seconds=settings.crypto.timeout_seconds,
            )
        elif self.allow_sandbox:
            instance = SandboxProvider(rail)
        else:
            logger.error("provider_not_configured", provider=rail.value)
            raise ProviderUnavailable(f"{rail.value} provider is not configured")

        logger.info(
            "provider_created",
            provider=rail.value,
            provider_class=type(instance).__name__,
        )
        return instance

    async def close(self) -> None:
        """Close every provider created by this factory."""
        for instance in self._instances.values():
            await instance.close()
        self._instances.clear()
