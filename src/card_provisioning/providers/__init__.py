"""Payment provider adapters."""

from card_provisioning.providers.base import PaymentProvider
from card_provisioning.providers.crypto_provider import CryptoProvider
from card_provisioning.providers.factory import ProviderFactory
from card_provisioning.providers.mtn_provider import MtnMomoProvider
from card_provisioning.providers.sandbox_provider import SandboxProvider

__all__ = [
    "CryptoProvider",
    "MtnMomoProvider",
    "PaymentProvider",
    "ProviderFactory",
    "SandboxProvider",
]
