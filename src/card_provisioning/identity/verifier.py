"""Identity verification for login.

An identity is a wallet address, optionally with an ENS name the address
claims to own.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class IdentityVerificationResult:
    is_valid: bool
    resolved_address: str | None = None
    error: str | None = None


def is_wallet_address(value: str | None) -> bool:
    return bool(value and _ADDRESS_RE.match(value))


class IdentityVerifier(ABC):
    """Proves that a wallet address owns a claimed name."""

    @abstractmethod
    async def verify(self, name: str | None, address: str) -> IdentityVerificationResult:
        """
        Verify a claimed identity.

        Args:
            name: ENS name claimed by the caller, or None for a bare wallet
            address: Wallet address presented by the caller

        Returns:
            IdentityVerificationResult. A failed check is a result, not an
            exception.
        """
        pass


class SandboxIdentityVerifier(IdentityVerifier):
    """
    Pattern-based ENS ownership check for development.

    Accepts ``testN.eth``, ``demoN.eth``, ``morphN.eth`` and a few well-known
    names for any well-formed address.
    """

    VALID_PATTERNS = (
        re.compile(r"^test\d+\.eth$"),
        re.compile(r"^demo\d+\.eth$"),
        re.compile(r"^morph\d+\.eth$"),
        re.compile(r"^vitalik\.eth$"),
        re.compile(r"^alice\.eth$"),
        re.compile(r"^bob\.eth$"),
    )

    async def verify(self, name: str | None, address: str) -> IdentityVerificationResult:
        if not is_wallet_address(address):
            return IdentityVerificationResult(is_valid=False, error="Invalid wallet address")

        if not name:
            return IdentityVerificationResult(is_valid=True, resolved_address=address.lower())

        normalized = name.strip().lower()
        if not any(pattern.match(normalized) for pattern in self.VALID_PATTERNS):
            logger.info("ens_verification_rejected", ens_name=normalized)
            return IdentityVerificationResult(
                is_valid=False,
                error="ENS name not found or not owned by this address",
            )

        logger.info("ens_verification_succeeded", ens_name=normalized)
        return IdentityVerificationResult(is_valid=True, resolved_address=address.lower())
