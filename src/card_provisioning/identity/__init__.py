"""Identity verification."""

from card_provisioning.identity.verifier import (
    IdentityVerificationResult,
    IdentityVerifier,
    SandboxIdentityVerifier,
    is_wallet_address,
)

__all__ = [
    "IdentityVerificationResult",
    "IdentityVerifier",
    "SandboxIdentityVerifier",
    "is_wallet_address",
]
