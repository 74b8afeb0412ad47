"""Payment verification."""

from card_provisioning.verification.state_machine import (
    PaymentVerifier,
    PollingHandle,
    VerificationState,
    VerificationStatus,
)

__all__ = ["PaymentVerifier", "PollingHandle", "VerificationState", "VerificationStatus"]
