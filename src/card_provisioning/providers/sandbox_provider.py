"""
Sandbox payment provider for development and testing.

Implements the PaymentProvider interface without any network calls. Outcomes
are deterministic so tests and demos can pick them by amount:

MOBILE MONEY AMOUNT BANDS (mirrors the MTN MoMo sandbox):
    1  - 19.99  -> PENDING (never completes)
    20 - 79.99  -> FAILED
    anything else -> SUCCESSFUL

CRYPTO:
    references starting with ``crypto_`` -> SUCCESSFUL, 6 confirmations
    anything else -> FAILED

Transaction ids are derived from the provider and reference, so checking the
same payment twice yields the same ids and therefore the same event key.
"""

import hashlib
import uuid
from collections import OrderedDict
from decimal import Decimal

import structlog

from card_provisioning.models.funding import (
    FundingAttempt,
    InitiationResult,
    Provider,
    ProviderStatus,
    ProviderStatusResult,
)
from card_provisioning.providers.base import PaymentProvider

logger = structlog.get_logger(__name__)

PENDING_BAND = (Decimal(1), Decimal(20))
FAILED_BAND = (Decimal(20), Decimal(80))

SANDBOX_CONFIRMATIONS = 6
MAX_TRACKED_PAYMENTS = 10_000

_SANDBOX_NAMESPACE = uuid.UUID("6f1b8f0e-3c1d-4c47-9a51-2d7f0f5b7a10")


def sandbox_status_for_amount(amount: Decimal) -> ProviderStatus:
    """Map an amount onto the sandbox outcome band."""
    if PENDING_BAND[0] <= amount < PENDING_BAND[1]:
        return ProviderStatus.PENDING
    if FAILED_BAND[0] <= amount < FAILED_BAND[1]:
        return ProviderStatus.FAILED
    return ProviderStatus.SUCCESSFUL


class SandboxProvider(PaymentProvider):
    """
    Deterministic stand-in for a settlement rail.

    Used for rails without real credentials in development and test. Only
    the most recent payments are remembered; older references read as not
    found.
    """

    def __init__(
        self, provider: Provider = Provider.MTN, max_tracked: int = MAX_TRACKED_PAYMENTS
    ):
        self.provider = provider
        self.max_tracked = max_tracked
        # reference -> amount, least recently used first
        self._amounts: OrderedDict[str, Decimal] = OrderedDict()
        logger.info("sandbox_provider_initialized", provider=provider.value)

    def remember(self, reference: str, amount: Decimal) -> None:
        """Record the amount of a payment that was initiated elsewhere."""
        self._track(reference, self._amounts.get(reference, amount))

    def _track(self, reference: str, amount: Decimal) -> None:
        self._amounts[reference] = amount
        self._amounts.move_to_end(reference)
        while len(self._amounts) > self.max_tracked:
            self._amounts.popitem(last=False)

    @property
    def tracked_payments(self) -> int:
        return len(self._amounts)

    async def initiate(self, attempt: FundingAttempt) -> InitiationResult:
        reference = str(uuid.uuid4())
        self._track(reference, attempt.amount)

        logger.info(
            "sandbox_payment_initiated",
            provider=self.provider.value,
            reference=reference,
            external_id=attempt.external_id,
            amount=attempt.display_amount,
        )
        return InitiationResult(
            reference=reference,
            provider=self.provider,
            status=ProviderStatus.PENDING,
            external_id=attempt.external_id,
        )

    async def check_status(
        self,
        reference: str,
        external_id: str | None = None,
    ) -> ProviderStatusResult:
        if self.provider is Provider.CRYPTO:
            return self._crypto_status(reference)

        amount = self._amounts.get(reference)
        if amount is None:
            logger.warning(
                "sandbox_payment_not_found",
                provider=self.provider.value,
                reference=reference,
            )
            return ProviderStatusResult(
                status=ProviderStatus.FAILED,
                reference=reference,
                reason="Payment not found. Please check the reference ID.",
            )

        status = sandbox_status_for_amount(amount)
        logger.info(
            "sandbox_status_checked",
            provider=self.provider.value,
            reference=reference,
            status=status.value,
        )

        if status is ProviderStatus.PENDING:
            return ProviderStatusResult(
                status=status, reference=reference, reason="Payment is still pending"
            )
        if status is ProviderStatus.FAILED:
            return ProviderStatusResult(
                status=status, reference=reference, reason="Payment failed"
            )

        transaction_id = self._transaction_id(reference)
        return ProviderStatusResult(
            status=status,
            reference=reference,
            transaction_id=transaction_id,
            financial_transaction_id=self._financial_transaction_id(reference),
            amount=amount,
            metadata={"externalId": external_id} if external_id else {},
        )

    def _crypto_status(self, reference: str) -> ProviderStatusResult:
        if not reference.startswith("crypto_"):
            return ProviderStatusResult(
                status=ProviderStatus.FAILED,
                reference=reference,
                reason="Invalid payment reference or amount",
            )

        digest = hashlib.sha256(reference.encode()).hexdigest()
        return ProviderStatusResult(
            status=ProviderStatus.SUCCESSFUL,
            reference=reference,
            transaction_id=self._transaction_id(reference),
            amount=self._amounts.get(reference),
            metadata={
                "blockHash": f"0x{digest}",
                "confirmations": SANDBOX_CONFIRMATIONS,
            },
        )

    def _transaction_id(self, reference: str) -> str:
        token = uuid.uuid5(_SANDBOX_NAMESPACE, f"{self.provider.value}:{reference}").hex
        return f"{self.provider.value}_{token[:16]}"

    def _financial_transaction_id(self, reference: str) -> str:
        token = uuid.uuid5(_SANDBOX_NAMESPACE, f"financial:{self.provider.value}:{reference}")
        return str(token.int)[:10]
