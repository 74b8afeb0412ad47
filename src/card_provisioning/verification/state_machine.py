"""
Payment verification state machine.

Tracks one funding attempt from initiation to a provider verdict:

    idle -> verifying -> success | failed          (single-shot)
    idle -> pending -> (poll loop) -> success | failed   (polled)

Polling runs as an asyncio.Task owned by a PollingHandle. The loop issues at
most one status check at a time, and a hard ceiling forces ``failed`` with a
timeout reason. Provider errors never escape the machine; they become the
``failed`` state.
"""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

import structlog

from card_provisioning.config import settings
from card_provisioning.models.exceptions import (
    ProviderError,
    ProviderRejected,
    ProviderTimeout,
)
from card_provisioning.models.funding import (
    AttemptStatus,
    FundingAttempt,
    ProviderStatus,
    ProviderStatusResult,
)
from card_provisioning.models.session import utcnow
from card_provisioning.providers.base import PaymentProvider

logger = structlog.get_logger(__name__)

POLLING_TIMEOUT_REASON = "Payment verification timeout"


class VerificationStatus(str, Enum):
    IDLE = "idle"
    VERIFYING = "verifying"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VerificationStatus.SUCCESS, VerificationStatus.FAILED)


_ATTEMPT_STATUS = {
    VerificationStatus.IDLE: AttemptStatus.PENDING,
    VerificationStatus.PENDING: AttemptStatus.PENDING,
    VerificationStatus.VERIFYING: AttemptStatus.VERIFYING,
    VerificationStatus.SUCCESS: AttemptStatus.CONFIRMED,
    VerificationStatus.FAILED: AttemptStatus.FAILED,
}


def new_attempt_id() -> str:
    return uuid.uuid4().hex


@dataclass
class VerificationState:
    """Snapshot of a verification attempt."""

    attempt_id: str = field(default_factory=new_attempt_id)
    status: VerificationStatus = VerificationStatus.IDLE
    is_verifying: bool = False
    reference: str | None = None
    external_id: str | None = None
    transaction_id: str | None = None
    financial_transaction_id: str | None = None
    error: str | None = None
    error_kind: str | None = None
    result: ProviderStatusResult | None = None
    checks: int = 0
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "attemptId": self.attempt_id,
            "status": self.status.value,
            "isVerifying": self.is_verifying,
            "reference": self.reference,
            "externalId": self.external_id,
            "transactionId": self.transaction_id,
            "financialTransactionId": self.financial_transaction_id,
            "error": self.error,
            "errorKind": self.error_kind,
            "checks": self.checks,
            "updatedAt": self.updated_at.isoformat(),
        }


class PollingHandle:
    """
    Handle to one background polling loop.

    Cancelling the handle stops the loop without forcing a terminal state.
    """

    def __init__(self, attempt_id: str, task: "asyncio.Task[VerificationState]"):
        self.attempt_id = attempt_id
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> VerificationState | None:
        """
        Wait for the loop to finish.

        Returns the terminal state, or None if the loop was cancelled.
        """
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return None
        return self._task.result()


class PaymentVerifier:
    """
    State machine for verifying a single funding attempt against a provider.

    One machine tracks one attempt at a time. Starting a new poll, verifying
    again or resetting always cancels the previous polling loop first.
    """

    def __init__(
        self,
        provider: PaymentProvider,
        poll_interval_seconds: float | None = None,
        poll_timeout_seconds: float | None = None,
    ):
        self.provider = provider
        self.poll_interval_seconds = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.verification.poll_interval_seconds
        )
        self.poll_timeout_seconds = (
            poll_timeout_seconds
            if poll_timeout_seconds is not None
            else settings.verification.poll_timeout_seconds
        )
        self._state = VerificationState()
        self._attempt: FundingAttempt | None = None
        self._handle: PollingHandle | None = None
        # Bumped on every new activity so a stale loop cannot write state
        self._generation = 0

    @property
    def state(self) -> VerificationState:
        return replace(self._state)

    @property
    def polling_handle(self) -> PollingHandle | None:
        return self._handle

    def _transition(self, generation: int, **changes) -> None:
        if generation != self._generation:
            return
        previous = self._state.status
        self._state = replace(self._state, updated_at=utcnow(), **changes)
        if self._attempt is not None:
            self._attempt.status = _ATTEMPT_STATUS[self._state.status]
        if previous != self._state.status:
            logger.info(
                "verification_state_changed",
                attempt_id=self._state.attempt_id,
                from_status=previous.value,
                to_status=self._state.status.value,
            )

    def _begin(self) -> int:
        self._cancel_handle()
        self._generation += 1
        return self._generation

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _apply_result(self, generation: int, result: ProviderStatusResult) -> None:
        if result.status is ProviderStatus.SUCCESSFUL:
            self._transition(
                generation,
                status=VerificationStatus.SUCCESS,
                is_verifying=False,
                transaction_id=result.transaction_id or result.reference,
                financial_transaction_id=result.financial_transaction_id,
                result=result,
                error=None,
                error_kind=None,
            )
        else:
            self._transition(
                generation,
                status=VerificationStatus.FAILED,
                is_verifying=False,
                result=result,
                error=result.reason or f"Payment {result.status.value.lower()}",
                error_kind=ProviderRejected.error_kind,
            )

    def _apply_error(self, generation: int, error: Exception) -> None:
        kind = error.error_kind if isinstance(error, ProviderError) else "provider_error"
        self._transition(
            generation,
            status=VerificationStatus.FAILED,
            is_verifying=False,
            error=str(error) or "Payment verification failed",
            error_kind=kind,
        )

    async def verify_payment(self, attempt: FundingAttempt) -> VerificationState:
        """
        Verify a payment with a single provider status check.

        Raises:
            ValidationError: If the attempt is malformed. The machine does not
                leave its current state.

        Returns:
            The terminal state (success or failed).
        """
        attempt.validate()

        generation = self._begin()
        self._attempt = attempt
        self._transition(
            generation,
            status=VerificationStatus.VERIFYING,
            is_verifying=True,
            reference=attempt.reference,
            external_id=attempt.external_id,
            transaction_id=None,
            financial_transaction_id=None,
            error=None,
            error_kind=None,
            result=None,
            checks=0,
        )

        logger.info(
            "payment_verification_started",
            attempt_id=self._state.attempt_id,
            reference=attempt.reference,
            provider=attempt.provider.value,
            amount=attempt.display_amount,
        )

        try:
            result = await self.provider.check_status(attempt.reference, attempt.external_id)
        except Exception as e:
            logger.warning(
                "payment_verification_error",
                attempt_id=self._state.attempt_id,
                reference=attempt.reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._apply_error(generation, e)
            return self.state

        self._transition(generation, checks=self._state.checks + 1)
        self._apply_result(generation, result)

        logger.info(
            "payment_verification_completed",
            attempt_id=self._state.attempt_id,
            reference=attempt.reference,
            status=self._state.status.value,
        )
        return self.state

    def start_polling(
        self,
        attempt_id: str,
        external_id: str | None = None,
        attempt: FundingAttempt | None = None,
    ) -> PollingHandle:
        """
        Start polling the provider for ``attempt_id`` in the background.

        Any previous loop of this machine is cancelled first. Must be called
        from a running event loop.

        Args:
            attempt_id: Provider reference to poll
            external_id: Caller correlation id passed along to the provider
            attempt: The funding attempt being tracked, if any

        Returns:
            PollingHandle for the new loop
        """
        generation = self._begin()
        self._attempt = attempt
        self._transition(
            generation,
            attempt_id=attempt_id,
            status=VerificationStatus.PENDING,
            is_verifying=True,
            reference=attempt_id,
            external_id=external_id,
            transaction_id=None,
            financial_transaction_id=None,
            error=None,
            error_kind=None,
            result=None,
            checks=0,
        )

        task = asyncio.create_task(
            self._run_polling(generation, attempt_id, external_id),
            name=f"payment-poll-{attempt_id}",
        )
        task.add_done_callback(lambda t: self._on_polling_done(generation, t))
        self._handle = PollingHandle(attempt_id, task)

        logger.info(
            "payment_polling_started",
            attempt_id=attempt_id,
            external_id=external_id,
            interval_seconds=self.poll_interval_seconds,
            timeout_seconds=self.poll_timeout_seconds,
        )
        return self._handle

    async def _run_polling(
        self, generation: int, reference: str, external_id: str | None
    ) -> VerificationState:
        try:
            await asyncio.wait_for(
                self._poll_until_terminal(generation, reference, external_id),
                timeout=self.poll_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "payment_polling_timeout",
                attempt_id=reference,
                timeout_seconds=self.poll_timeout_seconds,
                checks=self._state.checks,
            )
            self._apply_error(generation, ProviderTimeout(POLLING_TIMEOUT_REASON))
        except Exception as e:
            logger.warning(
                "payment_polling_error",
                attempt_id=reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._apply_error(generation, e)

        return self.state

    async def _poll_until_terminal(
        self, generation: int, reference: str, external_id: str | None
    ) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_seconds)

            result = await self.provider.check_status(reference, external_id)
            self._transition(generation, checks=self._state.checks + 1, result=result)

            if result.is_terminal:
                self._apply_result(generation, result)
                logger.info(
                    "payment_polling_completed",
                    attempt_id=reference,
                    status=self._state.status.value,
                    checks=self._state.checks,
                )
                return

            logger.debug("payment_still_pending", attempt_id=reference, checks=self._state.checks)

    def _on_polling_done(self, generation: int, task: asyncio.Task) -> None:
        if task.cancelled():
            self._transition(generation, is_verifying=False)
            logger.info("payment_polling_cancelled", attempt_id=self._state.attempt_id)

    def stop_polling(self) -> None:
        """Stop the current polling loop, keeping the last observed state."""
        if self._handle is None:
            return
        self._cancel_handle()
        self._transition(self._generation, is_verifying=False)

    def reset_verification(self) -> VerificationState:
        """Stop any polling and return to idle with a fresh attempt id."""
        self._cancel_handle()
        self._generation += 1
        self._attempt = None
        self._state = VerificationState()
        logger.info("verification_reset", attempt_id=self._state.attempt_id)
        return self.state
