"""
Funding flows: from a payment request to a provisioned card.

Three shapes are supported:

- fund_and_provision: verify a payment the user already made with one status
  check, then provision.
- start_momo_funding: ask a mobile-money provider to collect, poll in the
  background, and provision once the provider confirms.
- confirm_event: check a funding event observed outside the provider call
  path before it is handed to the consumer.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field, replace

import structlog

from card_provisioning.models.card import VirtualCard
from card_provisioning.models.exceptions import ProviderRejected, ValidationError
from card_provisioning.models.funding import (
    FundingAttempt,
    FundingEvent,
    Provider,
    ProviderStatus,
    from_minor_units,
    make_event_key,
    to_minor_units,
)
from card_provisioning.models.session import User
from card_provisioning.providers.factory import ProviderFactory
from card_provisioning.providers.sandbox_provider import SandboxProvider
from card_provisioning.provisioning.orchestrator import CardProvisioner
from card_provisioning.verification.state_machine import (
    PaymentVerifier,
    PollingHandle,
    VerificationState,
    VerificationStatus,
)

logger = structlog.get_logger(__name__)

MAX_TRACKED_ATTEMPTS = 1000


@dataclass
class FundingOutcome:
    state: VerificationState
    card: VirtualCard | None = None


@dataclass
class TrackedAttempt:
    """A polled funding attempt and, once confirmed, its card."""

    reference: str
    user_id: str
    attempt: FundingAttempt
    verifier: PaymentVerifier
    handle: PollingHandle
    card: VirtualCard | None = None
    provision_error: str | None = None
    completion: "asyncio.Task[None] | None" = field(default=None, repr=False)

    @property
    def finished(self) -> bool:
        return self.completion is not None and self.completion.done()

    def to_dict(self) -> dict:
        state = self.verifier.state
        return {
            "reference": self.reference,
            "externalId": state.external_id,
            "provider": self.attempt.provider.value,
            "amount": self.attempt.display_amount,
            "status": state.status.value,
            "isVerifying": state.is_verifying,
            "error": state.error,
            "card": self.card.to_safe_dict() if self.card else None,
            "provisionError": self.provision_error,
        }


class FundingFlow:
    """Connects payment verification to card provisioning."""

    def __init__(
        self,
        providers: ProviderFactory,
        provisioner: CardProvisioner,
        poll_interval_seconds: float | None = None,
        poll_timeout_seconds: float | None = None,
    ):
        self.providers = providers
        self.provisioner = provisioner
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_timeout_seconds = poll_timeout_seconds
        self._attempts: OrderedDict[str, TrackedAttempt] = OrderedDict()

    def _verifier(self, attempt: FundingAttempt) -> PaymentVerifier:
        provider = self.providers.get(attempt.provider)
        if isinstance(provider, SandboxProvider):
            provider.remember(attempt.reference, attempt.amount)
        return PaymentVerifier(
            provider,
            poll_interval_seconds=self.poll_interval_seconds,
            poll_timeout_seconds=self.poll_timeout_seconds,
        )

    async def verify(self, attempt: FundingAttempt) -> VerificationState:
        """Single-shot verification of a payment, without provisioning."""
        return await self._verifier(attempt).verify_payment(attempt)

    async def fund_and_provision(
        self,
        user: User,
        session_token: str,
        attempt: FundingAttempt,
        card_type: str | None = None,
    ) -> FundingOutcome:
        """
        Verify a payment and provision its card.

        Raises:
            ValidationError: If the attempt is malformed
            AuthorizationError: If the session cannot provision for ``user``
            StorageError: If the store failed; retrying is safe
        """
        state = await self.verify(attempt)
        if state.status is not VerificationStatus.SUCCESS or state.result is None:
            return FundingOutcome(state=state)

        event = FundingEvent.from_confirmed_attempt(
            attempt, state.result, user.id, card_type=card_type
        )
        card = await self.provisioner.provision(user.id, event, session_token)
        return FundingOutcome(state=state, card=card)

    async def confirm_event(self, event: FundingEvent) -> FundingEvent:
        """
        Confirm an observed funding event with the provider of its rail.

        ``source_tx_id`` is the provider reference to check. The returned
        event is keyed and sized from the provider's answer, the same way a
        verified payment is, so one payment maps to one event key whichever
        path reports it.

        Raises:
            ValidationError: If the funding type is not a known rail
            ProviderRejected: If the provider does not report the payment as
                successful
            ProviderUnavailable: If the provider could not be reached
        """
        rail = Provider.parse(event.funding_type)
        result = await self.providers.get(rail).check_status(event.source_tx_id)
        if result.status is not ProviderStatus.SUCCESSFUL:
            logger.warning(
                "funding_event_not_confirmed",
                event_key=event.event_key,
                status=result.status.value,
                reason=result.reason,
            )
            raise ProviderRejected(result.reason or f"Payment {result.status.value.lower()}")

        claimed = from_minor_units(event.amount, event.currency)
        amount, currency = result.settled_amount(claimed, event.currency)
        source_tx_id = (
            result.financial_transaction_id or result.transaction_id or event.source_tx_id
        )
        return replace(
            event,
            event_key=make_event_key(rail.value, source_tx_id),
            amount=to_minor_units(amount, currency),
            currency=currency,
            funding_type=rail.value,
            source_tx_id=source_tx_id,
        )

    async def start_momo_funding(
        self, user: User, session_token: str, attempt: FundingAttempt
    ) -> TrackedAttempt:
        """
        Start a mobile-money collection and provision in the background.

        Raises:
            ValidationError: If the attempt is malformed or not mobile money
            ProviderError: If the provider refused or could not be reached
        """
        attempt.validate()
        if not attempt.provider.is_mobile_money:
            raise ValidationError(f"{attempt.provider.value} is not a mobile money provider")

        provider = self.providers.get(attempt.provider)
        initiation = await provider.initiate(attempt)

        verifier = PaymentVerifier(
            provider,
            poll_interval_seconds=self.poll_interval_seconds,
            poll_timeout_seconds=self.poll_timeout_seconds,
        )
        attempt.reference = initiation.reference
        handle = verifier.start_polling(initiation.reference, initiation.external_id, attempt)

        tracked = TrackedAttempt(
            reference=initiation.reference,
            user_id=user.id,
            attempt=attempt,
            verifier=verifier,
            handle=handle,
        )
        tracked.completion = asyncio.create_task(
            self._complete(tracked, user, session_token),
            name=f"funding-complete-{initiation.reference}",
        )
        self._track(tracked)

        logger.info(
            "momo_funding_started",
            user_id=user.id,
            reference=initiation.reference,
            provider=attempt.provider.value,
            amount=attempt.display_amount,
        )
        return tracked

    async def _complete(self, tracked: TrackedAttempt, user: User, session_token: str) -> None:
        state = await tracked.handle.wait()
        if state is None or state.status is not VerificationStatus.SUCCESS or state.result is None:
            return

        try:
            event = FundingEvent.from_confirmed_attempt(tracked.attempt, state.result, user.id)
            tracked.card = await self.provisioner.provision(user.id, event, session_token)
        except Exception as e:
            tracked.provision_error = str(e) or type(e).__name__
            logger.exception(
                "momo_funding_provision_failed",
                reference=tracked.reference,
                error_type=type(e).__name__,
            )

    def _track(self, tracked: TrackedAttempt) -> None:
        self._attempts[tracked.reference] = tracked
        if len(self._attempts) > MAX_TRACKED_ATTEMPTS:
            for reference, candidate in list(self._attempts.items()):
                if candidate.finished:
                    del self._attempts[reference]
                    break

    def attempt_state(self, reference: str, user_id: str | None = None) -> TrackedAttempt | None:
        """Last observed state of a polled attempt, if it belongs to ``user_id``."""
        tracked = self._attempts.get(reference)
        if tracked is None or (user_id is not None and tracked.user_id != user_id):
            return None
        return tracked

    async def close(self) -> None:
        """Cancel every running polling loop."""
        for tracked in self._attempts.values():
            tracked.handle.cancel()
            if tracked.completion is not None:
                tracked.completion.cancel()
        self._attempts.clear()
