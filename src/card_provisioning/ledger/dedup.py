"""
Funding event deduplication.

The claim table in the persistent store is the only authority on whether a
funding event has been consumed: inserting a claim row either wins (first
claim) or hits the primary key (already claimed). The in-process
RecentEventCache only saves round trips for events this process has already
seen provisioned; it is never consulted to decide a claim.
"""

from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from card_provisioning.config import settings
from card_provisioning.infrastructure.repository import CardRepository, ClaimRepository
from card_provisioning.ledger.sources import FundingEventSource
from card_provisioning.models.card import VirtualCard
from card_provisioning.models.exceptions import DuplicateClaim, ProviderError, ValidationError
from card_provisioning.models.funding import FundingEvent
from card_provisioning.models.session import User

if TYPE_CHECKING:
    from card_provisioning.provisioning.orchestrator import CardProvisioner

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    first_claim: bool
    existing_card_id: str | None = None
    claimed_by: str | None = None


class FundingEventLedger:
    """Atomic check-and-set of funding event keys against the store."""

    async def claim(
        self, session: AsyncSession, event: FundingEvent, user_id: str
    ) -> ClaimResult:
        """
        Claim an event key for ``user_id`` inside the caller's unit of work.

        The claim must be the first write of the unit of work: a lost claim
        rolls the session back before looking up who won it and the card
        the winner created. A won claim only becomes durable when the caller
        commits, together with the card it provisions.

        Raises:
            SQLAlchemyError: For storage failures other than the lost claim
        """
        try:
            await ClaimRepository(session).insert(event, user_id)
        except DuplicateClaim:
            await session.rollback()
            claimed_by = await ClaimRepository(session).claimant(event.event_key)
            existing = await CardRepository(session).get_by_event_key(event.event_key)
            logger.info(
                "funding_event_already_claimed",
                event_key=event.event_key,
                claimed_by=claimed_by,
                existing_card_id=existing.id if existing else None,
            )
            return ClaimResult(
                first_claim=False,
                existing_card_id=existing.id if existing else None,
                claimed_by=claimed_by,
            )

        logger.info("funding_event_claimed", event_key=event.event_key, user_id=user_id)
        return ClaimResult(first_claim=True, claimed_by=user_id)


class RecentEventCache:
    """Bounded LRU set of event keys already provisioned by this process."""

    def __init__(self, max_size: int | None = None):
        self.max_size = max_size or settings.provisioning.event_cache_size
        self._keys: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, event_key: str) -> bool:
        if event_key in self._keys:
            self._keys.move_to_end(event_key)
            return True
        return False

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, event_key: str) -> None:
        self._keys[event_key] = None
        self._keys.move_to_end(event_key)
        while len(self._keys) > self.max_size:
            self._keys.popitem(last=False)

    def clear(self) -> None:
        self._keys.clear()


class EventOutcome(str, Enum):
    PROVISIONED = "provisioned"
    SKIPPED_CACHED = "skipped_cached"
    SKIPPED_OTHER_USER = "skipped_other_user"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ConsumedEvent:
    event_key: str
    outcome: EventOutcome
    card: VirtualCard | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "eventKey": self.event_key,
            "outcome": self.outcome.value,
            "cardId": self.card.id if self.card else None,
            "error": self.error,
        }


EventConfirmer = Callable[[FundingEvent], Awaitable[FundingEvent]]


class FundingEventConsumer:
    """
    Feeds observed funding events of one user into provisioning.

    Events addressed to someone else are ignored, events already provisioned
    by this process are skipped, and everything else goes to the provisioner,
    whose claim decides.

    Events from an untrusted feed need a ``confirm`` callable. It checks each
    event with its payment provider and returns the event as the provider
    confirmed it, or raises if the payment cannot be confirmed.
    """

    def __init__(
        self,
        provisioner: "CardProvisioner",
        cache: RecentEventCache | None = None,
        confirm: EventConfirmer | None = None,
    ):
        self.provisioner = provisioner
        self.cache = cache if cache is not None else RecentEventCache()
        self.confirm = confirm

    async def handle(
        self, user: User, session_token: str, event: FundingEvent
    ) -> ConsumedEvent:
        """
        Process one observed event.

        Raises:
            AuthorizationError: If the session is no longer valid
            StorageError: If the store failed; the event is not cached
        """
        if not event.belongs_to(*user.identities()):
            logger.debug(
                "funding_event_for_other_user", event_key=event.event_key, user_id=user.id
            )
            return ConsumedEvent(event.event_key, EventOutcome.SKIPPED_OTHER_USER)

        if event.event_key in self.cache:
            logger.debug("funding_event_recently_seen", event_key=event.event_key)
            return ConsumedEvent(event.event_key, EventOutcome.SKIPPED_CACHED)

        confirmed = event
        if self.confirm is not None:
            try:
                confirmed = await self.confirm(event)
            except (ValidationError, ProviderError) as e:
                logger.warning(
                    "funding_event_rejected",
                    event_key=event.event_key,
                    user_id=user.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return ConsumedEvent(event.event_key, EventOutcome.REJECTED, error=str(e))
            if confirmed.event_key in self.cache:
                self.cache.add(event.event_key)
                return ConsumedEvent(confirmed.event_key, EventOutcome.SKIPPED_CACHED)

        card = await self.provisioner.provision(user.id, confirmed, session_token)
        self.cache.add(event.event_key)
        self.cache.add(confirmed.event_key)
        return ConsumedEvent(confirmed.event_key, EventOutcome.PROVISIONED, card)

    async def consume(
        self, user: User, session_token: str, events: Iterable[FundingEvent]
    ) -> list[ConsumedEvent]:
        """Process a batch of events in order."""
        return [await self.handle(user, session_token, event) for event in events]

    async def run(
        self, user: User, session_token: str, source: FundingEventSource
    ) -> int:
        """
        Consume a live source until it is exhausted or the task is cancelled.

        Returns:
            Number of events that were handed to the provisioner
        """
        provisioned = 0
        logger.info("funding_event_consumer_started", user_id=user.id)
        async for event in source:
            outcome = await self.handle(user, session_token, event)
            if outcome.outcome is EventOutcome.PROVISIONED:
                provisioned += 1
        logger.info(
            "funding_event_consumer_stopped", user_id=user.id, provisioned=provisioned
        )
        return provisioned
