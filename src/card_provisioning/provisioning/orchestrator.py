"""
Card provisioning orchestrator.

Turns a confirmed FundingEvent into exactly one VirtualCard:

1. authorize the caller through the session store;
2. claim the event key in the ledger;
3. derive the card attributes;
4. insert the card, keyed by the event key.

Steps 2 and 4 share one transaction, so a claim never becomes durable without
its card. Every replay, whether sequential or concurrent, returns the card
that the winning claimant created.
"""

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_provisioning.infrastructure.database import get_session_factory, session_scope
from card_provisioning.infrastructure.repository import CardRepository
from card_provisioning.ledger.dedup import FundingEventLedger
from card_provisioning.models.card import VirtualCard
from card_provisioning.models.exceptions import (
    AuthorizationError,
    DuplicateClaim,
    StorageError,
)
from card_provisioning.models.funding import FundingEvent
from card_provisioning.models.session import User
from card_provisioning.provisioning.card_attributes import derive_card_attributes
from card_provisioning.sessions.store import SessionStore

logger = structlog.get_logger(__name__)


class CardProvisioner:
    """Idempotent card provisioning for confirmed funding events."""

    def __init__(
        self,
        session_store: SessionStore,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        ledger: FundingEventLedger | None = None,
    ):
        self.session_store = session_store
        self._session_factory = session_factory
        self.ledger = ledger or FundingEventLedger()

    async def authorize(self, user_id: str, session_token: str | None) -> User:
        """
        Resolve the session and check it belongs to ``user_id``.

        Raises:
            AuthorizationError: If the session is invalid, expired or belongs
                to another user
        """
        user = await self.session_store.validate_session(session_token)
        if user is None:
            raise AuthorizationError("Session is invalid or expired. Please sign in again.")
        if user.id != user_id:
            logger.warning("provision_user_mismatch", user_id=user_id, session_user_id=user.id)
            raise AuthorizationError("Session does not belong to this user")
        return user

    async def provision(
        self,
        user_id: str,
        funding_event: FundingEvent,
        session_token: str | None,
    ) -> VirtualCard:
        """
        Provision the card for a funding event, or return the existing one.

        Safe to call any number of times, concurrently or not, for the same
        event.

        Raises:
            AuthorizationError: If the caller may not provision for this user
                or this event
            StorageError: If the store failed; retrying is safe
        """
        user = await self.authorize(user_id, session_token)
        if not funding_event.belongs_to(*user.identities()):
            logger.warning(
                "provision_event_owner_mismatch",
                user_id=user_id,
                event_key=funding_event.event_key,
            )
            raise AuthorizationError("Funding event does not belong to this user")

        log = logger.bind(user_id=user_id, event_key=funding_event.event_key)

        try:
            async with session_scope(self._session_factory or get_session_factory()) as db:
                claim = await self.ledger.claim(db, funding_event, user_id)
                if not claim.first_claim:
                    if claim.claimed_by is not None and claim.claimed_by != user_id:
                        log.warning("provision_claimed_by_other_user", claimed_by=claim.claimed_by)
                        raise AuthorizationError(
                            "Funding event was already claimed by another account"
                        )
                    card = await self._existing_card(db, funding_event, user_id)
                    log.info("provision_replayed", card_id=card.id)
                    return card

                attributes = derive_card_attributes(funding_event)
                cards = CardRepository(db)
                try:
                    card = await cards.add(user_id, funding_event, attributes)
                except DuplicateClaim:
                    await db.rollback()
                    card = await self._existing_card(db, funding_event, user_id)
                    log.info("provision_race_resolved", card_id=card.id)
                    return card
        except SQLAlchemyError as e:
            log.error("provision_storage_error", error=str(e))
            raise StorageError(f"Failed to provision card: {e}") from e

        log.info(
            "card_provisioned",
            card_id=card.id,
            card_type=card.card_type,
            spending_limit=card.spending_limit,
            currency=card.currency,
        )
        return card

    async def _existing_card(
        self, db: AsyncSession, event: FundingEvent, user_id: str
    ) -> VirtualCard:
        card = await CardRepository(db).get_by_event_key(event.event_key)
        if card is None:
            # Claimed by a transaction that has not committed its card yet
            raise StorageError(
                f"Funding event {event.event_key} is being provisioned; retry shortly"
            )
        if card.user_id != user_id:
            logger.warning(
                "provision_card_owned_by_other_user",
                user_id=user_id,
                event_key=event.event_key,
            )
            raise AuthorizationError("Funding event was already claimed by another account")
        return card
