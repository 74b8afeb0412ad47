"""Card management operations.

Every mutation is written to the card operation journal in the same
transaction as the change itself, and the journal entry's transaction hash is
returned to the caller as the receipt.
"""

from decimal import Decimal

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_provisioning.infrastructure.database import get_session_factory, session_scope
from card_provisioning.infrastructure.repository import CardOperationJournal, CardRepository
from card_provisioning.models.card import CardOperationReceipt, CardOperationType, VirtualCard
from card_provisioning.models.exceptions import (
    CardOperationRejected,
    StorageError,
    ValidationError,
)
from card_provisioning.models.funding import to_minor_units

logger = structlog.get_logger(__name__)

PAYMENT_METHODS = ("momo", "crypto")


class CardService:
    """Mutation points for provisioned cards: record, limit update, deactivate."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @staticmethod
    async def _owned_card(cards: CardRepository, card_id: str, user_id: str) -> VirtualCard:
        card = await cards.get(card_id)
        if card is None or card.user_id != user_id:
            # Same answer for both so card ids cannot be enumerated
            raise CardOperationRejected(f"Card {card_id} not found")
        return card

    async def list_cards(self, user_id: str) -> list[VirtualCard]:
        try:
            async with session_scope(self._factory()) as db:
                return await CardRepository(db).list_for_user(user_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list cards: {e}") from e

    async def record_card(
        self,
        user_id: str,
        card_id: str,
        visa_account_id: str,
        payment_reference: str,
        payment_method: str,
    ) -> CardOperationReceipt:
        """Attach the card network account to a provisioned card."""
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(
                f"paymentMethod must be one of: {', '.join(PAYMENT_METHODS)}"
            )

        try:
            async with session_scope(self._factory()) as db:
                cards = CardRepository(db)
                await self._owned_card(cards, card_id, user_id)
                await cards.update(
                    card_id,
                    visa_account_id=visa_account_id,
                    payment_reference=payment_reference,
                )
                receipt = await CardOperationJournal(db).append(
                    card_id,
                    user_id,
                    CardOperationType.RECORD,
                    {
                        "visaAccountId": visa_account_id,
                        "paymentReference": payment_reference,
                        "paymentMethod": payment_method,
                    },
                )
        except SQLAlchemyError as e:
            logger.error("card_record_failed", card_id=card_id, error=str(e))
            raise StorageError(f"Failed to record card: {e}") from e

        return receipt

    async def update_limit(
        self, card_id: str, new_limit: Decimal, user_id: str
    ) -> CardOperationReceipt:
        """
        Change a card's spending limit.

        Args:
            new_limit: New limit in major units of the card's currency

        Raises:
            ValidationError: If new_limit is not positive
            CardOperationRejected: If the card is unknown, inactive or has
                already spent more than new_limit
        """
        if new_limit <= 0:
            raise ValidationError("New limit must be greater than 0")

        try:
            async with session_scope(self._factory()) as db:
                cards = CardRepository(db)
                card = await self._owned_card(cards, card_id, user_id)
                if not card.is_active:
                    raise CardOperationRejected("Card is deactivated")

                limit_minor = to_minor_units(new_limit, card.currency)
                if limit_minor < card.current_spend:
                    raise CardOperationRejected("New limit cannot be below the current spend")

                await cards.update(card_id, spending_limit=limit_minor)
                receipt = await CardOperationJournal(db).append(
                    card_id,
                    user_id,
                    CardOperationType.UPDATE_LIMIT,
                    {"previousLimit": card.spending_limit, "newLimit": limit_minor},
                )
        except SQLAlchemyError as e:
            logger.error("card_limit_update_failed", card_id=card_id, error=str(e))
            raise StorageError(f"Failed to update card limit: {e}") from e

        return receipt

    async def deactivate(self, card_id: str, user_id: str) -> CardOperationReceipt:
        """Deactivate a card. Deactivating an inactive card is allowed."""
        try:
            async with session_scope(self._factory()) as db:
                cards = CardRepository(db)
                card = await self._owned_card(cards, card_id, user_id)
                await cards.update(card_id, is_active=False)
                receipt = await CardOperationJournal(db).append(
                    card_id,
                    user_id,
                    CardOperationType.DEACTIVATE,
                    {"wasActive": card.is_active},
                )
        except SQLAlchemyError as e:
            logger.error("card_deactivate_failed", card_id=card_id, error=str(e))
            raise StorageError(f"Failed to deactivate card: {e}") from e

        return receipt
