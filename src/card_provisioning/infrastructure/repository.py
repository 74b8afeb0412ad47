"""Repository layer for Card Provisioning Service.

Repositories work inside the caller's AsyncSession and never commit; the unit
of work belongs to the caller. ORM rows are converted to domain dataclasses on
the way out.
"""

import hashlib
import uuid
from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from card_provisioning.infrastructure.models import (
    CardOperationRecord,
    FundingEventClaimRecord,
    SessionRecord,
    UserRecord,
    VirtualCardRecord,
)
from card_provisioning.models.card import (
    CardAttributes,
    CardOperationReceipt,
    CardOperationType,
    VirtualCard,
)
from card_provisioning.models.exceptions import DuplicateClaim
from card_provisioning.models.funding import FundingEvent
from card_provisioning.models.session import AuthMethod, Session, User, as_utc, utcnow

logger = structlog.get_logger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


class UserRepository:
    """Lookup and registration of account holders."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[User]:
        record = await self.session.get(UserRecord, user_id)
        return self._to_domain(record) if record else None

    async def get_by_address(self, address: str) -> Optional[User]:
        result = await self.session.execute(
            select(UserRecord).where(UserRecord.address == address.lower())
        )
        record = result.scalar_one_or_none()
        return self._to_domain(record) if record else None

    async def create(
        self,
        auth_method: AuthMethod,
        address: str | None = None,
        ens_name: str | None = None,
        email: str | None = None,
    ) -> User:
        """Insert a new user.

        Raises:
            IntegrityError: If the address, ENS name or email is already taken
        """
        now = utcnow()
        record = UserRecord(
            id=new_id(),
            address=address.lower() if address else None,
            ens_name=ens_name.lower() if ens_name else None,
            email=email,
            auth_method=auth_method.value,
            is_active=True,
            created_at=now,
            last_login_at=now,
        )
        self.session.add(record)
        await self.session.flush()

        logger.info("user_created", user_id=record.id, auth_method=auth_method.value)
        return self._to_domain(record)

    async def touch_login(self, user_id: str) -> None:
        await self.session.execute(
            update(UserRecord).where(UserRecord.id == user_id).values(last_login_at=utcnow())
        )

    async def set_active(self, user_id: str, is_active: bool) -> None:
        await self.session.execute(
            update(UserRecord).where(UserRecord.id == user_id).values(is_active=is_active)
        )

    @staticmethod
    def _to_domain(record: UserRecord) -> User:
        return User(
            id=record.id,
            auth_method=AuthMethod(record.auth_method),
            address=record.address,
            ens_name=record.ens_name,
            email=record.email,
            is_active=record.is_active,
            created_at=as_utc(record.created_at) if record.created_at else None,
            last_login_at=as_utc(record.last_login_at) if record.last_login_at else None,
        )


class SessionRepository:
    """Storage for authorization sessions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, user_session: Session) -> None:
        """Persist a session.

        Raises:
            IntegrityError: If the token already exists
        """
        self.session.add(
            SessionRecord(
                id=user_session.id,
                user_id=user_session.user_id,
                token=user_session.token,
                issued_at=user_session.issued_at,
                expires_at=user_session.expires_at,
                last_used_at=user_session.last_used_at,
            )
        )
        await self.session.flush()

    async def get_by_token(self, token: str) -> Optional[Session]:
        result = await self.session.execute(
            select(SessionRecord).where(SessionRecord.token == token)
        )
        record = result.scalar_one_or_none()
        if not record:
            return None
        return Session(
            id=record.id,
            user_id=record.user_id,
            token=record.token,
            issued_at=as_utc(record.issued_at),
            expires_at=as_utc(record.expires_at),
            last_used_at=as_utc(record.last_used_at) if record.last_used_at else None,
        )

    async def touch(self, token: str, when: datetime) -> None:
        await self.session.execute(
            update(SessionRecord).where(SessionRecord.token == token).values(last_used_at=when)
        )

    async def delete_by_token(self, token: str) -> int:
        result = await self.session.execute(
            delete(SessionRecord).where(SessionRecord.token == token)
        )
        return result.rowcount or 0

    async def delete_for_user(self, user_id: str) -> int:
        result = await self.session.execute(
            delete(SessionRecord).where(SessionRecord.user_id == user_id)
        )
        return result.rowcount or 0


class ClaimRepository:
    """Insert-only access to the funding event claim table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, event: FundingEvent, user_id: str) -> None:
        """Record ``user_id`` as the claimant of an event key.

        Raises:
            DuplicateClaim: If the event key has already been claimed
        """
        self.session.add(
            FundingEventClaimRecord(
                event_key=event.event_key,
                user_id=user_id,
                funding_type=event.funding_type,
                source_tx_id=event.source_tx_id,
                claimed_at=utcnow(),
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateClaim(event.event_key) from e

    async def exists(self, event_key: str) -> bool:
        record = await self.session.get(FundingEventClaimRecord, event_key)
        return record is not None

    async def claimant(self, event_key: str) -> Optional[str]:
        """User id that claimed an event key, if it has been claimed."""
        record = await self.session.get(FundingEventClaimRecord, event_key)
        return record.user_id if record else None


class CardRepository:
    """Storage for provisioned virtual cards."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        user_id: str,
        event: FundingEvent,
        attributes: CardAttributes,
        payment_reference: str | None = None,
    ) -> VirtualCard:
        """Insert a card for a funding event.

        Raises:
            DuplicateClaim: If a card already exists for the event key
        """
        record = VirtualCardRecord(
            id=new_id(),
            user_id=user_id,
            card_name=attributes.card_name,
            masked_number=attributes.masked_number,
            expiry_date=attributes.expiry_date,
            card_type=attributes.card_type,
            currency=attributes.currency,
            spending_limit=attributes.spending_limit,
            current_spend=0,
            is_active=True,
            provisioning_event_key=event.event_key,
            payment_reference=payment_reference or event.source_tx_id,
            created_at=utcnow(),
        )
        self.session.add(record)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateClaim(event.event_key) from e

        return self._to_domain(record)

    async def get(self, card_id: str) -> Optional[VirtualCard]:
        record = await self.session.get(VirtualCardRecord, card_id)
        return self._to_domain(record) if record else None

    async def get_by_event_key(self, event_key: str) -> Optional[VirtualCard]:
        result = await self.session.execute(
            select(VirtualCardRecord).where(
                VirtualCardRecord.provisioning_event_key == event_key
            )
        )
        record = result.scalar_one_or_none()
        return self._to_domain(record) if record else None

    async def list_for_user(self, user_id: str) -> list[VirtualCard]:
        result = await self.session.execute(
            select(VirtualCardRecord)
            .where(VirtualCardRecord.user_id == user_id)
            .order_by(VirtualCardRecord.created_at)
        )
        return [self._to_domain(record) for record in result.scalars()]

    async def update(self, card_id: str, **values: Any) -> None:
        values["updated_at"] = utcnow()
        await self.session.execute(
            update(VirtualCardRecord).where(VirtualCardRecord.id == card_id).values(**values)
        )

    @staticmethod
    def _to_domain(record: VirtualCardRecord) -> VirtualCard:
        return VirtualCard(
            id=record.id,
            user_id=record.user_id,
            card_name=record.card_name,
            masked_number=record.masked_number,
            expiry_date=record.expiry_date,
            card_type=record.card_type,
            currency=record.currency,
            spending_limit=record.spending_limit,
            current_spend=record.current_spend,
            is_active=record.is_active,
            created_at=as_utc(record.created_at),
            provisioning_event_key=record.provisioning_event_key,
            visa_account_id=record.visa_account_id,
            payment_reference=record.payment_reference,
        )


class CardOperationJournal:
    """Append-only journal of card-management mutations.

    Each entry gets a transaction hash that is handed back to the caller as
    the receipt for the operation.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        card_id: str,
        user_id: str,
        operation: CardOperationType,
        payload: dict[str, Any] | None = None,
    ) -> CardOperationReceipt:
        entry_id = new_id()
        transaction_hash = "0x" + hashlib.sha256(
            f"{entry_id}:{card_id}:{operation.value}".encode()
        ).hexdigest()

        self.session.add(
            CardOperationRecord(
                id=entry_id,
                card_id=card_id,
                user_id=user_id,
                operation=operation.value,
                payload=payload,
                transaction_hash=transaction_hash,
                created_at=utcnow(),
            )
        )
        await self.session.flush()

        logger.info(
            "card_operation_recorded",
            card_id=card_id,
            operation=operation.value,
            transaction_hash=transaction_hash,
        )
        return CardOperationReceipt(
            card_id=card_id, operation=operation, transaction_hash=transaction_hash
        )

    async def list_for_card(self, card_id: str) -> list[dict[str, Any]]:
        result = await self.session.execute(
            select(CardOperationRecord)
            .where(CardOperationRecord.card_id == card_id)
            .order_by(CardOperationRecord.created_at)
        )
        return [
            {
                "operation": record.operation,
                "payload": record.payload,
                "transactionHash": record.transaction_hash,
                "createdAt": as_utc(record.created_at).isoformat(),
            }
            for record in result.scalars()
        ]
