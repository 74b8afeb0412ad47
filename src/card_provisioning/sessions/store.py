"""Session store: issues, validates and expires authorization tokens.

Expiry is checked lazily at validation time; there is no background sweeper.
An expired row is deleted the first time it is looked up after its expiry.
"""

import secrets
import uuid
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_provisioning.config import settings
from card_provisioning.infrastructure.database import get_session_factory, session_scope
from card_provisioning.infrastructure.repository import SessionRepository, UserRepository
from card_provisioning.models.exceptions import StorageError
from card_provisioning.models.session import Session, User, utcnow

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class SessionStore:
    """
    Persistent session lifecycle.

    A session is valid iff ``now < expires_at``. Session tokens are unique in
    the store, so concurrent creation can never hand out the same token twice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        ttl: timedelta | None = None,
        clock: Clock = utcnow,
    ):
        """
        Args:
            session_factory: Factory for database sessions. Defaults to the
                global factory.
            ttl: Session lifetime. Defaults to ``settings.sessions.ttl_days``.
            clock: Returns the current aware UTC time; injectable for tests.
        """
        self._session_factory = session_factory
        self.ttl = ttl or timedelta(days=settings.sessions.ttl_days)
        self._clock = clock

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def create_session(self, user_id: str) -> Session:
        """
        Issue a fresh session for a user.

        Raises:
            StorageError: If the session could not be written
        """
        issued_at = self._clock()
        user_session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=secrets.token_urlsafe(32),
            issued_at=issued_at,
            expires_at=issued_at + self.ttl,
            last_used_at=issued_at,
        )

        try:
            async with session_scope(self._factory()) as db:
                await SessionRepository(db).add(user_session)
        except SQLAlchemyError as e:
            logger.error("session_create_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to create session: {e}") from e

        logger.info(
            "session_created",
            user_id=user_id,
            session_id=user_session.id,
            expires_at=user_session.expires_at.isoformat(),
        )
        return user_session

    async def validate_session(self, token: str | None) -> User | None:
        """
        Resolve a token to its user.

        Returns None when the token is unknown, expired, or bound to a missing
        or inactive user. Invalid tokens are a normal outcome, not an error.

        Raises:
            StorageError: If the store could not be read
        """
        if not token:
            return None

        now = self._clock()
        try:
            async with session_scope(self._factory()) as db:
                sessions = SessionRepository(db)
                user_session = await sessions.get_by_token(token)
                if user_session is None:
                    logger.debug("session_not_found")
                    return None

                if not user_session.is_valid(now):
                    await sessions.delete_by_token(token)
                    logger.info(
                        "session_expired",
                        session_id=user_session.id,
                        user_id=user_session.user_id,
                    )
                    return None

                user = await UserRepository(db).get(user_session.user_id)
                if user is None or not user.is_active:
                    logger.warning(
                        "session_user_unavailable",
                        session_id=user_session.id,
                        user_id=user_session.user_id,
                    )
                    return None

                await sessions.touch(token, now)
                return user
        except SQLAlchemyError as e:
            logger.error("session_validate_failed", error=str(e))
            raise StorageError(f"Failed to validate session: {e}") from e

    async def get_session(self, token: str) -> Session | None:
        """Return the stored session for a token without validating it."""
        try:
            async with session_scope(self._factory()) as db:
                return await SessionRepository(db).get_by_token(token)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read session: {e}") from e

    async def delete_session(self, token: str) -> None:
        """Delete a session. Deleting an unknown token is not an error."""
        try:
            async with session_scope(self._factory()) as db:
                deleted = await SessionRepository(db).delete_by_token(token)
        except SQLAlchemyError as e:
            logger.error("session_delete_failed", error=str(e))
            raise StorageError(f"Failed to delete session: {e}") from e

        logger.info("session_deleted", deleted=deleted)

    async def delete_user_sessions(self, user_id: str) -> int:
        """Delete every session belonging to a user. Returns the number removed."""
        try:
            async with session_scope(self._factory()) as db:
                deleted = await SessionRepository(db).delete_for_user(user_id)
        except SQLAlchemyError as e:
            logger.error("user_sessions_delete_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to delete sessions: {e}") from e

        logger.info("user_sessions_deleted", user_id=user_id, deleted=deleted)
        return deleted
