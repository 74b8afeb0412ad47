"""Login and logout on top of the identity verifier and the session store."""

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_provisioning.identity.verifier import IdentityVerifier
from card_provisioning.infrastructure.database import get_session_factory, session_scope
from card_provisioning.infrastructure.repository import UserRepository
from card_provisioning.models.exceptions import AuthorizationError, StorageError
from card_provisioning.models.session import AuthMethod, Session, User
from card_provisioning.sessions.store import SessionStore

logger = structlog.get_logger(__name__)


class AccountService:
    """Registers users on first login and issues their sessions."""

    def __init__(
        self,
        identity_verifier: IdentityVerifier,
        session_store: SessionStore,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self.identity_verifier = identity_verifier
        self.session_store = session_store
        self._session_factory = session_factory

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def login(self, address: str, ens_name: str | None = None) -> tuple[User, Session]:
        """
        Verify the identity, get or create its user and open a session.

        Raises:
            AuthorizationError: If the identity could not be verified or the
                account is disabled
            StorageError: If the store failed
        """
        verification = await self.identity_verifier.verify(ens_name, address)
        if not verification.is_valid:
            raise AuthorizationError(verification.error or "Identity verification failed")

        resolved = verification.resolved_address or address.lower()
        method = AuthMethod.ENS if ens_name else AuthMethod.WALLET

        try:
            user = await self._get_or_create(resolved, ens_name, method)
        except SQLAlchemyError as e:
            logger.error("login_storage_error", error=str(e))
            raise StorageError(f"Failed to load account: {e}") from e

        if not user.is_active:
            raise AuthorizationError("Account is disabled")

        user_session = await self.session_store.create_session(user.id)
        logger.info("user_logged_in", user_id=user.id, auth_method=method.value)
        return user, user_session

    async def _get_or_create(
        self, address: str, ens_name: str | None, method: AuthMethod
    ) -> User:
        async with session_scope(self._factory()) as db:
            users = UserRepository(db)
            user = await users.get_by_address(address)
            if user is not None:
                await users.touch_login(user.id)
                return user

        try:
            async with session_scope(self._factory()) as db:
                return await UserRepository(db).create(method, address=address, ens_name=ens_name)
        except IntegrityError:
            # Registered concurrently by another login for the same address
            async with session_scope(self._factory()) as db:
                user = await UserRepository(db).get_by_address(address)
            if user is None:
                raise AuthorizationError("ENS name is already linked to another account")
            return user

    async def logout(self, token: str) -> None:
        await self.session_store.delete_session(token)
