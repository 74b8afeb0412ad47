"""Integration tests for the session store lifecycle."""

from datetime import timedelta

import pytest

from card_provisioning.infrastructure.database import session_scope
from card_provisioning.infrastructure.repository import UserRepository
from card_provisioning.sessions.store import SessionStore

TTL = timedelta(days=7)


@pytest.fixture
def store(session_factory, clock):
    return SessionStore(session_factory=session_factory, ttl=TTL, clock=clock)


@pytest.mark.integration
class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_create_and_validate(self, store, clock, user):
        user_session = await store.create_session(user.id)

        assert user_session.issued_at == clock.now
        assert user_session.expires_at == clock.now + TTL
        assert len(user_session.token) >= 32

        resolved = await store.validate_session(user_session.token)
        assert resolved.id == user.id

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, store, user):
        first = await store.create_session(user.id)
        second = await store.create_session(user.id)

        assert first.token != second.token
        assert (await store.validate_session(first.token)).id == user.id
        assert (await store.validate_session(second.token)).id == user.id

    @pytest.mark.asyncio
    async def test_expired_session_is_invalid_and_removed(self, store, clock, user):
        user_session = await store.create_session(user.id)
        clock.advance(TTL + timedelta(seconds=1))

        assert await store.validate_session(user_session.token) is None
        assert await store.get_session(user_session.token) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "elapsed,valid",
        [
            (TTL - timedelta(seconds=1), True),
            (TTL, False),
            (TTL + timedelta(seconds=1), False),
        ],
    )
    async def test_expiry_boundary(self, store, clock, user, elapsed, valid):
        user_session = await store.create_session(user.id)
        clock.advance(elapsed)

        resolved = await store.validate_session(user_session.token)

        assert (resolved is not None) is valid

    @pytest.mark.asyncio
    async def test_validation_records_last_use(self, store, clock, user):
        user_session = await store.create_session(user.id)
        clock.advance(timedelta(hours=1))

        await store.validate_session(user_session.token)

        stored = await store.get_session(user_session.token)
        assert stored.last_used_at == clock.now

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "unknown-token"])
    async def test_unknown_tokens_are_invalid(self, store, token):
        assert await store.validate_session(token) is None

    @pytest.mark.asyncio
    async def test_inactive_user_session_is_invalid(self, store, session_factory, user):
        user_session = await store.create_session(user.id)
        async with session_scope(session_factory) as db:
            await UserRepository(db).set_active(user.id, False)

        assert await store.validate_session(user_session.token) is None


@pytest.mark.integration
class TestSessionDeletion:
    @pytest.mark.asyncio
    async def test_delete_session(self, store, user):
        user_session = await store.create_session(user.id)

        await store.delete_session(user_session.token)

        assert await store.validate_session(user_session.token) is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store, user):
        user_session = await store.create_session(user.id)

        await store.delete_session(user_session.token)
        await store.delete_session(user_session.token)
        await store.delete_session("never-existed")

    @pytest.mark.asyncio
    async def test_delete_user_sessions(self, store, user, other_user):
        first = await store.create_session(user.id)
        second = await store.create_session(user.id)
        kept = await store.create_session(other_user.id)

        assert await store.delete_user_sessions(user.id) == 2

        assert await store.validate_session(first.token) is None
        assert await store.validate_session(second.token) is None
        assert (await store.validate_session(kept.token)).id == other_user.id
