"""Pytest configuration and shared fixtures for all tests.

This module provides shared test fixtures including:
- A file-backed SQLite database per test (aiosqlite)
- Session factories and stores bound to that database
- A registered user with a live session
- A controllable clock for session expiry tests
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from card_provisioning.infrastructure.database import (  # noqa: E402
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from card_provisioning.infrastructure.repository import UserRepository  # noqa: E402
from card_provisioning.models.session import AuthMethod  # noqa: E402
from card_provisioning.sessions.store import SessionStore  # noqa: E402

TEST_ADDRESS = "0x" + "ab" * 20
OTHER_ADDRESS = "0x" + "cd" * 20


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh database with all tables created.

    A file database (rather than :memory:) lets concurrent sessions use
    separate connections that see each other's commits.
    """
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'card_provisioning.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def session_store(session_factory):
    return SessionStore(session_factory=session_factory)


@pytest_asyncio.fixture
async def user(session_factory):
    """A registered wallet user."""
    async with session_scope(session_factory) as db:
        return await UserRepository(db).create(AuthMethod.WALLET, address=TEST_ADDRESS)


@pytest_asyncio.fixture
async def other_user(session_factory):
    async with session_scope(session_factory) as db:
        return await UserRepository(db).create(
            AuthMethod.ENS, address=OTHER_ADDRESS, ens_name="alice.eth"
        )


@pytest_asyncio.fixture
async def user_session(session_store, user):
    """A live session for ``user``."""
    return await session_store.create_session(user.id)
