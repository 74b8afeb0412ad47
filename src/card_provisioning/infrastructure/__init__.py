"""Persistence layer for Card Provisioning Service."""

from card_provisioning.infrastructure.database import (
    Base,
    close_engine,
    create_db_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "close_engine",
    "create_db_engine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]
