"""Session lifecycle."""

from card_provisioning.sessions.accounts import AccountService
from card_provisioning.sessions.store import SessionStore

__all__ = ["AccountService", "SessionStore"]
