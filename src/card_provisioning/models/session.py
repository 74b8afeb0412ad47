"""User and session domain models."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes read back from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuthMethod(str, Enum):
    """How a user proved their identity."""

    EMAIL = "email"
    ENS = "ens"
    WALLET = "wallet"


@dataclass
class User:
    """An authenticated account holder."""

    id: str
    auth_method: AuthMethod
    address: str | None = None
    ens_name: str | None = None
    email: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    last_login_at: datetime | None = None

    def identities(self) -> tuple[str | None, ...]:
        """Identifiers a funding event may be addressed to."""
        return (self.id, self.address, self.ens_name)


@dataclass
class Session:
    """
    A time-bounded authorization token bound to a user.

    A session is valid iff ``now < expires_at``.
    """

    id: str
    user_id: str
    token: str
    issued_at: datetime
    expires_at: datetime
    last_used_at: datetime | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        now = as_utc(now) if now is not None else utcnow()
        return now < as_utc(self.expires_at)

    def to_client_record(self) -> dict[str, str]:
        """The {token, userId, expiresAt} triple held by clients."""
        return {
            "token": self.token,
            "userId": self.user_id,
            "expiresAt": as_utc(self.expires_at).isoformat(),
        }
