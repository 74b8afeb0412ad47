"""SQLAlchemy ORM models for Card Provisioning Service."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from card_provisioning.infrastructure.database import Base


class UserRecord(Base):
    """Account holders, keyed by wallet address, ENS name or email."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    address: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, comment="Wallet address (lowercase)"
    )
    ens_name: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    auth_method: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="email, ens or wallet"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )


class SessionRecord(Base):
    """
    Authorization sessions.

    token is unique; rows are removed on logout or lazily once found expired.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    issued_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (Index("idx_sessions_expires_at", "expires_at"),)


class FundingEventClaimRecord(Base):
    """
    Durable record that a funding event has been consumed.

    The primary key on event_key is what makes provisioning exactly-once.
    """

    __tablename__ = "funding_event_claims"

    event_key: Mapped[str] = mapped_column(String(255), primary_key=True)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    funding_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_tx_id: Mapped[str] = mapped_column(String(255), nullable=False)

    claimed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )


class VirtualCardRecord(Base):
    """Provisioned virtual cards. Amounts are integer minor units."""

    __tablename__ = "virtual_cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    card_name: Mapped[str] = mapped_column(String(128), nullable=False)
    masked_number: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="Display number, e.g. ****1234"
    )
    expiry_date: Mapped[str] = mapped_column(String(5), nullable=False, comment="MM/YY")
    card_type: Mapped[str] = mapped_column(String(32), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)

    spending_limit: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_spend: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    provisioning_event_key: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )

    visa_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("spending_limit >= 0", name="ck_virtual_cards_limit_non_negative"),
        CheckConstraint("current_spend >= 0", name="ck_virtual_cards_spend_non_negative"),
        CheckConstraint(
            "current_spend <= spending_limit", name="ck_virtual_cards_spend_within_limit"
        ),
    )


class CardOperationRecord(Base):
    """
    Append-only journal of card-management mutations.

    Rows are never updated or deleted.
    """

    __tablename__ = "card_operations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    card_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("virtual_cards.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    operation: Mapped[str] = mapped_column(String(32), nullable=False)

    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
