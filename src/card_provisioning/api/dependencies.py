"""FastAPI dependencies for authentication and service injection.

Services that hold process-wide state (provider connections, the recent
event cache, tracked polling attempts) are created once and shared by all
requests. Tests replace them through ``app.dependency_overrides``.
"""

from dataclasses import dataclass
from typing import Annotated

import structlog
from fastapi import Depends, Header, HTTPException, status

from card_provisioning.identity.verifier import SandboxIdentityVerifier
from card_provisioning.ledger.dedup import FundingEventConsumer, RecentEventCache
from card_provisioning.models.session import User
from card_provisioning.providers.factory import ProviderFactory
from card_provisioning.provisioning.cards import CardService
from card_provisioning.provisioning.flow import FundingFlow
from card_provisioning.provisioning.orchestrator import CardProvisioner
from card_provisioning.sessions.accounts import AccountService
from card_provisioning.sessions.store import SessionStore

logger = structlog.get_logger(__name__)

_session_store: SessionStore | None = None
_provider_factory: ProviderFactory | None = None
_recent_events: RecentEventCache | None = None
_funding_flow: FundingFlow | None = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store


SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]


def get_provider_factory() -> ProviderFactory:
    global _provider_factory
    if _provider_factory is None:
        _provider_factory = ProviderFactory()
    return _provider_factory


def get_card_provisioner(session_store: SessionStoreDep) -> CardProvisioner:
    return CardProvisioner(session_store)


ProvisionerDep = Annotated[CardProvisioner, Depends(get_card_provisioner)]


def get_funding_flow(provisioner: ProvisionerDep) -> FundingFlow:
    """Shared funding flow; it tracks polled attempts across requests."""
    global _funding_flow
    if _funding_flow is None:
        _funding_flow = FundingFlow(get_provider_factory(), provisioner)
    return _funding_flow


FundingFlowDep = Annotated[FundingFlow, Depends(get_funding_flow)]


def get_event_consumer(
    provisioner: ProvisionerDep, flow: FundingFlowDep
) -> FundingEventConsumer:
    """Consumer for client-reported events; each is confirmed with its provider."""
    global _recent_events
    if _recent_events is None:
        _recent_events = RecentEventCache()
    return FundingEventConsumer(provisioner, _recent_events, confirm=flow.confirm_event)


EventConsumerDep = Annotated[FundingEventConsumer, Depends(get_event_consumer)]


def get_card_service() -> CardService:
    return CardService()


CardServiceDep = Annotated[CardService, Depends(get_card_service)]


def get_account_service(session_store: SessionStoreDep) -> AccountService:
    return AccountService(SandboxIdentityVerifier(), session_store)


AccountServiceDep = Annotated[AccountService, Depends(get_account_service)]


@dataclass(frozen=True)
class AuthContext:
    """The authenticated caller of a request."""

    user: User
    token: str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def parse_bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    if not authorization:
        logger.warning("missing_authorization_header")
        raise _unauthorized("Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("invalid_authorization_header")
        raise _unauthorized("Invalid Authorization header format. Expected: Bearer <token>")
    return parts[1]


async def get_bearer_token(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    return parse_bearer_token(authorization)


BearerToken = Annotated[str, Depends(get_bearer_token)]


async def get_current_auth(token: BearerToken, session_store: SessionStoreDep) -> AuthContext:
    """Resolve the bearer session to its user.

    Raises:
        HTTPException: 401 if the session is unknown or expired
    """
    user = await session_store.validate_session(token)
    if user is None:
        raise _unauthorized("Session is invalid or expired. Please sign in again.")
    return AuthContext(user=user, token=token)


CurrentAuth = Annotated[AuthContext, Depends(get_current_auth)]


async def shutdown_services() -> None:
    """Stop polling loops and close provider connections."""
    global _funding_flow, _provider_factory, _recent_events
    if _funding_flow is not None:
        await _funding_flow.close()
        _funding_flow = None
    if _provider_factory is not None:
        await _provider_factory.close()
        _provider_factory = None
    _recent_events = None
