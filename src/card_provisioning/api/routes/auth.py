"""Login and logout endpoints."""

import structlog
from fastapi import APIRouter

from card_provisioning.api.dependencies import AccountServiceDep, BearerToken
from card_provisioning.api.models import LoginRequest, ok, rejected
from card_provisioning.models.exceptions import AuthorizationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
async def login(body: LoginRequest, accounts: AccountServiceDep) -> dict:
    """Verify a wallet identity and open a session.

    The response carries the ``{token, userId, expiresAt}`` record the client
    keeps; holding it is enough to stay signed in until it expires.
    """
    try:
        user, user_session = await accounts.login(body.address, body.ens_name)
    except AuthorizationError as e:
        logger.info("login_rejected", error=str(e))
        return rejected(str(e))

    return ok(
        {
            "session": user_session.to_client_record(),
            "user": {
                "id": user.id,
                "address": user.address,
                "ensName": user.ens_name,
                "authMethod": user.auth_method.value,
            },
        }
    )


@router.post("/logout")
async def logout(token: BearerToken, accounts: AccountServiceDep) -> dict:
    await accounts.logout(token)
    return ok()
