"""Payment verification endpoints.

- POST /payments/verify-crypto: single-shot check of a crypto payment
- POST /payments/verify-momo: single-shot check of a mobile-money payment
- POST /payments/initiate-momo: start a collection polled in the background
- POST /payments/attempt-status: last observed state of a polled attempt

A provider rejection is a normal outcome and is answered with 200 and
``success: false``.
"""

import structlog
from fastapi import APIRouter

from card_provisioning.api.dependencies import CurrentAuth, FundingFlowDep
from card_provisioning.api.models import (
    AttemptStatusRequest,
    InitiateMomoRequest,
    VerifyCryptoRequest,
    VerifyMomoRequest,
    json_number,
    ok,
    rejected,
)
from card_provisioning.models.exceptions import ProviderError
from card_provisioning.models.funding import FundingAttempt, Provider
from card_provisioning.models.session import utcnow
from card_provisioning.verification.state_machine import VerificationStatus

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/verify-crypto")
async def verify_crypto(body: VerifyCryptoRequest, flow: FundingFlowDep) -> dict:
    attempt = FundingAttempt.create(
        reference=body.reference,
        amount=body.amount,
        currency=body.currency,
        provider=Provider.CRYPTO,
    )
    state = await flow.verify(attempt)

    if state.status is not VerificationStatus.SUCCESS or state.result is None:
        logger.info("crypto_verification_rejected", reference=body.reference, error=state.error)
        return rejected(state.error or "Payment verification failed")

    metadata = state.result.metadata
    return ok(
        {
            "reference": attempt.reference,
            "amount": json_number(attempt.amount),
            "currency": attempt.currency,
            "status": "confirmed",
            "transactionId": state.transaction_id,
            "blockHash": metadata.get("blockHash"),
            "confirmations": metadata.get("confirmations"),
            "timestamp": utcnow().isoformat(),
        }
    )


@router.post("/verify-momo")
async def verify_momo(body: VerifyMomoRequest, flow: FundingFlowDep) -> dict:
    attempt = FundingAttempt.create(
        reference=body.reference,
        amount=body.amount,
        currency=body.currency,
        provider=body.provider,
        external_id=body.external_id,
        phone_or_address=body.phone_number,
    )
    state = await flow.verify(attempt)

    if state.status is not VerificationStatus.SUCCESS:
        logger.info(
            "momo_verification_rejected",
            reference=body.reference,
            provider=body.provider,
            error=state.error,
        )
        return rejected(state.error or "Payment verification failed")

    return ok(
        {
            "reference": attempt.reference,
            "amount": json_number(attempt.amount),
            "currency": attempt.currency,
            "status": "confirmed",
            "transactionId": state.transaction_id,
            "timestamp": utcnow().isoformat(),
            "provider": attempt.provider.value,
            "financialTransactionId": state.financial_transaction_id,
        }
    )


@router.post("/initiate-momo")
async def initiate_momo(
    body: InitiateMomoRequest, auth: CurrentAuth, flow: FundingFlowDep
) -> dict:
    attempt = FundingAttempt.create(
        reference=body.external_id,
        amount=body.amount,
        currency=body.currency,
        provider=body.provider,
        external_id=body.external_id,
        phone_or_address=body.phone_number,
    )
    try:
        tracked = await flow.start_momo_funding(auth.user, auth.token, attempt)
    except ProviderError as e:
        logger.warning(
            "momo_initiation_rejected",
            provider=body.provider,
            external_id=body.external_id,
            error_kind=e.error_kind,
        )
        return rejected(str(e))

    return ok(
        {
            "reference": tracked.reference,
            "externalId": body.external_id,
            "status": tracked.verifier.state.status.value,
        }
    )


@router.post("/attempt-status")
async def attempt_status(
    body: AttemptStatusRequest, auth: CurrentAuth, flow: FundingFlowDep
) -> dict:
    tracked = flow.attempt_state(body.reference, user_id=auth.user.id)
    if tracked is None:
        return rejected("Payment attempt not found")
    return ok(tracked.to_dict())
