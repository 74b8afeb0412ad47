"""Card network bookkeeping endpoints.

Each mutation returns the transaction hash of its journal entry. Ownership is
checked against the ``userId`` in the body; an unknown card and a card owned
by someone else are reported the same way.
"""

import structlog
from fastapi import APIRouter

from card_provisioning.api.dependencies import CardServiceDep
from card_provisioning.api.models import (
    DeactivateCardRequest,
    RecordCardRequest,
    UpdateCardLimitRequest,
    json_number,
    ok,
    rejected,
)
from card_provisioning.models.exceptions import CardOperationRejected

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/visa", tags=["visa"])


@router.post("/record-card")
async def record_card(body: RecordCardRequest, cards: CardServiceDep) -> dict:
    try:
        receipt = await cards.record_card(
            user_id=body.user_id,
            card_id=body.card_id,
            visa_account_id=body.visa_account_id,
            payment_reference=body.payment_reference,
            payment_method=body.payment_method,
        )
    except CardOperationRejected as e:
        logger.info("record_card_rejected", card_id=body.card_id, error=str(e))
        return rejected(str(e))

    return ok(
        {
            "transactionHash": receipt.transaction_hash,
            "cardId": receipt.card_id,
            "visaAccountId": body.visa_account_id,
        }
    )


@router.post("/update-card-limit")
async def update_card_limit(body: UpdateCardLimitRequest, cards: CardServiceDep) -> dict:
    try:
        receipt = await cards.update_limit(body.card_id, body.new_limit, body.user_id)
    except CardOperationRejected as e:
        logger.info("update_card_limit_rejected", card_id=body.card_id, error=str(e))
        return rejected(str(e))

    return ok(
        {
            "transactionHash": receipt.transaction_hash,
            "cardId": receipt.card_id,
            "newLimit": json_number(body.new_limit),
        }
    )


@router.post("/deactivate-card")
async def deactivate_card(body: DeactivateCardRequest, cards: CardServiceDep) -> dict:
    try:
        receipt = await cards.deactivate(body.card_id, body.user_id)
    except CardOperationRejected as e:
        logger.info("deactivate_card_rejected", card_id=body.card_id, error=str(e))
        return rejected(str(e))

    return ok({"transactionHash": receipt.transaction_hash, "cardId": receipt.card_id})
