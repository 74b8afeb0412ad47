"""Card provisioning endpoints.

All routes need a bearer session. Provisioning is idempotent per funding
event: submitting the same payment or event twice returns the card created
the first time.
"""

import structlog
from fastapi import APIRouter

from card_provisioning.api.dependencies import (
    CardServiceDep,
    CurrentAuth,
    EventConsumerDep,
    FundingFlowDep,
)
from card_provisioning.api.models import (
    FundingEventsRequest,
    ProvisionCardRequest,
    ok,
    rejected,
)
from card_provisioning.models.funding import FundingAttempt, FundingEvent, make_event_key

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/cards", tags=["cards"])


@router.get("")
async def list_cards(auth: CurrentAuth, cards: CardServiceDep) -> dict:
    owned = await cards.list_cards(auth.user.id)
    return ok({"cards": [card.to_safe_dict() for card in owned]})


@router.post("/provision")
async def provision_card(
    body: ProvisionCardRequest, auth: CurrentAuth, flow: FundingFlowDep
) -> dict:
    """Verify a payment with one status check and provision its card."""
    attempt = FundingAttempt.create(
        reference=body.reference,
        amount=body.amount,
        currency=body.currency,
        provider=body.provider,
        external_id=body.external_id,
    )
    outcome = await flow.fund_and_provision(
        auth.user, auth.token, attempt, card_type=body.card_type
    )

    if outcome.card is None:
        logger.info(
            "provision_payment_not_confirmed",
            user_id=auth.user.id,
            reference=body.reference,
            status=outcome.state.status.value,
        )
        return rejected(outcome.state.error or "Payment is not confirmed")

    return ok(
        {
            "card": outcome.card.to_safe_dict(),
            "verification": outcome.state.to_dict(),
        }
    )


@router.post("/funding-events")
async def consume_funding_events(
    body: FundingEventsRequest, auth: CurrentAuth, consumer: EventConsumerDep
) -> dict:
    """
    Provision cards for funding events observed by the client.

    Each event is confirmed with its payment provider first; ``sourceTxId``
    is the provider reference. Unconfirmed events come back as ``rejected``.
    """
    events = [
        FundingEvent(
            event_key=item.event_key or make_event_key(item.funding_type, item.source_tx_id),
            user_address_or_id=item.user_address_or_id,
            amount=item.amount,
            currency=item.currency.upper(),
            funding_type=item.funding_type,
            source_tx_id=item.source_tx_id,
            card_type=item.card_type,
        )
        for item in body.events
    ]
    results = await consumer.consume(auth.user, auth.token, events)
    return ok({"results": [result.to_dict() for result in results]})
