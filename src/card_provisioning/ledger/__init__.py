"""Funding event deduplication ledger."""

from card_provisioning.ledger.dedup import (
    ClaimResult,
    ConsumedEvent,
    EventOutcome,
    FundingEventConsumer,
    FundingEventLedger,
    RecentEventCache,
)
from card_provisioning.ledger.sources import FundingEventSource, QueueFundingEventSource

__all__ = [
    "ClaimResult",
    "ConsumedEvent",
    "EventOutcome",
    "FundingEventConsumer",
    "FundingEventLedger",
    "FundingEventSource",
    "QueueFundingEventSource",
    "RecentEventCache",
]
