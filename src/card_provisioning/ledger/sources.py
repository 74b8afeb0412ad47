"""Funding event sources.

A source is an async iterator of confirmed FundingEvents. Delivery is
at-least-once; duplicates are expected and handled by the ledger.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator

import structlog

from card_provisioning.models.funding import FundingEvent

logger = structlog.get_logger(__name__)


class FundingEventSource(ABC):
    """Stream of confirmed funding events."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[FundingEvent]:
        pass


class QueueFundingEventSource(FundingEventSource):
    """
    Push source backed by an asyncio.Queue.

    Producers call publish(); close() ends iteration once the queued events
    have been drained.
    """

    _CLOSED = object()

    def __init__(self, max_size: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._closed = False

    async def publish(self, event: FundingEvent) -> None:
        if self._closed:
            raise RuntimeError("Cannot publish to a closed funding event source")
        await self._queue.put(event)
        logger.debug("funding_event_published", event_key=event.event_key)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[FundingEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
