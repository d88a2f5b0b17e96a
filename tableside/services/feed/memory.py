"""
In-Process Change Feed

Fans events out to subscribers through asyncio queues. Used in development
and tests where coordinator and writers share one event loop.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from tableside.services.feed.base import BaseChangeFeed, ChangeEvent

logger = logging.getLogger(__name__)


class ChannelClosed(ConnectionError):
    """Raised inside a subscription when the feed drops it."""


class MemoryChangeFeed(BaseChangeFeed):
    """
    Mock implementation of the change feed.

    Example:
        >>> feed = MemoryChangeFeed()
        >>> async for event in feed.subscribe():
        ...     print(event.table)
    """

    def __init__(self):
        self._subscribers: set[asyncio.Queue] = set()
        self.published: list[ChangeEvent] = []

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: ChangeEvent) -> None:
        self.published.append(event)
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    async def subscribe(
        self,
        on_ready: Optional[Callable[[], None]] = None,
    ) -> AsyncIterator[ChangeEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            if on_ready is not None:
                on_ready()
            while True:
                item = await queue.get()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self._subscribers.discard(queue)

    def drop_subscribers(self, reason: str = "channel closed") -> int:
        """
        Break every live subscription, as a dropped connection would.

        Returns:
            Number of subscriptions dropped
        """
        dropped = 0
        for queue in list(self._subscribers):
            queue.put_nowait(ChannelClosed(reason))
            dropped += 1
        logger.debug(f"Dropped {dropped} change feed subscriber(s): {reason}")
        return dropped

    async def health_check(self) -> bool:
        return True
