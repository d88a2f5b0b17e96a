"""
Redis Change Feed

Publishes change notifications on a Redis pub/sub channel per restaurant
(``<prefix>:<restaurant_id>``) so that every API process and coordinator
watching the same restaurant sees each write.
"""

import json
import logging
from typing import AsyncIterator, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from tableside.core.config import get_settings
from tableside.services.feed.base import BaseChangeFeed, ChangeEvent

logger = logging.getLogger(__name__)


class RedisChangeFeed(BaseChangeFeed):
    """Real implementation of the change feed on Redis pub/sub."""

    def __init__(self, redis_url: Optional[str] = None, channel: Optional[str] = None):
        settings = get_settings()
        self.channel = channel or settings.change_feed_channel
        self._client = aioredis.from_url(
            redis_url or settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        logger.info(f"RedisChangeFeed initialized (channel={self.channel})")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def publish(self, event: ChangeEvent) -> None:
        try:
            await self._client.publish(self.channel, json.dumps(event.to_dict()))
        except RedisError as e:
            # The fallback poll picks the change up.
            logger.warning(f"Change notification for {event.table} not published: {e}")

    async def subscribe(
        self,
        on_ready: Optional[Callable[[], None]] = None,
    ) -> AsyncIterator[ChangeEvent]:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self.channel)
        try:
            if on_ready is not None:
                on_ready()
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield ChangeEvent.from_dict(json.loads(message["data"]))
                except (ValueError, KeyError) as e:
                    logger.warning(f"Ignoring malformed change notification: {e}")
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
