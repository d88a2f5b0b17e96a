"""
Change Feed Factory

Returns the in-memory or Redis change feed based on CHANGE_FEED_BACKEND.

Usage:
    from tableside.services.feed import get_change_feed

    feed = get_change_feed()
    await feed.publish(ChangeEvent(table="orders", action="UPDATE", restaurant_id="r1"))
"""

import logging
from functools import lru_cache

from tableside.core.config import ChangeFeedBackend, get_settings
from tableside.services.feed.base import BaseChangeFeed, ChangeEvent
from tableside.services.feed.memory import MemoryChangeFeed

logger = logging.getLogger(__name__)


@lru_cache()
def get_change_feed() -> BaseChangeFeed:
    """Get the configured change feed (cached singleton)."""
    settings = get_settings()

    if settings.change_feed_backend == ChangeFeedBackend.MEMORY:
        logger.info("Change Feed: Using MemoryChangeFeed")
        return MemoryChangeFeed()

    from tableside.services.feed.redis import RedisChangeFeed

    logger.info(f"Change Feed: Using RedisChangeFeed ({settings.env_mode.value} mode)")
    return RedisChangeFeed()


def reset_change_feed() -> None:
    """Clear the cached feed instance."""
    get_change_feed.cache_clear()


__all__ = [
    "get_change_feed",
    "reset_change_feed",
    "BaseChangeFeed",
    "ChangeEvent",
    "MemoryChangeFeed",
]
