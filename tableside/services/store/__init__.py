"""
Store Factory

Returns the in-memory or PostgreSQL store based on STORE_BACKEND, scoped to
the configured restaurant and wired to the change feed.

Usage:
    from tableside.services.store import get_store

    store = get_store()
    order = await store.find_active_order("Table 3")
"""

import logging
from functools import lru_cache

from tableside.core.config import StoreBackend, get_settings
from tableside.services.feed import get_change_feed
from tableside.services.store.base import BaseStore, OrderSettlement, bounded
from tableside.services.store.memory import MemoryStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_store() -> BaseStore:
    """Get the configured store (cached singleton)."""
    settings = get_settings()
    feed = get_change_feed()

    if settings.store_backend == StoreBackend.MEMORY:
        logger.info("Store: Using MemoryStore")
        return MemoryStore(settings.restaurant_id, feed=feed)

    from tableside.services.store.sql import SqlStore

    logger.info(f"Store: Using SqlStore ({settings.env_mode.value} mode)")
    return SqlStore(settings.restaurant_id, feed=feed)


def reset_store() -> None:
    """Clear the cached store instance."""
    get_store.cache_clear()


__all__ = [
    "get_store",
    "reset_store",
    "bounded",
    "BaseStore",
    "OrderSettlement",
    "MemoryStore",
]
