"""
Realtime Sync Coordinator

Keeps an in-memory view of the active restaurant (menu, orders, open
service alerts, tax rates, table capacity) fresh from three sources:

    1. push notifications from the change feed, filtered to this restaurant
    2. a fallback poll on a fixed interval, whatever the feed's health
    3. explicit refresh() calls

The view is a cache. The store stays authoritative; optimistic updates
made by the ordering services are simply overwritten by the next refresh.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from tableside.core.config import get_settings
from tableside.core.exceptions import RepositoryError
from tableside.models import OrderStatus
from tableside.schemas import MenuItem, Order, OrderItem, ServiceAlert, TaxRate, utcnow
from tableside.services.feed.base import BaseChangeFeed, ChangeEvent
from tableside.services.store.base import BaseStore, bounded

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    """Health of the push channel, for display."""
    CONNECTED = "connected"
    CONNECTING = "connecting"
    ERROR = "error"


class OrderView:
    """
    Last-known state of the restaurant, shared by the coordinator and the
    ordering services. No locking: the last writer wins.
    """

    def __init__(self, total_tables: int = 10):
        self.menu_items: list[MenuItem] = []
        self.orders: dict[str, Order] = {}
        self.alerts: list[ServiceAlert] = []
        self.tax_rates: list[TaxRate] = []
        self.total_tables = total_tables

    def replace(
        self,
        menu_items: list[MenuItem],
        orders: list[Order],
        alerts: list[ServiceAlert],
        tax_rates: list[TaxRate],
        total_tables: Optional[int] = None,
    ) -> None:
        self.menu_items = menu_items
        self.orders = {order.id: order for order in orders}
        self.alerts = alerts
        self.tax_rates = tax_rates
        if total_tables is not None:
            self.total_tables = total_tables

    def upsert_order(self, order: Order) -> None:
        self.orders[order.id] = order

    def remove_order(self, order_id: str) -> None:
        self.orders.pop(order_id, None)

    def clear_table(self, table: str) -> None:
        """Forget any open order cached for ``table``."""
        for order in self.active_orders(table):
            del self.orders[order.id]

    def active_orders(self, table: Optional[str] = None) -> list[Order]:
        """Open orders, newest first, optionally for one table."""
        orders = [
            o for o in self.orders.values()
            if o.status == OrderStatus.IN_PROGRESS and (table is None or o.table == table)
        ]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def active_order(self, table: str) -> Optional[Order]:
        orders = self.active_orders(table)
        return orders[0] if orders else None

    def cart(self, table: str) -> list[OrderItem]:
        """Lines of the table's most recent open order (empty if none)."""
        order = self.active_order(table)
        return list(order.items) if order else []

    def upsert_alert(self, alert: ServiceAlert) -> None:
        self.alerts = [a for a in self.alerts if a.id != alert.id]
        if not alert.resolved:
            self.alerts.insert(0, alert)


@dataclass
class SyncSnapshot:
    status: SyncStatus
    last_synced_at: Optional[datetime]
    orders: int
    menu_items: int
    open_alerts: int
    last_error: Optional[str] = None


class SyncCoordinator:
    """
    Owns the background refresh tasks for one restaurant's OrderView.

    Example:
        >>> coordinator = SyncCoordinator(store, feed, view)
        >>> await coordinator.start()
        >>> coordinator.status
        <SyncStatus.CONNECTED: 'connected'>
        >>> await coordinator.stop()
    """

    def __init__(
        self,
        store: BaseStore,
        feed: BaseChangeFeed,
        view: Optional[OrderView] = None,
        poll_interval: Optional[float] = None,
        initial_backoff: float = 1.0,
        max_backoff: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.store = store
        self.feed = feed
        self.view = view or OrderView(settings.default_total_tables)
        self.poll_interval = poll_interval or settings.poll_interval_seconds
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff or settings.reconnect_max_backoff_seconds
        self.timeout = timeout or settings.store_timeout_seconds

        self.status = SyncStatus.CONNECTING
        self.last_synced_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._refresh_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Load the view once, then start listening and polling."""
        if self.running:
            return
        await self.refresh()
        self._tasks = [
            asyncio.create_task(self._listen(), name="sync-listen"),
            asyncio.create_task(self._poll(), name="sync-poll"),
        ]
        logger.info(
            f"Sync started for {self.store.restaurant_id} "
            f"(feed={self.feed.provider_name}, poll every {self.poll_interval:g}s)"
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Sync stopped")

    async def refresh(self) -> bool:
        """
        Re-read everything from the store into the view.

        Store failures are recorded in ``last_error`` and leave the previous
        view in place.

        Returns:
            True if the view was refreshed
        """
        async with self._refresh_lock:
            try:
                menu = await bounded(self.store.list_menu_items(), self.timeout)
                orders = await bounded(self.store.list_orders(), self.timeout)
                alerts = await bounded(self.store.list_open_alerts(), self.timeout)
                rates = await bounded(self.store.list_tax_rates(), self.timeout)
                restaurant = await bounded(self.store.get_restaurant(), self.timeout)
            except RepositoryError as e:
                self.last_error = e.message
                logger.warning(f"Refresh failed, keeping previous view: {e.message}")
                return False

            self.view.replace(
                menu_items=menu,
                orders=orders,
                alerts=alerts,
                tax_rates=rates,
                total_tables=restaurant.total_tables if restaurant else None,
            )
            self.last_synced_at = utcnow()
            self.last_error = None
            logger.debug(f"View refreshed: {len(orders)} orders, {len(menu)} menu items")
            return True

    async def handle_event(self, event: ChangeEvent) -> None:
        """Apply one push notification."""
        if event.restaurant_id != self.store.restaurant_id:
            return

        if event.table == "restaurants" and "total_tables" in event.data:
            self.view.total_tables = int(event.data["total_tables"])
            return

        await self.refresh()

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            status=self.status,
            last_synced_at=self.last_synced_at,
            orders=len(self.view.orders),
            menu_items=len(self.view.menu_items),
            open_alerts=len(self.view.alerts),
            last_error=self.last_error,
        )

    # =========================================================================
    # BACKGROUND LOOPS
    # =========================================================================

    def _on_subscribed(self) -> None:
        self.status = SyncStatus.CONNECTED
        logger.info("Change feed subscribed")

    async def _listen(self) -> None:
        backoff = self.initial_backoff
        while True:
            self.status = SyncStatus.CONNECTING
            try:
                async for event in self.feed.subscribe(on_ready=self._on_subscribed):
                    backoff = self.initial_backoff
                    await self.handle_event(event)
                raise ConnectionError("change feed closed the subscription")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # The poll keeps the view alive while the feed is down.
                self.status = SyncStatus.ERROR
                logger.warning(f"Change feed lost ({e}); reconnecting in {backoff:g}s")

            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self.max_backoff)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error during fallback poll")
