"""
Realtime Sync Coordinator Tests

The view must stay fresh through push notifications, keep polling when
the push channel dies, and never lose its last good state to a failed
refresh.
"""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import RESTAURANT_ID, eventually
from tableside.core.exceptions import RepositoryError
from tableside.models import ItemStatus
from tableside.schemas import Order, OrderItem, utcnow
from tableside.services.feed.base import ChangeEvent
from tableside.services.feed.memory import MemoryChangeFeed
from tableside.services.sync import OrderView, SyncCoordinator, SyncStatus


class DeadFeed(MemoryChangeFeed):
    """A feed whose every subscription attempt fails."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    async def subscribe(self, on_ready=None):
        self.attempts += 1
        raise ConnectionError("redis unreachable")
        yield


def tea_line() -> OrderItem:
    return OrderItem(item_id="tea", name="Tea", price=Decimal("2.00"), quantity=1)


@pytest.fixture
async def coordinator(store, feed, view):
    coordinator = SyncCoordinator(
        store, feed, view, poll_interval=60, initial_backoff=0.01, max_backoff=0.05, timeout=1.0
    )
    yield coordinator
    await coordinator.stop()


# ============================================================================
# ORDER VIEW
# ============================================================================

class TestOrderView:

    def test_cart_is_the_newest_open_order(self):
        view = OrderView()
        old = Order(table="Table 1", created_at=utcnow() - timedelta(minutes=1), items=[tea_line()])
        new = Order(table="Table 1", items=[tea_line(), tea_line()])
        view.upsert_order(old)
        view.upsert_order(new)

        assert view.active_order("Table 1").id == new.id
        assert len(view.cart("Table 1")) == 2
        assert view.cart("Table 2") == []

    def test_clear_table_only_touches_that_table(self):
        view = OrderView()
        view.upsert_order(Order(table="Table 1", items=[tea_line()]))
        view.upsert_order(Order(table="Online", items=[tea_line()]))

        view.clear_table("Table 1")

        assert view.active_order("Table 1") is None
        assert view.active_order("Online") is not None


# ============================================================================
# REFRESH
# ============================================================================

class TestRefresh:

    async def test_refresh_loads_everything(self, coordinator, view):
        assert await coordinator.refresh()

        assert len(view.menu_items) == 6
        assert [r.name for r in view.tax_rates] == ["GST", "Service Charge"]
        assert view.total_tables == 10
        assert coordinator.last_synced_at is not None

    async def test_failed_refresh_keeps_previous_view(self, coordinator, store, view):
        """
        CRITICAL: A store outage is recorded, not raised, and the last good
        view survives it.
        """
        await coordinator.refresh()
        synced_at = coordinator.last_synced_at
        store.inject_failure(RepositoryError("store down"))

        assert await coordinator.refresh() is False

        assert coordinator.last_error == "store down"
        assert coordinator.last_synced_at == synced_at
        assert len(view.menu_items) == 6


class TestEvents:

    async def test_other_restaurants_are_ignored(self, coordinator, store, view):
        await store.create_order("Table 1", [tea_line()], Decimal("2.30"))

        await coordinator.handle_event(
            ChangeEvent(table="orders", action="INSERT", restaurant_id="someone-else")
        )

        assert view.orders == {}

    async def test_capacity_change_applies_without_refetch(self, coordinator, view):
        await coordinator.handle_event(
            ChangeEvent(
                table="restaurants",
                action="UPDATE",
                restaurant_id=RESTAURANT_ID,
                data={"total_tables": 25},
            )
        )

        assert view.total_tables == 25
        assert coordinator.last_synced_at is None

    async def test_order_change_triggers_refresh(self, coordinator, store, view):
        order = await store.create_order("Table 1", [tea_line()], Decimal("2.30"))

        await coordinator.handle_event(
            ChangeEvent(table="orders", action="INSERT", restaurant_id=RESTAURANT_ID, record_id=order.id)
        )

        assert view.active_order("Table 1").id == order.id


# ============================================================================
# BACKGROUND LOOPS
# ============================================================================

class TestBackgroundSync:

    async def test_push_notifications_update_view(self, coordinator, store, view):
        await coordinator.start()
        await eventually(lambda: coordinator.status == SyncStatus.CONNECTED)

        order = await store.create_order("Table 2", [tea_line()], Decimal("2.30"))

        await eventually(lambda: order.id in view.orders)
        await store.update_order(
            order.id,
            [tea_line().model_copy(update={"status": ItemStatus.PREPARING})],
            Decimal("2.30"),
        )
        await eventually(lambda: view.cart("Table 2")[0].status == ItemStatus.PREPARING)

    async def test_dropped_channel_reconnects(self, coordinator, feed, store, view):
        await coordinator.start()
        await eventually(lambda: feed.subscriber_count == 1)

        feed.drop_subscribers("connection reset")
        await asyncio.sleep(0.05)

        await eventually(lambda: feed.subscriber_count == 1 and coordinator.status == SyncStatus.CONNECTED)
        order = await store.create_order("Table 3", [tea_line()], Decimal("2.30"))
        await eventually(lambda: order.id in view.orders)

    async def test_poll_keeps_view_alive_when_push_is_dead(self, store, view):
        """
        CRITICAL: With the push channel down, status shows error but the
        fallback poll still picks up changes.
        """
        feed = DeadFeed()
        coordinator = SyncCoordinator(
            store, feed, view, poll_interval=0.02, initial_backoff=0.01, max_backoff=0.02, timeout=1.0
        )
        await coordinator.start()
        try:
            await eventually(lambda: coordinator.status == SyncStatus.ERROR)
            order = await store.create_order("Table 4", [tea_line()], Decimal("2.30"))

            await eventually(lambda: order.id in view.orders)
            await eventually(lambda: feed.attempts >= 3)
        finally:
            await coordinator.stop()

    async def test_poll_survives_store_outage(self, store, feed, view):
        coordinator = SyncCoordinator(store, feed, view, poll_interval=0.02, timeout=1.0)
        await coordinator.start()
        try:
            order = await store.create_order("Table 5", [tea_line()], Decimal("2.30"))
            store.inject_failure(RepositoryError("blip"), times=2)
            await eventually(lambda: order.id in view.orders)
            assert coordinator.running
        finally:
            await coordinator.stop()

    async def test_stop_ends_subscription(self, coordinator, feed):
        await coordinator.start()
        await eventually(lambda: feed.subscriber_count == 1)

        await coordinator.stop()

        assert not coordinator.running
        assert feed.subscriber_count == 0

    async def test_snapshot(self, coordinator):
        await coordinator.start()
        await eventually(lambda: coordinator.status == SyncStatus.CONNECTED)

        snapshot = coordinator.snapshot()

        assert snapshot.status == SyncStatus.CONNECTED
        assert snapshot.menu_items == 6
        assert snapshot.orders == 0
        assert snapshot.last_error is None
