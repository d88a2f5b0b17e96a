"""
In-Memory Store Implementation

Keeps every row in process memory. Used for local development
(STORE_BACKEND=memory) and as the store in tests.

Behavior:
    - Returns deep copies, so callers can never mutate stored rows in place
    - Enforces the same conditional writes as the SQL store (one open order
      per table, version compare-and-swap)
    - Optional simulated latency to expose fetch-then-write interleavings
    - Failure injection for exercising degraded paths
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional, Sequence

from tableside.core.exceptions import (
    AlertNotFound,
    ConcurrencyConflict,
    InvalidState,
    MenuItemNotFound,
    OrderNotFound,
    RepositoryError,
    TaxRateNotFound,
)
from tableside.models import OrderStatus
from tableside.schemas import (
    MenuItem,
    Order,
    OrderItem,
    Restaurant,
    ServiceAlert,
    TaxRate,
    utcnow,
)
from tableside.services.feed.base import BaseChangeFeed
from tableside.services.store.base import BaseStore, OrderSettlement

logger = logging.getLogger(__name__)


class MemoryStore(BaseStore):
    """
    Mock implementation of the store.

    Example:
        >>> store = MemoryStore("r1", latency=0.01)
        >>> order = await store.create_order("Table 1", [line], Decimal("10"))
    """

    def __init__(
        self,
        restaurant_id: str,
        feed: Optional[BaseChangeFeed] = None,
        latency: float = 0.0,
    ):
        super().__init__(restaurant_id, feed)
        self.latency = latency
        self._orders: dict[str, Order] = {}
        self._menu: dict[str, MenuItem] = {}
        self._tax_rates: dict[str, TaxRate] = {}
        self._alerts: dict[str, ServiceAlert] = {}
        self._restaurant: Optional[Restaurant] = None
        self._failures: list[Exception] = []
        self.write_count = 0

    @property
    def provider_name(self) -> str:
        return "memory"

    # =========================================================================
    # TEST HELPERS
    # =========================================================================

    def inject_failure(self, error: Optional[Exception] = None, times: int = 1) -> None:
        """Make the next ``times`` store calls raise ``error``."""
        error = error or RepositoryError("Simulated store outage")
        self._failures.extend([error] * times)

    def seed_order(self, order: Order) -> Order:
        """Insert an order as-is, bypassing the one-open-order check."""
        self._orders[order.id] = order.model_copy(deep=True)
        return order

    async def _io(self) -> None:
        if self._failures:
            raise self._failures.pop(0)
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        await self._io()
        orders = [
            o for o in self._orders.values()
            if status is None or o.status == status
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [o.model_copy(deep=True) for o in orders]

    async def list_active_orders(self, table: str) -> list[Order]:
        orders = await self.list_orders(OrderStatus.IN_PROGRESS)
        return [o for o in orders if o.table == table]

    async def get_order(self, order_id: str) -> Optional[Order]:
        await self._io()
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def create_order(
        self,
        table: str,
        items: Sequence[OrderItem],
        total_amount: Decimal,
    ) -> Order:
        await self._io()
        if any(o.table == table and o.is_active for o in self._orders.values()):
            raise ConcurrencyConflict(f"{table} already has an open order")

        order = Order(
            table=table,
            items=[item.model_copy(deep=True) for item in items],
            total_amount=total_amount,
        )
        self._orders[order.id] = order
        self.write_count += 1
        logger.debug(f"Created order {order.id} for {table}")
        await self._notify("orders", "INSERT", order.id)
        return order.model_copy(deep=True)

    async def update_order(
        self,
        order_id: str,
        items: Sequence[OrderItem],
        total_amount: Decimal,
        status: Optional[OrderStatus] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        await self._io()
        current = self._orders.get(order_id)
        if current is None:
            raise OrderNotFound(order_id)
        if expected_version is not None and current.version != expected_version:
            raise ConcurrencyConflict(
                f"Order {order_id} changed (version {current.version}, expected {expected_version})"
            )
        if current.status == OrderStatus.PAID:
            raise InvalidState(f"Order {order_id} is already paid")

        updated = current.model_copy(
            update={
                "items": [item.model_copy(deep=True) for item in items],
                "total_amount": total_amount,
                "status": status or current.status,
                "version": current.version + 1,
                "updated_at": utcnow(),
            }
        )
        self._orders[order_id] = updated
        self.write_count += 1
        await self._notify("orders", "UPDATE", order_id)
        return updated.model_copy(deep=True)

    async def delete_order(self, order_id: str, expected_version: Optional[int] = None) -> None:
        await self._io()
        current = self._orders.get(order_id)
        if current is None:
            raise OrderNotFound(order_id)
        if expected_version is not None and current.version != expected_version:
            raise ConcurrencyConflict(f"Order {order_id} changed before delete")
        del self._orders[order_id]
        self.write_count += 1
        await self._notify("orders", "DELETE", order_id)

    async def settle_orders(self, settlements: Sequence[OrderSettlement]) -> list[Order]:
        await self._io()
        # Validate everything before the first write
        for settlement in settlements:
            current = self._orders.get(settlement.order_id)
            if current is None:
                raise OrderNotFound(settlement.order_id)
            if current.status == OrderStatus.PAID:
                raise InvalidState(f"Order {settlement.order_id} is already paid")
            if current.version != settlement.expected_version:
                raise ConcurrencyConflict(
                    f"Order {settlement.order_id} changed (version {current.version}, "
                    f"expected {settlement.expected_version})"
                )

        now = utcnow()
        paid = []
        for settlement in settlements:
            current = self._orders[settlement.order_id]
            updated = current.model_copy(
                update={
                    "items": [item.model_copy(deep=True) for item in settlement.items],
                    "total_amount": settlement.total_amount,
                    "status": OrderStatus.PAID,
                    "version": current.version + 1,
                    "updated_at": now,
                }
            )
            self._orders[settlement.order_id] = updated
            paid.append(updated.model_copy(deep=True))
        self.write_count += 1

        for order in paid:
            await self._notify("orders", "UPDATE", order.id)
        return paid

    # =========================================================================
    # MENU
    # =========================================================================

    async def list_menu_items(self) -> list[MenuItem]:
        await self._io()
        return [item.model_copy() for item in self._menu.values()]

    async def get_menu_item(self, item_id: str) -> Optional[MenuItem]:
        await self._io()
        item = self._menu.get(item_id)
        return item.model_copy() if item else None

    async def add_menu_item(self, item: MenuItem) -> MenuItem:
        await self._io()
        self._menu[item.id] = item.model_copy()
        await self._notify("menu_items", "INSERT", item.id)
        return item.model_copy()

    async def update_menu_item(self, item: MenuItem) -> MenuItem:
        await self._io()
        if item.id not in self._menu:
            raise MenuItemNotFound(item.id)
        self._menu[item.id] = item.model_copy()
        await self._notify("menu_items", "UPDATE", item.id)
        return item.model_copy()

    async def delete_menu_item(self, item_id: str) -> None:
        await self._io()
        if self._menu.pop(item_id, None) is None:
            raise MenuItemNotFound(item_id)
        await self._notify("menu_items", "DELETE", item_id)

    # =========================================================================
    # TAX RATES
    # =========================================================================

    async def list_tax_rates(self) -> list[TaxRate]:
        await self._io()
        return [rate.model_copy() for rate in self._tax_rates.values()]

    async def upsert_tax_rate(self, rate: TaxRate) -> TaxRate:
        await self._io()
        action = "UPDATE" if rate.name in self._tax_rates else "INSERT"
        self._tax_rates[rate.name] = rate.model_copy()
        await self._notify("tax_rates", action, rate.name)
        return rate.model_copy()

    async def delete_tax_rate(self, name: str) -> None:
        await self._io()
        if self._tax_rates.pop(name, None) is None:
            raise TaxRateNotFound(name)
        await self._notify("tax_rates", "DELETE", name)

    # =========================================================================
    # RESTAURANT
    # =========================================================================

    async def get_restaurant(self) -> Optional[Restaurant]:
        await self._io()
        return self._restaurant.model_copy() if self._restaurant else None

    async def ensure_restaurant(self, name: str, total_tables: int) -> Restaurant:
        await self._io()
        if self._restaurant is None:
            self._restaurant = Restaurant(
                id=self.restaurant_id, name=name, total_tables=total_tables
            )
            await self._notify("restaurants", "INSERT", self.restaurant_id)
        return self._restaurant.model_copy()

    async def set_total_tables(self, total_tables: int) -> Restaurant:
        await self._io()
        if self._restaurant is None:
            self._restaurant = Restaurant(
                id=self.restaurant_id, name=self.restaurant_id, total_tables=total_tables
            )
        else:
            self._restaurant = self._restaurant.model_copy(
                update={"total_tables": total_tables}
            )
        await self._notify(
            "restaurants", "UPDATE", self.restaurant_id, total_tables=total_tables
        )
        return self._restaurant.model_copy()

    # =========================================================================
    # SERVICE ALERTS
    # =========================================================================

    async def create_alert(self, alert: ServiceAlert) -> ServiceAlert:
        await self._io()
        self._alerts[alert.id] = alert.model_copy()
        await self._notify("service_alerts", "INSERT", alert.id)
        return alert.model_copy()

    async def resolve_alert(self, alert_id: str) -> ServiceAlert:
        await self._io()
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFound(alert_id)
        resolved = alert.model_copy(update={"resolved": True})
        self._alerts[alert_id] = resolved
        await self._notify("service_alerts", "UPDATE", alert_id)
        return resolved.model_copy()

    async def list_open_alerts(self) -> list[ServiceAlert]:
        await self._io()
        alerts = [a for a in self._alerts.values() if not a.resolved]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return [a.model_copy() for a in alerts]

    async def health_check(self) -> bool:
        return True
