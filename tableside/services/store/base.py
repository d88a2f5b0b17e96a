"""
Store Abstract Base Class

Defines the interface to the external store that owns orders, menu items,
tax rates, service alerts and restaurant settings. Every instance is scoped
to a single restaurant.

The store is the source of truth. Callers re-fetch before each write and
pass the version they read as ``expected_version``; a stale version makes
the write fail with ConcurrencyConflict instead of overwriting a concurrent
change. The store itself never retries: a retried insert could create a
second open order for the table.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Awaitable, NamedTuple, Optional, Sequence, TypeVar

from tableside.core.exceptions import RepositoryTimeout
from tableside.models import OrderStatus
from tableside.schemas import (
    MenuItem,
    Order,
    OrderItem,
    Restaurant,
    ServiceAlert,
    TaxRate,
)
from tableside.services.feed.base import BaseChangeFeed, ChangeEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderSettlement(NamedTuple):
    """Final state of one order written by ``settle_orders``."""
    order_id: str
    items: Sequence[OrderItem]
    total_amount: Decimal
    expected_version: int


async def bounded(awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """
    Await a store call with an upper time bound.

    Raises:
        RepositoryTimeout: If the call does not finish within ``timeout``
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise RepositoryTimeout(f"Store did not respond within {timeout:g}s")


class BaseStore(ABC):
    """
    Abstract base class for store implementations.

    Attributes:
        restaurant_id: Restaurant every query and write is scoped to
        feed: Optional change feed notified after each successful write
    """

    def __init__(self, restaurant_id: str, feed: Optional[BaseChangeFeed] = None):
        self.restaurant_id = restaurant_id
        self.feed = feed

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    async def _notify(
        self,
        table: str,
        action: str,
        record_id: Optional[str] = None,
        **data,
    ) -> None:
        if self.feed is None:
            return
        await self.feed.publish(
            ChangeEvent(
                table=table,
                action=action,
                restaurant_id=self.restaurant_id,
                record_id=record_id,
                data=data,
            )
        )

    # =========================================================================
    # ORDERS
    # =========================================================================

    @abstractmethod
    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        """All orders of the restaurant, newest first."""
        pass

    @abstractmethod
    async def list_active_orders(self, table: str) -> list[Order]:
        """Every In Progress order for ``table``, newest first."""
        pass

    async def find_active_order(self, table: str) -> Optional[Order]:
        """
        The most recent In Progress order for ``table``.

        More than one open order for a table is a data anomaly; it is
        tolerated here by picking the newest.
        """
        orders = await self.list_active_orders(table)
        if len(orders) > 1:
            logger.warning(
                f"{len(orders)} open orders for {table}; using {orders[0].id}"
            )
        return orders[0] if orders else None

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create_order(
        self,
        table: str,
        items: Sequence[OrderItem],
        total_amount: Decimal,
    ) -> Order:
        """
        Insert a new In Progress order.

        Raises:
            ConcurrencyConflict: If the table already has an open order
        """
        pass

    @abstractmethod
    async def update_order(
        self,
        order_id: str,
        items: Sequence[OrderItem],
        total_amount: Decimal,
        status: Optional[OrderStatus] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        """
        Replace the item list and total of an order.

        Raises:
            OrderNotFound: If the order does not exist
            InvalidState: If the order is already Paid
            ConcurrencyConflict: If ``expected_version`` is stale
        """
        pass

    @abstractmethod
    async def delete_order(self, order_id: str, expected_version: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def settle_orders(self, settlements: Sequence[OrderSettlement]) -> list[Order]:
        """
        Mark every listed order Paid with its final lines and total.

        All or nothing: if any order is missing, already paid or at a
        different version, no order is written.

        Raises:
            OrderNotFound: If an order does not exist
            InvalidState: If an order is already Paid
            ConcurrencyConflict: If an ``expected_version`` is stale
        """
        pass

    # =========================================================================
    # MENU
    # =========================================================================

    @abstractmethod
    async def list_menu_items(self) -> list[MenuItem]:
        pass

    @abstractmethod
    async def get_menu_item(self, item_id: str) -> Optional[MenuItem]:
        pass

    @abstractmethod
    async def add_menu_item(self, item: MenuItem) -> MenuItem:
        pass

    @abstractmethod
    async def update_menu_item(self, item: MenuItem) -> MenuItem:
        pass

    @abstractmethod
    async def delete_menu_item(self, item_id: str) -> None:
        pass

    # =========================================================================
    # TAX RATES
    # =========================================================================

    @abstractmethod
    async def list_tax_rates(self) -> list[TaxRate]:
        """Tax rates in the order they were configured."""
        pass

    @abstractmethod
    async def upsert_tax_rate(self, rate: TaxRate) -> TaxRate:
        pass

    @abstractmethod
    async def delete_tax_rate(self, name: str) -> None:
        pass

    # =========================================================================
    # RESTAURANT
    # =========================================================================

    @abstractmethod
    async def get_restaurant(self) -> Optional[Restaurant]:
        pass

    @abstractmethod
    async def ensure_restaurant(self, name: str, total_tables: int) -> Restaurant:
        """Create the restaurant row if it is missing; return it either way."""
        pass

    @abstractmethod
    async def set_total_tables(self, total_tables: int) -> Restaurant:
        pass

    # =========================================================================
    # SERVICE ALERTS
    # =========================================================================

    @abstractmethod
    async def create_alert(self, alert: ServiceAlert) -> ServiceAlert:
        pass

    @abstractmethod
    async def resolve_alert(self, alert_id: str) -> ServiceAlert:
        pass

    @abstractmethod
    async def list_open_alerts(self) -> list[ServiceAlert]:
        """Unresolved alerts, newest first."""
        pass

    # =========================================================================
    # HEALTH
    # =========================================================================

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def close(self) -> None:
        return None
