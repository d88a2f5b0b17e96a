"""
Cart Merge Engine

Adds and removes items on a table's active order. Every mutation is a
fetch-merge-write against the store, serialized per table and written with
the order's version as a compare-and-swap token. A lost race re-fetches and
re-merges instead of overwriting the other writer.
"""

import logging
from typing import Optional

from tableside.core.config import get_settings
from tableside.core.exceptions import (
    ConcurrencyConflict,
    InvalidQuantity,
    InvalidState,
    ItemNotInOrder,
    ItemUnavailable,
    NoActiveOrder,
)
from tableside.models import ItemStatus
from tableside.schemas import MenuItem, Order
from tableside.services.lines import locate_line, merge_line
from tableside.services.store.base import BaseStore, bounded
from tableside.services.sync import OrderView
from tableside.services.tables import TableLocks
from tableside.services.tax import order_total

logger = logging.getLogger(__name__)


class CartEngine:
    """
    Example:
        >>> engine = CartEngine(store, view)
        >>> order = await engine.add_item("Table 2", paneer_tikka, quantity=2)
        >>> order.items[0].quantity
        2
    """

    def __init__(
        self,
        store: BaseStore,
        view: Optional[OrderView] = None,
        locks: Optional[TableLocks] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.view = view
        self.locks = locks or TableLocks()
        self.timeout = timeout or settings.store_timeout_seconds
        self.max_attempts = max_attempts or settings.cart_conflict_retries

    async def add_item(self, table: str, menu_item: MenuItem, quantity: int = 1) -> Order:
        """
        Add ``quantity`` of ``menu_item`` to the table's active order,
        creating the order when the table has none.

        Raises:
            InvalidQuantity: quantity below 1
            ItemUnavailable: the menu item is switched off
            ConcurrencyConflict: still losing the race after every attempt
        """
        if quantity < 1:
            raise InvalidQuantity(quantity)
        if not menu_item.availability:
            raise ItemUnavailable(menu_item.name)

        async with self.locks.for_table(table):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    order = await self._add_once(table, menu_item, quantity)
                except ConcurrencyConflict:
                    if attempt == self.max_attempts:
                        raise
                    logger.info(
                        f"Cart write for {table} lost a race "
                        f"(attempt {attempt}/{self.max_attempts}); re-merging"
                    )
                    continue

                if self.view is not None:
                    self.view.upsert_order(order)
                logger.info(f"Added {quantity}x {menu_item.name} to {table} ({order.id})")
                return order

    async def _add_once(self, table: str, menu_item: MenuItem, quantity: int) -> Order:
        rates = await bounded(self.store.list_tax_rates(), self.timeout)
        current = await bounded(self.store.find_active_order(table), self.timeout)

        if current is None:
            items = merge_line([], menu_item, quantity)
            return await bounded(
                self.store.create_order(table, items, order_total(items, rates)),
                self.timeout,
            )

        items = merge_line(current.items, menu_item, quantity)
        return await bounded(
            self.store.update_order(
                current.id,
                items,
                order_total(items, rates),
                expected_version=current.version,
            ),
            self.timeout,
        )

    async def remove_item(self, table: str, item_ref: str) -> Optional[Order]:
        """
        Remove a Pending line from the table's active order.

        ``item_ref`` is a line id or a menu item id. Removing the last line
        deletes the order, and None is returned.

        Raises:
            NoActiveOrder: the table has no open order
            ItemNotInOrder: nothing on the order matches ``item_ref``
            InvalidState: the line is already preparing, served or cancelled
        """
        async with self.locks.for_table(table):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    order, deleted_id = await self._remove_once(table, item_ref)
                except ConcurrencyConflict:
                    if attempt == self.max_attempts:
                        raise
                    logger.info(f"Removal on {table} lost a race; retrying")
                    continue

                if self.view is not None:
                    if order is None:
                        self.view.remove_order(deleted_id)
                    else:
                        self.view.upsert_order(order)
                return order

    async def _remove_once(self, table: str, item_ref: str) -> tuple[Optional[Order], str]:
        current = await bounded(self.store.find_active_order(table), self.timeout)
        if current is None:
            raise NoActiveOrder(table)

        line = locate_line(
            current.items, item_ref, prefer=lambda l: l.status == ItemStatus.PENDING
        )
        if line is None:
            raise ItemNotInOrder(item_ref)
        if line.status != ItemStatus.PENDING:
            raise InvalidState(
                f"{line.name} is already {line.status.value.lower()} and cannot be removed."
            )

        remaining = [l for l in current.items if l.line_id != line.line_id]
        if not remaining:
            await bounded(
                self.store.delete_order(current.id, expected_version=current.version),
                self.timeout,
            )
            logger.info(f"Removed last item from {table}; order {current.id} deleted")
            return None, current.id

        rates = await bounded(self.store.list_tax_rates(), self.timeout)
        order = await bounded(
            self.store.update_order(
                current.id,
                remaining,
                order_total(remaining, rates),
                expected_version=current.version,
            ),
            self.timeout,
        )
        logger.info(f"Removed {line.name} from {table}")
        return order, current.id
