"""
Item State Machine

Kitchen-side lifecycle of an order line:

    Pending ──► Preparing ──► Served
       │            │
       └────────────┴──► Cancelled

Served and Cancelled are terminal.
"""

import logging
from typing import Optional, Sequence

from tableside.core.config import get_settings
from tableside.core.exceptions import (
    ConcurrencyConflict,
    InvalidState,
    InvalidTransition,
    ItemNotInOrder,
    OrderNotFound,
)
from tableside.models import ItemStatus, OrderStatus
from tableside.schemas import Order, OrderItem
from tableside.services.lines import locate_line, replace_line
from tableside.services.store.base import BaseStore, bounded
from tableside.services.sync import OrderView
from tableside.services.tax import order_total

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.PREPARING, ItemStatus.CANCELLED}),
    ItemStatus.PREPARING: frozenset({ItemStatus.SERVED, ItemStatus.CANCELLED}),
    ItemStatus.SERVED: frozenset(),
    ItemStatus.CANCELLED: frozenset(),
}


def can_transition(current: ItemStatus, new: ItemStatus) -> bool:
    return new in TRANSITIONS[current]


def ensure_transition(current: ItemStatus, new: ItemStatus) -> None:
    if not can_transition(current, new):
        raise InvalidTransition(current.value, new.value)


def cancel_pending(lines: Sequence[OrderItem]) -> list[OrderItem]:
    """Copy of ``lines`` with every Pending line moved to Cancelled."""
    cancelled = []
    for line in lines:
        if line.status == ItemStatus.PENDING:
            ensure_transition(line.status, ItemStatus.CANCELLED)
            line = line.model_copy(update={"status": ItemStatus.CANCELLED})
        cancelled.append(line)
    return cancelled


class ItemStateMachine:
    """Applies kitchen status changes to order lines."""

    def __init__(
        self,
        store: BaseStore,
        view: Optional[OrderView] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.view = view
        self.timeout = timeout or settings.store_timeout_seconds
        self.max_attempts = max_attempts or settings.cart_conflict_retries

    async def set_item_status(
        self,
        order_id: str,
        line_ref: str,
        new_status: ItemStatus,
    ) -> Order:
        """
        Move one line of an order to ``new_status``.

        ``line_ref`` is a line id, or a menu item id (the first line of that
        item that can make the move is chosen).

        Raises:
            OrderNotFound: no such order
            InvalidState: the order is already paid
            ItemNotInOrder: no line matches ``line_ref``
            InvalidTransition: the move is not allowed from the line's status
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                order = await self._apply(order_id, line_ref, new_status)
            except ConcurrencyConflict:
                if attempt == self.max_attempts:
                    raise
                logger.info(f"Status update on {order_id} lost a race; retrying")
                continue

            if self.view is not None:
                self.view.upsert_order(order)
            return order

    async def _apply(self, order_id: str, line_ref: str, new_status: ItemStatus) -> Order:
        order = await bounded(self.store.get_order(order_id), self.timeout)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status == OrderStatus.PAID:
            raise InvalidState(f"Order {order_id} is already paid")

        line = locate_line(
            order.items, line_ref, prefer=lambda l: can_transition(l.status, new_status)
        )
        if line is None:
            raise ItemNotInOrder(line_ref)
        ensure_transition(line.status, new_status)

        items = replace_line(order.items, line.model_copy(update={"status": new_status}))
        rates = await bounded(self.store.list_tax_rates(), self.timeout)
        updated = await bounded(
            self.store.update_order(
                order.id,
                items,
                order_total(items, rates),
                expected_version=order.version,
            ),
            self.timeout,
        )
        logger.info(
            f"{order.table}: {line.name} {line.status.value} -> {new_status.value}"
        )
        return updated
