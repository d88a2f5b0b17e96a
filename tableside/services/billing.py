"""
Billing Reconciler

Closes out a table. Every open order of the table is swept: pending lines
are cancelled (only with the customer's consent), served lines are billed,
and each order is marked Paid. Anything still being prepared blocks the
bill outright.
"""

import logging
import time
from typing import Optional

from tableside.core.config import get_settings
from tableside.core.exceptions import (
    ItemsPreparing,
    NoActiveOrder,
    NoServedItems,
    PendingConfirmationRequired,
)
from tableside.models import ItemStatus
from tableside.schemas import Bill, Order, OrderItem
from tableside.services.kitchen import cancel_pending
from tableside.services.store.base import BaseStore, OrderSettlement, bounded
from tableside.services.sync import OrderView
from tableside.services.tables import TableLocks
from tableside.services.tax import compute_total, line_subtotal, order_total, tax_breakdown

logger = logging.getLogger(__name__)


def new_bill_id() -> str:
    return f"BILL-{int(time.time() * 1000)}"


class BillingReconciler:
    """
    Example:
        >>> reconciler = BillingReconciler(store, view, locks)
        >>> bill = await reconciler.generate_bill("Table 4", confirm_cancel_pending=True)
        >>> bill.bill_id
        'BILL-1760774400000'
    """

    def __init__(
        self,
        store: BaseStore,
        view: Optional[OrderView] = None,
        locks: Optional[TableLocks] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.view = view
        self.locks = locks or TableLocks()
        self.timeout = timeout or get_settings().store_timeout_seconds

    async def generate_bill(self, table: str, confirm_cancel_pending: bool = False) -> Bill:
        """
        Bill every served line of the table's open orders and mark them Paid.

        Args:
            table: Table label ("Table 3" or "Online")
            confirm_cancel_pending: The customer agreed to drop unprepared items

        Raises:
            NoActiveOrder: the table has no open order (also on a repeat call)
            ItemsPreparing: something is still in the kitchen
            PendingConfirmationRequired: pending lines exist and were not
                confirmed for cancellation
            NoServedItems: nothing was served; no order is modified
            RepositoryError: the store failed while settling; every order
                stays open, so a retry bills the whole table
        """
        async with self.locks.for_table(table):
            orders = await bounded(self.store.list_active_orders(table), self.timeout)
            if not orders:
                raise NoActiveOrder(table)

            preparing = [
                line.name
                for order in orders
                for line in order.lines_with_status(ItemStatus.PREPARING)
            ]
            if preparing:
                raise ItemsPreparing(preparing)

            pending = [
                line.name
                for order in orders
                for line in order.lines_with_status(ItemStatus.PENDING)
            ]
            if pending and not confirm_cancel_pending:
                raise PendingConfirmationRequired(pending)

            settled: list[tuple[Order, list[OrderItem]]] = [
                (order, cancel_pending(order.items)) for order in orders
            ]
            served = [
                line
                for _, items in settled
                for line in items
                if line.status == ItemStatus.SERVED
            ]
            if not served:
                raise NoServedItems(table)

            rates = await bounded(self.store.list_tax_rates(), self.timeout)
            subtotal = line_subtotal(served)
            bill = Bill(
                bill_id=new_bill_id(),
                order_ids=[order.id for order in orders],
                table=table,
                items=served,
                subtotal=subtotal,
                taxes=tax_breakdown(subtotal, rates),
                total_amount=compute_total(subtotal, rates),
            )

            # One all-or-nothing write: a failure leaves every order open
            await bounded(
                self.store.settle_orders(
                    [
                        OrderSettlement(
                            order_id=order.id,
                            items=items,
                            total_amount=order_total(items, rates),
                            expected_version=order.version,
                        )
                        for order, items in settled
                    ]
                ),
                self.timeout,
            )

            if self.view is not None:
                self.view.clear_table(table)

        if pending:
            logger.info(f"{table}: cancelled unprepared items: {', '.join(pending)}")
        logger.info(
            f"Bill {bill.bill_id} for {table}: {len(served)} lines across "
            f"{len(orders)} order(s), total {bill.total_amount}"
        )
        return bill
