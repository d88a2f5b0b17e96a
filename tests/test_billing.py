"""
Billing Reconciler Tests

Checks the billing rules in the order they are applied: no open order,
items still cooking, unconfirmed pending items, nothing served.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import serve, set_status
from tableside.core.exceptions import (
    ConcurrencyConflict,
    ItemsPreparing,
    NoActiveOrder,
    NoServedItems,
    PendingConfirmationRequired,
    RepositoryError,
)
from tableside.models import ItemStatus, OrderStatus
from tableside.schemas import Order, OrderItem, utcnow


class TestBlockingRules:

    async def test_no_open_order(self, billing):
        with pytest.raises(NoActiveOrder) as exc:
            await billing.generate_bill("Table 1")
        assert exc.value.soft

    async def test_preparing_item_blocks_billing(self, cart, kitchen, billing, store, menu):
        """
        CRITICAL: Anything still cooking blocks the bill, even with consent
        to cancel pending items.

        Scenario:
        - one Served line, one Preparing line
        Expected: ItemsPreparing (hard), no order modified
        """
        await cart.add_item("Table 1", menu["paneer"])
        order = await cart.add_item("Table 1", menu["chicken"])
        order = await serve(kitchen, order, "paneer-tikka")
        order = await set_status(kitchen, order, "butter-chicken", ItemStatus.PREPARING)
        writes = store.write_count

        with pytest.raises(ItemsPreparing) as exc:
            await billing.generate_bill("Table 1", confirm_cancel_pending=True)

        assert not exc.value.soft
        assert exc.value.items == ["Butter Chicken"]
        assert store.write_count == writes
        assert await store.get_order(order.id) == order

    async def test_pending_items_need_confirmation(self, cart, kitchen, billing, store, menu):
        """
        CRITICAL: Pending items are never cancelled silently.

        Expected: soft PendingConfirmationRequired naming the pending dish;
        the order stays open.
        """
        await cart.add_item("Table 2", menu["paneer"])
        order = await cart.add_item("Table 2", menu["jamun"])
        await serve(kitchen, order, "paneer-tikka")

        with pytest.raises(PendingConfirmationRequired) as exc:
            await billing.generate_bill("Table 2")

        assert exc.value.soft
        assert exc.value.code == "PENDING_ITEMS"
        assert exc.value.pending_items == ["Gulab Jamun"]
        assert (await store.get_order(order.id)).status == OrderStatus.IN_PROGRESS

    async def test_only_pending_items_is_no_served_items(self, cart, billing, store, menu):
        """
        Scenario:
        - the only line is Pending and the customer agrees to cancel it
        Expected: NoServedItems, raised before anything is written
        """
        order = await cart.add_item("Table 3", menu["paneer"])

        with pytest.raises(NoServedItems) as exc:
            await billing.generate_bill("Table 3", confirm_cancel_pending=True)

        assert not exc.value.soft
        stored = await store.get_order(order.id)
        assert stored.status == OrderStatus.IN_PROGRESS
        assert stored.items[0].status == ItemStatus.PENDING

    async def test_only_cancelled_items_is_no_served_items(self, cart, kitchen, billing, menu):
        order = await cart.add_item("Table 3", menu["paneer"])
        await set_status(kitchen, order, "paneer-tikka", ItemStatus.CANCELLED)

        with pytest.raises(NoServedItems):
            await billing.generate_bill("Table 3")


class TestSettlement:

    async def test_confirmed_bill_cancels_pending_and_pays(self, cart, kitchen, billing, store, view, menu):
        """
        CRITICAL: With consent, pending lines are cancelled and only served
        lines are billed at the price captured when ordered.

        Expected:
        - bill holds only Paneer Tikka (2 x 10.00), total 23.00
        - the order is Paid, Gulab Jamun is Cancelled
        - the table's cart is cleared from the view
        """
        await cart.add_item("Table 4", menu["paneer"], quantity=2)
        order = await cart.add_item("Table 4", menu["jamun"])
        await serve(kitchen, order, "paneer-tikka")

        with pytest.raises(PendingConfirmationRequired):
            await billing.generate_bill("Table 4")
        bill = await billing.generate_bill("Table 4", confirm_cancel_pending=True)

        assert [(l.name, l.quantity, l.price) for l in bill.items] == [
            ("Paneer Tikka", 2, Decimal("10.00"))
        ]
        assert bill.subtotal == Decimal("20.00")
        assert bill.total_amount == Decimal("23.00")
        assert [t.name for t in bill.taxes] == ["GST", "Service Charge"]
        assert bill.order_ids == [order.id]
        assert bill.bill_id.startswith("BILL-")

        paid = await store.get_order(order.id)
        assert paid.status == OrderStatus.PAID
        statuses = {l.name: l.status for l in paid.items}
        assert statuses == {"Paneer Tikka": ItemStatus.SERVED, "Gulab Jamun": ItemStatus.CANCELLED}
        assert paid.total_amount == Decimal("23.00")
        assert view.cart("Table 4") == []

    async def test_second_bill_finds_no_open_order(self, cart, kitchen, billing, menu):
        """
        Idempotence: billing the same table twice fails the second time
        with NoActiveOrder.
        """
        order = await cart.add_item("Table 5", menu["chicken"])
        await serve(kitchen, order, "butter-chicken")

        await billing.generate_bill("Table 5")
        with pytest.raises(NoActiveOrder):
            await billing.generate_bill("Table 5")

    async def test_price_change_after_ordering_is_ignored(self, cart, kitchen, billing, store, menu):
        order = await cart.add_item("Table 6", menu["chicken"])
        await serve(kitchen, order, "butter-chicken")
        await store.update_menu_item(menu["chicken"].model_copy(update={"price": Decimal("99")}))

        bill = await billing.generate_bill("Table 6")

        assert bill.subtotal == Decimal("15.00")

    async def test_duplicate_open_orders_are_all_settled(self, billing, store):
        """
        A table that somehow has two open orders is billed in full: both
        orders are swept, so no served item is left behind.
        """
        older = store.seed_order(
            Order(
                table="Table 7",
                created_at=utcnow() - timedelta(minutes=5),
                items=[OrderItem(item_id="tea", name="Tea", price=Decimal("2.00"), quantity=1, status=ItemStatus.SERVED)],
            )
        )
        newer = store.seed_order(
            Order(
                table="Table 7",
                items=[OrderItem(item_id="iced-tea", name="Iced Tea", price=Decimal("3.00"), quantity=2, status=ItemStatus.SERVED)],
            )
        )

        bill = await billing.generate_bill("Table 7")

        assert sorted(bill.order_ids) == sorted([older.id, newer.id])
        assert bill.subtotal == Decimal("8.00")
        assert await store.list_active_orders("Table 7") == []


def two_open_orders(store, table: str) -> tuple[Order, Order]:
    """Two open orders for one table, every line already served."""
    older = store.seed_order(
        Order(
            table=table,
            created_at=utcnow() - timedelta(minutes=5),
            items=[OrderItem(item_id="tea", name="Tea", price=Decimal("2.00"), quantity=1, status=ItemStatus.SERVED)],
        )
    )
    newer = store.seed_order(
        Order(
            table=table,
            items=[OrderItem(item_id="iced-tea", name="Iced Tea", price=Decimal("3.00"), quantity=1, status=ItemStatus.SERVED)],
        )
    )
    return older, newer


class TestSettlementFailures:

    async def test_store_outage_leaves_every_order_open(self, billing, store, monkeypatch):
        """
        CRITICAL: A table is settled all at once or not at all.

        Scenario:
        - two open orders for the table
        - the store fails while they are being marked Paid
        Expected:
        - the error surfaces, no bill is issued
        - both orders are still open, so the retry bills everything
        """
        older, newer = two_open_orders(store, "Table 7")
        settle = store.settle_orders

        async def failing_settle(settlements):
            store.inject_failure(RepositoryError("connection reset"))
            return await settle(settlements)

        monkeypatch.setattr(store, "settle_orders", failing_settle)

        with pytest.raises(RepositoryError):
            await billing.generate_bill("Table 7")

        assert {o.id for o in await store.list_active_orders("Table 7")} == {older.id, newer.id}

        monkeypatch.undo()
        bill = await billing.generate_bill("Table 7")

        assert sorted(bill.order_ids) == sorted([older.id, newer.id])
        assert bill.subtotal == Decimal("5.00")

    async def test_kitchen_write_mid_billing_is_a_conflict(self, billing, store, monkeypatch):
        """
        Scenario:
        - billing has read both orders
        - another writer changes the newer order before they are marked Paid
        Expected: ConcurrencyConflict and neither order is Paid
        """
        older, newer = two_open_orders(store, "Table 8")
        settle = store.settle_orders

        async def racing_settle(settlements):
            current = await store.get_order(newer.id)
            await store.update_order(current.id, current.items, current.total_amount)
            return await settle(settlements)

        monkeypatch.setattr(store, "settle_orders", racing_settle)

        with pytest.raises(ConcurrencyConflict):
            await billing.generate_bill("Table 8")

        assert (await store.get_order(older.id)).status == OrderStatus.IN_PROGRESS
        assert (await store.get_order(newer.id)).status == OrderStatus.IN_PROGRESS

        monkeypatch.undo()
        bill = await billing.generate_bill("Table 8")
        assert bill.subtotal == Decimal("5.00")
