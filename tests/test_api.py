"""
HTTP API Integration Tests

Drives the FastAPI app in-process through httpx, with every service
dependency pointed at the in-memory fixtures.
"""
from decimal import Decimal

import httpx
import pytest

from tableside.core.exceptions import RepositoryError
from tableside.main import app
from tableside.services import (
    get_billing_reconciler,
    get_cart_engine,
    get_item_state_machine,
    get_order_view,
    get_service_desk,
    get_sync_coordinator,
)
from tableside.services.feed import get_change_feed
from tableside.services.store import get_store
from tableside.services.sync import SyncCoordinator
from tableside.services.voice import IntentHandler, get_intent_handler


@pytest.fixture
async def client(store, feed, view, cart, kitchen, billing, desk):
    coordinator = SyncCoordinator(store, feed, view, poll_interval=60, timeout=1.0)
    handler = IntentHandler(cart=cart, billing=billing, desk=desk, view=view)

    app.dependency_overrides.update({
        get_store: lambda: store,
        get_change_feed: lambda: feed,
        get_order_view: lambda: view,
        get_cart_engine: lambda: cart,
        get_item_state_machine: lambda: kitchen,
        get_billing_reconciler: lambda: billing,
        get_service_desk: lambda: desk,
        get_sync_coordinator: lambda: coordinator,
        get_intent_handler: lambda: handler,
    })
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def add(client, table: str, item_id: str, quantity: int = 1) -> dict:
    response = await client.post(
        f"/api/tables/{table}/cart/items", json={"item_id": item_id, "quantity": quantity}
    )
    assert response.status_code == 200, response.text
    return response.json()


async def move(client, order: dict, item_id: str, *statuses: str) -> dict:
    line = next(l for l in order["items"] if l["item_id"] == item_id and l["status"] == "Pending")
    for status in statuses:
        response = await client.patch(
            f"/api/orders/{order['id']}/items/{line['line_id']}", json={"status": status}
        )
        assert response.status_code == 200, response.text
        order = response.json()
    return order


# ============================================================================
# ROOT & HEALTH
# ============================================================================

class TestHealth:

    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["health"] == "/health"

    async def test_health(self, client):
        body = (await client.get("/health")).json()
        assert body["status"] == "operational"
        assert body["store"] == "healthy"
        assert body["change_feed"] == "healthy"
        assert body["sync"] == "connecting"


# ============================================================================
# ADMIN
# ============================================================================

class TestMenuAdmin:

    async def test_list_and_filter(self, client):
        assert len((await client.get("/api/menu")).json()) == 6
        drinks = (await client.get("/api/menu", params={"category": "drink"})).json()
        assert sorted(d["name"] for d in drinks) == ["Iced Tea", "Tea"]

    async def test_add_update_delete(self, client):
        response = await client.post(
            "/api/menu",
            json={"name": "Dal Makhani", "category": "Main Course", "type": "Veg", "price": "11.00"},
        )
        assert response.status_code == 201
        item = response.json()

        item["price"] = "12.00"
        item_id = item.pop("id")
        updated = await client.put(f"/api/menu/{item_id}", json=item)
        assert Decimal(updated.json()["price"]) == Decimal("12.00")

        assert (await client.delete(f"/api/menu/{item_id}")).status_code == 204
        assert len((await client.get("/api/menu")).json()) == 6

    async def test_delete_unknown_item(self, client):
        response = await client.delete("/api/menu/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "MENU_ITEM_NOT_FOUND"

    async def test_tax_rates(self, client):
        response = await client.put("/api/tax-rates/City Tax", json={"percentage": "0.02"})
        assert response.status_code == 200
        names = [r["name"] for r in (await client.get("/api/tax-rates")).json()]
        assert names == ["GST", "Service Charge", "City Tax"]

        assert (await client.delete("/api/tax-rates/City Tax")).status_code == 204
        assert (await client.delete("/api/tax-rates/City Tax")).status_code == 404

    async def test_tax_rate_above_one_is_rejected(self, client):
        response = await client.put("/api/tax-rates/GST", json={"percentage": "5"})
        assert response.status_code == 422


class TestTableCapacity:

    async def test_get_tables(self, client):
        body = (await client.get("/api/restaurant/tables")).json()
        assert body["total_tables"] == 10
        assert body["tables"][0] == "Table 1"
        assert body["tables"][-1] == "Online"

    async def test_set_tables(self, client, view):
        response = await client.put("/api/restaurant/tables", json={"total_tables": 12})
        assert response.json()["total_tables"] == 12
        assert view.total_tables == 12
        await add(client, "12", "tea")

    @pytest.mark.parametrize("total", [0, 101])
    async def test_capacity_out_of_range(self, client, total):
        response = await client.put("/api/restaurant/tables", json={"total_tables": total})
        assert response.status_code == 422


# ============================================================================
# ORDERING, KITCHEN & BILLING
# ============================================================================

class TestTableOrdering:

    async def test_add_and_read_cart(self, client):
        order = await add(client, "Table 1", "paneer-tikka", quantity=2)
        assert Decimal(order["total_amount"]) == Decimal("23.00")

        cart = (await client.get("/api/tables/1/cart")).json()
        assert cart["table"] == "Table 1"
        assert cart["order_id"] == order["id"]
        assert cart["items"][0]["quantity"] == 2

    async def test_empty_cart(self, client):
        cart = (await client.get("/api/tables/Online/cart")).json()
        assert cart == {"table": "Online", "order_id": None, "items": [], "total_amount": "0"}

    async def test_unknown_menu_item(self, client):
        response = await client.post("/api/tables/1/cart/items", json={"item_id": "nope"})
        assert response.status_code == 404

    async def test_invalid_table(self, client):
        response = await client.get("/api/tables/Table 99/cart")
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_TABLE"

    async def test_remove_item(self, client):
        await add(client, "2", "tea")
        response = await client.delete("/api/tables/2/cart/items/tea")
        assert response.status_code == 200
        assert response.json()["order_id"] is None

    async def test_remove_preparing_item_conflicts(self, client):
        order = await add(client, "2", "tea")
        await move(client, order, "tea", "Preparing")

        response = await client.delete("/api/tables/2/cart/items/tea")

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"
        assert response.json()["severity"] == "hard"


class TestKitchen:

    async def test_illegal_transition(self, client):
        order = await add(client, "3", "tea")
        line_id = order["items"][0]["line_id"]

        response = await client.patch(
            f"/api/orders/{order['id']}/items/{line_id}", json={"status": "Served"}
        )

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    async def test_unknown_order(self, client):
        assert (await client.get("/api/orders/nope")).status_code == 404

    async def test_list_by_status(self, client):
        await add(client, "3", "tea")
        assert (await client.get("/api/orders", params={"status": "In Progress"})).json()["total"] == 1
        assert (await client.get("/api/orders", params={"status": "Paid"})).json()["total"] == 0


class TestBilling:

    async def test_bill_flow(self, client):
        """
        CRITICAL: Pending items come back as a soft question (200, not an
        error status) naming the dishes; the confirmed request returns the
        bill; a repeat finds nothing open.
        """
        await add(client, "4", "paneer-tikka")
        order = await add(client, "4", "gulab-jamun")
        await move(client, order, "paneer-tikka", "Preparing", "Served")

        pending = await client.post("/api/tables/4/bill")
        assert pending.status_code == 200
        assert pending.json()["success"] is False
        assert pending.json()["code"] == "PENDING_ITEMS"
        assert pending.json()["severity"] == "soft"
        assert pending.json()["pending_items"] == ["Gulab Jamun"]

        bill = await client.post("/api/tables/4/bill", params={"confirm_cancel_pending": True})
        assert bill.status_code == 200
        body = bill.json()
        assert [i["name"] for i in body["items"]] == ["Paneer Tikka"]
        assert Decimal(body["total_amount"]) == Decimal("11.50")

        again = await client.post("/api/tables/4/bill")
        assert again.status_code == 404
        assert again.json()["code"] == "NO_ACTIVE_ORDER"

    async def test_preparing_blocks_bill(self, client):
        order = await add(client, "5", "tea")
        await move(client, order, "tea", "Preparing")

        response = await client.post("/api/tables/5/bill", params={"confirm_cancel_pending": True})

        assert response.status_code == 409
        assert response.json()["code"] == "ITEMS_PREPARING"


# ============================================================================
# ALERTS, SYNC & WEBHOOK
# ============================================================================

class TestAlerts:

    async def test_raise_and_resolve(self, client):
        response = await client.post("/api/alerts", json={"table": "6", "type": "napkins"})
        assert response.status_code == 201
        alert = response.json()
        assert alert["table"] == "Table 6"

        assert len((await client.get("/api/alerts")).json()) == 1
        resolved = await client.post(f"/api/alerts/{alert['id']}/resolve")
        assert resolved.json()["resolved"] is True
        assert (await client.get("/api/alerts")).json() == []

    async def test_resolve_unknown(self, client):
        assert (await client.post("/api/alerts/nope/resolve")).status_code == 404


class TestSync:

    async def test_refresh(self, client):
        body = (await client.post("/api/sync/refresh")).json()
        assert body["menu_items"] == 6
        assert body["last_synced_at"] is not None

    async def test_refresh_during_outage(self, client, store):
        store.inject_failure(RepositoryError("store down"))
        response = await client.post("/api/sync/refresh")
        assert response.status_code == 503
        assert response.json()["code"] == "REPOSITORY_ERROR"

    async def test_store_outage_is_503(self, client, store):
        store.inject_failure(RepositoryError("store down"))
        response = await client.get("/api/orders")
        assert response.status_code == 503
        assert response.json()["retryable"] is False


class TestIntentWebhook:

    async def test_order_through_webhook(self, client):
        response = await client.post(
            "/webhook/intent",
            json={"intent": "orderFood", "table": "Table 8", "arguments": {"itemName": "tea"}},
        )
        assert response.status_code == 200
        assert response.json()["result"]["success"] is True

    async def test_soft_failure_is_still_200(self, client):
        response = await client.post(
            "/webhook/intent", json={"intent": "requestBill", "table": "Table 8"}
        )
        assert response.status_code == 200
        assert response.json()["result"]["severity"] == "soft"

    async def test_numeric_arguments_are_answered(self, client):
        """
        A number where a dish name belongs is a soft miss, never a 500.
        """
        response = await client.post(
            "/webhook/intent",
            json={"intent": "orderFood", "table": "Table 8", "arguments": {"itemName": 7, "quantity": "1"}},
        )
        assert response.status_code == 200
        assert response.json()["result"]["code"] == "MENU_ITEM_NOT_FOUND"
