"""
Pytest configuration for the ordering service tests.

Every test runs against the in-memory store and change feed; nothing here
needs PostgreSQL, Redis or a Celery broker.
"""
import asyncio
import os

# Must be set before anything imports tableside settings
os.environ["STORE_BACKEND"] = "memory"
os.environ["CHANGE_FEED_BACKEND"] = "memory"
os.environ["LEDGER_EXPORT_ENABLED"] = "false"
os.environ["RESTAURANT_ID"] = "test-restaurant"
os.environ["DEFAULT_TAX_RATES"] = "GST:0.05,Service Charge:0.10"

from decimal import Decimal

import pytest

from tableside.core.config import get_settings
from tableside.models import Category, ItemStatus, MealType
from tableside.schemas import MenuItem, Order, TaxRate
from tableside.services.alerts import ServiceDesk
from tableside.services.billing import BillingReconciler
from tableside.services.cart import CartEngine
from tableside.services.feed.memory import MemoryChangeFeed
from tableside.services.kitchen import ItemStateMachine
from tableside.services.store.memory import MemoryStore
from tableside.services.sync import OrderView
from tableside.services.tables import TableLocks

RESTAURANT_ID = "test-restaurant"


def menu_items() -> dict[str, MenuItem]:
    return {
        "paneer": MenuItem(
            id="paneer-tikka",
            name="Paneer Tikka",
            description="Smoky grilled cottage cheese, mildly spicy",
            category=Category.STARTER,
            type=MealType.VEG,
            price=Decimal("10.00"),
        ),
        "chicken": MenuItem(
            id="butter-chicken",
            name="Butter Chicken",
            description="Creamy tomato gravy, gluten-free",
            category=Category.MAIN,
            type=MealType.NON_VEG,
            price=Decimal("15.00"),
        ),
        "jamun": MenuItem(
            id="gulab-jamun",
            name="Gulab Jamun",
            description="Milk dumplings in syrup",
            category=Category.DESSERT,
            type=MealType.VEG,
            price=Decimal("5.00"),
        ),
        "tea": MenuItem(
            id="tea",
            name="Tea",
            category=Category.DRINK,
            type=MealType.VEG,
            price=Decimal("2.00"),
        ),
        "iced_tea": MenuItem(
            id="iced-tea",
            name="Iced Tea",
            category=Category.DRINK,
            type=MealType.VEG,
            price=Decimal("3.00"),
        ),
        "lobster": MenuItem(
            id="lobster",
            name="Lobster Thermidor",
            category=Category.MAIN,
            type=MealType.NON_VEG,
            price=Decimal("40.00"),
            availability=False,
        ),
    }


TAX_RATES = [
    TaxRate(name="GST", percentage=Decimal("0.05")),
    TaxRate(name="Service Charge", percentage=Decimal("0.10")),
]


async def seed(store: MemoryStore) -> MemoryStore:
    await store.ensure_restaurant("Test Bistro", 10)
    for rate in TAX_RATES:
        await store.upsert_tax_rate(rate)
    for item in menu_items().values():
        await store.add_menu_item(item)
    return store


# ============================================================================
# AUTO-USE FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings from the environment for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# STORE & SERVICES
# ============================================================================

@pytest.fixture
def menu() -> dict[str, MenuItem]:
    return menu_items()


@pytest.fixture
def feed() -> MemoryChangeFeed:
    return MemoryChangeFeed()


@pytest.fixture
async def store(feed) -> MemoryStore:
    """Seeded in-memory store: 10 tables, GST 5% + service 10%, six dishes."""
    return await seed(MemoryStore(RESTAURANT_ID, feed=feed))


@pytest.fixture
async def slow_store(feed) -> MemoryStore:
    """Seeded store where every call yields for 10ms, to interleave writers."""
    return await seed(MemoryStore(RESTAURANT_ID, feed=feed, latency=0.01))


@pytest.fixture
def view() -> OrderView:
    return OrderView(total_tables=10)


@pytest.fixture
def locks() -> TableLocks:
    return TableLocks()


@pytest.fixture
def cart(store, view, locks) -> CartEngine:
    return CartEngine(store, view=view, locks=locks, timeout=2.0, max_attempts=3)


@pytest.fixture
def kitchen(store, view) -> ItemStateMachine:
    return ItemStateMachine(store, view=view, timeout=2.0, max_attempts=3)


@pytest.fixture
def billing(store, view, locks) -> BillingReconciler:
    return BillingReconciler(store, view=view, locks=locks, timeout=2.0)


@pytest.fixture
def desk(store, view) -> ServiceDesk:
    return ServiceDesk(store, view=view, timeout=2.0)


# ============================================================================
# HELPERS
# ============================================================================

async def set_status(kitchen: ItemStateMachine, order: Order, item_id: str, *statuses: ItemStatus) -> Order:
    """Walk the first matching line of ``item_id`` through ``statuses``."""
    line = next(l for l in order.items if l.item_id == item_id and l.status == ItemStatus.PENDING)
    for status in statuses:
        order = await kitchen.set_item_status(order.id, line.line_id, status)
    return order


async def serve(kitchen: ItemStateMachine, order: Order, item_id: str) -> Order:
    return await set_status(kitchen, order, item_id, ItemStatus.PREPARING, ItemStatus.SERVED)


async def eventually(predicate, timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
