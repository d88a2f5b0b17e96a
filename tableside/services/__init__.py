"""
                        Services Module

Ordering and billing logic for the active restaurant, wired to the
configured store and change feed.

Services:
    - cart: Cart Merge Engine (add/remove items on a table's open order)
    - kitchen: Item State Machine (Pending -> Preparing -> Served)
    - billing: Billing Reconciler (close out a table)
    - sync: Realtime Sync Coordinator and the shared OrderView
    - alerts: Service requests from tables
    - ledger: Excel ledger of generated bills

The factories below return process-wide singletons sharing one OrderView
and one set of per-table locks, so the cart and billing paths of the same
table never interleave.
"""

from functools import lru_cache

from tableside.core.config import get_settings
from tableside.services.alerts import ServiceDesk
from tableside.services.billing import BillingReconciler
from tableside.services.cart import CartEngine
from tableside.services.feed import get_change_feed, reset_change_feed
from tableside.services.kitchen import ItemStateMachine
from tableside.services.store import get_store, reset_store
from tableside.services.sync import OrderView, SyncCoordinator
from tableside.services.tables import TableLocks


@lru_cache()
def get_table_locks() -> TableLocks:
    return TableLocks()


@lru_cache()
def get_order_view() -> OrderView:
    return OrderView(get_settings().default_total_tables)


@lru_cache()
def get_cart_engine() -> CartEngine:
    return CartEngine(get_store(), view=get_order_view(), locks=get_table_locks())


@lru_cache()
def get_item_state_machine() -> ItemStateMachine:
    return ItemStateMachine(get_store(), view=get_order_view())


@lru_cache()
def get_billing_reconciler() -> BillingReconciler:
    return BillingReconciler(get_store(), view=get_order_view(), locks=get_table_locks())


@lru_cache()
def get_service_desk() -> ServiceDesk:
    return ServiceDesk(get_store(), view=get_order_view())


@lru_cache()
def get_sync_coordinator() -> SyncCoordinator:
    return SyncCoordinator(get_store(), get_change_feed(), view=get_order_view())


def reset_services() -> None:
    """Drop every cached service, store and feed (used by tests)."""
    for factory in (
        get_table_locks,
        get_order_view,
        get_cart_engine,
        get_item_state_machine,
        get_billing_reconciler,
        get_service_desk,
        get_sync_coordinator,
    ):
        factory.cache_clear()
    reset_store()
    reset_change_feed()


__all__ = [
    "get_table_locks",
    "get_order_view",
    "get_cart_engine",
    "get_item_state_machine",
    "get_billing_reconciler",
    "get_service_desk",
    "get_sync_coordinator",
    "reset_services",
    "CartEngine",
    "ItemStateMachine",
    "BillingReconciler",
    "SyncCoordinator",
    "OrderView",
    "ServiceDesk",
]
