"""
FastAPI Application Entry Point

Tableside Ordering Service - order lifecycle and billing for a single
restaurant, driven by a voice assistant, a kitchen display and staff.

Endpoints:
    - POST /webhook/intent: Voice assistant intents (order, remove, query, service, bill)
    - /api/menu, /api/tax-rates, /api/restaurant/tables: Admin settings
    - /api/tables/{table}/cart, /api/tables/{table}/bill: Table ordering and billing
    - /api/orders: Kitchen view and item status changes
    - /api/alerts: Service requests
    - /api/sync: Realtime sync status and manual refresh
    - GET /health: System health check
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tableside.core.config import get_settings, setup_logging
from tableside.core.exceptions import (
    AlertNotFound,
    BusinessRuleError,
    InvalidQuantity,
    InvalidTable,
    ItemNotInOrder,
    MenuItemNotFound,
    NoActiveOrder,
    OrderNotFound,
    PendingConfirmationRequired,
    RepositoryError,
    TaxRateNotFound,
)
from tableside.database import dispose_db, init_db
from tableside.models import OrderStatus
from tableside.schemas import (
    Bill,
    CartItemAdd,
    CartResponse,
    ErrorResponse,
    HealthResponse,
    ItemStatusUpdate,
    MenuItem,
    MenuItemUpdate,
    Order,
    OrderListResponse,
    ServiceAlert,
    ServiceAlertCreate,
    TableCapacityResponse,
    TableCapacityUpdate,
    TaxRate,
    TaxRateUpdate,
    SyncStatusResponse,
    utcnow,
)
from tableside.services import (
    get_billing_reconciler,
    get_cart_engine,
    get_item_state_machine,
    get_order_view,
    get_service_desk,
    get_sync_coordinator,
)
from tableside.services.alerts import ServiceDesk
from tableside.services.billing import BillingReconciler
from tableside.services.cart import CartEngine
from tableside.services.feed import BaseChangeFeed, get_change_feed
from tableside.services.kitchen import ItemStateMachine
from tableside.services.store import BaseStore, get_store
from tableside.services.sync import OrderView, SyncCoordinator
from tableside.services.tables import normalize_table, table_labels
from tableside.services.voice import IntentHandler, IntentPayload, get_intent_handler
from tableside.tasks import queue_bill_export

settings = get_settings()
logger = logging.getLogger(__name__)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

async def seed_restaurant(store: BaseStore) -> None:
    """Create the restaurant row and default tax rates on first start."""
    restaurant = await store.ensure_restaurant(
        settings.restaurant_name, settings.default_total_tables
    )
    logger.info(f"Restaurant: {restaurant.name} ({restaurant.total_tables} tables)")

    if not await store.list_tax_rates():
        for name, percentage in settings.tax_rate_pairs:
            await store.upsert_tax_rate(TaxRate(name=name, percentage=percentage))
        logger.info(f"Seeded tax rates: {settings.default_tax_rates}")


def resolve_table(table: str, view: OrderView) -> str:
    return normalize_table(table, view.total_tables)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    setup_logging()

    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Restaurant: {settings.restaurant_id}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if settings.uses_database:
        await init_db()
        logger.info("Database initialized")

    store = get_store()
    feed = get_change_feed()
    logger.info(f"Store: {store.provider_name}")
    logger.info(f"Change feed: {feed.provider_name}")

    await seed_restaurant(store)

    problems = settings.validate_production_config()
    if problems:
        logger.warning(f"Unsafe configuration for {settings.env_mode.value}: {problems}")

    coordinator = get_sync_coordinator()
    await coordinator.start()

    logger.info("=" * 60)
    logger.info("Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    logger.info("Shutting down...")
    await coordinator.stop()
    await feed.close()
    await store.close()
    await dispose_db()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order lifecycle and billing reconciliation for a single restaurant: "
        "table carts, kitchen item states, bills and realtime sync."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "restaurant": settings.restaurant_id,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    store: BaseStore = Depends(get_store),
    feed: BaseChangeFeed = Depends(get_change_feed),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
) -> HealthResponse:
    """Verify the store, the change feed and the sync loop."""
    store_status = "healthy" if await store.health_check() else "unhealthy"
    feed_status = "healthy" if await feed.health_check() else "unhealthy"
    sync_status = coordinator.status.value

    overall = "operational" if (
        store_status == "healthy" and feed_status == "healthy"
    ) else "degraded"

    return HealthResponse(
        status=overall,
        store=store_status,
        change_feed=feed_status,
        sync=sync_status,
        timestamp=utcnow(),
    )


# =============================================================================
# VOICE ASSISTANT WEBHOOK
# =============================================================================

@app.post(
    "/webhook/intent",
    tags=["Voice Assistant"],
    summary="Voice assistant intent endpoint",
)
async def intent_webhook(
    payload: IntentPayload,
    handler: IntentHandler = Depends(get_intent_handler),
) -> dict[str, Any]:
    """
    Execute one assistant intent for a table.

    Always answers 200: failures are reported inside ``result`` so the
    assistant can read them back to the customer.
    """
    return await handler.handle(payload)


# =============================================================================
# MENU & TAX ADMIN
# =============================================================================

@app.get("/api/menu", response_model=list[MenuItem], tags=["Menu"])
async def list_menu(
    category: Optional[str] = Query(None),
    store: BaseStore = Depends(get_store),
) -> list[MenuItem]:
    items = await store.list_menu_items()
    if category:
        items = [i for i in items if i.category.value.lower() == category.lower()]
    return items


@app.post("/api/menu", response_model=MenuItem, status_code=201, tags=["Menu"])
async def add_menu_item(
    body: MenuItemUpdate,
    store: BaseStore = Depends(get_store),
) -> MenuItem:
    item = await store.add_menu_item(MenuItem(**body.model_dump()))
    logger.info(f"Menu item added: {item.name}")
    return item


@app.put("/api/menu/{item_id}", response_model=MenuItem, tags=["Menu"])
async def update_menu_item(
    item_id: str,
    body: MenuItemUpdate,
    store: BaseStore = Depends(get_store),
) -> MenuItem:
    return await store.update_menu_item(MenuItem(id=item_id, **body.model_dump()))


@app.delete("/api/menu/{item_id}", status_code=204, tags=["Menu"])
async def delete_menu_item(item_id: str, store: BaseStore = Depends(get_store)) -> None:
    await store.delete_menu_item(item_id)


@app.get("/api/tax-rates", response_model=list[TaxRate], tags=["Taxes"])
async def list_tax_rates(store: BaseStore = Depends(get_store)) -> list[TaxRate]:
    return await store.list_tax_rates()


@app.put("/api/tax-rates/{name}", response_model=TaxRate, tags=["Taxes"])
async def upsert_tax_rate(
    name: str,
    body: TaxRateUpdate,
    store: BaseStore = Depends(get_store),
) -> TaxRate:
    return await store.upsert_tax_rate(TaxRate(name=name, percentage=body.percentage))


@app.delete("/api/tax-rates/{name}", status_code=204, tags=["Taxes"])
async def delete_tax_rate(name: str, store: BaseStore = Depends(get_store)) -> None:
    await store.delete_tax_rate(name)


@app.get("/api/restaurant/tables", response_model=TableCapacityResponse, tags=["Tables"])
async def get_tables(view: OrderView = Depends(get_order_view)) -> TableCapacityResponse:
    return TableCapacityResponse(
        total_tables=view.total_tables,
        tables=table_labels(view.total_tables),
    )


@app.put("/api/restaurant/tables", response_model=TableCapacityResponse, tags=["Tables"])
async def set_tables(
    body: TableCapacityUpdate,
    store: BaseStore = Depends(get_store),
    view: OrderView = Depends(get_order_view),
) -> TableCapacityResponse:
    restaurant = await store.set_total_tables(body.total_tables)
    view.total_tables = restaurant.total_tables
    return TableCapacityResponse(
        total_tables=restaurant.total_tables,
        tables=table_labels(restaurant.total_tables),
    )


# =============================================================================
# TABLE ORDERING & BILLING
# =============================================================================

@app.get("/api/tables/{table}/cart", response_model=CartResponse, tags=["Tables"])
async def get_cart(
    table: str,
    store: BaseStore = Depends(get_store),
    view: OrderView = Depends(get_order_view),
) -> CartResponse:
    """Current open order of a table, read fresh from the store."""
    label = resolve_table(table, view)
    order = await store.find_active_order(label)
    if order is None:
        return CartResponse(table=label)
    return CartResponse(
        table=label,
        order_id=order.id,
        items=order.items,
        total_amount=order.total_amount,
    )


@app.post("/api/tables/{table}/cart/items", response_model=Order, tags=["Tables"])
async def add_cart_item(
    table: str,
    body: CartItemAdd,
    store: BaseStore = Depends(get_store),
    cart: CartEngine = Depends(get_cart_engine),
    view: OrderView = Depends(get_order_view),
) -> Order:
    label = resolve_table(table, view)
    menu_item = await store.get_menu_item(body.item_id)
    if menu_item is None:
        raise MenuItemNotFound(body.item_id)
    return await cart.add_item(label, menu_item, body.quantity)


@app.delete("/api/tables/{table}/cart/items/{item_ref}", response_model=CartResponse, tags=["Tables"])
async def remove_cart_item(
    table: str,
    item_ref: str,
    cart: CartEngine = Depends(get_cart_engine),
    view: OrderView = Depends(get_order_view),
) -> CartResponse:
    label = resolve_table(table, view)
    order = await cart.remove_item(label, item_ref)
    if order is None:
        return CartResponse(table=label)
    return CartResponse(
        table=label,
        order_id=order.id,
        items=order.items,
        total_amount=order.total_amount,
    )


@app.post("/api/tables/{table}/bill", response_model=Bill, tags=["Billing"])
async def generate_bill(
    table: str,
    confirm_cancel_pending: bool = Query(False),
    billing: BillingReconciler = Depends(get_billing_reconciler),
    view: OrderView = Depends(get_order_view),
) -> Any:
    """
    Close out a table and return the receipt.

    Pending items awaiting the customer's consent are a question, not an
    error: they come back as a 200 with ``success: false`` and
    ``pending_items``.
    """
    try:
        bill = await billing.generate_bill(
            resolve_table(table, view), confirm_cancel_pending=confirm_cancel_pending
        )
    except PendingConfirmationRequired as e:
        return JSONResponse(status_code=200, content=ErrorResponse(**e.to_dict()).model_dump())
    queue_bill_export(bill)
    return bill


# =============================================================================
# KITCHEN ENDPOINTS
# =============================================================================

@app.get("/api/orders", response_model=OrderListResponse, tags=["Orders"])
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    store: BaseStore = Depends(get_store),
) -> OrderListResponse:
    orders = await store.list_orders(status)
    return OrderListResponse(total=len(orders), orders=orders)


@app.get("/api/orders/{order_id}", response_model=Order, tags=["Orders"])
async def get_order(order_id: str, store: BaseStore = Depends(get_store)) -> Order:
    order = await store.get_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


@app.patch("/api/orders/{order_id}/items/{line_ref}", response_model=Order, tags=["Orders"])
async def update_item_status(
    order_id: str,
    line_ref: str,
    body: ItemStatusUpdate,
    kitchen: ItemStateMachine = Depends(get_item_state_machine),
) -> Order:
    return await kitchen.set_item_status(order_id, line_ref, body.status)


# =============================================================================
# SERVICE ALERTS
# =============================================================================

@app.get("/api/alerts", response_model=list[ServiceAlert], tags=["Alerts"])
async def list_alerts(store: BaseStore = Depends(get_store)) -> list[ServiceAlert]:
    return await store.list_open_alerts()


@app.post("/api/alerts", response_model=ServiceAlert, status_code=201, tags=["Alerts"])
async def raise_alert(
    body: ServiceAlertCreate,
    desk: ServiceDesk = Depends(get_service_desk),
    view: OrderView = Depends(get_order_view),
) -> ServiceAlert:
    return await desk.raise_alert(resolve_table(body.table, view), body.type, body.message)


@app.post("/api/alerts/{alert_id}/resolve", response_model=ServiceAlert, tags=["Alerts"])
async def resolve_alert(
    alert_id: str,
    desk: ServiceDesk = Depends(get_service_desk),
) -> ServiceAlert:
    return await desk.resolve(alert_id)


# =============================================================================
# SYNC
# =============================================================================

def _sync_response(coordinator: SyncCoordinator) -> SyncStatusResponse:
    snapshot = coordinator.snapshot()
    return SyncStatusResponse(
        status=snapshot.status.value,
        last_synced_at=snapshot.last_synced_at,
        orders=snapshot.orders,
        menu_items=snapshot.menu_items,
        open_alerts=snapshot.open_alerts,
    )


@app.get("/api/sync", response_model=SyncStatusResponse, tags=["Sync"])
async def sync_status(
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
) -> SyncStatusResponse:
    return _sync_response(coordinator)


@app.post("/api/sync/refresh", response_model=SyncStatusResponse, tags=["Sync"])
async def sync_refresh(
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
) -> SyncStatusResponse:
    if not await coordinator.refresh():
        raise RepositoryError(coordinator.last_error or "Refresh failed")
    return _sync_response(coordinator)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

NOT_FOUND = (
    NoActiveOrder,
    OrderNotFound,
    ItemNotInOrder,
    MenuItemNotFound,
    AlertNotFound,
    TaxRateNotFound,
)
INVALID_INPUT = (InvalidQuantity, InvalidTable)


def status_for(exc: BusinessRuleError) -> int:
    if isinstance(exc, NOT_FOUND):
        return 404
    if isinstance(exc, INVALID_INPUT):
        return 422
    return 409


@app.exception_handler(BusinessRuleError)
async def business_rule_handler(request: Request, exc: BusinessRuleError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content=ErrorResponse(**exc.to_dict()).model_dump(),
    )


@app.exception_handler(RepositoryError)
async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    logger.error(f"Store failure on {request.url.path}: {exc.message}")
    content = exc.to_dict()
    content["retryable"] = exc.retryable
    return JSONResponse(status_code=503, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
