"""
Pydantic Schemas

Domain types shared by the store, the ordering services and the API, plus
request/response bodies for the HTTP layer.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tableside.models import (
    AlertType,
    Category,
    ItemStatus,
    MealType,
    OrderStatus,
)


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# DOMAIN TYPES
# =============================================================================

class MenuItem(BaseModel):
    """A dish on the menu. Its price is copied onto order lines when ordered."""
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100, examples=["Paneer Tikka"])
    description: str = Field(default="", max_length=1000)
    category: Category
    type: MealType
    price: Decimal = Field(..., ge=0, examples=["12.50"])
    availability: bool = True
    image_url: Optional[str] = Field(None, max_length=500)


class OrderItem(BaseModel):
    """
    A line within an order.

    ``line_id`` identifies the line itself; ``item_id`` is the menu item it
    refers to. The same menu item can appear on several lines with
    different statuses (e.g. one served, one still pending).
    """
    line_id: str = Field(default_factory=new_id)
    item_id: str
    name: str
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    status: ItemStatus = ItemStatus.PENDING

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    table: str
    items: List[OrderItem] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.IN_PROGRESS
    total_amount: Decimal = Decimal("0")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == OrderStatus.IN_PROGRESS

    def lines_with_status(self, *statuses: ItemStatus) -> list[OrderItem]:
        return [line for line in self.items if line.status in statuses]


class TaxRate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, examples=["GST"])
    percentage: Decimal = Field(..., ge=0, le=1, examples=["0.05"])


class ServiceAlert(BaseModel):
    id: str = Field(default_factory=new_id)
    table: str
    type: AlertType
    message: Optional[str] = Field(None, max_length=500)
    created_at: datetime = Field(default_factory=utcnow)
    resolved: bool = False


class Restaurant(BaseModel):
    id: str
    name: str
    total_tables: int = Field(default=10, ge=1, le=100)


class TaxLine(BaseModel):
    name: str
    percentage: Decimal
    amount: Decimal


class Bill(BaseModel):
    """
    Receipt produced by billing. Not persisted itself: the orders it covers
    are marked Paid, and ``order_ids`` lists them.
    """
    bill_id: str
    order_ids: List[str]
    table: str
    items: List[OrderItem]
    subtotal: Decimal
    taxes: List[TaxLine] = Field(default_factory=list)
    total_amount: Decimal
    timestamp: datetime = Field(default_factory=utcnow)

    def to_ledger_row(self) -> dict[str, Any]:
        """Flatten for the Excel ledger export."""
        return {
            "bill_id": self.bill_id,
            "table": self.table,
            "order_ids": ",".join(self.order_ids),
            "items": "; ".join(f"{i.quantity}x {i.name} @ {i.price}" for i in self.items),
            "subtotal": float(self.subtotal),
            "tax": float(sum((t.amount for t in self.taxes), Decimal("0"))),
            "total_amount": float(round(self.total_amount, 2)),
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class MenuItemUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    category: Category
    type: MealType
    price: Decimal = Field(..., ge=0)
    availability: bool = True
    image_url: Optional[str] = Field(None, max_length=500)


class TaxRateUpdate(BaseModel):
    percentage: Decimal = Field(..., ge=0, le=1)


class TableCapacityUpdate(BaseModel):
    total_tables: int = Field(..., ge=1, le=100, examples=[12])


class CartItemAdd(BaseModel):
    item_id: str
    quantity: int = Field(default=1, ge=1, le=99)


class ItemStatusUpdate(BaseModel):
    status: ItemStatus


class ServiceAlertCreate(BaseModel):
    table: str
    type: AlertType
    message: Optional[str] = Field(None, max_length=500)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class CartResponse(BaseModel):
    table: str
    order_id: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")


class OrderListResponse(BaseModel):
    total: int
    orders: List[Order]


class TableCapacityResponse(BaseModel):
    total_tables: int
    tables: List[str]


class SyncStatusResponse(BaseModel):
    status: str
    last_synced_at: Optional[datetime]
    orders: int
    menu_items: int
    open_alerts: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    model_config = ConfigDict(extra="allow")

    success: bool = False
    code: str
    severity: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    change_feed: str
    sync: str
    timestamp: datetime
