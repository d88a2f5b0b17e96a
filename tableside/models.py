"""
SQLAlchemy Database Models

Tables mirror the external store layout:
- restaurants: table capacity per restaurant
- menu_items: the menu, scoped to a restaurant
- orders: one row per order, line items embedded as a JSON list
- service_alerts: staff call requests from tables
- tax_rates: percentage rates applied to every bill
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.sql import func

from tableside.database import Base


def _values(enum_cls):
    return [member.value for member in enum_cls]


class Category(str, enum.Enum):
    """Menu sections."""
    STARTER = "Starter"
    MAIN = "Main Course"
    DESSERT = "Dessert"
    DRINK = "Drink"
    SIDE = "Side Dish"
    SOUPS = "Soups"


class MealType(str, enum.Enum):
    VEG = "Veg"
    NON_VEG = "Non-Veg"


class OrderStatus(str, enum.Enum):
    """Order status: open while the table is eating, Paid once billed."""
    IN_PROGRESS = "In Progress"
    PAID = "Paid"


class ItemStatus(str, enum.Enum):
    """Line item status workflow."""
    PENDING = "Pending"
    PREPARING = "Preparing"
    SERVED = "Served"
    CANCELLED = "Cancelled"


class AlertType(str, enum.Enum):
    """Service requests a table can raise."""
    WATER = "water"
    NAPKINS = "napkins"
    SEND_SOMEONE = "send someone"
    ROOM_SERVICE = "room service"
    CUTLERY = "cutlery"
    SERVER = "server"
    CUSTOM = "custom"


ONLINE_TABLE = "Online"


class RestaurantRecord(Base):
    __tablename__ = "restaurants"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    total_tables = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Restaurant {self.id} - {self.total_tables} tables>"


class MenuItemRecord(Base):
    __tablename__ = "menu_items"

    id = Column(String(64), primary_key=True)
    restaurant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Numeric(12, 4), nullable=False)
    category = Column(
        Enum(Category, values_callable=_values, native_enum=False),
        nullable=False,
    )
    type = Column(
        Enum(MealType, values_callable=_values, native_enum=False),
        nullable=False,
    )
    availability = Column(Boolean, nullable=False, default=True)
    image_url = Column(String(500), nullable=True)

    def __repr__(self):
        return f"<MenuItem {self.name} - {self.price}>"


class OrderRecord(Base):
    """
    One order per row. Line items live in the ``items`` JSON list, so every
    item-level change is a read-modify-write of the whole row; ``version``
    is bumped on each write and used as a compare-and-swap token.
    """
    __tablename__ = "orders"
    __table_args__ = (
        # At most one open order per table.
        Index(
            "uq_orders_active_table",
            "restaurant_id",
            "table_label",
            unique=True,
            postgresql_where=text("status = 'In Progress'"),
            sqlite_where=text("status = 'In Progress'"),
        ),
    )

    id = Column(String(64), primary_key=True)
    restaurant_id = Column(String(64), nullable=False, index=True)
    table_label = Column(String(50), nullable=False, index=True)
    status = Column(
        Enum(OrderStatus, values_callable=_values, native_enum=False),
        nullable=False,
        default=OrderStatus.IN_PROGRESS,
        index=True,
    )
    items = Column(JSON, nullable=False, default=list)
    total_amount = Column(Numeric(14, 6), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Order {self.id} - {self.table_label} - {self.status.value}>"


class ServiceAlertRecord(Base):
    __tablename__ = "service_alerts"

    id = Column(String(64), primary_key=True)
    restaurant_id = Column(String(64), nullable=False, index=True)
    table_label = Column(String(50), nullable=False)
    type = Column(
        Enum(AlertType, values_callable=_values, native_enum=False),
        nullable=False,
    )
    message = Column(Text, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<ServiceAlert {self.type.value} @ {self.table_label}>"


class TaxRateRecord(Base):
    __tablename__ = "tax_rates"

    restaurant_id = Column(String(64), primary_key=True)
    name = Column(String(50), primary_key=True)
    percentage = Column(Numeric(8, 6), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<TaxRate {self.name} {self.percentage}>"
