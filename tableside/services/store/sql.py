"""
SQL Store Implementation

PostgreSQL-backed store on the SQLAlchemy async engine. Line items are
stored as a JSON list on the order row, so item changes are whole-row
replacements guarded by the ``version`` column:

    UPDATE orders SET ..., version = version + 1
    WHERE id = :id AND version = :expected_version

A partial unique index keeps a table to one In Progress order; a losing
concurrent insert surfaces as ConcurrencyConflict. Billing marks all of a
table's orders Paid in one transaction (``settle_orders``).
"""

import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tableside.core.exceptions import (
    AlertNotFound,
    ConcurrencyConflict,
    InvalidState,
    MenuItemNotFound,
    OrderNotFound,
    RepositoryError,
    TaxRateNotFound,
)
from tableside.database import get_session_maker
from tableside.models import (
    MenuItemRecord,
    OrderRecord,
    OrderStatus,
    RestaurantRecord,
    ServiceAlertRecord,
    TaxRateRecord,
)
from tableside.schemas import (
    MenuItem,
    Order,
    OrderItem,
    Restaurant,
    ServiceAlert,
    TaxRate,
    new_id,
    utcnow,
)
from tableside.services.feed.base import BaseChangeFeed
from tableside.services.store.base import BaseStore, OrderSettlement

logger = logging.getLogger(__name__)


def _dump_items(items: Sequence[OrderItem]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def _to_order(row: OrderRecord) -> Order:
    return Order(
        id=row.id,
        table=row.table_label,
        items=[OrderItem.model_validate(raw) for raw in row.items or []],
        status=row.status,
        total_amount=Decimal(row.total_amount),
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _to_menu_item(row: MenuItemRecord) -> MenuItem:
    return MenuItem(
        id=row.id,
        name=row.name,
        description=row.description or "",
        category=row.category,
        type=row.type,
        price=Decimal(row.price),
        availability=row.availability,
        image_url=row.image_url,
    )


def _to_alert(row: ServiceAlertRecord) -> ServiceAlert:
    return ServiceAlert(
        id=row.id,
        table=row.table_label,
        type=row.type,
        message=row.message,
        created_at=row.created_at,
        resolved=row.resolved,
    )


class SqlStore(BaseStore):
    """Real implementation of the store on PostgreSQL."""

    def __init__(
        self,
        restaurant_id: str,
        feed: Optional[BaseChangeFeed] = None,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        super().__init__(restaurant_id, feed)
        self._session_maker = session_maker or get_session_maker()
        logger.info(f"SqlStore initialized (restaurant={restaurant_id})")

    @property
    def provider_name(self) -> str:
        return "postgresql"

    def _session(self) -> AsyncSession:
        return self._session_maker()

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        query = (
            select(OrderRecord)
            .where(OrderRecord.restaurant_id == self.restaurant_id)
            .order_by(OrderRecord.created_at.desc())
        )
        if status is not None:
            query = query.where(OrderRecord.status == status)
        try:
            async with self._session() as session:
                result = await session.execute(query)
                return [_to_order(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not list orders: {e}") from e

    async def list_active_orders(self, table: str) -> list[Order]:
        query = (
            select(OrderRecord)
            .where(
                OrderRecord.restaurant_id == self.restaurant_id,
                OrderRecord.table_label == table,
                OrderRecord.status == OrderStatus.IN_PROGRESS,
            )
            .order_by(OrderRecord.created_at.desc())
        )
        try:
            async with self._session() as session:
                result = await session.execute(query)
                return [_to_order(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not fetch active orders for {table}: {e}") from e

    async def get_order(self, order_id: str) -> Optional[Order]:
        try:
            async with self._session() as session:
                row = await session.get(OrderRecord, order_id)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not fetch order {order_id}: {e}") from e
        if row is None or row.restaurant_id != self.restaurant_id:
            return None
        return _to_order(row)

    async def create_order(
        self,
        table: str,
        items: Sequence[OrderItem],
        total_amount: Decimal,
    ) -> Order:
        row = OrderRecord(
            id=new_id(),
            restaurant_id=self.restaurant_id,
            table_label=table,
            status=OrderStatus.IN_PROGRESS,
            items=_dump_items(items),
            total_amount=total_amount,
            version=1,
            created_at=utcnow(),
        )
        try:
            async with self._session() as session:
                session.add(row)
                await session.commit()
        except IntegrityError as e:
            raise ConcurrencyConflict(f"{table} already has an open order") from e
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not create order for {table}: {e}") from e

        logger.info(f"Order {row.id} created for {table}")
        await self._notify("orders", "INSERT", row.id)
        return _to_order(row)

    async def update_order(
        self,
        order_id: str,
        items: Sequence[OrderItem],
        total_amount: Decimal,
        status: Optional[OrderStatus] = None,
        expected_version: Optional[int] = None,
    ) -> Order:
        values: dict[str, Any] = {
            "items": _dump_items(items),
            "total_amount": total_amount,
            "version": OrderRecord.version + 1,
            "updated_at": utcnow(),
        }
        if status is not None:
            values["status"] = status

        conditions = [
            OrderRecord.id == order_id,
            OrderRecord.restaurant_id == self.restaurant_id,
            OrderRecord.status == OrderStatus.IN_PROGRESS,
        ]
        if expected_version is not None:
            conditions.append(OrderRecord.version == expected_version)

        try:
            async with self._session() as session:
                result = await session.execute(
                    update(OrderRecord)
                    .where(*conditions)
                    .values(**values)
                    .returning(OrderRecord)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    await session.rollback()
                    await self._raise_missed_update(session, order_id, expected_version)
                order = _to_order(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not update order {order_id}: {e}") from e

        await self._notify("orders", "UPDATE", order_id)
        return order

    async def _raise_missed_update(
        self,
        session: AsyncSession,
        order_id: str,
        expected_version: Optional[int],
    ) -> None:
        """Explain why a conditional UPDATE matched no row."""
        current = await session.get(OrderRecord, order_id)
        if current is None or current.restaurant_id != self.restaurant_id:
            raise OrderNotFound(order_id)
        if current.status == OrderStatus.PAID:
            raise InvalidState(f"Order {order_id} is already paid")
        raise ConcurrencyConflict(
            f"Order {order_id} changed (version {current.version}, "
            f"expected {expected_version})"
        )

    async def settle_orders(self, settlements: Sequence[OrderSettlement]) -> list[Order]:
        """Mark the orders Paid in a single transaction."""
        paid = []
        try:
            async with self._session() as session:
                for settlement in settlements:
                    result = await session.execute(
                        update(OrderRecord)
                        .where(
                            OrderRecord.id == settlement.order_id,
                            OrderRecord.restaurant_id == self.restaurant_id,
                            OrderRecord.status == OrderStatus.IN_PROGRESS,
                            OrderRecord.version == settlement.expected_version,
                        )
                        .values(
                            items=_dump_items(settlement.items),
                            total_amount=settlement.total_amount,
                            status=OrderStatus.PAID,
                            version=OrderRecord.version + 1,
                            updated_at=utcnow(),
                        )
                        .returning(OrderRecord)
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        # Undo the orders already marked in this transaction
                        await session.rollback()
                        await self._raise_missed_update(
                            session, settlement.order_id, settlement.expected_version
                        )
                    paid.append(_to_order(row))
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not settle orders: {e}") from e

        for order in paid:
            await self._notify("orders", "UPDATE", order.id)
        return paid

    async def delete_order(self, order_id: str, expected_version: Optional[int] = None) -> None:
        conditions = [
            OrderRecord.id == order_id,
            OrderRecord.restaurant_id == self.restaurant_id,
        ]
        if expected_version is not None:
            conditions.append(OrderRecord.version == expected_version)

        try:
            async with self._session() as session:
                result = await session.execute(delete(OrderRecord).where(*conditions))
                if result.rowcount == 0:
                    await session.rollback()
                    if await session.get(OrderRecord, order_id) is None:
                        raise OrderNotFound(order_id)
                    raise ConcurrencyConflict(f"Order {order_id} changed before delete")
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not delete order {order_id}: {e}") from e

        await self._notify("orders", "DELETE", order_id)

    # =========================================================================
    # MENU
    # =========================================================================

    async def list_menu_items(self) -> list[MenuItem]:
        query = (
            select(MenuItemRecord)
            .where(MenuItemRecord.restaurant_id == self.restaurant_id)
            .order_by(MenuItemRecord.name)
        )
        try:
            async with self._session() as session:
                result = await session.execute(query)
                return [_to_menu_item(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not list menu items: {e}") from e

    async def get_menu_item(self, item_id: str) -> Optional[MenuItem]:
        try:
            async with self._session() as session:
                row = await session.get(MenuItemRecord, item_id)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not fetch menu item {item_id}: {e}") from e
        if row is None or row.restaurant_id != self.restaurant_id:
            return None
        return _to_menu_item(row)

    async def add_menu_item(self, item: MenuItem) -> MenuItem:
        row = MenuItemRecord(restaurant_id=self.restaurant_id, **item.model_dump())
        try:
            async with self._session() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not add menu item {item.name}: {e}") from e

        await self._notify("menu_items", "INSERT", item.id)
        return item

    async def update_menu_item(self, item: MenuItem) -> MenuItem:
        try:
            async with self._session() as session:
                row = await session.get(MenuItemRecord, item.id)
                if row is None or row.restaurant_id != self.restaurant_id:
                    raise MenuItemNotFound(item.id)
                for key, value in item.model_dump(exclude={"id"}).items():
                    setattr(row, key, value)
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not update menu item {item.id}: {e}") from e

        await self._notify("menu_items", "UPDATE", item.id)
        return item

    async def delete_menu_item(self, item_id: str) -> None:
        try:
            async with self._session() as session:
                result = await session.execute(
                    delete(MenuItemRecord).where(
                        MenuItemRecord.id == item_id,
                        MenuItemRecord.restaurant_id == self.restaurant_id,
                    )
                )
                if result.rowcount == 0:
                    raise MenuItemNotFound(item_id)
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not delete menu item {item_id}: {e}") from e

        await self._notify("menu_items", "DELETE", item_id)

    # =========================================================================
    # TAX RATES
    # =========================================================================

    async def list_tax_rates(self) -> list[TaxRate]:
        query = (
            select(TaxRateRecord)
            .where(TaxRateRecord.restaurant_id == self.restaurant_id)
            .order_by(TaxRateRecord.position, TaxRateRecord.name)
        )
        try:
            async with self._session() as session:
                result = await session.execute(query)
                return [
                    TaxRate(name=row.name, percentage=Decimal(row.percentage))
                    for row in result.scalars().all()
                ]
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not list tax rates: {e}") from e

    async def upsert_tax_rate(self, rate: TaxRate) -> TaxRate:
        try:
            async with self._session() as session:
                row = await session.get(TaxRateRecord, (self.restaurant_id, rate.name))
                if row is None:
                    position = await session.scalar(
                        select(func.count()).select_from(TaxRateRecord).where(
                            TaxRateRecord.restaurant_id == self.restaurant_id
                        )
                    )
                    session.add(TaxRateRecord(
                        restaurant_id=self.restaurant_id,
                        name=rate.name,
                        percentage=rate.percentage,
                        position=position or 0,
                    ))
                    action = "INSERT"
                else:
                    row.percentage = rate.percentage
                    action = "UPDATE"
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not save tax rate {rate.name}: {e}") from e

        await self._notify("tax_rates", action, rate.name)
        return rate

    async def delete_tax_rate(self, name: str) -> None:
        try:
            async with self._session() as session:
                result = await session.execute(
                    delete(TaxRateRecord).where(
                        TaxRateRecord.restaurant_id == self.restaurant_id,
                        TaxRateRecord.name == name,
                    )
                )
                if result.rowcount == 0:
                    raise TaxRateNotFound(name)
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not delete tax rate {name}: {e}") from e

        await self._notify("tax_rates", "DELETE", name)

    # =========================================================================
    # RESTAURANT
    # =========================================================================

    async def get_restaurant(self) -> Optional[Restaurant]:
        try:
            async with self._session() as session:
                row = await session.get(RestaurantRecord, self.restaurant_id)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not fetch restaurant: {e}") from e
        if row is None:
            return None
        return Restaurant(id=row.id, name=row.name, total_tables=row.total_tables)

    async def ensure_restaurant(self, name: str, total_tables: int) -> Restaurant:
        existing = await self.get_restaurant()
        if existing is not None:
            return existing
        try:
            async with self._session() as session:
                session.add(RestaurantRecord(
                    id=self.restaurant_id, name=name, total_tables=total_tables
                ))
                await session.commit()
        except IntegrityError:
            # Another process seeded it first.
            return await self.get_restaurant()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not create restaurant: {e}") from e

        logger.info(f"Restaurant {self.restaurant_id} created with {total_tables} tables")
        await self._notify("restaurants", "INSERT", self.restaurant_id)
        return Restaurant(id=self.restaurant_id, name=name, total_tables=total_tables)

    async def set_total_tables(self, total_tables: int) -> Restaurant:
        try:
            async with self._session() as session:
                row = await session.get(RestaurantRecord, self.restaurant_id)
                if row is None:
                    row = RestaurantRecord(
                        id=self.restaurant_id, name=self.restaurant_id, total_tables=total_tables
                    )
                    session.add(row)
                else:
                    row.total_tables = total_tables
                await session.commit()
                restaurant = Restaurant(id=row.id, name=row.name, total_tables=row.total_tables)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not update table capacity: {e}") from e

        await self._notify(
            "restaurants", "UPDATE", self.restaurant_id, total_tables=total_tables
        )
        return restaurant

    # =========================================================================
    # SERVICE ALERTS
    # =========================================================================

    async def create_alert(self, alert: ServiceAlert) -> ServiceAlert:
        row = ServiceAlertRecord(
            id=alert.id,
            restaurant_id=self.restaurant_id,
            table_label=alert.table,
            type=alert.type,
            message=alert.message,
            resolved=alert.resolved,
            created_at=alert.created_at,
        )
        try:
            async with self._session() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not create service alert: {e}") from e

        await self._notify("service_alerts", "INSERT", alert.id)
        return alert

    async def resolve_alert(self, alert_id: str) -> ServiceAlert:
        try:
            async with self._session() as session:
                row = await session.get(ServiceAlertRecord, alert_id)
                if row is None or row.restaurant_id != self.restaurant_id:
                    raise AlertNotFound(alert_id)
                row.resolved = True
                await session.commit()
                alert = _to_alert(row)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not resolve alert {alert_id}: {e}") from e

        await self._notify("service_alerts", "UPDATE", alert_id)
        return alert

    async def list_open_alerts(self) -> list[ServiceAlert]:
        query = (
            select(ServiceAlertRecord)
            .where(
                ServiceAlertRecord.restaurant_id == self.restaurant_id,
                ServiceAlertRecord.resolved.is_(False),
            )
            .order_by(ServiceAlertRecord.created_at.desc())
        )
        try:
            async with self._session() as session:
                result = await session.execute(query)
                return [_to_alert(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryError(f"Could not list service alerts: {e}") from e

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def health_check(self) -> bool:
        try:
            async with self._session() as session:
                await session.execute(select(func.now()))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
