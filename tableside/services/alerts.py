"""
Service requests raised from a table (water, napkins, a server...).
"""

import logging
from typing import Optional

from tableside.core.config import get_settings
from tableside.models import AlertType
from tableside.schemas import ServiceAlert
from tableside.services.store.base import BaseStore, bounded
from tableside.services.sync import OrderView

logger = logging.getLogger(__name__)


def parse_alert_type(value: str) -> AlertType:
    """Map a free-form request onto an AlertType; unknown requests are CUSTOM."""
    wanted = (value or "").strip().lower()
    for alert_type in AlertType:
        if alert_type.value == wanted:
            return alert_type
    return AlertType.CUSTOM


class ServiceDesk:
    def __init__(
        self,
        store: BaseStore,
        view: Optional[OrderView] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.view = view
        self.timeout = timeout or get_settings().store_timeout_seconds

    async def raise_alert(
        self,
        table: str,
        alert_type: AlertType,
        message: Optional[str] = None,
    ) -> ServiceAlert:
        alert = ServiceAlert(
            table=table,
            type=alert_type,
            message=message or f"Service requested: {alert_type.value}",
        )
        created = await bounded(self.store.create_alert(alert), self.timeout)
        if self.view is not None:
            self.view.upsert_alert(created)
        logger.info(f"{table} requested {alert_type.value}")
        return created

    async def resolve(self, alert_id: str) -> ServiceAlert:
        """
        Raises:
            AlertNotFound: no alert with that id
        """
        resolved = await bounded(self.store.resolve_alert(alert_id), self.timeout)
        if self.view is not None:
            self.view.upsert_alert(resolved)
        return resolved
