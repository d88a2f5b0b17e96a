"""
Change Feed Abstract Base Class

A change feed carries row-change notifications ("the orders table changed
for restaurant X") from whoever wrote to the store to every sync
coordinator watching that restaurant. Notifications are hints to re-read
the store; they never carry authoritative state.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional


@dataclass
class ChangeEvent:
    """
    A single row-change notification.

    Attributes:
        table: Logical table name ("orders", "menu_items", "service_alerts",
            "restaurants", "tax_rates")
        action: "INSERT", "UPDATE" or "DELETE"
        restaurant_id: Restaurant the changed row belongs to
        record_id: Primary key of the changed row, if known
        data: Small payload for changes that can be applied without a
            refetch (e.g. total_tables)
    """
    table: str
    action: str
    restaurant_id: str
    record_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    emitted_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict) -> "ChangeEvent":
        return cls(
            table=raw["table"],
            action=raw["action"],
            restaurant_id=raw["restaurant_id"],
            record_id=raw.get("record_id"),
            data=raw.get("data") or {},
            emitted_at=raw.get("emitted_at") or datetime.now(timezone.utc).isoformat(),
        )


class BaseChangeFeed(ABC):
    """Abstract base class for change feed transports."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """
        Broadcast ``event`` to current subscribers.

        Best effort: a lost notification is covered by the fallback poll.
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        on_ready: Optional[Callable[[], None]] = None,
    ) -> AsyncIterator[ChangeEvent]:
        """
        Yield events until the subscription breaks.

        ``on_ready`` is called once the subscription is established. A broken
        channel raises out of the iterator; callers reconnect by subscribing
        again.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check transport connectivity."""
        pass

    async def close(self) -> None:
        """Release connections held by the feed."""
        return None
