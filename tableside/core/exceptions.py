"""
Ordering Exceptions

Every failure the ordering core reports is one of these types. Business-rule
outcomes carry a stable ``code`` and a ``soft`` flag:

    - soft: recoverable by the customer (ask a follow-up question); must not
      flip any error indicator in the caller
    - hard: the request cannot succeed as asked

Infrastructure failures (store I/O, timeouts, version conflicts) derive from
RepositoryError and are reported as degraded service, not as business
outcomes.
"""

from typing import Optional


class OrderingError(Exception):
    """Base class for all ordering failures."""

    code = "ORDERING_ERROR"
    soft = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    @property
    def severity(self) -> str:
        return "soft" if self.soft else "hard"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON responses."""
        return {
            "success": False,
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
        }


# =============================================================================
# BUSINESS RULES
# =============================================================================

class BusinessRuleError(OrderingError):
    """A request rejected by an ordering or billing rule."""


class NoActiveOrder(BusinessRuleError):
    code = "NO_ACTIVE_ORDER"
    soft = True

    def __init__(self, table: str):
        super().__init__(f"No active orders found for {table}.")
        self.table = table


class ItemsPreparing(BusinessRuleError):
    code = "ITEMS_PREPARING"

    def __init__(self, items: list[str]):
        super().__init__(
            "Bill cannot be generated as there are items currently being prepared: "
            + ", ".join(items)
        )
        self.items = items


class PendingConfirmationRequired(BusinessRuleError):
    """Billing would cancel pending items; the customer has to agree first."""

    code = "PENDING_ITEMS"
    soft = True

    def __init__(self, pending_items: list[str]):
        super().__init__(
            "Some items have not been prepared yet: " + ", ".join(pending_items)
        )
        self.pending_items = pending_items

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["pending_items"] = self.pending_items
        return data


class NoServedItems(BusinessRuleError):
    code = "NO_SERVED_ITEMS"

    def __init__(self, table: str):
        super().__init__(f"No served items found to generate a bill for {table}.")
        self.table = table


class InvalidState(BusinessRuleError):
    """The order or line is not in a state that allows the operation."""

    code = "INVALID_STATE"


class InvalidTransition(BusinessRuleError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move an item from {current} to {requested}.")
        self.current = current
        self.requested = requested


class OrderNotFound(BusinessRuleError):
    code = "ORDER_NOT_FOUND"
    soft = True

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found.")
        self.order_id = order_id


class ItemNotInOrder(BusinessRuleError):
    code = "ITEM_NOT_IN_ORDER"
    soft = True

    def __init__(self, item_ref: str):
        super().__init__(f"Item {item_ref} is not part of the current order.")
        self.item_ref = item_ref


class MenuItemNotFound(BusinessRuleError):
    code = "MENU_ITEM_NOT_FOUND"
    soft = True

    def __init__(self, item_ref: str):
        super().__init__(f"Menu item {item_ref} not found.")
        self.item_ref = item_ref


class AlertNotFound(BusinessRuleError):
    code = "ALERT_NOT_FOUND"
    soft = True

    def __init__(self, alert_id: str):
        super().__init__(f"Service alert {alert_id} not found.")
        self.alert_id = alert_id


class TaxRateNotFound(BusinessRuleError):
    code = "TAX_RATE_NOT_FOUND"
    soft = True

    def __init__(self, name: str):
        super().__init__(f"Tax rate {name!r} not found.")
        self.name = name


class ItemUnavailable(BusinessRuleError):
    code = "ITEM_UNAVAILABLE"
    soft = True

    def __init__(self, name: str):
        super().__init__(f"{name} is currently unavailable.")
        self.name = name


class InvalidQuantity(BusinessRuleError):
    code = "INVALID_QUANTITY"
    soft = True

    def __init__(self, quantity: object):
        super().__init__(f"Quantity must be a whole number of at least 1 (got {quantity!r}).")
        self.quantity = quantity


class InvalidTable(BusinessRuleError):
    code = "INVALID_TABLE"
    soft = True

    def __init__(self, table: str, total_tables: int):
        super().__init__(
            f"{table!r} is not a valid table. Choose Table 1 to Table {total_tables} or Online."
        )
        self.table = table


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

class RepositoryError(OrderingError):
    """The backing store failed or could not be reached."""

    code = "REPOSITORY_ERROR"
    retryable = False


class RepositoryTimeout(RepositoryError):
    code = "REPOSITORY_TIMEOUT"
    retryable = True


class ConcurrencyConflict(RepositoryError):
    """A conditional write lost a race with another writer."""

    code = "CONCURRENCY_CONFLICT"
    retryable = True
