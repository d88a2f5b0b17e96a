"""
Voice Intent Handler

Executes the intents the voice assistant resolves from a customer's speech
(order, remove, query, service, bill) against one table, and turns every
outcome into a result the assistant can read back.

Business-rule failures come back as ``success: false`` with a ``code`` and
a ``severity``. Soft failures (unknown dish, nothing to bill yet, pending
items awaiting confirmation) are part of a normal conversation and only
need a follow-up question.
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from tableside.core.exceptions import (
    BusinessRuleError,
    InvalidQuantity,
    ItemNotInOrder,
    MenuItemNotFound,
    NoActiveOrder,
    OrderingError,
    PendingConfirmationRequired,
    RepositoryError,
)
from tableside.models import ItemStatus
from tableside.schemas import Bill
from tableside.services import (
    get_billing_reconciler,
    get_cart_engine,
    get_order_view,
    get_service_desk,
)
from tableside.services.alerts import ServiceDesk, parse_alert_type
from tableside.services.billing import BillingReconciler
from tableside.services.cart import CartEngine
from tableside.services.menu import filter_menu, find_menu_item
from tableside.services.store.base import bounded
from tableside.services.sync import OrderView
from tableside.services.tables import normalize_table
from tableside.services.tax import quantize_money
from tableside.services.voice.schemas import IntentName, IntentPayload, IntentResponse
from tableside.tasks import queue_bill_export

logger = logging.getLogger(__name__)


class IntentHandler:
    """
    Handles assistant intents for the active restaurant.

    Supported intents (assistant tool name in brackets):
        - order [orderFood]: itemName, quantity
        - remove [removeFood]: itemName
        - query [queryMenu]: itemName, category, type, attribute
        - service [requestService]: serviceType
        - bill [requestBill]: confirmCancelPending
    """

    def __init__(
        self,
        cart: Optional[CartEngine] = None,
        billing: Optional[BillingReconciler] = None,
        desk: Optional[ServiceDesk] = None,
        view: Optional[OrderView] = None,
    ):
        self.cart = cart or get_cart_engine()
        self.billing = billing or get_billing_reconciler()
        self.desk = desk or get_service_desk()
        self.view = view or get_order_view()
        self.store = self.cart.store

        self._handlers = {
            IntentName.ORDER: self._intent_order,
            IntentName.REMOVE: self._intent_remove,
            IntentName.QUERY: self._intent_query,
            IntentName.SERVICE: self._intent_service,
            IntentName.BILL: self._intent_bill,
        }

    async def handle(self, payload: IntentPayload) -> dict[str, Any]:
        """Main entry point for one assistant intent."""
        intent = IntentName.parse(payload.intent)
        logger.info(f"Intent {payload.intent!r} for {payload.table!r}")
        logger.debug(f"Arguments: {payload.arguments}")

        if intent is None:
            logger.warning(f"Unknown intent: {payload.intent}")
            return self._response(
                success=False,
                code="UNKNOWN_INTENT",
                severity="soft",
                message="Sorry, I didn't quite get that. Could you please rephrase?",
            )

        try:
            table = normalize_table(payload.table, self.view.total_tables)
            return await self._handlers[intent](table, payload.arguments)
        except BusinessRuleError as e:
            logger.info(f"{intent.value} rejected for {payload.table}: {e.code}")
            return self._failure(e)
        except RepositoryError as e:
            logger.warning(f"{intent.value} failed on store error: {e.message}")
            return self._failure(
                e,
                message="I'm having trouble reaching the kitchen right now. Please try again in a moment.",
            )

    # =========================================================================
    # INTENTS
    # =========================================================================

    async def _menu(self):
        return await bounded(self.store.list_menu_items(), self.cart.timeout)

    async def _intent_order(self, table: str, args: dict[str, Any]) -> dict[str, Any]:
        name = _as_text(args.get("itemName"))
        quantity = _as_int(args.get("quantity", 1))

        menu_item = find_menu_item(await self._menu(), name)
        if menu_item is None:
            raise MenuItemNotFound(name)

        order = await self.cart.add_item(table, menu_item, quantity)
        return self._response(
            success=True,
            message=f"Added {quantity} {menu_item.name} to your order.",
            order_id=order.id,
            total=str(quantize_money(order.total_amount)),
        )

    async def _intent_remove(self, table: str, args: dict[str, Any]) -> dict[str, Any]:
        spoken = _as_text(args.get("itemName"))
        name = spoken.lower()

        order = await bounded(self.store.find_active_order(table), self.cart.timeout)
        if order is None:
            raise NoActiveOrder(table)

        matches = [line for line in order.items if name and name in line.name.lower()]
        if not matches:
            raise ItemNotInOrder(spoken)
        pending = [line for line in matches if line.status == ItemStatus.PENDING]
        line = pending[0] if pending else matches[0]

        remaining = await self.cart.remove_item(table, line.line_id)
        return self._response(
            success=True,
            message=f"Removed {line.name} from your order.",
            order_id=remaining.id if remaining else None,
        )

    async def _intent_query(self, table: str, args: dict[str, Any]) -> dict[str, Any]:
        items = filter_menu(
            await self._menu(),
            name=_as_text(args.get("itemName")),
            category=_as_text(args.get("category")),
            meal_type=_as_text(args.get("type")),
            attribute=_as_text(args.get("attribute")),
        )
        if not items:
            return self._response(
                success=True,
                items=[],
                message="I couldn't find anything on the menu matching that.",
            )

        names = ", ".join(item.name for item in items)
        return self._response(
            success=True,
            items=[
                {
                    "id": item.id,
                    "name": item.name,
                    "price": str(item.price),
                    "category": item.category.value,
                    "type": item.type.value,
                    "available": item.availability,
                }
                for item in items
            ],
            message=f"Here's what I found: {names}.",
        )

    async def _intent_service(self, table: str, args: dict[str, Any]) -> dict[str, Any]:
        requested = _as_text(args.get("serviceType"))
        if not requested:
            return self._response(
                success=False,
                code="MISSING_SERVICE_TYPE",
                severity="soft",
                message="Sure, what can we bring you?",
            )

        alert = await self.desk.raise_alert(table, parse_alert_type(requested))
        return self._response(
            success=True,
            alert_id=alert.id,
            message=(
                f"A staff member has been alerted for your {requested} request. "
                "They will be with you shortly."
            ),
        )

    async def _intent_bill(self, table: str, args: dict[str, Any]) -> dict[str, Any]:
        confirm = _as_confirmation(args.get("confirmCancelPending"))
        try:
            bill = await self.billing.generate_bill(table, confirm_cancel_pending=confirm)
        except PendingConfirmationRequired as e:
            result = e.to_dict()
            result["message"] = (
                f"I noticed you still have some items pending: {', '.join(e.pending_items)}. "
                "Would you like me to cancel them and prepare the bill for the served items?"
            )
            return IntentResponse(result=result).model_dump(mode="json")

        queue_bill_export(bill)
        return self._bill_response(bill)

    # =========================================================================
    # RESPONSES
    # =========================================================================

    def _bill_response(self, bill: Bill) -> dict[str, Any]:
        total = quantize_money(bill.total_amount)
        return self._response(
            success=True,
            bill_id=bill.bill_id,
            total=str(total),
            items=[
                {"name": line.name, "quantity": line.quantity, "price": str(line.price)}
                for line in bill.items
            ],
            message=f"Your bill for {bill.table} comes to {total}. Thank you for dining with us!",
        )

    def _response(self, **result: Any) -> dict[str, Any]:
        return IntentResponse(result=result).model_dump(mode="json")

    def _failure(self, error: OrderingError, message: Optional[str] = None) -> dict[str, Any]:
        result = error.to_dict()
        if message:
            result["message"] = message
        return IntentResponse(result=result).model_dump(mode="json")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

_AFFIRMATIVE = {"true", "yes", "y", "1"}


def _as_text(value: Any) -> str:
    """Spoken arguments arrive as strings or numbers; missing means empty."""
    if value is None:
        return ""
    return str(value).strip()


def _as_int(value: Any) -> int:
    """Whole quantities only: 2, "2" and 2.0 pass, 2.7 and "two" do not."""
    if isinstance(value, bool):
        raise InvalidQuantity(value)
    try:
        number = Decimal(_as_text(value))
    except ArithmeticError:
        raise InvalidQuantity(value)
    if not number.is_finite() or number != number.to_integral_value():
        raise InvalidQuantity(value)
    return int(number)


def _as_confirmation(value: Any) -> bool:
    """Only an explicit yes counts; "false", "no" or anything unclear does not."""
    if isinstance(value, bool):
        return value
    return _as_text(value).lower() in _AFFIRMATIVE


_handler_instance: Optional[IntentHandler] = None


def get_intent_handler() -> IntentHandler:
    """Get the intent handler instance."""
    global _handler_instance

    if _handler_instance is None:
        _handler_instance = IntentHandler()

    return _handler_instance


def reset_intent_handler() -> None:
    global _handler_instance
    _handler_instance = None
