"""
Intent Payload Schemas

Shapes exchanged with the voice assistant. The assistant resolves a spoken
request into an intent plus arguments and posts it for a table; the
response's ``result`` is read back to the customer.

Example payload:
    {
        "intent": "orderFood",
        "table": "Table 4",
        "arguments": {"itemName": "paneer tikka", "quantity": 2}
    }
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class IntentName(str, Enum):
    """Operations the assistant can request."""
    ORDER = "order"
    REMOVE = "remove"
    QUERY = "query"
    SERVICE = "service"
    BILL = "bill"

    @classmethod
    def parse(cls, value: str) -> Optional["IntentName"]:
        """Resolve an intent or one of the assistant's tool names; None if unknown."""
        key = (value or "").strip()
        alias = _TOOL_ALIASES.get(key)
        if alias is not None:
            return alias
        try:
            return cls(key.lower())
        except ValueError:
            return None


_TOOL_ALIASES = {
    "orderFood": IntentName.ORDER,
    "removeFood": IntentName.REMOVE,
    "queryMenu": IntentName.QUERY,
    "requestService": IntentName.SERVICE,
    "requestBill": IntentName.BILL,
}


class IntentPayload(BaseModel):
    intent: str = Field(..., description="Intent or tool name", examples=["orderFood"])
    table: str = Field(..., description="Table label or 'Online'", examples=["Table 4"])
    arguments: dict[str, Any] = Field(default_factory=dict)


class IntentResponse(BaseModel):
    """
    Response read back by the assistant.

    ``result`` always has ``success`` and ``message``; failures add ``code``
    and ``severity`` ("soft" failures just need a follow-up question).
    """
    result: dict[str, Any]
