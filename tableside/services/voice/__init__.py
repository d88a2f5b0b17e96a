"""
Voice Service Module

Runs the intents a voice assistant resolves from customer speech.

Usage:
    from tableside.services.voice import get_intent_handler

    handler = get_intent_handler()
    response = await handler.handle(payload)
"""

from tableside.services.voice.handler import (
    IntentHandler,
    get_intent_handler,
    reset_intent_handler,
)
from tableside.services.voice.schemas import (
    IntentName,
    IntentPayload,
    IntentResponse,
)

__all__ = [
    # Handler
    "IntentHandler",
    "get_intent_handler",
    "reset_intent_handler",
    # Schemas
    "IntentName",
    "IntentPayload",
    "IntentResponse",
]
