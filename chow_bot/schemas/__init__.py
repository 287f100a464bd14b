"""
Schemas Package for Chow Bot
============================

Pydantic models used for API request validation and response serialization.

Schema Organization:
--------------------
- **chat.py**: Chat message request/response and order snapshots
- **payment.py**: Payment initialize/verify envelopes
- **orders.py**: Current order, order history and menu views

Field names follow the JSON the chat widget already speaks (``userId``,
``authorization_url``), so some are camelCase and some snake_case.

Usage:
------
    from chow_bot.schemas import ChatMessageRequest, ChatMessageResponse
"""

from .chat import (
    ChatMessageRequest,
    ChatMessageResponse,
    ChatOptionOut,
    OrderLineOut,
    OrderSnapshotOut,
)
from .orders import (
    CurrentOrderOut,
    MenuItemOut,
    MenuOut,
    OrderHistoryItemOut,
)
from .payment import (
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentIntentOut,
    PaymentResultOut,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)

__all__ = [
    "ChatMessageRequest",
    "ChatMessageResponse",
    "ChatOptionOut",
    "OrderLineOut",
    "OrderSnapshotOut",
    "CurrentOrderOut",
    "MenuItemOut",
    "MenuOut",
    "OrderHistoryItemOut",
    "PaymentInitializeRequest",
    "PaymentInitializeResponse",
    "PaymentIntentOut",
    "PaymentResultOut",
    "PaymentVerifyRequest",
    "PaymentVerifyResponse",
]
