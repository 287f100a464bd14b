"""
Chat Schemas for Chow Bot
=========================

Pydantic models for the chat endpoint.

Endpoint Coverage:
------------------
- POST /chat/message: Send an option token and receive the next reply

Key Concepts:
-------------
1. **Option tokens**: The client echoes back the ``value`` of one of the
   options it was offered. Free text is not interpreted.

2. **Actions**: An option with ``action: "initiate_payment"`` tells the
   client to call the payment API instead of sending the token back.

3. **Order snapshot**: Replies that concern the cart carry a snapshot with
   line name, unit price and quantity plus the total.

Validation:
-----------
- userId is required and non-empty
- message is required; empty or over-long tokens get the "Invalid option" reply
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ChatMessageRequest(BaseModel):
    """
    Request body for POST /chat/message.

    Attributes:
        userId: Client-generated session id
        message: Option token
    """
    userId: str = Field(..., min_length=1, max_length=200)
    message: str


class ChatOptionOut(BaseModel):
    value: str
    text: str
    action: Optional[str] = None


class OrderLineOut(BaseModel):
    name: str
    price: int
    quantity: int


class OrderSnapshotOut(BaseModel):
    items: List[OrderLineOut] = []
    total: int = 0


class ChatMessageResponse(BaseModel):
    """
    Reply to a chat message.

    Attributes:
        message: Text to display
        options: Next options; never empty
        order: Cart snapshot when the reply concerns an order
    """
    message: str
    options: List[ChatOptionOut]
    order: Optional[OrderSnapshotOut] = None
