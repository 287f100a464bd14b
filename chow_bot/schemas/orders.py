"""
Order and Menu Schemas for Chow Bot
===================================

Response models for the read-only order and menu endpoints.

Endpoint Coverage:
------------------
- GET /orders/current/{userId}: The user's open order (or an empty cart)
- GET /orders/history/{userId}: Placed and paid orders, newest first
- GET /menu: Categories and available items

Timestamps are serialized as ISO 8601 strings in UTC.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .chat import OrderLineOut


class CurrentOrderOut(BaseModel):
    """An empty cart is ``{items: [], total: 0}`` with no id or status."""
    items: List[OrderLineOut] = []
    total: int = 0
    id: Optional[int] = None
    status: Optional[str] = None
    paymentStatus: Optional[str] = None


class OrderHistoryItemOut(BaseModel):
    id: int
    items: List[OrderLineOut]
    total: int
    status: str
    paymentStatus: str
    createdAt: datetime
    placedAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None


class MenuItemOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: int
    category: str


class MenuOut(BaseModel):
    categories: List[str]
    items: List[MenuItemOut]
