"""
Order Routes for Chow Bot
=========================

Read-only views used by the chat widget's sidebar.

Endpoints:
----------
- GET /orders/current/{userId}: The open order (pending, or placed and unpaid)
- GET /orders/history/{userId}: Placed and paid orders, newest first

Unknown users get an empty cart / empty history; these endpoints never
create users.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from ..schemas.chat import OrderLineOut
from ..schemas.orders import CurrentOrderOut, OrderHistoryItemOut
from ..services.order import get_payable_order, order_history
from ..storage import get_storage
from ..storage.base import OrderRecord, StorageBackend

logger = logging.getLogger(__name__)

orders_router = APIRouter(prefix="/orders", tags=["Orders"])


def _lines(order: OrderRecord) -> List[OrderLineOut]:
    return [
        OrderLineOut(name=line.name, price=line.unit_price, quantity=line.quantity)
        for line in order.items
    ]


@orders_router.get("/current/{userId}", response_model=CurrentOrderOut)
def current_order(userId: str, storage: StorageBackend = Depends(get_storage)) -> CurrentOrderOut:
    user = storage.get_user(userId.strip())
    if user is None:
        return CurrentOrderOut()

    order = get_payable_order(storage, user)
    if order is None or not order.items:
        return CurrentOrderOut()

    return CurrentOrderOut(
        items=_lines(order),
        total=order.total,
        id=order.id,
        status=order.status,
        paymentStatus=order.payment_status,
    )


@orders_router.get("/history/{userId}", response_model=List[OrderHistoryItemOut])
def history(userId: str, storage: StorageBackend = Depends(get_storage)) -> List[OrderHistoryItemOut]:
    user = storage.get_user(userId.strip())
    if user is None:
        return []

    return [
        OrderHistoryItemOut(
            id=order.id,
            items=_lines(order),
            total=order.total,
            status=order.status,
            paymentStatus=order.payment_status,
            createdAt=order.created_at,
            placedAt=order.placed_at,
            paidAt=order.paid_at,
        )
        for order in order_history(storage, user)
    ]
