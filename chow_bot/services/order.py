"""
Order Lifecycle Service for Chow Bot
====================================

Cart mutations and the order state machine. Every write goes through
``StorageBackend.update_order`` so concurrent requests against one order are
serialized and the total is recomputed from the line items by the backend.

State Machine:
--------------
    pending --place--> placed --pay--> paid
       |
       +--cancel--> cancelled

- ``paid`` and ``cancelled`` are terminal.
- A failed payment leaves the order ``placed`` with payment status
  ``failed``; the user may retry.
- The session's cart is its single ``pending`` order. Placing an order keeps
  it as the user's current order until it is paid so payment can be retried.

History:
--------
An order joins the user's history list when it is placed or cancelled. The
history view shows placed and paid orders, newest first by placement time
(creation time when never placed).
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import InvalidTransition, PersistenceError
from ..storage.base import (
    LineItem,
    MenuItemRecord,
    OrderRecord,
    StorageBackend,
    UserRecord,
    compute_total,
    utcnow,
)

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PLACED = "placed"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PLACED, OrderStatus.CANCELLED},
    OrderStatus.PLACED: {OrderStatus.PAID},
    OrderStatus.PAID: set(),
    OrderStatus.CANCELLED: set(),
}

HISTORY_STATUSES = (OrderStatus.PLACED.value, OrderStatus.PAID.value)


def assert_transition(current: str, target: str) -> None:
    """Raise InvalidTransition unless ``current -> target`` is allowed."""
    current_status = OrderStatus(current)
    target_status = OrderStatus(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransition(
            f"Order cannot move from {current_status.value} to {target_status.value}",
            current=current_status.value,
            target=target_status.value,
        )


# =============================================================================
# Queries
# =============================================================================

def get_current_order(storage: StorageBackend, user: UserRecord) -> Optional[OrderRecord]:
    """The order the user's current-order reference points at, if any."""
    fresh = storage.get_user(user.session_id) or user
    if fresh.current_order_id is None:
        return None
    return storage.get_order(fresh.current_order_id)


def get_cart(storage: StorageBackend, user: UserRecord) -> Optional[OrderRecord]:
    """The user's pending cart, or None."""
    order = get_current_order(storage, user)
    if order is None or order.status != OrderStatus.PENDING.value:
        return None
    return order


def get_payable_order(storage: StorageBackend, user: UserRecord) -> Optional[OrderRecord]:
    """The current order if it can still be paid: pending, or placed and unpaid."""
    order = get_current_order(storage, user)
    if order is None:
        return None
    if order.status == OrderStatus.PENDING.value:
        return order
    if order.status == OrderStatus.PLACED.value and order.payment_status != PaymentStatus.SUCCESS.value:
        return order
    return None


def order_history(storage: StorageBackend, user: UserRecord) -> List[OrderRecord]:
    """Placed and paid orders from the user's history ledger, newest first."""
    fresh = storage.get_user(user.session_id) or user
    orders = [storage.get_order(order_id) for order_id in fresh.order_history]
    orders = [o for o in orders if o is not None and o.status in HISTORY_STATUSES]
    return sorted(orders, key=lambda o: (o.placed_at or o.created_at, o.id), reverse=True)


def order_snapshot(order: Optional[OrderRecord]) -> Optional[Dict[str, Any]]:
    """Client-facing view of an order: line name, unit price and quantity plus total."""
    if order is None:
        return None
    return {
        "items": [
            {"name": line.name, "price": line.unit_price, "quantity": line.quantity}
            for line in order.items
        ],
        "total": compute_total(order.items),
    }


# =============================================================================
# Cart mutations
# =============================================================================

def add_item_to_cart(storage: StorageBackend, user: UserRecord, menu_item: MenuItemRecord) -> OrderRecord:
    """
    Add one unit of ``menu_item`` to the user's cart.

    A repeated item bumps the existing line's quantity. If the cart stops
    being pending between lookup and write (it was placed or cancelled by a
    concurrent request), that order is left alone and a fresh cart is used.
    """
    if not menu_item.available:
        raise InvalidTransition(f"{menu_item.name} is currently unavailable")

    def add_line(order: OrderRecord) -> None:
        if order.status != OrderStatus.PENDING.value:
            raise InvalidTransition(
                "Cart is no longer open",
                current=order.status,
                target=OrderStatus.PENDING.value,
            )
        line = order.find_line(menu_item.id)
        if line is not None:
            line.quantity += 1
        else:
            order.items.append(
                LineItem(
                    menu_item_id=menu_item.id,
                    name=menu_item.name,
                    unit_price=menu_item.price,
                    quantity=1,
                )
            )

    for _ in range(3):
        cart = storage.get_or_create_cart(user.session_id)
        try:
            order = storage.update_order(cart.id, add_line)
        except InvalidTransition:
            logger.info("Cart #%d closed before add, starting a new cart", cart.id)
            continue
        logger.info("Added menu item #%d to order #%d (total %d)", menu_item.id, order.id, order.total)
        return order

    raise PersistenceError("add_item_to_cart", "cart kept closing during update")


def cancel_cart(storage: StorageBackend, user: UserRecord) -> Optional[OrderRecord]:
    """Cancel the user's pending cart. Returns None when there is nothing to cancel."""
    cart = get_cart(storage, user)
    if cart is None:
        return None

    def cancel(order: OrderRecord) -> None:
        assert_transition(order.status, OrderStatus.CANCELLED.value)
        order.status = OrderStatus.CANCELLED.value
        order.cancelled_at = utcnow()

    order = storage.update_order(cart.id, cancel)
    storage.clear_current_order(user.session_id, order.id)
    storage.append_order_history(user.session_id, order.id)
    logger.info("Order #%d cancelled", order.id)
    return order


# =============================================================================
# Payment transitions
# =============================================================================

def place_order(storage: StorageBackend, order_id: int) -> OrderRecord:
    """
    Move a non-empty cart to ``placed``.

    Placing an already placed, unpaid order is a retry: it only resets the
    payment status for the new attempt.
    """
    def place(order: OrderRecord) -> None:
        if order.status == OrderStatus.PLACED.value:
            if order.payment_status == PaymentStatus.SUCCESS.value:
                raise InvalidTransition("Order is already paid", current=order.status)
            order.payment_status = PaymentStatus.PENDING.value
            return
        assert_transition(order.status, OrderStatus.PLACED.value)
        if not order.items:
            raise InvalidTransition("Cannot place an empty order", current=order.status)
        order.status = OrderStatus.PLACED.value
        order.payment_status = PaymentStatus.PENDING.value
        order.placed_at = utcnow()

    order = storage.update_order(order_id, place)
    storage.append_order_history(order.session_id, order.id)
    logger.info("Order #%d placed (total %d)", order.id, order.total)
    return order


def mark_paid(storage: StorageBackend, order_id: int) -> Tuple[OrderRecord, bool]:
    """
    Record a verified payment. Returns ``(order, changed)``.

    Already-paid orders are returned unchanged, so duplicate confirmations
    are harmless.
    """
    changed = []

    def pay(order: OrderRecord) -> None:
        changed.clear()
        if order.status == OrderStatus.PAID.value:
            return
        if order.status == OrderStatus.PENDING.value:
            assert_transition(order.status, OrderStatus.PLACED.value)
            order.status = OrderStatus.PLACED.value
            order.placed_at = order.placed_at or utcnow()
        assert_transition(order.status, OrderStatus.PAID.value)
        order.status = OrderStatus.PAID.value
        order.payment_status = PaymentStatus.SUCCESS.value
        order.paid_at = utcnow()
        changed.append(True)

    order = storage.update_order(order_id, pay)
    if changed:
        storage.clear_current_order(order.session_id, order.id)
        storage.append_order_history(order.session_id, order.id)
        logger.info("Order #%d paid", order.id)
    return order, bool(changed)


def mark_payment_failed(storage: StorageBackend, order_id: int) -> Tuple[OrderRecord, bool]:
    """Record a failed payment without changing the order status. Never touches paid orders."""
    changed = []

    def fail(order: OrderRecord) -> None:
        changed.clear()
        if order.status == OrderStatus.PAID.value:
            return
        if order.payment_status != PaymentStatus.FAILED.value:
            order.payment_status = PaymentStatus.FAILED.value
            changed.append(True)

    order = storage.update_order(order_id, fail)
    if changed:
        logger.info("Payment failed for order #%d", order.id)
    return order, bool(changed)
