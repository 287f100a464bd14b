"""
Process-wide in-memory storage backend.

Used in development and as the fallback when the database cannot be reached
at startup. Data lives only as long as the process.

A single store lock guards the dictionaries and id counters. Order writes
additionally take a per-order lock so a slow mutator on one order never
blocks another order. Records are deep-copied in and out so callers cannot
mutate stored state behind the backend's back.
"""

import logging
import threading
from copy import deepcopy
from typing import Dict, List, Optional, Sequence

from ..errors import DuplicateSessionError, NotFound, PaymentReferenceCollision
from .base import (
    MenuItemRecord,
    OrderMutator,
    OrderRecord,
    PaymentAttemptRecord,
    StorageBackend,
    UserRecord,
    compute_total,
    utcnow,
)

logger = logging.getLogger(__name__)


class MemoryStorage(StorageBackend):
    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._order_locks: Dict[int, threading.Lock] = {}

        self._menu: Dict[int, MenuItemRecord] = {}
        self._users: Dict[str, UserRecord] = {}
        self._orders: Dict[int, OrderRecord] = {}
        self._attempts: Dict[str, PaymentAttemptRecord] = {}

        self._next_menu_id = 1
        self._next_user_id = 1
        self._next_order_id = 1

    def _order_lock(self, order_id: int) -> threading.Lock:
        with self._lock:
            lock = self._order_locks.get(order_id)
            if lock is None:
                lock = self._order_locks[order_id] = threading.Lock()
            return lock

    # ---- catalog -----------------------------------------------------------

    def count_menu_items(self) -> int:
        with self._lock:
            return len(self._menu)

    def add_menu_items(self, items: Sequence[dict]) -> List[MenuItemRecord]:
        created = []
        with self._lock:
            for item in items:
                record = MenuItemRecord(
                    id=self._next_menu_id,
                    name=item["name"],
                    price=int(item["price"]),
                    category=item["category"],
                    description=item.get("description"),
                    available=item.get("available", True),
                )
                self._menu[record.id] = record
                self._next_menu_id += 1
                created.append(deepcopy(record))
        return created

    def list_categories(self) -> List[str]:
        with self._lock:
            return sorted({item.category for item in self._menu.values()})

    def list_menu_items(self, category: Optional[str] = None, available_only: bool = True) -> List[MenuItemRecord]:
        with self._lock:
            items = [
                deepcopy(item)
                for item in self._menu.values()
                if (category is None or item.category == category)
                and (item.available or not available_only)
            ]
        return sorted(items, key=lambda item: (item.name, item.id))

    def get_menu_item(self, item_id: int) -> Optional[MenuItemRecord]:
        with self._lock:
            item = self._menu.get(item_id)
            return deepcopy(item) if item else None

    def set_menu_item_availability(self, item_id: int, available: bool) -> Optional[MenuItemRecord]:
        with self._lock:
            item = self._menu.get(item_id)
            if item is None:
                return None
            item.available = available
            return deepcopy(item)

    # ---- users -------------------------------------------------------------

    def get_user(self, session_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(session_id)
            return deepcopy(user) if user else None

    def create_user(self, session_id: str) -> UserRecord:
        with self._lock:
            if session_id in self._users:
                raise DuplicateSessionError(session_id)
            now = utcnow()
            user = UserRecord(
                id=self._next_user_id,
                session_id=session_id,
                created_at=now,
                last_active=now,
            )
            self._users[session_id] = user
            self._next_user_id += 1
            return deepcopy(user)

    def touch_user(self, session_id: str) -> None:
        with self._lock:
            user = self._users.get(session_id)
            if user is not None:
                user.last_active = utcnow()

    def set_current_order(self, session_id: str, order_id: Optional[int]) -> None:
        with self._lock:
            user = self._users.get(session_id)
            if user is None:
                raise NotFound("User", session_id)
            user.current_order_id = order_id

    def clear_current_order(self, session_id: str, order_id: int) -> bool:
        with self._lock:
            user = self._users.get(session_id)
            if user is None or user.current_order_id != order_id:
                return False
            user.current_order_id = None
            return True

    def append_order_history(self, session_id: str, order_id: int) -> None:
        with self._lock:
            user = self._users.get(session_id)
            if user is None:
                raise NotFound("User", session_id)
            if order_id not in user.order_history:
                user.order_history.append(order_id)

    # ---- orders ------------------------------------------------------------

    def get_or_create_cart(self, session_id: str) -> OrderRecord:
        with self._lock:
            user = self._users.get(session_id)
            if user is None:
                raise NotFound("User", session_id)

            current = self._orders.get(user.current_order_id) if user.current_order_id else None
            if current is None or current.status != "pending":
                current = next(
                    (
                        order
                        for order in self._orders.values()
                        if order.session_id == session_id and order.status == "pending"
                    ),
                    None,
                )
            if current is None:
                current = OrderRecord(
                    id=self._next_order_id,
                    session_id=session_id,
                    status="pending",
                    payment_status="pending",
                    created_at=utcnow(),
                )
                self._orders[current.id] = current
                self._next_order_id += 1
                logger.info("Created cart #%d for session %s", current.id, session_id)

            user.current_order_id = current.id
            return deepcopy(current)

    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        with self._lock:
            order = self._orders.get(order_id)
            return deepcopy(order) if order else None

    def update_order(self, order_id: int, mutator: OrderMutator) -> OrderRecord:
        with self._order_lock(order_id):
            with self._lock:
                stored = self._orders.get(order_id)
                if stored is None:
                    raise NotFound("Order", order_id)
                working = deepcopy(stored)

            mutator(working)

            for line in working.items:
                if line.quantity < 1:
                    raise ValueError(f"Line quantity must be >= 1, got {line.quantity}")
            working.id = stored.id
            working.session_id = stored.session_id
            working.total = compute_total(working.items)

            with self._lock:
                # The one-cart rule: a write may not bring back a second pending order
                if working.status == "pending" and stored.status != "pending":
                    raise ValueError("An order cannot return to pending")
                self._orders[order_id] = working
                return deepcopy(working)

    def list_orders(self, session_id: str, statuses: Optional[Sequence[str]] = None) -> List[OrderRecord]:
        with self._lock:
            return [
                deepcopy(order)
                for order_id, order in sorted(self._orders.items())
                if order.session_id == session_id and (not statuses or order.status in statuses)
            ]

    # ---- payments ----------------------------------------------------------

    def record_payment_attempt(
        self,
        order_id: int,
        reference: str,
        provider: str,
        amount: int,
        authorization_url: Optional[str] = None,
    ) -> PaymentAttemptRecord:
        with self._order_lock(order_id):
            with self._lock:
                order = self._orders.get(order_id)
                if order is None:
                    raise NotFound("Order", order_id)
                if reference in self._attempts:
                    raise PaymentReferenceCollision(reference)
                now = utcnow()
                attempt = PaymentAttemptRecord(
                    reference=reference,
                    order_id=order_id,
                    provider=provider,
                    status="pending",
                    amount=amount,
                    created_at=now,
                    updated_at=now,
                    authorization_url=authorization_url,
                )
                self._attempts[reference] = attempt
                order.payment_reference = reference
                return deepcopy(attempt)

    def update_payment_attempt(
        self,
        reference: str,
        status: Optional[str] = None,
        authorization_url: Optional[str] = None,
    ) -> Optional[PaymentAttemptRecord]:
        with self._lock:
            attempt = self._attempts.get(reference)
            if attempt is None:
                return None
            if status is not None:
                attempt.status = status
            if authorization_url is not None:
                attempt.authorization_url = authorization_url
            attempt.updated_at = utcnow()
            return deepcopy(attempt)

    def get_payment_attempt(self, reference: str) -> Optional[PaymentAttemptRecord]:
        with self._lock:
            attempt = self._attempts.get(reference)
            return deepcopy(attempt) if attempt else None

    def list_payment_attempts(self, order_id: int) -> List[PaymentAttemptRecord]:
        with self._lock:
            attempts = [deepcopy(a) for a in self._attempts.values() if a.order_id == order_id]
        return sorted(attempts, key=lambda a: a.created_at)
