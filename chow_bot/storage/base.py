"""
Storage backend interface and domain records.

Backends hand out plain dataclass snapshots. Callers never hold on to live
rows between requests; every mutation of an order goes through
``update_order`` so the backend can serialize writes per order and
recompute the total from the line items.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class MenuItemRecord:
    id: int
    name: str
    price: int
    category: str
    description: Optional[str] = None
    available: bool = True


@dataclass
class LineItem:
    """A cart line with the name and unit price captured at add time."""
    menu_item_id: Optional[int]
    name: str
    unit_price: int
    quantity: int = 1

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


def compute_total(items: Iterable[LineItem]) -> int:
    return sum(item.unit_price * item.quantity for item in items)


@dataclass
class OrderRecord:
    id: int
    session_id: str
    status: str
    payment_status: str
    created_at: datetime
    items: List[LineItem] = field(default_factory=list)
    total: int = 0
    payment_reference: Optional[str] = None
    placed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_line(self, menu_item_id: int) -> Optional[LineItem]:
        for line in self.items:
            if line.menu_item_id == menu_item_id:
                return line
        return None


@dataclass
class UserRecord:
    id: int
    session_id: str
    created_at: datetime
    last_active: datetime
    current_order_id: Optional[int] = None
    order_history: List[int] = field(default_factory=list)


@dataclass
class PaymentAttemptRecord:
    reference: str
    order_id: int
    provider: str
    status: str
    amount: int
    created_at: datetime
    updated_at: datetime
    authorization_url: Optional[str] = None


OrderMutator = Callable[[OrderRecord], None]


class StorageBackend(ABC):
    """
    Persistence seam for the catalog, users, orders and payment attempts.

    Implementations must:
    - keep at most one ``pending`` order per session id
    - serialize ``update_order`` calls for the same order id
    - keep payment references unique across all attempts
    - raise PersistenceError for driver-level failures
    """

    name = "abstract"

    # ---- catalog -----------------------------------------------------------

    @abstractmethod
    def count_menu_items(self) -> int:
        ...

    @abstractmethod
    def add_menu_items(self, items: Sequence[dict]) -> List[MenuItemRecord]:
        ...

    @abstractmethod
    def list_categories(self) -> List[str]:
        ...

    @abstractmethod
    def list_menu_items(self, category: Optional[str] = None, available_only: bool = True) -> List[MenuItemRecord]:
        ...

    @abstractmethod
    def get_menu_item(self, item_id: int) -> Optional[MenuItemRecord]:
        ...

    @abstractmethod
    def set_menu_item_availability(self, item_id: int, available: bool) -> Optional[MenuItemRecord]:
        ...

    # ---- users -------------------------------------------------------------

    @abstractmethod
    def get_user(self, session_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def create_user(self, session_id: str) -> UserRecord:
        """Create a user; raises DuplicateSessionError if one exists."""

    @abstractmethod
    def touch_user(self, session_id: str) -> None:
        ...

    @abstractmethod
    def set_current_order(self, session_id: str, order_id: Optional[int]) -> None:
        ...

    @abstractmethod
    def clear_current_order(self, session_id: str, order_id: int) -> bool:
        """Clear the user's current order only if it still points at ``order_id``."""

    @abstractmethod
    def append_order_history(self, session_id: str, order_id: int) -> None:
        """Append to the user's history; appending twice is a no-op."""

    # ---- orders ------------------------------------------------------------

    @abstractmethod
    def get_or_create_cart(self, session_id: str) -> OrderRecord:
        """Return the session's pending order, creating and attaching one if needed."""

    @abstractmethod
    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        ...

    @abstractmethod
    def update_order(self, order_id: int, mutator: OrderMutator) -> OrderRecord:
        """
        Apply ``mutator`` to a fresh copy of the order and persist it atomically.

        Exceptions raised by the mutator abort the write and propagate.
        """

    @abstractmethod
    def list_orders(self, session_id: str, statuses: Optional[Sequence[str]] = None) -> List[OrderRecord]:
        ...

    # ---- payments ----------------------------------------------------------

    @abstractmethod
    def record_payment_attempt(
        self,
        order_id: int,
        reference: str,
        provider: str,
        amount: int,
        authorization_url: Optional[str] = None,
    ) -> PaymentAttemptRecord:
        """Store an attempt and make it the order's payment reference.

        Raises PaymentReferenceCollision if the reference is taken.
        """

    @abstractmethod
    def update_payment_attempt(
        self,
        reference: str,
        status: Optional[str] = None,
        authorization_url: Optional[str] = None,
    ) -> Optional[PaymentAttemptRecord]:
        ...

    @abstractmethod
    def get_payment_attempt(self, reference: str) -> Optional[PaymentAttemptRecord]:
        ...

    @abstractmethod
    def list_payment_attempts(self, order_id: int) -> List[PaymentAttemptRecord]:
        """Attempts for an order, oldest first."""

    def find_order_by_payment_reference(self, reference: str) -> Optional[OrderRecord]:
        attempt = self.get_payment_attempt(reference)
        if attempt is None:
            return None
        return self.get_order(attempt.order_id)
