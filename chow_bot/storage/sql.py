"""
SQLAlchemy storage backend.

Concurrency:
------------
- ``orders.version`` is the mapper's ``version_id_col``; every UPDATE of an
  order checks the version it read. A concurrent writer makes the flush
  raise StaleDataError and the whole read-modify-write is retried with
  tenacity. The order row is also selected FOR UPDATE where the dialect
  supports it.
- ``chat_users.order_history`` is appended with a compare-and-set on
  ``history_version``; a lost race raises StaleDataError and goes through
  the same retry.
- A partial unique index allows one ``pending`` order per session. Losing
  the race to create a cart means fetching the winner's cart.
- Unique constraints on ``chat_users.session_id`` and
  ``payment_attempts.reference`` surface as DuplicateSessionError and
  PaymentReferenceCollision.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_random

from ..config import ORDER_UPDATE_MAX_ATTEMPTS
from ..errors import (
    ChowBotError,
    DuplicateSessionError,
    NotFound,
    PaymentReferenceCollision,
    PersistenceError,
)
from ..models import ChatUser, MenuItem, Order, OrderItem, PaymentAttempt
from .base import (
    LineItem,
    MenuItemRecord,
    OrderMutator,
    OrderRecord,
    PaymentAttemptRecord,
    StorageBackend,
    UserRecord,
    as_utc,
    compute_total,
    utcnow,
)

logger = logging.getLogger(__name__)


def _menu_item_to_record(row: MenuItem) -> MenuItemRecord:
    return MenuItemRecord(
        id=row.id,
        name=row.name,
        price=row.price,
        category=row.category,
        description=row.description,
        available=bool(row.available),
    )


def _order_to_record(row: Order) -> OrderRecord:
    return OrderRecord(
        id=row.id,
        session_id=row.session_id,
        status=row.status,
        payment_status=row.payment_status,
        created_at=as_utc(row.created_at),
        items=[
            LineItem(
                menu_item_id=item.menu_item_id,
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
            )
            for item in row.items
        ],
        total=row.total,
        payment_reference=row.payment_reference,
        placed_at=as_utc(row.placed_at),
        paid_at=as_utc(row.paid_at),
        cancelled_at=as_utc(row.cancelled_at),
    )


def _user_to_record(row: ChatUser) -> UserRecord:
    return UserRecord(
        id=row.id,
        session_id=row.session_id,
        created_at=as_utc(row.created_at),
        last_active=as_utc(row.last_active),
        current_order_id=row.current_order_id,
        order_history=list(row.order_history or []),
    )


def _attempt_to_record(row: PaymentAttempt) -> PaymentAttemptRecord:
    return PaymentAttemptRecord(
        reference=row.reference,
        order_id=row.order_id,
        provider=row.provider,
        status=row.status,
        amount=row.amount,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        authorization_url=row.authorization_url,
    )


class SqlStorage(StorageBackend):
    """Durable backend over a SQLAlchemy session factory."""

    name = "sql"

    def __init__(self, session_factory: sessionmaker, max_attempts: int = ORDER_UPDATE_MAX_ATTEMPTS):
        self._session_factory = session_factory
        self._max_attempts = max_attempts

    # =========================================================================
    # Session / retry helpers
    # =========================================================================

    @contextmanager
    def _session(self, operation: str, expect_conflict: bool = False) -> Iterator[Session]:
        """
        Yield a session that is rolled back on error and always closed.

        With ``expect_conflict`` unique-constraint violations propagate as
        IntegrityError for the caller to translate; otherwise every driver
        error becomes PersistenceError.
        """
        db = self._session_factory()
        try:
            yield db
        except (ChowBotError, StaleDataError):
            db.rollback()
            raise
        except IntegrityError as exc:
            db.rollback()
            if expect_conflict:
                raise
            logger.error("Storage operation %s violated a constraint", operation, exc_info=True)
            raise PersistenceError(operation, str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Storage operation %s failed", operation, exc_info=True)
            raise PersistenceError(operation, str(exc)) from exc
        finally:
            db.close()

    def _retrying(self, operation: str, fn):
        """Run ``fn`` until it commits without a version conflict."""
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_random(0, 0.05),
                retry=retry_if_exception_type(StaleDataError),
                reraise=True,
            ):
                with attempt:
                    return fn()
        except StaleDataError as exc:
            logger.error("Gave up on %s after %d conflicting writes", operation, self._max_attempts)
            raise PersistenceError(operation, "concurrent modification") from exc

    def _load_order(self, db: Session, order_id: int, lock: bool = False) -> Optional[Order]:
        query = db.query(Order).options(selectinload(Order.items)).filter(Order.id == order_id)
        if lock:
            query = query.with_for_update()
        return query.one_or_none()

    def _load_user(self, db: Session, session_id: str) -> Optional[ChatUser]:
        return db.query(ChatUser).filter(ChatUser.session_id == session_id).one_or_none()

    # =========================================================================
    # Catalog
    # =========================================================================

    def count_menu_items(self) -> int:
        with self._session("count_menu_items") as db:
            return db.query(MenuItem).count()

    def add_menu_items(self, items: Sequence[dict]) -> List[MenuItemRecord]:
        with self._session("add_menu_items") as db:
            rows = [
                MenuItem(
                    name=item["name"],
                    description=item.get("description"),
                    price=int(item["price"]),
                    category=item["category"],
                    available=item.get("available", True),
                )
                for item in items
            ]
            db.add_all(rows)
            db.commit()
            return [_menu_item_to_record(row) for row in rows]

    def list_categories(self) -> List[str]:
        with self._session("list_categories") as db:
            rows = db.query(MenuItem.category).distinct().order_by(MenuItem.category).all()
            return [row[0] for row in rows]

    def list_menu_items(self, category: Optional[str] = None, available_only: bool = True) -> List[MenuItemRecord]:
        with self._session("list_menu_items") as db:
            query = db.query(MenuItem)
            if category is not None:
                query = query.filter(MenuItem.category == category)
            if available_only:
                query = query.filter(MenuItem.available.is_(True))
            rows = query.order_by(MenuItem.name, MenuItem.id).all()
            return [_menu_item_to_record(row) for row in rows]

    def get_menu_item(self, item_id: int) -> Optional[MenuItemRecord]:
        with self._session("get_menu_item") as db:
            row = db.get(MenuItem, item_id)
            return _menu_item_to_record(row) if row else None

    def set_menu_item_availability(self, item_id: int, available: bool) -> Optional[MenuItemRecord]:
        with self._session("set_menu_item_availability") as db:
            row = db.get(MenuItem, item_id)
            if row is None:
                return None
            row.available = available
            db.commit()
            return _menu_item_to_record(row)

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, session_id: str) -> Optional[UserRecord]:
        with self._session("get_user") as db:
            row = self._load_user(db, session_id)
            return _user_to_record(row) if row else None

    def create_user(self, session_id: str) -> UserRecord:
        now = utcnow()
        try:
            with self._session("create_user", expect_conflict=True) as db:
                row = ChatUser(
                    session_id=session_id,
                    order_history=[],
                    history_version=0,
                    created_at=now,
                    last_active=now,
                )
                db.add(row)
                db.commit()
                return _user_to_record(row)
        except IntegrityError as exc:
            raise DuplicateSessionError(session_id) from exc

    def touch_user(self, session_id: str) -> None:
        with self._session("touch_user") as db:
            row = self._load_user(db, session_id)
            if row is not None:
                row.last_active = utcnow()
                db.commit()

    def set_current_order(self, session_id: str, order_id: Optional[int]) -> None:
        with self._session("set_current_order") as db:
            row = self._load_user(db, session_id)
            if row is None:
                raise NotFound("User", session_id)
            row.current_order_id = order_id
            db.commit()

    def clear_current_order(self, session_id: str, order_id: int) -> bool:
        with self._session("clear_current_order") as db:
            updated = (
                db.query(ChatUser)
                .filter(ChatUser.session_id == session_id, ChatUser.current_order_id == order_id)
                .update({ChatUser.current_order_id: None}, synchronize_session=False)
            )
            db.commit()
            return bool(updated)

    def append_order_history(self, session_id: str, order_id: int) -> None:
        self._retrying(
            "append_order_history",
            lambda: self._append_order_history_once(session_id, order_id),
        )

    def _append_order_history_once(self, session_id: str, order_id: int) -> None:
        with self._session("append_order_history") as db:
            row = self._load_user(db, session_id)
            if row is None:
                raise NotFound("User", session_id)
            history = list(row.order_history or [])
            if order_id in history:
                return
            updated = (
                db.query(ChatUser)
                .filter(ChatUser.id == row.id, ChatUser.history_version == row.history_version)
                .update(
                    {
                        ChatUser.order_history: history + [order_id],
                        ChatUser.history_version: row.history_version + 1,
                    },
                    synchronize_session=False,
                )
            )
            if not updated:
                raise StaleDataError(f"order history of {session_id} changed concurrently")
            db.commit()

    # =========================================================================
    # Orders
    # =========================================================================

    def get_or_create_cart(self, session_id: str) -> OrderRecord:
        try:
            return self._get_or_create_cart_once(session_id)
        except IntegrityError:
            # Another request created the cart first; attach to it
            logger.info("Cart creation race for session %s; reusing existing cart", session_id)
            return self._get_or_create_cart_once(session_id)

    def _get_or_create_cart_once(self, session_id: str) -> OrderRecord:
        with self._session("get_or_create_cart", expect_conflict=True) as db:
            user = self._load_user(db, session_id)
            if user is None:
                raise NotFound("User", session_id)

            if user.current_order_id is not None:
                current = self._load_order(db, user.current_order_id)
                if current is not None and current.status == "pending":
                    return _order_to_record(current)

            order = (
                db.query(Order)
                .options(selectinload(Order.items))
                .filter(Order.session_id == session_id, Order.status == "pending")
                .one_or_none()
            )
            if order is None:
                now = utcnow()
                order = Order(
                    session_id=session_id,
                    status="pending",
                    payment_status="pending",
                    total=0,
                    created_at=now,
                    updated_at=now,
                )
                db.add(order)
                db.flush()
                logger.info("Created cart #%d for session %s", order.id, session_id)

            user.current_order_id = order.id
            db.commit()
            return _order_to_record(order)

    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        with self._session("get_order") as db:
            row = self._load_order(db, order_id)
            return _order_to_record(row) if row else None

    def update_order(self, order_id: int, mutator: OrderMutator) -> OrderRecord:
        return self._retrying("update_order", lambda: self._update_order_once(order_id, mutator))

    def _update_order_once(self, order_id: int, mutator: OrderMutator) -> OrderRecord:
        with self._session("update_order") as db:
            row = self._load_order(db, order_id, lock=True)
            if row is None:
                raise NotFound("Order", order_id)

            record = _order_to_record(row)
            mutator(record)

            row.status = record.status
            row.payment_status = record.payment_status
            row.placed_at = record.placed_at
            row.paid_at = record.paid_at
            row.cancelled_at = record.cancelled_at
            self._sync_items(row, record.items)
            row.total = compute_total(record.items)
            # Always touch the order row so the version check covers item-only edits
            row.updated_at = utcnow()

            db.commit()
            return _order_to_record(row)

    @staticmethod
    def _sync_items(row: Order, items: List[LineItem]) -> None:
        existing = list(row.items)
        for position, line in enumerate(items):
            if line.quantity < 1:
                raise ValueError(f"Line quantity must be >= 1, got {line.quantity}")
            if position < len(existing):
                target = existing[position]
            else:
                target = OrderItem()
                row.items.append(target)
            target.menu_item_id = line.menu_item_id
            target.name = line.name
            target.unit_price = line.unit_price
            target.quantity = line.quantity
            target.position = position
        for stale in existing[len(items):]:
            row.items.remove(stale)

    def list_orders(self, session_id: str, statuses: Optional[Sequence[str]] = None) -> List[OrderRecord]:
        with self._session("list_orders") as db:
            query = db.query(Order).options(selectinload(Order.items)).filter(Order.session_id == session_id)
            if statuses:
                query = query.filter(Order.status.in_(list(statuses)))
            rows = query.order_by(Order.id).all()
            return [_order_to_record(row) for row in rows]

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment_attempt(
        self,
        order_id: int,
        reference: str,
        provider: str,
        amount: int,
        authorization_url: Optional[str] = None,
    ) -> PaymentAttemptRecord:
        try:
            return self._retrying(
                "record_payment_attempt",
                lambda: self._record_payment_attempt_once(order_id, reference, provider, amount, authorization_url),
            )
        except IntegrityError as exc:
            raise PaymentReferenceCollision(reference) from exc

    def _record_payment_attempt_once(
        self,
        order_id: int,
        reference: str,
        provider: str,
        amount: int,
        authorization_url: Optional[str],
    ) -> PaymentAttemptRecord:
        with self._session("record_payment_attempt", expect_conflict=True) as db:
            order = self._load_order(db, order_id, lock=True)
            if order is None:
                raise NotFound("Order", order_id)
            now = utcnow()
            attempt = PaymentAttempt(
                reference=reference,
                order_id=order_id,
                provider=provider,
                status="pending",
                amount=amount,
                authorization_url=authorization_url,
                created_at=now,
                updated_at=now,
            )
            db.add(attempt)
            order.payment_reference = reference
            order.updated_at = now
            db.commit()
            return _attempt_to_record(attempt)

    def update_payment_attempt(
        self,
        reference: str,
        status: Optional[str] = None,
        authorization_url: Optional[str] = None,
    ) -> Optional[PaymentAttemptRecord]:
        with self._session("update_payment_attempt") as db:
            row = db.query(PaymentAttempt).filter(PaymentAttempt.reference == reference).one_or_none()
            if row is None:
                return None
            if status is not None:
                row.status = status
            if authorization_url is not None:
                row.authorization_url = authorization_url
            row.updated_at = utcnow()
            db.commit()
            return _attempt_to_record(row)

    def get_payment_attempt(self, reference: str) -> Optional[PaymentAttemptRecord]:
        with self._session("get_payment_attempt") as db:
            row = db.query(PaymentAttempt).filter(PaymentAttempt.reference == reference).one_or_none()
            return _attempt_to_record(row) if row else None

    def list_payment_attempts(self, order_id: int) -> List[PaymentAttemptRecord]:
        with self._session("list_payment_attempts") as db:
            rows = (
                db.query(PaymentAttempt)
                .filter(PaymentAttempt.order_id == order_id)
                .order_by(PaymentAttempt.id)
                .all()
            )
            return [_attempt_to_record(row) for row in rows]
