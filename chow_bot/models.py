from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    JSON,
    DateTime,
    ForeignKey,
    Text,
    Index,
    func,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Integer, nullable=False)  # whole currency units
    category = Column(String, nullable=False, index=True)
    available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ChatUser(Base):
    """
    An anonymous chat participant keyed by the client-generated session id.

    The session id is an opaque correlation key, not a credential.
    """
    __tablename__ = "chat_users"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, nullable=False, index=True)

    current_order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    # Order ids in the order they left the cart (placed or cancelled)
    order_history = Column(JSON, nullable=False, default=list)
    # Bumped on every history append; guards the JSON read-modify-write
    history_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False)
    last_active = Column(DateTime(timezone=True), nullable=False)

    current_order = relationship("Order", foreign_keys=[current_order_id])


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending", index=True)  # pending/placed/paid/cancelled
    payment_status = Column(String, nullable=False, default="pending")  # pending/success/failed
    payment_reference = Column(String, unique=True, nullable=True)

    # Derived from the line items on every write, never set directly by callers
    total = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False)
    placed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # Optimistic concurrency: every UPDATE checks and bumps this column
    version = Column(Integer, nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )
    payment_attempts = relationship("PaymentAttempt", back_populates="order", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_orders_session_status", "session_id", "status"),
        # At most one cart per session
        Index(
            "uix_orders_one_pending_per_session",
            "session_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class OrderItem(Base):
    """A cart line. Name and unit price are snapshotted when the item is added."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True)

    name = Column(String, nullable=False)
    unit_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    position = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="items")


class PaymentAttempt(Base):
    """
    One attempt to collect payment for an order.

    The reference is the only key used to reconcile provider callbacks and
    client polls, so it is unique across all attempts.
    """
    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String, unique=True, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    provider = Column(String, nullable=False)  # "paystack" or "simulated"
    status = Column(String, nullable=False, default="pending")  # pending/success/failed/abandoned
    amount = Column(Integer, nullable=False)
    authorization_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    order = relationship("Order", back_populates="payment_attempts")
