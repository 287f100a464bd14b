"""
Dialogue Engine for Chow Bot
============================

Maps an incoming option token to a handler and returns a complete reply:
a message, the next options to offer, and an optional order snapshot.

Tokens:
-------
    place-order           list categories
    category:<name>       list available items in a category
    add:<itemId>          add one unit to the cart
    checkout              summarize the cart and offer payment
    initiate-payment      payment prompt (the client then calls the payment API)
    payment-status        report the latest payment without starting a new one
    current-order         show the cart
    order-history         placed and paid orders, newest first
    cancel-order          cancel the pending cart
    main-menu             top-level options

The numeric tokens of the first chat widget (``1``, ``99``, ``98``, ``97``,
``0``, ``pay``, ``back``, ``add_<id>``, ``category_<name>``) are accepted as
aliases.

Error Replies:
--------------
Handlers raise NotFound / InvalidTransition for user mistakes; these become
guidance replies. PersistenceError becomes a generic "try again" reply.
Unknown tokens fall back to the main menu. The engine never returns a
partial reply and never lets these errors escape.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import config
from .errors import ExternalProviderError, InvalidTransition, NotFound, PersistenceError
from .menu_catalog import MenuCatalog
from .services.order import (
    OrderStatus,
    add_item_to_cart,
    cancel_cart,
    get_current_order,
    get_payable_order,
    order_history,
    order_snapshot,
)
from .services.payment import OUTCOME_FAILED, OUTCOME_SUCCESS, PaymentCoordinator
from .services.session import get_or_create_user
from .storage.base import OrderRecord, StorageBackend, UserRecord

logger = logging.getLogger(__name__)


PLACE_ORDER = "place-order"
CATEGORY = "category"
ADD = "add"
CHECKOUT = "checkout"
INITIATE_PAYMENT = "initiate-payment"
PAYMENT_STATUS = "payment-status"
CURRENT_ORDER = "current-order"
ORDER_HISTORY = "order-history"
CANCEL_ORDER = "cancel-order"
MAIN_MENU = "main-menu"

# Client-side action: call the payment API instead of sending the token
ACTION_INITIATE_PAYMENT = "initiate_payment"

# Largest id a BIGINT primary key can hold
MAX_ITEM_ID = 2 ** 63 - 1

LEGACY_ALIASES = {
    "1": PLACE_ORDER,
    "99": CHECKOUT,
    "98": ORDER_HISTORY,
    "97": CURRENT_ORDER,
    "0": CANCEL_ORDER,
    "pay": INITIATE_PAYMENT,
    "initiate_payment": INITIATE_PAYMENT,
    "check_payment": PAYMENT_STATUS,
    "back": MAIN_MENU,
}

ARGUMENT_PREFIXES = (
    ("add:", ADD),
    ("add_", ADD),
    ("category:", CATEGORY),
    ("category_", CATEGORY),
)


@dataclass
class ChatOption:
    value: str
    text: str
    action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"value": self.value, "text": self.text}
        if self.action:
            data["action"] = self.action
        return data


@dataclass
class ChatReply:
    message: str
    options: List[ChatOption] = field(default_factory=list)
    order: Optional[Dict[str, Any]] = None
    # Error class for guidance replies (not_found, invalid_transition, unavailable)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "options": [option.to_dict() for option in self.options],
            "order": self.order,
        }


def parse_token(token: Optional[str]) -> Tuple[str, Optional[str]]:
    """Normalize a raw token to ``(command, argument)``."""
    token = (token or "").strip()
    if len(token) > config.MAX_MESSAGE_LENGTH:
        return "", None
    if token in LEGACY_ALIASES:
        return LEGACY_ALIASES[token], None
    for prefix, command in ARGUMENT_PREFIXES:
        if token.startswith(prefix):
            return command, token[len(prefix):].strip()
    return token, None


def format_money(amount: int) -> str:
    return f"{config.CURRENCY_SYMBOL}{amount}"


def format_lines(order: OrderRecord) -> str:
    return "\n".join(
        f"• {line.quantity}x {line.name} - {format_money(line.line_total)}"
        for line in order.items
    )


def main_options() -> List[ChatOption]:
    return [
        ChatOption(PLACE_ORDER, "🛍️ Place an order"),
        ChatOption(CHECKOUT, "💰 Checkout order"),
        ChatOption(ORDER_HISTORY, "📊 Order history"),
        ChatOption(CURRENT_ORDER, "📋 Current order"),
        ChatOption(PAYMENT_STATUS, "💳 Payment status"),
        ChatOption(CANCEL_ORDER, "❌ Cancel order"),
    ]


def _back_to_main() -> ChatOption:
    return ChatOption(MAIN_MENU, "← Main Menu")


def _start_ordering(text: str = "🛍️ Start Ordering") -> ChatOption:
    return ChatOption(PLACE_ORDER, text)


def _pay_option(text: str) -> ChatOption:
    return ChatOption(INITIATE_PAYMENT, text, action=ACTION_INITIATE_PAYMENT)


def _count_label(quantity: int) -> str:
    return f"{quantity} item" if quantity == 1 else f"{quantity} items"


class DialogueEngine:
    def __init__(
        self,
        storage: StorageBackend,
        catalog: Optional[MenuCatalog] = None,
        payments: Optional[PaymentCoordinator] = None,
    ):
        self.storage = storage
        self.catalog = catalog or MenuCatalog(storage)
        self.payments = payments or PaymentCoordinator.from_config(storage)
        self._handlers: Dict[str, Callable[[UserRecord, Optional[str]], ChatReply]] = {
            PLACE_ORDER: self._place_order,
            CATEGORY: self._category,
            ADD: self._add_item,
            CHECKOUT: self._checkout,
            INITIATE_PAYMENT: self._initiate_payment,
            PAYMENT_STATUS: self._payment_status,
            CURRENT_ORDER: self._current_order,
            ORDER_HISTORY: self._order_history,
            CANCEL_ORDER: self._cancel_order,
            MAIN_MENU: self._main_menu,
        }

    def handle(self, session_id: str, token: Optional[str]) -> ChatReply:
        command, argument = parse_token(token)
        try:
            try:
                user = get_or_create_user(self.storage, session_id)
                handler = self._handlers.get(command)
                if handler is None:
                    return self._unknown(token)
                return handler(user, argument)
            except NotFound as exc:
                logger.info("Chat lookup failed: %s", exc)
                return self._not_found_reply(exc)
            except InvalidTransition as exc:
                logger.info("Chat action rejected: %s", exc)
                return ChatReply(
                    message=f"❌ {exc}",
                    options=[_start_ordering(), _back_to_main()],
                    error="invalid_transition",
                )
        except PersistenceError:
            logger.error("Storage failure while handling %r for session %s", command, session_id, exc_info=True)
            return degraded_reply()

    # ---- navigation --------------------------------------------------------

    def _main_menu(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        return ChatReply(
            message="🏠 **Main Menu**\nWelcome back! How can I help you today?",
            options=main_options(),
        )

    def _unknown(self, token: Optional[str]) -> ChatReply:
        logger.debug("Unrecognized chat token %r", token)
        return ChatReply(
            message="Invalid option. Please select from the menu.",
            options=main_options(),
        )

    def _not_found_reply(self, exc: NotFound) -> ChatReply:
        if exc.kind == "Category":
            message = "That category is not on the menu. Please pick another one."
        elif exc.kind == "Menu item":
            message = "Item not found. Please pick something from the menu."
        else:
            message = "We couldn't find that. Please start again from the menu."
        return ChatReply(
            message=message,
            options=[_start_ordering("🛍️ Browse Menu"), _back_to_main()],
            error="not_found",
        )

    def _place_order(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        categories = self.catalog.sorted_categories()
        if not categories:
            return ChatReply(
                message="The menu is not available right now. Please try again later.",
                options=main_options(),
            )
        return ChatReply(
            message="Please select a category to browse menu items:",
            options=[ChatOption(f"category:{name}", f"Browse {name}") for name in categories]
            + [_back_to_main()],
        )

    def _category(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        if not argument or argument not in self.catalog.list_categories():
            raise NotFound("Category", argument)

        items = self.catalog.list_items(argument)
        back = [ChatOption(PLACE_ORDER, "← Back to Categories"), _back_to_main()]
        if not items:
            return ChatReply(
                message=f"Nothing in **{argument}** is available right now.",
                options=back,
            )
        return ChatReply(
            message=f"**{argument} Menu:**\nPlease select items to add to your order:",
            options=[ChatOption(f"add:{item.id}", f"{item.name} - {format_money(item.price)}") for item in items]
            + back,
        )

    # ---- cart --------------------------------------------------------------

    def _add_item(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        try:
            item_id = int(argument)
        except (TypeError, ValueError):
            raise NotFound("Menu item", argument)
        if not 1 <= item_id <= MAX_ITEM_ID:
            raise NotFound("Menu item", argument)

        item = self.catalog.get_item(item_id)
        if not item.available:
            return ChatReply(
                message=f"Sorry, **{item.name}** is currently unavailable.",
                options=[_start_ordering("🛍️ Browse Menu"), ChatOption(CURRENT_ORDER, "📋 View Current Order"), _back_to_main()],
                error="unavailable",
            )

        order = add_item_to_cart(self.storage, user, item)
        return ChatReply(
            message=f"✅ Added **{item.name}** to your order!",
            options=[
                ChatOption(PLACE_ORDER, "➕ Add More Items"),
                ChatOption(CURRENT_ORDER, "📋 View Current Order"),
                ChatOption(CHECKOUT, "💰 Checkout"),
                _back_to_main(),
            ],
            order=order_snapshot(order),
        )

    def _payable_order(self, user: UserRecord, empty_message: str) -> OrderRecord:
        order = get_payable_order(self.storage, user)
        if order is None or not order.items:
            raise InvalidTransition(empty_message)
        return order

    def _checkout(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        order = self._payable_order(user, "No order to place. Please add items first.")

        options = [_pay_option("💳 Proceed to Payment")]
        if order.status == OrderStatus.PENDING.value:
            options += [ChatOption(PLACE_ORDER, "🛍️ Add More Items"), ChatOption(CANCEL_ORDER, "❌ Cancel Order")]
        options.append(_back_to_main())

        return ChatReply(
            message=(
                f"📋 **Order Summary:**\n{format_lines(order)}\n\n"
                f"💰 **Total: {format_money(order.total)}**\n\n"
                "Would you like to proceed to payment?"
            ),
            options=options,
            order=order_snapshot(order),
        )

    def _initiate_payment(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        order = self._payable_order(user, "No order to pay for. Please place an order first.")

        options = [_pay_option("💳 Pay Now"), ChatOption(CURRENT_ORDER, "📋 View Order")]
        if order.status == OrderStatus.PENDING.value:
            options.append(ChatOption(CANCEL_ORDER, "❌ Cancel Order"))
        options.append(_back_to_main())

        return ChatReply(
            message=(
                "💳 **Payment Processing**\n\n"
                f"Order Total: {format_money(order.total)}\n\n"
                "Click the payment button below to complete your order. "
                "A new window will open for payment processing."
            ),
            options=options,
            order=order_snapshot(order),
        )

    def _current_order(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        order = get_payable_order(self.storage, user)
        if order is None or not order.items:
            return ChatReply(
                message="📋 No current order. Please place an order first.",
                options=[_start_ordering(), _back_to_main()],
            )

        message = f"📋 **Current Order:**\n{format_lines(order)}\n\n💰 **Total: {format_money(order.total)}**"
        if order.status == OrderStatus.PENDING.value:
            options = [
                ChatOption(PLACE_ORDER, "➕ Add More Items"),
                ChatOption(CHECKOUT, "💰 Checkout"),
                ChatOption(CANCEL_ORDER, "❌ Cancel Order"),
                _back_to_main(),
            ]
        else:
            message += "\n\n⏳ Placed and awaiting payment."
            options = [
                _pay_option("💳 Pay Now"),
                ChatOption(PAYMENT_STATUS, "🔄 Check Payment Status"),
                _back_to_main(),
            ]
        return ChatReply(message=message, options=options, order=order_snapshot(order))

    def _cancel_order(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        cancelled = cancel_cart(self.storage, user)
        if cancelled is not None:
            return ChatReply(
                message="❌ Order cancelled successfully.",
                options=[_start_ordering("🛍️ Start New Order"), _back_to_main()],
            )

        current = get_current_order(self.storage, user)
        if current is not None and current.status == OrderStatus.PLACED.value:
            return ChatReply(
                message="Your order has been placed and is awaiting payment, so it can no longer be cancelled.",
                options=[_pay_option("💳 Pay Now"), ChatOption(PAYMENT_STATUS, "🔄 Check Payment Status"), _back_to_main()],
                error="invalid_transition",
            )
        return ChatReply(message="❌ No order to cancel.", options=main_options())

    # ---- history & payments -----------------------------------------------

    def _order_history(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        orders = order_history(self.storage, user)
        options = [_start_ordering("🛍️ Place New Order"), _back_to_main()]
        if not orders:
            return ChatReply(message="📊 No order history found.", options=options)

        entries = []
        for index, order in enumerate(orders, start=1):
            when = order.placed_at or order.created_at
            entries.append(
                f"**Order {index}:**\n"
                f"• {_count_label(order.item_count)}\n"
                f"• Total: {format_money(order.total)}\n"
                f"• Status: {order.status}\n"
                f"• Date: {when.strftime('%Y-%m-%d') if when else 'N/A'}\n"
            )
        return ChatReply(message="📊 **Your Order History:**\n\n" + "\n".join(entries), options=options)

    def _payment_status(self, user: UserRecord, argument: Optional[str]) -> ChatReply:
        try:
            result = self.payments.payment_status(user.session_id)
        except ExternalProviderError:
            result = None
            logger.warning("Payment status check failed for session %s", user.session_id)

        if result is None:
            return ChatReply(
                message="💳 No payment in progress.",
                options=main_options(),
            )

        order = self.storage.get_order(result.order_id)
        snapshot = order_snapshot(order)

        if result.status == OUTCOME_SUCCESS:
            return ChatReply(
                message=f"✅ Payment received for order #{result.order_id} ({format_money(result.amount)}). Thank you!",
                options=[_start_ordering("🛍️ Place New Order"), ChatOption(ORDER_HISTORY, "📊 Order History"), _back_to_main()],
                order=snapshot,
            )
        if result.status == OUTCOME_FAILED:
            return ChatReply(
                message=f"❌ Payment for order #{result.order_id} failed. You can try again.",
                options=[_pay_option("💳 Retry Payment"), ChatOption(CURRENT_ORDER, "📋 View Order"), _back_to_main()],
                order=snapshot,
            )
        return ChatReply(
            message=f"⏳ Payment for order #{result.order_id} ({format_money(result.amount)}) is awaiting confirmation.",
            options=[ChatOption(PAYMENT_STATUS, "🔄 Check Again"), _pay_option("💳 Pay Now"), _back_to_main()],
            order=snapshot,
        )


def degraded_reply() -> ChatReply:
    """Reply used when the request could not be completed at all."""
    return ChatReply(
        message="⚠️ Sorry, something went wrong on our side. Please try again.",
        options=main_options(),
        error="unavailable",
    )
