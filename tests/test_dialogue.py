"""
Tests for the dialogue engine: token routing, replies and error handling.
"""
from unittest.mock import patch

import pytest

from chow_bot.dialogue import (
    ACTION_INITIATE_PAYMENT,
    DialogueEngine,
    format_lines,
    main_options,
    parse_token,
)
from chow_bot.errors import PersistenceError
from chow_bot.services.order import mark_paid, place_order

SESSION = "chat-session"


@pytest.fixture
def engine(storage, payments):
    return DialogueEngine(storage, payments=payments)


def option_values(reply):
    return [option.value for option in reply.options]


def add(engine, menu, name):
    return engine.handle(SESSION, f"add:{menu[name].id}")


class TestParseToken:
    @pytest.mark.parametrize("token,expected", [
        ("1", ("place-order", None)),
        ("99", ("checkout", None)),
        ("98", ("order-history", None)),
        ("97", ("current-order", None)),
        ("0", ("cancel-order", None)),
        ("pay", ("initiate-payment", None)),
        ("initiate_payment", ("initiate-payment", None)),
        ("check_payment", ("payment-status", None)),
        ("back", ("main-menu", None)),
        ("add_4", ("add", "4")),
        ("add:4", ("add", "4")),
        ("category_Main Course", ("category", "Main Course")),
        ("category:Drinks", ("category", "Drinks")),
        ("  checkout  ", ("checkout", None)),
        ("", ("", None)),
        (None, ("", None)),
        ("x" * 201, ("", None)),
        ("category:" + "x" * 300, ("", None)),
    ])
    def test_tokens(self, token, expected):
        assert parse_token(token) == expected


class TestNavigation:
    def test_main_menu(self, engine):
        reply = engine.handle(SESSION, "main-menu")

        assert "Main Menu" in reply.message
        assert option_values(reply) == [
            "place-order", "checkout", "order-history", "current-order", "payment-status", "cancel-order",
        ]

    def test_place_order_lists_categories(self, engine):
        reply = engine.handle(SESSION, "place-order")

        assert reply.message == "Please select a category to browse menu items:"
        assert option_values(reply) == [
            "category:Dessert", "category:Drinks", "category:Main Course", "category:Starter", "main-menu",
        ]

    def test_category_lists_items(self, engine, menu):
        reply = engine.handle(SESSION, "category:Main Course")

        assert "Main Course Menu" in reply.message
        item_options = [o for o in reply.options if o.value.startswith("add:")]
        assert [o.text for o in item_options] == [
            "Fried Rice with Beef - ₦2300",
            "Jollof Rice with Chicken - ₦2500",
            "Pounded Yam with Egusi Soup - ₦2200",
        ]
        assert item_options[1].value == f"add:{menu['Jollof Rice with Chicken'].id}"
        assert option_values(reply)[-2:] == ["place-order", "main-menu"]

    def test_category_hides_unavailable_items(self, engine, storage, menu):
        storage.set_menu_item_availability(menu["Chapman Drink"].id, False)

        reply = engine.handle(SESSION, "category:Drinks")

        assert "available" in reply.message
        assert not [o for o in reply.options if o.value.startswith("add:")]

    def test_unknown_category(self, engine):
        reply = engine.handle(SESSION, "category:Breakfast")

        assert reply.error == "not_found"
        assert "place-order" in option_values(reply)

    def test_unknown_token_falls_back_to_menu(self, engine, storage):
        reply = engine.handle(SESSION, "hello there")

        assert reply.message == "Invalid option. Please select from the menu."
        assert option_values(reply) == [o.value for o in main_options()]
        assert reply.error is None
        assert storage.list_orders(SESSION) == []

    def test_legacy_numeric_flow(self, engine, menu):
        engine.handle(SESSION, "1")
        engine.handle(SESSION, "category_Drinks")
        engine.handle(SESSION, f"add_{menu['Chapman Drink'].id}")

        reply = engine.handle(SESSION, "97")

        assert "1x Chapman Drink - ₦800" in reply.message


class TestCart:
    def test_add_item(self, engine, menu):
        reply = add(engine, menu, "Jollof Rice with Chicken")

        assert reply.message == "✅ Added **Jollof Rice with Chicken** to your order!"
        assert reply.order == {
            "items": [{"name": "Jollof Rice with Chicken", "price": 2500, "quantity": 1}],
            "total": 2500,
        }
        assert option_values(reply) == ["place-order", "current-order", "checkout", "main-menu"]

    def test_adding_same_item_twice(self, engine, menu):
        add(engine, menu, "Jollof Rice with Chicken")
        reply = add(engine, menu, "Jollof Rice with Chicken")

        assert reply.order["items"][0]["quantity"] == 2
        assert reply.order["total"] == 5000

    @pytest.mark.parametrize("token", ["add:9999", "add:abc", "add:"])
    def test_add_unknown_item(self, engine, storage, token):
        reply = engine.handle(SESSION, token)

        assert reply.error == "not_found"
        assert reply.order is None
        assert storage.list_orders(SESSION) == []

    @pytest.mark.parametrize("token", ["add:99999999999999999999999", "add:0", "add:-3"])
    def test_out_of_range_item_id(self, engine, storage, token):
        reply = engine.handle(SESSION, token)

        assert reply.error == "not_found"
        assert reply.message == "Item not found. Please pick something from the menu."
        assert storage.list_orders(SESSION) == []

    def test_add_unavailable_item(self, engine, storage, menu):
        storage.set_menu_item_availability(menu["Chocolate Cake"].id, False)

        reply = add(engine, menu, "Chocolate Cake")

        assert reply.error == "unavailable"
        assert "currently unavailable" in reply.message
        assert storage.list_orders(SESSION) == []

    def test_current_order(self, engine, menu):
        add(engine, menu, "Jollof Rice with Chicken")
        add(engine, menu, "Chapman Drink")
        add(engine, menu, "Chapman Drink")

        reply = engine.handle(SESSION, "current-order")

        assert "• 1x Jollof Rice with Chicken - ₦2500" in reply.message
        assert "• 2x Chapman Drink - ₦1600" in reply.message
        assert "Total: ₦4100" in reply.message
        assert reply.order["total"] == 4100
        assert "cancel-order" in option_values(reply)

    def test_current_order_when_empty(self, engine):
        reply = engine.handle(SESSION, "current-order")

        assert "No current order" in reply.message
        assert reply.order is None

    def test_cancel(self, engine, storage, menu):
        add(engine, menu, "Pepper Soup")

        reply = engine.handle(SESSION, "cancel-order")

        assert reply.message == "❌ Order cancelled successfully."
        assert [o.status for o in storage.list_orders(SESSION)] == ["cancelled"]
        assert "No current order" in engine.handle(SESSION, "current-order").message

    def test_cancel_without_cart(self, engine):
        reply = engine.handle(SESSION, "cancel-order")

        assert reply.message == "❌ No order to cancel."
        assert reply.error is None

    def test_cancel_after_placing_is_refused(self, engine, storage, menu):
        add(engine, menu, "Pepper Soup")
        user = storage.get_user(SESSION)
        place_order(storage, user.current_order_id)

        reply = engine.handle(SESSION, "cancel-order")

        assert reply.error == "invalid_transition"
        assert storage.get_order(user.current_order_id).status == "placed"


class TestCheckout:
    def test_checkout_summary(self, engine, menu):
        add(engine, menu, "Jollof Rice with Chicken")
        add(engine, menu, "Chapman Drink")

        reply = engine.handle(SESSION, "checkout")

        assert "Order Summary" in reply.message
        assert "Total: ₦3300" in reply.message
        pay = reply.options[0]
        assert pay.value == "initiate-payment"
        assert pay.action == ACTION_INITIATE_PAYMENT
        assert pay.to_dict() == {"value": "initiate-payment", "text": pay.text, "action": "initiate_payment"}

    def test_checkout_does_not_place_order(self, engine, storage, menu):
        add(engine, menu, "Chapman Drink")

        engine.handle(SESSION, "checkout")
        engine.handle(SESSION, "initiate-payment")

        assert [o.status for o in storage.list_orders(SESSION)] == ["pending"]

    def test_checkout_empty_cart(self, engine):
        reply = engine.handle(SESSION, "checkout")

        assert reply.error == "invalid_transition"
        assert reply.message == "❌ No order to place. Please add items first."
        assert "place-order" in option_values(reply)

    def test_initiate_payment_prompt(self, engine, menu):
        add(engine, menu, "Pepper Soup")

        reply = engine.handle(SESSION, "initiate-payment")

        assert "Order Total: ₦1500" in reply.message
        assert reply.options[0].action == ACTION_INITIATE_PAYMENT

    def test_initiate_payment_without_order(self, engine):
        reply = engine.handle(SESSION, "pay")

        assert reply.error == "invalid_transition"
        assert "No order to pay for" in reply.message

    def test_placed_unpaid_order_can_be_paid_again(self, engine, storage, menu):
        add(engine, menu, "Pepper Soup")
        place_order(storage, storage.get_user(SESSION).current_order_id)

        reply = engine.handle(SESSION, "checkout")

        assert option_values(reply) == ["initiate-payment", "main-menu"]
        current = engine.handle(SESSION, "current-order")
        assert "awaiting payment" in current.message


class TestHistoryAndPaymentStatus:
    def test_empty_history(self, engine):
        reply = engine.handle(SESSION, "order-history")
        assert reply.message == "📊 No order history found."

    def test_history_lists_paid_orders(self, engine, storage, menu):
        add(engine, menu, "Jollof Rice with Chicken")
        add(engine, menu, "Jollof Rice with Chicken")
        order_id = storage.get_user(SESSION).current_order_id
        place_order(storage, order_id)
        mark_paid(storage, order_id)

        reply = engine.handle(SESSION, "order-history")

        assert "**Order 1:**" in reply.message
        assert "• 2 items" in reply.message
        assert "• Total: ₦5000" in reply.message
        assert "• Status: paid" in reply.message

    def test_history_counts_units(self, engine, storage, menu):
        add(engine, menu, "Pepper Soup")
        order_id = storage.get_user(SESSION).current_order_id
        place_order(storage, order_id)

        reply = engine.handle(SESSION, "order-history")

        assert "• 1 item\n" in reply.message

    def test_history_skips_cancelled(self, engine, menu):
        add(engine, menu, "Pepper Soup")
        engine.handle(SESSION, "cancel-order")

        reply = engine.handle(SESSION, "order-history")

        assert reply.message == "📊 No order history found."

    def test_payment_status_without_payment(self, engine):
        reply = engine.handle(SESSION, "payment-status")
        assert reply.message == "💳 No payment in progress."

    def test_payment_status_follows_simulated_payment(self, engine, payments, menu):
        add(engine, menu, "Pepper Soup")
        intent = payments.initiate(SESSION)

        pending = engine.handle(SESSION, "payment-status")
        assert "awaiting confirmation" in pending.message
        assert pending.order["total"] == 1500

        payments.reconcile(intent.reference, claimed_outcome="success")

        paid = engine.handle(SESSION, "payment-status")
        assert f"Payment received for order #{intent.order_id}" in paid.message

    def test_payment_status_after_failure(self, engine, payments, menu):
        add(engine, menu, "Pepper Soup")
        intent = payments.initiate(SESSION)
        payments.reconcile(intent.reference, claimed_outcome="failed")

        reply = engine.handle(SESSION, "check_payment")

        assert "failed" in reply.message
        assert reply.options[0].action == ACTION_INITIATE_PAYMENT


class TestErrorReplies:
    @pytest.mark.parametrize("token", [
        "main-menu", "place-order", "category:Drinks", "category:Nope", "add:1", "add:999",
        "checkout", "initiate-payment", "payment-status", "current-order", "order-history",
        "cancel-order", "???", "", "x" * 500,
    ])
    def test_every_reply_is_complete(self, engine, token):
        reply = engine.handle(SESSION, token)

        assert reply.message
        assert reply.options
        data = reply.to_dict()
        assert set(data) == {"message", "options", "order"}

    def test_storage_failure_gives_degraded_reply(self, engine, storage, menu):
        with patch.object(storage, "get_or_create_cart", side_effect=PersistenceError("get_or_create_cart", "down")):
            reply = add(engine, menu, "Pepper Soup")

        assert reply.error == "unavailable"
        assert "try again" in reply.message
        assert reply.options

    def test_blank_session_is_rejected(self, engine):
        reply = engine.handle("   ", "main-menu")

        assert reply.error == "invalid_transition"

    def test_format_lines(self, engine, storage, menu):
        add(engine, menu, "Chapman Drink")
        add(engine, menu, "Chapman Drink")
        order = storage.get_order(storage.get_user(SESSION).current_order_id)

        assert format_lines(order) == "• 2x Chapman Drink - ₦1600"
